"""Logging and owner notifications."""
