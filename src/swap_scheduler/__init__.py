"""Swap Scheduler: recurring, limit and trailing-stop swap execution."""

__version__ = "0.1.0"
