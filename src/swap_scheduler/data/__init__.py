"""Price oracle clients."""
