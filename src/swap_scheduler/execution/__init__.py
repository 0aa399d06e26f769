"""Exchange clients for quote and order creation."""
