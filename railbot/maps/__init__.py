"""Map data."""
