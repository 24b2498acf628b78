"""Command-line interface for the delivery core."""
