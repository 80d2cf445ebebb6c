"""Command-line interface for feeder."""
