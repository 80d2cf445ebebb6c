"""Feed management commands for feeder."""
