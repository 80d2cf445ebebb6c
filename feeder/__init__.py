"""feeder - multi-source feed aggregator with exactly-once notifications."""

__version__ = "0.1.0"
