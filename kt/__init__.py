"""kt: a command line client for Kafka."""

__version__ = "1.0.0"
