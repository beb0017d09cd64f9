"""Task runtimes, wait groups, scheduled tasks, consumer-group logic and a SQL-backed metadata service."""

__version__ = "0.1.0"