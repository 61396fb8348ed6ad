"""MediaWatch: tag-based content classification and dashboard analytics."""

__version__ = "0.1.0"
