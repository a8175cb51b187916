"""Vehicle position tracking for deliveries."""

__version__ = "0.1.0"
