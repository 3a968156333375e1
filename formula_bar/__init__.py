"""Tag-aware formula editor and expression engine."""

__version__ = "0.1.0"
