"""Series Republisher - download queue and scheduled re-upload service."""

__version__ = "1.0.0"
