"""Health monitor for video-catalog search API sources."""

__version__ = "0.1.0"
