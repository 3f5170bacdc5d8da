"""Task orchestration core for a crew of specialized workers."""

__version__ = "0.1.0"
