"""Version information for filemutex."""

__version__ = "1.0.0"
