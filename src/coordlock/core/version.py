"""Version information for coordlock."""

__version__ = "1.0.0"
