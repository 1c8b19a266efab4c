"""Image acquisition and optimization pipeline for household item photos."""

__version__ = "0.1.0"
