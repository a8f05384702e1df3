"""Field route planning and assignment scheduling."""

__version__ = "0.1.0"
