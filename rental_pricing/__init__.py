"""Dynamic pricing engine for car rentals."""

__version__ = "0.1.0"
