"""ahacapture - capture notes into threads and keep them in sync across devices."""

__version__ = "0.3.0"
