"""roster-doctor: map, clean and validate personnel-record imports."""

__version__ = "0.1.0"
