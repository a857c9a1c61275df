"""CleanFlow quarantine core: CSV parsing, validation and cell provenance."""

__version__ = "0.1.0"
