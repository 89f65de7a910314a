"""Searchable PDFs from a page image and recognized text fragments."""

__version__ = "0.4.0"
