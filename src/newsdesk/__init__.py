"""Merged, de-duplicated news digest built from RSS and Atom feeds."""

__version__ = "0.1.0"
