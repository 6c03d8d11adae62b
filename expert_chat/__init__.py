"""Kisan Mitra expert chat backend."""

__version__ = "0.3.0"
