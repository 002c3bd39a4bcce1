"""Tiered task routing pipeline with content chunking."""

__version__ = "0.1.0"
