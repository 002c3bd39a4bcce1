"""Content chunking engine."""
