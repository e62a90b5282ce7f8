"""Incremental sync of Cursor prompt history into PostgreSQL."""

__version__ = "0.1.0"
