"""Fetch campus card meal transactions, cache them in SQLite and query them."""

__version__ = "0.1.0"