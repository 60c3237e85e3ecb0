"""SQL river: mirrors an SQL query into a document index."""

__version__ = "0.1.0"
