"""Excel customer / order workbook -> PostgreSQL migration tool."""

__version__ = "0.1.0"
