"""BFIS GitHub App credential core."""

__version__ = "0.1.0"
