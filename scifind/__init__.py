"""Configuration, structured logging and Flask request handlers for multi-provider scientific literature search."""

__version__ = "1.0.0"