"""Vocabulary search and learning-optimization core."""

__version__ = "1.0.0"
