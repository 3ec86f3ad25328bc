"""Dump the text files of a GitHub repository into one annotated document."""

__version__ = "0.1.0"
