"""Trim trailing silence from directories of WAV files."""

__version__ = "0.1.0"
