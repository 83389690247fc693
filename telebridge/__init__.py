"""Telebridge -- video session embed bootstrap for the counseling platform."""

__version__ = "0.1.0"
