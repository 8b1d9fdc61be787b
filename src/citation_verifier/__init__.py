"""Verify that bibliographic references point at works that exist."""

__version__ = "0.1.0"
