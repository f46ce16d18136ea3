"""Synchronise template-generated projects with upstream template releases."""

__version__ = "0.1.0"
