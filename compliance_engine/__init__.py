"""Compliance obligation and covenant testing engine."""

__version__ = "0.1.0"
