"""Duplicate lesson-plan resolution toolkit."""

__version__ = "0.3.0"
