"""Flowrunner: validate, execute and journal design-time workflow graphs."""

__version__ = "1.0.0"
