"""Grievance lifecycle and redirection engine."""

__version__ = "0.1.0"
