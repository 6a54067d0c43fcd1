"""Crash detection monitor with a cancellable countdown and SMS escalation."""

__version__ = "1.0.0"
