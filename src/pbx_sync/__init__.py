"""Reconcile declared telephony extensions with the Asterisk PJSIP configuration."""

__version__ = "0.1.0"
