"""Conversational point-of-sale assistant backed by a transaction kernel."""

__version__ = "0.5.0"
