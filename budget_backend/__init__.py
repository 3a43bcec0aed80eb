"""Envelope budget backend: accounts, transactions and a zero-based monthly budget."""

__version__ = "0.1.0"
