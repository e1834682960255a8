"""Offline-first task store with an outbox-driven sync engine."""

__version__ = "0.1.0"
