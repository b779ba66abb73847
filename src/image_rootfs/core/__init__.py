"""Core extraction engine."""
