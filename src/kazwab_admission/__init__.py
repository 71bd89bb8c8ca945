"""Kazwab admission control: per-client rate limiting for the Kazwab API."""

__version__ = "0.1.0"
