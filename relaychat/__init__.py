"""Relay connection client for channel-based encrypted chat."""

__version__ = "0.1.0"
