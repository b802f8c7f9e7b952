"""Resilient ticket acquisition for high-demand on-sale events."""

__version__ = "1.0.0"
