"""Bidirectional sync between a local bookmark tree and Raindrop.io collections."""

__version__ = "0.1.0"
