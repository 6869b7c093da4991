"""Incremental static regeneration of pre-rendered HTML snapshots."""

__version__ = "0.1.0"
