"""Offline cache refresh pipeline for a remote video catalog."""

__version__ = "0.1.0"
