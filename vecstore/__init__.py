"""Portable vector store with pluggable backends and filter translation."""

__version__ = "0.1.0"
