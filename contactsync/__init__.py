"""Incremental contact book synchronization between paired devices."""

__version__ = "0.1.0"
