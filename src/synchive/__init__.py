"""Synchive: checksum-verified directory synchronisation."""

__version__ = "0.3.0"
