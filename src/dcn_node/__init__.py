"""Compute node for the distributed render network."""

__version__ = "0.1.0"
