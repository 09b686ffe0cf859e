"""Compute kernel: escape-time rendering of render jobs to PNG."""
