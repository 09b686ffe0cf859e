"""Coordinator node API: wire client, outcome types, and hardware specs."""
