"""Inspection lifecycle services."""
