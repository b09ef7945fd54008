"""Helpers shared across graphrun modules."""
