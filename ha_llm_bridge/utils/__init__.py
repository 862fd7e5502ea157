"""Helpers for name normalization, fuzzy scoring and registry types."""
