"""Recommendation candidate generators."""
