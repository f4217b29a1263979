"""Recommendation lifecycle core for an AI-visibility website scanner."""

__version__ = "0.1.0"
