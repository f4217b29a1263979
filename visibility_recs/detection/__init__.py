"""Implicit-implementation detection between consecutive scans."""
