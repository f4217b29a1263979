"""Context identity, refresh cycles and mode hysteresis."""
