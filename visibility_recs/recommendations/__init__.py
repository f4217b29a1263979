"""Impact scoring and ranking of recommendations."""
