"""Image archive reading."""
