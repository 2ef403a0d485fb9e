"""Mirror container image tags from a source registry to a destination registry."""

__version__ = "0.1.0"
