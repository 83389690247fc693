"""HTTP layer: credential endpoint, embed configuration, health."""
