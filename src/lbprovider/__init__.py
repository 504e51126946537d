"""Azure provider for the LoadBalancer controller."""

__version__ = "0.1.0"
