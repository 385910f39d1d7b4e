"""Cookie discovery and classification service."""

__version__ = "1.0.0"
