"""node-catalog - remote discovery and metadata extraction for integration nodes."""

__version__ = "0.1.0"
