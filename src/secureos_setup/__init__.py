"""Cross-cloud federated access setup for SecureOS compliance evidence collection."""

__version__ = "1.0.0"
