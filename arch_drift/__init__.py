"""ML-assisted architectural drift detection."""

__version__ = "0.1.0"
