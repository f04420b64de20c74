"""ModelGate: governance engine for model version promotion."""

__version__ = "0.1.0"
