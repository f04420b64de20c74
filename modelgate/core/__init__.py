"""Core governance decision components for ModelGate."""
