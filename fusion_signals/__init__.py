"""Fusion signal engine: mean-reversion rules fused with a sequence model."""

__version__ = "0.1.0"
