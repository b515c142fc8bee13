"""Core logic for indicators, signal generation, the sequence model and positions.

This package contains pure business logic with no I/O dependencies
(no Redis, files, or network access). Persistence and configuration
loading live in ``fusion_signals.storage`` and ``fusion_signals.config``.
"""
