"""Error classes for the fusion signal engine.

Insufficient indicator history is not an error: it is reported through the
``InsufficientHistory`` sentinel returned by the indicator functions.
"""


class FusionError(Exception):
    """Base error for engine operations."""
    pass


class InvalidConfigurationError(FusionError, ValueError):
    """Invalid parameter, e.g. zero position size or non-positive risk-reward."""
    pass


class InvalidBarError(FusionError, ValueError):
    """Bar rejected by the append-only price history."""
    pass


class ScalerNotFittedError(FusionError):
    """Feature scaler used before fit()."""
    pass


class PersistenceError(FusionError):
    """Model state could not be read from or written to the key/value store."""
    pass


class NoTrainingDataError(FusionError):
    """Training invoked without any prepared sequence/target pairs."""
    pass
