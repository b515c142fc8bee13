"""Numpy building blocks for the sequence model."""

from __future__ import annotations

import numpy as np


def xavier(rng: np.random.Generator, rows: int, cols: int) -> np.ndarray:
    """Uniform Xavier-style init: (u - 0.5) * 2 * sqrt(2 / (rows + cols))."""
    scale = np.sqrt(2.0 / (rows + cols))
    return (rng.random((rows, cols)) - 0.5) * 2.0 * scale


def softmax(x: np.ndarray, axis: int = -1) -> np.ndarray:
    """Numerically stable softmax along ``axis``."""
    shifted = x - np.max(x, axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=axis, keepdims=True)


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def layer_norm(x: np.ndarray, gain: np.ndarray, eps: float = 1e-5) -> np.ndarray:
    """Normalize over the last axis and scale by a per-feature gain."""
    mean = np.mean(x, axis=-1, keepdims=True)
    var = np.var(x, axis=-1, keepdims=True)
    return (x - mean) / np.sqrt(var + eps) * gain
