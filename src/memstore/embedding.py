"""
Feature-hashing text encoder.

Turns arbitrary text into a fixed-dimension, L2-normalised float32 vector
without any model download: tokens are hashed with FNV-1a into buckets and
their term frequencies accumulated.  The output is deterministic across
processes and platforms, so stored vectors stay comparable with freshly
encoded queries.
"""

from __future__ import annotations

import re

import numpy as np

from .errors import ValidationError
from .models import DEFAULT_VECTOR_DIM

_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

# Runs of Unicode letters/digits; underscore counts as a separator.
_TOKEN_RE = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    """Split *text* into lower-cased alphanumeric tokens."""
    return [t.lower() for t in _TOKEN_RE.findall(text)]


def fnv1a_64(data: bytes) -> int:
    """64-bit FNV-1a hash of *data*."""
    h = _FNV_OFFSET_BASIS
    for b in data:
        h ^= b
        h = (h * _FNV_PRIME) & _MASK_64
    return h


def encode(text: str, dim: int = DEFAULT_VECTOR_DIM) -> np.ndarray:
    """
    Embed *text* as a unit-length float32 vector of length *dim*.

    Returns the zero vector when *text* contains no tokens.
    """
    if not isinstance(dim, int) or dim <= 0:
        raise ValidationError(f"vector dimension must be a positive integer, got {dim!r}",
                              operation="encode")

    vec = np.zeros(dim, dtype=np.float32)
    for token in tokenize(text):
        vec[fnv1a_64(token.encode("utf-8")) % dim] += 1.0

    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b)) / (na * nb)
