"""
Configuration resolution.

Every command receives an explicit :class:`MemstoreConfig`; nothing reads
a process-wide "current store".  Values resolve in the order: explicit
argument (command-line flag), then environment variable, then default.

Environment variables:
    MEMSTORE_PATH            - store file (default: memory/memories.bin)
    MEMSTORE_VECTOR_DIM      - embedding dimension; new stores are created with it
                               and existing stores must match it (default: unset,
                               new stores use 256 and existing ones keep theirs)
    MEMSTORE_CONFLICT_CHECK  - "0"/"false"/"no"/"off" disables the
                               concurrent-writer check (default: on)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ValidationError

DEFAULT_PATH = Path("memory") / "memories.bin"

ENV_PATH = "MEMSTORE_PATH"
ENV_VECTOR_DIM = "MEMSTORE_VECTOR_DIM"
ENV_CONFLICT_CHECK = "MEMSTORE_CONFLICT_CHECK"

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class MemstoreConfig:
    """
    Resolved settings for one store.

    ``path`` is the store file, ``vector_dim`` the required embedding
    dimension (``None`` to accept whatever the store has, 256 for a new
    store) and ``check_conflicts`` enables the concurrent-writer check on
    save.
    """

    path: Path = DEFAULT_PATH
    vector_dim: int | None = None
    check_conflicts: bool = True


def resolve_config(
    path: str | Path | None = None,
    vector_dim: int | None = None,
    check_conflicts: bool | None = None,
    environ: Mapping[str, str] | None = None,
) -> MemstoreConfig:
    """Build a config from explicit values, falling back to *environ*."""
    env = os.environ if environ is None else environ

    if path is None:
        path = env.get(ENV_PATH) or DEFAULT_PATH

    if vector_dim is None:
        raw = env.get(ENV_VECTOR_DIM)
        if raw:
            try:
                vector_dim = int(raw)
            except ValueError as exc:
                raise ValidationError(
                    f"{ENV_VECTOR_DIM} must be an integer, got {raw!r}", operation="config"
                ) from exc
    if vector_dim is not None and vector_dim <= 0:
        raise ValidationError(f"vector dimension must be positive, got {vector_dim}",
                              operation="config")

    if check_conflicts is None:
        raw = env.get(ENV_CONFLICT_CHECK)
        check_conflicts = raw is None or raw.strip().lower() not in _FALSE_VALUES

    return MemstoreConfig(path=Path(path), vector_dim=vector_dim, check_conflicts=check_conflicts)
