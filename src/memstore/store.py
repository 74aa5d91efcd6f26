"""
Durable persistence for the record store.

The store is a single file that is always rewritten whole: ``save``
writes a temporary file in the same directory, fsyncs it and renames it
over the target, so a reader never observes a half-written store.
``load`` never mutates the file and treats a missing file as an empty
store.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

try:
    import fcntl  # Unix only
except ImportError:  # pragma: no cover - Windows
    fcntl = None

from . import codec
from .errors import ConcurrentModification, CorruptStore, StoreIOError, ValidationError
from .models import DEFAULT_VECTOR_DIM, STORE_VERSION, Record, Store

logger = logging.getLogger(__name__)

#: Suffixes that select the line-oriented text encoding.
TEXT_SUFFIXES = frozenset({".log", ".txt"})


def is_text_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in TEXT_SUFFIXES


def _decode(data: bytes, path: Path) -> Store:
    if is_text_path(path):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptStore(f"invalid UTF-8: {exc}") from exc
        return codec.loads_text(text)
    return codec.decode_store(data)


def _encode(store: Store, path: Path) -> bytes:
    if is_text_path(path):
        return codec.dumps_text(store).encode("utf-8")
    return codec.encode_store(store)


def _read_generation(path: Path) -> int | None:
    """Generation recorded in the file at *path*, or ``None`` if absent."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    if is_text_path(path):
        return _decode(data, path).generation
    _, _, generation, _ = codec.read_header(data)
    return generation


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load(path: str | Path, vector_dim: int | None = None) -> Store:
    """
    Read the store at *path*.

    A missing file yields an empty store using *vector_dim* (or the
    default dimension).  When *vector_dim* is given and the file declares
    a different one, :class:`CorruptStore` is raised rather than resizing.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        logger.debug("No store at %s; starting empty", path)
        return Store(version=STORE_VERSION, vector_dim=vector_dim or DEFAULT_VECTOR_DIM)
    except OSError as exc:
        raise StoreIOError(str(exc), operation="load", path=path) from exc

    try:
        store = _decode(data, path)
    except CorruptStore as exc:
        exc.operation = exc.operation or "load"
        exc.path = exc.path or str(path)
        raise

    if vector_dim is not None and store.vector_dim != vector_dim:
        raise CorruptStore(
            f"dimension mismatch: configured {vector_dim}, store has {store.vector_dim}",
            operation="load",
            path=path,
        )

    logger.debug(
        "Loaded %d record(s) from %s (dim=%d, generation=%d)",
        len(store.records), path, store.vector_dim, store.generation,
    )
    return store


def append(store: Store, record: Record) -> None:
    """Insert *record* into *store* in memory.  Does not touch disk."""
    if len(record.vector) != store.vector_dim:
        raise ValidationError(
            f"record vector has {len(record.vector)} dimensions, store expects {store.vector_dim}",
            operation="append",
        )
    if any(r.id == record.id for r in store.records):
        raise ValidationError(f"duplicate record id {record.id}", operation="append")
    store.records.append(record)


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    """Exclusive advisory lock on ``<path>.lock`` for the duration of a save."""
    if fcntl is None:
        yield
        return
    lock_path = path.with_name(path.name + ".lock")
    with open(lock_path, "a+b") as fh:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def _check_base(store: Store, path: Path) -> None:
    try:
        on_disk = _read_generation(path)
    except CorruptStore as exc:
        raise ConcurrentModification(
            f"store was replaced by an unreadable file ({exc.message})",
            operation="save",
            path=path,
        ) from exc

    if on_disk is None and store.generation == 0:
        return
    if on_disk != store.generation:
        found = "no file" if on_disk is None else f"generation {on_disk}"
        raise ConcurrentModification(
            f"store changed since it was loaded (expected generation {store.generation}, "
            f"found {found})",
            operation="save",
            path=path,
        )


def _write_atomic(data: bytes, path: Path) -> None:
    tmp_path: str | None = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_path)


def save(store: Store, path: str | Path, check_conflicts: bool = False) -> None:
    """
    Atomically replace the file at *path* with *store*.

    With *check_conflicts* the on-disk generation must still match the one
    *store* was loaded at; otherwise :class:`ConcurrentModification` is
    raised and nothing is written.  On success ``store.generation`` is
    incremented.
    """
    path = Path(path)
    new_generation = store.generation + 1
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = _encode(
            Store(
                version=store.version,
                vector_dim=store.vector_dim,
                records=store.records,
                generation=new_generation,
            ),
            path,
        )
        if check_conflicts:
            with _locked(path):
                _check_base(store, path)
                _write_atomic(data, path)
        else:
            _write_atomic(data, path)
    except OSError as exc:
        raise StoreIOError(str(exc), operation="save", path=path) from exc

    store.generation = new_generation
    logger.info("Saved %d record(s) to %s", len(store.records), path)
