"""
Serialisation of a :class:`~memstore.models.Store`.

Two encodings of the same data model are provided:

* **binary** – the default on-disk layout.  Little-endian header
  (magic, version, vector_dim, generation, record count) followed by the
  records, each carrying id, ts, weight, kind, text and vector (float32).
* **text** – one pipe-delimited line per record with backslash escaping
  of ``\\``, newline, carriage return and ``|``.  Decoding is exact.

Both decoders raise :class:`~memstore.errors.CorruptStore` on anything
they cannot parse; they never attempt a partial recovery.
"""

from __future__ import annotations

import math
import struct

import numpy as np

from .errors import CorruptStore
from .models import STORE_VERSION, Record, Store

MAGIC = b"MEMS"

_HEADER = struct.Struct("<4sIIQQ")  # magic, version, vector_dim, generation, count
_RECORD_HEAD = struct.Struct("<Qqd")  # id, ts, weight
_LEN = struct.Struct("<I")
_VECTOR_DTYPE = np.dtype("<f4")

TEXT_HEADER_TAG = "#memstore"


# ---------------------------------------------------------------------------
# Binary encoding
# ---------------------------------------------------------------------------


def encode_record(record: Record, vector_dim: int) -> bytes:
    """Encode a single record (without the store header)."""
    if len(record.vector) != vector_dim:
        raise ValueError(
            f"record {record.id} has {len(record.vector)} dimensions, expected {vector_dim}"
        )
    kind = record.kind.encode("utf-8")
    text = record.text.encode("utf-8")
    return b"".join(
        (
            _RECORD_HEAD.pack(record.id, record.ts, record.weight),
            _LEN.pack(len(kind)),
            kind,
            _LEN.pack(len(text)),
            text,
            np.asarray(record.vector, dtype=_VECTOR_DTYPE).tobytes(),
        )
    )


def encode_store(store: Store) -> bytes:
    """Encode the full store, header first."""
    parts = [
        _HEADER.pack(MAGIC, store.version, store.vector_dim, store.generation, len(store.records))
    ]
    parts.extend(encode_record(r, store.vector_dim) for r in store.records)
    return b"".join(parts)


class _Reader:
    """Bounds-checked cursor over a bytes buffer."""

    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.pos = 0

    def take(self, n: int, what: str) -> memoryview:
        end = self.pos + n
        if end > len(self.data):
            raise CorruptStore(
                f"truncated data while reading {what} at offset {self.pos} "
                f"(need {n} bytes, {len(self.data) - self.pos} left)"
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def unpack(self, fmt: struct.Struct, what: str) -> tuple:
        return fmt.unpack(self.take(fmt.size, what))

    def string(self, what: str) -> str:
        (n,) = self.unpack(_LEN, f"{what} length")
        raw = self.take(n, what)
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptStore(f"invalid UTF-8 in {what}: {exc}") from exc

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos


def read_header(data: bytes) -> tuple[int, int, int, int]:
    """
    Decode only the header of a binary store.

    Returns ``(version, vector_dim, generation, count)``.
    """
    reader = _Reader(data)
    magic, version, vector_dim, generation, count = reader.unpack(_HEADER, "header")
    if magic != MAGIC:
        raise CorruptStore(f"bad magic {bytes(magic)!r}, expected {MAGIC!r}")
    if version != STORE_VERSION:
        raise CorruptStore(f"unsupported format version {version}, expected {STORE_VERSION}")
    if vector_dim <= 0:
        raise CorruptStore(f"invalid vector dimension {vector_dim} in header")
    return version, vector_dim, generation, count


def decode_record(reader: _Reader, vector_dim: int) -> Record:
    record_id, ts, weight = reader.unpack(_RECORD_HEAD, "record header")
    kind = reader.string("kind")
    text = reader.string("text")
    raw = reader.take(vector_dim * _VECTOR_DTYPE.itemsize, f"vector of record {record_id}")
    vector = tuple(np.frombuffer(raw, dtype=_VECTOR_DTYPE).tolist())
    return Record(id=record_id, ts=ts, kind=kind, weight=weight, text=text, vector=vector)


def decode_store(data: bytes) -> Store:
    """Decode a binary store produced by :func:`encode_store`."""
    version, vector_dim, generation, count = read_header(data)
    reader = _Reader(data)
    reader.take(_HEADER.size, "header")

    records = [decode_record(reader, vector_dim) for _ in range(count)]
    if reader.remaining:
        raise CorruptStore(f"{reader.remaining} unexpected trailing bytes after {count} records")

    store = Store(version=version, vector_dim=vector_dim, records=records, generation=generation)
    check_integrity(store)
    return store


def check_integrity(store: Store) -> None:
    """Reject stores whose records violate the dimension, weight or id invariants."""
    seen: set[int] = set()
    for record in store.records:
        if len(record.vector) != store.vector_dim:
            raise CorruptStore(
                f"dimension mismatch in record {record.id}: "
                f"header says {store.vector_dim}, record has {len(record.vector)}"
            )
        if not (math.isfinite(record.weight) and record.weight > 0):
            raise CorruptStore(f"invalid weight {record.weight!r} in record {record.id}")
        if record.id in seen:
            raise CorruptStore(f"duplicate record id {record.id}")
        seen.add(record.id)


# ---------------------------------------------------------------------------
# Text encoding
# ---------------------------------------------------------------------------

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", "|": "\\|"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "|": "|"}


def escape(value: str) -> str:
    """Escape backslash, newline, carriage return and ``|``."""
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def unescape(value: str) -> str:
    """Inverse of :func:`escape`.  Unknown escapes are kept verbatim."""
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt is None:
            out.append("\\")
        elif nxt in _UNESCAPES:
            out.append(_UNESCAPES[nxt])
        else:
            out.append("\\" + nxt)
    return "".join(out)


def split_escaped(line: str, sep: str = "|") -> list[str]:
    """Split *line* on unescaped *sep*, leaving escape sequences intact."""
    fields: list[str] = []
    buf: list[str] = []
    escaped = False
    for ch in line:
        if escaped:
            buf.append(ch)
            escaped = False
        elif ch == "\\":
            buf.append(ch)
            escaped = True
        elif ch == sep:
            fields.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    fields.append("".join(buf))
    return fields


def format_record_line(record: Record) -> str:
    vector = ",".join(repr(v) for v in record.vector)
    return "|".join(
        (
            str(record.id),
            str(record.ts),
            escape(record.kind),
            repr(float(record.weight)),
            escape(record.text),
            vector,
        )
    )


def parse_record_line(line: str, lineno: int = 0) -> Record:
    fields = split_escaped(line)
    if len(fields) != 6:
        raise CorruptStore(f"line {lineno}: expected 6 fields, found {len(fields)}")
    raw_id, raw_ts, kind, raw_weight, text, raw_vector = fields
    try:
        vector = tuple(float(v) for v in raw_vector.split(",")) if raw_vector else ()
        return Record(
            id=int(raw_id),
            ts=int(raw_ts),
            kind=unescape(kind),
            weight=float(raw_weight),
            text=unescape(text),
            vector=vector,
        )
    except ValueError as exc:
        raise CorruptStore(f"line {lineno}: {exc}") from exc


def dumps_text(store: Store) -> str:
    """Encode *store* in the line-oriented text format."""
    lines = [f"{TEXT_HEADER_TAG}|{store.version}|{store.vector_dim}|{store.generation}"]
    lines.extend(format_record_line(r) for r in store.records)
    return "\n".join(lines) + "\n"


def loads_text(data: str) -> Store:
    """Decode the text format produced by :func:`dumps_text`."""
    lines = data.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    if not lines:
        raise CorruptStore("empty text store (missing header line)")

    header = lines[0].split("|")
    if len(header) != 4 or header[0] != TEXT_HEADER_TAG:
        raise CorruptStore(f"bad text header {lines[0][:40]!r}")
    try:
        version, vector_dim, generation = (int(h) for h in header[1:])
    except ValueError as exc:
        raise CorruptStore(f"bad text header: {exc}") from exc
    if version != STORE_VERSION:
        raise CorruptStore(f"unsupported format version {version}, expected {STORE_VERSION}")
    if vector_dim <= 0:
        raise CorruptStore(f"invalid vector dimension {vector_dim} in header")

    records = [
        parse_record_line(line, lineno)
        for lineno, line in enumerate(lines[1:], start=2)
        if line.strip()
    ]
    store = Store(version=version, vector_dim=vector_dim, records=records, generation=generation)
    check_integrity(store)
    return store
