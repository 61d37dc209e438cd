"""Core primitives for the land registry engine.

This module provides the foundational utilities used throughout the engine:
- Cryptographic hashing (SHA-256)
- Canonical JSON serialization (sorted keys, no whitespace, floats rejected)
- Base58 encoding for content references
- JSON loading with consistent encoding
- Timestamp helpers (UTC, ISO 8601)
- Thread-safe counter used for sequential record identifiers

Design principles:
- Pure functions where possible
- No global mutable state
- Type annotations throughout
"""

from __future__ import annotations

import hashlib
import json
import pathlib
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

# Package root, computed once at module load
PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent

SCHEMAS_DIR = PACKAGE_ROOT / "schemas"


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes.

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - Floats rejected (use Decimal or strings for amounts)
    - Decimals and datetimes coerced to strings

    Digests over these bytes are stable across processes.
    """
    def _prepare(o: Any, path: str = "$") -> Any:
        if isinstance(o, float):
            raise ValueError(f"Float not allowed in canonical JSON at {path}")
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, datetime):
            return to_iso(o)
        if isinstance(o, dict):
            return {str(k): _prepare(v, f"{path}.{k}") for k, v in o.items()}
        if isinstance(o, (list, tuple)):
            return [_prepare(v, f"{path}[{i}]") for i, v in enumerate(o)]
        return o

    return json.dumps(
        _prepare(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def canonical_digest(obj: Any) -> str:
    """SHA-256 of the canonical JSON bytes of ``obj``."""
    return sha256_bytes(canonical_json_bytes(obj))


# ---------------------------------------------------------------------------
# Base58 (bitcoin alphabet)
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58encode(b: bytes) -> str:
    # Count leading zeros
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Render an aware datetime as ISO 8601 (UTC, microseconds kept)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value
