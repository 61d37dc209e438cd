"""
Evidence Reference Store

Content-addressed storage for supporting documents (deeds, survey reports,
inspection reports). The engine never interprets document bytes; it only
keeps the content reference returned by the store.

Content reference format (CIDv0 style):

    "Qm" + 44 base58 characters  ==  base58(0x12 0x20 || sha256(data))

Every reference is validated before use. All store calls made by the
workflow go through ``EvidenceResolver``, which bounds them with a timeout
and maps failures to ``CollaboratorUnavailable``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

from landreg.core import b58decode, b58encode, utc_now
from landreg.errors import CollaboratorUnavailable, PreconditionFailed
from landreg.models import EvidenceItem, EvidenceType
from landreg.observability import EngineLayer, get_logger
from landreg.resilience import Timeout, TimeoutExceeded

log = get_logger("store", EngineLayer.EVIDENCE)

# sha2-256 multihash header: function code 0x12, digest length 0x20
MULTIHASH_SHA256 = b"\x12\x20"

CONTENT_HASH_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")


def content_hash(data: bytes) -> str:
    """Compute the content reference for ``data``."""
    return b58encode(MULTIHASH_SHA256 + hashlib.sha256(data).digest())


def is_valid_content_hash(value: str) -> bool:
    if not isinstance(value, str) or not CONTENT_HASH_RE.match(value):
        return False
    try:
        raw = b58decode(value)
    except ValueError:
        return False
    return len(raw) == 34 and raw[:2] == MULTIHASH_SHA256


def require_content_hash(value: str) -> str:
    if not is_valid_content_hash(value):
        raise PreconditionFailed(f"Malformed content reference: {value!r}")
    return value


class EvidenceNotFound(KeyError):
    """Raised by stores when no document exists under a reference."""


@runtime_checkable
class EvidenceStore(Protocol):
    """Opaque content-addressed document store."""

    def put(self, data: bytes, name: str = "") -> str:
        ...

    def get(self, ref: str) -> bytes:
        ...

    def exists(self, ref: str) -> bool:
        ...


class InMemoryEvidenceStore:
    """Thread-safe in-memory store used by tests and the CLI demo."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._names: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, name: str = "") -> str:
        ref = content_hash(data)
        with self._lock:
            self._blobs.setdefault(ref, bytes(data))
            if name:
                self._names.setdefault(ref, name)
        return ref

    def get(self, ref: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[ref]
            except KeyError:
                raise EvidenceNotFound(ref) from None

    def exists(self, ref: str) -> bool:
        with self._lock:
            return ref in self._blobs

    def name_of(self, ref: str) -> Optional[str]:
        with self._lock:
            return self._names.get(ref)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


class FileSystemEvidenceStore:
    """
    Content-addressed directory store.

    Layout: ``<root>/<ref[2:4]>/<ref>``. Writes go to a temporary file in the
    same directory and are renamed into place, so a reader never observes a
    partially written document.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, ref: str) -> Path:
        if not is_valid_content_hash(ref):
            raise ValueError(f"Malformed content reference: {ref!r}")
        return self.root / ref[2:4] / ref

    def put(self, data: bytes, name: str = "") -> str:
        ref = content_hash(data)
        path = self._path_for(ref)
        if path.exists():
            return ref
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return ref

    def get(self, ref: str) -> bytes:
        path = self._path_for(ref)
        if not path.exists():
            raise EvidenceNotFound(ref)
        return path.read_bytes()

    def exists(self, ref: str) -> bool:
        try:
            return self._path_for(ref).exists()
        except ValueError:
            return False


@dataclass(frozen=True)
class DocumentUpload:
    """
    A document supplied with a workflow call.

    Either ``data`` (stored during resolution) or ``content_hash`` (a document
    already in the store, checked for existence) must be given.
    """
    evidence_type: EvidenceType
    data: Optional[bytes] = None
    content_hash: Optional[str] = None
    filename: str = ""

    def __post_init__(self):
        if (self.data is None) == (self.content_hash is None):
            raise ValueError("DocumentUpload needs exactly one of data or content_hash")


class EvidenceResolver:
    """
    Turns ``DocumentUpload`` inputs into ``EvidenceItem`` references.

    Runs before any registry write. Each store call is bounded by ``timeout``;
    a timeout or store exception becomes ``CollaboratorUnavailable``, a bad
    reference or an oversized document becomes ``PreconditionFailed``.
    """

    def __init__(
        self,
        store: EvidenceStore,
        timeout_seconds: float = 30.0,
        max_document_bytes: int = 10 * 1024 * 1024,
    ):
        self.store = store
        self.max_document_bytes = max_document_bytes
        self._timeout = Timeout(seconds=timeout_seconds, name="evidence-store")

    def _call(self, func, what: str):
        try:
            return self._timeout.execute(func)
        except TimeoutExceeded as e:
            log.error("Evidence store timed out", error_code="evidence_timeout", call=what)
            raise CollaboratorUnavailable("evidence store", cause=e) from e
        except Exception as e:
            log.error("Evidence store call failed", error_code="evidence_error", call=what, error=str(e))
            raise CollaboratorUnavailable("evidence store", cause=e) from e

    def resolve_one(self, upload: DocumentUpload) -> EvidenceItem:
        if upload.data is not None:
            size = len(upload.data)
            if size == 0:
                raise PreconditionFailed(f"Empty document: {upload.filename or upload.evidence_type.value}")
            if size > self.max_document_bytes:
                raise PreconditionFailed(
                    f"Document {upload.filename or upload.evidence_type.value} is {size} bytes, "
                    f"limit is {self.max_document_bytes}"
                )
            data = upload.data
            ref = self._call(lambda: self.store.put(data, upload.filename), "put")
            if not is_valid_content_hash(ref):
                raise CollaboratorUnavailable(
                    "evidence store", cause=ValueError(f"store returned malformed reference {ref!r}")
                )
        else:
            ref = require_content_hash(upload.content_hash)
            if not self._call(lambda: self.store.exists(ref), "exists"):
                raise PreconditionFailed(f"Evidence {ref} not found in store")
            size = len(self._call(lambda: self.store.get(ref), "get"))

        log.debug("Resolved evidence", content_hash=ref, size=size, type=upload.evidence_type.value)
        return EvidenceItem(
            evidence_type=upload.evidence_type,
            content_hash=ref,
            size=size,
            submitted_at=utc_now(),
            filename=upload.filename,
        )

    def resolve(self, uploads: Sequence[DocumentUpload]) -> List[EvidenceItem]:
        return [self.resolve_one(u) for u in uploads]
