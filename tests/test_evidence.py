"""
Evidence reference store tests: content reference format, in-memory and
filesystem stores, and resolution through the timeout-bounded resolver.
"""

import threading

import pytest

from landreg.errors import CollaboratorUnavailable, PreconditionFailed
from landreg.evidence import (
    DocumentUpload,
    EvidenceNotFound,
    EvidenceResolver,
    FileSystemEvidenceStore,
    InMemoryEvidenceStore,
    content_hash,
    is_valid_content_hash,
)
from landreg.models import EvidenceType


class TestContentHash:

    def test_format(self):
        ref = content_hash(b"survey report")
        assert ref.startswith("Qm")
        assert len(ref) == 46
        assert is_valid_content_hash(ref)

    def test_deterministic_and_distinct(self):
        assert content_hash(b"a") == content_hash(b"a")
        assert content_hash(b"a") != content_hash(b"b")

    @pytest.mark.parametrize("bad", [
        "",
        "Qm",
        "Qm" + "0" * 44,           # '0' is not base58
        "Xm" + "1" * 44,
        content_hash(b"x")[:-1],
        None,
    ])
    def test_rejects_malformed(self, bad):
        assert not is_valid_content_hash(bad)


class TestInMemoryStore:

    def test_put_get_exists(self):
        store = InMemoryEvidenceStore()
        ref = store.put(b"deed", "deed.pdf")
        assert store.exists(ref)
        assert store.get(ref) == b"deed"
        assert store.name_of(ref) == "deed.pdf"

    def test_put_is_idempotent(self):
        store = InMemoryEvidenceStore()
        assert store.put(b"deed") == store.put(b"deed")
        assert len(store) == 1

    def test_missing(self):
        store = InMemoryEvidenceStore()
        with pytest.raises(EvidenceNotFound):
            store.get(content_hash(b"never stored"))


class TestFileSystemStore:

    def test_roundtrip_on_disk(self, tmp_path):
        store = FileSystemEvidenceStore(tmp_path / "cas")
        ref = store.put(b"survey", "survey.pdf")
        assert (tmp_path / "cas" / ref[2:4] / ref).read_bytes() == b"survey"
        assert store.exists(ref)
        assert store.get(ref) == b"survey"

    def test_reopen_sees_existing(self, tmp_path):
        ref = FileSystemEvidenceStore(tmp_path).put(b"tax receipt")
        assert FileSystemEvidenceStore(tmp_path).exists(ref)

    def test_malformed_reference(self, tmp_path):
        store = FileSystemEvidenceStore(tmp_path)
        assert not store.exists("../../etc/passwd")
        with pytest.raises(ValueError):
            store.get("../../etc/passwd")

    def test_no_temp_files_left(self, tmp_path):
        store = FileSystemEvidenceStore(tmp_path)
        store.put(b"one")
        store.put(b"two")
        assert not list(tmp_path.rglob(".tmp-*"))


class _HangingStore(InMemoryEvidenceStore):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def put(self, data, name=""):
        self.release.wait(5)
        return super().put(data, name)


class _BrokenStore(InMemoryEvidenceStore):
    def put(self, data, name=""):
        raise OSError("disk unavailable")

    def exists(self, ref):
        raise OSError("disk unavailable")


class TestResolver:

    def test_resolves_uploads(self):
        store = InMemoryEvidenceStore()
        resolver = EvidenceResolver(store)
        items = resolver.resolve([
            DocumentUpload(EvidenceType.PROPERTY_DEED, data=b"deed", filename="deed.pdf"),
            DocumentUpload(EvidenceType.SURVEY_REPORT, data=b"survey"),
        ])
        assert [i.evidence_type for i in items] == [EvidenceType.PROPERTY_DEED, EvidenceType.SURVEY_REPORT]
        assert all(store.exists(i.content_hash) for i in items)
        assert items[0].size == 4
        assert items[0].filename == "deed.pdf"

    def test_resolves_existing_reference(self):
        store = InMemoryEvidenceStore()
        ref = store.put(b"already uploaded")
        item = EvidenceResolver(store).resolve_one(
            DocumentUpload(EvidenceType.OWNERSHIP_PROOF, content_hash=ref)
        )
        assert item.content_hash == ref
        assert item.size == len(b"already uploaded")

    def test_unknown_reference(self):
        resolver = EvidenceResolver(InMemoryEvidenceStore())
        with pytest.raises(PreconditionFailed):
            resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, content_hash=content_hash(b"ghost")))

    def test_malformed_reference(self):
        resolver = EvidenceResolver(InMemoryEvidenceStore())
        with pytest.raises(PreconditionFailed):
            resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, content_hash="QmNotAHash"))

    def test_oversized_document(self):
        resolver = EvidenceResolver(InMemoryEvidenceStore(), max_document_bytes=8)
        with pytest.raises(PreconditionFailed):
            resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, data=b"123456789"))

    def test_empty_document(self):
        resolver = EvidenceResolver(InMemoryEvidenceStore())
        with pytest.raises(PreconditionFailed):
            resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, data=b""))

    def test_timeout_is_collaborator_unavailable(self):
        store = _HangingStore()
        resolver = EvidenceResolver(store, timeout_seconds=0.05)
        try:
            with pytest.raises(CollaboratorUnavailable) as exc_info:
                resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, data=b"slow"))
        finally:
            store.release.set()
        assert exc_info.value.retryable

    def test_store_error_is_collaborator_unavailable(self):
        resolver = EvidenceResolver(_BrokenStore())
        with pytest.raises(CollaboratorUnavailable):
            resolver.resolve_one(DocumentUpload(EvidenceType.OTHER, data=b"x"))

    def test_upload_needs_exactly_one_source(self):
        with pytest.raises(ValueError):
            DocumentUpload(EvidenceType.OTHER)
        with pytest.raises(ValueError):
            DocumentUpload(EvidenceType.OTHER, data=b"x", content_hash=content_hash(b"x"))
