"""In-memory adapters for tests and embedding.

Documents are held as serialized payloads, so a load always returns a fresh
object and derived values are recomputed exactly as with the SQL store.

Provides:
- InMemoryDocumentRepository: DocumentRepository with a hash-chained audit list
- InMemoryBlobStore: BlobStore issuing HMAC-signed, expiring URLs
"""

import hashlib
import hmac
import time
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Optional, Sequence
from uuid import uuid4

from sstcore.core.config import Config, load_config
from sstcore.core.documents import (
    AnyDocument,
    DocumentKind,
    FollowUpItem,
    dump_document,
    kind_of,
    parse_document,
)
from sstcore.core.errors import DocumentNotFound, RepositoryError, StaleWrite

from .base import AuditEvent
from .models import canonical_event_data, compute_entry_hash


class InMemoryDocumentRepository:
    def __init__(self):
        self._lock = RLock()
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._follow_ups: dict[str, dict[str, dict[str, Any]]] = {}
        self.audit_entries: list[dict[str, Any]] = []

    async def load(self, kind: DocumentKind, document_id: str) -> AnyDocument:
        kind = DocumentKind(kind)
        with self._lock:
            payload = self._documents.get((kind.value, document_id))
        if payload is None:
            raise DocumentNotFound(kind.value, document_id)
        return parse_document(payload)

    async def save(
        self,
        document: AnyDocument,
        expected_version: Optional[int],
        audit: Optional[AuditEvent] = None,
    ) -> AnyDocument:
        return (await self.save_all([(document, expected_version)], audit))[0]

    async def save_all(
        self,
        items: Sequence[tuple[AnyDocument, Optional[int]]],
        audit: Optional[AuditEvent] = None,
    ) -> list[AnyDocument]:
        with self._lock:
            # Check every version before writing anything
            for document, expected in items:
                self._check_version(document, expected)

            stored = []
            for document, expected in items:
                copy = document.model_copy(deep=True)
                copy.version = (expected or 0) + 1
                self._documents[(kind_of(copy).value, copy.id)] = dump_document(copy)
                stored.append(copy)

            if audit is not None:
                self._append_audit(audit)
        return stored

    def _check_version(self, document: AnyDocument, expected: Optional[int]) -> None:
        key = (kind_of(document).value, document.id)
        current = self._documents.get(key)
        actual = current["version"] if current is not None else None
        if expected is None:
            if current is not None:
                raise StaleWrite(document.id, None, actual)
            return
        if current is None:
            raise DocumentNotFound(key[0], document.id)
        if actual != expected:
            raise StaleWrite(document.id, expected, actual)

    def _append_audit(self, audit: AuditEvent) -> None:
        previous_hash = self.audit_entries[-1]["entry_hash"] if self.audit_entries else None
        entry = {
            "timestamp": datetime.now(timezone.utc),
            "event_type": audit.event_type,
            "document_id": audit.document_id,
            "actor": audit.actor,
            "event_data": canonical_event_data(audit.event_data),
            "previous_hash": previous_hash,
        }
        entry["entry_hash"] = compute_entry_hash(**entry)
        self.audit_entries.append(entry)

    async def verify_audit_chain(self) -> bool:
        with self._lock:
            previous_hash = None
            for entry in self.audit_entries:
                fields = {key: value for key, value in entry.items() if key != "entry_hash"}
                if entry["entry_hash"] != compute_entry_hash(**fields):
                    return False
                if entry["previous_hash"] != previous_hash:
                    return False
                previous_hash = entry["entry_hash"]
        return True

    async def list_follow_ups(self, exam_id: str) -> list[FollowUpItem]:
        with self._lock:
            items = list(self._follow_ups.get(exam_id, {}).values())
        return [FollowUpItem.model_validate(item) for item in items]

    async def save_follow_up(self, item: FollowUpItem) -> FollowUpItem:
        with self._lock:
            self._follow_ups.setdefault(item.exam_id, {})[item.id] = item.model_dump(mode="json")
        return item

    async def delete_follow_up(self, exam_id: str, item_id: str) -> None:
        with self._lock:
            items = self._follow_ups.get(exam_id, {})
            if item_id not in items:
                raise DocumentNotFound("follow-up", item_id)
            del items[item_id]


class InMemoryBlobStore:
    """Blob store keeping bytes in a dict.

    Signed URLs carry an expiry timestamp and an HMAC over reference and
    expiry; ``verify_signed_url`` checks both.
    """

    def __init__(self, secret: str = "dev-secret", base_url: str = "memory://blobs"):
        self._secret = secret.encode("utf-8")
        self._base_url = base_url
        self._lock = RLock()
        self._blobs: dict[str, tuple[bytes, str]] = {}

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "InMemoryBlobStore":
        """Build a store signing URLs with the configured secret."""
        config = config or load_config()
        return cls(secret=config.blob_signing_secret)

    async def put(self, data: bytes, content_type: str) -> str:
        reference = uuid4().hex
        with self._lock:
            self._blobs[reference] = (bytes(data), content_type)
        return reference

    def get(self, reference: str) -> tuple[bytes, str]:
        with self._lock:
            if reference not in self._blobs:
                raise RepositoryError(f"Blob {reference} not found")
            return self._blobs[reference]

    def _signature(self, reference: str, expires: int) -> str:
        message = f"{reference}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def get_signed_url(self, reference: str, ttl_seconds: int) -> str:
        with self._lock:
            if reference not in self._blobs:
                raise RepositoryError(f"Blob {reference} not found")
        expires = int(time.time()) + int(ttl_seconds)
        return f"{self._base_url}/{reference}?expires={expires}&signature={self._signature(reference, expires)}"

    def verify_signed_url(self, url: str, now: Optional[float] = None) -> bool:
        """True when the URL was issued by this store and has not expired."""
        path, _, query = url.partition("?")
        reference = path.rsplit("/", 1)[-1]
        params = dict(part.split("=", 1) for part in query.split("&") if "=" in part)
        try:
            expires = int(params.get("expires", ""))
        except ValueError:
            return False
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(params.get("signature", ""), self._signature(reference, expires))
