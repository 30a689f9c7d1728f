# =============================================================================
# Document Store — Keyed Records with Compare-and-Set
# =============================================================================
#
# Holds one DocumentRecord per (user_id, document_type). The verification
# orchestrator is the only writer.
#
# DESIGN DECISION: Protocol (structural typing) over ABC, like LLMProvider.
# Two implementations share it:
#   - InMemoryDocumentStore — dict guarded by a lock (default)
#   - SqlDocumentStore      — SQLAlchemy async, one row per key
#
# DESIGN DECISION: Versioned compare-and-set instead of locks held across
# awaits. Each successful write bumps `version`. A writer states the
# version it read; if anyone wrote in between, the write is refused and
# the caller decides what that means (usually Conflict). This is what
# makes "at most one verification in flight per key" hold even when two
# requests for the same key interleave.
#
# DESIGN DECISION: Records are frozen dataclasses replaced wholesale.
# A reader gets either the old snapshot or the new one, never a
# half-updated record.
#
# ARCHITECTURE:
#   DocumentStore (Protocol)
#   ├── get()             — snapshot or None
#   ├── set()             — unconditional write (version bumped)
#   └── compare_and_set() — write iff current version == expected
# =============================================================================

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.db.engine import get_session_factory
from app.db.models import DocumentRecordRow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class DocumentType(str, enum.Enum):
    """Kinds of documents a fan can submit. Add members to extend."""

    IDENTITY = "identity"
    ADDRESS = "address"


class DocumentStatus(str, enum.Enum):
    """
    Verification lifecycle of a document.

    State machine:
        PENDING ──▶ VERIFYING ──▶ VERIFIED
                        ▲    └──▶ FAILED
                        └──────────────┘  (retry)
    """

    PENDING = "Pending"
    VERIFYING = "Verifying"
    VERIFIED = "Verified"
    FAILED = "Failed"


@dataclass(frozen=True)
class FileMeta:
    """Where the uploaded file lives. Opaque to the core."""

    original_name: str
    mime_type: str
    size_bytes: int
    storage_path: str


@dataclass(frozen=True)
class DocumentVerdict:
    is_valid: bool
    confidence: int  # 0–100
    reason: str


@dataclass(frozen=True)
class DocumentRecord:
    user_id: str
    document_type: DocumentType
    status: DocumentStatus
    file_meta: FileMeta
    verdict: DocumentVerdict | None = None
    verified_at: datetime | None = None
    verifying_since: datetime | None = None
    version: int = 0


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class DocumentStore(Protocol):
    async def get(
        self, user_id: str, document_type: DocumentType,
    ) -> DocumentRecord | None:
        ...

    async def set(self, record: DocumentRecord) -> DocumentRecord:
        """Write unconditionally. Returns the record as stored."""
        ...

    async def compare_and_set(
        self, record: DocumentRecord, expected_version: int | None,
    ) -> DocumentRecord | None:
        """
        Write `record` only if the stored version equals `expected_version`.

        `expected_version=None` means "only if no record exists yet".

        Returns:
            The stored record (with its new version), or None if the
            stored version did not match and nothing was written.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryDocumentStore:
    """
    Process-local store.

    The lock makes check-and-write atomic even if the store is shared
    across threads (e.g. TestClient or a threadpool dependency). No await
    happens while it is held.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, DocumentType], DocumentRecord] = {}
        self._lock = threading.Lock()

    async def get(
        self, user_id: str, document_type: DocumentType,
    ) -> DocumentRecord | None:
        with self._lock:
            return self._records.get((user_id, document_type))

    async def set(self, record: DocumentRecord) -> DocumentRecord:
        key = (record.user_id, record.document_type)
        with self._lock:
            current = self._records.get(key)
            stored = replace(record, version=(current.version if current else 0) + 1)
            self._records[key] = stored
            return stored

    async def compare_and_set(
        self, record: DocumentRecord, expected_version: int | None,
    ) -> DocumentRecord | None:
        key = (record.user_id, record.document_type)
        with self._lock:
            current = self._records.get(key)
            current_version = current.version if current else None
            if current_version != expected_version:
                return None
            stored = replace(record, version=(expected_version or 0) + 1)
            self._records[key] = stored
            return stored


# ---------------------------------------------------------------------------
# Implementation 2: SQL (SQLAlchemy async)
# ---------------------------------------------------------------------------


class SqlDocumentStore:
    """
    Store backed by the `document_records` table.

    compare_and_set maps onto two atomic SQL primitives:
    - expected_version=None → INSERT; a primary-key clash means someone
      else created the record first
    - otherwise → UPDATE ... WHERE version = :expected; rowcount 0 means
      the version moved
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def get(
        self, user_id: str, document_type: DocumentType,
    ) -> DocumentRecord | None:
        async with self._session_factory() as session:
            row = await session.get(
                DocumentRecordRow, (user_id, document_type.value),
            )
            return _row_to_record(row) if row else None

    async def set(self, record: DocumentRecord) -> DocumentRecord:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(
                    DocumentRecordRow,
                    (record.user_id, record.document_type.value),
                    with_for_update=True,
                )
                stored = replace(record, version=(row.version if row else 0) + 1)
                await session.merge(DocumentRecordRow(**_record_to_values(stored)))
        return stored

    async def compare_and_set(
        self, record: DocumentRecord, expected_version: int | None,
    ) -> DocumentRecord | None:
        stored = replace(record, version=(expected_version or 0) + 1)
        values = _record_to_values(stored)

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if expected_version is None:
                        session.add(DocumentRecordRow(**values))
                    else:
                        result = await session.execute(
                            update(DocumentRecordRow)
                            .where(
                                DocumentRecordRow.user_id == record.user_id,
                                DocumentRecordRow.document_type
                                == record.document_type.value,
                                DocumentRecordRow.version == expected_version,
                            )
                            .values(**values)
                        )
                        if result.rowcount != 1:
                            return None
            except IntegrityError:
                logger.debug(
                    "Insert lost the race for (%s, %s)",
                    record.user_id, record.document_type.value,
                )
                return None
        return stored


def _record_to_values(record: DocumentRecord) -> dict:
    verdict = record.verdict
    return {
        "user_id": record.user_id,
        "document_type": record.document_type.value,
        "status": record.status.value,
        "original_name": record.file_meta.original_name,
        "mime_type": record.file_meta.mime_type,
        "size_bytes": record.file_meta.size_bytes,
        "storage_path": record.file_meta.storage_path,
        "verdict_is_valid": verdict.is_valid if verdict else None,
        "verdict_confidence": verdict.confidence if verdict else None,
        "verdict_reason": verdict.reason if verdict else None,
        "verified_at": record.verified_at,
        "verifying_since": record.verifying_since,
        "version": record.version,
    }


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _row_to_record(row: DocumentRecordRow) -> DocumentRecord:
    verdict = None
    if row.verdict_is_valid is not None:
        verdict = DocumentVerdict(
            is_valid=row.verdict_is_valid,
            confidence=row.verdict_confidence or 0,
            reason=row.verdict_reason or "",
        )
    return DocumentRecord(
        user_id=row.user_id,
        document_type=DocumentType(row.document_type),
        status=DocumentStatus(row.status),
        file_meta=FileMeta(
            original_name=row.original_name,
            mime_type=row.mime_type,
            size_bytes=row.size_bytes,
            storage_path=row.storage_path,
        ),
        verdict=verdict,
        verified_at=_aware(row.verified_at),
        verifying_since=_aware(row.verifying_since),
        version=row.version,
    )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: InMemoryDocumentStore | SqlDocumentStore | None = None


def get_document_store() -> InMemoryDocumentStore | SqlDocumentStore:
    """
    Return the configured store (lazy singleton).

    - "memory" → InMemoryDocumentStore
    - "sql"    → SqlDocumentStore on settings.database_url
    """
    global _store
    if _store is None:
        if settings.document_store_type == "sql":
            _store = SqlDocumentStore()
        else:
            _store = InMemoryDocumentStore()
        logger.info("Document store: %s", type(_store).__name__)
    return _store
