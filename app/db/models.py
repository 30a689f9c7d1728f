# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌───────────────────────────────────────────┐
# │  document_records                         │
# ├───────────────────────────────────────────┤
# │ user_id (PK)                              │
# │ document_type (PK)   identity | address   │
# │ status               Pending | Verifying  │
# │                      | Verified | Failed  │
# │ original_name, mime_type,                 │
# │ size_bytes, storage_path   (file meta)    │
# │ verdict_is_valid, verdict_confidence,     │
# │ verdict_reason             (nullable)     │
# │ verified_at, verifying_since              │
# │ version              CAS counter          │
# └───────────────────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. Composite primary key (user_id, document_type): one record per key
#    is enforced by the database, so a racing INSERT fails loudly.
#
# 2. `version` column: every write bumps it. Compare-and-set is a plain
#    `UPDATE ... WHERE version = :expected`, atomic on every backend.
#
# 3. status stored as the enum's string value (not a DB enum type) so new
#    states or document types need no migration.
# =============================================================================

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class DocumentRecordRow(Base):
    """Persisted form of app.services.document_store.DocumentRecord."""

    __tablename__ = "document_records"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    document_type: Mapped[str] = mapped_column(String(50), primary_key=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # File metadata as produced by the upload handler
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Verdict (null until the record reaches Verified or Failed)
    verdict_is_valid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    verdict_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    verdict_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    verifying_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<DocumentRecordRow(user_id={self.user_id!r}, "
            f"document_type={self.document_type!r}, status={self.status!r}, "
            f"version={self.version})>"
        )
