# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from domain records.
# DocumentRecord carries the storage path and CAS version; neither is
# any of the client's business. The views below expose status, verdict
# and timestamps only.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.services.document_store import DocumentRecord


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class VerdictView(BaseModel):
    """Verdict of the last verification attempt."""

    is_valid: bool = Field(serialization_alias="isValid")
    confidence: int = Field(ge=0, le=100)
    reason: str

    model_config = ConfigDict(populate_by_name=True)


class DocumentView(BaseModel):
    """Client-facing view of a document record."""

    document_type: str = Field(serialization_alias="documentType")
    status: str = Field(
        description="Pending, Verifying, Verified or Failed",
    )
    original_name: str = Field(serialization_alias="originalName")
    mime_type: str = Field(serialization_alias="mimeType")
    size_bytes: int = Field(serialization_alias="sizeBytes")
    verdict: VerdictView | None = None
    verified_at: datetime | None = Field(
        default=None, serialization_alias="verifiedAt",
    )

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentView":
        verdict = None
        if record.verdict is not None:
            verdict = VerdictView(
                is_valid=record.verdict.is_valid,
                confidence=record.verdict.confidence,
                reason=record.verdict.reason,
            )
        return cls(
            document_type=record.document_type.value,
            status=record.status.value,
            original_name=record.file_meta.original_name,
            mime_type=record.file_meta.mime_type,
            size_bytes=record.file_meta.size_bytes,
            verdict=verdict,
            verified_at=record.verified_at,
        )


class UploadResponse(BaseModel):
    """Response for POST /documents/upload."""

    message: str = "Document uploaded successfully"
    document: DocumentView


class VerifyResponse(BaseModel):
    """
    Response for POST /documents/{type}/verify.

    A Failed status is a normal outcome (200), with `verdict.reason`
    explaining why.
    """

    status: str
    verdict: VerdictView | None = None
    verified_at: datetime | None = Field(
        default=None, serialization_alias="verifiedAt",
    )
    message: str

    model_config = ConfigDict(populate_by_name=True)


class ChatResponse(BaseModel):
    """Response for POST /chat."""

    response: str
