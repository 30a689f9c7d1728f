# =============================================================================
# Documents API — Upload, Status and Verification
# =============================================================================
#
# ENDPOINTS:
#   POST /documents/upload               — Save file, record it as Pending
#   GET  /documents/{document_type}      — Current record for this user
#   POST /documents/{document_type}/verify — Run one verification attempt
#
# The upload handler only stores the bytes and hands the file metadata to
# the orchestrator. Every state transition lives in
# app/agents/verification.py.
#
# DESIGN DECISION: 200 for a Failed verification.
# A document the model rejects (or could not check) is a normal business
# outcome, not a server error. The client reads `status` and
# `verdict.reason`. Only "nothing uploaded" (404) and "already being
# verified" (409) are HTTP errors.
# =============================================================================

from __future__ import annotations

import logging
import time
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from app.agents.verification import DocumentVerificationOrchestrator
from app.api.deps import get_current_user, get_verification_orchestrator
from app.config import settings
from app.errors import ConflictError, NotFoundError
from app.models.responses import (
    DocumentView,
    UploadResponse,
    VerdictView,
    VerifyResponse,
)
from app.services.document_store import DocumentStatus, DocumentType, FileMeta

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

_VERIFY_MESSAGES = {
    DocumentStatus.VERIFIED: "Document verified successfully",
    DocumentStatus.FAILED: "Document could not be verified",
}


# ---------------------------------------------------------------------------
# POST /documents/upload — Upload an identity or address document
# ---------------------------------------------------------------------------


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=201,
    summary="Upload a document for later verification",
)
async def upload_document(
    document: UploadFile | None = File(
        default=None,
        description="Scan or photo of the document (max 10 MB)",
    ),
    document_type: DocumentType = Form(..., alias="type"),
    user_id: str = Depends(get_current_user),
    orchestrator: DocumentVerificationOrchestrator = Depends(
        get_verification_orchestrator,
    ),
) -> UploadResponse:
    """
    Save the uploaded file and record it as Pending.

    Re-uploading replaces the previous record and deletes its file, unless
    a verification for the same document type is still in flight (409).
    """
    if document is None or not document.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await document.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Limit is "
            f"{settings.max_upload_bytes // (1024 * 1024)} MB.",
        )

    # Timestamp name avoids collisions between re-uploads of "id.png"
    user_dir = Path(settings.upload_dir) / user_id
    user_dir.mkdir(parents=True, exist_ok=True)
    storage_path = (
        user_dir / f"{int(time.time() * 1000)}{Path(document.filename).suffix}"
    )
    storage_path.write_bytes(content)

    logger.info(
        "Saved upload: %s (%d bytes) → %s",
        document.filename, len(content), storage_path,
    )

    file_meta = FileMeta(
        original_name=document.filename,
        mime_type=document.content_type or "application/octet-stream",
        size_bytes=len(content),
        storage_path=str(storage_path),
    )

    try:
        previous = await orchestrator.get_document(user_id, document_type)
    except NotFoundError:
        previous = None

    try:
        record = await orchestrator.submit_document(
            user_id, document_type, file_meta,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictError as e:
        storage_path.unlink(missing_ok=True)
        raise HTTPException(status_code=409, detail=str(e)) from e

    if previous is not None and previous.file_meta.storage_path != str(storage_path):
        Path(previous.file_meta.storage_path).unlink(missing_ok=True)
        logger.info("Removed replaced upload: %s", previous.file_meta.storage_path)

    return UploadResponse(document=DocumentView.from_record(record))


# ---------------------------------------------------------------------------
# GET /documents/{document_type} — Current record
# ---------------------------------------------------------------------------


@router.get(
    "/{document_type}",
    response_model=DocumentView,
    summary="Get the current document record",
)
async def get_document(
    document_type: DocumentType,
    user_id: str = Depends(get_current_user),
    orchestrator: DocumentVerificationOrchestrator = Depends(
        get_verification_orchestrator,
    ),
) -> DocumentView:
    try:
        record = await orchestrator.get_document(user_id, document_type)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return DocumentView.from_record(record)


# ---------------------------------------------------------------------------
# POST /documents/{document_type}/verify — Run verification
# ---------------------------------------------------------------------------


@router.post(
    "/{document_type}/verify",
    response_model=VerifyResponse,
    summary="Verify a previously uploaded document",
    description=(
        "Identity documents are checked by a vision-capable model; other "
        "types are accepted on request. Returns 200 with status Verified "
        "or Failed."
    ),
)
async def verify_document(
    document_type: DocumentType,
    user_id: str = Depends(get_current_user),
    orchestrator: DocumentVerificationOrchestrator = Depends(
        get_verification_orchestrator,
    ),
) -> VerifyResponse:
    logger.info(
        "Verify request: user=%s, document_type=%s",
        user_id, document_type.value,
    )

    try:
        record = await orchestrator.verify_document(user_id, document_type)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    verdict = None
    if record.verdict is not None:
        verdict = VerdictView(
            is_valid=record.verdict.is_valid,
            confidence=record.verdict.confidence,
            reason=record.verdict.reason,
        )

    return VerifyResponse(
        status=record.status.value,
        verdict=verdict,
        verified_at=record.verified_at,
        message=_VERIFY_MESSAGES.get(record.status, record.status.value),
    )
