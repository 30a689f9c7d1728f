# =============================================================================
# Document Verification Orchestrator — Per-Key State Machine
# =============================================================================
#
# Owns the lifecycle of each (user_id, document_type) record:
#
#   submit ──▶ PENDING ──verify──▶ VERIFYING ──▶ VERIFIED
#                 ▲                    │    └──▶ FAILED ──verify──┐
#                 │                    │                          │
#                 └─── submit ─────────┘ (not while in flight)    │
#                                      ▲──────────────────────────┘
#
# VERIFIED is terminal: only a new submit moves the key out of it.
#
# FLOW (verify_document):
#   1. Read the record; 404 if absent, 409 if already VERIFYING
#   2. Already VERIFIED: return it as is, no gateway call
#   3. Claim it: compare-and-set into VERIFYING on the version just read.
#      Losing the race is also a 409: the other request owns the call.
#   4. Ask the verification gateway (AI-verified types only)
#   5. Classify the verdict with the VerdictPolicy
#   6. Compare-and-set the terminal state on the version claimed in (3)
#
# DESIGN DECISION: Upload and verify are separate operations.
# A failed verification can be retried without re-uploading the file,
# and the 409 guard stops a double-click from paying for two model calls.
#
# DESIGN DECISION: Gateway failures are outcomes, not errors.
# Timeout, auth failure, transport error or an unreadable reply all end in
# FAILED with reason "verification_unavailable". The caller always gets a
# definite state back. Nothing is retried here.
#
# DESIGN DECISION: Stale claims expire.
# A record left in VERIFYING by a crashed process would otherwise be
# locked forever. After verification_stale_after_seconds a new request
# may take it over.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from app.agents.policy import ConfidenceThresholdPolicy, VerdictPolicy
from app.config import settings
from app.errors import ConflictError, GatewayError, NotFoundError
from app.services.document_store import (
    DocumentRecord,
    DocumentStatus,
    DocumentStore,
    DocumentType,
    DocumentVerdict,
    FileMeta,
)
from app.services.events import EventSink, LoggingEventSink
from app.services.verifier import VerificationGateway, VerificationRequest

logger = logging.getLogger(__name__)

VERIFICATION_UNAVAILABLE = "verification_unavailable"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DocumentVerificationOrchestrator:
    """
    Entry point for document submission and verification.

    Args:
        store: Keyed record store (the only shared mutable state).
        gateway: Verification gateway for AI-verified document types.
        policy: Maps gateway verdicts to VERIFIED/FAILED.
        events: Observability hook.
        ai_verified_types: Document types that go through the gateway.
            Others are marked VERIFIED on request (legacy behaviour).
        timeout_seconds: Upper bound on one gateway call.
        stale_after_seconds: Age after which a VERIFYING claim is abandoned.
        clock: Injectable time source (tests).
    """

    def __init__(
        self,
        store: DocumentStore,
        gateway: VerificationGateway,
        policy: VerdictPolicy | None = None,
        events: EventSink | None = None,
        ai_verified_types: Iterable[str] | None = None,
        timeout_seconds: float | None = None,
        stale_after_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._policy = policy or ConfidenceThresholdPolicy(
            settings.verification_min_confidence,
        )
        self._events = events or LoggingEventSink()
        self._ai_verified_types = frozenset(
            ai_verified_types
            if ai_verified_types is not None
            else settings.ai_verified_document_types
        )
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.verification_timeout_seconds
        )
        self._stale_after = timedelta(
            seconds=stale_after_seconds
            if stale_after_seconds is not None
            else settings.verification_stale_after_seconds
        )
        self._clock = clock

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def submit_document(
        self,
        user_id: str,
        document_type: DocumentType,
        file_meta: FileMeta | None,
    ) -> DocumentRecord:
        """
        Create or overwrite the record for this key in PENDING.

        Raises:
            NotFoundError: No uploaded file is associated with the request.
            ConflictError: A verification for this key is in flight.
        """
        if file_meta is None:
            raise NotFoundError(
                f"No uploaded file for {document_type.value} document",
            )

        current = await self._store.get(user_id, document_type)
        if current is not None and self._in_flight(current):
            raise ConflictError(
                f"{document_type.value} document is being verified",
            )

        record = DocumentRecord(
            user_id=user_id,
            document_type=document_type,
            status=DocumentStatus.PENDING,
            file_meta=file_meta,
        )
        stored = await self._store.compare_and_set(
            record, current.version if current else None,
        )
        if stored is None:
            raise ConflictError(
                f"{document_type.value} document changed concurrently",
            )

        self._events.emit(
            "document.submitted",
            user_id=user_id,
            document_type=document_type.value,
            mime_type=file_meta.mime_type,
            size_bytes=file_meta.size_bytes,
        )
        return stored

    async def get_document(
        self, user_id: str, document_type: DocumentType,
    ) -> DocumentRecord:
        record = await self._store.get(user_id, document_type)
        if record is None:
            raise NotFoundError(f"No {document_type.value} document found")
        return record

    async def verify_document(
        self, user_id: str, document_type: DocumentType,
    ) -> DocumentRecord:
        """
        Run one verification attempt and return the terminal record.

        A record that is already VERIFIED is returned unchanged, so a
        repeated request never re-runs the check or downgrades the result.

        Raises:
            NotFoundError: Nothing was uploaded for this key.
            ConflictError: Another attempt for this key is in flight.
        """
        current = await self._store.get(user_id, document_type)
        if current is None:
            raise NotFoundError(f"No {document_type.value} document found")
        if self._in_flight(current):
            raise ConflictError(
                f"{document_type.value} document is already being verified",
            )
        if current.status is DocumentStatus.VERIFIED:
            logger.info(
                "Already verified: (%s, %s)", user_id, document_type.value,
            )
            return current
        if current.status is DocumentStatus.VERIFYING:
            logger.warning(
                "Taking over stale verification for (%s, %s) started at %s",
                user_id, document_type.value, current.verifying_since,
            )

        claimed = await self._store.compare_and_set(
            replace(
                current,
                status=DocumentStatus.VERIFYING,
                verifying_since=self._clock(),
            ),
            current.version,
        )
        if claimed is None:
            raise ConflictError(
                f"{document_type.value} document is already being verified",
            )

        self._events.emit(
            "verification.started",
            user_id=user_id,
            document_type=document_type.value,
            previous_status=current.status.value,
        )

        if document_type.value in self._ai_verified_types:
            try:
                status, verdict = await self._ask_gateway(claimed)
            except BaseException:
                # Cancelled request or a bug below the gateway contract:
                # drop the claim so the key is not left VERIFYING
                await self._release(claimed, current)
                raise
        else:
            # Legacy path: no model call, accepted on request
            status, verdict = DocumentStatus.VERIFIED, None

        finished = replace(
            claimed,
            status=status,
            verdict=verdict,
            verified_at=self._clock(),
            verifying_since=None,
        )
        stored = await self._store.compare_and_set(finished, claimed.version)
        if stored is None:
            self._events.emit(
                "verification.discarded",
                user_id=user_id,
                document_type=document_type.value,
            )
            raise ConflictError(
                f"{document_type.value} document changed during verification",
            )

        self._events.emit(
            "verification.completed",
            user_id=user_id,
            document_type=document_type.value,
            status=stored.status.value,
            confidence=verdict.confidence if verdict else None,
        )
        return stored

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _in_flight(self, record: DocumentRecord) -> bool:
        """True if the record is VERIFYING and the claim has not gone stale."""
        if record.status is not DocumentStatus.VERIFYING:
            return False
        if record.verifying_since is None:
            return True
        return self._clock() - record.verifying_since < self._stale_after

    async def _ask_gateway(
        self, record: DocumentRecord,
    ) -> tuple[DocumentStatus, DocumentVerdict]:
        request = VerificationRequest(
            document_name=record.file_meta.original_name,
            mime_type=record.file_meta.mime_type,
        )
        try:
            verdict = await asyncio.wait_for(
                self._gateway.call(request), timeout=self._timeout,
            )
        except (GatewayError, TimeoutError) as e:
            self._events.emit(
                "verification.unavailable",
                user_id=record.user_id,
                document_type=record.document_type.value,
                error=type(e).__name__,
                detail=str(e),
            )
            return DocumentStatus.FAILED, DocumentVerdict(
                is_valid=False, confidence=0, reason=VERIFICATION_UNAVAILABLE,
            )

        return self._policy.classify(verdict)

    async def _release(
        self, claimed: DocumentRecord, previous: DocumentRecord,
    ) -> None:
        """Undo a claim whose gateway call never produced an outcome."""
        restored_status = (
            DocumentStatus.PENDING
            if previous.status is DocumentStatus.VERIFYING
            else previous.status
        )
        restored = replace(
            previous, status=restored_status, verifying_since=None,
        )
        if await self._store.compare_and_set(restored, claimed.version) is None:
            logger.warning(
                "Could not release cancelled verification for (%s, %s)",
                claimed.user_id, claimed.document_type.value,
            )
        else:
            logger.info(
                "Verification cancelled for (%s, %s); restored to %s",
                claimed.user_id, claimed.document_type.value,
                restored_status.value,
            )
