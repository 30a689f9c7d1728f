# =============================================================================
# Verdict Policy — Gateway Verdict → Document Status
# =============================================================================
#
# The verification model answers "does this look like a valid ID, how
# sure are you, and why". Turning that into Verified or Failed is a
# business decision, so it lives here behind a Protocol instead of inside
# the orchestrator.
#
# DESIGN DECISION: Confidence threshold as the default policy.
# A model that says "valid" at 40% confidence has not verified anything.
# Such verdicts are Failed, with the reason prefixed `low_confidence:` so
# the user-facing explanation says why.
# =============================================================================

from __future__ import annotations

from typing import Protocol

from app.services.document_store import DocumentStatus, DocumentVerdict
from app.services.verifier import Verdict


class VerdictPolicy(Protocol):
    def classify(self, verdict: Verdict) -> tuple[DocumentStatus, DocumentVerdict]:
        """Return the terminal status and the verdict to record."""
        ...


class ConfidenceThresholdPolicy:
    """Verified iff the model says valid AND confidence >= min_confidence."""

    def __init__(self, min_confidence: int = 70) -> None:
        if not 0 <= min_confidence <= 100:
            raise ValueError("min_confidence must be between 0 and 100")
        self.min_confidence = min_confidence

    def classify(self, verdict: Verdict) -> tuple[DocumentStatus, DocumentVerdict]:
        if not verdict.is_valid_id:
            return DocumentStatus.FAILED, DocumentVerdict(
                is_valid=False,
                confidence=verdict.confidence,
                reason=verdict.reason,
            )

        if verdict.confidence < self.min_confidence:
            return DocumentStatus.FAILED, DocumentVerdict(
                is_valid=False,
                confidence=verdict.confidence,
                reason=f"low_confidence: {verdict.reason}",
            )

        return DocumentStatus.VERIFIED, DocumentVerdict(
            is_valid=True,
            confidence=verdict.confidence,
            reason=verdict.reason,
        )
