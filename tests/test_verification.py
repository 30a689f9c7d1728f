# =============================================================================
# Unit Tests — Document Verification Orchestrator
# =============================================================================
#
# Tests the per-key state machine without API keys or a database.
# The verification gateway is an AsyncMock; the store is the in-memory one.
#
# Test groups:
#   1. submit_document / get_document
#   2. verify_document outcomes (Verified, Failed, legacy path)
#   3. In-flight guard (409) and stale takeover
#   4. Gateway failures → verification_unavailable
#   5. Cancellation releases the claim
#   6. Verdict policy
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.agents.policy import ConfidenceThresholdPolicy
from app.agents.verification import (
    VERIFICATION_UNAVAILABLE,
    DocumentVerificationOrchestrator,
)
from app.errors import (
    ConflictError,
    GatewayAuthError,
    GatewayTimeoutError,
    NotFoundError,
    UpstreamMalformedResponseError,
)
from app.services.document_store import (
    DocumentStatus,
    DocumentType,
    FileMeta,
    InMemoryDocumentStore,
)
from app.services.verifier import Verdict


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class _Clock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


ID_PNG = FileMeta(
    original_name="id.png",
    mime_type="image/png",
    size_bytes=2048,
    storage_path="data/uploads/u1/1700000000000.png",
)


def _verdict(valid: bool = True, confidence: int = 95, reason: str = "ok"):
    return Verdict(is_valid_id=valid, confidence=confidence, reason=reason)


def _make(gateway=None, store=None, clock=None, events=None, **kwargs):
    if gateway is None:
        gateway = AsyncMock()
        gateway.call = AsyncMock(return_value=_verdict())
    store = store or InMemoryDocumentStore()
    orchestrator = DocumentVerificationOrchestrator(
        store=store,
        gateway=gateway,
        policy=ConfidenceThresholdPolicy(70),
        events=events or MagicMock(),
        ai_verified_types=["identity"],
        timeout_seconds=kwargs.pop("timeout_seconds", 5),
        stale_after_seconds=kwargs.pop("stale_after_seconds", 300),
        clock=clock or _Clock(),
    )
    return orchestrator, gateway, store


# ---------------------------------------------------------------------------
# 1. Submit & Get
# ---------------------------------------------------------------------------


class TestSubmitDocument:
    def test_submit_creates_pending_record(self):
        orchestrator, _, _ = _make()
        record = _run(orchestrator.submit_document(
            "u1", DocumentType.IDENTITY, ID_PNG,
        ))
        assert record.status is DocumentStatus.PENDING
        assert record.file_meta == ID_PNG
        assert record.verdict is None
        assert record.verified_at is None

    def test_submit_without_file_is_not_found(self):
        orchestrator, _, _ = _make()
        with pytest.raises(NotFoundError):
            _run(orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, None,
            ))

    def test_resubmit_replaces_verified_record(self):
        """A new upload resets the lifecycle and drops the old verdict."""
        orchestrator, _, _ = _make()

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            new_file = replace(ID_PNG, original_name="id-back.png")
            return await orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, new_file,
            )

        record = _run(scenario())
        assert record.status is DocumentStatus.PENDING
        assert record.file_meta.original_name == "id-back.png"
        assert record.verdict is None

    def test_submit_while_verifying_is_conflict(self):
        orchestrator, _, store = _make()

        async def scenario():
            record = await orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, ID_PNG,
            )
            await store.set(replace(
                record,
                status=DocumentStatus.VERIFYING,
                verifying_since=_Clock().now,
            ))
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)

        with pytest.raises(ConflictError):
            _run(scenario())

    def test_keys_are_independent(self):
        orchestrator, _, _ = _make()

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.submit_document("u2", DocumentType.ADDRESS, ID_PNG)
            return (
                await orchestrator.get_document("u1", DocumentType.IDENTITY),
                await orchestrator.get_document("u2", DocumentType.ADDRESS),
            )

        first, second = _run(scenario())
        assert (first.user_id, first.document_type) == ("u1", DocumentType.IDENTITY)
        assert (second.user_id, second.document_type) == ("u2", DocumentType.ADDRESS)

    def test_get_missing_is_not_found(self):
        orchestrator, _, _ = _make()
        with pytest.raises(NotFoundError):
            _run(orchestrator.get_document("u1", DocumentType.IDENTITY))

    def test_submit_emits_event(self):
        events = MagicMock()
        orchestrator, _, _ = _make(events=events)
        _run(orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG))
        events.emit.assert_any_call(
            "document.submitted",
            user_id="u1",
            document_type="identity",
            mime_type="image/png",
            size_bytes=2048,
        )


# ---------------------------------------------------------------------------
# 2. Verification Outcomes
# ---------------------------------------------------------------------------


class TestVerifyDocument:
    def test_id_png_scenario(self):
        """Upload id.png for u1, model says valid at 95 → Verified."""
        orchestrator, gateway, _ = _make()

        async def scenario():
            pending = await orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, ID_PNG,
            )
            assert pending.status is DocumentStatus.PENDING
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.VERIFIED
        assert record.verdict.confidence == 95
        assert record.verdict.is_valid is True
        assert record.verdict.reason == "ok"
        assert record.verified_at is not None
        assert record.verifying_since is None

        request = gateway.call.await_args.args[0]
        assert request.document_name == "id.png"
        assert request.mime_type == "image/png"

    def test_invalid_verdict_is_failed_with_timestamp(self):
        gateway = AsyncMock()
        gateway.call = AsyncMock(
            return_value=_verdict(False, 88, "no security features"),
        )
        orchestrator, _, _ = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.FAILED
        assert record.verified_at is not None
        assert record.verdict.is_valid is False
        assert record.verdict.reason == "no security features"

    def test_failed_record_can_be_reverified(self):
        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=[
            _verdict(False, 40, "blurry"),
            _verdict(True, 91, "clear"),
        ])
        orchestrator, _, _ = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            first = await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            second = await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            return first, second

        first, second = _run(scenario())
        assert first.status is DocumentStatus.FAILED
        assert second.status is DocumentStatus.VERIFIED
        assert second.verdict.confidence == 91
        assert gateway.call.await_count == 2

    def test_verified_record_is_not_checked_again(self):
        """A second verify returns the Verified record; the model is asked once."""
        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=[
            _verdict(True, 95, "ok"),
            _verdict(False, 90, "looks forged"),
        ])
        orchestrator, _, store = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            first = await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            second = await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            stored = await store.get("u1", DocumentType.IDENTITY)
            return first, second, stored

        first, second, stored = _run(scenario())
        assert first.status is DocumentStatus.VERIFIED
        assert second == first
        assert stored.status is DocumentStatus.VERIFIED
        assert stored.verdict.confidence == 95
        assert gateway.call.await_count == 1

    def test_verify_missing_is_not_found(self):
        orchestrator, gateway, _ = _make()
        with pytest.raises(NotFoundError):
            _run(orchestrator.verify_document("u1", DocumentType.IDENTITY))
        gateway.call.assert_not_awaited()

    def test_legacy_type_is_verified_without_model_call(self):
        orchestrator, gateway, _ = _make()

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.ADDRESS, ID_PNG)
            return await orchestrator.verify_document("u1", DocumentType.ADDRESS)

        record = _run(scenario())
        assert record.status is DocumentStatus.VERIFIED
        assert record.verdict is None
        assert record.verified_at is not None
        gateway.call.assert_not_awaited()

    def test_low_confidence_is_failed(self):
        gateway = AsyncMock()
        gateway.call = AsyncMock(return_value=_verdict(True, 55, "partly visible"))
        orchestrator, _, _ = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.FAILED
        assert record.verdict.confidence == 55
        assert record.verdict.reason.startswith("low_confidence")

    def test_completed_event_carries_status(self):
        events = MagicMock()
        orchestrator, _, _ = _make(events=events)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        _run(scenario())
        names = [c.args[0] for c in events.emit.call_args_list]
        assert names == [
            "document.submitted",
            "verification.started",
            "verification.completed",
        ]
        assert events.emit.call_args.kwargs["status"] == "Verified"


# ---------------------------------------------------------------------------
# 3. In-Flight Guard
# ---------------------------------------------------------------------------


class TestInFlightGuard:
    def test_concurrent_verify_is_conflict_and_calls_gateway_once(self):
        """Second request while the first is Verifying → 409, no 2nd call."""
        call_count = 0

        async def slow_call(request):
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.05)
            return _verdict()

        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=slow_call)
        orchestrator, _, _ = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            return await asyncio.gather(
                orchestrator.verify_document("u1", DocumentType.IDENTITY),
                orchestrator.verify_document("u1", DocumentType.IDENTITY),
                return_exceptions=True,
            )

        first, second = _run(scenario())
        assert first.status is DocumentStatus.VERIFIED
        assert isinstance(second, ConflictError)
        assert call_count == 1

    def test_observed_state_is_verifying_during_call(self):
        store = InMemoryDocumentStore()
        seen = {}

        async def peek(request):
            record = await store.get("u1", DocumentType.IDENTITY)
            seen["status"] = record.status
            return _verdict()

        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=peek)
        orchestrator, _, _ = _make(gateway=gateway, store=store)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        _run(scenario())
        assert seen["status"] is DocumentStatus.VERIFYING

    def test_stale_claim_is_taken_over(self):
        clock = _Clock()
        orchestrator, gateway, store = _make(clock=clock, stale_after_seconds=60)

        async def scenario():
            record = await orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, ID_PNG,
            )
            # Simulate a process that died mid-call
            await store.set(replace(
                record,
                status=DocumentStatus.VERIFYING,
                verifying_since=clock.now,
            ))
            clock.advance(61)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.VERIFIED
        gateway.call.assert_awaited_once()

    def test_fresh_claim_is_not_taken_over(self):
        clock = _Clock()
        orchestrator, gateway, store = _make(clock=clock, stale_after_seconds=60)

        async def scenario():
            record = await orchestrator.submit_document(
                "u1", DocumentType.IDENTITY, ID_PNG,
            )
            await store.set(replace(
                record,
                status=DocumentStatus.VERIFYING,
                verifying_since=clock.now,
            ))
            clock.advance(30)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        with pytest.raises(ConflictError):
            _run(scenario())
        gateway.call.assert_not_awaited()

    def test_resubmit_during_call_discards_verdict(self):
        """A record replaced mid-call is not overwritten by the old verdict."""
        events = MagicMock()
        store = InMemoryDocumentStore()

        async def replace_during_call(request):
            record = await store.get("u1", DocumentType.IDENTITY)
            await store.set(replace(record, status=DocumentStatus.PENDING))
            return _verdict()

        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=replace_during_call)
        orchestrator, _, _ = _make(gateway=gateway, store=store, events=events)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        with pytest.raises(ConflictError):
            _run(scenario())
        names = [c.args[0] for c in events.emit.call_args_list]
        assert "verification.discarded" in names


# ---------------------------------------------------------------------------
# 4. Gateway Failures
# ---------------------------------------------------------------------------


class TestGatewayFailures:
    @pytest.mark.parametrize("error", [
        GatewayTimeoutError("verification", "request timed out"),
        GatewayAuthError("verification", "rejected credentials (401)"),
        UpstreamMalformedResponseError("verification", "reply is not a verdict"),
    ])
    def test_gateway_error_is_failed_unavailable(self, error):
        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=error)
        events = MagicMock()
        orchestrator, _, _ = _make(gateway=gateway, events=events)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.FAILED
        assert record.verdict.reason == VERIFICATION_UNAVAILABLE
        assert record.verdict.confidence == 0
        assert record.verified_at is not None
        names = [c.args[0] for c in events.emit.call_args_list]
        assert "verification.unavailable" in names

    def test_slow_gateway_times_out(self):
        async def hang(request):
            await asyncio.sleep(10)

        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=hang)
        orchestrator, _, _ = _make(gateway=gateway, timeout_seconds=0.01)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.FAILED
        assert record.verdict.reason == VERIFICATION_UNAVAILABLE

    def test_unavailable_record_can_be_retried(self):
        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=[
            GatewayTimeoutError("verification", "request timed out"),
            _verdict(),
        ])
        orchestrator, _, _ = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            return await orchestrator.verify_document("u1", DocumentType.IDENTITY)

        assert _run(scenario()).status is DocumentStatus.VERIFIED


# ---------------------------------------------------------------------------
# 5. Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancelled_verify_restores_previous_state(self):
        started = None

        async def hang(request):
            started.set()
            await asyncio.sleep(10)

        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=hang)
        orchestrator, _, store = _make(gateway=gateway, timeout_seconds=30)

        async def scenario():
            nonlocal started
            started = asyncio.Event()
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            task = asyncio.create_task(
                orchestrator.verify_document("u1", DocumentType.IDENTITY),
            )
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await store.get("u1", DocumentType.IDENTITY)

        record = _run(scenario())
        assert record.status is DocumentStatus.PENDING
        assert record.verifying_since is None

    def test_unexpected_error_releases_claim(self):
        gateway = AsyncMock()
        gateway.call = AsyncMock(side_effect=RuntimeError("bug"))
        orchestrator, _, store = _make(gateway=gateway)

        async def scenario():
            await orchestrator.submit_document("u1", DocumentType.IDENTITY, ID_PNG)
            with pytest.raises(RuntimeError):
                await orchestrator.verify_document("u1", DocumentType.IDENTITY)
            return await store.get("u1", DocumentType.IDENTITY)

        assert _run(scenario()).status is DocumentStatus.PENDING


# ---------------------------------------------------------------------------
# 6. Verdict Policy
# ---------------------------------------------------------------------------


class TestConfidenceThresholdPolicy:
    def test_valid_above_threshold_is_verified(self):
        status, verdict = ConfidenceThresholdPolicy(70).classify(_verdict(True, 70))
        assert status is DocumentStatus.VERIFIED
        assert verdict.is_valid is True

    def test_valid_below_threshold_is_failed(self):
        status, verdict = ConfidenceThresholdPolicy(70).classify(_verdict(True, 69))
        assert status is DocumentStatus.FAILED
        assert verdict.is_valid is False
        assert verdict.reason == "low_confidence: ok"

    def test_invalid_is_failed_regardless_of_confidence(self):
        status, verdict = ConfidenceThresholdPolicy(0).classify(
            _verdict(False, 100, "not an ID"),
        )
        assert status is DocumentStatus.FAILED
        assert verdict.reason == "not an ID"

    def test_threshold_must_be_a_percentage(self):
        with pytest.raises(ValueError):
            ConfidenceThresholdPolicy(101)
