"""Unit tests for the FIFO batch queue.

Test organisation
-----------------
- :class:`TestEnqueue`        — receipts, positions, wait estimates.
- :class:`TestDrain`          — FIFO slicing and the single in-flight slot.
- :class:`TestProcessBatch`   — per-item failure isolation and ledger commits.
- :class:`TestAutoAndFlush`   — auto_process / process_all / clear.
- :class:`TestParallelism`    — thread-pool creation order and timeouts.
- :class:`TestRequestLifecycle` — status transitions.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace

import pytest

from mint_pipeline.batching import (
    BatchQueue,
    MintRequest,
    MintRequestPayload,
    RequestStatus,
)
from mint_pipeline.config import QueueSettings
from mint_pipeline.core.events import Events
from mint_pipeline.errors import (
    BatchInFlightError,
    BatchStateError,
    RequestStateError,
    RequestValidationError,
)
from mint_pipeline.ledger.chain import HashChainedLedger


def _request(n: int, **overrides) -> MintRequestPayload:
    fields = {"token_type": "ALC", "owner": f"user{n}", "amount": float(n + 1)}
    fields.update(overrides)
    return MintRequestPayload(**fields)


def _enqueue(queue: BatchQueue, count: int, **overrides) -> list[str]:
    return [queue.enqueue(_request(n, **overrides)).request_id for n in range(count)]


# ── Enqueue ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestEnqueue:
    def test_receipt_position_and_wait(self, queue: BatchQueue) -> None:
        first = queue.enqueue(_request(0))
        second = queue.enqueue(_request(1))

        assert first.position == 1
        assert second.position == 2
        assert second.estimated_wait == pytest.approx(0.2)
        assert first.request_id != second.request_id
        assert queue.pending_count == 2

    def test_accepts_plain_mapping(self, queue: BatchQueue) -> None:
        receipt = queue.enqueue({"token_type": "ALC", "owner": "alice", "amount": 1})

        assert receipt.position == 1

    def test_bad_mapping_raises_validation_error(self, queue: BatchQueue) -> None:
        with pytest.raises(RequestValidationError):
            queue.enqueue({"token_type": "ALC", "owner": "alice", "amount": -1})

        assert queue.pending_count == 0

    def test_emits_request_enqueued(self, queue: BatchQueue, bus) -> None:
        queue.enqueue(_request(0))

        (event,) = bus.get_event_log(event_type=Events.REQUEST_ENQUEUED)
        assert event.detail["position"] == 1


# ── Drain ─────────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestDrain:
    def test_empty_queue_returns_none(self, queue: BatchQueue) -> None:
        assert queue.drain() is None
        assert queue.in_flight is None

    def test_takes_from_the_front(self, queue: BatchQueue) -> None:
        ids = _enqueue(queue, 12)

        job = queue.drain(10)

        assert [item.request_id for item in job.items] == ids[:10]
        assert queue.pending_count == 2
        assert queue.in_flight is job

    def test_default_size_is_max_batch_size(self, factory, ledger, clock) -> None:
        queue = BatchQueue(factory, ledger, QueueSettings(max_batch_size=4), clock=clock)
        _enqueue(queue, 6)

        assert len(queue.drain()) == 4

    def test_second_drain_while_in_flight_is_rejected(self, queue: BatchQueue) -> None:
        _enqueue(queue, 4)
        job = queue.drain(2)

        with pytest.raises(BatchInFlightError) as exc_info:
            queue.drain(2)

        assert exc_info.value.batch_id == job.batch_id
        assert queue.pending_count == 2

    def test_non_positive_size_rejected(self, queue: BatchQueue) -> None:
        _enqueue(queue, 1)

        with pytest.raises(ValueError):
            queue.drain(0)


# ── process_batch ─────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestProcessBatch:
    def test_twelve_enqueued_drain_ten_fourth_item_fails(
        self, queue: BatchQueue, ledger: HashChainedLedger
    ) -> None:
        for n in range(12):
            amount = 0.001 if n == 3 else 1.0
            queue.enqueue(_request(n, amount=amount))

        job = queue.drain(10)
        result = queue.process_batch(job)

        assert result.size == 10
        assert result.committed_count == 9
        assert result.failed_count == 1
        assert result.failures[0].index == 3
        assert result.failures[0].request_id == job.items[3].request_id
        assert "below the minimum" in result.failures[0].reason
        assert len(ledger) == 9
        assert ledger.verify_integrity().valid
        assert [e.owner for e in ledger.entries()] == [
            f"user{n}" for n in range(10) if n != 3
        ]
        assert queue.pending_count == 2
        assert queue.in_flight is None

    def test_items_reach_terminal_states(self, queue: BatchQueue) -> None:
        queue.enqueue(_request(0))
        queue.enqueue(_request(1, token_type="GENESIS"))
        job = queue.drain()

        result = queue.process_batch(job)

        assert job.items[0].status is RequestStatus.COMMITTED
        assert job.items[0].token_id == result.committed_tokens[0].id
        assert job.items[1].status is RequestStatus.FAILED
        assert "not mintable" in job.items[1].failure_reason

    def test_result_entries_match_ledger(self, queue: BatchQueue, ledger) -> None:
        _enqueue(queue, 3)

        result = queue.process_batch(queue.drain())

        assert [e.token_id for e in result.entries] == [t.id for t in result.committed_tokens]
        assert [e.index for e in result.entries] == [0, 1, 2]

    def test_mutable_token_becomes_item_failure(self, factory, ledger, clock) -> None:
        class MutableCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                token = factory.create_token(token_type, owner, amount, metadata)
                return replace(token, immutable=(owner != "user1"))

        queue = BatchQueue(MutableCreator(), ledger, QueueSettings(), clock=clock)
        _enqueue(queue, 3)

        result = queue.process_batch(queue.drain())

        assert result.committed_count == 2
        assert [f.index for f in result.failures] == [1]
        assert "immutable" in result.failures[0].reason

    def test_processing_a_stale_job_is_rejected(self, queue: BatchQueue) -> None:
        _enqueue(queue, 2)
        job = queue.drain()
        queue.process_batch(job)

        with pytest.raises(BatchStateError):
            queue.process_batch(job)

    def test_creator_exception_is_isolated_to_its_item(self, factory, ledger, clock) -> None:
        class FlakyBackendCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                if owner == "user1":
                    raise ValueError("backend rejected owner")
                return factory.create_token(token_type, owner, amount, metadata)

        queue = BatchQueue(FlakyBackendCreator(), ledger, QueueSettings(), clock=clock)
        _enqueue(queue, 4)
        job = queue.drain()

        result = queue.process_batch(job)

        assert result.committed_count == 3
        assert [f.index for f in result.failures] == [1]
        assert result.failures[0].reason == "ValueError: backend rejected owner"
        assert [e.owner for e in ledger.entries()] == ["user0", "user2", "user3"]
        assert [item.status for item in job.items] == [
            RequestStatus.COMMITTED,
            RequestStatus.FAILED,
            RequestStatus.COMMITTED,
            RequestStatus.COMMITTED,
        ]
        assert queue.in_flight is None

    def test_parallel_creator_exception_is_isolated(self, factory, ledger, clock) -> None:
        class KeyErrorCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                if owner == "user2":
                    raise KeyError("owner")
                return factory.create_token(token_type, owner, amount, metadata)

        queue = BatchQueue(
            KeyErrorCreator(), ledger, QueueSettings(max_parallelism=3), clock=clock
        )
        _enqueue(queue, 4)

        result = queue.process_all()

        assert result.committed_count == 3
        assert [f.index for f in result.failures] == [2]
        assert result.failures[0].reason.startswith("KeyError")

    def test_unexpected_ledger_error_aborts_and_releases_slot(
        self, factory, ledger, clock, monkeypatch
    ) -> None:
        real_append = ledger.append
        calls = []

        def failing_append(token):
            calls.append(token.id)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real_append(token)

        monkeypatch.setattr(ledger, "append", failing_append)
        queue = BatchQueue(factory, ledger, QueueSettings(), clock=clock)
        _enqueue(queue, 3)
        job = queue.drain()

        with pytest.raises(RuntimeError):
            queue.process_batch(job)

        assert queue.in_flight is None
        assert job.items[0].status is RequestStatus.COMMITTED
        assert [item.failure_reason for item in job.items[1:]] == ["aborted", "aborted"]

    def test_concurrent_processing_of_one_job_is_rejected(
        self, factory, ledger, clock
    ) -> None:
        entered = threading.Event()
        release = threading.Event()

        class SlowCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                entered.set()
                release.wait(5)
                return factory.create_token(token_type, owner, amount, metadata)

        queue = BatchQueue(SlowCreator(), ledger, QueueSettings(), clock=clock)
        _enqueue(queue, 2)
        job = queue.drain()
        results = []
        worker = threading.Thread(target=lambda: results.append(queue.process_batch(job)))
        worker.start()
        try:
            assert entered.wait(5)
            with pytest.raises(BatchStateError, match="already being processed"):
                queue.process_batch(job)
            queue.enqueue(_request(9))
            with pytest.raises(BatchInFlightError):
                queue.drain()
        finally:
            release.set()
            worker.join(5)

        (result,) = results
        assert result.committed_count == 2
        assert all(item.status is RequestStatus.COMMITTED for item in job.items)
        assert len(ledger) == 2
        assert queue.in_flight is None

    def test_events(self, queue: BatchQueue, bus) -> None:
        queue.enqueue(_request(0))
        queue.enqueue(_request(1, amount=0.001))

        queue.process_batch(queue.drain())

        assert len(bus.get_event_log(event_type=Events.BATCH_DRAINED)) == 1
        (failed,) = bus.get_event_log(event_type=Events.ITEM_FAILED)
        assert failed.detail["index"] == 1
        (completed,) = bus.get_event_log(event_type=Events.BATCH_COMPLETED)
        assert completed.detail["committed"] == 1
        assert completed.detail["failed"] == 1

    def test_order_preserved_across_batches(self, queue: BatchQueue, ledger) -> None:
        _enqueue(queue, 7)

        queue.process_batch(queue.drain(3))
        queue.process_batch(queue.drain(3))
        queue.process_batch(queue.drain(3))

        assert [e.owner for e in ledger.entries()] == [f"user{n}" for n in range(7)]


# ── auto_process / process_all / clear ────────────────────────────────────────


@pytest.mark.unit
class TestAutoAndFlush:
    def test_auto_process_waits_for_minimum(self, queue: BatchQueue) -> None:
        _enqueue(queue, 2)

        assert queue.auto_process() is None
        assert queue.pending_count == 2

    def test_auto_process_takes_minimum(self, queue: BatchQueue) -> None:
        _enqueue(queue, 5)

        result = queue.auto_process()

        assert result.size == 3
        assert queue.pending_count == 2

    def test_process_all_flushes_everything(self, queue: BatchQueue, ledger) -> None:
        _enqueue(queue, 7)

        result = queue.process_all()

        assert result.size == 7
        assert queue.pending_count == 0
        assert len(ledger) == 7

    def test_process_all_on_empty_queue(self, queue: BatchQueue) -> None:
        assert queue.process_all() is None

    def test_clear_drops_pending_only(self, queue: BatchQueue, bus) -> None:
        _enqueue(queue, 5)
        job = queue.drain(2)

        result = queue.clear()

        assert result.cleared_count == 3
        assert queue.pending_count == 0
        assert queue.in_flight is job
        (event,) = bus.get_event_log(event_type=Events.QUEUE_CLEARED)
        assert event.detail == {"cleared_count": 3}

    def test_history_is_bounded(self, factory, ledger, clock) -> None:
        queue = BatchQueue(factory, ledger, QueueSettings(history_limit=2), clock=clock)
        for _ in range(3):
            _enqueue(queue, 1)
            queue.process_all()

        history = queue.history()
        assert [r.batch_id for r in history] == ["batch-000002", "batch-000003"]
        assert len(queue.history(limit=1)) == 1

    def test_status(self, queue: BatchQueue) -> None:
        _enqueue(queue, 4)
        queue.enqueue(_request(9, amount=0.001))
        queue.process_all()
        _enqueue(queue, 2)

        status = queue.status()

        assert status["pending"] == 2
        assert status["in_flight"] is None
        assert status["processed_batches"] == 1
        assert status["total_committed"] == 4
        assert status["total_failed"] == 1
        assert status["estimated_wait"] == pytest.approx(0.2)


# ── Parallel creation ─────────────────────────────────────────────────────────


@pytest.mark.unit
class TestParallelism:
    def test_parallel_creation_keeps_enqueue_order(self, factory, ledger, clock) -> None:
        class JitteryCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                # Later items finish first.
                time.sleep(0.002 * (20 - int(owner.removeprefix("user"))))
                return factory.create_token(token_type, owner, amount, metadata)

        queue = BatchQueue(
            JitteryCreator(), ledger, QueueSettings(max_parallelism=8), clock=clock
        )
        _enqueue(queue, 20)

        result = queue.process_all()

        assert result.committed_count == 20
        assert [e.owner for e in ledger.entries()] == [f"user{n}" for n in range(20)]
        assert ledger.verify_integrity().valid

    def test_slow_item_times_out(self, factory, ledger, clock) -> None:
        release = threading.Event()

        class StallingCreator:
            def create_token(self, token_type, owner, amount, metadata=None):
                if owner == "user1":
                    release.wait(5)
                return factory.create_token(token_type, owner, amount, metadata)

        queue = BatchQueue(
            StallingCreator(),
            ledger,
            QueueSettings(max_parallelism=2, item_timeout_seconds=0.05),
            clock=clock,
        )
        _enqueue(queue, 3)

        try:
            result = queue.process_all()
        finally:
            release.set()

        assert result.committed_count == 2
        assert [f.index for f in result.failures] == [1]
        assert result.failures[0].reason.startswith("timed out")
        assert [e.owner for e in ledger.entries()] == ["user0", "user2"]


# ── Request lifecycle ─────────────────────────────────────────────────────────


@pytest.mark.unit
class TestRequestLifecycle:
    @pytest.fixture
    def request_record(self, clock) -> MintRequest:
        return MintRequest(
            request_id="req-1",
            token_type="ALC",
            owner="alice",
            amount=1.0,
            metadata={},
            queued_at=clock(),
        )

    def test_legal_path(self, request_record: MintRequest) -> None:
        request_record.mark_processing()
        request_record.mark_committed("ALC_1")

        assert request_record.status is RequestStatus.COMMITTED
        assert request_record.status.is_terminal
        assert request_record.token_id == "ALC_1"

    def test_cannot_skip_processing(self, request_record: MintRequest) -> None:
        with pytest.raises(RequestStateError):
            request_record.mark_committed("ALC_1")

    def test_terminal_states_are_final(self, request_record: MintRequest) -> None:
        request_record.mark_processing()
        request_record.mark_failed("nope")

        with pytest.raises(RequestStateError):
            request_record.mark_processing()
        with pytest.raises(RequestStateError):
            request_record.mark_committed("ALC_1")
