"""Unit tests for the hash-chained ledger.

Test organisation
-----------------
- :class:`TestAppend`          — chain linking, dense indices, immutability gate.
- :class:`TestSealing`         — range digests, sealed copies, idempotent seal check.
- :class:`TestVerifyIntegrity` — collect-all chain walk and failure events.
- :class:`TestQueries`         — get / query / stats / last_hash.
- :class:`TestExportRestore`   — snapshot shape and restore.
- :class:`TestConcurrency`     — parallel appends never fork the chain.
"""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from mint_pipeline.core.events import Events
from mint_pipeline.errors import NotImmutableError
from mint_pipeline.ledger import (
    GENESIS_HASH,
    HashChainedLedger,
    content_hash,
    range_digest,
    verify_chain,
)


def _fill(ledger: HashChainedLedger, token_builder, count: int, start: int = 0) -> None:
    for n in range(start, start + count):
        ledger.append(token_builder(n))


# ── Append ────────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestAppend:
    def test_first_entry_links_to_genesis(self, ledger, token_builder) -> None:
        entry = ledger.append(token_builder(0))

        assert entry.index == 0
        assert entry.previous_hash == GENESIS_HASH
        assert GENESIS_HASH == "0" * 64

    def test_hash_covers_the_five_content_fields(self, ledger, token_builder) -> None:
        token = token_builder(3)
        entry = ledger.append(token)

        assert entry.hash == content_hash(
            token.id, token.token_type, token.owner, token.value, token.timestamp
        )
        assert len(entry.hash) == 64

    def test_each_entry_links_to_its_predecessor(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 4)
        entries = ledger.entries()

        assert [e.index for e in entries] == [0, 1, 2, 3]
        for prev, cur in zip(entries, entries[1:]):
            assert cur.previous_hash == prev.hash
        assert ledger.last_hash == entries[-1].hash

    def test_mutable_token_is_refused_and_nothing_appended(self, ledger, token_builder) -> None:
        with pytest.raises(NotImmutableError):
            ledger.append(token_builder(0, immutable=False))

        assert len(ledger) == 0
        assert ledger.last_hash == GENESIS_HASH

    def test_append_emits_entry_appended(self, ledger, bus, token_builder) -> None:
        entry = ledger.append(token_builder(0))

        events = bus.get_event_log(event_type=Events.LEDGER_ENTRY_APPENDED)
        assert len(events) == 1
        assert events[0].detail["entry"] == entry
        assert events[0].meta.source == "ledger"

    def test_custom_hasher_is_used(self, bus, clock, token_builder) -> None:
        ledger = HashChainedLedger(
            10, hasher=lambda *fields: "h:" + str(fields[0]), bus=bus, clock=clock
        )
        entry = ledger.append(token_builder(7))

        assert entry.hash == "h:ALC_0007"

    def test_seal_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            HashChainedLedger(0)


# ── Sealing ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestSealing:
    def test_two_hundred_fifty_appends_with_interval_100(self, bus, clock, token_builder) -> None:
        ledger = HashChainedLedger(100, bus=bus, clock=clock)
        _fill(ledger, token_builder, 250)

        digests = ledger.digests()
        assert [(d.range_start, d.range_end) for d in digests] == [(0, 99), (100, 199)]
        assert all(d.entry_count == 100 for d in digests)

        entries = ledger.entries()
        assert all(e.sealed for e in entries[:200])
        assert not any(e.sealed for e in entries[200:])
        assert entries[150].batch_digest_id == digests[1].digest_id
        assert entries[249].batch_digest_id is None

    def test_digest_hash_is_range_digest_of_entry_hashes(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 5)

        (digest,) = ledger.digests()
        hashes = [e.hash for e in ledger.entries()]
        assert digest.digest_hash == range_digest(hashes)
        assert digest.digest_id == "digest-00000000-00000004"

    def test_sealing_keeps_content_and_links(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 4)
        before = ledger.entries()
        ledger.append(token_builder(4))
        after = ledger.entries()

        for old, new in zip(before, after):
            assert new.sealed and not old.sealed
            assert replace(new, sealed=False, batch_digest_id=None) == old

    def test_append_returns_sealed_copy_when_it_completes_a_range(
        self, ledger, token_builder
    ) -> None:
        _fill(ledger, token_builder, 4)
        entry = ledger.append(token_builder(4))

        assert entry.sealed is True
        assert entry.batch_digest_id == "digest-00000000-00000004"

    def test_seal_check_is_idempotent(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 12)

        assert ledger.seal_pending() == []
        assert ledger.seal_pending() == []
        assert len(ledger.digests()) == 2

    def test_seal_emits_range_sealed(self, ledger, bus, token_builder) -> None:
        _fill(ledger, token_builder, 10)

        sealed = bus.get_event_log(event_type=Events.LEDGER_RANGE_SEALED)
        assert [e.detail["digest"].range_start for e in sealed] == [0, 5]

    def test_verify_digests_reports_nothing_for_honest_ledger(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 10)

        assert ledger.verify_digests() == []


# ── Verification ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestVerifyIntegrity:
    def test_empty_ledger_is_valid(self, ledger) -> None:
        report = ledger.verify_integrity()

        assert report.valid is True
        assert report.total_entries == 0
        assert report.errors == ()

    def test_honest_chain_is_valid(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 7)

        report = ledger.verify_integrity()
        assert report.valid is True
        assert report.verified_count == 6

    def test_every_break_is_reported(self, ledger, bus, token_builder) -> None:
        _fill(ledger, token_builder, 8)
        # Corrupt two links directly; the public API cannot do this.
        ledger._entries[2] = replace(ledger._entries[2], previous_hash="x" * 64)
        ledger._entries[6] = replace(ledger._entries[6], previous_hash="y" * 64)

        report = ledger.verify_integrity()

        assert report.valid is False
        assert [e.index for e in report.errors] == [2, 6]
        assert report.errors[0].expected == ledger.entries()[1].hash
        assert report.errors[0].actual == "x" * 64
        assert report.errors[0].error == "Hash chain broken"
        assert report.verified_count == 5

        failed = bus.get_event_log(event_type=Events.LEDGER_INTEGRITY_FAILED)
        assert failed[-1].detail == {"errors": 2, "first_broken_index": 2}

    def test_verify_chain_matches_live_result(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 6)

        assert verify_chain(ledger.entries()) == ledger.verify_integrity()

    def test_tampered_hash_breaks_digest_and_next_link(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 6)
        ledger._entries[1] = replace(ledger._entries[1], hash="f" * 64)

        assert [e.index for e in ledger.verify_integrity().errors] == [2]
        mismatches = ledger.verify_digests()
        assert [m.digest_id for m in mismatches] == ["digest-00000000-00000004"]


# ── Queries ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestQueries:
    @pytest.fixture
    def mixed(self, ledger, token_builder) -> HashChainedLedger:
        ledger.append(token_builder(0, owner="alice"))
        ledger.append(token_builder(1, owner="bob"))
        ledger.append(token_builder(2, owner="alice", token_type="CREDIT"))
        ledger.append(token_builder(3, owner="bob", token_type="CREDIT"))
        return ledger

    def test_query_filters_are_conjunctive(self, mixed) -> None:
        result = mixed.query(owner="alice", token_type="CREDIT")

        assert [e.index for e in result] == [2]

    def test_query_index_bounds_are_inclusive(self, mixed) -> None:
        assert [e.index for e in mixed.query(from_index=1, to_index=2)] == [1, 2]

    def test_query_without_filters_returns_everything(self, mixed) -> None:
        assert len(mixed.query()) == 4

    def test_get_by_token_id(self, mixed) -> None:
        assert mixed.get("ALC_0001").owner == "bob"
        assert mixed.get("missing") is None

    def test_stats(self, mixed) -> None:
        stats = mixed.stats()

        assert stats["total_entries"] == 4
        assert stats["total_value"] == pytest.approx(1 + 2 + 3 + 4)
        assert stats["by_type"] == {"ALC": 2, "CREDIT": 2}
        assert stats["digests"] == 0
        assert stats["unsealed_entries"] == 4
        assert stats["integrity"] is True


# ── Export / restore ──────────────────────────────────────────────────────────


@pytest.mark.unit
class TestExportRestore:
    def test_snapshot_shape(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 7)

        snapshot = ledger.export_ledger()

        assert snapshot["version"] == "1.0.0"
        assert snapshot["seal_interval"] == 5
        assert snapshot["genesis_hash"] == GENESIS_HASH
        assert len(snapshot["entries"]) == 7
        assert len(snapshot["digests"]) == 1
        assert snapshot["stats"]["total_entries"] == 7

    def test_restore_continues_the_chain(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 7)

        restored = HashChainedLedger.restore(ledger.entries(), ledger.digests(), 5)
        restored.append(token_builder(7))
        restored.append(token_builder(8))
        restored.append(token_builder(9))

        assert restored.verify_integrity().valid
        assert [(d.range_start, d.range_end) for d in restored.digests()] == [(0, 4), (5, 9)]

    def test_restore_rejects_gapped_indices(self, ledger, token_builder) -> None:
        _fill(ledger, token_builder, 3)
        entries = ledger.entries()

        with pytest.raises(ValueError):
            HashChainedLedger.restore([entries[0], entries[2]], [], 5)


# ── Concurrency ───────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestConcurrency:
    def test_parallel_appends_form_one_chain(self, bus, clock, token_builder) -> None:
        ledger = HashChainedLedger(10, bus=bus, clock=clock)

        def worker(offset: int) -> None:
            for n in range(offset, offset + 25):
                ledger.append(token_builder(n))

        threads = [threading.Thread(target=worker, args=(i * 25,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger) == 100
        assert ledger.verify_integrity().valid
        assert len(ledger.digests()) == 10
        sequences = [
            e.meta.sequence for e in bus.get_event_log(event_type=Events.LEDGER_ENTRY_APPENDED)
        ]
        assert sequences == sorted(sequences)
