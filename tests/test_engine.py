from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

import pytest

from conftest import BASE_DATE, make_record, make_system
from record_recon.audit.sink import AuditSink, InMemoryAuditSink
from record_recon.config import MatchingConfig, ReconConfig
from record_recon.locking import BatchLockRegistry
from record_recon.matching.engine import ReconciliationEngine
from record_recon.models.record import (
    AuditAction,
    AuditEntity,
    AuditEvent,
    MatchType,
    RecordStatus,
)
from record_recon.store.memory import InMemoryRecordStore
from record_recon.utils.exceptions import (
    BatchNotFoundError,
    ConcurrentRunConflictError,
    InternalFailureError,
    PersistenceFailureError,
    RecordWriteConflictError,
)

EngineFactory = Callable[[InMemoryRecordStore], ReconciliationEngine]


def _mixed_store() -> InMemoryRecordStore:
    return InMemoryRecordStore(
        [
            make_system("S1", "T1", reference_number="R1", amount=100),
            make_system("S2", "T2", reference_number="R2", amount=200),
            make_system("S3", "T3", reference_number="R3", amount=300),
            make_record("U1", "T1", reference_number="R1", amount=100),
            make_record("U2", "T2", reference_number="R2", amount="201.00"),
            make_record("U3", "T9", reference_number="R9", amount=50),
            make_record("U4", "D1", reference_number="R4", amount=10),
            make_record("U5", "D1", reference_number="R4", amount=10),
            make_record("X1", "T3", reference_number="R3", amount=300, batch_ref="batch-2"),
        ]
    )


def test_unknown_batch_raises_and_creates_no_result(
    store: InMemoryRecordStore, engine_factory: EngineFactory, audit_sink: InMemoryAuditSink
) -> None:
    store.add_records([make_system("S1", "T1")])
    engine = engine_factory(store)

    with pytest.raises(BatchNotFoundError) as excinfo:
        engine.reconcile("missing", "user-1")

    assert excinfo.value.batch_ref == "missing"
    assert excinfo.value.phase == "load"
    assert store.get_result("missing") is None
    assert [e.action for e in audit_sink.events] == [AuditAction.RECONCILE_FAILED]
    assert not engine.locks.is_locked("missing")


def test_mixed_batch_classification(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    result = engine_factory(store).reconcile("batch-1", "user-1")

    summary = result.summary
    assert summary.total_records == 5
    assert summary.matched == 1
    assert summary.partially_matched == 1
    assert summary.unmatched == 1
    assert summary.duplicates == 2
    assert summary.duplicate_group_count == 1
    assert summary.accuracy_percentage == 50

    assert [(m.uploaded_record_id, m.system_record_id, m.match_type) for m in result.matches] == [
        ("U1", "S1", MatchType.EXACT),
        ("U2", "S2", MatchType.PARTIAL),
    ]
    assert result.unmatched_records == ["U3"]
    assert [(g.key, g.record_ids, g.count) for g in result.duplicate_groups] == [
        ("D1", ["U4", "U5"], 2)
    ]

    assert store.get_record("U1").status == RecordStatus.MATCHED
    assert store.get_record("U2").status == RecordStatus.PARTIALLY_MATCHED
    assert store.get_record("U3").status == RecordStatus.UNMATCHED
    assert store.get_record("U4").status == RecordStatus.DUPLICATE
    # Other batches are untouched
    assert store.get_record("X1").status == RecordStatus.PENDING


def test_match_details_written_to_records(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    engine_factory(store).reconcile("batch-1", "user-1")

    exact = store.get_record("U1")
    assert exact.match_details.matched_with == "S1"
    assert exact.match_details.match_type == MatchType.EXACT
    assert exact.match_details.confidence_score == 100
    assert exact.version == 2
    assert exact.last_modified_by == "user-1"

    partial = store.get_record("U2")
    assert partial.match_details.matched_with == "S2"
    assert partial.match_details.variance_amount == Decimal("1.00")
    assert partial.match_details.variance_percentage == pytest.approx(0.5)
    assert partial.match_details.confidence_score == pytest.approx(99.9)

    assert store.get_record("U3").match_details is None

    duplicate = store.get_record("U5")
    assert duplicate.match_details is None
    assert duplicate.is_duplicate
    assert duplicate.duplicate_group == "D1"


def test_system_records_are_never_mutated(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    before = store.fetch_system_records()

    engine_factory(store).reconcile("batch-1", "user-1")

    assert store.fetch_system_records() == before


def test_duplicate_pair_is_excluded_from_matching(engine_factory: EngineFactory) -> None:
    store = InMemoryRecordStore(
        [
            make_record("U1", "A1", reference_number="R1", amount=100),
            make_record("U2", "A1", reference_number="R1", amount=100),
            make_system("S1", "A1", reference_number="R1", amount=100),
        ]
    )

    result = engine_factory(store).reconcile("batch-1", "user-1")

    assert result.summary.matched == 0
    assert result.summary.partially_matched == 0
    assert result.summary.unmatched == 0
    assert result.summary.duplicate_group_count == 1
    assert result.summary.duplicates == 2
    assert result.summary.accuracy_percentage == 0
    assert result.matches == []


def test_duplicate_members_are_never_scored(
    engine_factory: EngineFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = InMemoryRecordStore(
        [
            make_record("U1", "A1"),
            make_record("U2", "A1"),
            make_record("U3", "A1"),
            make_record("U4", "B1"),
            make_system("S1", "A1"),
        ]
    )
    engine = engine_factory(store)
    matched_ids: list[str] = []
    original_match = engine.matcher.match

    def spy(uploaded, system_records):
        matched_ids.append(uploaded.id)
        return original_match(uploaded, system_records)

    monkeypatch.setattr(engine.matcher, "match", spy)

    result = engine.reconcile("batch-1", "user-1")

    assert matched_ids == ["U4"]
    assert len(result.duplicate_groups) == 1
    assert result.duplicate_groups[0].count == 3


def test_variance_over_tolerance_is_unmatched(engine_factory: EngineFactory) -> None:
    store = InMemoryRecordStore(
        [
            make_record("U1", "B1", reference_number="R2", amount=103),
            make_system("S1", "B1", reference_number="R2", amount=100),
        ]
    )

    result = engine_factory(store).reconcile("batch-1", "user-1")

    assert result.summary.unmatched == 1
    assert result.matches == []
    assert store.get_record("U1").status == RecordStatus.UNMATCHED


def test_rerun_replaces_result_with_identical_summary(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    engine = engine_factory(store)

    first = engine.reconcile("batch-1", "user-1")
    second = engine.reconcile("batch-1", "user-1")

    assert second.summary == first.summary
    assert second.id != first.id
    assert store.get_result("batch-1").id == second.id
    assert store.get_record("U1").version == 3


def test_rules_applied_snapshot(store: InMemoryRecordStore, audit_sink: InMemoryAuditSink) -> None:
    config = ReconConfig(matching=MatchingConfig(partial_match_threshold=90))
    store.add_records([make_record("U1", "T1")])
    engine = ReconciliationEngine(config, store, audit_sink=audit_sink)

    result = engine.reconcile("batch-1", "user-1")
    config.matching.partial_match_threshold = 50

    stored = store.get_result("batch-1")
    assert stored.rules_applied["partial_match_threshold"] == 90
    assert stored.rules_applied["amount_variance_percentage"] == 2
    assert stored.rules_applied["field_weights"]["transaction_id"] == 40
    assert result.processing_time >= 0
    assert result.completed_at >= result.started_at


def test_audit_events_per_transition_and_summary(
    engine_factory: EngineFactory, audit_sink: InMemoryAuditSink
) -> None:
    store = _mixed_store()
    result = engine_factory(store).reconcile("batch-1", "user-1")

    updates = [e for e in audit_sink.events if e.action == AuditAction.UPDATE]
    summaries = [e for e in audit_sink.events if e.action == AuditAction.RECONCILE]

    assert [e.entity_id for e in updates] == ["U1", "U2", "U3", "U4", "U5"]
    assert all(e.entity == AuditEntity.RECORD for e in updates)
    assert all(e.actor_id == "user-1" for e in updates)
    assert updates[0].old_value == {"status": "pending", "version": 1}
    assert updates[0].new_value["status"] == "matched"
    assert updates[0].new_value["version"] == 2
    assert updates[3].new_value == {"status": "duplicate", "version": 2}

    assert len(summaries) == 1
    assert summaries[0].entity_id == result.id
    assert summaries[0].new_value == result.summary.to_dict()


def test_rerun_audit_records_prior_status(
    engine_factory: EngineFactory, audit_sink: InMemoryAuditSink
) -> None:
    store = _mixed_store()
    engine = engine_factory(store)
    engine.reconcile("batch-1", "user-1")
    audit_sink.events.clear()

    engine.reconcile("batch-1", "user-2")

    first_update = next(e for e in audit_sink.events if e.entity_id == "U1")
    assert first_update.old_value == {"status": "matched", "version": 2}
    assert first_update.actor_id == "user-2"


def test_concurrent_run_for_same_batch_is_rejected(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    engine = engine_factory(store)
    engine.locks.acquire("batch-1", owner="worker-1")
    try:
        with pytest.raises(ConcurrentRunConflictError) as excinfo:
            engine.reconcile("batch-1", "user-1")
    finally:
        engine.locks.release("batch-1")

    assert excinfo.value.batch_ref == "batch-1"
    assert store.get_record("U1").status == RecordStatus.PENDING
    assert store.get_result("batch-1") is None
    assert engine.reconcile("batch-1", "user-1").summary.matched == 1


def test_engines_sharing_locks_serialize_one_batch(
    recon_config: ReconConfig, audit_sink: InMemoryAuditSink
) -> None:
    store = _mixed_store()
    locks = BatchLockRegistry()
    first = ReconciliationEngine(recon_config, store, audit_sink=audit_sink, locks=locks)
    second = ReconciliationEngine(recon_config, store, audit_sink=audit_sink, locks=locks)

    locks.acquire("batch-1")
    with pytest.raises(ConcurrentRunConflictError):
        second.reconcile("batch-1")
    locks.release("batch-1")

    # A different batch is not blocked
    locks.acquire("batch-1")
    assert first.reconcile("batch-2").summary.matched == 1
    locks.release("batch-1")


def test_distinct_batches_reconcile_in_parallel(engine_factory: EngineFactory) -> None:
    store = _mixed_store()
    engine = engine_factory(store)
    results = {}
    errors: list[Exception] = []

    def run(batch_ref: str) -> None:
        try:
            results[batch_ref] = engine.reconcile(batch_ref, "worker")
        except Exception as e:  # pragma: no cover - surfaced by assertion below
            errors.append(e)

    threads = [threading.Thread(target=run, args=(ref,)) for ref in ("batch-1", "batch-2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert results["batch-1"].summary.total_records == 5
    assert results["batch-2"].summary.matched == 1


class ConflictingStore(InMemoryRecordStore):
    """Bumps a record's version behind the engine's back a set number of times."""

    def __init__(self, records, conflict_id: str, conflicts: int):
        super().__init__(records)
        self.conflict_id = conflict_id
        self.conflicts = conflicts

    def update_record(self, record_id, **kwargs):
        if record_id == self.conflict_id and self.conflicts > 0:
            self.conflicts -= 1
            raise RecordWriteConflictError(
                f"Version conflict on record {record_id}",
                record_id=record_id,
                expected_version=kwargs["expected_version"],
                actual_version=kwargs["expected_version"] + 1,
            )
        return super().update_record(record_id, **kwargs)


def test_write_conflict_is_retried_once(
    recon_config: ReconConfig, audit_sink: InMemoryAuditSink
) -> None:
    store = ConflictingStore(
        [make_system("S1", "T1"), make_record("U1", "T1"), make_record("U2", "T2")],
        conflict_id="U1",
        conflicts=1,
    )
    engine = ReconciliationEngine(recon_config, store, audit_sink=audit_sink)

    result = engine.reconcile("batch-1", "user-1")

    assert result.summary.matched == 1
    assert store.get_record("U1").status == RecordStatus.MATCHED
    assert len([e for e in audit_sink.events if e.entity_id == "U1"]) == 1


def test_persistent_write_conflict_fails_and_reverts(
    recon_config: ReconConfig, audit_sink: InMemoryAuditSink
) -> None:
    store = ConflictingStore(
        [make_system("S1", "T1"), make_record("U1", "T1"), make_record("U2", "T2")],
        conflict_id="U2",
        conflicts=2,
    )
    engine = ReconciliationEngine(recon_config, store, audit_sink=audit_sink)

    with pytest.raises(RecordWriteConflictError) as excinfo:
        engine.reconcile("batch-1", "user-1")

    assert excinfo.value.batch_ref == "batch-1"
    assert excinfo.value.phase == "match"
    reverted = store.get_record("U1")
    assert reverted.status == RecordStatus.PENDING
    assert reverted.match_details is None
    assert reverted.version == 3
    assert store.get_result("batch-1") is None

    actions = [e.action for e in audit_sink.events]
    assert actions == [AuditAction.UPDATE, AuditAction.REVERT, AuditAction.RECONCILE_FAILED]


class FailingResultStore(InMemoryRecordStore):
    def upsert_result(self, result):
        raise OSError("disk full")


def test_persistence_failure_leaves_no_result(
    recon_config: ReconConfig, audit_sink: InMemoryAuditSink
) -> None:
    store = FailingResultStore(
        [make_system("S1", "T1"), make_record("U1", "T1"), make_record("U2", "T1")]
        + [make_record("U3", "T3")]
    )
    engine = ReconciliationEngine(recon_config, store, audit_sink=audit_sink)

    with pytest.raises(PersistenceFailureError) as excinfo:
        engine.reconcile("batch-1", "user-1")

    assert excinfo.value.phase == "persist"
    assert "disk full" in str(excinfo.value)
    assert store.get_result("batch-1") is None
    for record_id in ("U1", "U2", "U3"):
        record = store.get_record(record_id)
        assert record.status == RecordStatus.PENDING
        assert not record.is_duplicate
        assert record.duplicate_group is None
    assert not engine.locks.is_locked("batch-1")


def test_unexpected_error_is_wrapped(
    engine_factory: EngineFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = _mixed_store()
    engine = engine_factory(store)

    def boom(*args, **kwargs):
        raise RuntimeError("scorer exploded")

    monkeypatch.setattr(engine.matcher, "match", boom)

    with pytest.raises(InternalFailureError) as excinfo:
        engine.reconcile("batch-1", "user-1")

    assert excinfo.value.phase == "match"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    # No record is left classified after the failure
    assert store.status_counts("batch-1") == {"pending": 5}


class BrokenSink(AuditSink):
    def emit(self, event: AuditEvent) -> None:
        raise ConnectionError("audit backend down")


def test_audit_failure_does_not_abort_run(recon_config: ReconConfig) -> None:
    store = _mixed_store()
    engine = ReconciliationEngine(recon_config, store, audit_sink=BrokenSink())

    result = engine.reconcile("batch-1", "user-1")

    assert result.summary.matched == 1
    assert store.get_result("batch-1") is not None


def test_audit_disabled(audit_sink: InMemoryAuditSink) -> None:
    config = ReconConfig(audit={"enabled": False})
    engine = ReconciliationEngine(config, _mixed_store(), audit_sink=audit_sink)

    engine.reconcile("batch-1", "user-1")

    assert audit_sink.events == []


def test_result_serializes_to_json(engine_factory: EngineFactory) -> None:
    result = engine_factory(_mixed_store()).reconcile("batch-1", "user-1")

    data = json.loads(json.dumps(result.to_dict()))

    assert data["batch_ref"] == "batch-1"
    assert data["summary"]["accuracy_percentage"] == 50
    assert data["matches"][1]["mismatched_fields"] == [
        {
            "field": "amount",
            "uploaded_value": "201.00",
            "system_value": "200",
            "variance": "1.00",
            "variance_percentage": 0.5,
        }
    ]
    assert data["duplicate_groups"] == [{"key": "D1", "record_ids": ["U4", "U5"], "count": 2}]
    assert data["unmatched_records"] == ["U3"]


def test_engines_without_explicit_locks_share_batch_locks(recon_config: ReconConfig) -> None:
    store = _mixed_store()
    scheduled = ReconciliationEngine(recon_config, store)
    manual_retry = ReconciliationEngine(recon_config, store)

    scheduled.locks.acquire("batch-1", owner="scheduler")
    try:
        with pytest.raises(ConcurrentRunConflictError):
            manual_retry.reconcile("batch-1", "user-1")
    finally:
        scheduled.locks.release("batch-1")

    assert store.get_record("U1").status == RecordStatus.PENDING
    assert manual_retry.reconcile("batch-1", "user-1").summary.matched == 1


def test_aware_upload_date_matches_naive_system_date(engine_factory: EngineFactory) -> None:
    store = InMemoryRecordStore(
        [
            make_system("S1", "T1", date=BASE_DATE),
            make_record("U1", "T1", date=BASE_DATE.replace(tzinfo=timezone.utc)),
            make_record(
                "U2",
                "T2",
                date=datetime(2024, 3, 15, 12, 30, tzinfo=timezone(timedelta(hours=2))),
            ),
            make_system("S2", "T2", date=BASE_DATE),
        ]
    )

    result = engine_factory(store).reconcile("batch-1", "user-1")

    assert result.summary.matched == 2
    assert [m.match_type for m in result.matches] == [MatchType.EXACT, MatchType.EXACT]
