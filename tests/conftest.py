from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable
import logging

import pytest

from record_recon.audit.sink import InMemoryAuditSink
from record_recon.config import MatchingConfig, ReconConfig
from record_recon.matching.engine import ReconciliationEngine
from record_recon.models.record import Record, RecordSource
from record_recon.store.memory import InMemoryRecordStore

BASE_DATE = datetime(2024, 3, 15, 10, 30, 0)


@pytest.fixture(autouse=True)
def _reset_logging():
    # The CLI attaches handlers bound to the runner's streams
    yield
    logger = logging.getLogger("record_recon")
    logger.handlers = []
    logger.setLevel(logging.NOTSET)


def make_record(
    record_id: str,
    transaction_id: str,
    reference_number: str = "R1",
    amount: str | int | Decimal = 100,
    date: datetime = BASE_DATE,
    *,
    batch_ref: str | None = "batch-1",
) -> Record:
    source = RecordSource.UPLOAD if batch_ref else RecordSource.SYSTEM
    return Record(
        id=record_id,
        source=source,
        transaction_id=transaction_id,
        reference_number=reference_number,
        amount=Decimal(str(amount)),
        date=date,
        batch_ref=batch_ref,
    )


def make_system(record_id: str, transaction_id: str, **kwargs) -> Record:
    return make_record(record_id, transaction_id, batch_ref=None, **kwargs)


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def recon_config() -> ReconConfig:
    return ReconConfig()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def engine_factory(
    recon_config: ReconConfig, audit_sink: InMemoryAuditSink
) -> Callable[[InMemoryRecordStore], ReconciliationEngine]:
    def factory(store: InMemoryRecordStore) -> ReconciliationEngine:
        return ReconciliationEngine(recon_config, store, audit_sink=audit_sink)

    return factory
