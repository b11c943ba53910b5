import pytest

from variant_engine.jobs.reconciliation import ReconciliationEngine, classify_drift, reconcile_inventory
from variant_engine.models.inventory import (
    DriftSeverity,
    DriftStatus,
    InventoryDriftLog,
    InventoryLedger,
    InventoryMaster,
    TransactionType,
)
from variant_engine.models.variant import ARCHIVED_STATUS, VariantMaster
from variant_engine.schemas.inventory import StockMovement
from variant_engine.schemas.variant import GenerateCombinationsRequest
from variant_engine.services import inventory_service
from variant_engine.services.event_service import (
    CONFIG_HASH_MISMATCH,
    GOVERNANCE_VIOLATION,
    INVENTORY_DRIFT_DETECTED,
    EventSink,
)
from variant_engine.services.generator_service import generate_variant_combinations
from variant_engine.services.hashing import variant_config_hash


@pytest.fixture
def variant_ids(session_factory, catalog, delays):
    params = GenerateCombinationsRequest(
        product_group="PHONE-X",
        product_name="Phone X",
        brand="Acme",
        storage_ids=["64GB", "128GB"],
        color_ids=["black", "blue"],
    )
    result = generate_variant_combinations(session_factory, params, sleep=delays.append)
    return sorted(v.id for v in result.variants)


def _set_total(session_factory, variant_id, total):
    with session_factory() as db:
        db.query(InventoryMaster).filter(InventoryMaster.variant_id == variant_id).update(
            {InventoryMaster.total_stock: total}
        )
        db.commit()


def _add_ledger(session_factory, variant_id, quantity):
    with session_factory() as db:
        db.add(InventoryLedger(
            variant_id=variant_id,
            quantity=quantity,
            transaction_type=TransactionType.STOCK_IN,
            stock_before=0,
            stock_after=quantity,
        ))
        db.commit()


def _drift_logs(session_factory):
    with session_factory() as db:
        return {log.variant_id: log for log in db.query(InventoryDriftLog).all()}


@pytest.mark.parametrize(
    "drift, severity",
    [(1, DriftSeverity.MEDIUM), (50, DriftSeverity.MEDIUM), (51, DriftSeverity.HIGH), (-51, DriftSeverity.HIGH)],
)
def test_classify_drift(drift, severity):
    assert classify_drift(drift, 50) == severity


def test_consistent_inventory_has_no_drift(session_factory, variant_ids):
    with session_factory() as db:
        inventory_service.record_stock_movement(db, variant_ids[0], StockMovement(quantity=100))
        inventory_service.record_stock_movement(db, variant_ids[0], StockMovement(quantity=-30))

    stats = reconcile_inventory(session_factory)

    assert stats.processed == 4
    assert stats.drifts == 0
    assert stats.failed == 0
    assert _drift_logs(session_factory) == {}


def test_moderate_drift_is_recorded_as_medium(session_factory, variant_ids):
    _add_ledger(session_factory, variant_ids[0], 100)
    _set_total(session_factory, variant_ids[0], 120)

    stats = reconcile_inventory(session_factory)

    assert stats.drifts == 1
    log = _drift_logs(session_factory)[variant_ids[0]]
    assert log.expected_stock == 120
    assert log.actual_stock_from_ledger == 100
    assert log.drift == 20
    assert log.severity == DriftSeverity.MEDIUM
    assert log.status == DriftStatus.OPEN
    assert "Difference: 20 units" in log.notes


def test_large_drift_without_ledger_entries_is_high(session_factory, variant_ids):
    _set_total(session_factory, variant_ids[1], 60)

    reconcile_inventory(session_factory)

    log = _drift_logs(session_factory)[variant_ids[1]]
    assert log.actual_stock_from_ledger == 0
    assert log.drift == 60
    assert log.severity == DriftSeverity.HIGH


def test_negative_drift_when_ledger_exceeds_total(session_factory, variant_ids):
    _add_ledger(session_factory, variant_ids[2], 30)
    _set_total(session_factory, variant_ids[2], 10)

    reconcile_inventory(session_factory, high_drift_threshold=100)

    log = _drift_logs(session_factory)[variant_ids[2]]
    assert log.drift == -20
    assert log.severity == DriftSeverity.MEDIUM


def test_stock_totals_are_never_rewritten(session_factory, variant_ids):
    _set_total(session_factory, variant_ids[0], 75)

    reconcile_inventory(session_factory)
    reconcile_inventory(session_factory)

    with session_factory() as db:
        assert inventory_service.get_inventory_master(db, variant_ids[0]).total_stock == 75
        assert db.query(InventoryDriftLog).count() == 2


def test_drift_events_are_emitted(session_factory, variant_ids):
    _set_total(session_factory, variant_ids[0], 5)
    events = EventSink()

    reconcile_inventory(session_factory, events=events)

    (event,) = events.of_type(INVENTORY_DRIFT_DETECTED)
    assert event["entity_id"] == variant_ids[0]
    assert event["payload"]["expected"] == 5
    assert event["payload"]["actual"] == 0
    assert event["payload"]["drift"] == 5
    assert event["payload"]["severity"] == "MEDIUM"


def test_failing_batch_is_skipped_and_counted(session_factory, variant_ids, monkeypatch):
    for variant_id in variant_ids:
        _set_total(session_factory, variant_id, 10)

    real_aggregate = inventory_service.aggregate_ledger_by_variant
    calls = []

    def flaky_aggregate(db, ids):
        calls.append(ids)
        if len(calls) == 2:
            raise RuntimeError("connection reset")
        return real_aggregate(db, ids)

    monkeypatch.setattr(inventory_service, "aggregate_ledger_by_variant", flaky_aggregate)
    events = EventSink()

    stats = reconcile_inventory(session_factory, events=events, batch_size=1)

    assert stats.batches == 4
    assert stats.processed == 3
    assert stats.drifts == 3
    assert stats.failed == 1
    assert len(_drift_logs(session_factory)) == 3
    assert calls[1][0] not in _drift_logs(session_factory)
    assert len(events.of_type(INVENTORY_DRIFT_DETECTED)) == 3


def test_batches_cover_every_master(session_factory, variant_ids):
    for variant_id in variant_ids:
        _set_total(session_factory, variant_id, 1)

    stats = reconcile_inventory(session_factory, batch_size=3)

    assert stats.batches == 2
    assert stats.processed == 4
    assert set(_drift_logs(session_factory)) == set(variant_ids)


def test_engine_keeps_last_inventory_stats(session_factory, variant_ids):
    _set_total(session_factory, variant_ids[0], 3)
    engine = ReconciliationEngine(session_factory, events=EventSink())

    stats = engine.reconcile_inventory()

    assert engine.stats is stats
    assert stats.drifts == 1
    engine.reset_stats()
    assert engine.stats.drifts == 0


def _corrupt_hash(session_factory, variant_id, **values):
    with session_factory() as db:
        db.query(VariantMaster).filter(VariantMaster.id == variant_id).update(
            {"config_hash": "stale-" + variant_id, **values}
        )
        db.commit()


def _stored_hash(session_factory, variant_id):
    with session_factory() as db:
        return db.query(VariantMaster.config_hash).filter(VariantMaster.id == variant_id).scalar()


def _expected_hash(session_factory, variant_id):
    with session_factory() as db:
        variant = db.query(VariantMaster).filter(VariantMaster.id == variant_id).one()
        return variant_config_hash(variant.product_group, variant.size_ids, variant.color_id)


def test_intact_hashes_are_left_alone(session_factory, variant_ids):
    engine = ReconciliationEngine(session_factory, events=EventSink())
    stats = engine.reconcile_config_hashes()
    assert stats.processed == 4
    assert stats.drifts == 0
    assert stats.repaired == 0
    assert engine.events.events == []


def test_stale_hash_is_repaired(session_factory, variant_ids):
    expected = _expected_hash(session_factory, variant_ids[0])
    _corrupt_hash(session_factory, variant_ids[0])
    engine = ReconciliationEngine(session_factory, events=EventSink(), batch_size=2)

    stats = engine.reconcile_config_hashes()

    assert stats.drifts == 1
    assert stats.repaired == 1
    assert stats.failed == 0
    assert _stored_hash(session_factory, variant_ids[0]) == expected
    (event,) = engine.events.of_type(CONFIG_HASH_MISMATCH)
    assert event["payload"]["stored_hash"] == "stale-" + variant_ids[0]
    assert event["payload"]["computed_hash"] == expected


def test_dry_run_reports_without_repairing(session_factory, variant_ids):
    _corrupt_hash(session_factory, variant_ids[0])
    engine = ReconciliationEngine(session_factory, events=EventSink(), dry_run=True)

    stats = engine.reconcile_config_hashes()

    assert stats.drifts == 1
    assert stats.repaired == 0
    assert _stored_hash(session_factory, variant_ids[0]) == "stale-" + variant_ids[0]
    assert len(engine.events.of_type(CONFIG_HASH_MISMATCH)) == 1


def test_duplicate_configuration_is_flagged_not_repaired(session_factory, variant_ids):
    with session_factory() as db:
        original, duplicate = db.query(VariantMaster).filter(VariantMaster.id.in_(variant_ids[:2])).all()
        original_id, original_sizes, original_color = original.id, original.sizes, original.color_id
        duplicate_id = duplicate.id
    _corrupt_hash(session_factory, duplicate_id, sizes=original_sizes, color_id=original_color)
    engine = ReconciliationEngine(session_factory, events=EventSink())

    stats = engine.reconcile_config_hashes()

    assert stats.drifts == 1
    assert stats.repaired == 0
    assert stats.failed == 1
    assert _stored_hash(session_factory, duplicate_id) == "stale-" + duplicate_id
    (event,) = engine.events.of_type(GOVERNANCE_VIOLATION)
    assert event["payload"]["type"] == "DUPLICATE_CONFIGURATION"
    assert event["payload"]["computed_hash"] == _stored_hash(session_factory, original_id)


def test_unreadable_sizes_are_counted_as_failed(session_factory, variant_ids):
    expected = _expected_hash(session_factory, variant_ids[1])
    _corrupt_hash(session_factory, variant_ids[0], sizes="not json")
    _corrupt_hash(session_factory, variant_ids[1])
    engine = ReconciliationEngine(session_factory, events=EventSink())

    stats = engine.reconcile_config_hashes()

    assert stats.failed == 1
    assert stats.repaired == 1
    assert _stored_hash(session_factory, variant_ids[1]) == expected


def test_archived_variants_are_skipped(session_factory, variant_ids):
    _corrupt_hash(session_factory, variant_ids[0], status=ARCHIVED_STATUS)
    engine = ReconciliationEngine(session_factory, events=EventSink())

    stats = engine.reconcile_config_hashes()

    assert stats.processed == 3
    assert stats.drifts == 0


def test_malformed_webhook_url_does_not_stop_reconciliation(session_factory, variant_ids):
    _set_total(session_factory, variant_ids[0], 7)
    events = EventSink(webhook_urls=["http://ex\x00ample.com/hook"])

    stats = reconcile_inventory(session_factory, events=events)

    assert stats.drifts == 1
    assert stats.failed == 0
    assert len(events.of_type(INVENTORY_DRIFT_DETECTED)) == 1
    assert not events.deliveries[0]["success"]


def test_session_that_cannot_open_is_counted():
    def unavailable():
        raise ConnectionError("database unreachable")

    stats = reconcile_inventory(unavailable)

    assert stats.failed == 1
    assert stats.processed == 0


def test_failed_rollback_is_contained(session_factory, variant_ids, monkeypatch):
    def broken_aggregate(db, ids):
        raise RuntimeError("connection reset")

    def broken_rollback():
        raise RuntimeError("connection lost")

    def factory():
        db = session_factory()
        db.rollback = broken_rollback
        return db

    monkeypatch.setattr(inventory_service, "aggregate_ledger_by_variant", broken_aggregate)

    stats = reconcile_inventory(factory, batch_size=2)

    assert stats.batches == 2
    assert stats.failed == 4
    assert stats.processed == 0


def test_reset_stats_keeps_event_log_from_growing(session_factory, variant_ids):
    for variant_id in variant_ids:
        _set_total(session_factory, variant_id, 9)
    engine = ReconciliationEngine(session_factory, events=EventSink())

    sizes = []
    for _ in range(3):
        engine.reset_stats()
        engine.reconcile_inventory()
        sizes.append(len(engine.events.events))

    assert sizes == [4, 4, 4]


def test_default_engine_sink_is_bounded(session_factory):
    engine = ReconciliationEngine(session_factory)
    assert engine.events.max_events == 1000
