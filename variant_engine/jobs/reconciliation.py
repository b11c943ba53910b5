"""
Reconciliation jobs.

Two policies, chosen per field:

- Stock totals are detect-only. ``reconcile_inventory`` compares every
  InventoryMaster total with the sum of its ledger deltas and records an
  OPEN InventoryDriftLog per mismatch for an operator to triage.
- Configuration hashes are repaired in place. ``ReconciliationEngine``
  recomputes each variant's hash from its stored sizes and color, overwrites
  a stale value and emits ``config.hash.mismatch``.

Both walk their table in keyset-paginated batches, each batch in its own
transaction. A failing batch is rolled back, logged and counted, and the run
moves on to the next one. Scheduling is left to the caller.
"""

import json
import logging
import time
from collections.abc import Callable

from sqlalchemy.orm import Session

from variant_engine.config import settings
from variant_engine.database import SessionLocal
from variant_engine.errors import EngineError
from variant_engine.models.inventory import DriftSeverity, DriftStatus, InventoryDriftLog, InventoryMaster
from variant_engine.models.variant import ARCHIVED_STATUS, VariantMaster
from variant_engine.schemas.inventory import ReconciliationStats
from variant_engine.services import inventory_service, variant_service
from variant_engine.services.event_service import (
    CONFIG_HASH_MISMATCH,
    GOVERNANCE_VIOLATION,
    INVENTORY_DRIFT_DETECTED,
    EventSink,
)
from variant_engine.services.hashing import variant_config_hash

logger = logging.getLogger(__name__)

# (event_type, payload, entity_id) collected during a batch, emitted after commit
PendingEvent = tuple[str, dict, str]


def _run_batches(
    session_factory: Callable[[], Session],
    load_batch: Callable[[Session, str | None], list],
    process_batch: Callable[[Session, list, ReconciliationStats], list[PendingEvent]],
    stats: ReconciliationStats,
    events: EventSink | None,
    label: str,
) -> ReconciliationStats:
    cursor = None
    while True:
        try:
            db = session_factory()
        except Exception as e:
            logger.error("[%s] Could not open a session after %s: %s", label, cursor, e)
            stats.failed += 1
            break
        try:
            try:
                batch = load_batch(db, cursor)
            except Exception as e:
                logger.error("[%s] Could not load batch after %s: %s", label, cursor, e)
                stats.failed += 1
                break
            if not batch:
                break
            cursor = batch[-1].id
            stats.batches += 1

            # Counted separately so a rolled back batch leaves no partial counts
            batch_stats = ReconciliationStats()
            try:
                pending = process_batch(db, batch, batch_stats)
                db.commit()
            except Exception as e:
                _safe_rollback(db, label)
                logger.error("[%s] Batch ending at %s failed, skipping %d records: %s", label, cursor, len(batch), e)
                stats.failed += len(batch)
                continue
        finally:
            _safe_close(db, label)

        stats.processed += len(batch)
        stats.drifts += batch_stats.drifts
        stats.repaired += batch_stats.repaired
        stats.failed += batch_stats.failed
        if events is not None:
            for event_type, payload, entity_id in pending:
                events.emit(event_type, payload, entity="VARIANT", entity_id=entity_id)
    return stats


def _safe_rollback(db: Session, label: str) -> None:
    try:
        db.rollback()
    except Exception as e:
        logger.error("[%s] Rollback failed: %s", label, e)


def _safe_close(db: Session, label: str) -> None:
    try:
        db.close()
    except Exception as e:
        logger.error("[%s] Closing session failed: %s", label, e)


def classify_drift(drift: int, high_threshold: int) -> DriftSeverity:
    return DriftSeverity.HIGH if abs(drift) > high_threshold else DriftSeverity.MEDIUM


def reconcile_inventory(
    session_factory: Callable[[], Session] | None = None,
    *,
    events: EventSink | None = None,
    batch_size: int | None = None,
    high_drift_threshold: int | None = None,
) -> ReconciliationStats:
    """Record a drift entry for every master total that disagrees with its ledger.

    Never raises; per-batch failures show up in ``stats.failed``.
    """
    size = batch_size or settings.RECONCILE_BATCH_SIZE
    threshold = high_drift_threshold if high_drift_threshold is not None else settings.DRIFT_HIGH_THRESHOLD

    def load_batch(db: Session, cursor: str | None) -> list:
        q = db.query(InventoryMaster.id, InventoryMaster.variant_id, InventoryMaster.sku, InventoryMaster.total_stock)
        if cursor is not None:
            q = q.filter(InventoryMaster.id > cursor)
        return q.order_by(InventoryMaster.id).limit(size).all()

    def process_batch(db: Session, batch: list, stats: ReconciliationStats) -> list[PendingEvent]:
        ledger_totals = inventory_service.aggregate_ledger_by_variant(db, [m.variant_id for m in batch])
        pending = []
        for master in batch:
            ledger_sum = ledger_totals.get(master.variant_id, 0)
            expected = master.total_stock
            if ledger_sum == expected:
                continue
            drift = expected - ledger_sum
            severity = classify_drift(drift, threshold)
            logger.warning(
                "[Drift] SKU %s: master %d, ledger %d, drift %d", master.sku, expected, ledger_sum, drift
            )
            db.add(InventoryDriftLog(
                variant_id=master.variant_id,
                sku=master.sku,
                expected_stock=expected,
                actual_stock_from_ledger=ledger_sum,
                drift=drift,
                severity=severity,
                status=DriftStatus.OPEN,
                notes=f"Mismatch between inventory master and ledger sum. Difference: {drift} units.",
            ))
            stats.drifts += 1
            pending.append((
                INVENTORY_DRIFT_DETECTED,
                {
                    "variant_id": master.variant_id,
                    "sku": master.sku,
                    "expected": expected,
                    "actual": ledger_sum,
                    "drift": drift,
                    "severity": severity.value,
                },
                master.variant_id,
            ))
        db.flush()
        return pending

    logger.info("Starting inventory reconciliation")
    started = time.monotonic()
    stats = _run_batches(
        session_factory or SessionLocal, load_batch, process_batch, ReconciliationStats(), events, "inventory"
    )
    logger.info(
        "Inventory reconciliation complete in %.2fs: %d processed, %d drifts, %d failed",
        time.monotonic() - started, stats.processed, stats.drifts, stats.failed,
    )
    return stats


class ReconciliationEngine:
    """Batch reconciliation with shared stats and an injected event sink."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        events: EventSink | None = None,
        batch_size: int | None = None,
        dry_run: bool = False,
    ):
        self.session_factory = session_factory or SessionLocal
        self.events = events or EventSink(
            webhook_urls=settings.event_webhook_urls, max_events=settings.EVENT_LOG_MAX_SIZE
        )
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE
        self.dry_run = dry_run
        self.stats = ReconciliationStats()

    def reset_stats(self) -> None:
        """Start a fresh run: zero the counters and drop the previous run's events."""
        self.stats = ReconciliationStats()
        self.events.clear()

    def reconcile_inventory(self) -> ReconciliationStats:
        self.stats = reconcile_inventory(self.session_factory, events=self.events, batch_size=self.batch_size)
        return self.stats

    def reconcile_config_hashes(self) -> ReconciliationStats:
        logger.info("Starting config hash integrity check (dry_run=%s)", self.dry_run)
        _run_batches(
            self.session_factory, self._load_variants, self._process_hash_batch, self.stats, self.events, "config-hash"
        )
        logger.info(
            "Config hash check complete: %d processed, %d drifts, %d repaired, %d failed",
            self.stats.processed, self.stats.drifts, self.stats.repaired, self.stats.failed,
        )
        return self.stats

    def _load_variants(self, db: Session, cursor: str | None) -> list:
        q = db.query(
            VariantMaster.id,
            VariantMaster.sku,
            VariantMaster.product_group,
            VariantMaster.sizes,
            VariantMaster.color_id,
            VariantMaster.config_hash,
        ).filter(VariantMaster.status != ARCHIVED_STATUS)
        if cursor is not None:
            q = q.filter(VariantMaster.id > cursor)
        return q.order_by(VariantMaster.id).limit(self.batch_size).all()

    def _process_hash_batch(self, db: Session, batch: list, stats: ReconciliationStats) -> list[PendingEvent]:
        stale = []
        for variant in batch:
            try:
                size_ids = [s["size_id"] for s in json.loads(variant.sizes or "[]")]
                computed = variant_config_hash(variant.product_group, size_ids, variant.color_id)
            except (EngineError, ValueError, KeyError, TypeError) as e:
                logger.error("Cannot recompute config hash for %s: %s", variant.sku, e)
                stats.failed += 1
                continue
            if computed != variant.config_hash:
                stats.drifts += 1
                stale.append((variant, computed))

        if not stale:
            return []

        taken = variant_service.find_existing_hashes(db, [computed for _, computed in stale])
        pending = []
        for variant, computed in stale:
            if computed in taken:
                # Another variant already holds this configuration
                logger.error("Variant %s duplicates an existing configuration %s", variant.sku, computed)
                stats.failed += 1
                pending.append((
                    GOVERNANCE_VIOLATION,
                    {
                        "type": "DUPLICATE_CONFIGURATION",
                        "variant_id": variant.id,
                        "sku": variant.sku,
                        "computed_hash": computed,
                    },
                    variant.id,
                ))
                continue

            taken.add(computed)
            pending.append((
                CONFIG_HASH_MISMATCH,
                {
                    "variant_id": variant.id,
                    "sku": variant.sku,
                    "stored_hash": variant.config_hash,
                    "computed_hash": computed,
                },
                variant.id,
            ))
            if not self.dry_run:
                db.query(VariantMaster).filter(VariantMaster.id == variant.id).update(
                    {VariantMaster.config_hash: computed}, synchronize_session=False
                )
                stats.repaired += 1
        db.flush()
        return pending
