from sqlalchemy import func
from sqlalchemy.orm import Session

from variant_engine.errors import ValidationError
from variant_engine.models.inventory import (
    DriftStatus,
    InventoryDriftLog,
    InventoryLedger,
    InventoryMaster,
    VariantInventory,
)
from variant_engine.schemas.inventory import StockMovement


def insert_inventory_rows(db: Session, records: list[dict]) -> list[VariantInventory]:
    rows = [VariantInventory(**record) for record in records]
    db.add_all(rows)
    db.flush()
    return rows


def insert_inventory_masters(db: Session, records: list[dict]) -> list[InventoryMaster]:
    masters = [InventoryMaster(**record) for record in records]
    db.add_all(masters)
    db.flush()
    return masters


def get_inventory_master(db: Session, variant_id: str) -> InventoryMaster | None:
    return db.query(InventoryMaster).filter(InventoryMaster.variant_id == variant_id).first()


def list_inventory_rows(db: Session, variant_ids: list[str] | None = None) -> list[VariantInventory]:
    q = db.query(VariantInventory)
    if variant_ids is not None:
        q = q.filter(VariantInventory.variant_id.in_(variant_ids))
    return q.all()


def record_stock_movement(db: Session, variant_id: str, data: StockMovement) -> InventoryMaster:
    """Apply a stock delta to the master total and append the ledger entry."""
    master = get_inventory_master(db, variant_id)
    if not master:
        raise ValidationError(f"No inventory master for variant {variant_id}")
    new_total = master.total_stock + data.quantity
    if new_total < 0:
        raise ValidationError(
            f"Insufficient stock. Current: {master.total_stock}, requested change: {data.quantity}"
        )
    entry = InventoryLedger(
        variant_id=variant_id,
        quantity=data.quantity,
        transaction_type=data.transaction_type,
        reason=data.reason,
        stock_before=master.total_stock,
        stock_after=new_total,
        performed_by=data.performed_by,
    )
    master.total_stock = new_total
    db.add(entry)
    db.commit()
    db.refresh(master)
    return master


def aggregate_ledger_by_variant(db: Session, variant_ids: list[str]) -> dict[str, int]:
    """Sum of ledger deltas per variant, in a single grouped query.

    Variants without ledger entries are absent from the result.
    """
    if not variant_ids:
        return {}
    rows = (
        db.query(InventoryLedger.variant_id, func.sum(InventoryLedger.quantity).label("total"))
        .filter(InventoryLedger.variant_id.in_(variant_ids))
        .group_by(InventoryLedger.variant_id)
        .all()
    )
    return {r.variant_id: int(r.total or 0) for r in rows}


def get_ledger_entries(db: Session, variant_id: str) -> list[InventoryLedger]:
    return (
        db.query(InventoryLedger)
        .filter(InventoryLedger.variant_id == variant_id)
        .order_by(InventoryLedger.transaction_date.desc())
        .all()
    )


def list_drift_records(db: Session, status: DriftStatus | None = None) -> list[InventoryDriftLog]:
    q = db.query(InventoryDriftLog)
    if status:
        q = q.filter(InventoryDriftLog.status == status)
    return q.order_by(InventoryDriftLog.reconciled_at.desc()).all()
