import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from variant_engine.database import Base


class TransactionType(str, PyEnum):
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    ADJUSTMENT = "ADJUSTMENT"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    TRANSFER = "TRANSFER"
    ORDER_DEDUCT = "ORDER_DEDUCT"
    ORDER_CANCEL = "ORDER_CANCEL"
    RETURN_RESTORE = "RETURN_RESTORE"


class DriftSeverity(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DriftStatus(str, PyEnum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


class VariantInventory(Base):
    """Stock of one variant at one warehouse."""

    __tablename__ = "variant_inventory"
    __table_args__ = (
        UniqueConstraint("variant_id", "warehouse_id", name="uq_inventory_variant_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    variant_id: Mapped[str] = mapped_column(String, ForeignKey("variant_masters.id"), nullable=False, index=True)
    warehouse_id: Mapped[str] = mapped_column(String, ForeignKey("warehouse_masters.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def available_quantity(self) -> int:
        return max(0, self.quantity - self.reserved_quantity)


class InventoryMaster(Base):
    """Cached stock total per variant. Must equal the sum of its ledger deltas."""

    __tablename__ = "inventory_masters"
    __table_args__ = (
        CheckConstraint("total_stock >= 0", name="ck_master_total"),
        CheckConstraint("reserved_stock >= 0", name="ck_master_reserved"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    variant_id: Mapped[str] = mapped_column(String, ForeignKey("variant_masters.id"), unique=True, nullable=False)
    sku: Mapped[str] = mapped_column(String, index=True, nullable=False)
    product_name: Mapped[str] = mapped_column(String, default="")
    total_stock: Mapped[int] = mapped_column(Integer, default=0)
    reserved_stock: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def available_stock(self) -> int:
        return max(0, self.total_stock - self.reserved_stock)


class InventoryLedger(Base):
    """Append-only log of every stock change."""

    __tablename__ = "inventory_ledger"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    variant_id: Mapped[str] = mapped_column(String, ForeignKey("variant_masters.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # signed delta
    transaction_type: Mapped[str] = mapped_column(
        Enum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    reason: Mapped[str] = mapped_column(String, default="")
    stock_before: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    performed_by: Mapped[str] = mapped_column(String, default="system")
    transaction_date: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class InventoryDriftLog(Base):
    __tablename__ = "inventory_drift_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    variant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, default="", index=True)
    expected_stock: Mapped[int] = mapped_column(Integer, nullable=False)  # from InventoryMaster
    actual_stock_from_ledger: Mapped[int] = mapped_column(Integer, nullable=False)
    drift: Mapped[int] = mapped_column(Integer, nullable=False)  # expected - ledger
    severity: Mapped[str] = mapped_column(
        Enum(DriftSeverity, values_callable=lambda x: [e.value for e in x]),
        default=DriftSeverity.LOW,
    )
    status: Mapped[str] = mapped_column(
        Enum(DriftStatus, values_callable=lambda x: [e.value for e in x]),
        default=DriftStatus.OPEN,
    )
    notes: Mapped[str] = mapped_column(Text, default="")
    reconciled_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
