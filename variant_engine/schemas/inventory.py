from datetime import datetime

from pydantic import BaseModel

from variant_engine.models.inventory import TransactionType


class StockMovement(BaseModel):
    quantity: int  # positive to add, negative to remove
    transaction_type: TransactionType = TransactionType.ADJUSTMENT
    reason: str = ""
    performed_by: str = "system"


class LedgerEntryOut(BaseModel):
    id: str
    variant_id: str
    quantity: int
    transaction_type: str
    reason: str
    stock_before: int
    stock_after: int
    performed_by: str
    transaction_date: datetime

    model_config = {"from_attributes": True}


class DriftRecordOut(BaseModel):
    id: str
    variant_id: str
    sku: str
    expected_stock: int
    actual_stock_from_ledger: int
    drift: int
    severity: str
    status: str
    notes: str

    model_config = {"from_attributes": True}


class ReconciliationStats(BaseModel):
    processed: int = 0
    drifts: int = 0
    repaired: int = 0
    failed: int = 0
    batches: int = 0
