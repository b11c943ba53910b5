import pytest

from variant_engine.errors import ValidationError
from variant_engine.models.inventory import DriftStatus, InventoryDriftLog, TransactionType
from variant_engine.schemas.inventory import DriftRecordOut, LedgerEntryOut, StockMovement
from variant_engine.schemas.variant import GenerateCombinationsRequest, VariantOut
from variant_engine.services import inventory_service, variant_service
from variant_engine.services.generator_service import generate_variant_combinations


@pytest.fixture
def variant_id(session_factory, catalog, delays):
    params = GenerateCombinationsRequest(
        product_group="PHONE-X",
        product_name="Phone X",
        brand="Acme",
        storage_ids=["64GB"],
        color_ids=["black"],
    )
    return generate_variant_combinations(session_factory, params, sleep=delays.append).variants[0].id


def test_stock_movement_updates_total_and_ledger(session_factory, variant_id):
    with session_factory() as db:
        master = inventory_service.record_stock_movement(
            db, variant_id, StockMovement(quantity=40, transaction_type=TransactionType.STOCK_IN, reason="PO-1")
        )
        assert master.total_stock == 40
        master = inventory_service.record_stock_movement(
            db, variant_id, StockMovement(quantity=-15, transaction_type=TransactionType.STOCK_OUT)
        )
        assert master.total_stock == 25
        assert master.available_stock == 25

        entries = [LedgerEntryOut.model_validate(e) for e in inventory_service.get_ledger_entries(db, variant_id)]
        assert sorted((e.stock_before, e.stock_after) for e in entries) == [(0, 40), (40, 25)]
        assert inventory_service.aggregate_ledger_by_variant(db, [variant_id]) == {variant_id: 25}


def test_stock_cannot_go_negative(session_factory, variant_id):
    with session_factory() as db:
        with pytest.raises(ValidationError, match="Insufficient stock"):
            inventory_service.record_stock_movement(db, variant_id, StockMovement(quantity=-1))
        assert inventory_service.get_ledger_entries(db, variant_id) == []


def test_stock_movement_requires_master(session_factory, catalog):
    with session_factory() as db, pytest.raises(ValidationError):
        inventory_service.record_stock_movement(db, "missing", StockMovement(quantity=1))


def test_aggregate_skips_variants_without_entries(session_factory, variant_id):
    with session_factory() as db:
        assert inventory_service.aggregate_ledger_by_variant(db, [variant_id, "other"]) == {}
        assert inventory_service.aggregate_ledger_by_variant(db, []) == {}


def test_inventory_rows_listed_per_variant(session_factory, variant_id, catalog):
    with session_factory() as db:
        (row,) = inventory_service.list_inventory_rows(db, [variant_id])
        assert row.warehouse_id == catalog["warehouse_id"]
        assert row.available_quantity == 0
        assert inventory_service.list_inventory_rows(db, []) == []


def test_drift_records_filter_by_status(session_factory, variant_id):
    with session_factory() as db:
        for status in (DriftStatus.OPEN, DriftStatus.RESOLVED):
            db.add(InventoryDriftLog(
                variant_id=variant_id,
                sku="ACM-PHONE-64GB-BLA",
                expected_stock=5,
                actual_stock_from_ledger=0,
                drift=5,
                status=status,
            ))
        db.commit()

        assert len(inventory_service.list_drift_records(db)) == 2
        (record,) = inventory_service.list_drift_records(db, DriftStatus.OPEN)
        out = DriftRecordOut.model_validate(record)
        assert out.status == "OPEN"
        assert out.severity == "LOW"


def test_variant_lookup_and_serialization(session_factory, variant_id):
    with session_factory() as db:
        variant = variant_service.get_variant_by_sku(db, "ACM-PHONE-64GB-BLA")
        assert variant.id == variant_id
        assert [v.id for v in variant_service.list_variants(db, "PHONE-X")] == [variant_id]
        assert variant_service.list_variants(db, "OTHER") == []
        assert [v.id for v in variant_service.find_variants_by_hashes(db, [variant.config_hash, "x"])] == [variant_id]
        assert [v.id for v in variant_service.find_variants_by_skus(db, [variant.sku])] == [variant_id]
        assert variant_service.find_variants_by_skus(db, []) == []

        out = VariantOut.model_validate(variant)
        assert out.sizes == [{"size_id": "64GB", "category": "storage", "value": "64GB"}]
        assert out.product_group == "PHONE-X"
