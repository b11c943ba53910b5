from sqlalchemy.orm import Session

from variant_engine.models.variant import VariantMaster


def find_variants_by_hashes(db: Session, hashes: list[str]) -> list[VariantMaster]:
    if not hashes:
        return []
    return db.query(VariantMaster).filter(VariantMaster.config_hash.in_(hashes)).all()


def find_existing_hashes(db: Session, hashes: list[str]) -> set[str]:
    if not hashes:
        return set()
    rows = db.query(VariantMaster.config_hash).filter(VariantMaster.config_hash.in_(hashes)).all()
    return {r.config_hash for r in rows}


def find_variants_by_skus(db: Session, skus: list[str]) -> list[VariantMaster]:
    if not skus:
        return []
    return db.query(VariantMaster).filter(VariantMaster.sku.in_(skus)).all()


def find_existing_skus(db: Session, skus: list[str]) -> set[str]:
    if not skus:
        return set()
    rows = db.query(VariantMaster.sku).filter(VariantMaster.sku.in_(skus)).all()
    return {r.sku for r in rows}


def insert_variants(db: Session, records: list[dict]) -> list[VariantMaster]:
    """Add all variants and flush so ids are assigned and unique indexes checked."""
    variants = [VariantMaster(**record) for record in records]
    db.add_all(variants)
    db.flush()
    return variants


def get_variant(db: Session, variant_id: str) -> VariantMaster | None:
    return db.query(VariantMaster).filter(VariantMaster.id == variant_id).first()


def get_variant_by_sku(db: Session, sku: str) -> VariantMaster | None:
    return db.query(VariantMaster).filter(VariantMaster.sku == sku).first()


def list_variants(db: Session, product_group: str | None = None) -> list[VariantMaster]:
    q = db.query(VariantMaster)
    if product_group:
        q = q.filter(VariantMaster.product_group == product_group)
    return q.order_by(VariantMaster.sku).all()
