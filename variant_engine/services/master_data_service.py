from sqlalchemy.orm import Session

from variant_engine.models.master_data import ColorMaster, SizeMaster, WarehouseMaster


def find_sizes_by_ids(db: Session, ids: list[str], active_only: bool = True) -> list[SizeMaster]:
    if not ids:
        return []
    q = db.query(SizeMaster).filter(SizeMaster.id.in_(ids))
    if active_only:
        q = q.filter(SizeMaster.is_active.is_(True))
    return q.order_by(SizeMaster.sort_order, SizeMaster.value, SizeMaster.id).all()


def find_colors_by_ids(db: Session, ids: list[str], active_only: bool = True) -> list[ColorMaster]:
    if not ids:
        return []
    q = db.query(ColorMaster).filter(ColorMaster.id.in_(ids))
    if active_only:
        q = q.filter(ColorMaster.is_active.is_(True))
    return q.order_by(ColorMaster.name, ColorMaster.id).all()


def get_default_warehouse(db: Session) -> WarehouseMaster | None:
    return (
        db.query(WarehouseMaster)
        .filter(WarehouseMaster.is_default.is_(True), WarehouseMaster.is_active.is_(True))
        .first()
    )


def create_size(
    db: Session,
    category: str,
    value: str,
    display_name: str = "",
    sort_order: int = 0,
    is_active: bool = True,
    size_id: str | None = None,
) -> SizeMaster:
    size = SizeMaster(
        category=category,
        value=value,
        display_name=display_name or value,
        sort_order=sort_order,
        is_active=is_active,
    )
    if size_id:
        size.id = size_id
    db.add(size)
    db.flush()
    return size


def create_color(
    db: Session,
    name: str,
    hex_code: str = "#000000",
    is_active: bool = True,
    color_id: str | None = None,
) -> ColorMaster:
    color = ColorMaster(name=name, hex_code=hex_code, is_active=is_active)
    if color_id:
        color.id = color_id
    db.add(color)
    db.flush()
    return color


def create_warehouse(db: Session, name: str, code: str, is_default: bool = False) -> WarehouseMaster:
    warehouse = WarehouseMaster(name=name, code=code.upper(), is_default=False)
    db.add(warehouse)
    db.flush()
    if is_default:
        set_default_warehouse(db, warehouse.id)
    return warehouse


def set_default_warehouse(db: Session, warehouse_id: str) -> WarehouseMaster | None:
    """Flag one warehouse as the provisioning default, clearing any other."""
    warehouse = db.query(WarehouseMaster).filter(WarehouseMaster.id == warehouse_id).first()
    if not warehouse:
        return None
    db.query(WarehouseMaster).filter(WarehouseMaster.id != warehouse_id).update(
        {WarehouseMaster.is_default: False}, synchronize_session=False
    )
    warehouse.is_default = True
    db.flush()
    return warehouse
