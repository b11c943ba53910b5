import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from variant_engine.database import init_db
from variant_engine.services import master_data_service


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def delays():
    """Pass ``sleep=delays.append`` to record backoff delays instead of sleeping."""
    return []


@pytest.fixture
def catalog(session_factory):
    """Master data with readable ids: storage 64GB/128GB, ram 4GB/8GB, colors black/blue."""
    with session_factory() as db:
        master_data_service.create_size(db, "storage", "64GB", sort_order=1, size_id="64GB")
        master_data_service.create_size(db, "storage", "128GB", sort_order=2, size_id="128GB")
        master_data_service.create_size(db, "ram", "4GB", sort_order=1, size_id="4GB")
        master_data_service.create_size(db, "ram", "8GB", sort_order=2, size_id="8GB")
        master_data_service.create_size(db, "storage", "256GB", is_active=False, size_id="256GB")
        master_data_service.create_color(db, "Black", "#000000", color_id="black")
        master_data_service.create_color(db, "Blue", "#0000FF", color_id="blue")
        master_data_service.create_color(db, "Retired Red", "#FF0000", is_active=False, color_id="red")
        warehouse = master_data_service.create_warehouse(db, "Main Warehouse", "main", is_default=True)
        db.commit()
        return {"warehouse_id": warehouse.id}
