import json
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from variant_engine.database import Base


ARCHIVED_STATUS = "archived"


class VariantMaster(Base):
    __tablename__ = "variant_masters"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_group: Mapped[str] = mapped_column(String, nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    brand: Mapped[str] = mapped_column(String, default="")
    category: Mapped[str] = mapped_column(String, default="")

    sku: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    # Authoritative duplicate guard: hash of product group + sorted size ids + color id
    config_hash: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)

    color_id: Mapped[str] = mapped_column(String, ForeignKey("color_masters.id"), nullable=False)
    # Size snapshot as JSON, e.g. '[{"size_id":"...","category":"storage","value":"128GB"}]'
    sizes: Mapped[str] = mapped_column(Text, default="[]")

    price: Mapped[float] = mapped_column(Float, default=0.0)
    description: Mapped[str] = mapped_column(Text, default="")
    specifications: Mapped[str] = mapped_column(Text, default="{}")
    # '[{"url":"...","is_primary":true,"sort_order":0}]'
    images: Mapped[str] = mapped_column(Text, default="[]")
    # active, inactive, discontinued, archived (archived rows are left out of hash reconciliation)
    status: Mapped[str] = mapped_column(String, default="active")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def size_ids(self) -> list[str]:
        return [s["size_id"] for s in json.loads(self.sizes or "[]")]
