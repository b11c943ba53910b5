import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, field_validator


# --- Hashing / SKU inputs ---

class NormalizedAttribute(BaseModel):
    type_slug: str = ""
    type_name: str = ""
    value_slug: str = ""
    value_name: str = ""
    type_id: str = ""
    value_id: str = ""
    sort_order: int = 0


class SkuConfig(BaseModel):
    brand: str = ""
    product_group: str = ""
    attributes: list[NormalizedAttribute] = []
    strategy: Literal["auto", "template", "manual"] = "auto"
    custom_template: str | None = None


class HashConfig(BaseModel):
    product_id: str = ""
    attribute_value_ids: list[str] = []
    normalized_attributes: list[NormalizedAttribute] | None = None


class CombinationRule(BaseModel):
    type: Literal["INCOMPATIBLE", "REQUIRES"]
    message: str = ""
    # INCOMPATIBLE
    value1: str = ""
    value2: str = ""
    # REQUIRES
    value: str = ""
    required_value: str = ""


# --- Generation ---

class GenerateCombinationsRequest(BaseModel):
    product_group: str = ""
    product_name: str = ""
    brand: str = ""
    category: str = ""
    storage_ids: list[str] = []
    ram_ids: list[str] = []
    # Further named size axes, e.g. {"display": [...]}
    size_axes: dict[str, list[str]] = {}
    color_ids: list[str] = []
    base_price: float = 0.0
    description: str = ""
    specifications: dict[str, Any] = {}
    images: list[str | dict[str, Any]] = []

    def axes(self) -> list[tuple[str, list[str]]]:
        """Requested size axes in a stable order: storage, ram, then extras."""
        result = [("storage", self.storage_ids), ("ram", self.ram_ids)]
        result.extend(self.size_axes.items())
        return result


class GeneratedVariant(BaseModel):
    sku: str
    id: str


class GenerationResult(BaseModel):
    success: bool = True
    total_generated: int = 0
    skipped: int = 0
    variants: list[GeneratedVariant] = []
    inventory_created: int = 0
    warnings: list[str] = []
    message: str = ""


class SizePreview(BaseModel):
    category: str
    value: str


class ColorPreview(BaseModel):
    name: str
    hex_code: str


class CombinationPreview(BaseModel):
    sku: str
    sizes: list[SizePreview]
    color: ColorPreview


class PreviewResult(BaseModel):
    total_combinations: int
    within_limit: bool
    previews: list[CombinationPreview] = []


class VariantOut(BaseModel):
    id: str
    product_group: str
    product_name: str
    brand: str
    category: str
    sku: str
    config_hash: str
    color_id: str
    sizes: list[dict[str, str]] = []
    price: float
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("sizes", mode="before")
    @classmethod
    def parse_sizes(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v
