"""Variant combination generator.

Expands the requested size axes and colors into every combination, drops
combinations whose configuration hash already exists, gives each new
variant a unique SKU and inserts the variants together with their zero-stock
inventory rows. The whole run is one transaction, retried on transient
conflicts, so a concurrent request for the same combinations ends as a
no-op instead of a duplicate or an error.
"""

import itertools
import json
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from variant_engine.config import settings
from variant_engine.database import SessionLocal
from variant_engine.errors import ValidationError
from variant_engine.schemas.variant import (
    ColorPreview,
    CombinationPreview,
    GenerateCombinationsRequest,
    GeneratedVariant,
    GenerationResult,
    PreviewResult,
    SizePreview,
)
from variant_engine.services import inventory_service, master_data_service, variant_service
from variant_engine.services.event_service import VARIANT_CREATED, EventSink
from variant_engine.services.hashing import variant_config_hash
from variant_engine.services.sku_service import assign_unique_skus, generate_base_sku
from variant_engine.services.transaction import with_retryable_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SizeRef:
    id: str
    category: str
    value: str


@dataclass(frozen=True)
class ColorRef:
    id: str
    name: str
    hex_code: str


@dataclass
class VariantCandidate:
    sizes: tuple[SizeRef, ...]
    color: ColorRef
    config_hash: str = ""
    base_sku: str = ""


def cartesian_product(axes: list[list]) -> list[tuple]:
    """All combinations picking one element per axis. No axes gives ``[()]``."""
    return list(itertools.product(*axes))


def _validate_request(params: GenerateCombinationsRequest) -> None:
    missing = [name for name in ("product_group", "product_name") if not getattr(params, name).strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _load_master_data(
    db: Session, params: GenerateCombinationsRequest
) -> tuple[list[list[SizeRef]], list[ColorRef]]:
    size_axes = []
    for axis_name, ids in params.axes():
        if not ids:
            continue
        records = master_data_service.find_sizes_by_ids(db, ids, active_only=True)
        if not records:
            raise ValidationError(f"Invalid {axis_name} IDs provided: none of {len(ids)} match an active size")
        size_axes.append([SizeRef(id=s.id, category=s.category, value=s.value) for s in records])

    colors = master_data_service.find_colors_by_ids(db, params.color_ids, active_only=True)
    if not colors:
        raise ValidationError("No valid colors found for color_ids")
    return size_axes, [ColorRef(id=c.id, name=c.name, hex_code=c.hex_code) for c in colors]


def _expand(size_axes: list[list[SizeRef]], colors: list[ColorRef], max_combinations: int) -> list[VariantCandidate]:
    total = math.prod(len(axis) for axis in size_axes) * len(colors)
    if total > max_combinations:
        raise ValidationError(f"Too many combinations ({total}). Max allowed: {max_combinations}")
    return [
        VariantCandidate(sizes=sizes, color=color)
        for sizes in cartesian_product(size_axes)
        for color in colors
    ]


def _image_records(images: list) -> list[dict]:
    return [
        {"url": img.get("url", "") if isinstance(img, dict) else img, "is_primary": idx == 0, "sort_order": idx}
        for idx, img in enumerate(images)
    ]


def _execute_generation(
    db: Session, params: GenerateCombinationsRequest, max_combinations: int
) -> tuple[GenerationResult, list[dict]]:
    size_axes, colors = _load_master_data(db, params)
    default_warehouse = master_data_service.get_default_warehouse(db)

    candidates = _expand(size_axes, colors, max_combinations)
    for c in candidates:
        c.config_hash = variant_config_hash(params.product_group, [s.id for s in c.sizes], c.color.id)
        c.base_sku = generate_base_sku(params.brand, params.product_group, c.sizes, c.color.name)

    existing_hashes = variant_service.find_existing_hashes(db, [c.config_hash for c in candidates])

    # Same size picked on two axes in swapped order hashes identically, keep the first
    new_candidates = []
    seen = set(existing_hashes)
    for c in candidates:
        if c.config_hash not in seen:
            seen.add(c.config_hash)
            new_candidates.append(c)

    if not new_candidates:
        return GenerationResult(
            total_generated=0,
            skipped=len(candidates),
            message="All combinations already exist",
        ), []

    existing_skus = variant_service.find_existing_skus(db, [c.base_sku for c in new_candidates])
    skus = assign_unique_skus([c.base_sku for c in new_candidates], existing_skus)

    images = json.dumps(_image_records(params.images))
    specifications = json.dumps(params.specifications)
    records = [
        {
            "product_group": params.product_group,
            "product_name": params.product_name,
            "brand": params.brand,
            "category": params.category,
            "sku": sku,
            "config_hash": c.config_hash,
            "color_id": c.color.id,
            "sizes": json.dumps([{"size_id": s.id, "category": s.category, "value": s.value} for s in c.sizes]),
            "price": params.base_price,
            "description": params.description,
            "specifications": specifications,
            "images": images,
            "status": "active",
        }
        for c, sku in zip(new_candidates, skus)
    ]
    created = variant_service.insert_variants(db, records)

    inventory_service.insert_inventory_masters(
        db,
        [{"variant_id": v.id, "sku": v.sku, "product_name": v.product_name, "total_stock": 0} for v in created],
    )

    warnings = []
    inventory_created = 0
    if default_warehouse:
        rows = inventory_service.insert_inventory_rows(
            db,
            [
                {"variant_id": v.id, "warehouse_id": default_warehouse.id, "quantity": 0, "reserved_quantity": 0}
                for v in created
            ],
        )
        inventory_created = len(rows)
    else:
        logger.warning("No default warehouse configured, skipped inventory rows for %d variants", len(created))
        warnings.append("No default warehouse configured; inventory rows were not created")

    payloads = [
        {"id": v.id, "sku": v.sku, "product_group": v.product_group, "config_hash": v.config_hash}
        for v in created
    ]
    result = GenerationResult(
        total_generated=len(created),
        skipped=len(candidates) - len(created),
        variants=[GeneratedVariant(sku=v.sku, id=v.id) for v in created],
        inventory_created=inventory_created,
        warnings=warnings,
        message=f"Generated {len(created)} variants",
    )
    return result, payloads


def generate_variant_combinations(
    session_factory: Callable[[], Session] | None,
    params: GenerateCombinationsRequest,
    *,
    events: EventSink | None = None,
    max_combinations: int | None = None,
    max_attempts: int | None = None,
    retry_base_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> GenerationResult:
    """Create every new size × color variant of a product group.

    Raises ``ValidationError`` for bad input and ``ConcurrencyError`` when
    the retry budget is exhausted. Running it twice with the same request
    creates nothing the second time.
    """
    _validate_request(params)
    cap = max_combinations if max_combinations is not None else settings.MAX_COMBINATIONS

    result, payloads = with_retryable_transaction(
        session_factory or SessionLocal,
        lambda db: _execute_generation(db, params, cap),
        max_attempts=max_attempts if max_attempts is not None else settings.GENERATION_MAX_ATTEMPTS,
        base_delay=retry_base_delay if retry_base_delay is not None else settings.GENERATION_RETRY_BASE_DELAY,
        sleep=sleep,
    )
    logger.info(
        "Variant generation for %s: %d created, %d skipped",
        params.product_group, result.total_generated, result.skipped,
    )

    if events is not None:
        for payload in payloads:
            events.emit(VARIANT_CREATED, payload, entity="VARIANT", entity_id=payload["id"])
    return result


def preview_combinations(
    db: Session, params: GenerateCombinationsRequest, *, max_combinations: int | None = None
) -> PreviewResult:
    """Show what generation would create. Writes nothing, skips dedup.

    Above the combination cap only the count is returned.
    """
    cap = max_combinations if max_combinations is not None else settings.MAX_COMBINATIONS
    size_axes, colors = _load_master_data(db, params)

    total = math.prod(len(axis) for axis in size_axes) * len(colors)
    if total > cap:
        return PreviewResult(total_combinations=total, within_limit=False)

    previews = [
        CombinationPreview(
            sku=generate_base_sku(params.brand, params.product_group, sizes, color.name),
            sizes=[SizePreview(category=s.category, value=s.value) for s in sizes],
            color=ColorPreview(name=color.name, hex_code=color.hex_code),
        )
        for sizes in cartesian_product(size_axes)
        for color in colors
    ]
    return PreviewResult(total_combinations=len(previews), within_limit=True, previews=previews)
