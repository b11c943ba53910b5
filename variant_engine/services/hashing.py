"""Deterministic configuration hashes, signatures and SKUs.

A configuration hash identifies a product plus a *set* of attribute ids.
Attribute ids are sorted before hashing, so callers may pass them in any
order and still get the same digest. The variant generator relies on this
hash (and the unique index on it) as its only duplicate guard.
"""

import hashlib
import re
import secrets
import string
import time
from collections.abc import Iterable

from variant_engine.errors import ValidationError
from variant_engine.schemas.variant import CombinationRule, HashConfig, NormalizedAttribute, SkuConfig

_ALPHANUM = string.digits + string.ascii_uppercase
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def _canonicalize(value) -> str:
    if value is None:
        raise ValidationError("Identifier cannot be empty")
    canonical = value.strip() if isinstance(value, str) else str(value)
    if not canonical:
        raise ValidationError("Identifier cannot be empty")
    return canonical


def _sanitize(value) -> str:
    if not value:
        return ""
    return _NON_ALNUM.sub("", str(value)).upper()


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_ALPHANUM[rem])
    return "".join(reversed(digits))


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def generate_config_hash(
    product_id,
    attribute_value_ids: Iterable,
    *,
    algorithm: str = "sha256",
    truncate: int | None = None,
) -> str:
    """Return the hex digest of ``product:sorted(attr1|attr2|...)``."""
    if product_id is None or (isinstance(product_id, str) and not product_id.strip()):
        raise ValidationError("Product ID is required")
    if attribute_value_ids is None:
        raise ValidationError("At least one attribute value ID is required")
    ids = list(attribute_value_ids)
    if not ids:
        raise ValidationError("At least one attribute value ID is required")

    canonical_product = _canonicalize(product_id)
    canonical_ids = sorted(_canonicalize(i) for i in ids)
    canonical = f"{canonical_product}:{'|'.join(canonical_ids)}"

    digest = hashlib.new(algorithm, canonical.encode("utf-8")).hexdigest()
    return digest[:truncate] if truncate else digest


def variant_config_hash(product_group: str, size_ids: Iterable[str], color_id: str) -> str:
    """Configuration hash of a generated variant: group + sizes + color."""
    return generate_config_hash(product_group, [*size_ids, color_id])


def generate_config_signature(attributes: list[NormalizedAttribute]) -> str:
    """Human readable form, e.g. ``COLOR:BLACK|SIZE:XL``. Not unique."""
    if not attributes:
        raise ValidationError("Normalized attributes required")
    # sorted() is stable, ties keep their input order
    ordered = sorted(attributes, key=lambda a: a.sort_order)
    return "|".join(
        f"{(a.type_slug or a.type_name or 'UNKNOWN').upper()}:{(a.value_slug or a.value_name or 'UNKNOWN').upper()}"
        for a in ordered
    )


def verify_config_hash(config: HashConfig, expected_hash: str) -> bool:
    return generate_config_hash(config.product_id, config.attribute_value_ids) == expected_hash


def detect_collision(hash1: str, hash2: str) -> bool:
    return hash1 == hash2


def generate_batch(configs: list[HashConfig]) -> list[dict]:
    return [
        {
            "config": config,
            "hash": generate_config_hash(config.product_id, config.attribute_value_ids),
            "signature": (
                generate_config_signature(config.normalized_attributes)
                if config.normalized_attributes
                else None
            ),
        }
        for config in configs
    ]


def find_duplicates(configs: list[HashConfig]) -> list[dict]:
    """Group configurations that hash identically.

    Returns ``[{"hash": ..., "configs": [{"index": i, "config": c}, ...]}]``
    for every hash seen more than once, in first-seen order.
    """
    groups: dict[str, list[dict]] = {}
    for index, config in enumerate(configs):
        h = generate_config_hash(config.product_id, config.attribute_value_ids)
        groups.setdefault(h, []).append({"index": index, "config": config})
    return [{"hash": h, "configs": members} for h, members in groups.items() if len(members) > 1]


def validate_configuration(config: HashConfig) -> list[str]:
    errors = []
    if not config.product_id:
        errors.append("Product ID is required")
    if not config.attribute_value_ids:
        errors.append("At least one attribute value is required")
    if config.normalized_attributes:
        type_ids = [a.type_id for a in config.normalized_attributes]
        if len(type_ids) != len(set(type_ids)):
            errors.append("Duplicate attribute types detected")
    return errors


def validate_combination(attributes: list[NormalizedAttribute], rules: list[CombinationRule]) -> list[str]:
    value_ids = {a.value_id for a in attributes}
    errors = []
    for rule in rules:
        if rule.type == "INCOMPATIBLE" and rule.value1 in value_ids and rule.value2 in value_ids:
            errors.append(f"Incompatible combination: {rule.message}")
    for rule in rules:
        if rule.type == "REQUIRES" and rule.value in value_ids and rule.required_value not in value_ids:
            errors.append(f"Missing required attribute: {rule.message}")
    return errors


# --- SKU generation ---

def _find_attribute(attributes: list[NormalizedAttribute], type_slug: str) -> NormalizedAttribute | None:
    return next((a for a in attributes if a.type_slug == type_slug), None)


def _apply_template(template: str, config: SkuConfig) -> str:
    sku = template
    sku = sku.replace("{BRAND}", _sanitize(config.brand)[:3])
    sku = sku.replace("{GROUP}", _sanitize(config.product_group)[:6])
    for attr in config.attributes:
        sku = sku.replace(f"{{{attr.type_slug.upper()}}}", _sanitize(attr.value_slug)[:4])
    sku = sku.replace("{TIMESTAMP}", _base36(int(time.time() * 1000))[-4:])
    sku = sku.replace("{RANDOM}", _random_token(3))
    return sku.upper()


def generate_sku(config: SkuConfig) -> str:
    """Generate an SKU using the configured strategy.

    ``auto`` builds ``BRD-GROUP-COL-SIZE-<time><random>``, ``template``
    substitutes placeholders in ``custom_template`` and ``manual`` is refused,
    manual SKUs have to be supplied by the caller.
    """
    if config.strategy == "manual":
        raise ValidationError("Manual SKU generation requires an explicit SKU value")

    if config.strategy == "template" and config.custom_template:
        return _apply_template(config.custom_template, config)

    brand_code = _sanitize(config.brand)[:3]
    group_code = _sanitize(config.product_group)[:6]

    size_attr = _find_attribute(config.attributes, "size")
    color_attr = _find_attribute(config.attributes, "color")
    size_code = (_sanitize(size_attr.value_slug)[:4] if size_attr else "") or "STD"
    color_code = (_sanitize(color_attr.value_slug)[:3] if color_attr else "") or "DEF"

    timestamp = _base36(int(time.time() * 1000))[-4:]
    return f"{brand_code}-{group_code}-{color_code}-{size_code}-{timestamp}{_random_token(3)}"
