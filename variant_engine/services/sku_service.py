import re
import secrets
import string
from collections.abc import Iterable, Sequence

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_NON_UPPER_ALNUM = re.compile(r"[^A-Z0-9]")


def generate_base_sku(brand: str | None, product_group: str | None, sizes: Sequence, color_name: str | None) -> str:
    """Compact, readable SKU such as ``ACM-PHONEX-128GB-8GB-BLA``.

    Deterministic but not unique: two configurations can map to the same
    base SKU, see ``assign_unique_skus``.
    """
    brand_prefix = (brand or "VAR")[:3].upper()
    group_suffix = _NON_UPPER_ALNUM.sub("", (product_group or "PROD")[:6].upper())

    # First two sizes only, keeps the SKU short
    size_part = "-".join(_NON_ALNUM.sub("", s.value) for s in sizes[:2])[:10].upper() or "STD"

    color_part = _NON_UPPER_ALNUM.sub("", color_name[:3].upper()) if color_name else "STD"

    return f"{brand_prefix}-{group_suffix}-{size_part}-{color_part}"


def random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def assign_unique_skus(base_skus: Iterable[str], existing_skus: set[str]) -> list[str]:
    """Resolve base SKUs against storage and against each other.

    A base SKU already in ``existing_skus`` or already handed out earlier in
    the same batch gets a random ``-XXXX`` suffix.
    """
    used: set[str] = set()
    result = []
    for base in base_skus:
        sku = base
        while sku in existing_skus or sku in used:
            sku = f"{base}-{random_suffix()}"
        used.add(sku)
        result.append(sku)
    return result
