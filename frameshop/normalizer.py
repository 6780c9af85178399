"""Normalization of heterogeneous catalog product payloads.

The catalog returns either flat product records (``title``/``price``/``url``)
or offer records (``variants``/``media``/``priceRange``). :func:`detect_shape`
picks the variant from its discriminating fields and the matching converter
produces a canonical :class:`~frameshop.models.Product`. Conversion is total:
missing or malformed fields fall back to ``None`` and never raise.
"""
from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Sequence

from .models import UNKNOWN_TITLE, Product

logger = logging.getLogger(__name__)

# Keys that may hold the product array, in priority order.
PAYLOAD_LIST_KEYS = ("products", "items", "results", "offers")

_PRICE_NOISE_RE = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER_RE = re.compile(r"^(-?(?:\d+(?:\.\d*)?|\.\d+))")
_CENTS = Decimal("0.01")


class ProductShape(str, Enum):
    FLAT = "flat"
    OFFER = "offer"


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first_item(value: Any) -> Any:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and value:
        return value[0]
    return None


def _present(*values: Any) -> Any:
    """First value that is neither ``None`` nor an empty string."""

    for value in values:
        if value is not None and value != "":
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_price(value: Any) -> str | None:
    """Format a price as a two-decimal string, or ``None`` when unparsable."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
    elif isinstance(value, str):
        match = _LEADING_NUMBER_RE.match(_PRICE_NOISE_RE.sub("", value))
        if not match:
            return None
        number = Decimal(match.group(1))
    else:
        return None
    if not number.is_finite():
        return None
    try:
        return str(number.quantize(_CENTS, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def detect_shape(raw: Any) -> ProductShape:
    product = _mapping(raw)
    if product.get("id") and product.get("title") and product.get("variants"):
        return ProductShape.OFFER
    return ProductShape.FLAT


def normalize_flat(raw: Mapping[str, Any]) -> Product:
    first_variant = _mapping(_first_item(raw.get("variants")))
    variant_price = first_variant.get("price")
    return Product(
        id=_text(_present(raw.get("id"), raw.get("product_id"))),
        title=str(raw.get("title") or raw.get("name") or UNKNOWN_TITLE),
        image_url=_text(_present(raw.get("image_url"), raw.get("featured_image"), _first_item(raw.get("images")))),
        min_price=parse_price(_present(raw.get("min_price"), raw.get("price"), variant_price)),
        max_price=parse_price(_present(raw.get("max_price"), raw.get("price"), variant_price)),
        product_url=_text(_present(raw.get("product_url"), raw.get("url"), raw.get("handle"))),
        vendor=_text(_present(raw.get("vendor"), raw.get("brand"))),
    )


def normalize_offer(raw: Mapping[str, Any]) -> Product:
    first_variant = _mapping(_first_item(raw.get("variants")))
    first_media = _mapping(_first_item(raw.get("media")))
    variant_media = _mapping(_first_item(first_variant.get("media")))
    variant_amount = _mapping(first_variant.get("price")).get("amount")
    price_range = _mapping(raw.get("priceRange"))
    min_amount = _mapping(price_range.get("min")).get("amount")
    max_amount = _mapping(price_range.get("max")).get("amount")
    return Product(
        id=_text(_present(raw.get("id"), first_variant.get("id"))),
        title=str(raw.get("title") or raw.get("displayName") or UNKNOWN_TITLE),
        image_url=_text(_present(first_media.get("url"), variant_media.get("url"))),
        min_price=parse_price(min_amount if min_amount is not None else variant_amount),
        max_price=parse_price(max_amount if max_amount is not None else variant_amount),
        product_url=_text(_present(first_variant.get("variantUrl"), raw.get("lookupUrl"))),
        vendor=_text(_mapping(first_variant.get("shop")).get("name")),
    )


def normalize_product(raw: Any) -> Product:
    product = _mapping(raw)
    if detect_shape(product) is ProductShape.OFFER:
        return normalize_offer(product)
    return normalize_flat(product)


def extract_product_list(payload: Any) -> list:
    """Locate the product array in a decoded search payload."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in PAYLOAD_LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    logger.warning("Unexpected products payload shape: %s", type(payload).__name__)
    return []
