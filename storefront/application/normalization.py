"""
Boundary mapping between backend records and the canonical models.

The remote backend returns snake_case rows (``image_url``, ``created_at``);
the local store keeps camelCase records (``imageUrl``, ``createdAt``). Both
shapes are folded into :class:`Product` / :class:`Order` here, and nothing
past this module sees either raw naming.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import BaseModel

from storefront.application.schemas import Order, Product
from storefront.domain.models import Category, OrderStatus

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _as_mapping(raw: Any) -> Mapping:
    if isinstance(raw, BaseModel):
        return raw.model_dump(by_alias=True)
    if isinstance(raw, Mapping):
        return raw
    return {}

def _pick(raw: Mapping, camel: str, snake: str, default: Any = None) -> Any:
    for key in (camel, snake):
        value = raw.get(key)
        if value is not None:
            return value
    return default

def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)

def _coerce_price(value: Any) -> float:
    """Prices may arrive as numbers or numeric strings ("12.50")."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        price = float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return 0.0
    if price != price or price < 0:  # NaN or negative
        return 0.0
    return price

def _coerce_quantity(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError):
        return None

def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds from the browser store, seconds otherwise
        seconds = value / 1000 if value > 1e11 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def _coerce_enum(enum_cls, value: Any, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default

def _timestamps(raw: Mapping) -> tuple[datetime, datetime]:
    created_at = _coerce_timestamp(_pick(raw, "createdAt", "created_at")) or _utcnow()
    updated_at = _coerce_timestamp(_pick(raw, "updatedAt", "updated_at")) or created_at
    return created_at, updated_at

def normalize_product(raw: Union[Mapping, Product, None]) -> Product:
    raw = _as_mapping(raw)
    created_at, updated_at = _timestamps(raw)
    return Product(
        id=_coerce_text(raw.get("id")),
        name=_coerce_text(raw.get("name")),
        description=_coerce_text(raw.get("description")),
        price=_coerce_price(raw.get("price")),
        image_url=_coerce_text(_pick(raw, "imageUrl", "image_url")),
        category=_coerce_enum(Category, raw.get("category"), Category.SUPPLEMENT),
        stock_quantity=_coerce_quantity(_pick(raw, "stockQuantity", "stock_quantity")),
        created_at=created_at,
        updated_at=updated_at,
    )

def normalize_order(raw: Union[Mapping, Order, None]) -> Order:
    raw = _as_mapping(raw)
    created_at, updated_at = _timestamps(raw)

    # Listings from the remote backend embed the referenced product
    joined = raw.get("products") or raw.get("product")
    joined = joined if isinstance(joined, Mapping) else {}

    product_price = _pick(raw, "productPrice", "product_price")
    if product_price is None:
        product_price = joined.get("price")

    return Order(
        id=_coerce_text(raw.get("id")),
        product_id=_coerce_text(_pick(raw, "productId", "product_id")),
        product_name=_coerce_text(_pick(raw, "productName", "product_name") or joined.get("name")),
        product_price=_coerce_price(product_price),
        customer_name=_coerce_text(_pick(raw, "customerName", "customer_name")),
        customer_phone=_coerce_text(_pick(raw, "customerPhone", "customer_phone")),
        customer_address=_coerce_text(_pick(raw, "customerAddress", "customer_address")),
        customer_region=_coerce_text(_pick(raw, "customerRegion", "customer_region")),
        status=_coerce_enum(OrderStatus, raw.get("status"), OrderStatus.PENDING),
        created_at=created_at,
        updated_at=updated_at,
    )

def to_local_record(model: BaseModel) -> dict:
    """camelCase, JSON-safe record as kept in the local store and the cache."""
    return model.model_dump(mode="json", by_alias=True)

def to_remote_row(model: BaseModel, partial: bool = False, **overrides) -> dict:
    """snake_case row for the remote backend.

    None fields are left out; with ``partial`` only the fields the caller
    actually set are kept.
    """
    row = model.model_dump(mode="json", exclude_unset=partial, exclude_none=True)
    row.update(overrides)
    return row
