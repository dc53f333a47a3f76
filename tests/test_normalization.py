from datetime import datetime, timezone

from storefront.application.normalization import (
    normalize_order,
    normalize_product,
    to_local_record,
    to_remote_row,
)
from storefront.application.schemas import ProductCreate
from storefront.domain.models import Category, OrderStatus

REMOTE_ROW = {
    "id": 7,
    "name": "Moringa Capsules",
    "description": "60 capsules",
    "price": "1450.50",
    "image_url": "https://cdn.example.com/moringa.png",
    "category": "supplement",
    "stock_quantity": 12,
    "created_at": "2024-03-01T10:00:00+00:00",
    "updated_at": "2024-03-02T10:00:00Z",
}

LOCAL_RECORD = {
    "id": "7",
    "name": "Moringa Capsules",
    "description": "60 capsules",
    "price": 1450.5,
    "imageUrl": "https://cdn.example.com/moringa.png",
    "category": "supplement",
    "stockQuantity": 12,
    "createdAt": "2024-03-01T10:00:00+00:00",
    "updatedAt": "2024-03-02T10:00:00+00:00",
}

def test_remote_and_local_shapes_normalize_to_the_same_product():
    from_remote = normalize_product(REMOTE_ROW)
    from_local = normalize_product(LOCAL_RECORD)

    assert from_remote == from_local
    assert from_remote.id == "7"
    assert from_remote.price == 1450.5
    assert from_remote.image_url == "https://cdn.example.com/moringa.png"
    assert from_remote.updated_at == datetime(2024, 3, 2, 10, tzinfo=timezone.utc)

def test_missing_fields_get_defaults():
    product = normalize_product({"id": "p1"})

    assert product.name == ""
    assert product.description == ""
    assert product.price == 0.0
    assert product.image_url == ""
    assert product.category == Category.SUPPLEMENT
    assert product.stock_quantity is None
    assert product.updated_at == product.created_at

def test_garbage_input_does_not_raise():
    product = normalize_product(None)
    assert product.id == ""

    product = normalize_product({"price": "twelve", "category": "gadgets", "createdAt": "yesterday"})
    assert product.price == 0.0
    assert product.category == Category.SUPPLEMENT
    assert product.created_at.tzinfo is not None

def test_negative_price_is_clamped():
    assert normalize_product({"price": -3}).price == 0.0

def test_epoch_milliseconds_are_understood():
    product = normalize_product({"createdAt": 1714557600000})
    assert product.created_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

def test_normalize_product_is_idempotent():
    for raw in (REMOTE_ROW, LOCAL_RECORD, {"name": "bare"}):
        once = normalize_product(raw)
        assert normalize_product(once) == once
        assert normalize_product(to_local_record(once)) == once

def test_order_snapshot_falls_back_to_joined_product():
    order = normalize_order({
        "id": "o1",
        "product_id": "7",
        "customer_name": "Ali",
        "customer_region": "Oran",
        "status": "CONFIRMED",
        "products": {"name": "Moringa Capsules", "price": "1450.50"},
    })

    assert order.product_name == "Moringa Capsules"
    assert order.product_price == 1450.5
    assert order.status == OrderStatus.CONFIRMED
    assert order.customer_region == "Oran"

def test_order_snapshot_columns_win_over_join():
    order = normalize_order({
        "productName": "Old name",
        "productPrice": 900,
        "products": {"name": "New name", "price": 1000},
    })
    assert order.product_name == "Old name"
    assert order.product_price == 900.0

def test_unknown_order_status_reads_as_pending():
    assert normalize_order({"status": "lost"}).status == OrderStatus.PENDING

def test_normalize_order_is_idempotent():
    once = normalize_order({"id": "o1", "customerName": "Ali", "productPrice": "12"})
    assert normalize_order(once) == once

def test_boundary_mappings_use_each_backends_naming():
    payload = ProductCreate(name="Chamomile", description="Dried flowers", price=300, imageUrl="/uploads/a.png")
    row = to_remote_row(payload)
    assert row == {
        "name": "Chamomile",
        "description": "Dried flowers",
        "price": 300.0,
        "image_url": "/uploads/a.png",
        "category": "supplement",
    }

    record = to_local_record(normalize_product({"id": "x", "imageUrl": "/uploads/a.png"}))
    assert record["imageUrl"] == "/uploads/a.png"
    assert "image_url" not in record
    assert "createdAt" in record
