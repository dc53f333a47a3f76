"""
Storage facade for products and orders.

Each operation tries the remote backend first when one is configured and
falls back to the local store when it is not, or when the remote call fails.
Reads are served from the cache when possible; every write invalidates the
cached reads of the entity it touched. Remote results are mirrored into the
local store so it stays usable as a fallback.

No exception raised by either backend leaves this module: outcomes are
reported through :class:`StorageResult`.
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional

import redis
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from storefront.application.cache import ReadCache
from storefront.application.normalization import (
    normalize_order,
    normalize_product,
    to_local_record,
    to_remote_row,
)
from storefront.application.schemas import (
    DataSource,
    Order,
    OrderCreate,
    Product,
    ProductCreate,
    ProductUpdate,
    StorageResult,
)
from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, is_remote_configured
from storefront.domain.models import OrderStatus
from storefront.infrastructure.images import ImageStore
from storefront.infrastructure.local_store import ORDERS_KEY, PRODUCTS_KEY, LocalStore
from storefront.infrastructure.remote import RemoteBackend, RemoteBackendError

logger = get_logger(__name__)

PRODUCTS = PRODUCTS_KEY
ORDERS = ORDERS_KEY
# Order listings pull the referenced product along for the snapshot fields
ORDER_COLUMNS = "*,products(name,price)"

class OrderRejected(Exception):
    """The remote backend cannot take the order (unknown product, no stock left)."""

def _operation(sentinel: Callable[[], Any]):
    """Run one storage operation at a time; unexpected errors become a failed
    result carrying ``sentinel()``."""
    def deco(fn):
        @wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                with self._lock:
                    return fn(self, *args, **kwargs)
            except Exception as exc:
                logger.error(f"{fn.__name__} failed: {exc}", exc_info=True)
                return StorageResult(value=sentinel(), ok=False, error=str(exc))
        return wrapper
    return deco

def _validate(schema: type[BaseModel], fields: Any) -> BaseModel:
    if isinstance(fields, schema):
        return fields
    if isinstance(fields, BaseModel):
        fields = fields.model_dump(exclude_unset=True)
    return schema.model_validate(fields)

def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )

def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value

def _newest_first(items: list) -> list:
    return sorted(items, key=lambda item: item.created_at, reverse=True)

def _paginate(items: list, page: Optional[int], limit: Optional[int]) -> list:
    if limit is None:
        return items
    start = (max(page or 1, 1) - 1) * limit
    return items[start:start + limit]

def _find(items: list, item_id: str):
    return next((item for item in items if item.id == item_id), None)

def _connect_redis(url: Optional[str]) -> Optional[redis.Redis]:
    if not url:
        return None
    try:
        client = redis.from_url(url, decode_responses=True)
        client.ping()
        return client
    except redis.RedisError as exc:
        logger.warning(f"Redis unavailable at startup, caching in-process only: {exc}")
        return None

class StorageService:
    def __init__(
        self,
        local: LocalStore,
        remote: Optional[RemoteBackend] = None,
        cache: Optional[ReadCache] = None,
        images: Optional[ImageStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        enforce_stock: bool = True,
    ):
        self.local = local
        self.remote = remote
        # Fixed for the lifetime of the service
        self._remote_enabled = remote is not None
        self.cache = cache if cache is not None else ReadCache()
        self.images = images
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.enforce_stock = enforce_stock
        # Endpoints run in a thread pool; cache and local store updates are read-modify-write
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Settings, transport=None) -> "StorageService":
        local = LocalStore.from_url(settings.LOCAL_DATABASE_URL)
        remote = None
        if is_remote_configured(settings):
            remote = RemoteBackend(
                settings.SUPABASE_URL,
                settings.SUPABASE_ANON_KEY,
                timeout=settings.REMOTE_TIMEOUT_SECONDS,
                max_attempts=settings.REMOTE_MAX_ATTEMPTS,
                backoff=settings.REMOTE_BACKOFF_SECONDS,
                transport=transport,
            )
            logger.info("Remote backend configured, local store is the fallback")
        else:
            logger.info("Remote backend not configured, using the local store only")
        return cls(
            local,
            remote=remote,
            cache=ReadCache(ttl=settings.CACHE_TTL_SECONDS, redis_client=_connect_redis(settings.REDIS_URL)),
            images=ImageStore(settings.UPLOAD_DIR),
            enforce_stock=settings.ENFORCE_STOCK,
        )

    def is_remote_configured(self) -> bool:
        return self._remote_enabled

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()
        self.local.close()

    # ----- internals -----

    def _now(self) -> datetime:
        return self._clock()

    def _next_timestamp(self, previous: datetime) -> datetime:
        """Current time, forced strictly past ``previous``."""
        now = self._now()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _remote_failed(self, action: str, exc: RemoteBackendError) -> bool:
        logger.error(
            f"Remote backend failed to {action}, falling back to local store: {exc}",
            extra={'extra_fields': {'action': action, 'status_code': exc.status_code}}
        )
        return True

    def _load(self, key: str, normalizer) -> list:
        return [normalizer(record) for record in self.local.read_records(key)]

    def _save(self, key: str, items: list) -> None:
        self.local.write_records(key, [to_local_record(item) for item in items])

    def _remove_local(self, key: str, normalizer, item_id: str):
        items = self._load(key, normalizer)
        removed = _find(items, item_id)
        if removed is not None:
            self._save(key, [item for item in items if item.id != item_id])
        return removed

    def _mirror(self, key: str, normalizer, items: list) -> None:
        """Upsert remote results into the local copy by id."""
        if not items:
            return
        try:
            by_id = {item.id: item for item in self._load(key, normalizer)}
            for item in items:
                by_id[item.id] = item
            self._save(key, list(by_id.values()))
        except SQLAlchemyError as exc:
            logger.warning(f"Could not mirror {key} into the local store: {exc}")

    def _unmirror(self, key: str, normalizer, item_id: str):
        try:
            return self._remove_local(key, normalizer, item_id)
        except SQLAlchemyError as exc:
            logger.warning(f"Could not drop {key} record {item_id} from the local store: {exc}")
            return None

    def _invalidate(self, key: str) -> None:
        self.cache.invalidate_prefix(f"{key}:")

    def _release_image(self, product: Optional[Product]) -> None:
        if self.images is None or product is None or not ImageStore.is_local(product.image_url):
            return
        try:
            self.images.remove(product.image_url)
        except OSError as exc:
            logger.warning(f"Could not remove image {product.image_url}: {exc}")

    # ----- products -----

    @_operation(list)
    def get_products(self, page: Optional[int] = None, limit: Optional[int] = None, category=None) -> StorageResult:
        category = _enum_value(category)
        cache_key = f"{PRODUCTS}:list:page={page}:limit={limit}:category={category}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return StorageResult(value=[normalize_product(r) for r in cached], source=DataSource.CACHE)

        degraded = False
        if self._remote_enabled:
            try:
                rows = self.remote.select(PRODUCTS, filters={"category": category}, page=page, limit=limit)
            except RemoteBackendError as exc:
                degraded = self._remote_failed("fetch products", exc)
            else:
                products = [normalize_product(row) for row in rows]
                self.cache.set(cache_key, [to_local_record(p) for p in products])
                self._mirror(PRODUCTS, normalize_product, products)
                return StorageResult(value=products, source=DataSource.REMOTE)

        products = self._load(PRODUCTS, normalize_product)
        if category:
            products = [p for p in products if p.category.value == category]
        return StorageResult(
            value=_paginate(_newest_first(products), page, limit),
            source=DataSource.LOCAL,
            fallback_used=degraded,
        )

    @_operation(lambda: None)
    def get_product(self, product_id) -> StorageResult:
        product_id = str(product_id)
        cache_key = f"{PRODUCTS}:get:{product_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return StorageResult(value=normalize_product(cached), source=DataSource.CACHE)

        degraded = False
        if self._remote_enabled:
            try:
                row = self.remote.select_one(PRODUCTS, product_id)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"fetch product {product_id}", exc)
            else:
                if row is not None:
                    product = normalize_product(row)
                    self.cache.set(cache_key, to_local_record(product))
                    self._mirror(PRODUCTS, normalize_product, [product])
                    return StorageResult(value=product, source=DataSource.REMOTE)

        product = _find(self._load(PRODUCTS, normalize_product), product_id)
        return StorageResult(value=product, source=DataSource.LOCAL, fallback_used=degraded)

    @_operation(lambda: None)
    def add_product(self, fields) -> StorageResult:
        try:
            payload = _validate(ProductCreate, fields)
        except ValidationError as exc:
            logger.warning(f"Rejected product with {exc.error_count()} invalid field(s)")
            return StorageResult(ok=False, error=_describe(exc))

        degraded = False
        if self._remote_enabled:
            try:
                row = self.remote.insert(PRODUCTS, to_remote_row(payload))
            except RemoteBackendError as exc:
                degraded = self._remote_failed("create product", exc)
            else:
                product = normalize_product(row)
                self._invalidate(PRODUCTS)
                self._mirror(PRODUCTS, normalize_product, [product])
                return StorageResult(value=product, source=DataSource.REMOTE)

        now = self._now()
        product = Product(
            id=uuid.uuid4().hex,
            name=payload.name,
            description=payload.description,
            price=payload.price,
            image_url=payload.image_url or "",
            category=payload.category,
            created_at=now,
            updated_at=now,
        )
        products = self._load(PRODUCTS, normalize_product)
        products.append(product)
        self._save(PRODUCTS, products)
        self._invalidate(PRODUCTS)
        return StorageResult(value=product, source=DataSource.LOCAL, fallback_used=degraded)

    @_operation(lambda: False)
    def update_product(self, product_id, fields) -> StorageResult:
        product_id = str(product_id)
        try:
            payload = _validate(ProductUpdate, fields)
        except ValidationError as exc:
            logger.warning(f"Rejected update of product {product_id}: {_describe(exc)}")
            return StorageResult(value=False, ok=False, error=_describe(exc))

        degraded = False
        if self._remote_enabled:
            changes = to_remote_row(payload, partial=True, updated_at=self._now().isoformat())
            try:
                row = self.remote.update(PRODUCTS, product_id, changes)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"update product {product_id}", exc)
            else:
                self._invalidate(PRODUCTS)
                if row is None:
                    return StorageResult(value=False, source=DataSource.REMOTE)
                self._mirror(PRODUCTS, normalize_product, [normalize_product(row)])
                return StorageResult(value=True, source=DataSource.REMOTE)

        products = self._load(PRODUCTS, normalize_product)
        current = _find(products, product_id)
        if current is None:
            return StorageResult(value=False, source=DataSource.LOCAL, fallback_used=degraded)

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        changes["updated_at"] = self._next_timestamp(current.updated_at)
        updated = current.model_copy(update=changes)
        self._save(PRODUCTS, [updated if p.id == product_id else p for p in products])
        self._invalidate(PRODUCTS)
        return StorageResult(value=True, source=DataSource.LOCAL, fallback_used=degraded)

    @_operation(lambda: True)
    def delete_product(self, product_id) -> StorageResult:
        """Idempotent: the value is True whether or not the product existed."""
        product_id = str(product_id)
        degraded = False
        if self._remote_enabled:
            try:
                rows = self.remote.delete(PRODUCTS, product_id)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"delete product {product_id}", exc)
            else:
                self._invalidate(PRODUCTS)
                mirrored = self._unmirror(PRODUCTS, normalize_product, product_id)
                self._release_image(normalize_product(rows[0]) if rows else mirrored)
                return StorageResult(value=True, source=DataSource.REMOTE)

        removed = self._remove_local(PRODUCTS, normalize_product, product_id)
        self._invalidate(PRODUCTS)
        self._release_image(removed)
        return StorageResult(value=True, source=DataSource.LOCAL, fallback_used=degraded)

    # ----- orders -----

    @_operation(list)
    def get_orders(self, page: Optional[int] = None, limit: Optional[int] = None, status=None) -> StorageResult:
        status = _enum_value(status)
        cache_key = f"{ORDERS}:list:page={page}:limit={limit}:status={status}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return StorageResult(value=[normalize_order(r) for r in cached], source=DataSource.CACHE)

        degraded = False
        if self._remote_enabled:
            try:
                rows = self.remote.select(
                    ORDERS, filters={"status": status}, page=page, limit=limit, columns=ORDER_COLUMNS
                )
            except RemoteBackendError as exc:
                degraded = self._remote_failed("fetch orders", exc)
            else:
                orders = [normalize_order(row) for row in rows]
                self.cache.set(cache_key, [to_local_record(o) for o in orders])
                self._mirror(ORDERS, normalize_order, orders)
                return StorageResult(value=orders, source=DataSource.REMOTE)

        orders = self._load(ORDERS, normalize_order)
        if status:
            orders = [o for o in orders if o.status.value == status]
        return StorageResult(
            value=_paginate(_newest_first(orders), page, limit),
            source=DataSource.LOCAL,
            fallback_used=degraded,
        )

    @_operation(lambda: None)
    def get_order(self, order_id) -> StorageResult:
        order_id = str(order_id)
        cache_key = f"{ORDERS}:get:{order_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return StorageResult(value=normalize_order(cached), source=DataSource.CACHE)

        degraded = False
        if self._remote_enabled:
            try:
                row = self.remote.select_one(ORDERS, order_id, columns=ORDER_COLUMNS)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"fetch order {order_id}", exc)
            else:
                if row is not None:
                    order = normalize_order(row)
                    self.cache.set(cache_key, to_local_record(order))
                    self._mirror(ORDERS, normalize_order, [order])
                    return StorageResult(value=order, source=DataSource.REMOTE)

        order = _find(self._load(ORDERS, normalize_order), order_id)
        return StorageResult(value=order, source=DataSource.LOCAL, fallback_used=degraded)

    @_operation(lambda: None)
    def add_order(self, fields) -> StorageResult:
        """Place an order; its status always starts as pending."""
        try:
            payload = _validate(OrderCreate, fields)
        except ValidationError as exc:
            logger.warning(f"Rejected order with {exc.error_count()} invalid field(s)")
            return StorageResult(ok=False, error=_describe(exc))

        degraded = False
        if self._remote_enabled:
            try:
                order = self._place_remote_order(payload)
            except OrderRejected as exc:
                logger.warning(f"Order rejected: {exc}", extra={'extra_fields': {'product_id': payload.product_id}})
                return StorageResult(ok=False, source=DataSource.REMOTE, error=str(exc))
            except RemoteBackendError as exc:
                degraded = self._remote_failed("create order", exc)
            else:
                return StorageResult(value=order, source=DataSource.REMOTE)

        # No stock tracking in the local store
        product = _find(self._load(PRODUCTS, normalize_product), payload.product_id)
        if product is None:
            return StorageResult(
                ok=False,
                source=DataSource.LOCAL,
                fallback_used=degraded,
                error=f"product {payload.product_id} not found",
            )

        now = self._now()
        order = Order(
            id=uuid.uuid4().hex,
            product_id=product.id,
            product_name=product.name,
            product_price=product.price,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            customer_address=payload.customer_address,
            customer_region=payload.customer_region,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        orders = self._load(ORDERS, normalize_order)
        orders.append(order)
        self._save(ORDERS, orders)
        self._invalidate(ORDERS)
        return StorageResult(value=order, source=DataSource.LOCAL, fallback_used=degraded)

    def _place_remote_order(self, payload: OrderCreate) -> Order:
        row = self.remote.select_one(PRODUCTS, payload.product_id)
        if row is None:
            raise OrderRejected(f"product {payload.product_id} not found")
        product = normalize_product(row)
        # The local fallback snapshots from this copy if the insert below fails
        self._mirror(PRODUCTS, normalize_product, [product])

        track_stock = self.enforce_stock and product.stock_quantity is not None
        if track_stock and product.stock_quantity <= 0:
            raise OrderRejected(f"product {product.id} is out of stock")

        inserted = self.remote.insert(
            ORDERS,
            to_remote_row(
                payload,
                product_name=product.name,
                product_price=product.price,
                status=OrderStatus.PENDING.value,
            ),
        )
        order = normalize_order(inserted)
        self._invalidate(ORDERS)
        self._mirror(ORDERS, normalize_order, [order])

        if track_stock:
            self._decrement_stock(product)
        return order

    def _decrement_stock(self, product: Product) -> None:
        # Separate request from the insert; concurrent orders can race here
        try:
            row = self.remote.update(
                PRODUCTS,
                product.id,
                {"stock_quantity": product.stock_quantity - 1, "updated_at": self._now().isoformat()},
            )
        except RemoteBackendError as exc:
            logger.error(f"Order placed but stock of product {product.id} was not decremented: {exc}")
            return
        finally:
            self._invalidate(PRODUCTS)
        if row is not None:
            self._mirror(PRODUCTS, normalize_product, [normalize_product(row)])

    @_operation(lambda: False)
    def update_order_status(self, order_id, status) -> StorageResult:
        """Set any known status from any state; transitions are not checked."""
        order_id = str(order_id)
        try:
            new_status = OrderStatus(_enum_value(status))
        except ValueError:
            logger.warning(f"Rejected unknown status {status!r} for order {order_id}")
            return StorageResult(value=False, ok=False, error=f"unknown order status: {status}")

        degraded = False
        if self._remote_enabled:
            changes = {"status": new_status.value, "updated_at": self._now().isoformat()}
            try:
                row = self.remote.update(ORDERS, order_id, changes)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"update order {order_id}", exc)
            else:
                self._invalidate(ORDERS)
                if row is None:
                    return StorageResult(value=False, source=DataSource.REMOTE)
                self._mirror(ORDERS, normalize_order, [normalize_order(row)])
                return StorageResult(value=True, source=DataSource.REMOTE)

        orders = self._load(ORDERS, normalize_order)
        current = _find(orders, order_id)
        if current is None:
            return StorageResult(value=False, source=DataSource.LOCAL, fallback_used=degraded)

        updated = current.model_copy(
            update={"status": new_status, "updated_at": self._next_timestamp(current.updated_at)}
        )
        self._save(ORDERS, [updated if o.id == order_id else o for o in orders])
        self._invalidate(ORDERS)
        return StorageResult(value=True, source=DataSource.LOCAL, fallback_used=degraded)

    @_operation(lambda: True)
    def delete_order(self, order_id) -> StorageResult:
        """Idempotent, and allowed whatever the order's status."""
        order_id = str(order_id)
        degraded = False
        if self._remote_enabled:
            try:
                self.remote.delete(ORDERS, order_id)
            except RemoteBackendError as exc:
                degraded = self._remote_failed(f"delete order {order_id}", exc)
            else:
                self._invalidate(ORDERS)
                self._unmirror(ORDERS, normalize_order, order_id)
                return StorageResult(value=True, source=DataSource.REMOTE)

        self._remove_local(ORDERS, normalize_order, order_id)
        self._invalidate(ORDERS)
        return StorageResult(value=True, source=DataSource.LOCAL, fallback_used=degraded)
