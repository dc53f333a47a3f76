import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from storefront.application.cache import ReadCache
from storefront.application.service import StorageService
from storefront.infrastructure.local_store import LocalStore
from storefront.infrastructure.remote import RemoteBackend

REMOTE_URL = "https://shop.example.supabase.co"
REMOTE_KEY = "anon-test-key"

class FakeClock:
    """Wall clock for record timestamps plus a monotonic clock for the cache."""

    def __init__(self):
        self.current = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0

    def __call__(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.elapsed

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.elapsed += seconds

class FakePostgrest:
    """In-memory stand-in for the hosted backend's /rest/v1 API."""

    def __init__(self):
        self.tables = {"products": [], "orders": []}
        self.requests: list[httpx.Request] = []
        self.failures: list[int] = []
        self.failing_methods: set[str] = set()
        self._next_id = 1
        self._created = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # ----- test helpers -----

    def fail_next(self, count: int, status: int = 503) -> None:
        self.failures.extend([status] * count)

    def calls(self, method: str, table: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(f"/{table}"))

    def _stamp(self) -> str:
        self._created += timedelta(minutes=1)
        return self._created.isoformat()

    def _assign_id(self) -> str:
        value = str(self._next_id)
        self._next_id += 1
        return value

    def seed_product(self, **fields) -> dict:
        stamp = self._stamp()
        row = {
            "id": self._assign_id(),
            "name": "Ginseng Tea",
            "description": "Red ginseng blend",
            "price": "1200.00",
            "image_url": None,
            "category": "tea",
            "stock_quantity": None,
            "created_at": stamp,
            "updated_at": stamp,
        }
        row.update(fields)
        self.tables["products"].append(row)
        return row

    def seed_order(self, **fields) -> dict:
        stamp = self._stamp()
        row = {
            "id": self._assign_id(),
            "product_id": "1",
            "product_name": "Ginseng Tea",
            "product_price": 1200,
            "customer_name": "Ali",
            "customer_phone": "0555123456",
            "customer_address": "12 rue Didouche Mourad",
            "customer_region": "Alger",
            "status": "pending",
            "created_at": stamp,
            "updated_at": stamp,
        }
        row.update(fields)
        self.tables["orders"].append(row)
        return row

    # ----- transport -----

    def _matches(self, row: dict, params: dict) -> bool:
        for key, value in params.items():
            if key in ("select", "order", "limit", "offset"):
                continue
            if value.startswith("eq.") and str(row.get(key)) != value[3:]:
                return False
        return True

    def _project(self, row: dict, select: str) -> dict:
        if select == "id":
            return {"id": row["id"]}
        projected = dict(row)
        if "products(" in select:
            product = next((p for p in self.tables["products"] if p["id"] == row.get("product_id")), None)
            projected["products"] = {"name": product["name"], "price": product["price"]} if product else None
        return projected

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return httpx.Response(self.failures.pop(0), json={"message": "upstream unavailable"})
        if request.method in self.failing_methods:
            return httpx.Response(503, json={"message": "upstream unavailable"})

        table = request.url.path.rsplit("/", 1)[-1]
        if table not in self.tables:
            return httpx.Response(404, json={"message": f"relation {table} does not exist"})
        params = dict(request.url.params)
        rows = self.tables[table]
        matching = [row for row in rows if self._matches(row, params)]

        if request.method == "GET":
            ordered = sorted(matching, key=lambda r: r["created_at"], reverse=True)
            offset = int(params.get("offset", 0))
            if "limit" in params:
                ordered = ordered[offset:offset + int(params["limit"])]
            select = params.get("select", "*")
            return httpx.Response(200, json=[self._project(r, select) for r in ordered])

        if request.method == "POST":
            row = json.loads(request.content)
            stamp = self._stamp()
            row.setdefault("id", self._assign_id())
            row.setdefault("created_at", stamp)
            row.setdefault("updated_at", stamp)
            rows.append(row)
            return httpx.Response(201, json=[row])

        if request.method == "PATCH":
            changes = json.loads(request.content)
            for row in matching:
                row.update(changes)
            return httpx.Response(200, json=matching)

        if request.method == "DELETE":
            self.tables[table] = [row for row in rows if row not in matching]
            return httpx.Response(200, json=matching)

        return httpx.Response(405)

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def sleeps():
    return []

@pytest.fixture
def local_store():
    store = LocalStore.from_url("sqlite://")
    yield store
    store.close()

@pytest.fixture
def backend():
    return FakePostgrest()

@pytest.fixture
def remote(backend, sleeps):
    client = RemoteBackend(
        REMOTE_URL,
        REMOTE_KEY,
        transport=httpx.MockTransport(backend.handler),
        sleep=sleeps.append,
    )
    yield client
    client.close()

@pytest.fixture
def local_storage(local_store, clock):
    """Storage with no remote backend configured."""
    return StorageService(local_store, cache=ReadCache(timer=clock.monotonic), clock=clock)

@pytest.fixture
def remote_storage(local_store, remote, clock):
    return StorageService(local_store, remote=remote, cache=ReadCache(timer=clock.monotonic), clock=clock)

@pytest.fixture
def product_fields():
    return {
        "name": "Green Tea",
        "description": "Loose-leaf green tea from Zhejiang",
        "price": 500,
        "category": "tea",
    }

@pytest.fixture
def order_fields():
    return {
        "customerName": "Ali",
        "customerPhone": "0555123456",
        "customerAddress": "12 rue Didouche Mourad",
        "customerRegion": "Alger",
    }
