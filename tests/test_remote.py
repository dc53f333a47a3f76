import httpx
import pytest

from storefront.infrastructure.remote import RemoteBackend, RemoteBackendError

REMOTE_URL = "https://shop.example.supabase.co"
REMOTE_KEY = "anon-test-key"

def test_requests_carry_the_access_key(remote, backend):
    remote.select("products")

    request = backend.requests[-1]
    assert request.headers["apikey"] == REMOTE_KEY
    assert request.headers["Authorization"] == f"Bearer {REMOTE_KEY}"
    assert request.url.path == "/rest/v1/products"

def test_select_orders_filters_and_paginates(remote, backend):
    for name in ("A", "B", "C"):
        backend.seed_product(name=name, category="tea")
    backend.seed_product(name="D", category="herbal")

    rows = remote.select("products", filters={"category": "tea", "status": None}, page=2, limit=2)

    params = backend.requests[-1].url.params
    assert params["order"] == "created_at.desc"
    assert params["category"] == "eq.tea"
    assert "status" not in params
    assert params["offset"] == "2"
    assert params["limit"] == "2"
    assert [row["name"] for row in rows] == ["A"]

def test_select_one_signals_not_found_with_none(remote, backend):
    row = backend.seed_product()

    assert remote.select_one("products", row["id"])["name"] == row["name"]
    assert remote.select_one("products", "999") is None

def test_read_errors_are_raised(remote, backend):
    backend.fail_next(1)
    with pytest.raises(RemoteBackendError) as exc_info:
        remote.select("products")
    assert exc_info.value.status_code == 503
    assert exc_info.value.transient

def test_mutation_is_retried_with_linear_backoff(remote, backend, sleeps):
    backend.fail_next(2)

    row = remote.insert("products", {"name": "Mint"})

    assert row["name"] == "Mint"
    assert backend.calls("POST", "products") == 3
    assert sleeps == [0.3, 0.6]

def test_mutation_gives_up_after_three_attempts(remote, backend, sleeps):
    backend.fail_next(5)

    with pytest.raises(RemoteBackendError):
        remote.update("products", "1", {"name": "Mint"})

    assert backend.calls("PATCH", "products") == 3
    assert sleeps == [0.3, 0.6]

def test_client_errors_are_not_retried(remote, backend, sleeps):
    backend.fail_next(1, status=400)

    with pytest.raises(RemoteBackendError) as exc_info:
        remote.insert("products", {"name": "Mint"})

    assert not exc_info.value.transient
    assert backend.calls("POST", "products") == 1
    assert sleeps == []

def test_network_errors_are_transient(sleeps):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = RemoteBackend(REMOTE_URL, REMOTE_KEY, transport=httpx.MockTransport(refuse), sleep=sleeps.append)
    with pytest.raises(RemoteBackendError) as exc_info:
        client.delete("orders", "1")
    client.close()

    assert exc_info.value.transient
    assert len(sleeps) == 2

def test_update_and_delete_report_matched_rows(remote, backend):
    row = backend.seed_product(name="Mint")

    assert remote.update("products", row["id"], {"name": "Peppermint"})["name"] == "Peppermint"
    assert remote.update("products", "999", {"name": "x"}) is None
    assert [r["id"] for r in remote.delete("products", row["id"])] == [row["id"]]
    assert remote.delete("products", row["id"]) == []
