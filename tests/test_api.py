import pytest


def submission(**overrides):
    body = {
        "tenant_id": "acme",
        "role": "retail",
        "items": [
            {"category_id": "cat-electronics", "product_id": "elec-001", "qty": 3},
            {"category_id": "cat-electronics", "product_id": "elec-002", "qty": 4},
        ],
        "idempotency_key": "api-key-1",
    }
    body.update(overrides)
    return body


def test_root(client):
    assert client.get("/").json()["status"] == "ok"
    assert "In-memory" in client.get("/test").json()["database"]


def test_cart_preview(client):
    res = client.post("/api/cart/preview", json={"role": "retail", "items": submission()["items"]})
    assert res.status_code == 200
    body = res.json()
    assert body["subtotal"] == 7700
    assert body["breakdown"][0]["items"][0]["active_tier"] == {"min": 6, "max": 15}


def test_order_submission_and_replay(client, tenant_headers):
    first = client.post("/api/orders", json=submission(client_subtotal=1))
    assert first.status_code == 200
    assert first.json()["already_processed"] is False

    replay = client.post("/api/orders", json=submission(items=[{"category_id": "cat-furniture", "product_id": "furn-001", "qty": 1}]))
    assert replay.json() == {"order_id": first.json()["order_id"], "already_processed": True}

    order = client.get(f"/api/tenants/acme/orders/{first.json()['order_id']}", headers=tenant_headers("acme"))
    assert order.status_code == 200
    assert order.json()["subtotal"] == 7700


def test_order_errors_are_structured(client):
    res = client.post("/api/orders", json=submission(items=[]))
    assert res.status_code == 400
    assert res.json()["kind"] == "invalid-argument"

    res = client.post("/api/orders", json=submission(items=[{"category_id": "cat-electronics", "product_id": "elec-001", "qty": 0}]))
    assert res.status_code == 400

    res = client.post("/api/orders", json=submission(role="vip"))
    assert res.status_code == 422
    assert res.json()["kind"] == "pricing-unavailable"
    assert res.json()["category_id"] == "cat-electronics"


@pytest.mark.parametrize(
    "line",
    [
        {"category_id": "cat-electronics", "product_id": "elec-002", "qty": 2.5},
        {"category_id": "cat-electronics", "product_id": "elec-002", "qty": True},
        {"category_id": "cat-electronics", "product_id": "elec-002", "qty": "2"},
        {"category_id": "cat-electronics", "product_id": "elec-002"},
    ],
)
def test_malformed_line_is_a_structured_error(client, admin_headers, line):
    items = [{"category_id": "cat-electronics", "product_id": "elec-001", "qty": 1}, line]
    res = client.post("/api/orders", json=submission(items=items))
    assert res.status_code == 400
    body = res.json()
    assert body["kind"] == "invalid-argument"
    assert body["message"].startswith("Line 1: qty")
    assert client.get("/api/orders", headers=admin_headers).json() == []


def test_order_for_unknown_tenant_is_not_found(client, admin_headers):
    res = client.post("/api/orders", json=submission(tenant_id="initech"))
    assert res.status_code == 404
    assert res.json() == {"kind": "not-found", "message": "Tenant initech not found"}
    assert client.get("/api/orders", headers=admin_headers).json() == []


def test_price_resolution_endpoint(client):
    res = client.get("/api/pricing/resolve", params={"category_id": "cat-furniture", "role": "retail", "qty": 5})
    assert res.json() == {"unit_price": 4300, "scope": "admin", "tier": {"min": 4, "max": 10}}

    res = client.get("/api/pricing/resolve", params={"category_id": "cat-furniture", "role": "wholesale", "qty": 5})
    assert res.status_code == 404
    assert res.json()["kind"] == "not-found"


def test_role_writes_need_permission(client, admin_headers, tenant_headers):
    roles = {"retail": {"role_name": "retail", "rules": [{"min": 1, "max": None, "price": 10}]}}
    res = client.put("/api/categories/cat-new/roles", json=roles)
    assert res.status_code == 403
    assert res.json()["kind"] == "permission-denied"

    res = client.put("/api/categories/cat-new/roles", json=roles, headers=tenant_headers("acme"))
    assert res.status_code == 403

    res = client.put("/api/categories/cat-new/roles", json=roles, headers=admin_headers)
    assert res.status_code == 200
    assert client.get("/api/categories/cat-new/roles").json()["retail"]["rules"][0]["price"] == 10

    bad = {"retail": {"role_name": "retail", "rules": [{"min": 5, "max": 1, "price": 10}]}}
    res = client.put("/api/categories/cat-new/roles", json=bad, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "min > max in role retail"


def test_tenant_override_over_http(client, tenant_headers):
    roles = {"foreign": {"role_name": "Retail", "rules": [{"min": 1, "max": 999999, "price": 900}]}}
    res = client.put("/api/tenants/acme/categories/cat-apparel/roles", json=roles, headers=tenant_headers("acme"))
    assert res.status_code == 200
    assert list(res.json()) == ["retail"]

    res = client.put("/api/tenants/acme/categories/cat-apparel/roles", json=roles, headers=tenant_headers("globex"))
    assert res.status_code == 403

    res = client.get("/api/pricing/resolve", params={"category_id": "cat-apparel", "role": "retail", "qty": 2, "tenant_id": "acme"})
    assert res.json()["unit_price"] == 900
    assert res.json()["scope"] == "tenant"


def test_storefront_visibility(client, tenant_headers):
    patch = {"enabled": True, "selling_price": 4999}
    res = client.patch("/api/tenants/acme/categories/cat-furniture/products/furn-001", json=patch, headers=tenant_headers("acme"))
    assert res.status_code == 200

    catalog = client.get("/api/catalog", params={"tenant_id": "acme"}).json()
    furniture = next(c for c in catalog if c["id"] == "cat-furniture")
    assert [p["id"] for p in furniture["products"]] == ["furn-001"]
    assert furniture["products"][0]["display_price"] == 4999

    res = client.get("/api/storefront")
    assert res.json()["tenant_id"] == "default"


def test_admin_listing(client, admin_headers, tenant_headers):
    client.post("/api/orders", json=submission())
    assert client.get("/api/orders").status_code == 403
    orders = client.get("/api/orders", headers=admin_headers).json()
    assert len(orders) == 1
    assert client.get("/api/tenants/acme/orders", headers=tenant_headers("globex")).status_code == 403


def test_invalid_token(client):
    res = client.get("/api/orders", headers={"Authorization": "Bearer not-base64!!"})
    assert res.status_code == 401
