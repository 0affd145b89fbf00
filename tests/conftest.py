import pytest
from fastapi.testclient import TestClient

from database import MemoryDocumentStore
from main import build_services, create_app, make_token
from schemas import Tenant
from seed import seed

# storefronts the tests order from, on top of the seeded "default" tenant
TENANTS = [
    {"id": "acme", "name": "Acme", "domains": ["acme.test"]},
    {"id": "globex", "name": "Globex", "domains": ["globex.test"]},
]


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
async def services(store):
    await seed(store)
    svc = build_services(store)
    for data in TENANTS:
        await svc.tenants.add_tenant(Tenant(**data))
    return svc


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token(None, 'admin@example.com', 'admin')}"}


@pytest.fixture
def client(admin_headers):
    app = create_app(store=MemoryDocumentStore(), seed_demo=True)
    with TestClient(app) as c:
        for data in TENANTS:
            c.post("/api/tenants", json=data, headers=admin_headers).raise_for_status()
        yield c


@pytest.fixture
def tenant_headers():
    def _headers(tenant_id):
        return {"Authorization": f"Bearer {make_token(tenant_id, f'owner@{tenant_id}.example', 'reseller')}"}
    return _headers
