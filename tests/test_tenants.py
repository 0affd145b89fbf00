import pytest

from errors import NotFoundError, ValidationError
from schemas import Branding, Tenant, TenantPatch
from tenants import TenantDirectory, host_candidates


@pytest.mark.parametrize(
    "host,expected",
    [
        ("shop.example.com:8080", ["shop.example.com:8080", "shop.example.com"]),
        ("Shop.Example.com", ["shop.example.com"]),
        ("[::1]:3000", ["[::1]:3000", "[::1]"]),
        ("", []),
    ],
)
def test_host_candidates(host, expected):
    assert host_candidates(host) == expected


@pytest.fixture
def directory(store):
    return TenantDirectory(store, default_tenant_id="default")


async def test_resolve_by_full_host_then_hostname(directory):
    await directory.add_tenant(Tenant(id="Acme ", name="Acme", domains=["acme.test:5173"]))
    await directory.add_tenant(Tenant(id="globex", name="Globex", domains=["globex.test"]))

    assert (await directory.resolve_tenant_by_host("acme.test:5173")).id == "acme"
    assert (await directory.resolve_tenant_by_host("globex.test:8080")).id == "globex"
    assert await directory.resolve_tenant_by_host("acme.test") is None
    assert await directory.tenant_id_for_host("unknown.test") == "default"
    assert await directory.tenant_id_for_host(None) == "default"


async def test_update_tenant(directory):
    await directory.add_tenant(Tenant(id="acme", name="Acme"))
    updated = await directory.update_tenant(
        "acme", TenantPatch(domains=["Shop.Acme.test "], branding=Branding(logo_url="https://cdn/logo.png"))
    )
    assert updated.domains == ["shop.acme.test"]
    assert updated.branding.logo_url == "https://cdn/logo.png"
    assert updated.name == "Acme"
    assert (await directory.resolve_tenant_by_host("shop.acme.test")).id == "acme"


async def test_tenant_errors(directory):
    with pytest.raises(ValidationError):
        await directory.add_tenant(Tenant(id=" ", name="x"))
    with pytest.raises(NotFoundError):
        await directory.get_tenant("missing")
    with pytest.raises(NotFoundError):
        await directory.update_tenant("missing", TenantPatch(name="y"))
