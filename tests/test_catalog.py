import pytest

from catalog import (
    HIDDEN,
    SELECTIONS,
    VISIBLE,
    CatalogService,
    VisibilityState,
    visibility_of,
)
from database import MemoryDocumentStore
from errors import NotFoundError, StorageUnavailable
from pricing import ADMIN
from schemas import CategoryIn, ProductPatch, SelectionPatch, TenantProductSelection
from seed import seed


def products_of(catalog, category_id):
    for cat in catalog:
        if cat.id == category_id:
            return {p.id: p for p in cat.products}
    raise AssertionError(f"category {category_id} missing")


def test_visibility_tri_state():
    assert visibility_of(None) == HIDDEN
    sel = TenantProductSelection(product_id="p", category_id="c")
    assert visibility_of(sel) == VISIBLE
    assert visibility_of(sel.model_copy(update={"enabled": False})) == HIDDEN
    assert visibility_of(sel.model_copy(update={"enabled": True})) == VISIBLE
    override = visibility_of(sel.model_copy(update={"selling_price": 999.0}))
    assert override.state is VisibilityState.VISIBLE_WITH_OVERRIDE
    assert override.selling_price == 999.0


async def test_without_tenant_every_product_is_visible(services):
    catalog = await services.catalog.catalog_for(None)
    assert [c.id for c in catalog] == ["cat-electronics", "cat-furniture", "cat-apparel"]
    assert set(products_of(catalog, "cat-electronics")) == {"elec-001", "elec-002", "elec-003"}


async def test_tenant_without_selections_sees_nothing(services):
    catalog = await services.catalog.catalog_for("acme")
    assert all(cat.products == [] for cat in catalog)


async def test_tenant_selection_controls_visibility(services):
    cat = services.catalog
    await cat.set_tenant_product("acme", "cat-electronics", "elec-001", SelectionPatch())
    await cat.set_tenant_product("acme", "cat-electronics", "elec-002", SelectionPatch(enabled=False))
    await cat.set_tenant_product("acme", "cat-electronics", "elec-003", SelectionPatch(enabled=True, selling_price=1999))

    visible = products_of(await cat.catalog_for("acme"), "cat-electronics")
    assert set(visible) == {"elec-001", "elec-003"}
    assert visible["elec-001"].visibility == "visible"
    assert visible["elec-001"].display_price is None
    assert visible["elec-003"].visibility == "override"
    assert visible["elec-003"].display_price == 1999
    assert visible["elec-003"].selection.updated_at is not None


async def test_display_override_does_not_change_order_price(services):
    await services.catalog.set_tenant_product(
        "acme", "cat-furniture", "furn-001", SelectionPatch(enabled=True, selling_price=1.0)
    )
    assert await services.resolver.resolve("cat-furniture", "retail", 1, "acme") == 4500


async def test_selection_patch_merges(services):
    cat = services.catalog
    await cat.set_tenant_product("acme", "cat-furniture", "furn-001", SelectionPatch(selling_price=4100))
    sel = await cat.set_tenant_product("acme", "cat-furniture", "furn-001", SelectionPatch(enabled=False))
    assert sel.selling_price == 4100
    assert sel.enabled is False
    selections = await cat.get_tenant_category_products("acme", "cat-furniture")
    assert set(selections) == {"furn-001"}


async def test_selection_for_unknown_product_is_rejected(services):
    with pytest.raises(NotFoundError):
        await services.catalog.set_tenant_product("acme", "cat-furniture", "nope", SelectionPatch())


class BrokenSelectionsStore(MemoryDocumentStore):
    async def find(self, collection, filter_dict=None, limit=0):
        if collection == SELECTIONS:
            raise StorageUnavailable("selections offline")
        return await super().find(collection, filter_dict, limit)


async def test_selection_lookup_failure_hides_products():
    store = BrokenSelectionsStore()
    await seed(store)
    catalog = await CatalogService(store).catalog_for("acme")
    assert all(cat.products == [] for cat in catalog)


async def test_category_admin(services):
    cat = services.catalog
    created = await cat.add_category(CategoryIn(name="Kitchen & Home"))
    assert created.id == "kitchen-&-home"
    assert (await cat.get_category(created.id)).name == "Kitchen & Home"

    # deleting the record leaves its price roles and products behind
    assert await cat.delete_category("cat-furniture") is True
    assert "cat-furniture" not in [c.id for c in await cat.list_categories()]
    assert len(await cat.list_products("cat-furniture")) == 2
    assert await services.rules.get_role(ADMIN, "cat-furniture", "retail") is not None


async def test_product_admin(services):
    cat = services.catalog
    updated = await cat.update_product("cat-electronics", "elec-002", ProductPatch(stock=10))
    assert updated.stock == 10
    assert updated.product_name == "Wireless Earbuds Z"
    assert (await cat.get_product("cat-electronics", "elec-002")).stock == 10

    assert await cat.delete_product("cat-electronics", "elec-002") is True
    with pytest.raises(NotFoundError):
        await cat.update_product("cat-electronics", "elec-002", ProductPatch(stock=1))
    assert len(await cat.list_all_products()) == 6
