"""
Admin catalog, tenant product selections and storefront visibility.

A tenant's storefront shows an admin product only when the tenant has a
selection record for it that is not disabled. Products without a selection
record stay hidden.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from database import DocumentStore, compose_id
from errors import NotFoundError, StorageUnavailable, ValidationError
from schemas import (
    Category,
    CategoryIn,
    Product,
    ProductPatch,
    SelectionPatch,
    StorefrontCategory,
    StorefrontProduct,
    TenantProductSelection,
)

logger = logging.getLogger(__name__)

CATEGORIES = "category"
PRODUCTS = "product"
SELECTIONS = "tenantproduct"


def category_id_from_name(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def product_doc_id(category_id: str, product_id: str) -> str:
    return compose_id(category_id, product_id)


def selection_doc_id(tenant_id: str, category_id: str, product_id: str) -> str:
    return compose_id(tenant_id, category_id, product_id)


def _strip_id(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k != "_id"}


# ============ Visibility ============

class VisibilityState(Enum):
    HIDDEN = "hidden"
    VISIBLE = "visible"
    VISIBLE_WITH_OVERRIDE = "override"


@dataclass(frozen=True)
class Visibility:
    state: VisibilityState
    selling_price: Optional[float] = None

    @property
    def visible(self) -> bool:
        return self.state is not VisibilityState.HIDDEN


HIDDEN = Visibility(VisibilityState.HIDDEN)
VISIBLE = Visibility(VisibilityState.VISIBLE)


def visibility_of(selection: Optional[TenantProductSelection]) -> Visibility:
    if selection is None or selection.enabled is False:
        return HIDDEN
    if selection.selling_price is not None:
        return Visibility(VisibilityState.VISIBLE_WITH_OVERRIDE, selection.selling_price)
    return VISIBLE


# ============ Catalog ============

class CatalogService:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ----- categories -----

    async def list_categories(self) -> List[Category]:
        docs = await self.store.find(CATEGORIES)
        return [Category(**_strip_id(d)) for d in docs]

    async def get_category(self, category_id: str) -> Category:
        doc = await self.store.get(CATEGORIES, category_id)
        if not doc:
            raise NotFoundError(f"Category {category_id} not found")
        return Category(**_strip_id(doc))

    async def add_category(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValidationError("Category name is required")
        category = Category(id=(data.id or category_id_from_name(name)).strip(), name=name, images=data.images)
        await self.store.put(CATEGORIES, category.id, category.model_dump())
        return category

    async def delete_category(self, category_id: str) -> bool:
        # only the category record; its roles and products are left in place
        return await self.store.delete(CATEGORIES, category_id)

    # ----- products -----

    async def list_products(self, category_id: str) -> List[Product]:
        docs = await self.store.find(PRODUCTS, {"category_id": category_id})
        return [Product(**_strip_id(d)) for d in docs]

    async def list_all_products(self) -> List[Product]:
        categories = await self.list_categories()
        per_category = await asyncio.gather(*(self.list_products(c.id) for c in categories))
        return [p for products in per_category for p in products]

    async def get_product(self, category_id: str, product_id: str) -> Product:
        doc = await self.store.get(PRODUCTS, product_doc_id(category_id, product_id))
        if not doc:
            raise NotFoundError(f"Product {product_id} not found in {category_id}")
        return Product(**_strip_id(doc))

    async def add_product(self, category_id: str, product: Product) -> Product:
        await self.get_category(category_id)
        product = product.model_copy(update={"category_id": category_id})
        await self.store.put(PRODUCTS, product_doc_id(category_id, product.id), product.model_dump())
        return product

    async def update_product(self, category_id: str, product_id: str, patch: ProductPatch) -> Product:
        current = await self.get_product(category_id, product_id)
        changes = patch.model_dump(exclude_unset=True)
        if changes:
            await self.store.update(PRODUCTS, product_doc_id(category_id, product_id), changes)
        return current.model_copy(update=changes)

    async def delete_product(self, category_id: str, product_id: str) -> bool:
        return await self.store.delete(PRODUCTS, product_doc_id(category_id, product_id))

    # ----- tenant selections -----

    async def get_tenant_category_products(self, tenant_id: str, category_id: str) -> Dict[str, TenantProductSelection]:
        docs = await self.store.find(SELECTIONS, {"tenant_id": tenant_id, "category_id": category_id})
        out = {}
        for d in docs:
            data = _strip_id(d)
            data.pop("tenant_id", None)
            out[d["product_id"]] = TenantProductSelection(**data)
        return out

    async def set_tenant_product(
        self, tenant_id: str, category_id: str, product_id: str, patch: SelectionPatch
    ) -> TenantProductSelection:
        await self.get_product(category_id, product_id)
        doc_id = selection_doc_id(tenant_id, category_id, product_id)
        changes = patch.model_dump(exclude_unset=True)
        changes.update(
            tenant_id=tenant_id,
            category_id=category_id,
            product_id=product_id,
            updated_at=datetime.now(timezone.utc),
        )
        await self.store.update(SELECTIONS, doc_id, changes)
        doc = await self.store.get(SELECTIONS, doc_id)
        data = _strip_id(doc)
        data.pop("tenant_id", None)
        return TenantProductSelection(**data)

    # ----- storefront -----

    async def _visible_products(self, category: Category, tenant_id: Optional[str]) -> List[StorefrontProduct]:
        products = await self.list_products(category.id)
        if not tenant_id:
            return [StorefrontProduct(**p.model_dump()) for p in products]

        try:
            selections = await self.get_tenant_category_products(tenant_id, category.id)
        except StorageUnavailable:
            logger.warning("Selections for tenant %s in %s unavailable; hiding category products",
                           tenant_id, category.id, exc_info=True)
            return []

        visible = []
        for p in products:
            selection = selections.get(p.id)
            vis = visibility_of(selection)
            if not vis.visible:
                continue
            visible.append(
                StorefrontProduct(
                    **p.model_dump(),
                    visibility=vis.state.value,
                    display_price=vis.selling_price,
                    selection=selection,
                )
            )
        return visible

    async def catalog_for(self, tenant_id: Optional[str] = None) -> List[StorefrontCategory]:
        """
        Categories with the products visible on a tenant's storefront.

        Without a tenant every admin product is shown (demo mode). A fixed
        selling price on a selection is exposed as ``display_price`` only;
        orders are still priced by tiers.
        """
        categories = await self.list_categories()
        per_category = await asyncio.gather(*(self._visible_products(c, tenant_id) for c in categories))
        return [
            StorefrontCategory(**c.model_dump(), products=products)
            for c, products in zip(categories, per_category)
        ]
