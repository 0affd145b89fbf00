"""
Demo dataset.

Loaded into the in-memory store when the app starts without DATABASE_URL, and
usable against MongoDB by running this module directly.
"""

import asyncio
import logging

from catalog import CatalogService
from config import DATABASE_NAME, DATABASE_URL, DEFAULT_TENANT_ID, configure_logging
from database import create_store
from pricing import ADMIN, PricingRuleStore
from schemas import CategoryIn, Product, Tenant
from tenants import TenantDirectory

logger = logging.getLogger(__name__)

DEMO_CATALOG = {
    "cat-electronics": {
        "name": "Electronics",
        "roles": {
            "retail": [(1, 5, 1200), (6, 15, 1100), (16, None, 1000)],
            "wholesale": [(1, 50, 800), (51, None, 700)],
            "reseller": [(1, 10, 1150), (11, 30, 1050), (31, None, 950)],
        },
        "products": [
            ("elec-001", "E-X1", "Smartphone X1", 120, {"colors": {"black": 50, "white": 40, "blue": 30}}),
            ("elec-002", "E-ZB", "Wireless Earbuds Z", 300, None),
            ("elec-003", "E-SP", "Bluetooth Speaker Pro", 150, None),
        ],
    },
    "cat-furniture": {
        "name": "Furniture",
        "roles": {
            "retail": [(1, 3, 4500), (4, 10, 4300), (11, None, 4000)],
            "reseller": [(1, 5, 4200), (6, None, 3900)],
        },
        "products": [
            ("furn-001", "F-DT1", "Classic Dining Table", 20, None),
            ("furn-002", "F-SO3", "Comfort Sofa 3-Seater", 15, {"colors": {"gray": 6, "blue": 5, "beige": 4}}),
        ],
    },
    "cat-apparel": {
        "name": "Apparel",
        "roles": {
            "retail": [(1, 5, 800), (6, 20, 700), (21, None, 650)],
            "reseller": [(1, 10, 750), (11, None, 700)],
            "foreign": [(1, None, 900)],
        },
        "products": [
            ("app-001", "A-TS1", "Cotton T-Shirt", 500, {"sizes": {"S": 150, "M": 200, "L": 150}}),
            ("app-002", "A-HD1", "Zip Hoodie", 200, {"sizes": {"M": 100, "L": 100}}),
        ],
    },
}


async def seed(store) -> None:
    catalog = CatalogService(store)
    rules = PricingRuleStore(store)
    tenants = TenantDirectory(store)

    for cat_id, cat in DEMO_CATALOG.items():
        await catalog.add_category(CategoryIn(id=cat_id, name=cat["name"]))
        roles = {
            role_id: {"role_name": role_id, "rules": [{"min": lo, "max": hi, "price": p} for lo, hi, p in bands]}
            for role_id, bands in cat["roles"].items()
        }
        await rules.set_roles(ADMIN, cat_id, roles)
        for pid, code, name, stock, variants in cat["products"]:
            await catalog.add_product(
                cat_id,
                Product(id=pid, category_id=cat_id, product_code=code, product_name=name, stock=stock, variants=variants),
            )
        logger.info("Seeded category %s", cat_id)

    await tenants.add_tenant(Tenant(id=DEFAULT_TENANT_ID, name="Demo Store", domains=["localhost:5173", "localhost"]))


async def main() -> None:
    store = create_store(DATABASE_URL, DATABASE_NAME)
    try:
        await seed(store)
    finally:
        await store.close()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
