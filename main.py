import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from cart import CartAggregator
from catalog import CatalogService
from database import MemoryDocumentStore, create_store
from errors import StorefrontError, ValidationError
from orders import OrderService
from permissions import ANONYMOUS, Principal, require_admin, require_tenant
from pricing import ADMIN, PriceResolver, PricingRuleStore, Scope, check_scope_write
from schemas import (
    CartTotals,
    Category,
    CategoryIn,
    Order,
    OrderResult,
    OrderSubmission,
    PayoutReport,
    PricePreviewRequest,
    PriceRole,
    Product,
    ProductPatch,
    SelectionPatch,
    StorefrontCategory,
    Tenant,
    TenantPatch,
    TenantProductSelection,
)
from seed import seed
from tenants import TenantDirectory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: object
    rules: PricingRuleStore
    resolver: PriceResolver
    aggregator: CartAggregator
    orders: OrderService
    catalog: CatalogService
    tenants: TenantDirectory


def build_services(store, default_tenant_id: str = config.DEFAULT_TENANT_ID) -> Services:
    rules = PricingRuleStore(store)
    resolver = PriceResolver(rules)
    aggregator = CartAggregator(resolver)
    tenants = TenantDirectory(store, default_tenant_id)
    return Services(
        store=store,
        rules=rules,
        resolver=resolver,
        aggregator=aggregator,
        orders=OrderService(store, aggregator, tenants, default_tenant_id),
        catalog=CatalogService(store),
        tenants=tenants,
    )


# Helpers
def make_token(tenant_id: Optional[str], email: str, role: str) -> str:
    payload = {"tenant_id": tenant_id, "email": email, "role": role}
    raw = json.dumps(payload).encode()
    return base64.urlsafe_b64encode(raw).decode()


def get_principal(authorization: Optional[str] = Header(None)) -> Principal:
    if not authorization:
        return ANONYMOUS
    token = authorization.split(" ", 1)[1] if authorization.lower().startswith("bearer ") else authorization
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode()).decode())
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=401, detail="Invalid token")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(tenant_id=payload.get("tenant_id"), email=payload.get("email"), role=payload.get("role", "anonymous"))


def get_services(request: Request) -> Services:
    return request.app.state.services


def describe_request_error(exc: RequestValidationError) -> str:
    """First schema error as one line; order items are named "Line i"."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = [p for p in err.get("loc", ()) if p != "body"]
    msg = err.get("msg", "invalid value")
    if len(loc) >= 2 and loc[0] == "items" and isinstance(loc[1], int):
        field = ".".join(str(p) for p in loc[2:]) or "item"
        return f"Line {loc[1]}: {field}: {msg}"
    if loc:
        return f"{'.'.join(str(p) for p in loc)}: {msg}"
    return msg


def create_app(store=None, seed_demo: Optional[bool] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config.configure_logging()
        active = store if store is not None else create_store(config.DATABASE_URL, config.DATABASE_NAME)
        app.state.services = build_services(active)
        should_seed = seed_demo if seed_demo is not None else isinstance(active, MemoryDocumentStore)
        if should_seed:
            await seed(active)
        try:
            yield
        finally:
            if store is None:
                await active.close()

    app = FastAPI(title="Storefront Pricing API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError(describe_request_error(exc))
        logger.info("Rejected %s %s: %s", request.method, request.url.path, err.message)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"name": "Storefront Pricing", "status": "ok"}

    @app.get("/test")
    async def test_database(svc: Services = Depends(get_services)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
            "database_name": None,
            "collections": [],
        }
        if isinstance(svc.store, MemoryDocumentStore):
            response["database"] = "⚠️ In-memory demo store"
            return response
        try:
            response["collections"] = (await svc.store.list_collection_names())[:10]
            response["database"] = "✅ Connected & Working"
            response["database_name"] = svc.store.name
        except StorefrontError as e:
            response["database"] = f"❌ Error: {e.message[:80]}"
        return response

    # ============ Tenant Endpoints ============
    @app.post("/api/tenants", response_model=Tenant)
    async def create_tenant(tenant: Tenant, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.tenants.add_tenant(tenant)

    @app.get("/api/tenants", response_model=List[Tenant])
    async def list_tenants(limit: int = 50, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.tenants.list_tenants(limit)

    @app.patch("/api/tenants/{tenant_id}", response_model=Tenant)
    async def update_tenant(tenant_id: str, patch: TenantPatch, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_tenant(principal, tenant_id)
        return await svc.tenants.update_tenant(tenant_id, patch)

    @app.get("/api/tenants/resolve", response_model=Tenant)
    async def resolve_tenant(host: str, svc: Services = Depends(get_services)):
        tenant = await svc.tenants.resolve_tenant_by_host(host)
        if tenant is None:
            raise HTTPException(status_code=404, detail="No tenant for host")
        return tenant

    # ============ Catalog Endpoints ============
    @app.get("/api/categories", response_model=List[Category])
    async def list_categories(svc: Services = Depends(get_services)):
        return await svc.catalog.list_categories()

    @app.post("/api/categories", response_model=Category)
    async def add_category(payload: CategoryIn, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.catalog.add_category(payload)

    @app.delete("/api/categories/{category_id}")
    async def delete_category(category_id: str, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        if not await svc.catalog.delete_category(category_id):
            raise HTTPException(status_code=404, detail="Category not found")
        return {"id": category_id, "deleted": True}

    @app.get("/api/categories/{category_id}/products", response_model=List[Product])
    async def list_products(category_id: str, svc: Services = Depends(get_services)):
        return await svc.catalog.list_products(category_id)

    @app.post("/api/categories/{category_id}/products", response_model=Product)
    async def add_product(category_id: str, product: Product, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.catalog.add_product(category_id, product)

    @app.patch("/api/categories/{category_id}/products/{product_id}", response_model=Product)
    async def update_product(category_id: str, product_id: str, patch: ProductPatch, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.catalog.update_product(category_id, product_id, patch)

    @app.delete("/api/categories/{category_id}/products/{product_id}")
    async def delete_product(category_id: str, product_id: str, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        if not await svc.catalog.delete_product(category_id, product_id):
            raise HTTPException(status_code=404, detail="Product not found")
        return {"id": product_id, "deleted": True}

    @app.get("/api/products", response_model=List[Product])
    async def list_all_products(svc: Services = Depends(get_services)):
        return await svc.catalog.list_all_products()

    # ============ Price Roles ============
    @app.get("/api/categories/{category_id}/roles", response_model=Dict[str, PriceRole])
    async def get_admin_roles(category_id: str, svc: Services = Depends(get_services)):
        return await svc.rules.list_roles(ADMIN, category_id)

    @app.put("/api/categories/{category_id}/roles", response_model=Dict[str, PriceRole])
    async def set_admin_roles(category_id: str, roles: Dict[str, dict], principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        check_scope_write(principal, ADMIN)
        return await svc.rules.set_roles(ADMIN, category_id, roles)

    @app.get("/api/tenants/{tenant_id}/categories/{category_id}/roles", response_model=Dict[str, PriceRole])
    async def get_tenant_roles(tenant_id: str, category_id: str, svc: Services = Depends(get_services)):
        return await svc.rules.list_roles(Scope.for_tenant(tenant_id), category_id)

    @app.put("/api/tenants/{tenant_id}/categories/{category_id}/roles", response_model=Dict[str, PriceRole])
    async def set_tenant_roles(tenant_id: str, category_id: str, roles: Dict[str, dict], principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        scope = Scope.for_tenant(tenant_id)
        check_scope_write(principal, scope)
        return await svc.rules.set_roles(scope, category_id, roles)

    @app.get("/api/pricing/resolve")
    async def resolve_price(category_id: str, role: str, qty: int, tenant_id: Optional[str] = None, svc: Services = Depends(get_services)):
        match = await svc.resolver.match(category_id, role, qty, tenant_id)
        return {"unit_price": match.price, "scope": match.scope.name, "tier": {"min": match.rule.min, "max": match.rule.max}}

    @app.get("/api/pricing/roles", response_model=List[str])
    async def available_roles(category_id: str, tenant_id: Optional[str] = None, svc: Services = Depends(get_services)):
        return await svc.resolver.available_roles(category_id, tenant_id)

    @app.get("/api/tenants/{tenant_id}/categories/{category_id}/purchase-cost")
    async def purchase_cost(tenant_id: str, category_id: str, qty: int = 1, svc: Services = Depends(get_services)):
        return {"unit_price": await svc.resolver.purchase_cost(category_id, tenant_id, qty)}

    # ============ Tenant Selections ============
    @app.get("/api/tenants/{tenant_id}/categories/{category_id}/products", response_model=Dict[str, TenantProductSelection])
    async def get_selections(tenant_id: str, category_id: str, svc: Services = Depends(get_services)):
        return await svc.catalog.get_tenant_category_products(tenant_id, category_id)

    @app.patch("/api/tenants/{tenant_id}/categories/{category_id}/products/{product_id}", response_model=TenantProductSelection)
    async def set_selection(tenant_id: str, category_id: str, product_id: str, patch: SelectionPatch, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_tenant(principal, tenant_id)
        return await svc.catalog.set_tenant_product(tenant_id, category_id, product_id, patch)

    # ============ Storefront ============
    @app.get("/api/catalog", response_model=List[StorefrontCategory])
    async def catalog(tenant_id: Optional[str] = None, svc: Services = Depends(get_services)):
        return await svc.catalog.catalog_for(tenant_id)

    @app.get("/api/storefront")
    async def storefront(request: Request, svc: Services = Depends(get_services)):
        tenant_id = await svc.tenants.tenant_id_for_host(request.headers.get("host"))
        categories = await svc.catalog.catalog_for(tenant_id)
        return {"tenant_id": tenant_id, "categories": [c.model_dump() for c in categories]}

    @app.post("/api/cart/preview", response_model=CartTotals)
    async def preview_cart(payload: PricePreviewRequest, svc: Services = Depends(get_services)):
        return await svc.aggregator.aggregate(payload.items, payload.role, payload.tenant_id)

    # ============ Orders Endpoints ============
    @app.post("/api/orders", response_model=OrderResult)
    async def create_order(payload: OrderSubmission, request: Request, svc: Services = Depends(get_services)):
        tenant_id = payload.tenant_id or await svc.tenants.tenant_id_for_host(request.headers.get("host"))
        return await svc.orders.submit(tenant_id, payload.role, payload.items, payload.idempotency_key, payload.client_subtotal)

    @app.get("/api/tenants/{tenant_id}/orders", response_model=List[Order])
    async def list_orders(tenant_id: str, limit: int = 100, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_tenant(principal, tenant_id)
        return await svc.orders.list_orders(tenant_id, limit)

    @app.get("/api/tenants/{tenant_id}/orders/{order_id}", response_model=Order)
    async def get_order(tenant_id: str, order_id: str, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_tenant(principal, tenant_id)
        return await svc.orders.get_order(tenant_id, order_id)

    @app.get("/api/tenants/{tenant_id}/orders/{order_id}/payout", response_model=PayoutReport)
    async def order_payout(tenant_id: str, order_id: str, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_tenant(principal, tenant_id)
        return await svc.orders.payout(tenant_id, order_id)

    @app.get("/api/orders", response_model=List[Order])
    async def list_all_orders(limit: int = 100, principal: Principal = Depends(get_principal), svc: Services = Depends(get_services)):
        require_admin(principal)
        return await svc.orders.list_all_orders(limit)

    # ============ Schemas Discovery (for migrations/tools) ============
    @app.get("/schema")
    def get_schema():
        return {
            "category": {"fields": ["id", "name", "images"], "indexes": ["_id"]},
            "product": {
                "fields": ["id", "category_id", "product_code", "product_name", "stock", "images", "variants"],
                "indexes": ["category_id"],
            },
            "pricerole": {
                "fields": ["scope", "tenant_id", "category_id", "role_id", "role_name", "rules"],
                "indexes": ["scope", "category_id"],
            },
            "tenant": {"fields": ["id", "name", "domains", "branding", "email"], "indexes": ["domains"]},
            "tenantproduct": {
                "fields": ["tenant_id", "category_id", "product_id", "enabled", "selling_price", "use_default_from_tier", "updated_at"],
                "indexes": ["tenant_id", "category_id"],
            },
            "order": {
                "fields": ["id", "tenant_id", "role_used", "items", "subtotal", "total", "idempotency_key", "created_at"],
                "indexes": ["tenant_id", "id"],
            },
        }


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
