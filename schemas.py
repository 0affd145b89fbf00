"""
Database Schemas for the multi-tenant storefront

Each Pydantic model represents a MongoDB collection (or an embedded document).
The collection name is the lowercase of the class name (e.g., Category ->
"category"). Tenant-owned records carry a tenant_id field so data for one
reseller can be isolated or migrated easily.

Transient models (cart lines, pricing breakdowns, request bodies) live at the
bottom of the file.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PriceRule(BaseModel):
    """A quantity band: every quantity in [min, max] costs `price` per unit."""
    min: int = Field(..., ge=0, description="Lowest quantity covered")
    max: Optional[int] = Field(None, ge=0, description="Highest quantity covered; None means unbounded")
    price: float = Field(..., ge=0, description="Unit price inside the band")

    def covers(self, qty: int) -> bool:
        return qty >= self.min and (self.max is None or qty <= self.max)


class PriceRole(BaseModel):
    """
    Price roles
    Collection: "pricerole" (one document per scope + category + role)
    """
    role_name: str = Field(..., description="Display name, e.g. Retail")
    rules: List[PriceRule] = Field(default_factory=list)


class Category(BaseModel):
    """
    Admin categories
    Collection: "category"
    """
    id: str
    name: str
    images: List[str] = Field(default_factory=list)


class Product(BaseModel):
    """
    Admin products, each owned by exactly one category
    Collection: "product"
    """
    id: str
    category_id: str = Field(..., description="Owning category id")
    product_code: str = Field("", description="SKU-like code")
    product_name: str
    stock: int = Field(0, ge=0, description="Units in stock")
    images: List[str] = Field(default_factory=list)
    variants: Optional[Dict[str, Dict[str, int]]] = Field(
        None, description="variantType (colors, sizes, ...) -> option -> quantity"
    )


class TenantProductSelection(BaseModel):
    """
    A reseller's choice to show an admin product on its storefront
    Collection: "tenantproduct"
    """
    product_id: str
    category_id: str
    enabled: Optional[bool] = Field(None, description="Absent is treated as enabled")
    selling_price: Optional[float] = Field(None, ge=0, description="Fixed display price override")
    use_default_from_tier: bool = False
    updated_at: Optional[datetime] = None


class SelectionPatch(BaseModel):
    enabled: Optional[bool] = None
    selling_price: Optional[float] = Field(None, ge=0)
    use_default_from_tier: Optional[bool] = None


class Branding(BaseModel):
    logo_url: Optional[str] = None


class Tenant(BaseModel):
    """
    Reseller metadata
    Collection: "tenant"
    """
    id: str
    name: str
    domains: List[str] = Field(default_factory=list, description="Hosts (hostname[:port]) serving this storefront")
    branding: Branding = Field(default_factory=Branding)
    email: Optional[str] = None


class TenantPatch(BaseModel):
    name: Optional[str] = None
    domains: Optional[List[str]] = None
    branding: Optional[Branding] = None
    email: Optional[str] = None


class CategoryIn(BaseModel):
    name: str
    id: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class ProductPatch(BaseModel):
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    variants: Optional[Dict[str, Dict[str, int]]] = None


class StorefrontProduct(Product):
    visibility: str = Field("visible", description="visible | override")
    display_price: Optional[float] = Field(None, description="Fixed selling price shown instead of tiers")
    selection: Optional[TenantProductSelection] = None


class StorefrontCategory(Category):
    products: List[StorefrontProduct] = Field(default_factory=list)


class Variant(BaseModel):
    type: str
    value: str


class CartLine(BaseModel):
    category_id: str = ""
    product_id: str = ""
    qty: int = Field(..., strict=True, description="Whole units; JSON booleans and floats are rejected")
    variant: Optional[Variant] = None


class Tier(BaseModel):
    min: int
    max: Optional[int] = None


class PricedCartLine(CartLine):
    index: int = Field(..., description="Position of the line in the submitted cart")
    unit_price: float
    line_total: float
    active_tier: Optional[Tier] = None


class CategoryBreakdown(BaseModel):
    category_id: str
    total_qty: int
    unit_price: float
    scope: str = Field(..., description="Which rule layer priced the category (tenant or admin)")
    items: List[PricedCartLine]
    cat_total: float


class CartTotals(BaseModel):
    subtotal: float = 0.0
    breakdown: List[CategoryBreakdown] = Field(default_factory=list)

    def priced_lines(self) -> List[PricedCartLine]:
        lines = [it for cat in self.breakdown for it in cat.items]
        return sorted(lines, key=lambda it: it.index)


class Order(BaseModel):
    """
    Orders, immutable once written
    Collection: "order"
    """
    id: str
    tenant_id: str = Field(..., description="Owning tenant id")
    role_used: str
    items: List[PricedCartLine]
    subtotal: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    idempotency_key: str
    created_at: datetime


class OrderSubmission(BaseModel):
    tenant_id: Optional[str] = None
    role: str = "retail"
    items: List[CartLine] = Field(default_factory=list)
    idempotency_key: str = ""
    client_subtotal: Optional[float] = Field(None, description="Advisory only, never used for pricing")


class OrderResult(BaseModel):
    order_id: str
    already_processed: bool = False


class PricePreviewRequest(BaseModel):
    tenant_id: Optional[str] = None
    role: str = "retail"
    items: List[CartLine] = Field(default_factory=list)


class PayoutLine(BaseModel):
    index: int
    category_id: str
    qty: int
    selling_unit: float
    selling_total: float
    purchase_unit: Optional[float] = None
    purchase_total: Optional[float] = None
    profit: Optional[float] = None


class PayoutReport(BaseModel):
    order_id: str
    tenant_id: str
    items: List[PayoutLine]
    total_profit: float


# Note for the platform:
# 1) Each persisted model aligns to a MongoDB collection with the lowercased class name
# 2) Price roles and tenant selections use composite string _ids built with database.compose_id
# 3) Order _ids are derived from (tenant_id, idempotency_key) so a replay maps onto the same document
