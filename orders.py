"""
Order submission and reporting.

Submissions come from untrusted clients: every order is validated and priced
again here, whatever totals the client computed. An order is written at most
once per (tenant_id, idempotency_key); replays return the first order.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from bson import ObjectId

from cart import CartAggregator
from database import DocumentStore, compose_id
from errors import NotFoundError, ValidationError
from schemas import CartLine, Order, OrderResult, PayoutLine, PayoutReport
from tenants import TenantDirectory

logger = logging.getLogger(__name__)

COLLECTION = "order"


def order_doc_id(tenant_id: str, idempotency_key: str) -> str:
    return compose_id(tenant_id, idempotency_key)


def validate_lines(lines: Sequence[CartLine]) -> None:
    if not lines:
        raise ValidationError("Cart is empty: add items before checkout")
    for i, line in enumerate(lines):
        if not (line.category_id or "").strip():
            raise ValidationError(f"Line {i}: category_id is required")
        if not (line.product_id or "").strip():
            raise ValidationError(f"Line {i}: product_id is required")
        if isinstance(line.qty, bool) or not isinstance(line.qty, int) or line.qty <= 0:
            raise ValidationError(f"Line {i}: qty must be a positive integer")


def _to_order(doc: dict) -> Order:
    data = {k: v for k, v in doc.items() if k != "_id"}
    return Order.model_validate(data)


class OrderService:
    def __init__(
        self,
        store: DocumentStore,
        aggregator: CartAggregator,
        tenants: TenantDirectory,
        default_tenant_id: str = "default",
    ):
        self.store = store
        self.aggregator = aggregator
        self.tenants = tenants
        self.default_tenant_id = default_tenant_id

    async def submit(
        self,
        tenant_id: Optional[str],
        role: str,
        lines: Sequence[CartLine],
        idempotency_key: str,
        client_subtotal: Optional[float] = None,
    ) -> OrderResult:
        tenant_id = tenant_id or self.default_tenant_id
        role = (role or "").strip()
        if not role:
            raise ValidationError("role is required")
        if not (idempotency_key or "").strip():
            raise ValidationError("idempotency_key is required")
        validate_lines(lines)
        # raises NotFoundError for tenants that were never registered
        await self.tenants.get_tenant(tenant_id)

        doc_id = order_doc_id(tenant_id, idempotency_key)
        existing = await self.store.get(COLLECTION, doc_id)
        if existing is not None:
            logger.info("Replayed order %s for tenant %s (key %s)", existing["id"], tenant_id, idempotency_key)
            return OrderResult(order_id=existing["id"], already_processed=True)

        totals = await self.aggregator.aggregate(lines, role, tenant_id)
        if client_subtotal is not None and round(client_subtotal, 2) != totals.subtotal:
            logger.warning(
                "Client subtotal %s differs from computed %s for tenant %s",
                client_subtotal, totals.subtotal, tenant_id,
            )

        order = Order(
            id=str(ObjectId()),
            tenant_id=tenant_id,
            role_used=role,
            items=totals.priced_lines(),
            subtotal=totals.subtotal,
            total=totals.subtotal,
            idempotency_key=idempotency_key,
            created_at=datetime.now(timezone.utc),
        )
        # once issued, the insert runs to completion even if the caller goes away
        stored, created = await asyncio.shield(
            self.store.create_if_absent(COLLECTION, doc_id, order.model_dump())
        )
        if not created:
            logger.info("Order for key %s was created concurrently as %s", idempotency_key, stored["id"])
            return OrderResult(order_id=stored["id"], already_processed=True)

        logger.info("Created order %s for tenant %s: %s items, total %.2f", order.id, tenant_id, len(order.items), order.total)
        return OrderResult(order_id=order.id, already_processed=False)

    async def get_order(self, tenant_id: str, order_id: str) -> Order:
        docs = await self.store.find(COLLECTION, {"tenant_id": tenant_id, "id": order_id}, limit=1)
        if not docs:
            raise NotFoundError(f"Order {order_id} not found")
        return _to_order(docs[0])

    async def list_orders(self, tenant_id: str, limit: int = 0) -> List[Order]:
        docs = await self.store.find(COLLECTION, {"tenant_id": tenant_id}, limit)
        return sorted((_to_order(d) for d in docs), key=lambda o: o.created_at, reverse=True)

    async def list_all_orders(self, limit: int = 0) -> List[Order]:
        """Every tenant's orders, newest first (admin reporting)."""
        docs = await self.store.find(COLLECTION, None, limit)
        return sorted((_to_order(d) for d in docs), key=lambda o: o.created_at, reverse=True)

    async def payout(self, tenant_id: str, order_id: str) -> PayoutReport:
        """
        Compare what the tenant charged with what it pays: each line's
        purchase cost is the reseller role at the line's quantity. Lines that
        cannot be priced report no cost and are left out of the total profit.
        """
        order = await self.get_order(tenant_id, order_id)
        resolver = self.aggregator.resolver

        async def cost(line) -> Optional[float]:
            try:
                return await resolver.purchase_cost(line.category_id, tenant_id, line.qty)
            except NotFoundError:
                logger.warning("No purchase cost for %s qty=%s in order %s", line.category_id, line.qty, order_id)
                return None

        costs = await asyncio.gather(*(cost(it) for it in order.items))
        items = []
        total_profit = 0.0
        for line, unit in zip(order.items, costs):
            selling_total = line.unit_price * line.qty
            entry = PayoutLine(
                index=line.index,
                category_id=line.category_id,
                qty=line.qty,
                selling_unit=line.unit_price,
                selling_total=selling_total,
            )
            if unit is not None:
                entry.purchase_unit = unit
                entry.purchase_total = unit * line.qty
                entry.profit = selling_total - entry.purchase_total
                total_profit += entry.profit
            items.append(entry)
        return PayoutReport(order_id=order.id, tenant_id=tenant_id, items=items, total_profit=round(total_profit, 2))
