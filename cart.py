"""
Cart aggregation.

Tier eligibility is decided per category on the combined quantity of every
line in that category, then the category's unit price is applied to each of
its lines. Buying 3 of size S and 7 of size M counts as 10 for tier purposes.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from errors import NotFoundError, PricingUnavailable
from pricing import PriceMatch, PriceResolver, find_band
from schemas import CartLine, CartTotals, CategoryBreakdown, PricedCartLine, Tier

logger = logging.getLogger(__name__)


def group_by_category(lines: Sequence[CartLine]) -> Dict[str, List[int]]:
    """category_id -> indexes of its lines, categories in first-seen order."""
    groups: Dict[str, List[int]] = {}
    for idx, line in enumerate(lines):
        groups.setdefault(line.category_id, []).append(idx)
    return groups


def _active_tier(match: PriceMatch, total_qty: int) -> Optional[Tier]:
    band = find_band(match.bands, total_qty) or (match.bands[0] if match.bands else None)
    if band is None:
        return None
    return Tier(min=band.min, max=band.max)


class CartAggregator:
    def __init__(self, resolver: PriceResolver):
        self.resolver = resolver

    async def _price_category(self, category_id: str, total_qty: int, role: str, tenant_id: Optional[str]) -> PriceMatch:
        try:
            return await self.resolver.match(category_id, role, total_qty, tenant_id)
        except NotFoundError as e:
            raise PricingUnavailable(
                f"Price not available for category {category_id}: {e.message}",
                category_id=category_id,
            ) from e

    async def aggregate(self, lines: Sequence[CartLine], role: str, tenant_id: Optional[str] = None) -> CartTotals:
        if not lines:
            return CartTotals()

        groups = group_by_category(lines)
        totals = {cid: sum(lines[i].qty for i in idxs) for cid, idxs in groups.items()}

        # one lookup per category, fanned out; any failure fails the cart
        matches = await asyncio.gather(
            *(self._price_category(cid, totals[cid], role, tenant_id) for cid in groups)
        )

        breakdown = []
        subtotal = 0.0
        for (cid, idxs), match in zip(groups.items(), matches):
            tier = _active_tier(match, totals[cid])
            items = []
            for i in idxs:
                line = lines[i]
                items.append(
                    PricedCartLine(
                        **line.model_dump(),
                        index=i,
                        unit_price=match.price,
                        line_total=match.price * line.qty,
                        active_tier=tier,
                    )
                )
            cat_total = sum(it.line_total for it in items)
            breakdown.append(
                CategoryBreakdown(
                    category_id=cid,
                    total_qty=totals[cid],
                    unit_price=match.price,
                    scope=match.scope.name,
                    items=items,
                    cat_total=round(cat_total, 2),
                )
            )
            subtotal += cat_total

        logger.debug("Priced %d line(s) in %d categories for role %s: %.2f", len(lines), len(breakdown), role, subtotal)
        return CartTotals(subtotal=round(subtotal, 2), breakdown=breakdown)
