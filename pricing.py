"""
Tiered quantity pricing.

Price roles live at two scopes: the admin scope holds the global default per
(category, role) and each tenant may override a (category, role) pair. Unit
prices are resolved through a chain of rule providers, most specific first;
the first provider whose bands cover the requested quantity wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from database import DocumentStore, compose_id
from errors import NotFoundError, ValidationError
from permissions import Principal, require_admin, require_tenant
from schemas import PriceRole, PriceRule

logger = logging.getLogger(__name__)

COLLECTION = "pricerole"
DEFAULT_ROLE = "retail"
PURCHASE_ROLE = "reseller"


@dataclass(frozen=True)
class Scope:
    tenant_id: Optional[str] = None

    @property
    def name(self) -> str:
        return "admin" if self.tenant_id is None else "tenant"

    @property
    def key(self) -> str:
        return "admin" if self.tenant_id is None else f"tenant:{self.tenant_id}"

    @classmethod
    def for_tenant(cls, tenant_id: str) -> "Scope":
        return cls(tenant_id=tenant_id)


ADMIN = Scope()


def role_doc_id(scope: Scope, category_id: str, role_id: str) -> str:
    return compose_id(scope.key, category_id, role_id)


def make_role_id(name: Any, fallback_id: str) -> str:
    """Slug of a role name: "Retail Tier A" -> "retail-tier-a"."""
    raw = str(name or "").strip().lower()
    slug = re.sub(r"\s+", "-", raw)
    slug = re.sub(r"[^a-z0-9_-]", "", slug)
    return slug or fallback_id


def find_band(rules: Sequence[PriceRule], qty: int) -> Optional[PriceRule]:
    for rule in sorted(rules, key=lambda r: r.min):
        if rule.covers(qty):
            return rule
    return None


# ============ Validation ============

def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not a quantity")
    number = float(value)
    if not number.is_integer():
        raise ValueError("quantity bounds must be whole numbers")
    return int(number)


def _as_price(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("bool is not a price")
    number = float(value)
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError("price must be finite")
    return number


def _parse_rule(role_id: str, raw: Any) -> PriceRule:
    if isinstance(raw, PriceRule):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise ValidationError(f"Invalid rule values in role {role_id}")
    try:
        min_qty = _as_int(raw.get("min"))
        max_raw = raw.get("max")
        max_qty = None if max_raw is None else _as_int(max_raw)
        price = _as_price(raw.get("price"))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid rule values in role {role_id}")
    if min_qty < 0:
        raise ValidationError(f"min < 0 in role {role_id}")
    if max_qty is not None and min_qty > max_qty:
        raise ValidationError(f"min > max in role {role_id}")
    if price < 0:
        raise ValidationError(f"Price cannot be negative in role {role_id}")
    return PriceRule(min=min_qty, max=max_qty, price=price)


def _check_overlap(role_id: str, rules: List[PriceRule]) -> None:
    ordered = sorted(rules, key=lambda r: r.min)
    for prev, cur in zip(ordered, ordered[1:]):
        if prev.max is None or prev.max >= cur.min:
            raise ValidationError(f"overlapping bands in role {role_id}")


def validate_role(scope: Scope, role_id: str, raw: Any) -> PriceRole:
    """Turn a raw role document into a PriceRole or raise ValidationError."""
    if isinstance(raw, PriceRole):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise ValidationError(f"Invalid role document for {role_id}")
    role_name = str(raw.get("role_name") or raw.get("roleName") or "").strip()
    rules_raw = raw.get("rules") or []
    if not isinstance(rules_raw, list):
        raise ValidationError(f"Invalid rule values in role {role_id}")
    if scope.tenant_id is not None:
        if not role_name:
            raise ValidationError("Each role must have a name.")
        if not rules_raw:
            raise ValidationError(f"Role {role_name} must have at least one rule.")
    rules = [_parse_rule(role_id, r) for r in rules_raw]
    _check_overlap(role_id, rules)
    return PriceRole(role_name=role_name or role_id, rules=rules)


# ============ Store ============

class PricingRuleStore:
    """Durable PriceRole records, keyed by scope, category and role."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def _to_role(doc: dict) -> PriceRole:
        return PriceRole(role_name=doc.get("role_name") or doc.get("role_id", ""), rules=doc.get("rules") or [])

    async def get_role(self, scope: Scope, category_id: str, role_id: str) -> Optional[PriceRole]:
        doc = await self.store.get(COLLECTION, role_doc_id(scope, category_id, role_id))
        return self._to_role(doc) if doc else None

    async def list_roles(self, scope: Scope, category_id: str) -> Dict[str, PriceRole]:
        docs = await self.store.find(COLLECTION, {"scope": scope.key, "category_id": category_id})
        return {d["role_id"]: self._to_role(d) for d in docs}

    async def _write(self, scope: Scope, category_id: str, role_id: str, role: PriceRole) -> None:
        await self.store.put(
            COLLECTION,
            role_doc_id(scope, category_id, role_id),
            {
                "scope": scope.key,
                "tenant_id": scope.tenant_id,
                "category_id": category_id,
                "role_id": role_id,
                "role_name": role.role_name,
                "rules": [r.model_dump() for r in role.rules],
            },
        )

    async def set_role(self, scope: Scope, category_id: str, role_id: str, role: Any) -> PriceRole:
        role_id = (role_id or "").strip()
        if not role_id:
            raise ValidationError("Role id required (e.g. retail)")
        validated = validate_role(scope, role_id, role)
        await self._write(scope, category_id, role_id, validated)
        return validated

    async def set_roles(self, scope: Scope, category_id: str, roles: Dict[str, Any]) -> Dict[str, PriceRole]:
        """
        Replace a set of roles for one category. Every role is validated
        before anything is written, so a bad rule anywhere rejects the whole
        save. Tenant-scope roles are keyed by the slug of their role name.
        """
        validated: Dict[str, PriceRole] = {}
        for rid, raw in (roles or {}).items():
            role = validate_role(scope, rid, raw)
            key = make_role_id(role.role_name, rid) if scope.tenant_id is not None else rid.strip()
            if not key:
                raise ValidationError("Role id required (e.g. retail)")
            if key in validated:
                raise ValidationError(f"Duplicate role {key}: role names must differ")
            validated[key] = role
        for key, role in validated.items():
            await self._write(scope, category_id, key, role)
        logger.info("Saved %d price role(s) for %s in %s", len(validated), category_id, scope.key)
        return validated

    async def delete_role(self, scope: Scope, category_id: str, role_id: str) -> bool:
        return await self.store.delete(COLLECTION, role_doc_id(scope, category_id, role_id))


def check_scope_write(principal: Principal, scope: Scope) -> None:
    if scope.tenant_id is None:
        require_admin(principal)
    else:
        require_tenant(principal, scope.tenant_id)


# ============ Resolution ============

class RuleProvider:
    """One layer of the pricing chain."""

    def __init__(self, rules: PricingRuleStore, scope: Scope):
        self.rules = rules
        self.scope = scope

    async def bands(self, category_id: str, role: str) -> List[PriceRule]:
        doc = await self.rules.get_role(self.scope, category_id, role)
        return list(doc.rules) if doc else []


@dataclass(frozen=True)
class PriceMatch:
    price: float
    rule: PriceRule
    scope: Scope
    bands: List[PriceRule]


ChainBuilder = Callable[[Optional[str]], List[RuleProvider]]


class PriceResolver:
    def __init__(self, rules: PricingRuleStore, chain: Optional[ChainBuilder] = None):
        self.rules = rules
        self._chain = chain or self.default_chain

    def default_chain(self, tenant_id: Optional[str]) -> List[RuleProvider]:
        providers = []
        if tenant_id:
            providers.append(RuleProvider(self.rules, Scope.for_tenant(tenant_id)))
        providers.append(RuleProvider(self.rules, ADMIN))
        return providers

    async def match(self, category_id: str, role: str, qty: int, tenant_id: Optional[str] = None) -> PriceMatch:
        for provider in self._chain(tenant_id):
            bands = await provider.bands(category_id, role)
            if not bands:
                continue
            rule = find_band(bands, qty)
            if rule is not None:
                return PriceMatch(price=rule.price, rule=rule, scope=provider.scope, bands=bands)
        logger.warning("No pricing rule for %s/%s qty=%s tenant=%s", category_id, role, qty, tenant_id)
        raise NotFoundError(f"no pricing rule matches quantity {qty} for role {role} in category {category_id}")

    async def resolve(self, category_id: str, role: str, qty: int, tenant_id: Optional[str] = None) -> float:
        return (await self.match(category_id, role, qty, tenant_id)).price

    async def available_roles(self, category_id: str, tenant_id: Optional[str] = None) -> List[str]:
        """Role ids offered for a category: the tenant's own set if it has one, else the admin set."""
        if tenant_id:
            tenant_roles = await self.rules.list_roles(Scope.for_tenant(tenant_id), category_id)
            if tenant_roles:
                return sorted(tenant_roles)
        admin_roles = await self.rules.list_roles(ADMIN, category_id)
        return sorted(admin_roles) or [DEFAULT_ROLE]

    async def purchase_cost(self, category_id: str, tenant_id: Optional[str] = None, qty: int = 1) -> float:
        """What the tenant pays per unit: the reseller role through the normal chain."""
        return await self.resolve(category_id, PURCHASE_ROLE, qty, tenant_id)
