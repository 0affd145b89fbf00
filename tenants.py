import logging
from typing import List, Optional

from database import DocumentStore
from errors import NotFoundError, ValidationError
from schemas import Tenant, TenantPatch

logger = logging.getLogger(__name__)

COLLECTION = "tenant"


def _to_tenant(doc: dict) -> Tenant:
    return Tenant(**{k: v for k, v in doc.items() if k != "_id"})


def host_candidates(host: str) -> List[str]:
    """Full host (hostname:port) first, then the bare hostname."""
    host = (host or "").strip().lower()
    if not host:
        return []
    candidates = [host]
    hostname = host.rsplit(":", 1)[0] if ":" in host and not host.endswith("]") else host
    if hostname != host:
        candidates.append(hostname)
    return candidates


class TenantDirectory:
    def __init__(self, store: DocumentStore, default_tenant_id: str = "default"):
        self.store = store
        self.default_tenant_id = default_tenant_id

    async def add_tenant(self, tenant: Tenant) -> Tenant:
        tenant_id = tenant.id.strip().lower()
        if not tenant_id or not tenant.name.strip():
            raise ValidationError("Tenant id and name are required")
        domains = [d.strip().lower() for d in tenant.domains if d.strip()]
        tenant = tenant.model_copy(update={"id": tenant_id, "name": tenant.name.strip(), "domains": domains})
        await self.store.put(COLLECTION, tenant_id, tenant.model_dump())
        return tenant

    async def list_tenants(self, limit: int = 0) -> List[Tenant]:
        return [_to_tenant(d) for d in await self.store.find(COLLECTION, None, limit)]

    async def get_tenant(self, tenant_id: str) -> Tenant:
        doc = await self.store.get(COLLECTION, tenant_id)
        if not doc:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return _to_tenant(doc)

    async def update_tenant(self, tenant_id: str, patch: TenantPatch) -> Tenant:
        current = await self.get_tenant(tenant_id)
        changes = patch.model_dump(exclude_unset=True)
        if "domains" in changes:
            changes["domains"] = [d.strip().lower() for d in changes["domains"] if d.strip()]
        if not changes:
            return current
        await self.store.update(COLLECTION, tenant_id, changes)
        return await self.get_tenant(tenant_id)

    async def resolve_tenant_by_host(self, host: str) -> Optional[Tenant]:
        for candidate in host_candidates(host):
            docs = await self.store.find(COLLECTION, {"domains": candidate}, limit=1)
            if docs:
                return _to_tenant(docs[0])
        return None

    async def tenant_id_for_host(self, host: Optional[str]) -> str:
        tenant = await self.resolve_tenant_by_host(host or "")
        if tenant is None:
            logger.debug("No tenant for host %r, using %s", host, self.default_tenant_id)
            return self.default_tenant_id
        return tenant.id
