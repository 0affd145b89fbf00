"""
Caller identity as handed to the services by the HTTP boundary.

Authentication happens elsewhere; services only check that the principal they
were given is allowed to perform a mutation.
"""

from dataclasses import dataclass
from typing import Optional

from errors import PermissionDenied


@dataclass(frozen=True)
class Principal:
    tenant_id: Optional[str] = None
    email: Optional[str] = None
    role: str = "anonymous"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


ANONYMOUS = Principal()
SYSTEM = Principal(role="admin", email="system")


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise PermissionDenied("Admin privileges required")


def require_tenant(principal: Principal, tenant_id: str) -> None:
    if principal.is_admin:
        return
    if principal.tenant_id is None or principal.tenant_id != tenant_id:
        raise PermissionDenied(f"Not allowed to modify tenant {tenant_id}")
