"""
Error taxonomy shared by every service.

Each error carries a stable ``kind`` string so the HTTP layer can turn it into
a structured ``{kind, message}`` body without inspecting messages.
"""

from typing import Optional


class StorefrontError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(StorefrontError):
    """Malformed pricing rule or cart line. Raised before any write."""
    kind = "invalid-argument"
    status_code = 400


class NotFoundError(StorefrontError):
    kind = "not-found"
    status_code = 404


class PricingUnavailable(NotFoundError):
    """A category in a cart has no resolvable price for the requested role."""
    kind = "pricing-unavailable"
    status_code = 422

    def __init__(self, message: str, category_id: Optional[str] = None):
        super().__init__(message)
        self.category_id = category_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.category_id is not None:
            body["category_id"] = self.category_id
        return body


class StorageUnavailable(StorefrontError):
    kind = "unavailable"
    status_code = 503


class PermissionDenied(StorefrontError):
    kind = "permission-denied"
    status_code = 403
