from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for scope enforcement failures."""


class IdentityUnavailableError(AuthorizationError):
    """Raised when a request carries no usable signed-in identity."""

    def __init__(self, reason: str = "no signed-in user") -> None:
        self.reason = reason
        super().__init__(f"Identity unavailable: {reason}")


class OutOfScopeError(AuthorizationError):
    """Raised when a single record is requested outside the actor's visibility scope."""

    def __init__(self, resource: str, entity_id: str) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"Record '{entity_id}' is not visible for resource '{resource}'")
