from app.platform.security.context import AuthContext, Role
from app.platform.security.errors import AuthorizationError, IdentityUnavailableError, OutOfScopeError
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import ScopePredicate, apply_scope_filter, compute_scope

__all__ = [
    "AuthContext",
    "Role",
    "AuthorizationError",
    "IdentityUnavailableError",
    "OutOfScopeError",
    "BaseRepository",
    "ScopePredicate",
    "apply_scope_filter",
    "compute_scope",
]
