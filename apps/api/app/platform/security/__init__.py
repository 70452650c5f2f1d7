from app.platform.security.context import AuthContext, Role
from app.platform.security.errors import AuthorizationError, IdentityUnavailableError, OutOfScopeError
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import (
    Combinator,
    EntityKind,
    MembershipResolver,
    ScopeFilter,
    ScopeKind,
    ScopePredicate,
    apply_scope_filter,
    compute_scope,
    owned_contacts_step,
    resolve_ids,
    team_members_step,
)

__all__ = [
    "AuthContext",
    "Role",
    "AuthorizationError",
    "IdentityUnavailableError",
    "OutOfScopeError",
    "BaseRepository",
    "Combinator",
    "EntityKind",
    "MembershipResolver",
    "ScopeFilter",
    "ScopeKind",
    "ScopePredicate",
    "apply_scope_filter",
    "compute_scope",
    "owned_contacts_step",
    "resolve_ids",
    "team_members_step",
]
