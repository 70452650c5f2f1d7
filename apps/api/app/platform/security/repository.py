from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from app.core.config import get_settings
from app.platform.security.context import AuthContext
from app.platform.security.rls import (
    Combinator,
    EntityKind,
    MembershipResolver,
    ScopePredicate,
    apply_scope_filter,
    compute_scope,
)


class BaseRepository:
    resource = ""
    entity_kind: EntityKind
    model: Any = None

    def scope_for(self, ctx: AuthContext, resolver: MembershipResolver) -> ScopePredicate:
        combinator = Combinator(get_settings().tache_team_scope_combinator)
        return compute_scope(ctx, self.entity_kind, resolver, tache_combinator=combinator)

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext, resolver: MembershipResolver) -> Select[Any]:
        return apply_scope_filter(query, self.model, self.scope_for(ctx, resolver))
