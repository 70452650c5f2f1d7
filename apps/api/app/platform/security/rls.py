from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, Protocol

from sqlalchemy import and_, false, or_
from sqlalchemy.sql import ColumnElement, Select

from app.metrics import observe_scope_lookup, observe_scope_resolution
from app.otel import get_tracer
from app.platform.security.context import AuthContext, Role


logger = logging.getLogger("app.security.scope")
tracer = get_tracer("app.security.scope")


class EntityKind(StrEnum):
    CONTACT = "contact"
    PROPOSITION = "proposition"
    CONTRAT = "contrat"
    TACHE = "tache"
    OBJECTIF = "objectif"
    CAMPAGNE = "campagne"


class ScopeKind(StrEnum):
    UNRESTRICTED = "unrestricted"
    SELF_OWNED = "self_owned"
    TEAM_OWNED = "team_owned"
    TEAM_OR_ASSIGNEE = "team_or_assignee"
    EMPTY = "empty"


class Combinator(StrEnum):
    ANY = "or"
    ALL = "and"


FilterOp = Literal["eq", "in"]


@dataclass(frozen=True, slots=True)
class ScopeFilter:
    column: str
    op: FilterOp
    value: str | frozenset[str]

    def matches(self, row: Mapping[str, Any]) -> bool:
        actual = row.get(self.column)
        if actual is None:
            return False
        if self.op == "eq":
            return str(actual) == self.value
        return str(actual) in self.value

    def as_tuple(self) -> tuple[str, str, str | list[str]]:
        value = sorted(self.value) if isinstance(self.value, frozenset) else self.value
        return (self.column, self.op, value)


@dataclass(frozen=True, slots=True)
class ScopePredicate:
    """Row restriction for one entity collection.

    An unrestricted predicate carries no filters; an empty one matches nothing.
    Otherwise the filters are joined with ``combinator``.
    """

    kind: ScopeKind
    filters: tuple[ScopeFilter, ...] = ()
    combinator: Combinator = Combinator.ANY

    @classmethod
    def unrestricted(cls) -> ScopePredicate:
        return cls(kind=ScopeKind.UNRESTRICTED)

    @classmethod
    def empty(cls) -> ScopePredicate:
        return cls(kind=ScopeKind.EMPTY)

    @property
    def is_unrestricted(self) -> bool:
        return self.kind is ScopeKind.UNRESTRICTED

    @property
    def is_empty(self) -> bool:
        return self.kind is ScopeKind.EMPTY

    def matches(self, row: Mapping[str, Any]) -> bool:
        if self.is_unrestricted:
            return True
        if self.is_empty or not self.filters:
            return False
        results = (item.matches(row) for item in self.filters)
        return any(results) if self.combinator is Combinator.ANY else all(results)

    def describe(self) -> list[tuple[str, str, str | list[str]]]:
        return [item.as_tuple() for item in self.filters]


class MembershipResolver(Protocol):
    """Read-only lookups needed to resolve team and indirect ownership scopes."""

    def team_member_ids(self, team_id: str) -> Collection[str]:
        ...

    def contact_ids_owned_by(self, owner_ids: Collection[str]) -> Collection[str]:
        ...


ResolutionStep = Callable[[frozenset[str]], frozenset[str]]


def team_members_step(resolver: MembershipResolver) -> ResolutionStep:
    """Team ids -> ids of the users belonging to those teams."""

    def step(team_ids: frozenset[str]) -> frozenset[str]:
        members: set[str] = set()
        for team_id in sorted(team_ids):
            observe_scope_lookup("team_members")
            members.update(str(item) for item in resolver.team_member_ids(team_id))
        return frozenset(members)

    return step


def owned_contacts_step(resolver: MembershipResolver) -> ResolutionStep:
    """User ids -> ids of the contacts those users are in charge of."""

    def step(owner_ids: frozenset[str]) -> frozenset[str]:
        observe_scope_lookup("owned_contacts")
        return frozenset(str(item) for item in resolver.contact_ids_owned_by(sorted(owner_ids)))

    return step


def resolve_ids(seed: Iterable[str], steps: Sequence[ResolutionStep]) -> frozenset[str]:
    """Run the steps in order, each fed with the previous result.

    Stops as soon as a step yields nothing; later steps are never issued.
    """

    current = frozenset(item for item in seed if item)
    for step in steps:
        if not current:
            break
        current = step(current)
    return current


_OWNER_COLUMNS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.CONTACT: ("collaborateur_en_charge",),
    EntityKind.PROPOSITION: ("conseiller_id",),
    EntityKind.TACHE: ("assigne_a", "cree_par"),
}


def _in_filters(columns: Iterable[str], ids: frozenset[str]) -> tuple[ScopeFilter, ...]:
    return tuple(ScopeFilter(column=column, op="in", value=ids) for column in columns)


def _self_owned_scope(ctx: AuthContext, entity_kind: EntityKind, resolver: MembershipResolver) -> ScopePredicate:
    if entity_kind is EntityKind.CONTRAT:
        contact_ids = resolve_ids([ctx.user_id], [owned_contacts_step(resolver)])
        if not contact_ids:
            return ScopePredicate.empty()
        return ScopePredicate(kind=ScopeKind.SELF_OWNED, filters=_in_filters(["contact_client_id"], contact_ids))

    if entity_kind is EntityKind.OBJECTIF:
        filters = [ScopeFilter(column="assigne_a", op="eq", value=ctx.user_id)]
        if ctx.team_id:
            filters.append(ScopeFilter(column="equipe_id", op="eq", value=ctx.team_id))
        return ScopePredicate(kind=ScopeKind.SELF_OWNED, filters=tuple(filters))

    filters = tuple(ScopeFilter(column=column, op="eq", value=ctx.user_id) for column in _OWNER_COLUMNS[entity_kind])
    return ScopePredicate(kind=ScopeKind.SELF_OWNED, filters=filters)


def _team_scope(
    ctx: AuthContext,
    entity_kind: EntityKind,
    resolver: MembershipResolver,
    tache_combinator: Combinator,
) -> ScopePredicate:
    team_id = ctx.team_id
    if not team_id:
        return ScopePredicate.empty()

    if entity_kind is EntityKind.CONTRAT:
        contact_ids = resolve_ids([team_id], [team_members_step(resolver), owned_contacts_step(resolver)])
        if not contact_ids:
            return ScopePredicate.empty()
        return ScopePredicate(kind=ScopeKind.TEAM_OWNED, filters=_in_filters(["contact_client_id"], contact_ids))

    member_ids = resolve_ids([team_id], [team_members_step(resolver)])

    if entity_kind is EntityKind.OBJECTIF:
        filters = [ScopeFilter(column="equipe_id", op="eq", value=team_id)]
        if member_ids:
            filters.append(ScopeFilter(column="assigne_a", op="in", value=member_ids))
        return ScopePredicate(kind=ScopeKind.TEAM_OR_ASSIGNEE, filters=tuple(filters))

    if not member_ids:
        return ScopePredicate.empty()

    combinator = tache_combinator if entity_kind is EntityKind.TACHE else Combinator.ANY
    return ScopePredicate(
        kind=ScopeKind.TEAM_OWNED,
        filters=_in_filters(_OWNER_COLUMNS[entity_kind], member_ids),
        combinator=combinator,
    )


def compute_scope(
    ctx: AuthContext,
    entity_kind: EntityKind,
    resolver: MembershipResolver,
    *,
    tache_combinator: Combinator = Combinator.ANY,
) -> ScopePredicate:
    """Compute the rows of ``entity_kind`` the acting user may see.

    admin sees everything, conseiller sees what they own, gestionnaire sees what
    the members of their team own. Any missing binding (unknown role, no team,
    a resolution step returning nothing) yields an empty scope, never a wider one.
    Campagnes are shared across the organisation.
    """

    with tracer.start_as_current_span("crm.scope.resolve") as span:
        span.set_attribute("crm.scope.entity", entity_kind.value)
        span.set_attribute("crm.scope.role", ctx.role.value if ctx.role else "none")

        if ctx.role is Role.ADMIN:
            predicate = ScopePredicate.unrestricted()
        elif ctx.role is None:
            predicate = ScopePredicate.empty()
        elif entity_kind is EntityKind.CAMPAGNE:
            predicate = ScopePredicate.unrestricted()
        elif ctx.role is Role.CONSEILLER:
            predicate = _self_owned_scope(ctx, entity_kind, resolver)
        else:
            predicate = _team_scope(ctx, entity_kind, resolver, tache_combinator)

        span.set_attribute("crm.scope.kind", predicate.kind.value)

    observe_scope_resolution(resource=entity_kind.value, scope=predicate.kind.value)
    if predicate.is_empty:
        logger.info(
            "crm.scope.fail_closed",
            extra={
                "resource": entity_kind.value,
                "role": ctx.role.value if ctx.role else None,
                "user_id": ctx.user_id,
            },
        )
    else:
        logger.debug(
            "crm.scope.resolved",
            extra={"resource": entity_kind.value, "role": ctx.role.value if ctx.role else None, "scope": predicate.kind.value},
        )
    return predicate


def _filter_clause(model: Any, item: ScopeFilter) -> ColumnElement[bool]:
    column = getattr(model, item.column)
    if item.op == "eq":
        return column == item.value
    return column.in_(sorted(item.value))


def apply_scope_filter(query: Select[Any], model: Any, predicate: ScopePredicate) -> Select[Any]:
    """Render ``predicate`` as a WHERE clause on ``model``'s columns."""

    if predicate.is_unrestricted:
        return query
    if predicate.is_empty or not predicate.filters:
        return query.where(false())

    clauses = [_filter_clause(model, item) for item in predicate.filters]
    if len(clauses) == 1:
        return query.where(clauses[0])
    if predicate.combinator is Combinator.ANY:
        return query.where(or_(*clauses))
    return query.where(and_(*clauses))
