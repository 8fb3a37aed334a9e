# discovery.py
"""
Management group hierarchy discovery and subscription filtering.

The hierarchy is expanded level by level from a worklist: every management
group on the current frontier is fetched with its immediate children,
subscription children are leaves, management group children form the next
frontier. Fetched listings are keyed by scope id and the immutable tree is
assembled afterwards in pre-order, children in the order the directory
service returned them. A frontier may be fetched in parallel (bounded by the
throttle limit); results are consumed in frontier order so sequential and
parallel runs produce the same tree.
"""
from __future__ import annotations

from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from azstate_common import _log, warn
from directory_client import mg_scope
from errors import AccessError, AzStateError, DiscoveryError
from models import (
    KIND_MANAGEMENT_GROUP,
    KIND_SUBSCRIPTION,
    ScopeNode,
    SubscriptionRecord,
    kind_from_type,
)

ChildEntry = namedtuple("ChildEntry", ["id", "name", "display_name", "kind"])

POLICIES = ("abort", "skip")


def resolve_root_name(settings, tenant_id: str) -> str:
    """Partial discovery root when configured, else the tenant root group (named by tenant id)."""
    return settings.partial_discovery_root or tenant_id


def _child_entries(payload: Dict[str, Any]) -> List[ChildEntry]:
    props = payload.get("properties", {}) or {}
    entries: List[ChildEntry] = []
    for child in props.get("children", []) or []:
        kind = kind_from_type(child.get("type"))
        name = child.get("name") or (child.get("id") or "").rsplit("/", 1)[-1]
        if kind is None:
            warn(f"ignoring child '{child.get('id')}' of unknown type '{child.get('type')}'")
            continue
        scope_id = child.get("id") or (f"/subscriptions/{name}" if kind == KIND_SUBSCRIPTION else mg_scope(name))
        entries.append(ChildEntry(scope_id, name, child.get("displayName") or name, kind))
    return entries


class ScopeDiscovery:
    """Builds a ScopeNode tree rooted at a management group.

    failure_policy decides what happens when a non-root management group
    cannot be expanded: "abort" re-raises the error, "skip" keeps the group
    as a leaf, records its id in ``skipped`` and continues. A failure on the
    root itself is always fatal.
    """

    def __init__(self, client, principal: Optional[str] = None, failure_policy: str = "abort",
                 throttle_limit: int = 1, parallel: bool = False):
        if failure_policy not in POLICIES:
            raise ValueError(f"failure_policy must be one of {POLICIES}, got {failure_policy!r}")
        self.client = client
        self.principal = principal
        self.failure_policy = failure_policy
        self.throttle_limit = max(1, int(throttle_limit))
        self.parallel = parallel
        self.skipped: List[str] = []

    @classmethod
    def from_settings(cls, client, settings, principal: Optional[str] = None) -> "ScopeDiscovery":
        return cls(client, principal=principal, failure_policy=settings.failure_policy,
                   throttle_limit=settings.throttle_limit, parallel=settings.parallel_discovery)

    def _fetch(self, name: str):
        try:
            return self.client.get_management_group(name, expand=True, recurse=False)
        except AzStateError as e:
            return e

    def _fetch_level(self, names: List[str]) -> list:
        if self.parallel and self.throttle_limit > 1 and len(names) > 1:
            with ThreadPoolExecutor(max_workers=min(self.throttle_limit, len(names))) as pool:
                return list(pool.map(self._fetch, names))
        return [self._fetch(n) for n in names]

    def discover(self, root_name: str, recurse: bool = True) -> ScopeNode:
        self.skipped = []
        payload = self._fetch(root_name)
        if isinstance(payload, AccessError):
            raise AccessError(payload.scope, self.principal or payload.principal, payload.status) from payload
        if isinstance(payload, Exception):
            raise payload

        props = payload.get("properties", {}) or {}
        root = ChildEntry(
            payload.get("id") or mg_scope(root_name),
            payload.get("name") or root_name,
            props.get("displayName") or payload.get("name") or root_name,
            KIND_MANAGEMENT_GROUP,
        )
        _log(f"Discovering management group hierarchy from '{root.display_name}' ({root.name})")

        listings: Dict[str, List[ChildEntry]] = {}
        seen: Set[str] = {root.id.lower()}

        def accept(parent: ChildEntry, children: List[ChildEntry]) -> List[ChildEntry]:
            listings[parent.id] = children
            next_level = []
            for child in children:
                key = child.id.lower()
                if key in seen:
                    raise DiscoveryError(
                        f"Scope '{child.id}' appears more than once in the hierarchy (again under '{parent.id}')")
                seen.add(key)
                if child.kind == KIND_MANAGEMENT_GROUP:
                    next_level.append(child)
            return next_level

        frontier = accept(root, _child_entries(payload))
        while recurse and frontier:
            results = self._fetch_level([c.name for c in frontier])
            next_frontier: List[ChildEntry] = []
            for entry, result in zip(frontier, results):
                if isinstance(result, Exception):
                    if self.failure_policy == "abort":
                        raise result
                    warn(f"skipping subtree '{entry.id}': {result}")
                    self.skipped.append(entry.id)
                    listings[entry.id] = []
                    continue
                next_frontier.extend(accept(entry, _child_entries(result)))
            frontier = next_frontier

        tree = self._assemble(root, None, listings)
        _log(f"Discovered {sum(1 for _ in tree.walk())} scope(s) under '{root.name}'"
             + (f", {len(self.skipped)} subtree(s) skipped" if self.skipped else ""))
        return tree

    def _assemble(self, entry: ChildEntry, parent_id: Optional[str],
                  listings: Dict[str, List[ChildEntry]]) -> ScopeNode:
        return ScopeNode(
            id=entry.id,
            name=entry.name,
            display_name=entry.display_name,
            kind=entry.kind,
            parent_id=parent_id,
            children=tuple(self._assemble(c, entry.id, listings) for c in listings.get(entry.id, ())),
        )


def list_qualifying(client, tenant_id: Optional[str], excluded_offers: Iterable[str] = (),
                    excluded_states: Iterable[str] = ()) -> FrozenSet[SubscriptionRecord]:
    """
    Subscriptions of the tenant minus those whose offer type is excluded
    (exact match) or whose state is excluded (case-insensitive).
    """
    offers = set(excluded_offers or ())
    states = {s.lower() for s in (excluded_states or ())}
    qualifying = set()
    for rec in client.list_subscriptions(tenant_id, active_only=False):
        if rec.offer_type is not None and rec.offer_type in offers:
            _log(f"Excluding subscription {rec.display_name} ({rec.id}): offer {rec.offer_type}")
            continue
        if (rec.state or "").lower() in states:
            _log(f"Excluding subscription {rec.display_name} ({rec.id}): state {rec.state}")
            continue
        qualifying.add(rec)
    return frozenset(qualifying)


def prune_subscriptions(tree: ScopeNode, qualifying: Iterable[SubscriptionRecord]) -> ScopeNode:
    """Return a copy of the tree without subscription leaves that did not qualify."""
    keep = {rec.id.lower() for rec in qualifying}

    def visit(node: ScopeNode) -> ScopeNode:
        children = tuple(
            visit(c) for c in node.children
            if c.kind != KIND_SUBSCRIPTION or c.name.lower() in keep
        )
        if children == node.children:
            return node
        return ScopeNode(node.id, node.name, node.display_name, node.kind, node.parent_id, children)

    return visit(tree)
