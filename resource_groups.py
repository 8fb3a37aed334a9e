# resource_groups.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Sequence

from azure.mgmt.resource import ResourceManagementClient

from azstate_common import _log, warn
from errors import AccessError, DirectoryError
from models import KIND_RESOURCE_GROUP, KIND_SUBSCRIPTION, ScopeNode


def list_resource_groups(cred, subscription: ScopeNode) -> List[ScopeNode]:
    """Resource groups of one subscription as leaf ScopeNodes, in service order."""
    rm = ResourceManagementClient(cred, subscription.name)
    groups = []
    for rg in rm.resource_groups.list():
        groups.append(ScopeNode(
            id=rg.id,
            name=rg.name,
            display_name=rg.name,
            kind=KIND_RESOURCE_GROUP,
            parent_id=subscription.id,
        ))
    return groups


def collect_resource_groups(subscriptions: Sequence[ScopeNode],
                            lister: Callable[[ScopeNode], List[ScopeNode]],
                            throttle_limit: int = 10,
                            failure_policy: str = "abort") -> Dict[str, List[ScopeNode]]:
    """
    Enumerate resource groups for every subscription with at most
    throttle_limit concurrent workers. Results are keyed by subscription id
    and gathered in subscription order.
    """
    if not subscriptions:
        return {}

    def one(sub: ScopeNode):
        try:
            return lister(sub)
        except Exception as e:
            return e

    workers = max(1, min(int(throttle_limit), len(subscriptions)))
    _log(f"Enumerating resource groups across {len(subscriptions)} subscription(s) (max workers={workers})...")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(one, subscriptions))

    collected: Dict[str, List[ScopeNode]] = {}
    for sub, result in zip(subscriptions, results):
        if isinstance(result, Exception):
            status = getattr(result, "status_code", None)
            if status in (401, 403):
                err = AccessError(sub.id, None, status)
            else:
                err = DirectoryError(sub.id, status, str(result))
            if failure_policy == "abort":
                raise err from result
            warn(f"skipping resource groups of '{sub.id}': {result}")
            continue
        collected[sub.id] = result
    return collected


def graft_resource_groups(tree: ScopeNode, groups: Dict[str, List[ScopeNode]]) -> ScopeNode:
    """Return a copy of the tree with resource groups appended under their subscriptions."""
    def visit(node: ScopeNode) -> ScopeNode:
        if node.kind == KIND_SUBSCRIPTION:
            extra = tuple(groups.get(node.id, ()))
            if not extra:
                return node
            return ScopeNode(node.id, node.name, node.display_name, node.kind, node.parent_id,
                             node.children + extra)
        children = tuple(visit(c) for c in node.children)
        if children == node.children:
            return node
        return ScopeNode(node.id, node.name, node.display_name, node.kind, node.parent_id, children)

    return visit(tree)


def subscription_nodes(tree: ScopeNode) -> List[ScopeNode]:
    return [n for n in tree.walk() if n.kind == KIND_SUBSCRIPTION]


__all__ = [
    "list_resource_groups",
    "collect_resource_groups",
    "graft_resource_groups",
    "subscription_nodes",
]
