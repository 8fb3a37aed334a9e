# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

KIND_MANAGEMENT_GROUP = "ManagementGroup"
KIND_SUBSCRIPTION = "Subscription"
KIND_RESOURCE_GROUP = "ResourceGroup"

MG_TYPE = "Microsoft.Management/managementGroups"
SUB_TYPE = "/subscriptions"


@dataclass(frozen=True)
class ScopeNode:
    id: str
    name: str
    display_name: str
    kind: str
    parent_id: Optional[str] = None
    children: Tuple["ScopeNode", ...] = field(default=())

    def walk(self) -> Iterator["ScopeNode"]:
        """Pre-order traversal of this subtree."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, scope_id: str) -> Optional["ScopeNode"]:
        key = scope_id.lower()
        return next((n for n in self.walk() if n.id.lower() == key), None)


@dataclass(frozen=True)
class SubscriptionRecord:
    id: str
    display_name: str
    state: str
    offer_type: Optional[str]
    tenant_id: Optional[str]


def kind_from_type(arm_type: Optional[str]) -> Optional[str]:
    """Map an ARM child type ('/subscriptions', 'Microsoft.Management/managementGroups') to a kind."""
    t = (arm_type or "").lower()
    if t.endswith("/subscriptions") or t == "subscriptions":
        return KIND_SUBSCRIPTION
    if t.endswith("managementgroups"):
        return KIND_MANAGEMENT_GROUP
    return None
