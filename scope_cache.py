# scope_cache.py
from __future__ import annotations

from typing import Callable, FrozenSet, Optional

from azstate_common import _log
from models import ScopeNode, SubscriptionRecord


class ScopeCache:
    """
    Memoizes the last discovered tree and subscription set for one session.

    Not time based: an entry is reloaded only when the caller asks for
    invalidation, when it is empty, or when it was loaded for another key
    (root name / tenant id). A failing loader leaves the previous entry as is.
    """

    def __init__(self):
        self._tree: Optional[ScopeNode] = None
        self._tree_key: Optional[str] = None
        self._subscriptions: Optional[FrozenSet[SubscriptionRecord]] = None
        self._subscriptions_key: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self._tree is None and self._subscriptions is None

    def invalidate(self) -> None:
        self._tree = self._tree_key = None
        self._subscriptions = self._subscriptions_key = None

    def tree(self, root_name: str, loader: Callable[[], ScopeNode], invalidate: bool = False) -> ScopeNode:
        if invalidate or self._tree is None or self._tree_key != root_name:
            tree = loader()
            self._tree, self._tree_key = tree, root_name
        else:
            _log(f"Using cached hierarchy for '{root_name}'")
        return self._tree

    def subscriptions(self, tenant_id: str, loader: Callable[[], FrozenSet[SubscriptionRecord]],
                      invalidate: bool = False) -> FrozenSet[SubscriptionRecord]:
        if invalidate or self._subscriptions is None or self._subscriptions_key != tenant_id:
            subs = frozenset(loader())
            self._subscriptions, self._subscriptions_key = subs, tenant_id
        else:
            _log(f"Using cached subscriptions for tenant {tenant_id}")
        return self._subscriptions
