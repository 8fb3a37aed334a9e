#!/usr/bin/env python3
"""snapshot.py

Snapshot the tenant's management hierarchy into the AzState directory tree.

High-level flow:
 1. Resolve settings (CLI switches > AZSTATE_* environment > defaults).
 2. Check the Azure context: exactly one tenant, unless the context check is
    skipped (AZSTATE_IGNORE_CONTEXT_CHECK=1).
 3. Discover the management group tree from the tenant root group, or from
    AZSTATE_PARTIAL_MG_DISCOVERY_ROOT when set (served from the session
    cache unless invalidated).
 4. Drop subscriptions whose offer or state is excluded.
 5. Enumerate resource groups per subscription (skipped with
    --skip-resource-group), bounded by the throttle limit.
 6. Mirror the tree under the state directory: incremental by default,
    --rebuild purges generated metadata first, --force (or a legacy layout)
    wipes the state directory.

Exit codes:
  0 success
  1 generic failure
  2 no usable context / more than one tenant
  3 access denied on a scope
  4 filesystem failure (including a held run lock)
  5 invalid configuration
"""
from __future__ import annotations

import argparse
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, FrozenSet, Mapping, Optional

from azstate_common import _log, set_timestamp_preference, warn
from common_auth import check_context, get_credentials, list_contexts, signed_in_principal
from config import Settings, resolve_settings
from directory_client import DirectoryClient
from discovery import ScopeDiscovery, list_qualifying, prune_subscriptions, resolve_root_name
from errors import (
    AccessError,
    AzStateError,
    ConfigError,
    ContextError,
    FilesystemError,
    MultiTenantError,
)
from models import ScopeNode, SubscriptionRecord
from reconcile import StateReconciler
from resource_groups import (
    collect_resource_groups,
    graft_resource_groups,
    list_resource_groups,
    subscription_nodes,
)
from scope_cache import ScopeCache

EXIT_CODES = [
    (ConfigError, 5),
    (ContextError, 2),
    (MultiTenantError, 2),
    (AccessError, 3),
    (FilesystemError, 4),
    (AzStateError, 1),
]


@dataclass
class Session:
    """Everything one run needs, passed explicitly instead of living in module globals."""
    settings: Settings
    client: Any
    tenant_id: str
    principal: str = "unknown"
    cred: Any = None
    cache: ScopeCache = field(default_factory=ScopeCache)

    @property
    def root_name(self) -> str:
        return resolve_root_name(self.settings, self.tenant_id)

    def discover_tree(self, invalidate: Optional[bool] = None) -> ScopeNode:
        flag = self.settings.invalidate_cache if invalidate is None else invalidate
        engine = ScopeDiscovery.from_settings(self.client, self.settings, self.principal)
        root_name = self.root_name
        return self.cache.tree(root_name, lambda: engine.discover(root_name), flag)

    def qualifying_subscriptions(self, invalidate: Optional[bool] = None) -> FrozenSet[SubscriptionRecord]:
        flag = self.settings.invalidate_cache if invalidate is None else invalidate
        s = self.settings
        return self.cache.subscriptions(
            self.tenant_id,
            lambda: list_qualifying(self.client, self.tenant_id, s.exclude_offers, s.exclude_states),
            flag,
        )


def initialize(overrides: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None,
               cred=None, contexts=None, principal: Optional[str] = None,
               client_factory=DirectoryClient) -> Session:
    """
    Resolve settings and validate the Azure context. Raises ContextError or
    MultiTenantError before any directory call is made.
    """
    settings = resolve_settings(overrides, environ)
    set_timestamp_preference(settings.log_timestamp)
    if cred is None:
        cred = get_credentials()
    if contexts is None:
        contexts = list_contexts(cred)
    tenant_id = check_context(settings, contexts)
    if principal is None:
        principal = signed_in_principal(cred)
    client = client_factory(cred, principal)
    return Session(settings=settings, client=client, tenant_id=tenant_id, principal=principal, cred=cred)


@contextmanager
def run_lock(state_path: str):
    """Serialize runs against one state directory with an exclusive lock file beside it."""
    lock = os.path.abspath(state_path).rstrip(os.sep) + ".lock"
    parent = os.path.dirname(lock)
    try:
        os.makedirs(parent, exist_ok=True)
        fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as e:
        raise FilesystemError("lock", lock, RuntimeError("another run holds the lock")) from e
    except OSError as e:
        raise FilesystemError("lock", lock, e) from e
    try:
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        yield lock
    finally:
        try:
            os.remove(lock)
        except FileNotFoundError:
            pass


def run(session: Session, force: bool = False, rebuild: bool = False, rg_lister=None) -> Dict[str, str]:
    """Discover, filter and mirror; returns scope id -> directory."""
    s = session.settings
    tree = session.discover_tree()
    qualifying = session.qualifying_subscriptions()
    tree = prune_subscriptions(tree, qualifying)

    if s.skip_resource_group:
        _log("Resource group discovery skipped")
    else:
        lister = rg_lister or partial(list_resource_groups, session.cred)
        groups = collect_resource_groups(subscription_nodes(tree), lister,
                                         throttle_limit=s.throttle_limit, failure_policy=s.failure_policy)
        tree = graft_resource_groups(tree, groups)

    with run_lock(s.state):
        return StateReconciler(s.state).run(tree, tree.name, force=force, rebuild=rebuild)


def _flag(ap: argparse.ArgumentParser, name: str, dest: str, help_text: str):
    ap.add_argument(name, dest=dest, action="store_const", const=True, default=None, help=help_text)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Snapshot the tenant management hierarchy into the AzState tree.")
    ap.add_argument("--state", help="State directory (default: AZSTATE_STATE or ./azstate)")
    ap.add_argument("--partial-root", dest="partial_discovery_root",
                    help="Management group to discover from instead of the tenant root group")
    ap.add_argument("--throttle-limit", dest="throttle_limit", type=int)
    ap.add_argument("--subtree-policy", dest="subtree_failure_policy", choices=["abort", "skip"],
                    help="What to do when a non-root management group cannot be read")
    _flag(ap, "--invalidate-cache", "invalidate_cache", "Rediscover even when a cached tree exists")
    _flag(ap, "--generalize-templates", "generalize_templates", "Passed to the template serializer")
    _flag(ap, "--export-raw-template", "export_raw_templates", "Passed to the template serializer")
    _flag(ap, "--skip-policy", "skip_policy", "Passed to the policy exporter")
    _flag(ap, "--skip-resource-group", "skip_resource_group", "Do not enumerate resource groups")
    _flag(ap, "--skip-context-check", "ignore_context_check", "Allow contexts spanning several tenants")
    _flag(ap, "--parallel", "parallel_discovery", "Fetch sibling management groups concurrently")
    _flag(ap, "--strict", "strict_mode", "Abort on any subtree failure")
    ap.add_argument("--rebuild", action="store_true", help="Purge generated metadata before mirroring")
    ap.add_argument("--force", action="store_true", help="Delete the whole state directory before mirroring")
    return ap


OVERRIDE_KEYS = (
    "state", "partial_discovery_root", "throttle_limit", "subtree_failure_policy",
    "invalidate_cache", "generalize_templates", "export_raw_templates", "skip_policy",
    "skip_resource_group", "ignore_context_check", "parallel_discovery", "strict_mode",
)


def exit_code_for(error: BaseException) -> int:
    for cls, code in EXIT_CODES:
        if isinstance(error, cls):
            return code
    return 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {k: getattr(args, k) for k in OVERRIDE_KEYS if getattr(args, k) is not None}
    try:
        session = initialize(overrides)
        placed = run(session, force=args.force, rebuild=args.rebuild)
    except AzStateError as e:
        warn(str(e))
        return exit_code_for(e)
    _log(f"Snapshot complete: {len(placed)} scope(s) under {session.settings.state}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
