from __future__ import annotations

"""
Global Pytest Configuration and Fixtures.

1. Puts the repository root on sys.path so the flat modules import.
2. Provides an in-memory directory client and a sample tenant hierarchy:

    Tenant Root Group (tenant-1)
    +-- Platform (platform)
    |   +-- Connectivity (sub-b)
    |   +-- Identity (identity)
    +-- Landing Zones (landingzones)
    |   +-- Prod (corp)
    |   |   +-- App (sub-c)
    |   +-- Prod (online)
    +-- Sandbox (sub-a)
"""

import os
import sys
import threading
from typing import Any, Dict, List

import pytest

_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from directory_client import mg_scope  # noqa: E402
from errors import AccessError  # noqa: E402
from models import SubscriptionRecord  # noqa: E402

TENANT = "tenant-1"


def mg_child(name: str, display: str = None) -> Dict[str, Any]:
    return {"id": mg_scope(name), "name": name, "type": "Microsoft.Management/managementGroups",
            "displayName": display or name}


def sub_child(sub_id: str, display: str) -> Dict[str, Any]:
    return {"id": f"/subscriptions/{sub_id}", "name": sub_id, "type": "/subscriptions", "displayName": display}


def mg_payload(name: str, display: str = None, children=()) -> Dict[str, Any]:
    return {
        "id": mg_scope(name),
        "name": name,
        "type": "Microsoft.Management/managementGroups",
        "properties": {"displayName": display or name, "children": list(children)},
    }


class FakeDirectoryClient:
    """Serves management groups from a dict; a missing name is an access denial."""

    def __init__(self, groups: Dict[str, Any], subscriptions: List[SubscriptionRecord] = ()):
        self.groups = groups
        self.subscriptions = list(subscriptions)
        self.calls: List[str] = []
        self.subscription_calls = 0
        self._lock = threading.Lock()

    def get_management_group(self, name, expand=True, recurse=False):
        with self._lock:
            self.calls.append(name)
        value = self.groups.get(name)
        if value is None:
            raise AccessError(mg_scope(name), None, 403)
        if isinstance(value, Exception):
            raise value
        return value

    def list_subscriptions(self, tenant_id, active_only=False):
        self.subscription_calls += 1
        return [r for r in self.subscriptions
                if r.tenant_id == tenant_id and (not active_only or r.state == "Enabled")]


def sample_groups() -> Dict[str, Any]:
    return {
        TENANT: mg_payload(TENANT, "Tenant Root Group", [
            mg_child("platform", "Platform"),
            mg_child("landingzones", "Landing Zones"),
            sub_child("sub-a", "Sandbox"),
        ]),
        "platform": mg_payload("platform", "Platform", [
            sub_child("sub-b", "Connectivity"),
            mg_child("identity", "Identity"),
        ]),
        "identity": mg_payload("identity", "Identity"),
        "landingzones": mg_payload("landingzones", "Landing Zones", [
            mg_child("corp", "Prod"),
            mg_child("online", "Prod"),
        ]),
        "corp": mg_payload("corp", "Prod", [sub_child("sub-c", "App")]),
        "online": mg_payload("online", "Prod"),
    }


def sample_subscriptions() -> List[SubscriptionRecord]:
    return [
        SubscriptionRecord("sub-a", "Sandbox", "Enabled", "MSDN_2014-09-01", TENANT),
        SubscriptionRecord("sub-b", "Connectivity", "Enabled", "EnterpriseAgreement_2014-09-01", TENANT),
        SubscriptionRecord("sub-c", "App", "Disabled", "EnterpriseAgreement_2014-09-01", TENANT),
        SubscriptionRecord("sub-d", "Trial", "Enabled", "FreeTrial_2014-09-01", TENANT),
        SubscriptionRecord("sub-x", "Elsewhere", "Enabled", "MSDN_2014-09-01", "tenant-2"),
    ]


@pytest.fixture
def fake_client() -> FakeDirectoryClient:
    return FakeDirectoryClient(sample_groups(), sample_subscriptions())


@pytest.fixture
def sample_tree(fake_client):
    from discovery import ScopeDiscovery
    return ScopeDiscovery(fake_client, principal="tester").discover(TENANT)


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch):
    monkeypatch.setenv("AZSTATE_QUIET", "1")


def snapshot_tree(root) -> Dict[str, Any]:
    """relative path -> file bytes (None for directories)."""
    out: Dict[str, Any] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for d in dirnames:
            out[os.path.relpath(os.path.join(dirpath, d), root)] = None
        for f in filenames:
            p = os.path.join(dirpath, f)
            with open(p, "rb") as fh:
                out[os.path.relpath(p, root)] = fh.read()
    return out
