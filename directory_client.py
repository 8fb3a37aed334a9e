# directory_client.py
"""
Thin client over the Azure directory surfaces AzState reads:

  GET /providers/Microsoft.Management/managementGroups/{name}?$expand=children
  SubscriptionClient.subscriptions.list()

Management groups go through ARM REST (requests + bearer token, retried by
http_with_backoff); subscriptions go through azure-mgmt-subscription.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from azure.mgmt.subscription import SubscriptionClient

from azstate_common import get_token, http_with_backoff
from errors import AccessError, DirectoryError
from models import SubscriptionRecord

ARM = "https://management.azure.com"
MG_API = "2021-04-01"
DENIED = {401, 403, 404}


def mg_scope(name: str) -> str:
    return f"/providers/Microsoft.Management/managementGroups/{name}"


class DirectoryClient:
    def __init__(self, cred, principal: Optional[str] = None, timeout: float = 30.0):
        self.cred = cred
        self.principal = principal
        self.timeout = timeout
        self._subscriptions = None

    def mgmt_get(self, url: str, params: Dict[str, str] = None,
                 label: Optional[str] = None) -> Optional[requests.Response]:
        headers = {"Authorization": f"Bearer {get_token(self.cred)}"}
        return http_with_backoff(requests.get, url, headers=headers, params=params, timeout=self.timeout,
                                 label=label)

    def get_management_group(self, name: str, expand: bool = True, recurse: bool = False) -> Dict[str, Any]:
        """
        Returns the management group payload; with expand=True its
        properties.children lists the immediate child groups and subscriptions.
        """
        scope = mg_scope(name)
        params = {"api-version": MG_API}
        if expand:
            params["$expand"] = "children"
            params["recurse"] = "true" if recurse else "false"
        r = self.mgmt_get(f"{ARM}{scope}", params=params, label=scope)
        if r is None:
            raise DirectoryError(scope, None, "request failed or timed out")
        if r.status_code in DENIED:
            raise AccessError(scope, self.principal, r.status_code)
        if r.status_code != 200:
            raise DirectoryError(scope, r.status_code, r.text or "")
        try:
            payload = r.json()
        except ValueError as e:
            raise DirectoryError(scope, r.status_code, f"malformed response body: {e}") from e
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise DirectoryError(scope, r.status_code, f"expected a JSON object, got {type(payload).__name__}")
        return payload

    def list_subscriptions(self, tenant_id: Optional[str], active_only: bool = False) -> List[SubscriptionRecord]:
        if self._subscriptions is None:
            self._subscriptions = SubscriptionClient(self.cred)
        records: List[SubscriptionRecord] = []
        for sub in self._subscriptions.subscriptions.list():
            sub_tenant = getattr(sub, "tenant_id", None)
            if tenant_id and sub_tenant and sub_tenant.lower() != tenant_id.lower():
                continue
            state = getattr(sub, "state", None) or ""
            state = str(getattr(state, "value", state))
            if active_only and state.lower() != "enabled":
                continue
            policies = getattr(sub, "subscription_policies", None)
            records.append(SubscriptionRecord(
                id=sub.subscription_id,
                display_name=getattr(sub, "display_name", None) or sub.subscription_id,
                state=state,
                offer_type=getattr(policies, "quota_id", None),
                tenant_id=sub_tenant,
            ))
        return records
