# common_auth.py
# Copyright (c) AzState
# Licensed under MIT License
#
# Provides centralized authentication and context checks for AzState runs.

import os
import json
import base64
from collections import namedtuple
from typing import List, Optional

from azure.identity import DefaultAzureCredential
from azure.mgmt.subscription import SubscriptionClient

from azstate_common import _log, get_token, warn
from errors import ContextError, MultiTenantError

CloudContext = namedtuple("CloudContext", ["tenant_id", "subscription_id", "subscription_name"])


def get_credentials():
    """
    Returns a credential object usable by Azure SDK clients.
    Uses DefaultAzureCredential which tries (in order):
      - Environment variables (AZURE_CLIENT_ID, AZURE_TENANT_ID, AZURE_CLIENT_SECRET)
      - Managed Identity (if running inside Azure)
      - Azure CLI (az login)
      - Visual Studio / PowerShell
    """
    try:
        return DefaultAzureCredential(exclude_interactive_browser_credential=True)
    except Exception as e:
        raise ContextError(f"Failed to acquire Azure credentials: {e}") from e


def list_contexts(cred) -> List[CloudContext]:
    """
    Returns one context per subscription the current identity can see.
    An identity without subscriptions gets one context per visible tenant.
    """
    client = SubscriptionClient(cred)
    try:
        contexts = [
            CloudContext(
                tenant_id=getattr(sub, "tenant_id", None),
                subscription_id=sub.subscription_id,
                subscription_name=getattr(sub, "display_name", None),
            )
            for sub in client.subscriptions.list()
        ]
        if not contexts:
            contexts = [CloudContext(t.tenant_id, None, None) for t in client.tenants.list()]
    except Exception as e:
        raise ContextError(f"Unable to list Azure contexts: {e}") from e
    return contexts


def _token_claims(token: str) -> dict:
    parts = token.split(".")
    if len(parts) < 2:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        return json.loads(base64.urlsafe_b64decode(payload.encode()).decode())
    except (ValueError, UnicodeDecodeError):
        return {}


def signed_in_principal(cred) -> str:
    """Best-effort name of the acting principal, used in access error messages."""
    env_principal = os.getenv("AZSTATE_PRINCIPAL")
    if env_principal:
        return env_principal.strip()
    try:
        claims = _token_claims(get_token(cred))
    except Exception as e:
        warn(f"could not read token claims for principal name: {e}")
        return "unknown"
    for key in ("upn", "unique_name", "appid", "oid"):
        if claims.get(key):
            return str(claims[key])
    return "unknown"


def check_context(settings, contexts: List[CloudContext]) -> str:
    """
    Validate the available contexts and return the single tenant id to work in.
    Raises ContextError when nothing is available and MultiTenantError when the
    contexts span several tenants (unless the context check is skipped).
    """
    if not contexts:
        raise ContextError("No Azure context available. Did you run 'az login'?")
    tenants: List[str] = []
    for ctx in contexts:
        if ctx.tenant_id and ctx.tenant_id not in tenants:
            tenants.append(ctx.tenant_id)
    if not tenants:
        raise ContextError("Available contexts carry no tenant id")
    if len(tenants) > 1:
        if not settings.ignore_context_check:
            raise MultiTenantError(tenants)
        warn(f"Contexts span {len(tenants)} tenants; context check skipped, using {tenants[0]}")
    tenant_id: Optional[str] = tenants[0]
    _log(f"Using tenant {tenant_id} ({len(contexts)} subscription context(s))")
    return tenant_id
