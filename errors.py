# errors.py
# Copyright (c) AzState
# Licensed under MIT License
#
# Error taxonomy shared by the discovery and reconcile scripts.

from __future__ import annotations

from typing import Iterable, Optional


class AzStateError(Exception):
    """Base class for every fatal condition raised by AzState."""


class ConfigError(AzStateError):
    def __init__(self, option: str, message: str, env_key: Optional[str] = None, raw=None):
        self.option = option
        self.env_key = env_key
        self.raw = raw
        where = f"{option} ({env_key})" if env_key else option
        detail = f" [raw={raw!r}]" if raw is not None else ""
        super().__init__(f"Invalid configuration for {where}: {message}{detail}")


class ContextError(AzStateError):
    """No usable Azure session (credential or subscription context)."""


class MultiTenantError(AzStateError):
    def __init__(self, tenants: Iterable[str]):
        self.tenants = sorted(set(tenants))
        super().__init__(
            "Available contexts span more than one tenant "
            f"({', '.join(self.tenants)}); select a single tenant or set "
            "AZSTATE_IGNORE_CONTEXT_CHECK=1"
        )


class AccessError(AzStateError):
    def __init__(self, scope: str, principal: Optional[str], status: Optional[int] = None):
        self.scope = scope
        self.principal = principal or "unknown"
        self.status = status
        http = f" (HTTP {status})" if status else ""
        super().__init__(f"Access denied to scope '{scope}' for principal '{self.principal}'{http}")


class DirectoryError(AzStateError):
    """Directory service call failed for a reason other than access."""

    def __init__(self, scope: str, status: Optional[int] = None, text: str = ""):
        self.scope = scope
        self.status = status
        self.text = text
        super().__init__(f"Directory request for '{scope}' failed: HTTP {status} {text[:200]}".rstrip())


class DiscoveryError(AzStateError):
    """The discovered graph violates the tree invariants (cross-links, duplicates)."""


class FilesystemError(AzStateError):
    def __init__(self, operation: str, path: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.path = path
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Filesystem {operation} failed for '{path}'{reason}")


__all__ = [
    "AzStateError",
    "ConfigError",
    "ContextError",
    "MultiTenantError",
    "AccessError",
    "DirectoryError",
    "DiscoveryError",
    "FilesystemError",
]
