"""Configuration resolution for AzState.

Every option has a fixed environment key, an expected type and a default.
Values are resolved with the precedence

    explicit override (CLI switch)  >  environment  >  built-in default

and the result is frozen into a ``Settings`` snapshot that is built once per
invocation and handed explicitly to discovery and reconciliation.

Raw string values are coerced before the type check: a value containing a
comma becomes a tuple of strings, ``true``/``false`` (any case) become
booleans, anything else is kept as-is. The type check then rejects values
that do not fit the option (``ConfigError``) instead of guessing.
"""
from __future__ import annotations

import os
from collections import OrderedDict, namedtuple
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from errors import ConfigError

Option = namedtuple("Option", ["env", "kind", "default", "choices"])
Option.__new__.__defaults__ = (None,)

TRUE_WORDS = {"1", "yes", "y", "on"}
FALSE_WORDS = {"0", "no", "n", "off"}

OPTIONS: "OrderedDict[str, Option]" = OrderedDict([
    ("state", Option("AZSTATE_STATE", "str", "azstate")),
    ("main_template", Option("AZSTATE_MAIN_TEMPLATE", "str", "template.json")),
    ("exclude_offers", Option("AZSTATE_EXCLUDE_OFFER", "list",
                              ("AzurePass_2014-09-01", "FreeTrial_2014-09-01", "AAD_2015-09-01"))),
    ("exclude_states", Option("AZSTATE_EXCLUDE_STATE", "list",
                              ("Disabled", "Deleted", "Warned", "Expired", "PastDue"))),
    ("default_deployment_region", Option("AZSTATE_DEFAULT_DEPLOYMENT_REGION", "str", "northeurope")),
    ("invalidate_cache", Option("AZSTATE_INVALIDATE_CACHE", "bool", True)),
    ("generalize_templates", Option("AZSTATE_GENERALIZE_TEMPLATES", "bool", False)),
    ("export_raw_templates", Option("AZSTATE_EXPORT_RAW_TEMPLATES", "bool", False)),
    ("ignore_context_check", Option("AZSTATE_IGNORE_CONTEXT_CHECK", "bool", False)),
    ("throttle_limit", Option("AZSTATE_THROTTLE_LIMIT", "int", 10)),
    ("partial_discovery_root", Option("AZSTATE_PARTIAL_MG_DISCOVERY_ROOT", "str", None)),
    ("strict_mode", Option("AZSTATE_STRICT_MODE", "bool", False)),
    ("skip_resource_group", Option("AZSTATE_SKIP_RESOURCE_GROUP", "bool", False)),
    ("skip_policy", Option("AZSTATE_SKIP_POLICY", "bool", False)),
    ("log_timestamp", Option("AZSTATE_LOG_TIMESTAMP_PREFERENCE", "bool", False)),
    ("subtree_failure_policy", Option("AZSTATE_SUBTREE_FAILURE_POLICY", "choice", "abort", ("abort", "skip"))),
    ("parallel_discovery", Option("AZSTATE_PARALLEL_DISCOVERY", "bool", False)),
    # CI integration identifiers (consumed by the pull-request tooling)
    ("github_api_url", Option("GITHUB_API_URL", "str", "https://api.github.com")),
    ("github_token", Option("GITHUB_TOKEN", "str", None)),
    ("github_repository", Option("GITHUB_REPOSITORY", "str", None)),
    ("github_pull_request", Option("GITHUB_PULL_REQUEST", "str", None)),
    ("github_comments", Option("GITHUB_COMMENTS", "str", None)),
    ("github_head_ref", Option("GITHUB_HEAD_REF", "str", None)),
    ("github_base_ref", Option("GITHUB_BASE_REF", "str", None)),
])

MIN_VALUES = {"throttle_limit": 1}


def coerce_value(raw: Any) -> Any:
    """Apply the loose coercion rules to a raw (usually string) value."""
    if not isinstance(raw, str):
        return raw
    if "," in raw:
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    if raw.strip().lower() == "true":
        return True
    if raw.strip().lower() == "false":
        return False
    return raw


def _check(name: str, opt: Option, value: Any, raw: Any) -> Any:
    def bad(message: str):
        return ConfigError(name, message, env_key=opt.env, raw=raw)

    if value is None:
        if opt.kind in ("str",):
            return None
        if opt.kind == "list":
            return ()
        raise bad(f"expected {opt.kind}, got nothing")

    if opt.kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            word = value.strip().lower()
            if word in TRUE_WORDS:
                return True
            if word in FALSE_WORDS:
                return False
        raise bad("expected a boolean (true/false, 1/0, yes/no)")

    if opt.kind == "int":
        if isinstance(value, bool):
            raise bad("expected an integer, got a boolean")
        if isinstance(value, str):
            try:
                value = int(value.strip())
            except ValueError:
                raise bad("expected an integer") from None
        if not isinstance(value, int):
            raise bad("expected an integer")
        floor = MIN_VALUES.get(name)
        if floor is not None and value < floor:
            raise bad(f"must be >= {floor}")
        return value

    if opt.kind == "list":
        if isinstance(value, str):
            return (value.strip(),) if value.strip() else ()
        if isinstance(value, (list, tuple)):
            if not all(isinstance(v, str) for v in value):
                raise bad("expected a list of strings")
            return tuple(v.strip() for v in value if v.strip())
        raise bad("expected a comma separated list")

    if opt.kind == "choice":
        if isinstance(value, str) and value.strip().lower() in opt.choices:
            return value.strip().lower()
        raise bad(f"expected one of {', '.join(opt.choices)}")

    # str
    if isinstance(value, bool) or isinstance(value, (list, tuple)):
        raise bad("expected a single string value")
    if isinstance(value, int):
        return str(value)
    if not isinstance(value, str):
        raise bad("expected a string")
    return value


def _raw_value(name: str, opt: Option, overrides: Mapping[str, Any], environ: Mapping[str, str]):
    if overrides.get(name) is not None:
        return overrides[name]
    env_val = environ.get(opt.env)
    if env_val:
        return env_val
    return opt.default


def resolve(name: str, overrides: Optional[Mapping[str, Any]] = None,
            environ: Optional[Mapping[str, str]] = None) -> Any:
    """Resolve a single option: override > environment > default, coerced and type-checked."""
    opt = OPTIONS.get(name)
    if opt is None:
        raise ConfigError(name, "unknown option")
    raw = _raw_value(name, opt, overrides or {}, os.environ if environ is None else environ)
    return _check(name, opt, coerce_value(raw), raw)


@dataclass(frozen=True)
class Settings:
    state: str
    main_template: str
    exclude_offers: Tuple[str, ...]
    exclude_states: Tuple[str, ...]
    default_deployment_region: str
    invalidate_cache: bool
    generalize_templates: bool
    export_raw_templates: bool
    ignore_context_check: bool
    throttle_limit: int
    partial_discovery_root: Optional[str]
    strict_mode: bool
    skip_resource_group: bool
    skip_policy: bool
    log_timestamp: bool
    subtree_failure_policy: str
    parallel_discovery: bool
    github_api_url: Optional[str]
    github_token: Optional[str]
    github_repository: Optional[str]
    github_pull_request: Optional[str]
    github_comments: Optional[str]
    github_head_ref: Optional[str]
    github_base_ref: Optional[str]

    def resolve(self, name: str) -> Any:
        if name not in OPTIONS:
            raise ConfigError(name, "unknown option")
        return getattr(self, name)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def failure_policy(self) -> str:
        """Effective per-subtree failure policy; strict mode always aborts."""
        return "abort" if self.strict_mode else self.subtree_failure_policy


def resolve_settings(overrides: Optional[Mapping[str, Any]] = None,
                     environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build the immutable settings snapshot for one invocation."""
    overrides = dict(overrides or {})
    unknown = [k for k in overrides if k not in OPTIONS]
    if unknown:
        raise ConfigError(unknown[0], "unknown option")
    environ = os.environ if environ is None else environ
    values = {f.name: resolve(f.name, overrides, environ) for f in fields(Settings)}
    return Settings(**values)


__all__ = [
    "OPTIONS",
    "Option",
    "Settings",
    "coerce_value",
    "resolve",
    "resolve_settings",
    "ConfigError",
]
