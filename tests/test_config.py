from __future__ import annotations

"""
Unit tests for configuration resolution.

Verifies:
1. Precedence: override > environment > default.
2. Raw coercion of comma lists and true/false words.
3. Typed checks rejecting malformed values with ConfigError.
4. Immutability of the Settings snapshot.
"""

import dataclasses

import pytest

from config import OPTIONS, coerce_value, resolve, resolve_settings
from errors import ConfigError

# -----------------------------------------------------------------------------
# PRECEDENCE
# -----------------------------------------------------------------------------

def test_default_used_when_nothing_set() -> None:
    assert resolve("default_deployment_region", environ={}) == "northeurope"
    assert resolve("throttle_limit", environ={}) == 10
    assert resolve("invalidate_cache", environ={}) is True
    assert resolve("partial_discovery_root", environ={}) is None


def test_environment_beats_default() -> None:
    env = {"AZSTATE_DEFAULT_DEPLOYMENT_REGION": "westeurope"}
    assert resolve("default_deployment_region", environ=env) == "westeurope"


def test_override_beats_environment() -> None:
    env = {"AZSTATE_DEFAULT_DEPLOYMENT_REGION": "westeurope"}
    value = resolve("default_deployment_region", overrides={"default_deployment_region": "eastus"}, environ=env)
    assert value == "eastus"


def test_none_override_does_not_mask_environment() -> None:
    env = {"AZSTATE_SKIP_POLICY": "true"}
    assert resolve("skip_policy", overrides={"skip_policy": None}, environ=env) is True


def test_empty_environment_value_is_unset() -> None:
    assert resolve("state", environ={"AZSTATE_STATE": ""}) == "azstate"


def test_reads_process_environment_by_default(monkeypatch) -> None:
    monkeypatch.setenv("AZSTATE_THROTTLE_LIMIT", "3")
    assert resolve("throttle_limit") == 3


# -----------------------------------------------------------------------------
# COERCION
# -----------------------------------------------------------------------------

def test_comma_value_becomes_ordered_sequence() -> None:
    assert coerce_value("a,b,c") == ("a", "b", "c")
    assert list(resolve("exclude_offers", environ={"AZSTATE_EXCLUDE_OFFER": "a,b,c"})) == ["a", "b", "c"]


def test_true_false_words_become_booleans() -> None:
    assert coerce_value("True") is True
    assert coerce_value("FALSE") is False
    assert resolve("strict_mode", environ={"AZSTATE_STRICT_MODE": "True"}) is True


def test_plain_value_is_left_unchanged() -> None:
    assert coerce_value("MS-AZR-0017P") == "MS-AZR-0017P"
    env = {"AZSTATE_PARTIAL_MG_DISCOVERY_ROOT": "MS-AZR-0017P"}
    assert resolve("partial_discovery_root", environ=env) == "MS-AZR-0017P"


def test_non_string_values_pass_through() -> None:
    assert coerce_value(7) == 7
    assert coerce_value(None) is None


def test_single_value_for_list_option_is_wrapped() -> None:
    assert resolve("exclude_states", environ={"AZSTATE_EXCLUDE_STATE": "Disabled"}) == ("Disabled",)


def test_numeric_flags_accepted_for_booleans() -> None:
    assert resolve("skip_resource_group", environ={"AZSTATE_SKIP_RESOURCE_GROUP": "1"}) is True
    assert resolve("invalidate_cache", environ={"AZSTATE_INVALIDATE_CACHE": "0"}) is False


# -----------------------------------------------------------------------------
# MALFORMED VALUES
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("name,env_key,raw", [
    ("throttle_limit", "AZSTATE_THROTTLE_LIMIT", "ten"),
    ("throttle_limit", "AZSTATE_THROTTLE_LIMIT", "0"),
    ("strict_mode", "AZSTATE_STRICT_MODE", "maybe"),
    ("subtree_failure_policy", "AZSTATE_SUBTREE_FAILURE_POLICY", "retry"),
    ("partial_discovery_root", "AZSTATE_PARTIAL_MG_DISCOVERY_ROOT", "a,b"),
    ("state", "AZSTATE_STATE", "true"),
])
def test_malformed_values_raise_config_error(name, env_key, raw) -> None:
    with pytest.raises(ConfigError) as exc:
        resolve(name, environ={env_key: raw})
    assert exc.value.option == name
    assert env_key in str(exc.value)


def test_unknown_option_is_rejected() -> None:
    with pytest.raises(ConfigError):
        resolve("no_such_option", environ={})
    with pytest.raises(ConfigError):
        resolve_settings({"no_such_option": 1}, environ={})


# -----------------------------------------------------------------------------
# SNAPSHOT
# -----------------------------------------------------------------------------

def test_settings_snapshot_covers_every_option_and_is_frozen() -> None:
    settings = resolve_settings(environ={})
    assert set(settings.as_dict()) == set(OPTIONS)
    assert settings.resolve("exclude_states") == ("Disabled", "Deleted", "Warned", "Expired", "PastDue")
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.state = "elsewhere"  # type: ignore[misc]


def test_settings_resolve_rejects_unknown_name() -> None:
    with pytest.raises(ConfigError):
        resolve_settings(environ={}).resolve("nope")


def test_strict_mode_forces_abort_policy() -> None:
    env = {"AZSTATE_SUBTREE_FAILURE_POLICY": "skip"}
    assert resolve_settings(environ=env).failure_policy == "skip"
    env["AZSTATE_STRICT_MODE"] = "true"
    assert resolve_settings(environ=env).failure_policy == "abort"


def test_ci_identifiers_resolve_from_environment() -> None:
    env = {"GITHUB_REPOSITORY": "contoso/platform", "GITHUB_PULL_REQUEST": "42"}
    settings = resolve_settings(environ=env)
    assert settings.github_repository == "contoso/platform"
    assert settings.github_pull_request == "42"
    assert settings.github_api_url == "https://api.github.com"
