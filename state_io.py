"""Scope descriptor IO for the AzState tree.

Each mirrored scope owns a metadata directory (``.AzState``) holding one
descriptor file named after the scope's ARM type and short name, e.g.

    Microsoft.Management_managementGroups-<name>.parameters.json
    Microsoft.Subscription_subscriptions-<id>.parameters.json
    Microsoft.Resources_resourceGroups-<name>.parameters.json

Descriptors are rendered deterministically (sorted keys, no timestamps) and
written atomically, and only when their bytes change, so that an unchanged
hierarchy leaves the tree byte-identical.
"""
from __future__ import annotations

import os
import json
import tempfile
from typing import Any, Dict

from errors import FilesystemError
from models import KIND_MANAGEMENT_GROUP, KIND_RESOURCE_GROUP, KIND_SUBSCRIPTION

METADATA_DIR = ".AzState"
PARAMETERS_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#"

ARM_TYPES = {
    KIND_MANAGEMENT_GROUP: ("Microsoft.Management", "managementGroups"),
    KIND_SUBSCRIPTION: ("Microsoft.Subscription", "subscriptions"),
    KIND_RESOURCE_GROUP: ("Microsoft.Resources", "resourceGroups"),
}


def descriptor_file_name(kind: str, name: str) -> str:
    provider, rtype = ARM_TYPES[kind]
    return f"{provider}_{rtype}-{name}.parameters.json"


def build_descriptor(node) -> Dict[str, Any]:
    provider, rtype = ARM_TYPES[node.kind]
    return {
        "$schema": PARAMETERS_SCHEMA,
        "contentVersion": "1.0.0.0",
        "parameters": {
            "input": {
                "value": {
                    "id": node.id,
                    "name": node.name,
                    "type": f"{provider}/{rtype}",
                    "properties": {
                        "displayName": node.display_name,
                        "parentId": node.parent_id,
                    },
                }
            }
        },
    }


def render_json(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True) + "\n"


def write_json_if_changed(path: str, obj: Any) -> bool:
    """Write obj as JSON via temp file + os.replace; return False when the file already matched."""
    text = render_json(obj)
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            if f.read() == text:
                return False
    except FileNotFoundError:
        pass
    except OSError as e:
        raise FilesystemError("read", path, e) from e

    d = os.path.dirname(path) or "."
    tmp = None
    try:
        fd, tmp = tempfile.mkstemp(dir=d, prefix=".tmp-azstate-", text=True)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        tmp = None
    except OSError as e:
        raise FilesystemError("write", path, e) from e
    finally:
        if tmp and os.path.exists(tmp):
            os.remove(tmp)
    return True


__all__ = [
    "METADATA_DIR",
    "descriptor_file_name",
    "build_descriptor",
    "render_json",
    "write_json_if_changed",
]
