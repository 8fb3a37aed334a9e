# reconcile.py
"""
Mirror a discovered ScopeNode tree onto the AzState directory tree.

Layout: one directory per scope, nested by hierarchy, named
"<display name> (<short name>)". Every directory holds a ``.AzState``
metadata directory with the scope descriptor; anything else in the tree is
user content.

Before mirroring, the run picks exactly one mode:

  ForceReset   force flag set, or the layout predates the suffix naming:
               delete the whole root and start empty.
  Rebuild      rebuild flag set: delete every .AzState directory, keep the rest.
  Incremental  otherwise: create what is missing, delete nothing.
"""
from __future__ import annotations

import os
import shutil
import hashlib
from enum import Enum
from typing import Dict, Iterable, List, Optional

from azstate_common import _log, sanitize_directory_name
from errors import FilesystemError
from models import KIND_MANAGEMENT_GROUP, ScopeNode
from state_io import METADATA_DIR, build_descriptor, descriptor_file_name, write_json_if_changed


class Mode(Enum):
    INCREMENTAL = "Incremental"
    REBUILD = "Rebuild"
    FORCE_RESET = "ForceReset"


def select_mode(force: bool, rebuild: bool, migration_required: bool) -> Mode:
    if force or migration_required:
        return Mode.FORCE_RESET
    if rebuild:
        return Mode.REBUILD
    return Mode.INCREMENTAL


def directory_name(node: ScopeNode) -> str:
    display = sanitize_directory_name(node.display_name or node.name)
    return f"{display} ({sanitize_directory_name(node.name)})"


def directory_names(nodes: Iterable[ScopeNode]) -> List[str]:
    """
    Directory names for a list of siblings, in order. The short-name suffix
    separates duplicate display names; entries that still clash
    case-insensitively get an extra suffix derived from their scope id.
    """
    names: List[str] = []
    used = set()
    for node in nodes:
        base = directory_name(node)
        candidate = base
        if candidate.lower() in used:
            digest = hashlib.sha1(node.id.lower().encode("utf-8")).hexdigest()[:8]
            candidate = f"{base} ({digest})"
            n = 2
            while candidate.lower() in used:
                candidate = f"{base} ({digest}-{n})"
                n += 1
        used.add(candidate.lower())
        names.append(candidate)
    return names


def detect_migration(root_path: str, root_name: str) -> bool:
    """
    True when the root scope's descriptor sits in a directory without the
    "(<short name>)" suffix, i.e. the tree was written by the legacy naming.
    """
    if not os.path.isdir(root_path):
        return False
    target = descriptor_file_name(KIND_MANAGEMENT_GROUP, root_name).lower()
    suffix = f"({sanitize_directory_name(root_name)})".lower()
    for dirpath, dirnames, filenames in os.walk(root_path, onerror=_walk_error("read")):
        if os.path.basename(dirpath) != METADATA_DIR:
            continue
        dirnames[:] = []
        if any(f.lower() == target for f in filenames):
            owner = os.path.dirname(dirpath)
            if os.path.normpath(owner) == os.path.normpath(root_path):
                return True
            if not os.path.basename(owner).lower().endswith(suffix):
                return True
    return False


def _walk_error(operation: str):
    def raise_error(err: OSError):
        raise FilesystemError(operation, err.filename, err) from err
    return raise_error


def _guard_destructive(root_path: str):
    real = os.path.realpath(root_path)
    cwd = os.path.realpath(os.getcwd())
    if real == os.path.dirname(real) or cwd == real or cwd.startswith(real.rstrip(os.sep) + os.sep):
        raise FilesystemError("delete", root_path,
                              ValueError("refusing to delete a filesystem root or the working directory"))


def reset_state(root_path: str) -> None:
    """Delete root_path entirely and recreate it empty."""
    _guard_destructive(root_path)
    _log(f"Resetting state directory {root_path}")
    try:
        if os.path.lexists(root_path):
            if os.path.isdir(root_path) and not os.path.islink(root_path):
                shutil.rmtree(root_path)
            else:
                os.remove(root_path)
    except OSError as e:
        raise FilesystemError("delete", root_path, e) from e
    try:
        os.makedirs(root_path)
    except OSError as e:
        raise FilesystemError("create", root_path, e) from e


def purge_metadata(root_path: str) -> int:
    """Delete every metadata directory below root_path; returns how many were removed."""
    removed = 0
    if not os.path.isdir(root_path):
        return removed
    for dirpath, dirnames, _ in os.walk(root_path, onerror=_walk_error("delete")):
        if METADATA_DIR in dirnames:
            target = os.path.join(dirpath, METADATA_DIR)
            try:
                shutil.rmtree(target)
            except OSError as e:
                raise FilesystemError("delete", target, e) from e
            dirnames.remove(METADATA_DIR)
            removed += 1
    _log(f"Removed {removed} metadata director{'y' if removed == 1 else 'ies'} under {root_path}")
    return removed


def _ensure_dir(path: str) -> bool:
    if os.path.isdir(path):
        return False
    try:
        os.makedirs(path)
    except OSError as e:
        raise FilesystemError("create", path, e) from e
    return True


def reconcile(tree: ScopeNode, root_path: str) -> Dict[str, str]:
    """
    Create the directory and descriptor of every scope in the tree below
    root_path. Returns scope id -> directory path. Never deletes anything.
    """
    _ensure_dir(root_path)
    placed: Dict[str, str] = {}
    created = written = 0
    stack = [(tree, os.path.join(root_path, directory_names([tree])[0]))]
    while stack:
        node, path = stack.pop()
        if _ensure_dir(path):
            created += 1
        meta = os.path.join(path, METADATA_DIR)
        _ensure_dir(meta)
        if write_json_if_changed(os.path.join(meta, descriptor_file_name(node.kind, node.name)),
                                 build_descriptor(node)):
            written += 1
        placed[node.id] = path
        names = directory_names(node.children)
        for child, name in reversed(list(zip(node.children, names))):
            stack.append((child, os.path.join(path, name)))
    _log(f"Reconciled {len(placed)} scope(s) under {root_path} "
         f"({created} new director{'y' if created == 1 else 'ies'}, {written} descriptor(s) written)")
    return placed


class StateReconciler:
    def __init__(self, root_path: str):
        self.root_path = root_path
        self.mode: Optional[Mode] = None

    def run(self, tree: ScopeNode, root_name: str, force: bool = False, rebuild: bool = False) -> Dict[str, str]:
        migration = detect_migration(self.root_path, root_name)
        if migration:
            _log("Legacy state layout detected; a full reset is required")
        self.mode = select_mode(force, rebuild, migration)
        _log(f"Reconcile mode: {self.mode.value}")
        if self.mode is Mode.FORCE_RESET:
            reset_state(self.root_path)
        elif self.mode is Mode.REBUILD:
            purge_metadata(self.root_path)
        return reconcile(tree, self.root_path)
