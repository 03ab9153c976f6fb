"""Preset schema versions and the migration chain.

Each migration takes a document at version N and returns a new document at
version N + 1.  Migrations only add or reshape fields they know about;
everything else is carried over untouched.

Schema history:
  v1 — parameter constraints nested under a ``validators`` mapping
       (``min``/``max``/``step``/``options``) and a ``default`` key.
  v2 — constraints flattened onto the parameter entry (``min``, ``max``,
       ``step``, ``enum_values``), ``default`` renamed to ``default_value``;
       unrecognised validator keys kept under ``constraints``.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

log = logging.getLogger("paramtree.migrations")

CURRENT_SCHEMA_VERSION = 2

# Documents written before versioning existed have no "version" key.
LEGACY_SCHEMA_VERSION = 1

Migration = Callable[[dict[str, Any]], dict[str, Any]]

# validators key -> flattened parameter key
_V1_VALIDATOR_KEYS = {
    "min": "min",
    "max": "max",
    "step": "step",
    "options": "enum_values",
    "choices": "enum_values",
}


def _walk_params(group: dict[str, Any], fn: Callable[[dict[str, Any]], None]) -> None:
    """Apply ``fn`` to every parameter entry in a serialized group subtree."""
    params = group.get("params")
    if isinstance(params, list):
        for entry in params:
            if isinstance(entry, dict):
                fn(entry)
    elif params is not None:
        log.warning(f"Skipping non-list 'params' in '{group.get('name', '')}' during migration")
    groups = group.get("groups")
    if isinstance(groups, list):
        for sub in groups:
            if isinstance(sub, dict):
                _walk_params(sub, fn)
    elif groups is not None:
        log.warning(f"Skipping non-list 'groups' in '{group.get('name', '')}' during migration")


def _flatten_validators(entry: dict[str, Any]) -> None:
    if "default" in entry and "default_value" not in entry:
        entry["default_value"] = entry.pop("default")

    validators = entry.pop("validators", None)
    if validators is None:
        return
    if not isinstance(validators, dict):
        # Not a mapping: preserved verbatim under constraints.
        entry["constraints"] = {"validators": validators}
        return
    leftovers: dict[str, Any] = {}
    for key, value in validators.items():
        target = _V1_VALIDATOR_KEYS.get(key)
        if target is None:
            leftovers[key] = value
        elif target not in entry:
            entry[target] = value
    if leftovers:
        existing = entry.get("constraints")
        entry["constraints"] = {**leftovers, **existing} if isinstance(existing, dict) else leftovers


def migrate_v1_to_v2(doc: dict[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(doc)
    # Root-level params ride along with the group list.
    _walk_params({"params": result.get("params"), "groups": result.get("groups")}, _flatten_validators)
    result["version"] = 2
    return result


# from-version -> migration producing from-version + 1
MIGRATIONS: dict[int, Migration] = {
    1: migrate_v1_to_v2,
}


def document_version(doc: dict[str, Any]) -> int:
    version = doc.get("version", LEGACY_SCHEMA_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        try:
            version = int(version)
        except (TypeError, ValueError):
            log.warning(f"Unreadable preset version {doc.get('version')!r} — assuming {LEGACY_SCHEMA_VERSION}")
            return LEGACY_SCHEMA_VERSION
    return version


def migrate(doc: dict[str, Any], target: int = CURRENT_SCHEMA_VERSION) -> tuple[dict[str, Any], list[str]]:
    """Run the migration chain until ``doc`` reaches ``target``.

    Returns ``(document, warnings)``.  The input is never modified.  A
    document newer than ``target`` is returned as-is with a warning, as is
    one whose chain has a gap.
    """
    warnings: list[str] = []
    version = document_version(doc)
    if version > target:
        warnings.append(f"Preset version {version} is newer than supported {target}")
        return doc, warnings

    result = doc
    while version < target:
        step = MIGRATIONS.get(version)
        if step is None:
            warnings.append(f"No migration from preset version {version}")
            break
        result = step(result)
        log.info(f"Migrated preset from version {version} to {version + 1}")
        version += 1
    if result is doc:
        result = copy.deepcopy(doc)
    result["version"] = version
    return result, warnings
