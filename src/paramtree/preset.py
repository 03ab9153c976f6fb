"""JSON preset persistence.

Two documents feed the settings tree:

* the **default** preset — read-only baseline shipped with the host;
* the **user** preset — read-write overlay rewritten on every save.

Both are migrated to ``CURRENT_SCHEMA_VERSION`` before use.  Missing files
are a normal steady state (no user preset yet) and only logged at INFO.
Malformed files are recorded in ``PresetStore.warnings`` and skipped; they
never raise.

Named presets live as ``<name>.json`` in a presets directory next to the
user document unless configured otherwise.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from .migrations import CURRENT_SCHEMA_VERSION, migrate

if TYPE_CHECKING:
    from .group import ParameterGroup

log = logging.getLogger("paramtree.preset")

PRESET_SUFFIX = ".json"
_PRESET_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Filesystems ──────────────────────────────────────────────────────

class LocalFileSystem:
    """Filesystem access for preset documents.

    Writes go to a sibling ``.tmp`` file first and are moved into place
    with ``os.replace`` so a crash mid-write never leaves a truncated
    preset behind.
    """

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def read_text(self, path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: str, text: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)

    def remove(self, path: str) -> bool:
        try:
            os.unlink(path)
            return True
        except FileNotFoundError:
            return False

    def list_names(self, directory: str, suffix: str = PRESET_SUFFIX) -> list[str]:
        try:
            entries = os.listdir(directory)
        except FileNotFoundError:
            return []
        return sorted(e[: -len(suffix)] for e in entries if e.endswith(suffix))


class MemoryFileSystem:
    """In-memory stand-in for hosts without a writable disk (and for tests)."""

    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files: dict[str, str] = dict(files or {})

    def exists(self, path: str) -> bool:
        return path in self.files

    def read_text(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    def write_text(self, path: str, text: str) -> None:
        self.files[path] = text

    def remove(self, path: str) -> bool:
        return self.files.pop(path, None) is not None

    def list_names(self, directory: str, suffix: str = PRESET_SUFFIX) -> list[str]:
        prefix = directory.rstrip("/") + "/"
        return sorted(
            p[len(prefix): -len(suffix)]
            for p in self.files
            if p.startswith(prefix) and p.endswith(suffix) and "/" not in p[len(prefix):]
        )


# ── Store ────────────────────────────────────────────────────────────

class PresetStore:
    """Reads, migrates, applies and writes preset documents."""

    def __init__(
        self,
        default_path: str,
        user_path: str,
        presets_dir: Optional[str] = None,
        fs: Optional[Any] = None,
        clock: Optional[Clock] = None,
    ):
        self.default_path = default_path
        self.user_path = user_path
        self.presets_dir = presets_dir or os.path.join(os.path.dirname(user_path), "presets")
        self.fs = fs if fs is not None else LocalFileSystem()
        self.clock = clock or _utc_now
        self.warnings: list[str] = []
        self.user_metadata: dict[str, Any] = {}

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        log.warning(message)

    def _timestamp(self) -> str:
        return self.clock().isoformat(timespec="seconds")

    # ── Reading ──────────────────────────────────────────────────────

    def read_document(self, path: str, label: str = "preset") -> Optional[dict[str, Any]]:
        """Read, parse and migrate a document; None if missing or unusable."""
        if not self.fs.exists(path):
            log.info(f"No {label} at {path}")
            return None
        try:
            text = self.fs.read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            self._warn(f"Failed to read {label} {path}: {e}")
            return None
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as e:
            self._warn(f"Malformed {label} {path}: {e}")
            return None
        if not isinstance(doc, dict):
            self._warn(f"Malformed {label} {path}: expected a JSON object, got {type(doc).__name__}")
            return None
        doc, migration_warnings = migrate(doc)
        for message in migration_warnings:
            self._warn(f"{label} {path}: {message}")
        if not isinstance(doc.get("groups", []), list):
            self._warn(f"{label} {path}: 'groups' is not a list — ignored")
            doc["groups"] = []
        return doc

    def load_default(self) -> Optional[dict[str, Any]]:
        return self.read_document(self.default_path, "default preset")

    def load_user(self) -> Optional[dict[str, Any]]:
        doc = self.read_document(self.user_path, "user preset")
        if doc is not None:
            metadata = doc.get("metadata")
            self.user_metadata = dict(metadata) if isinstance(metadata, dict) else {}
        return doc

    # ── Applying ─────────────────────────────────────────────────────

    @staticmethod
    def _as_root_entry(root: "ParameterGroup", doc: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": root.name,
            "description": root.description,
            "params": doc.get("params") or [],
            "groups": doc.get("groups") or [],
        }

    def populate(self, root: "ParameterGroup", doc: dict[str, Any]) -> None:
        """Replace the whole tree under ``root`` with the document's structure."""
        root.load_dict(self._as_root_entry(root, doc))

    def overlay(self, root: "ParameterGroup", doc: dict[str, Any], create_missing: bool = False) -> int:
        """Merge document values onto ``root``.

        ``create_missing=False`` is the strict startup overlay: only values
        of parameters that already exist change.  ``create_missing=True``
        is create-or-update, used when applying preset data
        programmatically.
        """
        return root.merge_dict(self._as_root_entry(root, doc), create_missing=create_missing)

    # ── Writing ──────────────────────────────────────────────────────

    def build_document(self, root: "ParameterGroup", metadata: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        now = self._timestamp()
        meta = dict(metadata or {})
        meta.setdefault("created", now)
        meta["modified"] = now
        tree = root.to_dict()
        doc: dict[str, Any] = {
            "version": CURRENT_SCHEMA_VERSION,
            "metadata": meta,
            "groups": tree["groups"],
        }
        if tree["params"]:
            doc["params"] = tree["params"]
        return doc

    def _write(self, path: str, doc: dict[str, Any], label: str) -> bool:
        try:
            self.fs.write_text(path, json.dumps(doc, indent=2))
        except OSError as e:
            self._warn(f"Failed to write {label} {path}: {e}")
            return False
        log.info(f"Saved {label} to {path}")
        return True

    def save_user(self, root: "ParameterGroup") -> bool:
        doc = self.build_document(root, self.user_metadata)
        if not self._write(self.user_path, doc, "user preset"):
            return False
        self.user_metadata = doc["metadata"]
        return True

    def delete_user(self) -> bool:
        self.user_metadata = {}
        try:
            removed = self.fs.remove(self.user_path)
        except OSError as e:
            self._warn(f"Failed to delete user preset {self.user_path}: {e}")
            return False
        if removed:
            log.info(f"Deleted user preset {self.user_path}")
        return removed

    # ── Named presets ────────────────────────────────────────────────

    def preset_path(self, name: str) -> str:
        if not _PRESET_NAME_RE.match(name or ""):
            raise ValueError(f"Invalid preset name {name!r} — use letters, digits, '_', '-' and '.'")
        return os.path.join(self.presets_dir, name + PRESET_SUFFIX)

    def save_named(self, name: str, root: "ParameterGroup") -> bool:
        path = self.preset_path(name)
        previous = self.read_document(path, f"preset '{name}'") if self.fs.exists(path) else None
        prev_meta = previous.get("metadata") if previous else None
        metadata = dict(prev_meta) if isinstance(prev_meta, dict) else {}
        metadata["name"] = name
        return self._write(path, self.build_document(root, metadata), f"preset '{name}'")

    def read_named(self, name: str) -> Optional[dict[str, Any]]:
        return self.read_document(self.preset_path(name), f"preset '{name}'")

    def list_named(self) -> list[str]:
        return self.fs.list_names(self.presets_dir)

    def delete_named(self, name: str) -> bool:
        return self.fs.remove(self.preset_path(name))
