"""Host configuration for paramtree.

Reads/writes $XDG_CONFIG_HOME/paramtree/config.yml (or --config-file).
The file is created with defaults on first run and rewritten on every
load so newly added keys show up for the user to edit.

Strings may reference environment variables as ${VAR} or ${VAR:-default};
they are expanded at load time while the raw form is what gets saved.

The config defines:
  - presets: default / user document locations and the named-preset directory
  - logging: log file, level and JSON vs plain output
  - autosave: whether shutdown / reset write the user preset
"""

from __future__ import annotations

import copy
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

log = logging.getLogger("paramtree.config")

PACKAGED_DEFAULT_PRESET = os.path.join(os.path.dirname(__file__), "data", "default_preset.json")

DEFAULT_CONFIG_DIR = os.path.join(
    os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config")),
    "paramtree",
)
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_CONFIG_DIR, "config.yml")

DEFAULT_CONFIG: dict[str, Any] = {
    "presets": {
        # Empty means the default preset bundled with the package.
        "default": "${PARAMTREE_DEFAULT_PRESET:-}",
        "user": "${PARAMTREE_USER_PRESET:-" + os.path.join(DEFAULT_CONFIG_DIR, "user_preset.json") + "}",
        "directory": "${PARAMTREE_PRESETS_DIR:-" + os.path.join(DEFAULT_CONFIG_DIR, "presets") + "}",
    },
    "logging": {
        "file": "${PARAMTREE_LOG:-/tmp/paramtree.log}",
        "level": "INFO",        # DEBUG, INFO, WARNING or ERROR
        "json": True,           # JSON lines (False → plain text)
    },
    "autosave": {
        "onShutdown": True,     # write the user preset when the host shuts down
        "onReset": False,       # write the (now default-only) tree after reset
    },
}

_KNOWN_KEYS: dict[str, set[str]] = {
    section: set(values) for section, values in DEFAULT_CONFIG.items()
}


def _expand_env(value: str) -> str:
    """Expand ${VAR} and ${VAR:-default} in a string."""
    def _sub(m: re.Match) -> str:
        name, sep, fallback = m.group(1).partition(":-")
        if sep:
            return os.environ.get(name, fallback)
        return os.environ.get(name, "")
    return re.sub(r"\$\{([^}]+)\}", _sub, value)


def _expand_config(obj: Any) -> Any:
    if isinstance(obj, str):
        return _expand_env(obj)
    if isinstance(obj, dict):
        return {k: _expand_config(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_config(v) for v in obj]
    return obj


def _deep_merge(base: dict, override: dict) -> dict:
    """Return a new dict with *override* merged into *base* (override wins)."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _edit_distance(a: str, b: str) -> int:
    """Levenshtein distance."""
    if len(a) > len(b):
        a, b = b, a
    row = list(range(len(a) + 1))
    for j, cb in enumerate(b, 1):
        prev_diag, row[0] = row[0], j
        for i, ca in enumerate(a, 1):
            prev_diag, row[i] = row[i], min(row[i] + 1, row[i - 1] + 1, prev_diag + (ca != cb))
    return row[len(a)]


def _closest_match(key: str, valid_keys: set[str], max_distance: int = 3) -> str | None:
    """Closest valid key for typo hints, or None if nothing is close."""
    lowered = key.lower()
    best, best_dist = None, max_distance + 1
    for candidate in sorted(valid_keys):
        if candidate.lower() == lowered:
            return candidate
        if abs(len(candidate) - len(key)) > max_distance:
            continue
        dist = _edit_distance(lowered, candidate.lower())
        if dist < best_dist:
            best, best_dist = candidate, dist
    return best


def _find_new_keys(defaults: dict, user: dict, prefix: str = "") -> list[str]:
    """Dotted paths of keys in *defaults* that *user* lacks."""
    missing: list[str] = []
    for key, value in defaults.items():
        dotted = f"{prefix}.{key}" if prefix else key
        if key not in user:
            missing.append(dotted)
        elif isinstance(value, dict) and isinstance(user[key], dict):
            missing.extend(_find_new_keys(value, user[key], dotted))
    return missing


@dataclass
class ParamTreeConfig:
    """Parsed and expanded paramtree configuration."""

    raw: dict[str, Any] = field(default_factory=dict)
    """The config as loaded from YAML (env vars unexpanded)."""

    expanded: dict[str, Any] = field(default_factory=dict)
    """The config with env vars expanded."""

    config_path: str = DEFAULT_CONFIG_FILE

    validation_warnings: list[str] = field(default_factory=list)

    new_keys: list[str] = field(default_factory=list)
    """Keys filled in from defaults on the last load."""

    @classmethod
    def reset(cls, config_path: Optional[str] = None) -> "ParamTreeConfig":
        """Delete the config file and regenerate it from defaults."""
        path = config_path or DEFAULT_CONFIG_FILE
        if os.path.isfile(path):
            os.unlink(path)
            log.info(f"Deleted config {path}")
        return cls.load(path)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "ParamTreeConfig":
        """Load config from file, creating it with defaults if missing.

        An unreadable or malformed file is reported and the defaults are
        used; loading never raises.
        """
        path = config_path or DEFAULT_CONFIG_FILE
        raw = copy.deepcopy(DEFAULT_CONFIG)
        new_keys: list[str] = []
        created = False

        if os.path.isfile(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f)
                if isinstance(user_config, dict):
                    new_keys = _find_new_keys(raw, user_config)
                    raw = _deep_merge(raw, user_config)
                elif user_config is not None:
                    log.warning(f"Ignoring config {path}: expected a mapping")
            except (OSError, yaml.YAMLError) as e:
                log.warning(f"Failed to load config from {path}: {e}")
        else:
            created = True

        cfg = cls(raw=raw, expanded=_expand_config(raw), config_path=path, new_keys=new_keys)
        cfg._validate()

        if new_keys:
            log.info(f"Added {len(new_keys)} new default key(s) to {path}: {', '.join(new_keys)}")

        # Write back defaults + user values so every option is visible.
        try:
            cfg.save()
            if created:
                log.info(f"Created config {path}")
        except OSError as e:
            log.warning(f"Failed to write config {path}: {e}")
        return cfg

    def _validate(self) -> None:
        warnings: list[str] = []
        for section, value in self.raw.items():
            if section not in _KNOWN_KEYS:
                hint = _closest_match(section, set(_KNOWN_KEYS))
                warnings.append(
                    f"Unknown top-level key '{section}'"
                    + (f" (did you mean '{hint}'?)" if hint else "")
                )
                continue
            if not isinstance(value, dict):
                warnings.append(f"'{section}' should be a mapping — using defaults")
                self.raw[section] = copy.deepcopy(DEFAULT_CONFIG[section])
                self.expanded[section] = _expand_config(self.raw[section])
                continue
            for key in value:
                if key not in _KNOWN_KEYS[section]:
                    hint = _closest_match(key, _KNOWN_KEYS[section])
                    warnings.append(
                        f"Unknown key '{section}.{key}'"
                        + (f" (did you mean '{hint}'?)" if hint else "")
                    )

        level = str(self.logging_section.get("level", "INFO")).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            warnings.append(f"Unknown logging.level '{level}' — using INFO")

        self.validation_warnings = warnings
        for w in warnings:
            log.warning(f"Config: {w}")

    def save(self) -> None:
        directory = os.path.dirname(self.config_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.raw, f, default_flow_style=False, sort_keys=False)
        self.expanded = _expand_config(self.raw)

    # ─── Accessors ──────────────────────────────────────────────────

    @property
    def presets_section(self) -> dict[str, Any]:
        return self.expanded.get("presets", {})

    @property
    def logging_section(self) -> dict[str, Any]:
        return self.expanded.get("logging", {})

    @property
    def default_preset_path(self) -> str:
        return self.presets_section.get("default") or PACKAGED_DEFAULT_PRESET

    @property
    def user_preset_path(self) -> str:
        return self.presets_section.get("user") or os.path.join(
            os.path.dirname(self.config_path), "user_preset.json"
        )

    @property
    def presets_dir(self) -> str:
        return self.presets_section.get("directory") or os.path.join(
            os.path.dirname(self.config_path), "presets"
        )

    @property
    def log_file(self) -> str:
        return self.logging_section.get("file") or "/tmp/paramtree.log"

    @property
    def log_level(self) -> str:
        level = str(self.logging_section.get("level", "INFO")).upper()
        return level if level in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"

    @property
    def log_json(self) -> bool:
        return bool(self.logging_section.get("json", True))

    @property
    def autosave_on_shutdown(self) -> bool:
        return bool(self.expanded.get("autosave", {}).get("onShutdown", True))

    @property
    def autosave_on_reset(self) -> bool:
        return bool(self.expanded.get("autosave", {}).get("onReset", False))

    def set_autosave_on_shutdown(self, enabled: bool) -> None:
        self.raw.setdefault("autosave", {})["onShutdown"] = bool(enabled)
        self.expanded = _expand_config(self.raw)
