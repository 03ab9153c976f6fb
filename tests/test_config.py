"""Tests for the paramtree configuration system.

Tests config loading, env var expansion, deep merge, new-key detection,
typo hints for unknown keys, and the preset / logging / autosave accessors.
"""

from __future__ import annotations

import os

import pytest
import yaml

from paramtree.config import (
    DEFAULT_CONFIG,
    DEFAULT_CONFIG_DIR,
    PACKAGED_DEFAULT_PRESET,
    ParamTreeConfig,
    _closest_match,
    _deep_merge,
    _edit_distance,
    _expand_config,
    _expand_env,
    _find_new_keys,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def tmp_config(tmp_path):
    """Create a temporary config file path."""
    return str(tmp_path / "config.yml")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("PARAMTREE_DEFAULT_PRESET", "PARAMTREE_USER_PRESET", "PARAMTREE_PRESETS_DIR", "PARAMTREE_LOG"):
        monkeypatch.delenv(var, raising=False)


def _write_yaml(path: str, data) -> None:
    with open(path, "w") as f:
        yaml.dump(data, f)


# ---------------------------------------------------------------------------
# Env var expansion
# ---------------------------------------------------------------------------

class TestEnvExpansion:
    def test_simple_var(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert _expand_env("${TEST_VAR}") == "hello"

    def test_var_with_default(self, monkeypatch):
        monkeypatch.delenv("MISSING_VAR", raising=False)
        assert _expand_env("${MISSING_VAR:-fallback}") == "fallback"

    def test_var_with_default_present(self, monkeypatch):
        monkeypatch.setenv("PRESENT_VAR", "real")
        assert _expand_env("${PRESENT_VAR:-fallback}") == "real"

    def test_missing_var_empty(self, monkeypatch):
        monkeypatch.delenv("NOPE", raising=False)
        assert _expand_env("${NOPE}") == ""

    def test_default_may_contain_path(self, monkeypatch):
        monkeypatch.delenv("NOPE", raising=False)
        assert _expand_env("${NOPE:-/var/lib/app/user.json}") == "/var/lib/app/user.json"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("A", "1")
        expanded = _expand_config({"x": ["${A}", 2], "y": {"z": "${A}-${A}"}, "n": True})
        assert expanded == {"x": ["1", 2], "y": {"z": "1-1"}, "n": True}


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------

class TestDeepMerge:
    def test_nested_merge(self):
        base = {"x": {"a": 1, "b": 2}}
        override = {"x": {"b": 3, "c": 4}}
        assert _deep_merge(base, override) == {"x": {"a": 1, "b": 3, "c": 4}}

    def test_override_dict_with_scalar(self):
        assert _deep_merge({"a": {"nested": True}}, {"a": "flat"}) == {"a": "flat"}

    def test_base_not_modified(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


# ---------------------------------------------------------------------------
# New keys and typo hints
# ---------------------------------------------------------------------------

class TestFindNewKeys:
    def test_no_new_keys(self):
        assert _find_new_keys({"a": 1, "b": 2}, {"a": 10, "b": 20}) == []

    def test_nested_new_key(self):
        assert _find_new_keys({"x": {"a": 1, "b": 2}}, {"x": {"a": 10}}) == ["x.b"]

    def test_new_entire_section(self):
        defaults = {"presets": {"user": ""}, "autosave": {"onReset": False}}
        assert _find_new_keys(defaults, {"presets": {"user": "x"}}) == ["autosave"]

    def test_user_extra_keys_ignored(self):
        assert _find_new_keys({"a": 1}, {"a": 10, "extra": "stuff"}) == []


class TestClosestMatch:
    def test_edit_distance(self):
        assert _edit_distance("kitten", "sitting") == 3
        assert _edit_distance("", "abc") == 3
        assert _edit_distance("same", "same") == 0

    def test_typo(self):
        assert _closest_match("presest", {"presets", "logging", "autosave"}) == "presets"

    def test_case_insensitive_exact(self):
        assert _closest_match("ONRESET", {"onShutdown", "onReset"}) == "onReset"

    def test_nothing_close(self):
        assert _closest_match("completelyunrelated", {"presets", "logging"}) is None


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------

class TestConfigLoading:
    def test_creates_default_file(self, tmp_config):
        assert not os.path.isfile(tmp_config)
        config = ParamTreeConfig.load(tmp_config)
        assert os.path.isfile(tmp_config)
        assert config.raw == DEFAULT_CONFIG
        assert config.validation_warnings == []
        assert config.new_keys == []

    def test_default_accessors(self, tmp_config):
        config = ParamTreeConfig.load(tmp_config)
        assert config.default_preset_path == PACKAGED_DEFAULT_PRESET
        assert config.user_preset_path == os.path.join(DEFAULT_CONFIG_DIR, "user_preset.json")
        assert config.presets_dir == os.path.join(DEFAULT_CONFIG_DIR, "presets")
        assert config.log_file == "/tmp/paramtree.log"
        assert config.log_level == "INFO"
        assert config.log_json is True
        assert config.autosave_on_shutdown is True
        assert config.autosave_on_reset is False

    def test_packaged_default_preset_exists(self):
        assert os.path.isfile(PACKAGED_DEFAULT_PRESET)

    def test_env_overrides(self, tmp_config, tmp_path, monkeypatch):
        monkeypatch.setenv("PARAMTREE_DEFAULT_PRESET", str(tmp_path / "base.json"))
        monkeypatch.setenv("PARAMTREE_USER_PRESET", str(tmp_path / "mine.json"))
        monkeypatch.setenv("PARAMTREE_LOG", str(tmp_path / "pt.log"))
        config = ParamTreeConfig.load(tmp_config)
        assert config.default_preset_path == str(tmp_path / "base.json")
        assert config.user_preset_path == str(tmp_path / "mine.json")
        assert config.log_file == str(tmp_path / "pt.log")

    def test_raw_form_saved(self, tmp_config, tmp_path, monkeypatch):
        monkeypatch.setenv("PARAMTREE_USER_PRESET", str(tmp_path / "mine.json"))
        ParamTreeConfig.load(tmp_config)
        with open(tmp_config) as f:
            on_disk = yaml.safe_load(f)
        assert on_disk["presets"]["user"].startswith("${PARAMTREE_USER_PRESET")

    def test_merges_with_defaults(self, tmp_config):
        _write_yaml(tmp_config, {"autosave": {"onReset": True}})
        config = ParamTreeConfig.load(tmp_config)
        assert config.autosave_on_reset is True
        assert config.autosave_on_shutdown is True
        assert "autosave.onShutdown" in config.new_keys
        assert "presets" in config.new_keys

    def test_new_keys_written_back(self, tmp_config):
        _write_yaml(tmp_config, {"autosave": {"onReset": True}})
        ParamTreeConfig.load(tmp_config)
        with open(tmp_config) as f:
            on_disk = yaml.safe_load(f)
        assert on_disk["autosave"] == {"onShutdown": True, "onReset": True}
        assert "logging" in on_disk

    def test_explicit_paths(self, tmp_config, tmp_path):
        _write_yaml(tmp_config, {"presets": {
            "default": str(tmp_path / "d.json"),
            "user": str(tmp_path / "u.json"),
            "directory": str(tmp_path / "named"),
        }})
        config = ParamTreeConfig.load(tmp_config)
        assert config.default_preset_path == str(tmp_path / "d.json")
        assert config.user_preset_path == str(tmp_path / "u.json")
        assert config.presets_dir == str(tmp_path / "named")

    def test_empty_user_path_falls_back_next_to_config(self, tmp_config, tmp_path):
        _write_yaml(tmp_config, {"presets": {"user": "", "directory": ""}})
        config = ParamTreeConfig.load(tmp_config)
        assert config.user_preset_path == str(tmp_path / "user_preset.json")
        assert config.presets_dir == str(tmp_path / "presets")

    def test_malformed_yaml_uses_defaults(self, tmp_config):
        with open(tmp_config, "w") as f:
            f.write("presets: [unclosed\n")
        config = ParamTreeConfig.load(tmp_config)
        assert config.autosave_on_shutdown is True
        assert config.default_preset_path == PACKAGED_DEFAULT_PRESET

    def test_non_mapping_yaml_uses_defaults(self, tmp_config):
        _write_yaml(tmp_config, ["a", "b"])
        config = ParamTreeConfig.load(tmp_config)
        assert config.raw == DEFAULT_CONFIG

    def test_empty_file(self, tmp_config):
        open(tmp_config, "w").close()
        config = ParamTreeConfig.load(tmp_config)
        assert config.raw == DEFAULT_CONFIG


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:
    def test_unknown_top_level_key_with_hint(self, tmp_config):
        _write_yaml(tmp_config, {"presest": {}})
        config = ParamTreeConfig.load(tmp_config)
        assert config.validation_warnings == ["Unknown top-level key 'presest' (did you mean 'presets'?)"]

    def test_unknown_nested_key_with_hint(self, tmp_config):
        _write_yaml(tmp_config, {"logging": {"levle": "DEBUG"}})
        config = ParamTreeConfig.load(tmp_config)
        assert config.validation_warnings == ["Unknown key 'logging.levle' (did you mean 'level'?)"]

    def test_section_not_a_mapping(self, tmp_config):
        _write_yaml(tmp_config, {"logging": "loud"})
        config = ParamTreeConfig.load(tmp_config)
        assert any("'logging' should be a mapping" in w for w in config.validation_warnings)
        assert config.log_level == "INFO"
        assert config.raw["logging"] == DEFAULT_CONFIG["logging"]

    def test_bad_log_level(self, tmp_config):
        _write_yaml(tmp_config, {"logging": {"level": "chatty"}})
        config = ParamTreeConfig.load(tmp_config)
        assert any("logging.level" in w for w in config.validation_warnings)
        assert config.log_level == "INFO"

    def test_level_case_insensitive(self, tmp_config):
        _write_yaml(tmp_config, {"logging": {"level": "debug", "json": False}})
        config = ParamTreeConfig.load(tmp_config)
        assert config.log_level == "DEBUG"
        assert config.log_json is False
        assert config.validation_warnings == []


# ---------------------------------------------------------------------------
# Mutation and reset
# ---------------------------------------------------------------------------

class TestMutation:
    def test_set_autosave_persists(self, tmp_config):
        config = ParamTreeConfig.load(tmp_config)
        config.set_autosave_on_shutdown(False)
        assert config.autosave_on_shutdown is False
        config.save()
        assert ParamTreeConfig.load(tmp_config).autosave_on_shutdown is False

    def test_reset_restores_defaults(self, tmp_config):
        _write_yaml(tmp_config, {"autosave": {"onShutdown": False}})
        assert ParamTreeConfig.load(tmp_config).autosave_on_shutdown is False
        config = ParamTreeConfig.reset(tmp_config)
        assert config.autosave_on_shutdown is True
        assert config.raw == DEFAULT_CONFIG
