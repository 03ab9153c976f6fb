"""Command-line access to a paramtree settings tree.

Usage:
    paramtree paths [--exposed]                 # list parameter paths
    paramtree get visual/brightness             # print a value as JSON
    paramtree set visual/brightness 1.2         # validate, store, save user preset
    paramtree stats                             # parameter/group counts
    paramtree reset                             # drop the user preset
    paramtree export [FILE]                     # dump the current tree
    paramtree import FILE                       # create-or-update from a preset file
    paramtree presets list|save|load|delete [NAME]
    paramtree logs [-n 20]                      # tail the log file
    paramtree config show|reset                 # print or regenerate config.yml
    paramtree config autosave [on|off]          # autosave.onShutdown

Values given to ``set`` are decoded as JSON when possible ("true", "0.5",
"[1, 0, 0]") and used as plain strings otherwise.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional

import yaml

from . import logging as ptlog
from .config import ParamTreeConfig
from .manager import SettingsManager


def _decode_value(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=list))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paramtree",
        description="Inspect and edit paramtree parameter presets",
    )
    parser.add_argument(
        "--config-file", default=None,
        help="Path to config.yml (default: $XDG_CONFIG_HOME/paramtree/config.yml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    paths = sub.add_parser("paths", help="List parameter paths")
    paths.add_argument("--exposed", action="store_true", help="Only parameters exposed to bridges")

    get = sub.add_parser("get", help="Print a parameter's value")
    get.add_argument("path")

    set_ = sub.add_parser("set", help="Set a parameter and save the user preset")
    set_.add_argument("path")
    set_.add_argument("value")

    sub.add_parser("stats", help="Show tree statistics")
    sub.add_parser("reset", help="Delete the user preset and restore defaults")

    export = sub.add_parser("export", help="Write the current tree as a preset document")
    export.add_argument("file", nargs="?", default=None, help="Output file (default: stdout)")

    import_ = sub.add_parser("import", help="Apply a preset file (creates missing entries)")
    import_.add_argument("file")

    presets = sub.add_parser("presets", help="Manage named presets")
    presets.add_argument("action", choices=["list", "save", "load", "delete"])
    presets.add_argument("name", nargs="?", default=None)

    logs = sub.add_parser("logs", help="Show recent log entries")
    logs.add_argument("-n", "--lines", type=int, default=20, help="Number of lines (default: 20)")

    config = sub.add_parser("config", help="Show or change config.yml")
    config.add_argument("action", choices=["show", "reset", "autosave"])
    config.add_argument("state", nargs="?", choices=["on", "off"], default=None,
                        help="New autosave-on-shutdown state (autosave only)")
    return parser


def _run_presets(manager: SettingsManager, action: str, name: Optional[str]) -> None:
    if action == "list":
        for preset in manager.list_presets():
            print(preset)
        return
    if not name:
        _fail(f"'presets {action}' needs a preset name")
    try:
        if action == "save":
            ok = manager.save_preset(name)
        elif action == "load":
            ok = manager.load_preset(name) and manager.save()
        else:
            ok = manager.delete_preset(name)
    except ValueError as e:
        _fail(str(e))
        return
    if not ok:
        _fail(f"could not {action} preset '{name}'")
    print(f"Preset '{name}': {action} ok")


def _format_log_line(line: str) -> str:
    entry = ptlog.parse_log_line(line)
    if entry is None:
        return line
    text = f"{entry.get('timestamp', '')} {entry.get('level', ''):<7} {entry.get('message', '')}"
    if entry.get("context"):
        text += f" {json.dumps(entry['context'], default=str)}"
    return text


def _run_logs(config: ParamTreeConfig, lines: int) -> None:
    tail = ptlog.read_log_tail(config.log_file, lines=max(1, lines))
    if not tail:
        print(f"No log entries in {config.log_file}")
        return
    for line in tail:
        print(_format_log_line(line))


def _run_config(config: ParamTreeConfig, action: str, state: Optional[str]) -> None:
    if action == "show":
        print(f"# {config.config_path}")
        print(yaml.safe_dump(config.raw, default_flow_style=False, sort_keys=False), end="")
    elif action == "reset":
        fresh = ParamTreeConfig.reset(config.config_path)
        print(f"Config reset to defaults: {fresh.config_path}")
    elif state is None:
        print("on" if config.autosave_on_shutdown else "off")
    else:
        config.set_autosave_on_shutdown(state == "on")
        try:
            config.save()
        except OSError as e:
            _fail(f"cannot write {config.config_path}: {e}")
        print(f"Autosave on shutdown: {state}")


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    config = ParamTreeConfig.load(args.config_file)
    ptlog.configure(config.log_level, config.log_file, json_format=config.log_json)

    if args.command == "logs":
        _run_logs(config, args.lines)
        return
    if args.command == "config":
        _run_config(config, args.action, args.state)
        return

    manager = SettingsManager.from_config(config)
    manager.load()
    for warning in manager.store.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    if args.command == "paths":
        paths = manager.get_exposed_parameter_paths() if args.exposed else manager.get_all_parameter_paths()
        for path in paths:
            print(path)

    elif args.command == "get":
        param = manager.get_param(args.path)
        if param is None:
            _fail(f"unknown parameter '{args.path}'")
        _print_json(param.to_dict()["value"])

    elif args.command == "set":
        param = manager.get_param(args.path)
        if param is None:
            _fail(f"unknown parameter '{args.path}'")
        value = _decode_value(args.value)
        if not manager.set_param(args.path, value):
            errors = param.get_validation_errors(value) or [f"value rejected for {param.type}"]
            _fail("; ".join(errors))
        if not manager.save():
            _fail("failed to save user preset")
        _print_json(param.to_dict()["value"])

    elif args.command == "stats":
        _print_json(manager.get_stats())

    elif args.command == "reset":
        manager.reset()
        print("Reset to defaults")

    elif args.command == "export":
        doc = manager.export_preset_data()
        if args.file:
            with open(args.file, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
            print(f"Exported to {args.file}")
        else:
            _print_json(doc)

    elif args.command == "import":
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            _fail(f"cannot read {args.file}: {e}")
            return
        applied = manager.apply_preset_data(doc)
        if not manager.save():
            _fail("failed to save user preset")
        print(f"Applied {applied} parameter value(s)")

    elif args.command == "presets":
        _run_presets(manager, args.action, args.name)


if __name__ == "__main__":
    main()
