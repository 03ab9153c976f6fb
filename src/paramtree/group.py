"""Hierarchical container for parameters.

A ``ParameterGroup`` owns its parameters and sub-groups.  Children hold a
weak reference back to their parent, so the owning edge is always
parent → child.  Each group keeps a lookup cache mapping paths (relative
to that group) to parameters; any structural change invalidates the
changed group and every ancestor, never descendants.

Paths are slash-joined names.  The root group's own path is the empty
string, so a parameter ``brightness`` inside the root's child group
``visual`` lives at ``visual/brightness``.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any, Callable, Iterator, Optional

from .parameter import Parameter

log = logging.getLogger("paramtree.group")

StructureCallback = Callable[["ParameterGroup"], None]
ValueCallback = Callable[[str, Any], None]


def _join(prefix: str, name: str) -> str:
    return f"{prefix}/{name}" if prefix else name


def _split(path: str) -> list[str]:
    return [seg for seg in path.strip("/").split("/") if seg]


def _entry_name(entry: Any) -> Optional[str]:
    """The ``name`` of a serialized entry; None unless it is a non-empty string."""
    if isinstance(entry, dict):
        name = entry.get("name")
        if isinstance(name, str) and name:
            return name
    return None


def _entries(data: dict[str, Any], key: str, where: str) -> list[Any]:
    """``data[key]`` when it is a list; anything else is logged and ignored."""
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        log.warning(f"'{key}' in '{where}' is not a list ({type(items).__name__}), ignored")
        return []
    return items


class ParameterGroup:
    """A named node in the settings tree."""

    def __init__(self, name: str, description: str = ""):
        if not name:
            raise ValueError("Group name must be a non-empty string")
        self.name = name
        self.description = description
        self.parameters: dict[str, Parameter] = {}
        self.groups: dict[str, ParameterGroup] = {}
        self.path = ""
        self._parent_ref: Optional[weakref.ref] = None
        self._cache: dict[str, Parameter] = {}
        self._cache_valid = False
        self._structure_callbacks: list[StructureCallback] = []
        self._value_callbacks: list[ValueCallback] = []
        # parameter name -> relay subscribed on that parameter
        self._relays: dict[str, Callable[[Any], None]] = {}

    # ── Tree wiring ──────────────────────────────────────────────────

    @property
    def parent(self) -> Optional["ParameterGroup"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def cache_valid(self) -> bool:
        return self._cache_valid

    def is_ancestor_of(self, other: "ParameterGroup") -> bool:
        node = other.parent
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def _recompute_paths(self) -> None:
        """Recompute this group's path and every descendant's."""
        parent = self.parent
        self.path = _join(parent.path, self.name) if parent is not None else ""
        for param in self.parameters.values():
            param.path = _join(self.path, param.name)
        for group in self.groups.values():
            group._recompute_paths()

    def _invalidate_cache(self) -> None:
        node: Optional[ParameterGroup] = self
        while node is not None:
            node._cache_valid = False
            node = node.parent

    def _has_child(self, name: str) -> bool:
        return name in self.parameters or name in self.groups

    # ── Parameters ───────────────────────────────────────────────────

    def add_parameter(self, param: Parameter) -> bool:
        """Attach ``param``.

        False if a parameter or group already uses its name, or if
        ``param`` is already owned by a group.
        """
        if self._has_child(param.name):
            log.debug(f"Cannot add parameter '{param.name}' to '{self.path or self.name}': name in use")
            return False
        if param.owner is not None:
            log.debug(f"Cannot add parameter '{param.name}': already attached at '{param.path}'")
            return False
        self.parameters[param.name] = param
        param._owner_ref = weakref.ref(self)
        param.path = _join(self.path, param.name)

        def relay(value: Any, _param: Parameter = param) -> None:
            self._emit_value_changed(_param.path, value)

        self._relays[param.name] = relay
        param.subscribe(relay)
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def remove_parameter(self, name: str) -> bool:
        param = self.parameters.pop(name, None)
        if param is None:
            return False
        relay = self._relays.pop(name, None)
        if relay is not None:
            param.unsubscribe(relay)
        param._owner_ref = None
        param.path = param.name
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def rename_parameter(self, old_name: str, new_name: str) -> bool:
        if old_name not in self.parameters or not new_name:
            return False
        if new_name == old_name:
            return True
        if self._has_child(new_name):
            return False
        param = self.parameters[old_name]
        param.name = new_name
        # Rebuild to keep insertion order stable for serialization.
        self.parameters = {
            (new_name if key == old_name else key): value
            for key, value in self.parameters.items()
        }
        self._relays[new_name] = self._relays.pop(old_name)
        param.path = _join(self.path, new_name)
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def get_parameter(self, name: str) -> Optional[Parameter]:
        return self.parameters.get(name)

    # ── Groups ───────────────────────────────────────────────────────

    def add_group(self, group: "ParameterGroup") -> bool:
        """Attach ``group`` as a child.

        Refuses name conflicts, groups that already have a parent, and
        anything that would create a cycle.
        """
        if self._has_child(group.name):
            log.debug(f"Cannot add group '{group.name}' to '{self.path or self.name}': name in use")
            return False
        if group.parent is not None:
            log.debug(f"Cannot add group '{group.name}': already attached to '{group.parent.name}'")
            return False
        if group is self or group.is_ancestor_of(self):
            log.debug(f"Cannot add group '{group.name}': would create a cycle")
            return False
        self.groups[group.name] = group
        group._parent_ref = weakref.ref(self)
        group._recompute_paths()
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def remove_group(self, name: str) -> bool:
        group = self.groups.pop(name, None)
        if group is None:
            return False
        group._parent_ref = None
        group._recompute_paths()
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def get_group(self, name: str) -> Optional["ParameterGroup"]:
        return self.groups.get(name)

    def rename(self, new_name: str) -> bool:
        """Rename this group; False if a sibling already uses ``new_name``."""
        if not new_name:
            return False
        if new_name == self.name:
            return True
        parent = self.parent
        if parent is not None:
            if parent._has_child(new_name):
                return False
            parent.groups = {
                (new_name if key == self.name else key): value
                for key, value in parent.groups.items()
            }
        self.name = new_name
        self._recompute_paths()
        self._invalidate_cache()
        self._emit_structure_changed(self)
        return True

    def clear(self) -> None:
        """Remove every local parameter and sub-group."""
        for name in list(self.parameters):
            self.remove_parameter(name)
        for name in list(self.groups):
            self.remove_group(name)

    # ── Lookup ───────────────────────────────────────────────────────

    def _ensure_cache(self) -> None:
        if self._cache_valid:
            return
        cache: dict[str, Parameter] = dict(self.parameters)
        for name, group in self.groups.items():
            group._ensure_cache()
            for rel_path, param in group._cache.items():
                cache[f"{name}/{rel_path}"] = param
        self._cache = cache
        self._cache_valid = True

    def get_by_path(self, path: str) -> Optional[Parameter]:
        """Resolve a path relative to this group; None when absent."""
        key = "/".join(_split(path))
        if not key:
            return None
        self._ensure_cache()
        return self._cache.get(key)

    def resolve_path(self, path: str) -> Optional[Parameter]:
        """Walk the tree segment by segment, bypassing the cache.

        Used for diagnostics and to cross-check cached lookups.
        """
        segments = _split(path)
        if not segments:
            return None
        group = self.get_group_by_path("/".join(segments[:-1]))
        if group is None:
            return None
        return group.parameters.get(segments[-1])

    def get_group_by_path(self, path: str) -> Optional["ParameterGroup"]:
        group: Optional[ParameterGroup] = self
        for segment in _split(path):
            group = group.groups.get(segment)
            if group is None:
                return None
        return group

    def set_by_path(self, path: str, value: Any) -> bool:
        param = self.get_by_path(path)
        if param is None:
            return False
        return param.set_value(value)

    def get_all_parameter_paths(self) -> list[str]:
        self._ensure_cache()
        return sorted(self._cache)

    def iter_parameters(self) -> Iterator[Parameter]:
        self._ensure_cache()
        yield from list(self._cache.values())

    def count_parameters(self) -> int:
        self._ensure_cache()
        return len(self._cache)

    def count_groups(self) -> int:
        """Number of descendant groups (not counting this one)."""
        return sum(1 + group.count_groups() for group in self.groups.values())

    # ── Notifications ────────────────────────────────────────────────

    def add_structure_callback(self, callback: StructureCallback) -> None:
        """Subscribe to add/remove/rename events here or in any descendant.

        The callback receives the group that was mutated.
        """
        if callback not in self._structure_callbacks:
            self._structure_callbacks.append(callback)

    def remove_structure_callback(self, callback: StructureCallback) -> None:
        if callback in self._structure_callbacks:
            self._structure_callbacks.remove(callback)

    def add_value_callback(self, callback: ValueCallback) -> None:
        """Subscribe to value changes of any descendant parameter as ``(path, value)``."""
        if callback not in self._value_callbacks:
            self._value_callbacks.append(callback)

    def remove_value_callback(self, callback: ValueCallback) -> None:
        if callback in self._value_callbacks:
            self._value_callbacks.remove(callback)

    def _emit_structure_changed(self, origin: "ParameterGroup") -> None:
        node: Optional[ParameterGroup] = self
        while node is not None:
            for callback in list(node._structure_callbacks):
                try:
                    callback(origin)
                except Exception as e:
                    log.warning(f"Error in structure callback on '{node.name}': {e}", exc_info=True)
            node = node.parent

    def _emit_value_changed(self, path: str, value: Any) -> None:
        node: Optional[ParameterGroup] = self
        while node is not None:
            for callback in list(node._value_callbacks):
                try:
                    callback(path, value)
                except Exception as e:
                    log.warning(f"Error in value callback for '{path}': {e}", exc_info=True)
            node = node.parent

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        data["params"] = [p.to_dict() for p in self.parameters.values()]
        data["groups"] = [g.to_dict() for g in self.groups.values()]
        return data

    def load_dict(self, data: Any) -> bool:
        """Replace this group's contents with ``data``.

        Returns False (group untouched) when ``data`` has no ``name``.
        Child entries that fail to load are skipped with a warning; the
        rest of the subtree still loads.
        """
        name = _entry_name(data)
        if name is None:
            log.warning(f"Group entry without a name: {data!r}")
            return False
        self.clear()
        if name != self.name and not self.rename(name):
            log.warning(f"Cannot rename group '{self.name}' to '{name}': sibling name in use")
        self.description = str(data.get("description", ""))

        for entry in _entries(data, "params", name):
            param = Parameter.from_dict(entry)
            if param is None:
                continue
            if not self.add_parameter(param):
                log.warning(f"Duplicate name '{param.name}' in group '{self.name}' — skipped")
        for entry in _entries(data, "groups", name):
            group = ParameterGroup.from_dict(entry)
            if group is None:
                continue
            if not self.add_group(group):
                log.warning(f"Duplicate name '{group.name}' in group '{self.name}' — skipped")
        return True

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ParameterGroup"]:
        name = _entry_name(data)
        if name is None:
            log.warning(f"Skipping group entry without a name: {data!r}")
            return None
        group = cls(name)
        group.load_dict(data)
        return group

    def merge_dict(self, data: Any, create_missing: bool = False) -> int:
        """Overlay values from ``data`` onto this subtree.

        Existing parameters take only the entry's ``value``.  Entries with
        no local counterpart are created (fully, from the entry) only when
        ``create_missing`` is set; otherwise they are ignored and the tree
        keeps its shape.  Returns the number of parameter entries applied.
        """
        if not isinstance(data, dict):
            return 0
        where = self.path or self.name
        applied = 0
        for entry in _entries(data, "params", where):
            name = _entry_name(entry)
            if name is None:
                log.warning(f"Skipping parameter entry without a name in '{where}'")
                continue
            existing = self.parameters.get(name)
            if existing is not None:
                if "value" not in entry:
                    continue
                if existing.set_value(entry["value"]):
                    applied += 1
                else:
                    log.warning(f"Ignoring invalid value {entry['value']!r} for '{existing.path}'")
            elif create_missing:
                param = Parameter.from_dict(entry)
                if param is not None and self.add_parameter(param):
                    applied += 1
            else:
                log.debug(f"Ignoring unknown parameter '{_join(self.path, name)}'")

        for entry in _entries(data, "groups", where):
            name = _entry_name(entry)
            if name is None:
                log.warning(f"Skipping group entry without a name in '{where}'")
                continue
            sub = self.groups.get(name)
            if sub is not None:
                applied += sub.merge_dict(entry, create_missing)
            elif create_missing:
                group = ParameterGroup.from_dict(entry)
                if group is not None and self.add_group(group):
                    applied += group.count_parameters()
            else:
                log.debug(f"Ignoring unknown group '{_join(self.path, name)}'")
        return applied

    def __repr__(self) -> str:
        return (
            f"ParameterGroup({self.name!r}, path={self.path!r}, "
            f"params={len(self.parameters)}, groups={len(self.groups)})"
        )
