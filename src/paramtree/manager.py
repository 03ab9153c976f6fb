"""SettingsManager: the host-facing entry point.

Owns the root ``ParameterGroup``, runs the preset pipeline at startup and
exposes path-based get/set/bind plus the external update queue.

Lifecycle (explicit, driven by the host):

    manager = SettingsManager.from_config(ParamTreeConfig.load())
    manager.load()            # default preset, then user overlay
    ...
    manager.tick()            # once per frame / loop iteration
    ...
    manager.shutdown()        # apply pending updates, autosave

Threading: only the thread that calls ``tick`` (and makes direct calls
such as ``set_param``) may touch the tree.  Every other thread must go
through ``enqueue``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from .group import ParameterGroup
from .logging import log_context
from .migrations import migrate
from .parameter import Parameter
from .preset import PresetStore
from .update_queue import UpdateQueue

if TYPE_CHECKING:
    from .config import ParamTreeConfig

log = logging.getLogger("paramtree.manager")

ChangeCallback = Callable[[str, Any], None]


@dataclass
class _Binding:
    path: str
    callback: Callable[[Any], None]
    param: Optional[Parameter] = None


class SettingsManager:
    """Parameter tree + presets + update queue, wired together."""

    def __init__(
        self,
        store: PresetStore,
        queue: Optional[UpdateQueue] = None,
        *,
        root_name: str = "root",
        autosave_on_shutdown: bool = True,
        autosave_on_reset: bool = False,
    ):
        self.store = store
        self.queue = queue if queue is not None else UpdateQueue()
        self.root = ParameterGroup(root_name)
        self.autosave_on_shutdown = autosave_on_shutdown
        self.autosave_on_reset = autosave_on_reset
        self.loaded = False

        self._bindings: list[_Binding] = []
        self._change_callbacks: list[ChangeCallback] = []
        self._reset_callbacks: list[Callable[[], None]] = []
        self._preset_loaded_callbacks: list[Callable[[str], None]] = []

        self._applied = 0
        self._dropped = 0
        self._rejected = 0

        self.root.add_value_callback(self._on_value_changed)

    @classmethod
    def from_config(
        cls,
        config: "ParamTreeConfig",
        fs: Optional[Any] = None,
        clock: Optional[Callable[[], Any]] = None,
    ) -> "SettingsManager":
        store = PresetStore(
            config.default_preset_path,
            config.user_preset_path,
            presets_dir=config.presets_dir,
            fs=fs,
            clock=clock,
        )
        return cls(
            store,
            autosave_on_shutdown=config.autosave_on_shutdown,
            autosave_on_reset=config.autosave_on_reset,
        )

    # ── Startup pipeline ─────────────────────────────────────────────

    def _rebuild_from(self, doc: Optional[dict[str, Any]]) -> None:
        if doc is None:
            self.root.clear()
        else:
            self.store.populate(self.root, doc)

    def load(self) -> bool:
        """Load the default preset, then overlay the user preset's values.

        Returns False when the default preset was missing or unusable; the
        tree is then empty.
        Never raises for preset problems; see ``store.warnings``.
        """
        start = time.monotonic()
        default_doc = self.store.load_default()
        self._rebuild_from(default_doc)

        applied = 0
        user_doc = self.store.load_user()
        if user_doc is not None:
            applied = self.store.overlay(self.root, user_doc, create_missing=False)

        self._restore_bindings()
        self.loaded = True
        log.info(
            f"Loaded {self.root.count_parameters()} parameter(s), "
            f"{applied} user value(s) applied",
            extra={"context": log_context(
                duration_ms=(time.monotonic() - start) * 1000,
                default=self.store.default_path,
                user=self.store.user_path,
                warnings=len(self.store.warnings),
            )},
        )
        return default_doc is not None

    # ── Path access ──────────────────────────────────────────────────

    def get_param(self, path: str) -> Optional[Parameter]:
        return self.root.get_by_path(path)

    def get_value(self, path: str, default: Any = None) -> Any:
        param = self.root.get_by_path(path)
        return param.value if param is not None else default

    def set_param(self, path: str, value: Any) -> bool:
        """Set a parameter directly.  Must be called from the tick thread."""
        param = self.root.get_by_path(path)
        if param is None:
            log.debug(f"set_param: unknown path '{path}'")
            return False
        return param.set_value(value)

    def get_all_parameter_paths(self) -> list[str]:
        return self.root.get_all_parameter_paths()

    def get_exposed_parameter_paths(self) -> list[str]:
        return sorted(p.path for p in self.root.iter_parameters() if p.exposed)

    def add_group(self, group: ParameterGroup, parent_path: str = "") -> bool:
        """Attach a host-built group under ``parent_path`` (root by default)."""
        parent = self.root.get_group_by_path(parent_path)
        if parent is None:
            return False
        if not parent.add_group(group):
            return False
        self._restore_bindings()
        return True

    # ── Binding ──────────────────────────────────────────────────────

    def bind(self, path: str, on_change: Callable[[Any], None]) -> bool:
        """Subscribe ``on_change`` to a parameter and call it once right away.

        Bindings survive ``reset``/preset loads: when the tree is rebuilt
        they are re-attached to the parameter now at ``path`` and called
        with its value.
        """
        param = self.root.get_by_path(path)
        if param is None:
            log.debug(f"bind: unknown path '{path}'")
            return False
        # Parameters hold each callback once, so an identical binding is kept once too.
        if not any(b.path == path and b.callback == on_change for b in self._bindings):
            param.subscribe(on_change)
            self._bindings.append(_Binding(path=path, callback=on_change, param=param))
        on_change(param.value)
        return True

    def unbind(self, path: str, on_change: Callable[[Any], None]) -> bool:
        for binding in self._bindings:
            if binding.path == path and binding.callback == on_change:
                if binding.param is not None:
                    binding.param.unsubscribe(on_change)
                self._bindings.remove(binding)
                return True
        return False

    def _restore_bindings(self) -> None:
        for binding in self._bindings:
            param = self.root.get_by_path(binding.path)
            if param is binding.param:
                continue
            if binding.param is not None:
                binding.param.unsubscribe(binding.callback)
            binding.param = param
            if param is not None:
                param.subscribe(binding.callback)
                try:
                    binding.callback(param.value)
                except Exception as e:
                    log.warning(f"Error in binding for '{binding.path}': {e}", exc_info=True)

    # ── External updates ─────────────────────────────────────────────

    def enqueue(self, path: str, value: Any, source: str = "") -> None:
        """Queue a write from any thread; applied on the next ``tick``."""
        self.queue.enqueue(path, value, source)

    def tick(self) -> int:
        """Drain the queue and apply every update in FIFO order.

        Unknown paths and rejected values are logged and counted; they
        never stop the rest of the batch.  Returns how many were applied.
        """
        applied = 0
        for update in self.queue.drain_all():
            param = self.root.get_by_path(update.path)
            if param is None:
                self._dropped += 1
                log.debug(
                    f"Dropped update for unknown path '{update.path}'",
                    extra={"context": log_context(path=update.path, source=update.source)},
                )
                continue
            if param.set_value(update.value):
                applied += 1
            else:
                self._rejected += 1
                log.warning(
                    f"Rejected update {update.value!r} for '{update.path}'",
                    extra={"context": log_context(
                        path=update.path,
                        source=update.source,
                        errors=param.get_validation_errors(update.value),
                    )},
                )
        self._applied += applied
        return applied

    def run(self, stop: threading.Event, interval: float = 1 / 60) -> None:
        """Tick until ``stop`` is set, for hosts without their own main loop."""
        while not stop.is_set():
            self.tick()
            stop.wait(interval)
        self.tick()

    # ── Persistence ──────────────────────────────────────────────────

    def save(self) -> bool:
        return self.store.save_user(self.root)

    def reset(self) -> None:
        """Discard the user preset and rebuild from the default preset only."""
        self.store.delete_user()
        self._rebuild_from(self.store.load_default())
        self._restore_bindings()
        if self.autosave_on_reset:
            self.save()
        log.info("Preset reset to defaults")
        self._fire(self._reset_callbacks)

    def export_preset_data(self) -> dict[str, Any]:
        return self.store.build_document(self.root)

    def apply_preset_data(self, doc: Any) -> int:
        """Create-or-update: apply values and add any missing groups/parameters.

        Unlike the startup user overlay, this may change the tree's shape.
        Returns the number of parameter entries applied.
        """
        if not isinstance(doc, dict):
            log.warning(f"apply_preset_data: expected a mapping, got {type(doc).__name__}")
            return 0
        doc, warnings = migrate(doc)
        for message in warnings:
            log.warning(f"apply_preset_data: {message}")
        applied = self.store.overlay(self.root, doc, create_missing=True)
        self._restore_bindings()
        return applied

    def save_preset(self, name: str) -> bool:
        return self.store.save_named(name, self.root)

    def load_preset(self, name: str) -> bool:
        doc = self.store.read_named(name)
        if doc is None:
            return False
        self.apply_preset_data(doc)
        log.info(f"Loaded preset '{name}'")
        self._fire(self._preset_loaded_callbacks, name)
        return True

    def list_presets(self) -> list[str]:
        return self.store.list_named()

    def delete_preset(self, name: str) -> bool:
        return self.store.delete_named(name)

    def shutdown(self) -> bool:
        """Apply whatever is still queued and autosave if enabled."""
        self.tick()
        if self.autosave_on_shutdown:
            return self.save()
        return True

    # ── Observers ────────────────────────────────────────────────────

    def add_change_callback(self, callback: ChangeCallback) -> None:
        """Subscribe to every parameter change as ``(path, value)``."""
        if callback not in self._change_callbacks:
            self._change_callbacks.append(callback)

    def remove_change_callback(self, callback: ChangeCallback) -> None:
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def add_reset_callback(self, callback: Callable[[], None]) -> None:
        if callback not in self._reset_callbacks:
            self._reset_callbacks.append(callback)

    def remove_reset_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._reset_callbacks:
            self._reset_callbacks.remove(callback)

    def add_preset_loaded_callback(self, callback: Callable[[str], None]) -> None:
        if callback not in self._preset_loaded_callbacks:
            self._preset_loaded_callbacks.append(callback)

    def _on_value_changed(self, path: str, value: Any) -> None:
        self._fire(self._change_callbacks, path, value)

    @staticmethod
    def _fire(callbacks: list, *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception as e:
                log.warning(f"Error in {getattr(callback, '__name__', 'callback')}: {e}", exc_info=True)

    # ── Introspection ────────────────────────────────────────────────

    def get_stats(self) -> dict[str, int]:
        params = list(self.root.iter_parameters())
        return {
            "parameters": len(params),
            "groups": self.root.count_groups(),
            "exposed": sum(1 for p in params if p.exposed),
            "queue_depth": self.queue.depth,
            "applied": self._applied,
            "dropped": self._dropped,
            "rejected": self._rejected,
        }
