"""paramtree — hierarchical runtime parameters with presets and a thread-safe update queue."""

from .group import ParameterGroup
from .manager import SettingsManager
from .migrations import CURRENT_SCHEMA_VERSION
from .parameter import Color, Parameter, ParamType
from .preset import LocalFileSystem, MemoryFileSystem, PresetStore
from .update_queue import QueuedUpdate, UpdateQueue

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "Color",
    "LocalFileSystem",
    "MemoryFileSystem",
    "ParamType",
    "Parameter",
    "ParameterGroup",
    "PresetStore",
    "QueuedUpdate",
    "SettingsManager",
    "UpdateQueue",
]
