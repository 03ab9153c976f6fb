"""Typed, constrained, observable parameter values.

A ``Parameter`` is the leaf of the settings tree.  It owns its value, the
constraints that value must satisfy (range, step, enum membership) and an
ordered list of subscriber callbacks that fire synchronously whenever the
stored value actually changes.

A parameter belongs to at most one ``ParameterGroup``.  The owning group
assigns ``path`` when the parameter is attached or moved and holds the
only strong reference; the parameter keeps a weak ``owner`` back-link.
"""

from __future__ import annotations

import copy
import logging
import math
import weakref
from typing import Any, Callable, NamedTuple, Optional

log = logging.getLogger("paramtree.parameter")


# ── Types ────────────────────────────────────────────────────────────

class ParamType:
    """Recognised parameter type names (as they appear in presets)."""

    FLOAT = "float"
    INT = "int"
    BOOL = "bool"
    STRING = "string"
    COLOR = "color"
    ENUM = "enum"

    ALL = (FLOAT, INT, BOOL, STRING, COLOR, ENUM)
    NUMERIC = (FLOAT, INT)


class Color(NamedTuple):
    """RGBA color with float channels (nominally 0.0–1.0)."""

    r: float
    g: float
    b: float
    a: float = 1.0

    @classmethod
    def coerce(cls, value: Any) -> Optional["Color"]:
        """Convert a Color, 3/4-item sequence or hex string; None if not possible."""
        if isinstance(value, Color):
            return value
        if isinstance(value, str):
            return cls._from_hex(value)
        if isinstance(value, (list, tuple)) and len(value) in (3, 4):
            if not all(_is_real(c) for c in value):
                return None
            return cls(*(float(c) for c in value))
        return None

    @classmethod
    def _from_hex(cls, text: str) -> Optional["Color"]:
        digits = text.strip().lstrip("#")
        if len(digits) not in (6, 8):
            return None
        try:
            channels = [int(digits[i:i + 2], 16) / 255.0 for i in range(0, len(digits), 2)]
        except ValueError:
            return None
        return cls(*channels)

    def to_hex(self) -> str:
        return "#" + "".join(
            f"{max(0, min(255, round(c * 255))):02x}" for c in self
        )


WHITE = Color(1.0, 1.0, 1.0, 1.0)

# type -> (default value, min, max, step)
TYPE_DEFAULTS: dict[str, tuple[Any, Any, Any, float]] = {
    ParamType.FLOAT: (0.5, 0.0, 1.0, 0.01),
    ParamType.INT: (50, 0, 100, 1),
    ParamType.BOOL: (False, None, None, 0),
    ParamType.STRING: ("", None, None, 0),
    ParamType.COLOR: (WHITE, None, None, 0),
    ParamType.ENUM: (None, None, None, 0),
}

# Rounding applied after step quantization to strip float noise
# (0.1 * 3 == 0.30000000000000004).
_QUANTIZE_DIGITS = 10


def _is_real(value: Any) -> bool:
    """True for finite ints/floats; bools are deliberately excluded."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


# Default for validation helpers meaning "check the stored value".
_CURRENT = object()


ChangeCallback = Callable[[Any], None]


class Parameter:
    """A single named, typed value with constraints and change notification.

    ``type`` is fixed at construction.  Keyword arguments override the type
    defaults; ``value`` falls back to ``default_value`` when not given.

        >>> p = Parameter("brightness", "float", max_value=2.0, step=0.1,
        ...               default_value=0.8)
        >>> p.set_value(2.5)
        True
        >>> p.value
        2.0
    """

    def __init__(
        self,
        name: str,
        param_type: str,
        *,
        value: Any = None,
        default_value: Any = None,
        min_value: Any = None,
        max_value: Any = None,
        step: Optional[float] = None,
        enum_values: Optional[list[str]] = None,
        exposed: bool = True,
        description: str = "",
    ):
        if not name:
            raise ValueError("Parameter name must be a non-empty string")
        self.name = name
        self._type = param_type
        self.path = name
        self.exposed = exposed
        self.description = description
        self._subscribers: list[ChangeCallback] = []
        self._owner_ref: Optional[weakref.ref] = None

        if param_type not in ParamType.ALL:
            log.warning(f"Unknown parameter type '{param_type}' for '{name}' — treating as untyped")

        self._apply_type_defaults()
        if enum_values is not None:
            self.enum_values = [str(v) for v in enum_values]
            if self._type == ParamType.ENUM and self.enum_values:
                self.default_value = self.enum_values[0]
                self.value = self.default_value
        if min_value is not None:
            self.min_value = min_value
        if max_value is not None:
            self.max_value = max_value
        if step is not None:
            self.step = max(0.0, step)
        if default_value is not None:
            self.default_value = self._initial(default_value, self.default_value)
            self.value = self.default_value
        if value is not None:
            self.value = self._initial(value, self.default_value)

    # ── Construction helpers ─────────────────────────────────────────

    def _apply_type_defaults(self) -> None:
        default, lo, hi, step = TYPE_DEFAULTS.get(self._type, (None, None, None, 0))
        self.default_value = default
        self.value = default
        self.min_value = lo
        self.max_value = hi
        self.step = step
        self.enum_values: list[str] = []

    def _initial(self, candidate: Any, fallback: Any) -> Any:
        """Coerce and constrain a construction-time value without notifying."""
        coerced = self._coerce(candidate)
        if coerced is _REJECTED:
            log.warning(f"Invalid initial value {candidate!r} for '{self.name}' ({self._type}) — using {fallback!r}")
            return fallback
        constrained = self._constrain(coerced)
        if constrained is _REJECTED:
            log.warning(f"Initial value {candidate!r} for '{self.name}' violates constraints — using {fallback!r}")
            return fallback
        return constrained

    # ── Properties ───────────────────────────────────────────────────

    @property
    def type(self) -> str:
        return self._type

    @property
    def owner(self) -> Optional[Any]:
        """The ``ParameterGroup`` this parameter is attached to, if any."""
        return self._owner_ref() if self._owner_ref is not None else None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ── Value access ─────────────────────────────────────────────────

    def get_value(self) -> Any:
        return self.value

    def set_value(self, candidate: Any) -> bool:
        """Validate, clamp and store ``candidate``.

        Returns False (state unchanged) when the value has the wrong type
        or is not a member of a non-empty enum.  Returns True otherwise;
        subscribers are notified only when the stored value changed.
        """
        coerced = self._coerce(candidate)
        if coerced is _REJECTED:
            log.debug(f"Rejected {candidate!r} for '{self.path}': expected {self._type}")
            return False
        constrained = self._constrain(coerced)
        if constrained is _REJECTED:
            log.debug(f"Rejected {candidate!r} for '{self.path}': not in {self.enum_values}")
            return False
        if _same(constrained, self.value):
            return True
        self.value = constrained
        self._notify(constrained)
        return True

    def reset_to_default(self) -> bool:
        return self.set_value(self.default_value)

    # ── Validation ───────────────────────────────────────────────────

    def _coerce(self, candidate: Any) -> Any:
        """Type check; returns the normalised value or ``_REJECTED``."""
        t = self._type
        if t == ParamType.FLOAT:
            return float(candidate) if _is_real(candidate) else _REJECTED
        if t == ParamType.INT:
            return candidate if _is_real(candidate) else _REJECTED
        if t == ParamType.BOOL:
            return candidate if isinstance(candidate, bool) else _REJECTED
        if t in (ParamType.STRING, ParamType.ENUM):
            return candidate if isinstance(candidate, str) else _REJECTED
        if t == ParamType.COLOR:
            color = Color.coerce(candidate)
            return color if color is not None else _REJECTED
        return candidate

    def _constrain(self, value: Any) -> Any:
        """Clamp then quantize numeric values; membership check for enums."""
        if self._type in ParamType.NUMERIC:
            v = self._clamp(value)
            if self.step and self.step > 0:
                v = round(round(v / self.step) * self.step, _QUANTIZE_DIGITS)
                # Quantization may land just outside a bound that is not a
                # multiple of step.
                v = self._clamp(v)
            if self._type == ParamType.INT:
                return int(round(v))
            return float(v)
        if self._type == ParamType.ENUM and self.enum_values:
            return value if value in self.enum_values else _REJECTED
        return value

    def _clamp(self, v: float) -> float:
        if self.min_value is not None and v < self.min_value:
            v = self.min_value
        if self.max_value is not None and v > self.max_value:
            v = self.max_value
        return v

    def get_validation_errors(self, candidate: Any = _CURRENT) -> list[str]:
        """Describe every constraint ``candidate`` violates (default: current value).

        Does not mutate.  An empty list means the candidate would be
        stored as-is.
        """
        if candidate is _CURRENT:
            candidate = self.value
        errors: list[str] = []
        coerced = self._coerce(candidate)
        if coerced is _REJECTED:
            errors.append(f"{self.name}: expected {self._type}, got {type(candidate).__name__}")
            return errors
        if self._type in ParamType.NUMERIC:
            if self.min_value is not None and coerced < self.min_value:
                errors.append(f"{self.name}: {coerced} is below minimum {self.min_value}")
            if self.max_value is not None and coerced > self.max_value:
                errors.append(f"{self.name}: {coerced} is above maximum {self.max_value}")
        if self._type == ParamType.ENUM and self.enum_values and coerced not in self.enum_values:
            errors.append(f"{self.name}: '{coerced}' is not one of {self.enum_values}")
        return errors

    def is_valid(self, candidate: Any = _CURRENT) -> bool:
        return not self.get_validation_errors(candidate)

    # ── Observers ────────────────────────────────────────────────────

    def subscribe(self, callback: ChangeCallback) -> None:
        """Register ``callback(value)``; called in subscription order."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> bool:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            return True
        return False

    def _notify(self, value: Any) -> None:
        # Iterate over a snapshot so callbacks may (un)subscribe.
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                log.warning(f"Error in change callback for '{self.path}': {e}", exc_info=True)

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Compact preset entry; optional fields only when non-default."""
        default, lo, hi, step = TYPE_DEFAULTS.get(self._type, (None, None, None, 0))
        data: dict[str, Any] = {
            "name": self.name,
            "type": self._type,
            "value": _encode(self.value),
        }
        if self.default_value != default:
            data["default_value"] = _encode(self.default_value)
        if self.min_value != lo:
            data["min"] = self.min_value
        if self.max_value != hi:
            data["max"] = self.max_value
        if self.step != step:
            data["step"] = self.step
        if self.enum_values:
            data["enum_values"] = list(self.enum_values)
        if self.description:
            data["description"] = self.description
        if not self.exposed:
            data["exposed"] = False
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Parameter"]:
        """Build a parameter from a preset entry; None if ``name``/``type`` are missing."""
        if not isinstance(data, dict):
            return None
        name = data.get("name")
        param_type = data.get("type")
        if not name or not isinstance(name, str) or not param_type:
            log.warning(f"Skipping parameter entry without name/type: {data!r}")
            return None

        param = cls(name, str(param_type))
        if "enum_values" in data and isinstance(data["enum_values"], list):
            param.enum_values = [str(v) for v in data["enum_values"]]
            if param.type == ParamType.ENUM and param.enum_values:
                param.default_value = param.value = param.enum_values[0]
        # An explicit null bound means unbounded.
        for key, attr in (("min", "min_value"), ("max", "max_value")):
            if key in data and (data[key] is None or _is_real(data[key])):
                setattr(param, attr, data[key])
        if _is_real(data.get("step")):
            param.step = max(0.0, data["step"])
        if "description" in data:
            param.description = str(data["description"])
        if "exposed" in data:
            param.exposed = bool(data["exposed"])
        if "default_value" in data:
            param.default_value = param._initial(data["default_value"], param.default_value)
        param.value = param.default_value
        if "value" in data:
            param.value = param._initial(data["value"], param.default_value)
        return param

    def copy(self) -> "Parameter":
        """Detached copy with the same definition and value, no subscribers."""
        clone = copy.copy(self)
        clone._subscribers = []
        clone._owner_ref = None
        clone.enum_values = list(self.enum_values)
        clone.path = self.name
        return clone

    def __repr__(self) -> str:
        return f"Parameter({self.path!r}, {self._type!r}, value={self.value!r})"


class _Rejected:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<rejected>"


_REJECTED = _Rejected()


def _same(a: Any, b: Any) -> bool:
    """Equality that also requires matching types (so True != 1)."""
    return type(a) is type(b) and a == b


def _encode(value: Any) -> Any:
    if isinstance(value, Color):
        return list(value)
    return value
