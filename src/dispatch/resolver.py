"""Turn JSON objects into keyword arguments for library calls.

The input document only holds JSON values. Two conventions let it express
more than that:

* interpolation: a string equal to a name in the interpolation table is
  replaced by the live object registered under that name (e.g. ``"basis"``);
* directives: an object with ``$function`` (and optionally ``$kwargs``)
  names a routine to call. Directives are parsed into :class:`Directive`
  and dispatched by :mod:`dispatch.registry`, never passed on as plain
  arguments.
"""

from __future__ import annotations

import keyword
import numbers
from dataclasses import dataclass, field
from typing import Any, Mapping

import numpy as np

from .errors import ConfigurationError

FUNCTION_KEY = "$function"
KWARGS_KEY = "$kwargs"
RESERVED_KEYS = (FUNCTION_KEY, KWARGS_KEY)


@dataclass(frozen=True)
class Directive:
    """A ``{"$function": ..., "$kwargs": {...}}`` call request."""

    function: str
    kwargs: Mapping[str, Any] = field(default_factory=dict)
    section: str = "directive"


def _join(section: str, key: str) -> str:
    return f"{section}.{key}" if section else key


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _check_identifier(key: Any, section: str) -> str:
    if not isinstance(key, str) or not key.isidentifier() or keyword.iskeyword(key):
        raise ConfigurationError(
            f"Config '{_join(section, str(key))}' is not a valid argument name.",
            key=_join(section, str(key)),
        )
    return key


def _numeric_array(items: list[Any]) -> np.ndarray:
    if all(isinstance(item, numbers.Integral) for item in items):
        return np.asarray(items, dtype=int)
    return np.asarray(items, dtype=float)


def _resolve_list(items: list[Any], interpolations: Mapping[str, Any], section: str) -> Any:
    if items and all(_is_number(item) for item in items):
        return _numeric_array(items)
    if items and all(
        isinstance(row, list) and row and all(_is_number(x) for x in row) for row in items
    ):
        if len({len(row) for row in items}) == 1:
            return np.asarray([_numeric_array(row) for row in items])
    return [
        resolve_value(item, interpolations, section=f"{section}[{index}]")
        for index, item in enumerate(items)
    ]


def resolve_value(value: Any, interpolations: Mapping[str, Any] | None = None, *, section: str = ""):
    """Resolve a single JSON value; see module docstring for the rules."""
    interpolations = interpolations or {}
    if isinstance(value, str):
        if value in interpolations:
            return interpolations[value]
        return value
    if isinstance(value, Mapping):
        for reserved in RESERVED_KEYS:
            if reserved in value:
                raise ConfigurationError(
                    f"Config '{_join(section, reserved)}' is not allowed here: "
                    "nested directives are not supported inside keyword arguments.",
                    key=_join(section, reserved),
                )
        return {
            str(k): resolve_value(v, interpolations, section=_join(section, str(k)))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return _resolve_list(list(value), interpolations, section)
    if value is None or isinstance(value, (bool, numbers.Real)):
        return value
    raise ConfigurationError(
        f"Config '{section}' has unsupported value type {type(value).__name__}.",
        key=section or None,
    )


def resolve_kwargs(
    data: Mapping[str, Any] | None,
    interpolations: Mapping[str, Any] | None = None,
    *,
    section: str = "kwargs",
) -> dict[str, Any]:
    """Resolve a JSON object into a ``name -> value`` mapping for ``**kwargs``.

    Values matching a key of ``interpolations`` are substituted by the table
    entry itself (same object, no copy).
    """
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config '{section}' must be an object.", key=section)
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if key in RESERVED_KEYS:
            raise ConfigurationError(
                f"Config '{_join(section, key)}' is reserved for directives and "
                "cannot be used as an argument name.",
                key=_join(section, key),
            )
        name = _check_identifier(key, section)
        resolved[name] = resolve_value(value, interpolations, section=_join(section, name))
    return resolved


def to_vector(value: Any, key: str, length: int = 3) -> np.ndarray:
    try:
        vector = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Config '{key}' must be a list of numbers.", key=key) from exc
    if vector.shape != (length,):
        raise ConfigurationError(
            f"Config '{key}' must have exactly {length} components (got shape {vector.shape}).",
            key=key,
        )
    return vector


def to_matrix(value: Any, key: str, shape: tuple[int, int] = (3, 3)) -> np.ndarray:
    try:
        matrix = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Config '{key}' must be a list of numeric vectors.", key=key
        ) from exc
    if matrix.shape != shape:
        raise ConfigurationError(
            f"Config '{key}' must have shape {shape} (got {matrix.shape}).", key=key
        )
    return matrix


__all__ = [
    "Directive",
    "FUNCTION_KEY",
    "KWARGS_KEY",
    "resolve_kwargs",
    "resolve_value",
    "to_matrix",
    "to_vector",
]
