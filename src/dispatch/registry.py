from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .errors import ConfigurationError
from .resolver import Directive, resolve_kwargs

logger = logging.getLogger(__name__)


def call_with_kwargs(
    func: Callable[..., Any],
    *args: Any,
    kwargs: Mapping[str, Any],
    section: str,
) -> Any:
    """Call ``func(*args, **kwargs)`` after checking ``kwargs`` against its signature.

    Unknown or missing arguments become a :class:`ConfigurationError` that names
    the offending key under ``section``; errors raised by ``func`` itself pass
    through untouched.
    """
    signature = inspect.signature(func)
    parameters = signature.parameters
    accepts_any = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in parameters.values())
    if not accepts_any:
        for key in kwargs:
            param = parameters.get(key)
            if param is None or param.kind is inspect.Parameter.POSITIONAL_ONLY:
                raise ConfigurationError(
                    f"Config '{section}.{key}' is not a recognised argument of "
                    f"{getattr(func, '__name__', func)!s}.",
                    key=f"{section}.{key}",
                )
    try:
        signature.bind(*args, **kwargs)
    except TypeError as exc:
        missing = [
            name
            for name, param in parameters.items()
            if param.default is inspect.Parameter.empty
            and param.kind is inspect.Parameter.KEYWORD_ONLY
            and name not in kwargs
        ]
        key = f"{section}.{missing[0]}" if missing else section
        raise ConfigurationError(f"Config '{key}' is invalid: {exc}.", key=key) from exc
    return func(*args, **kwargs)


@dataclass(frozen=True)
class RegisteredFunction:
    name: str
    func: Callable[..., Any]
    requires_kpath: bool = False


class FunctionRegistry:
    """Closed table of routines that ``$function`` directives may name."""

    def __init__(self) -> None:
        self._functions: dict[str, RegisteredFunction] = {}

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        requires_kpath: bool = False,
    ) -> None:
        key = str(name).strip()
        if not key:
            raise ValueError("Function name must be non-empty.")
        self._functions[key] = RegisteredFunction(key, func, requires_kpath)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def names(self) -> list[str]:
        return sorted(self._functions)

    def get(self, name: str, section: str = "$function") -> RegisteredFunction:
        if name not in self._functions:
            available = ", ".join(self.names()) or "none"
            raise ConfigurationError(
                f"Config '{section}': unknown function '{name}' (available: {available}).",
                key=section,
            )
        return self._functions[name]

    def validate(self, names: Iterable[tuple[str, str]]) -> None:
        """Check ``(name, section)`` pairs up front so nothing runs on a bad input."""
        for name, section in names:
            self.get(name, section)

    def call(
        self,
        directive: Directive,
        *args: Any,
        interpolations: Mapping[str, Any] | None = None,
    ) -> Any:
        entry = self.get(directive.function, f"{directive.section}.$function")
        kwargs_section = f"{directive.section}.$kwargs"
        kwargs = resolve_kwargs(directive.kwargs, interpolations, section=kwargs_section)
        if entry.requires_kpath:
            from engines.base import ExplicitKpoints

            kpath = kwargs.pop("kpath", None)
            if kpath is None:
                raise ConfigurationError(
                    f"kpath is not provided for {entry.name}",
                    key=f"{kwargs_section}.kpath",
                )
            args = (*args, ExplicitKpoints.from_coordinates(kpath, f"{kwargs_section}.kpath"))
        logger.info("Calling %s.", entry.name)
        return call_with_kwargs(entry.func, *args, kwargs=kwargs, section=kwargs_section)


def default_registry() -> FunctionRegistry:
    """Registry of the PySCF analysis routines available to ``postscf``."""
    from engines import pyscf_pbc

    registry = FunctionRegistry()
    registry.register("compute_bands", pyscf_pbc.compute_bands, requires_kpath=True)
    registry.register("compute_forces_cart", pyscf_pbc.compute_forces_cart)
    registry.register("compute_dos", pyscf_pbc.compute_dos)
    return registry


__all__ = [
    "FunctionRegistry",
    "RegisteredFunction",
    "call_with_kwargs",
    "default_registry",
]
