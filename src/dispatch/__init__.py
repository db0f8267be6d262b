from .errors import ConfigurationError
from .registry import FunctionRegistry, RegisteredFunction, call_with_kwargs, default_registry
from .resolver import Directive, resolve_kwargs, resolve_value, to_matrix, to_vector

__all__ = [
    "ConfigurationError",
    "Directive",
    "FunctionRegistry",
    "RegisteredFunction",
    "call_with_kwargs",
    "default_registry",
    "resolve_kwargs",
    "resolve_value",
    "to_matrix",
    "to_vector",
]
