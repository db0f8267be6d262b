from .base import (
    Atom,
    BandsResult,
    Basis,
    Deadline,
    DosResult,
    ExplicitKpoints,
    ForcesResult,
    Model,
    PeriodicSystem,
    SCFResult,
)

__all__ = [
    "Atom",
    "BandsResult",
    "Basis",
    "Deadline",
    "DosResult",
    "ExplicitKpoints",
    "ForcesResult",
    "Model",
    "PeriodicSystem",
    "SCFResult",
]
