from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np

from dispatch.errors import ConfigurationError

SMEARING_METHODS = ("fermi", "gaussian")
SPIN_POLARIZATIONS = ("none", "collinear")


def coerce_number(value: Any, convert, key: str, expected: str):
    """Convert ``value`` with ``convert``; bad input names ``key`` in the error."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Config '{key}' must be {expected}.", key=key)
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Config '{key}' must be {expected} (got {value!r}).", key=key) from exc


@dataclass(frozen=True, eq=False)
class Atom:
    """One atom of the periodic system; ``position`` is cartesian, in bohr."""

    symbol: str
    position: np.ndarray
    pseudopotential: str
    pseudopotential_kwargs: Mapping[str, Any] = field(default_factory=dict)
    magnetic_moment: float = 0.0


@dataclass(frozen=True, eq=False)
class PeriodicSystem:
    """Atoms in a cell; rows of ``bounding_box`` are lattice vectors in bohr."""

    atoms: tuple[Atom, ...]
    bounding_box: np.ndarray
    unit: str = "Bohr"

    @property
    def symbols(self) -> list[str]:
        return [atom.symbol for atom in self.atoms]

    @property
    def positions(self) -> np.ndarray:
        return np.array([atom.position for atom in self.atoms], dtype=float).reshape(-1, 3)

    @property
    def magnetic_moments(self) -> np.ndarray:
        return np.array([atom.magnetic_moment for atom in self.atoms], dtype=float)

    def to_ase_atoms(self):
        from ase import Atoms
        from ase import units

        atoms = Atoms(
            symbols=self.symbols,
            positions=self.positions * units.Bohr,
            cell=self.bounding_box * units.Bohr,
            pbc=True,
        )
        atoms.set_initial_magnetic_moments(self.magnetic_moments)
        return atoms


@dataclass(frozen=True, eq=False)
class Model:
    """Kohn-Sham model: system, functional, smearing and spin treatment."""

    system: PeriodicSystem
    xc: str
    temperature: float = 0.0
    smearing: str | None = None
    spin_polarization: str | None = None
    charge: int = 0

    def __post_init__(self):
        if not isinstance(self.xc, str) or not self.xc.strip():
            raise ConfigurationError("Config 'model_kwargs.xc' must be a non-empty string.", key="model_kwargs.xc")
        temperature = coerce_number(self.temperature, float, "model_kwargs.temperature", "a number")
        object.__setattr__(self, "temperature", temperature)
        object.__setattr__(self, "charge", coerce_number(self.charge, int, "model_kwargs.charge", "an integer"))
        if self.temperature < 0:
            raise ConfigurationError(
                "Config 'model_kwargs.temperature' must be non-negative.",
                key="model_kwargs.temperature",
            )
        smearing = self.smearing
        if smearing is None and self.temperature > 0:
            smearing = "fermi"
        if smearing is not None and smearing not in SMEARING_METHODS:
            raise ConfigurationError(
                f"Config 'model_kwargs.smearing' must be one of {', '.join(SMEARING_METHODS)}.",
                key="model_kwargs.smearing",
            )
        object.__setattr__(self, "smearing", smearing)
        spin = self.spin_polarization
        if spin is None:
            spin = "collinear" if np.any(self.system.magnetic_moments != 0) else "none"
        if spin not in SPIN_POLARIZATIONS:
            raise ConfigurationError(
                "Config 'model_kwargs.spin_polarization' must be one of "
                f"{', '.join(SPIN_POLARIZATIONS)}.",
                key="model_kwargs.spin_polarization",
            )
        object.__setattr__(self, "spin_polarization", spin)

    @property
    def n_spin_components(self) -> int:
        return 2 if self.spin_polarization == "collinear" else 1

    @property
    def spin(self) -> int:
        """Number of unpaired electrons per cell (PySCF ``cell.spin``)."""
        return int(round(float(np.sum(self.system.magnetic_moments))))


@dataclass(frozen=True, eq=False)
class Basis:
    """A built PySCF cell plus the k-point sampling used for the SCF."""

    model: Model
    cell: Any
    kpts: np.ndarray
    kgrid: tuple[int, int, int]
    kshift: tuple[float, float, float]
    Ecut: float
    basis_set: str

    @property
    def n_kpoints(self) -> int:
        return len(self.kpts)

    def __str__(self) -> str:
        model = self.model
        lines = [
            "Basis",
            f"    xc                 : {model.xc}",
            f"    spin polarization  : {model.spin_polarization}",
            f"    temperature (Ha)   : {model.temperature}",
            f"    smearing           : {model.smearing or 'none'}",
            f"    Ecut (Ha)          : {self.Ecut}",
            f"    GTO basis          : {self.basis_set}",
            f"    kgrid              : {' x '.join(str(n) for n in self.kgrid)}",
            f"    kshift             : {list(self.kshift)}",
            f"    irreducible kpts   : {self.n_kpoints}",
            f"    atoms              : {' '.join(model.system.symbols)}",
        ]
        return "\n".join(lines)


@dataclass(frozen=True, eq=False)
class ExplicitKpoints:
    """Explicit list of k-points in fractional (reduced) coordinates."""

    kcoords: np.ndarray

    @classmethod
    def from_coordinates(cls, value: Any, key: str = "kpath") -> "ExplicitKpoints":
        try:
            coords = np.asarray(value, dtype=float)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Config '{key}' must be a list of 3-vectors.", key=key) from exc
        if coords.ndim != 2 or coords.shape[1] != 3 or len(coords) == 0:
            raise ConfigurationError(
                f"Config '{key}' must be a non-empty list of 3-vectors (got shape {coords.shape}).",
                key=key,
            )
        return cls(kcoords=coords)

    def __len__(self) -> int:
        return len(self.kcoords)


@dataclass(frozen=True)
class Deadline:
    """Wall-clock budget checked between solver iterations.

    ``expires_at`` is a ``time.monotonic()`` value; ``None`` means no cutoff.
    """

    expires_at: float | None = None

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    @classmethod
    def after(cls, seconds: float | None) -> "Deadline":
        if seconds is None:
            return cls.never()
        return cls(time.monotonic() + float(seconds))

    @property
    def unbounded(self) -> bool:
        return self.expires_at is None

    def remaining(self) -> float:
        if self.expires_at is None:
            return math.inf
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


@dataclass(eq=False)
class SCFResult:
    basis: Basis
    mf: Any
    converged: bool
    timedout: bool
    energy_total: float
    energies: Mapping[str, float]
    n_iter: int | None
    fermi_level: float | None
    eigenvalues: np.ndarray
    occupation: np.ndarray
    density: np.ndarray
    orbitals: Any = None
    runtime_ns: int = 0
    algorithm: str = "SCF"


@dataclass(frozen=True, eq=False)
class BandsResult:
    kpath: np.ndarray
    eigenvalues: np.ndarray
    occupation: np.ndarray
    fermi_level: float | None


@dataclass(frozen=True, eq=False)
class ForcesResult:
    forces: np.ndarray
    symbols: Sequence[str]


@dataclass(frozen=True, eq=False)
class DosResult:
    energies: np.ndarray
    dos: np.ndarray
    smearing_width: float
    fermi_level: float | None


__all__ = [
    "Atom",
    "Basis",
    "BandsResult",
    "Deadline",
    "DosResult",
    "ExplicitKpoints",
    "ForcesResult",
    "Model",
    "PeriodicSystem",
    "SCFResult",
]
