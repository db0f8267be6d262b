"""PySCF (``pyscf.pbc``) backend: cells, k-point Kohn-Sham SCF and analysis.

PySCF is imported lazily inside the functions so configuration handling and
the pipeline can be imported without it.
"""

from __future__ import annotations

import logging
import math
import os
import time
from typing import Any, Callable, Mapping

import numpy as np

from dispatch.errors import ConfigurationError

from .base import (
    BandsResult,
    Basis,
    Deadline,
    DosResult,
    ExplicitKpoints,
    ForcesResult,
    Model,
    PeriodicSystem,
    SCFResult,
    coerce_number,
)

logger = logging.getLogger(__name__)

PSEUDOPOTENTIAL_KINDS = ("pseudo", "ecp")
OCCUPATION_THRESHOLD = 1e-8
DEFAULT_DOS_WIDTH = 0.01


def _pseudopotential_tables(system: PeriodicSystem) -> tuple[dict[str, str], dict[str, str]]:
    tables: dict[str, dict[str, str]] = {"pseudo": {}, "ecp": {}}
    for index, atom in enumerate(system.atoms):
        section = f"periodic_system.atoms[{index}].pseudopotential_kwargs"
        unknown = sorted(set(atom.pseudopotential_kwargs) - {"kind"})
        if unknown:
            raise ConfigurationError(
                f"Config '{section}.{unknown[0]}' is not a recognised pseudopotential option.",
                key=f"{section}.{unknown[0]}",
            )
        kind = atom.pseudopotential_kwargs.get("kind", "pseudo")
        if kind not in PSEUDOPOTENTIAL_KINDS:
            raise ConfigurationError(
                f"Config '{section}.kind' must be one of {', '.join(PSEUDOPOTENTIAL_KINDS)}.",
                key=f"{section}.kind",
            )
        table = tables[kind]
        previous = table.get(atom.symbol)
        if previous is not None and previous != atom.pseudopotential:
            raise ConfigurationError(
                f"Config 'periodic_system.atoms[{index}].pseudopotential': element "
                f"{atom.symbol} already uses '{previous}'.",
                key=f"periodic_system.atoms[{index}].pseudopotential",
            )
        table[atom.symbol] = atom.pseudopotential
    return tables["pseudo"], tables["ecp"]


def build_cell(model: Model, *, basis: str, Ecut: float, precision: float | None = None):
    from pyscf.pbc import gto

    system = model.system
    pseudo, ecp = _pseudopotential_tables(system)
    cell = gto.Cell()
    cell.unit = system.unit
    cell.a = np.asarray(system.bounding_box, dtype=float)
    cell.atom = [[atom.symbol, tuple(float(x) for x in atom.position)] for atom in system.atoms]
    cell.basis = basis
    if pseudo:
        cell.pseudo = pseudo
    if ecp:
        cell.ecp = ecp
    cell.ke_cutoff = float(Ecut)
    cell.charge = int(model.charge)
    cell.spin = model.spin if model.spin_polarization == "collinear" else 0
    if precision is not None:
        cell.precision = float(precision)
    cell.verbose = 0
    cell.build(dump_input=False, parse_arg=False)
    return cell


def _int_list(value):
    return [int(n) for n in np.ravel(value)]


def _float_list(value):
    return [float(x) for x in np.ravel(value)]


def make_basis(
    model: Model,
    *,
    Ecut: float,
    basis: str,
    kgrid=(1, 1, 1),
    kshift=(0.0, 0.0, 0.0),
    precision: float | None = None,
) -> Basis:
    kgrid = tuple(coerce_number(kgrid, _int_list, "basis_kwargs.kgrid", "three positive integers"))
    kshift = tuple(coerce_number(kshift, _float_list, "basis_kwargs.kshift", "three numbers"))
    Ecut = coerce_number(Ecut, float, "basis_kwargs.Ecut", "a positive number")
    if precision is not None:
        precision = coerce_number(precision, float, "basis_kwargs.precision", "a number")
    if len(kgrid) != 3 or min(kgrid) < 1:
        raise ConfigurationError(
            "Config 'basis_kwargs.kgrid' must be three positive integers.",
            key="basis_kwargs.kgrid",
        )
    if len(kshift) != 3:
        raise ConfigurationError(
            "Config 'basis_kwargs.kshift' must have three components.",
            key="basis_kwargs.kshift",
        )
    if Ecut <= 0:
        raise ConfigurationError("Config 'basis_kwargs.Ecut' must be positive.", key="basis_kwargs.Ecut")
    cell = build_cell(model, basis=basis, Ecut=Ecut, precision=precision)
    kpts = cell.make_kpts(list(kgrid), scaled_center=list(kshift))
    return Basis(
        model=model,
        cell=cell,
        kpts=np.asarray(kpts),
        kgrid=kgrid,
        kshift=kshift,
        Ecut=float(Ecut),
        basis_set=str(basis),
    )


def make_mean_field(basis: Basis):
    from pyscf.pbc import dft

    model = basis.model
    if model.spin_polarization == "collinear":
        mf = dft.KUKS(basis.cell, kpts=basis.kpts)
    else:
        mf = dft.KRKS(basis.cell, kpts=basis.kpts)
    mf.xc = model.xc
    if model.temperature > 0:
        from pyscf.pbc.scf.addons import smearing_

        mf = smearing_(mf, sigma=model.temperature, method=model.smearing)
    return mf


def guess_density(basis: Basis, system: PeriodicSystem | None = None) -> np.ndarray:
    """Superposition-of-atomic-densities guess (PySCF ``minao``)."""
    mf = make_mean_field(basis)
    return np.asarray(mf.get_init_guess(key="minao"))


def scf_checkpoint_kwargs(
    basis: Basis,
    *,
    filename: str,
    rho: np.ndarray,
    enabled: bool = True,
) -> dict[str, Any]:
    """Checkpoint wiring for :func:`self_consistent_field`.

    An existing checkpoint replaces ``rho`` with its stored density: first the
    final density written by ``save_scfres``, otherwise the orbitals PySCF
    dumps after every iteration. ``enabled`` controls whether this process
    writes the per-iteration dumps.
    """
    density = None
    if filename and os.path.isfile(filename):
        from pyscf.lib import chkfile as lib_chkfile

        density = lib_chkfile.load(filename, "scfres/density")
        if density is None and lib_chkfile.load(filename, "scf/mo_coeff") is not None:
            density = make_mean_field(basis).from_chk(filename)
        if density is not None:
            density = np.asarray(density)
            if density.shape != np.shape(rho):
                logger.warning(
                    "Checkpoint %s holds a density of shape %s, expected %s; ignoring it.",
                    filename,
                    density.shape,
                    np.shape(rho),
                )
                density = None
            else:
                logger.info("Resuming SCF from checkpoint %s.", filename)
    return {
        "chkfile": filename if enabled else None,
        "rho": rho if density is None else density,
    }


class _WallTimeExceeded(Exception):
    def __init__(self, envs: Mapping[str, Any]):
        super().__init__("SCF wall time exceeded")
        self.envs = envs


def _fermi_level(mf) -> float | None:
    mu = getattr(mf, "mu", None)
    if mu is not None:
        return float(np.max(np.atleast_1d(mu)))
    if mf.mo_energy is None or mf.mo_occ is None:
        return None
    energies = np.asarray(mf.mo_energy, dtype=float)
    occupation = np.asarray(mf.mo_occ, dtype=float)
    occupied = energies[occupation > OCCUPATION_THRESHOLD]
    if occupied.size == 0:
        return None
    return float(occupied.max())


def _energy_terms(mf, e_tot: float) -> dict[str, float]:
    energies = {"total": float(e_tot)}
    for name, value in (getattr(mf, "scf_summary", None) or {}).items():
        if isinstance(value, (int, float, np.floating)):
            energies[name] = float(value)
    return energies


def self_consistent_field(
    basis: Basis,
    *,
    rho: np.ndarray | None = None,
    chkfile: str | None = None,
    tol: float = 1e-6,
    maxiter: int = 100,
    damping: float | None = None,
    diis_space: int | None = None,
    level_shift: float | None = None,
    conv_tol_grad: float | None = None,
    verbose: int | None = None,
    deadline: Deadline | None = None,
    callback: Callable[[Mapping[str, Any]], None] | None = None,
) -> SCFResult:
    """Run a k-point Kohn-Sham SCF.

    ``deadline`` is checked after every iteration; when it has passed the
    solver stops and the current (not converged) state is returned with
    ``timedout=True``.
    """
    deadline = deadline or Deadline.never()
    mf = make_mean_field(basis)
    mf.conv_tol = float(tol)
    mf.max_cycle = int(maxiter)
    if damping is not None:
        mf.damp = float(damping)
    if diis_space is not None:
        mf.diis_space = int(diis_space)
    if level_shift is not None:
        mf.level_shift = float(level_shift)
    if conv_tol_grad is not None:
        mf.conv_tol_grad = float(conv_tol_grad)
    if verbose is not None:
        mf.verbose = int(verbose)
    mf.chkfile = chkfile

    n_iter = 0

    def _iteration_hook(envs):
        nonlocal n_iter
        n_iter += 1
        if callback is not None:
            callback(envs)
        if not envs.get("scf_conv") and deadline.expired():
            raise _WallTimeExceeded(envs)

    mf.callback = _iteration_hook
    start = time.perf_counter_ns()
    timedout = False
    try:
        mf.kernel(dm0=rho)
    except _WallTimeExceeded as stop:
        timedout = True
        envs = stop.envs
        logger.warning("SCF wall time exceeded after %d iterations; stopping.", n_iter)
        mf.mo_energy = envs["mo_energy"]
        mf.mo_coeff = envs["mo_coeff"]
        mf.mo_occ = envs["mo_occ"]
        mf.e_tot = envs["e_tot"]
        mf.converged = False
    runtime_ns = time.perf_counter_ns() - start

    return SCFResult(
        basis=basis,
        mf=mf,
        converged=bool(mf.converged),
        timedout=timedout,
        energy_total=float(mf.e_tot),
        energies=_energy_terms(mf, mf.e_tot),
        n_iter=n_iter,
        fermi_level=_fermi_level(mf),
        eigenvalues=np.asarray(mf.mo_energy, dtype=float),
        occupation=np.asarray(mf.mo_occ, dtype=float),
        density=np.asarray(mf.make_rdm1()),
        orbitals=mf.mo_coeff,
        runtime_ns=runtime_ns,
    )


def occupation(eigenvalues: np.ndarray, fermi_level: float | None, model: Model) -> np.ndarray:
    eigenvalues = np.asarray(eigenvalues, dtype=float)
    max_occ = 2.0 if model.n_spin_components == 1 else 1.0
    if fermi_level is None:
        return np.zeros_like(eigenvalues)
    if model.temperature <= 0:
        return np.where(eigenvalues <= fermi_level + OCCUPATION_THRESHOLD, max_occ, 0.0)
    x = np.clip((eigenvalues - fermi_level) / model.temperature, -500.0, 500.0)
    if model.smearing == "gaussian":
        return max_occ * 0.5 * np.vectorize(math.erfc)(x)
    return max_occ / (1.0 + np.exp(x))


def compute_bands(scfres: SCFResult, kpath: ExplicitKpoints, *, n_bands: int | None = None) -> BandsResult:
    """Non-self-consistent eigenvalues along ``kpath`` (fractional coordinates)."""
    cell = scfres.basis.cell
    kpts_band = cell.get_abs_kpts(kpath.kcoords)
    mo_energy, _ = scfres.mf.get_bands(kpts_band)
    eigenvalues = np.asarray(mo_energy, dtype=float)
    if n_bands is not None:
        eigenvalues = eigenvalues[..., : int(n_bands)]
    return BandsResult(
        kpath=np.asarray(kpath.kcoords, dtype=float),
        eigenvalues=eigenvalues,
        occupation=occupation(eigenvalues, scfres.fermi_level, scfres.basis.model),
        fermi_level=scfres.fermi_level,
    )


def compute_forces_cart(scfres: SCFResult) -> ForcesResult:
    """Cartesian forces in Hartree/bohr (negative nuclear gradient)."""
    gradient = scfres.mf.nuc_grad_method().kernel()
    return ForcesResult(
        forces=-np.asarray(gradient, dtype=float),
        symbols=list(scfres.basis.model.system.symbols),
    )


def compute_dos(
    scfres: SCFResult,
    *,
    smearing_width: float | None = None,
    n_points: int = 1001,
    emin: float | None = None,
    emax: float | None = None,
) -> DosResult:
    """Gaussian-broadened density of states (states per Hartree per cell)."""
    model = scfres.basis.model
    width = smearing_width
    if width is None:
        width = model.temperature if model.temperature > 0 else DEFAULT_DOS_WIDTH
    width = float(width)
    if width <= 0:
        raise ValueError(f"compute_dos smearing_width must be positive (got {width}).")
    eigenvalues = np.ravel(np.asarray(scfres.eigenvalues, dtype=float))
    lower = float(eigenvalues.min()) - 5 * width if emin is None else float(emin)
    upper = float(eigenvalues.max()) + 5 * width if emax is None else float(emax)
    energies = np.linspace(lower, upper, int(n_points))
    weight = (2.0 if model.n_spin_components == 1 else 1.0) / scfres.basis.n_kpoints
    delta = (energies[:, None] - eigenvalues[None, :]) / width
    dos = weight * np.exp(-0.5 * delta**2).sum(axis=1) / (width * math.sqrt(2 * math.pi))
    return DosResult(
        energies=energies,
        dos=dos,
        smearing_width=width,
        fermi_level=scfres.fermi_level,
    )


__all__ = [
    "build_cell",
    "compute_bands",
    "compute_dos",
    "compute_forces_cart",
    "guess_density",
    "make_basis",
    "make_mean_field",
    "occupation",
    "scf_checkpoint_kwargs",
    "self_consistent_field",
]
