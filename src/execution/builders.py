"""Build the periodic system and the computational basis from the job input."""

from __future__ import annotations

import logging

from dispatch.errors import ConfigurationError
from dispatch.registry import call_with_kwargs
from dispatch.resolver import resolve_kwargs, to_matrix, to_vector
from engines import pyscf_pbc
from engines.base import Atom, Basis, Model, PeriodicSystem
from run_json_config import JobConfig

logger = logging.getLogger(__name__)


def build_system(config: JobConfig) -> PeriodicSystem:
    atoms = []
    for index, atom in enumerate(config.periodic_system.atoms):
        section = f"periodic_system.atoms[{index}]"
        atoms.append(
            Atom(
                symbol=atom.symbol,
                position=to_vector(atom.position, f"{section}.position"),
                pseudopotential=atom.pseudopotential,
                pseudopotential_kwargs=resolve_kwargs(
                    atom.pseudopotential_kwargs,
                    section=f"{section}.pseudopotential_kwargs",
                ),
                magnetic_moment=float(atom.magnetic_moment),
            )
        )
    bounding_box = to_matrix(
        config.periodic_system.bounding_box, "periodic_system.bounding_box"
    )
    system = PeriodicSystem(atoms=tuple(atoms), bounding_box=bounding_box)
    ase_atoms = system.to_ase_atoms()
    logger.info(
        "Periodic system %s, cell volume %.3f Ang^3.",
        ase_atoms.get_chemical_formula(),
        ase_atoms.get_volume(),
    )
    return system


def build_model(config: JobConfig, system: PeriodicSystem) -> Model:
    model_kwargs = resolve_kwargs(config.model_kwargs, section="model_kwargs")
    if "xc" not in model_kwargs:
        raise ConfigurationError(
            "Config 'model_kwargs.xc' is required (exchange-correlation functional).",
            key="model_kwargs.xc",
        )
    xc = model_kwargs.pop("xc")
    return call_with_kwargs(Model, system, xc, kwargs=model_kwargs, section="model_kwargs")


def build_basis(config: JobConfig, system: PeriodicSystem) -> Basis:
    model = build_model(config, system)
    basis_kwargs = resolve_kwargs(config.basis_kwargs, section="basis_kwargs")
    basis = call_with_kwargs(
        pyscf_pbc.make_basis, model, kwargs=basis_kwargs, section="basis_kwargs"
    )
    logger.info(
        "Built basis: %d atoms, %d k-points, Ecut=%s Ha.",
        len(system.atoms),
        basis.n_kpoints,
        basis.Ecut,
    )
    return basis


__all__ = ["build_basis", "build_model", "build_system"]
