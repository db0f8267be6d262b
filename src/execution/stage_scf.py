"""SCF stage: run the ground-state solver and persist its result.

The stage moves through ``NOT_STARTED -> RUNNING`` and ends in one of
``CONVERGED``, ``NOT_CONVERGED`` or ``FAILED``. The checkpoint is always
written before ``self_consistent_field.json``; the status file therefore
doubles as the signal that the checkpoint is complete.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from dispatch.errors import ConfigurationError
from dispatch.registry import call_with_kwargs
from dispatch.resolver import resolve_kwargs
from engines import pyscf_pbc, storage
from engines.base import Basis, Deadline, PeriodicSystem, SCFResult
from run_json_config import SCF_STATUS_PATH, JobConfig
from runner.coordinator import Coordinator
from runner.timings import TimingContext

logger = logging.getLogger(__name__)


class ScfStage(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"
    FAILED = "failed"


@dataclass
class ScfOutcome:
    scfres: SCFResult
    output_files: list[str] = field(default_factory=list)
    stage: ScfStage = ScfStage.NOT_STARTED


def _transition(stage: ScfStage, new_stage: ScfStage) -> ScfStage:
    logger.info("SCF stage: %s -> %s", stage.value, new_stage.value)
    return new_stage


def run_self_consistent_field(
    config: JobConfig,
    system: PeriodicSystem,
    basis: Basis,
    *,
    coordinator: Coordinator,
    timings: TimingContext,
) -> ScfOutcome:
    scf = config.scf
    interpolations = {"basis": basis, "model": basis.model}
    kwargs = resolve_kwargs(scf.kwargs, interpolations, section="scf.$kwargs")
    stage = ScfStage.NOT_STARTED

    with timings.span("guess_density"):
        rho = pyscf_pbc.guess_density(basis, system)
    checkpointfile = scf.checkpointfile
    checkpointargs = pyscf_pbc.scf_checkpoint_kwargs(
        basis,
        filename=checkpointfile,
        rho=rho,
        enabled=coordinator.is_coordinator,
    )
    deadline = Deadline.after(scf.maxtime)
    if not deadline.unbounded:
        logger.info("SCF wall-time budget: %.0f s.", deadline.remaining())

    stage = _transition(stage, ScfStage.RUNNING)
    try:
        with timings.span("self_consistent_field"):
            scfres = call_with_kwargs(
                pyscf_pbc.self_consistent_field,
                basis,
                kwargs={**checkpointargs, **kwargs, "deadline": deadline},
                section="scf.$kwargs",
            )
    except Exception:
        _transition(stage, ScfStage.FAILED)
        raise
    stage = _transition(
        stage, ScfStage.CONVERGED if scfres.converged else ScfStage.NOT_CONVERGED
    )

    output_files = [checkpointfile, SCF_STATUS_PATH]
    with timings.span("save_scfres"):
        coordinator.write_shared_artifact(
            checkpointfile,
            lambda path: storage.save_scfres(path, scfres, save_psi=scf.save_psi, save_rho=True),
        )
        coordinator.write_shared_artifact(
            SCF_STATUS_PATH,
            lambda path: storage.save_scfres(path, scfres, save_psi=False, save_rho=False),
        )
    return ScfOutcome(scfres=scfres, output_files=output_files, stage=stage)


def run_geometry_optimisation(config, system, basis, *, coordinator, timings) -> ScfOutcome:
    raise NotImplementedError("geometry_optimisation is not implemented yet")


SCF_ROUTINES: dict[str, Callable[..., ScfOutcome]] = {
    "self_consistent_field": run_self_consistent_field,
    "geometry_optimisation": run_geometry_optimisation,
}


def resolve_scf_routine(name: str) -> Callable[..., Any]:
    routine = SCF_ROUTINES.get(name)
    if routine is None:
        raise ConfigurationError(f"Unknown scf function: {name}", key="scf.$function")
    return routine


def run_scf(
    config: JobConfig,
    system: PeriodicSystem,
    basis: Basis,
    *,
    coordinator: Coordinator,
    timings: TimingContext,
) -> ScfOutcome:
    routine = resolve_scf_routine(config.scf.function)
    return routine(config, system, basis, coordinator=coordinator, timings=timings)


def scf_converged(coordinator: Coordinator, status_path: str = SCF_STATUS_PATH) -> bool:
    """Read the status artifact on the coordinator and share its ``converged`` flag."""
    converged = False
    if coordinator.is_coordinator:
        status = storage.load_scf_status(status_path)
        converged = bool(status is not None and status.get("converged", False) is True)
    return bool(coordinator.broadcast(converged))


__all__ = [
    "SCF_ROUTINES",
    "ScfOutcome",
    "ScfStage",
    "resolve_scf_routine",
    "run_geometry_optimisation",
    "run_scf",
    "run_self_consistent_field",
    "scf_converged",
]
