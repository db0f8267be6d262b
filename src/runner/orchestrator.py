"""Top-level pipeline: input file in, list of written artifacts out."""

from __future__ import annotations

import logging
from typing import Sequence

from dispatch.registry import FunctionRegistry, default_registry
from engines import storage
from execution.builders import build_basis, build_system
from execution.stage_postscf import run_postscf
from execution.stage_scf import resolve_scf_routine, run_scf, scf_converged
from run_json_config import SCF_STATUS_PATH, TIMINGS_PATH, JobConfig
from run_json_resources import (
    format_version_banner,
    inspect_thread_settings,
    setup_process_threading,
)
from .coordinator import Coordinator, SerialCoordinator, broadcast_job_config
from .timings import TimingContext

logger = logging.getLogger(__name__)


def validate_dispatch_names(config: JobConfig, registry: FunctionRegistry) -> None:
    """Reject unknown ``$function`` names before any expensive work starts."""
    resolve_scf_routine(config.scf.function)
    registry.validate(
        (directive.function, f"{directive.section}.$function")
        for directive in config.postscf_directives()
    )


def _dump_timings(timings: TimingContext, coordinator: Coordinator) -> None:
    if not coordinator.is_coordinator:
        return
    logger.info("Timings:\n%s", timings.format_table())
    coordinator.write_shared_artifact(
        TIMINGS_PATH, lambda path: storage.write_json_atomic(path, timings.to_dict())
    )


def run_json(
    filename: str,
    *,
    extra_output_files: Sequence[str] = (),
    coordinator: Coordinator | None = None,
    registry: FunctionRegistry | None = None,
    timings: TimingContext | None = None,
    threads: int | None = None,
) -> list[str]:
    """Run the job described by ``filename`` and return the produced files.

    The returned list starts with ``extra_output_files``, followed by the SCF
    checkpoint, ``self_consistent_field.json``, one file per post-SCF call
    (in input order) and ``timings.json``. Every process returns the same list.

    Args:
        filename: JSON (or YAML) job description.
        extra_output_files: Files produced outside this call, e.g. the log.
        coordinator: Process coordination; a single-process one by default.
        registry: Post-SCF functions; :func:`default_registry` by default.
        timings: Timer collection; a fresh one by default.
        threads: Thread count for single-process runs.
    """
    coordinator = coordinator or SerialCoordinator()
    registry = registry or default_registry()
    timings = timings or TimingContext()

    config = broadcast_job_config(filename, coordinator)
    validate_dispatch_names(config, registry)

    if coordinator.is_coordinator:
        logger.info("%s", format_version_banner(n_processes=coordinator.size))
    effective_threads = setup_process_threading(coordinator.size, threads)
    logger.debug("Numerical libraries use %s thread(s): %s", effective_threads, inspect_thread_settings())

    timings.reset()
    output_files = list(extra_output_files)

    system = build_system(config)
    basis = build_basis(config, system)
    if coordinator.is_coordinator:
        logger.info("Basis summary:\n%s", basis)

    outcome = run_scf(config, system, basis, coordinator=coordinator, timings=timings)
    output_files.extend(outcome.output_files)

    if scf_converged(coordinator, SCF_STATUS_PATH):
        output_files.extend(
            run_postscf(
                config,
                outcome.scfres,
                registry=registry,
                coordinator=coordinator,
                timings=timings,
            )
        )
    elif config.postscf:
        logger.warning("SCF did not converge; skipping %d post-SCF call(s).", len(config.postscf))

    _dump_timings(timings, coordinator)
    output_files.append(TIMINGS_PATH)
    return output_files


__all__ = ["run_json", "validate_dispatch_names"]
