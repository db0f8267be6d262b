from __future__ import annotations

import logging

from dispatch.registry import FunctionRegistry
from engines import storage
from engines.base import SCFResult
from run_json_config import POSTSCF_EXTENSION, JobConfig
from runner.coordinator import Coordinator
from runner.timings import TimingContext

logger = logging.getLogger(__name__)


def postscf_output_file(funcname: str) -> str:
    return funcname + POSTSCF_EXTENSION


def run_postscf(
    config: JobConfig,
    scfres: SCFResult,
    *,
    registry: FunctionRegistry,
    coordinator: Coordinator,
    timings: TimingContext,
) -> list[str]:
    """Run the ``postscf`` calls in order, one HDF5 artifact per call.

    The first failing call aborts the remaining ones.
    """
    directives = config.postscf_directives()
    registry.validate((d.function, f"{d.section}.$function") for d in directives)

    output_files: list[str] = []
    for directive in directives:
        funcname = directive.function
        with timings.span(funcname):
            results = registry.call(directive, scfres)
        output_file = postscf_output_file(funcname)
        coordinator.write_shared_artifact(
            output_file,
            lambda path: storage.store_hdf5(path, {"funcname": funcname, "results": results}),
        )
        logger.info("Stored %s results in %s.", funcname, output_file)
        output_files.append(output_file)
    return output_files


__all__ = ["postscf_output_file", "run_postscf"]
