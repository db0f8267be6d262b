from .builders import build_basis, build_model, build_system
from .stage_postscf import postscf_output_file, run_postscf
from .stage_scf import ScfOutcome, ScfStage, run_scf, scf_converged

__all__ = [
    "ScfOutcome",
    "ScfStage",
    "build_basis",
    "build_model",
    "build_system",
    "postscf_output_file",
    "run_postscf",
    "run_scf",
    "scf_converged",
]
