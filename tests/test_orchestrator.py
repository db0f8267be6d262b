from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from dispatch.errors import ConfigurationError
from dispatch.registry import FunctionRegistry
from engines import storage
from execution.stage_scf import ScfOutcome, ScfStage
from runner import orchestrator
from runner.timings import TimingContext


@pytest.fixture
def pipeline(tmp_path, monkeypatch):
    """Replace the numerical stages; keep the control flow real."""
    monkeypatch.chdir(tmp_path)
    state = SimpleNamespace(converged=True, scf_calls=0, stored=[], threads=None)

    def _run_scf(config, system, basis, *, coordinator, timings):
        state.scf_calls += 1
        with timings.span("self_consistent_field"):
            pass
        if coordinator.is_coordinator:
            (tmp_path / "self_consistent_field.json").write_text(
                json.dumps({"converged": state.converged}), encoding="utf-8"
            )
        return ScfOutcome(
            scfres="scfres",
            output_files=[config.scf.checkpointfile, "self_consistent_field.json"],
            stage=ScfStage.CONVERGED if state.converged else ScfStage.NOT_CONVERGED,
        )

    def _setup_threading(n_processes, requested_threads=None):
        state.threads = (n_processes, requested_threads)
        return 1

    def _store_hdf5(filename, payload):
        state.stored.append(filename)
        return filename

    monkeypatch.setattr(orchestrator, "build_system", lambda config: "system")
    monkeypatch.setattr(
        orchestrator, "build_basis", lambda config, system: SimpleNamespace(n_kpoints=1)
    )
    monkeypatch.setattr(orchestrator, "run_scf", _run_scf)
    monkeypatch.setattr(orchestrator, "setup_process_threading", _setup_threading)
    monkeypatch.setattr(storage, "store_hdf5", _store_hdf5)
    return state


@pytest.fixture
def registry():
    registry = FunctionRegistry()
    registry.register("compute_dos", lambda scfres, *, n_points=3: {"n_points": n_points})
    registry.register("compute_forces_cart", lambda scfres: {"forces": [[0.0, 0.0, 0.0]]})
    return registry


def test_manifest_order(job_data, write_job, pipeline, registry, tmp_path):
    job_data["scf"]["checkpointfile"] = "ckpt.h5"
    job_data["postscf"] = [
        {"$function": "compute_forces_cart"},
        {"$function": "compute_dos", "$kwargs": {"n_points": 7}},
    ]
    path = write_job(job_data)

    output_files = orchestrator.run_json(
        path, extra_output_files=["run.log"], registry=registry, threads=4
    )

    assert output_files == [
        "run.log",
        "ckpt.h5",
        "self_consistent_field.json",
        "compute_forces_cart.hdf5",
        "compute_dos.hdf5",
        "timings.json",
    ]
    assert pipeline.stored == ["compute_forces_cart.hdf5", "compute_dos.hdf5"]
    assert pipeline.threads == (1, 4)
    timings = json.loads((tmp_path / "timings.json").read_text(encoding="utf-8"))
    assert list(timings["inner_timers"]) == [
        "self_consistent_field",
        "compute_forces_cart",
        "compute_dos",
    ]


def test_unconverged_scf_skips_postscf(job_data, write_job, pipeline, registry):
    pipeline.converged = False
    job_data["postscf"] = [{"$function": "compute_dos"}]

    output_files = orchestrator.run_json(write_job(job_data), registry=registry)

    assert output_files == ["scfres.h5", "self_consistent_field.json", "timings.json"]
    assert pipeline.stored == []


def test_unknown_postscf_name_fails_before_scf(job_data, write_job, pipeline, registry):
    job_data["postscf"] = [{"$function": "compute_dos"}, {"$function": "eval"}]

    with pytest.raises(ConfigurationError) as excinfo:
        orchestrator.run_json(write_job(job_data), registry=registry)

    assert excinfo.value.key == "postscf[1].$function"
    assert pipeline.scf_calls == 0


def test_unknown_scf_name_fails_before_scf(job_data, write_job, pipeline, registry):
    job_data["scf"]["$function"] = "relax"

    with pytest.raises(ConfigurationError, match="Unknown scf function: relax"):
        orchestrator.run_json(write_job(job_data), registry=registry)

    assert pipeline.scf_calls == 0


def test_timings_reset_between_runs(job_data, write_job, pipeline, registry):
    timings = TimingContext()
    with timings.span("stale"):
        pass

    orchestrator.run_json(write_job(job_data), registry=registry, timings=timings)

    assert "stale" not in timings.to_dict()["inner_timers"]


def test_every_rank_returns_the_same_manifest(job_data, write_job, pipeline, registry, make_ranks, tmp_path):
    root, worker = make_ranks(2)
    job_data["postscf"] = [{"$function": "compute_dos"}]
    path = write_job(job_data)

    root_files = orchestrator.run_json(path, coordinator=root, registry=registry)
    (tmp_path / "timings.json").unlink()
    worker_files = orchestrator.run_json(path, coordinator=worker, registry=registry)

    assert root_files == worker_files
    assert pipeline.stored == ["compute_dos.hdf5"]
    assert not (tmp_path / "timings.json").exists()
    assert pipeline.threads == (2, None)
