from contextlib import contextmanager

import pytest

import cli
from dispatch.errors import ConfigurationError


@pytest.fixture
def quiet_logging(monkeypatch):
    seen = {}

    @contextmanager
    def _context(log_path, verbose, *, enabled=True, run_id=None, event_log_path=None):
        seen.update(log_path=log_path, verbose=verbose, enabled=enabled, event_log_path=event_log_path)
        yield

    monkeypatch.setattr(cli, "setup_logging_context", _context)
    return seen


def test_manifest_printed_one_file_per_line(monkeypatch, capsys, quiet_logging):
    captured = {}

    def _run_json(filename, *, extra_output_files, coordinator, threads):
        captured.update(filename=filename, extras=extra_output_files, threads=threads)
        return [*extra_output_files, "scfres.h5", "self_consistent_field.json", "timings.json"]

    monkeypatch.setattr(cli, "run_json", _run_json)
    monkeypatch.setenv("PYSCF_JSON_THREADS", "2")

    exit_code = cli.main(["inputs/silicon.json", "--extra-output", "job.out"])

    assert exit_code == 0
    assert captured == {
        "filename": "inputs/silicon.json",
        "extras": ["silicon.log", "job.out"],
        "threads": 2,
    }
    assert capsys.readouterr().out.splitlines() == [
        "silicon.log",
        "job.out",
        "scfres.h5",
        "self_consistent_field.json",
        "timings.json",
    ]
    assert quiet_logging["log_path"] == "silicon.log"
    assert quiet_logging["enabled"] is True


def test_failure_returns_non_zero(monkeypatch, capsys, quiet_logging):
    def _run_json(filename, **kwargs):
        raise ConfigurationError("Config 'scf.$function': missing", key="scf.$function")

    monkeypatch.setattr(cli, "run_json", _run_json)

    assert cli.main(["job.json"]) == 1
    assert capsys.readouterr().out == ""


def test_verbose_flag_and_environment(monkeypatch, quiet_logging):
    monkeypatch.setattr(cli, "run_json", lambda filename, **kwargs: [])

    monkeypatch.setenv("PYSCF_JSON_VERBOSE", "yes")
    cli.main(["job.json"])
    assert quiet_logging["verbose"] is True

    monkeypatch.delenv("PYSCF_JSON_VERBOSE")
    cli.main(["job.json"])
    assert quiet_logging["verbose"] is False

    cli.main(["job.json", "--verbose"])
    assert quiet_logging["verbose"] is True


def test_event_log_enabled_from_environment(monkeypatch, quiet_logging):
    monkeypatch.setattr(cli, "run_json", lambda filename, **kwargs: [])
    monkeypatch.setenv("PYSCF_JSON_EVENT_LOG", "1")

    cli.main(["job.json"])

    assert quiet_logging["event_log_path"] == "job.events.jsonl"


def test_invalid_thread_count_reported(monkeypatch, quiet_logging):
    monkeypatch.setattr(cli, "run_json", lambda filename, **kwargs: [])
    monkeypatch.setenv("PYSCF_JSON_THREADS", "many")

    assert cli.main(["job.json"]) == 1


def test_log_path_uses_input_stem():
    assert cli.log_path_for("/data/runs/GaAs.bands.json") == "GaAs.bands.log"
