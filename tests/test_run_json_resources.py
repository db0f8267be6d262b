import logging

import pytest

import env_compat
import run_json_resources


class _FakePyscfLib:
    def __init__(self, threads=8):
        self.threads = threads

    def num_threads(self, n=None):
        if n is not None:
            self.threads = n
        return self.threads


@pytest.fixture
def fake_lib(monkeypatch):
    lib = _FakePyscfLib()
    monkeypatch.setattr(run_json_resources, "_load_pyscf_lib", lambda: lib)
    for env_name in run_json_resources.THREAD_ENV_VARS:
        monkeypatch.setenv(env_name, "1")
        monkeypatch.delenv(env_name)
    return lib


def test_single_process_uses_requested_threads(fake_lib, monkeypatch):
    assert run_json_resources.setup_process_threading(1, 4) == 4
    assert fake_lib.threads == 4
    assert run_json_resources.inspect_thread_settings()["env"]["OMP_NUM_THREADS"] == "4"


def test_single_process_keeps_current_setting_without_request(fake_lib):
    assert run_json_resources.setup_process_threading(1, None) == 8


def test_several_processes_run_single_threaded(fake_lib, caplog):
    with caplog.at_level(logging.WARNING):
        assert run_json_resources.setup_process_threading(4, 8) == 1

    assert fake_lib.threads == 1
    assert "without OMP_NUM_THREADS" in caplog.text


def test_no_warning_when_omp_threads_set(fake_lib, monkeypatch, caplog):
    monkeypatch.setenv("OMP_NUM_THREADS", "1")

    with caplog.at_level(logging.WARNING):
        run_json_resources.setup_process_threading(2)

    assert caplog.text == ""


def test_version_banner_lists_packages():
    banner = run_json_resources.format_version_banner(
        {"python": "3.12.1", "pyscf": "2.6.2", "mpi4py": None}, n_processes=2
    )

    assert "Processes: 2" in banner
    assert "pyscf      2.6.2" in banner
    assert "mpi4py     not installed" in banner


def test_collect_versions_reports_missing_package():
    versions = run_json_resources.collect_versions(("numpy", "surely-not-a-real-package"))

    assert versions["numpy"]
    assert versions["surely-not-a-real-package"] is None


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("PYSCF_JSON_THREADS", " 3 ")
    monkeypatch.setenv("PYSCF_JSON_VERBOSE", "on")
    monkeypatch.setenv("PYSCF_JSON_EVENT_LOG", "")

    assert env_compat.env_int(env_compat.THREADS_ENV) == 3
    assert env_compat.env_truthy(env_compat.VERBOSE_ENV) is True
    assert env_compat.env_truthy(env_compat.EVENT_LOG_ENV) is False
