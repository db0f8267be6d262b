import importlib
import importlib.util
import logging
import os
import platform
import sys
from importlib import metadata as importlib_metadata

THREAD_ENV_VARS = (
    "OMP_NUM_THREADS",
    "MKL_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
)
BANNER_PACKAGES = ("pyscf", "numpy", "ase", "h5py", "mpi4py", "pydantic")

logger = logging.getLogger(__name__)


def _load_pyscf_lib():
    pyscf_lib_spec = importlib.util.find_spec("pyscf.lib")
    if pyscf_lib_spec is None:
        return None
    pyscf_lib = importlib.import_module("pyscf.lib")
    if not hasattr(pyscf_lib, "num_threads"):
        return None
    return pyscf_lib


def _collect_thread_env():
    return {env_name: os.environ.get(env_name) for env_name in THREAD_ENV_VARS}


def inspect_thread_settings():
    pyscf_lib = _load_pyscf_lib()
    return {
        "effective_threads": pyscf_lib.num_threads() if pyscf_lib is not None else None,
        "env": _collect_thread_env(),
    }


def setup_threading(thread_count):
    """Pin the numerical libraries to ``thread_count`` threads.

    ``None`` keeps the current setting. Returns the effective thread count, or
    ``None`` when pyscf is not importable.
    """
    pyscf_lib = _load_pyscf_lib()
    if thread_count:
        thread_value = str(thread_count)
        for env_name in THREAD_ENV_VARS:
            os.environ[env_name] = thread_value
        if pyscf_lib is not None:
            pyscf_lib.num_threads(int(thread_count))
    if pyscf_lib is None:
        return None
    return pyscf_lib.num_threads()


def disable_threading():
    return setup_threading(1)


def setup_process_threading(n_processes, requested_threads=None):
    """One thread per process when several processes share the machine."""
    if n_processes > 1:
        if os.environ.get("OMP_NUM_THREADS") is None:
            logger.warning(
                "Running %d processes without OMP_NUM_THREADS; "
                "falling back to a single thread per process.",
                n_processes,
            )
        return disable_threading()
    return setup_threading(requested_threads)


def get_package_version(package_name):
    try:
        return importlib_metadata.version(package_name)
    except importlib_metadata.PackageNotFoundError:
        return None


def collect_versions(packages=BANNER_PACKAGES):
    versions = {"python": platform.python_version()}
    for package_name in packages:
        versions[package_name] = get_package_version(package_name)
    return versions


def format_version_banner(versions=None, n_processes=1):
    if versions is None:
        versions = collect_versions()
    lines = [
        f"pyscf-json {get_package_version('pyscf-json') or 'unknown'}",
        f"Python {versions.get('python')} on {platform.platform()} ({sys.executable})",
        f"Processes: {n_processes}",
    ]
    for package_name, version in versions.items():
        if package_name == "python":
            continue
        lines.append(f"  {package_name:<10} {version or 'not installed'}")
    return "\n".join(lines)


__all__ = [
    "collect_versions",
    "disable_threading",
    "format_version_banner",
    "get_package_version",
    "inspect_thread_settings",
    "setup_process_threading",
    "setup_threading",
]
