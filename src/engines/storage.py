"""Persisting SCF results and post-processing records.

Binary artifacts are HDF5 files written through ``pyscf.lib.chkfile`` (the
same format PySCF uses for its own checkpoints); the SCF status summary is
plain JSON.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from typing import Any, Mapping

import numpy as np

from .base import SCFResult

logger = logging.getLogger(__name__)

JSON_EXTENSIONS = (".json",)


def _to_storable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field.name: _to_storable(getattr(value, field.name))
            for field in dataclasses.fields(value)
            if getattr(value, field.name) is not None
        }
    if isinstance(value, Mapping):
        return {str(k): _to_storable(v) for k, v in value.items() if v is not None}
    if isinstance(value, np.ndarray):
        return value
    if isinstance(value, (list, tuple)):
        if all(isinstance(item, str) for item in value):
            return np.asarray(value, dtype="S")
        try:
            return np.asarray(value)
        except ValueError:
            return {str(index): _to_storable(item) for index, item in enumerate(value)}
    if isinstance(value, np.generic):
        return value.item()
    return value


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return _to_jsonable(value.tolist())
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, complex):
        return {"re": value.real, "im": value.imag}
    return value


def write_json_atomic(path: str, payload: Mapping[str, Any]) -> None:
    """Write JSON via tmp + fsync + rename so readers never see a partial file."""
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(_to_jsonable(payload), handle, indent=2, ensure_ascii=False)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def scf_status(scfres: SCFResult) -> dict[str, Any]:
    basis = scfres.basis
    model = basis.model
    eigenvalues = np.asarray(scfres.eigenvalues)
    return {
        "converged": bool(scfres.converged),
        "timedout": bool(scfres.timedout),
        "energy_total": float(scfres.energy_total),
        "energies": dict(scfres.energies),
        "n_iter": scfres.n_iter,
        "fermi_level": scfres.fermi_level,
        "n_kpoints": basis.n_kpoints,
        "n_bands": int(eigenvalues.shape[-1]) if eigenvalues.ndim else 0,
        "n_electrons": int(basis.cell.nelectron) if basis.cell is not None else None,
        "spin_polarization": model.spin_polarization,
        "temperature": model.temperature,
        "smearing": model.smearing,
        "xc": model.xc,
        "runtime_ns": int(scfres.runtime_ns),
        "algorithm": scfres.algorithm,
    }


def save_scfres(filename: str, scfres: SCFResult, *, save_psi: bool = False, save_rho: bool = True) -> str:
    """Save ``scfres`` to ``filename``; ``.json`` gives the summary only."""
    extension = os.path.splitext(filename)[1].lower()
    payload = scf_status(scfres)
    if extension in JSON_EXTENSIONS:
        write_json_atomic(filename, payload)
        return filename

    from pyscf.lib import chkfile as lib_chkfile

    payload["eigenvalues"] = np.asarray(scfres.eigenvalues)
    payload["occupation"] = np.asarray(scfres.occupation)
    payload["kpoints"] = np.asarray(scfres.basis.kpts)
    if save_rho:
        payload["density"] = np.asarray(scfres.density)
    if save_psi and scfres.orbitals is not None:
        payload["orbitals"] = np.asarray(scfres.orbitals)
    lib_chkfile.save(filename, "scfres", _to_storable(payload))
    logger.info("Saved SCF result to %s (orbitals=%s, density=%s).", filename, save_psi, save_rho)
    return filename


def store_hdf5(filename: str, payload: Mapping[str, Any]) -> str:
    """Write ``payload`` as one HDF5 group per top-level key, replacing the file."""
    from pyscf.lib import chkfile as lib_chkfile

    if os.path.exists(filename):
        os.remove(filename)
    for key, value in _to_storable(payload).items():
        lib_chkfile.save(filename, key, value)
    return filename


def load_scf_status(filename: str) -> dict[str, Any] | None:
    if not os.path.exists(filename):
        return None
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read SCF status %s: %s", filename, exc)
        return None
    if not isinstance(payload, dict):
        return None
    return payload


__all__ = [
    "load_scf_status",
    "save_scfres",
    "scf_status",
    "store_hdf5",
    "write_json_atomic",
]
