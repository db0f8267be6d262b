from types import SimpleNamespace

import numpy as np
import pytest

from dispatch.errors import ConfigurationError
from engines import pyscf_pbc
from execution import builders
from run_json_config import validate_job_config


def test_build_system_converts_atoms(job_data):
    job_data["periodic_system"]["atoms"][0]["magnetic_moment"] = 1.0

    system = builders.build_system(validate_job_config(job_data))

    assert system.symbols == ["H", "H"]
    np.testing.assert_allclose(system.positions[1], [1.4, 0.0, 0.0])
    np.testing.assert_allclose(system.bounding_box, 6.0 * np.eye(3))
    np.testing.assert_allclose(system.magnetic_moments, [1.0, 0.0])
    assert system.atoms[0].pseudopotential == "gth-pade"


def test_ragged_bounding_box_rejected(job_data):
    job_data["periodic_system"]["bounding_box"][2] = [0.0, 6.0]

    with pytest.raises(ConfigurationError) as excinfo:
        builders.build_system(validate_job_config(job_data))

    assert excinfo.value.key == "periodic_system.bounding_box"


def test_build_model_defaults(job_data):
    config = validate_job_config(job_data)

    model = builders.build_model(config, builders.build_system(config))

    assert model.xc == "lda,vwn"
    assert model.temperature == 0.0
    assert model.smearing is None
    assert model.spin_polarization == "none"
    assert model.n_spin_components == 1


def test_build_model_with_temperature_and_moments(job_data):
    job_data["model_kwargs"]["temperature"] = 0.01
    job_data["periodic_system"]["atoms"][0]["magnetic_moment"] = 1.0
    config = validate_job_config(job_data)

    model = builders.build_model(config, builders.build_system(config))

    assert model.smearing == "fermi"
    assert model.spin_polarization == "collinear"
    assert model.spin == 1


def test_build_model_requires_xc(job_data):
    del job_data["model_kwargs"]["xc"]
    config = validate_job_config(job_data)

    with pytest.raises(ConfigurationError) as excinfo:
        builders.build_model(config, builders.build_system(config))

    assert excinfo.value.key == "model_kwargs.xc"


@pytest.mark.parametrize(
    ("extra", "key"),
    [
        ({"functional": "pbe"}, "model_kwargs.functional"),
        ({"smearing": "marzari"}, "model_kwargs.smearing"),
        ({"temperature": -1}, "model_kwargs.temperature"),
        ({"temperature": "hot"}, "model_kwargs.temperature"),
        ({"charge": "neutral"}, "model_kwargs.charge"),
    ],
)
def test_build_model_rejects_bad_arguments(job_data, extra, key):
    job_data["model_kwargs"].update(extra)
    config = validate_job_config(job_data)

    with pytest.raises(ConfigurationError) as excinfo:
        builders.build_model(config, builders.build_system(config))

    assert excinfo.value.key == key


def _fake_make_basis(model, *, Ecut, basis, kgrid=(1, 1, 1), kshift=(0.0, 0.0, 0.0)):
    return SimpleNamespace(
        model=model,
        Ecut=Ecut,
        basis_set=basis,
        kgrid=tuple(int(n) for n in np.ravel(kgrid)),
        n_kpoints=int(np.prod(kgrid)),
    )


def test_build_basis_forwards_kwargs(job_data, monkeypatch):
    monkeypatch.setattr(pyscf_pbc, "make_basis", _fake_make_basis)
    job_data["basis_kwargs"]["kgrid"] = [2, 2, 1]
    config = validate_job_config(job_data)

    basis = builders.build_basis(config, builders.build_system(config))

    assert basis.Ecut == 20
    assert basis.basis_set == "gth-szv"
    assert basis.kgrid == (2, 2, 1)
    assert basis.model.xc == "lda,vwn"


def test_build_basis_requires_ecut(job_data, monkeypatch):
    monkeypatch.setattr(pyscf_pbc, "make_basis", _fake_make_basis)
    del job_data["basis_kwargs"]["Ecut"]
    config = validate_job_config(job_data)

    with pytest.raises(ConfigurationError) as excinfo:
        builders.build_basis(config, builders.build_system(config))

    assert excinfo.value.key == "basis_kwargs.Ecut"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("Ecut", "abc"),
        ("kgrid", [2, "two", 1]),
        ("kshift", [0, 0, "half"]),
        ("precision", "tight"),
    ],
)
def test_build_basis_rejects_malformed_values(job_data, field, value):
    job_data["basis_kwargs"][field] = value
    config = validate_job_config(job_data)

    with pytest.raises(ConfigurationError) as excinfo:
        builders.build_basis(config, builders.build_system(config))

    assert excinfo.value.key == f"basis_kwargs.{field}"
