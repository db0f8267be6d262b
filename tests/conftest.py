from __future__ import annotations

import copy
import json

import pytest

from runner.coordinator import MPICoordinator

_MINIMAL_JOB = {
    "periodic_system": {
        "atoms": [
            {"symbol": "H", "position": [0.0, 0.0, 0.0], "pseudopotential": "gth-pade"},
            {"symbol": "H", "position": [1.4, 0.0, 0.0], "pseudopotential": "gth-pade"},
        ],
        "bounding_box": [[6.0, 0.0, 0.0], [0.0, 6.0, 0.0], [0.0, 0.0, 6.0]],
    },
    "model_kwargs": {"xc": "lda,vwn"},
    "basis_kwargs": {"Ecut": 20, "basis": "gth-szv"},
    "scf": {
        "$function": "self_consistent_field",
        "$kwargs": {"tol": 1e-6},
        "checkpointfile": "scfres.h5",
    },
}


class FakeComm:
    """In-memory stand-in for an mpi4py communicator.

    Ranks sharing one ``bus`` dict see what the root rank broadcast, in call
    order, so several ranks can be simulated one after the other.
    """

    def __init__(self, rank=0, size=2, bus=None):
        self.rank = rank
        self.size = size
        self.bus = bus if bus is not None else {"values": []}
        self._cursor = 0
        self.aborted = None

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.size

    def bcast(self, value, root=0):
        if self.rank == root:
            self.bus["values"].append(copy.deepcopy(value))
            result = value
        else:
            result = copy.deepcopy(self.bus["values"][self._cursor])
        self._cursor += 1
        return result

    def Abort(self, code):
        self.aborted = code


@pytest.fixture
def job_data():
    return copy.deepcopy(_MINIMAL_JOB)


@pytest.fixture
def write_job(tmp_path):
    def _write(data, name="job.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def make_ranks():
    def _make(size=2):
        bus = {"values": []}
        return [MPICoordinator(FakeComm(rank, size, bus)) for rank in range(size)]

    return _make
