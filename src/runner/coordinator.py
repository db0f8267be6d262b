"""Single-writer coordination between cooperating processes.

Every process runs the same pipeline. One of them, the coordinator (rank 0),
reads the input file, prints banners and writes the shared artifacts; the
others receive what they need through :meth:`Coordinator.broadcast`. Call
sites ask the coordinator object instead of checking ranks themselves.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, TypeVar

from dispatch.errors import ConfigurationError
from run_json_config import JobConfig, load_job_config

logger = logging.getLogger(__name__)

T = TypeVar("T")
ROOT_RANK = 0


class Coordinator(Protocol):
    rank: int
    size: int

    @property
    def is_coordinator(self) -> bool: ...

    def broadcast(self, value: T) -> T: ...

    def write_shared_artifact(self, path: str, writer: Callable[[str], Any]) -> bool: ...

    def abort(self, code: int = 1) -> None: ...


class _CoordinatorBase:
    rank: int = ROOT_RANK
    size: int = 1

    @property
    def is_coordinator(self) -> bool:
        return self.rank == ROOT_RANK

    def write_shared_artifact(self, path: str, writer: Callable[[str], Any]) -> bool:
        """Run ``writer(path)`` on the coordinator only; returns whether it ran."""
        if not self.is_coordinator:
            return False
        writer(path)
        logger.debug("Wrote %s.", path)
        return True


class SerialCoordinator(_CoordinatorBase):
    """Coordinator for a single-process run."""

    def broadcast(self, value: T) -> T:
        return value

    def abort(self, code: int = 1) -> None:
        raise SystemExit(code)


class MPICoordinator(_CoordinatorBase):
    """Coordinator backed by an ``mpi4py`` communicator.

    Any object with ``Get_rank``, ``Get_size``, ``bcast`` and ``Abort`` works,
    which lets tests drive several simulated ranks.
    """

    def __init__(self, comm):
        self.comm = comm
        self.rank = int(comm.Get_rank())
        self.size = int(comm.Get_size())

    @classmethod
    def world(cls) -> "MPICoordinator":
        from mpi4py import MPI

        return cls(MPI.COMM_WORLD)

    def broadcast(self, value: T) -> T:
        return self.comm.bcast(value, root=ROOT_RANK)

    def abort(self, code: int = 1) -> None:
        self.comm.Abort(code)


def make_coordinator(use_mpi: bool) -> Coordinator:
    if use_mpi:
        return MPICoordinator.world()
    return SerialCoordinator()


def broadcast_job_config(path: str, coordinator: Coordinator) -> JobConfig:
    """Read ``path`` on the coordinator and hand the decoded config to every process.

    A decode or validation failure is broadcast too, so every process raises
    the same :class:`ConfigurationError` instead of waiting forever.
    """
    config = None
    error = None
    if coordinator.is_coordinator:
        try:
            config = load_job_config(path)
        except ConfigurationError as exc:
            error = (str(exc), exc.key)
    config, error = coordinator.broadcast((config, error))
    if error is not None:
        message, key = error
        raise ConfigurationError(message, key=key)
    return config


__all__ = [
    "Coordinator",
    "MPICoordinator",
    "ROOT_RANK",
    "SerialCoordinator",
    "broadcast_job_config",
    "make_coordinator",
]
