# -*- coding: utf-8 -*-
"""MPI utilities for torpic.

This module provides:
- MPI initialization (optional)
- a thin communicator wrapper with a serial fallback
- reduction operators shared by the aggregation levels
- slab split helper used for element decomposition
"""

# Import typing primitives.
from typing import Any, Dict, List

# Import dataclass for structured configs.
from dataclasses import dataclass

# Import Enum for reduction operators.
from enum import Enum

# Import sys for optional early exits when MPI is disabled explicitly.
import sys

# Import numpy for buffers and counts.
import numpy as np


# Try importing mpi4py; allow serial fallback.
try:
    from mpi4py import MPI  # type: ignore
    HAVE_MPI = True
except Exception:
    MPI = None  # type: ignore
    HAVE_MPI = False


class ReduceOp(Enum):
    """Element-wise combine operators (numpy ufunc + matching MPI op)."""

    SUM = "SUM"
    MAX = "MAX"

    @property
    def ufunc(self) -> np.ufunc:
        """Return the numpy ufunc implementing this operator."""
        return np.add if self is ReduceOp.SUM else np.maximum

    @property
    def mpi_op(self) -> Any:
        """Return the mpi4py operator handle (requires mpi4py)."""
        return getattr(MPI, self.value)


@dataclass(frozen=True)
class MPIConfig:
    """User-facing MPI configuration resolved from JSON/CLI."""

    enabled: bool

    @classmethod
    def from_dict(cls, cfg: dict, world_size: int | None = None) -> "MPIConfig":
        """Build MPIConfig with safe defaults."""
        world = int(world_size) if world_size is not None else 1
        enabled_raw = cfg.get("enabled", None)
        enabled = bool(enabled_raw) if enabled_raw is not None else (HAVE_MPI and world > 1)
        # If mpi4py is missing, force-disable even if the user requested it.
        if enabled and not HAVE_MPI:
            enabled = False
        return cls(enabled=enabled)


class Comm:
    """Communicator wrapper; a ``None`` handle behaves as a one-rank serial communicator.

    All buffer operations work in place on contiguous numpy arrays so that
    mpi4py can infer the MPI datatype from the array dtype.
    """

    def __init__(self, handle: Any = None, name: str = "world") -> None:
        self._handle = handle
        self.name = name

    @classmethod
    def world(cls) -> "Comm":
        """Return the wrapper for MPI.COMM_WORLD (serial when mpi4py is missing)."""
        return cls(MPI.COMM_WORLD if HAVE_MPI else None, name="world")

    @property
    def handle(self) -> Any:
        """Raw mpi4py communicator (None in serial mode)."""
        return self._handle

    def rank(self) -> int:
        return 0 if self._handle is None else self._handle.Get_rank()

    def size(self) -> int:
        return 1 if self._handle is None else self._handle.Get_size()

    def split(self, color: int, key: int, name: str = "sub") -> "Comm":
        """Collective split; ranks sharing `color` land in one communicator ordered by `key`."""
        if self._handle is None:
            return Comm(None, name=name)
        return Comm(self._handle.Split(color=int(color), key=int(key)), name=name)

    def reduce(self, array: np.ndarray, op: ReduceOp, root: int = 0) -> None:
        """Reduce `array` element-wise onto `root` in place; other ranks' buffers are only read."""
        if self._handle is None:
            return
        if self._handle.Get_rank() == root:
            self._handle.Reduce(MPI.IN_PLACE, array, op=op.mpi_op, root=root)
        else:
            self._handle.Reduce(array, None, op=op.mpi_op, root=root)

    def bcast(self, array: np.ndarray, root: int = 0) -> None:
        """Broadcast `array` from `root`, overwriting every other rank's buffer."""
        if self._handle is None:
            return
        self._handle.Bcast(array, root=root)

    def bcast_obj(self, obj: Any, root: int = 0) -> Any:
        """Broadcast a picklable object (metadata)."""
        if self._handle is None:
            return obj
        return self._handle.bcast(obj, root=root)

    def sendrecv(self, sendbuf: np.ndarray, dest: int, recvbuf: np.ndarray, source: int, tag: int = 0) -> None:
        """Blocking paired send/receive."""
        if self._handle is None:
            # Only self-exchange is possible on one rank.
            recvbuf[...] = sendbuf
            return
        self._handle.Sendrecv(sendbuf, dest=dest, sendtag=tag, recvbuf=recvbuf, source=source, recvtag=tag)

    def exchange(self, sendbufs: Dict[int, np.ndarray], recvbufs: Dict[int, np.ndarray], tag: int = 0) -> None:
        """Non-blocking exchange with a set of neighbours, completed before returning."""
        if self._handle is None:
            for peer, buf in recvbufs.items():
                buf[...] = sendbufs[peer]
            return
        requests: List[Any] = []
        # Post receives first so matching sends never stall.
        for src in sorted(recvbufs):
            requests.append(self._handle.Irecv(recvbufs[src], source=src, tag=tag))
        for dst in sorted(sendbufs):
            requests.append(self._handle.Isend(sendbufs[dst], dest=dst, tag=tag))
        MPI.Request.Waitall(requests)

    def allreduce(self, value: Any, op: ReduceOp) -> Any:
        """Reduce a scalar (pickle-based) to every rank."""
        if self._handle is None:
            return value
        return self._handle.allreduce(value, op=op.mpi_op)

    def barrier(self) -> None:
        if self._handle is not None:
            self._handle.Barrier()

    def abort(self, errorcode: int = 1) -> None:
        """Terminate every rank of the run."""
        if self._handle is None:
            sys.exit(errorcode)
        self._handle.Abort(errorcode)


def initialize_mpi(mpi_cfg: MPIConfig) -> tuple[Comm, int, bool]:
    """Return (world comm, world_size, active) honoring user MPI preferences."""
    if not HAVE_MPI:
        return Comm(None), 1, False

    world = MPI.COMM_WORLD
    world_rank = world.Get_rank()
    world_size = world.Get_size()

    # Auto-disable when only one rank is present.
    if world_size == 1:
        return Comm(None), 1, False

    # Respect explicit disable requests even if launched under mpirun.
    if not mpi_cfg.enabled:
        if world_rank != 0:
            # Non-root ranks exit quietly so only rank0 proceeds in serial mode.
            MPI.Finalize()
            sys.exit(0)
        return Comm(None), world_size, False

    return Comm(world, name="world"), world_size, True


def slab_counts_starts(n: int, size: int) -> tuple[np.ndarray, np.ndarray]:
    """Compute contiguous slab counts and starts for each rank."""
    # Start with floor division.
    counts = np.full(size, n // size, dtype=np.int64)
    # Distribute remainder to the first ranks.
    counts[: (n % size)] += 1
    # Compute starts as prefix sums of counts.
    starts = np.zeros(size, dtype=np.int64)
    starts[1:] = np.cumsum(counts[:-1])
    return counts, starts
