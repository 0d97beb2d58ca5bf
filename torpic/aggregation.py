# -*- coding: utf-8 -*-
"""Cross-partition field aggregation.

Gather folds per-entity contributions bottom-up into the major-plane group
leader of every plane:

- GROUP: sum every member's array onto the group leader.
- TOROIDAL: each leader sends its minor-plane contribution to the owner of that
  plane, which adds it to its major-plane array.
- MESH: major-plane leaders sum shared entities across picparts.

Scatter pushes the authoritative values back top-down:

- MESH: max over shared entities across picparts.
- TOROIDAL: each leader sends its major-plane values to the rank replicating
  that plane as its minor plane.
- GROUP: the leader broadcasts to every member.

Arrays are updated in place and never retained between calls.
"""

# Import logging.
import logging

# Import typing primitives.
from typing import Any, List, Optional

# Import numpy.
import numpy as np

# Import local helpers.
from .mesh import Picpart
from .mpi_utils import Comm, ReduceOp
from .partition import CommHierarchy, PartitionLevel
from .planes import PlaneRegistry

logger = logging.getLogger("torpic")

GATHER_ORDER = (PartitionLevel.GROUP, PartitionLevel.TOROIDAL, PartitionLevel.MESH)
SCATTER_ORDER = (PartitionLevel.MESH, PartitionLevel.TOROIDAL, PartitionLevel.GROUP)

# Message tags per exchange so the two directions never match each other.
TAG_TOROIDAL_GATHER = 11
TAG_TOROIDAL_SCATTER = 12
TAG_MESH_GATHER = 21
TAG_MESH_SCATTER = 22


class FieldContractError(ValueError):
    """Invalid aggregation call (level order or field shape)."""


def gather_levels(start: PartitionLevel, end: PartitionLevel) -> List[PartitionLevel]:
    """Levels visited by a gather from `start` to `end` inclusive."""
    start, end = PartitionLevel(start), PartitionLevel(end)
    if start > end:
        raise FieldContractError(f"gather start level {start.name} is above end level {end.name}")
    return [lvl for lvl in GATHER_ORDER if start <= lvl <= end]


def scatter_levels(start: PartitionLevel, end: PartitionLevel) -> List[PartitionLevel]:
    """Levels visited by a scatter from `start` down to `end` inclusive."""
    start, end = PartitionLevel(start), PartitionLevel(end)
    if start < end:
        raise FieldContractError(f"scatter start level {start.name} is below end level {end.name}")
    return [lvl for lvl in SCATTER_ORDER if end <= lvl <= start]


def combine_shared(comm: Comm, picpart: Picpart, dim: int, field: np.ndarray, op: ReduceOp, tag: int = 0) -> None:
    """Combine shared entities of `field` with every neighbouring picpart."""
    links = picpart.shared(dim)
    if not links:
        return
    # Snapshot outgoing values before any local update.
    sendbufs = {nbr: np.ascontiguousarray(field[idx]) for nbr, idx in links.items()}
    recvbufs = {nbr: np.empty_like(buf) for nbr, buf in sendbufs.items()}
    comm.exchange(sendbufs, recvbufs, tag=tag)
    for nbr, idx in links.items():
        op.ufunc.at(field, idx, recvbufs[nbr])


class FieldAggregator:
    """Runs gather/scatter over the hierarchy for one picpart."""

    def __init__(self, hierarchy: CommHierarchy, planes: PlaneRegistry, picpart: Picpart,
                 stale_fill: Optional[Any] = None) -> None:
        self.hierarchy = hierarchy
        self.planes = planes
        self.picpart = picpart
        self.stale_fill = stale_fill

    def _check_field(self, dim: int, field: Any, name: str = "field") -> None:
        if not 0 <= dim <= self.picpart.dim():
            raise FieldContractError(f"mesh dimension {dim} outside [0, {self.picpart.dim()}]")
        if not isinstance(field, np.ndarray):
            raise FieldContractError(f"{name} must be a numpy array, got {type(field).__name__}")
        expected = self.picpart.nents(dim)
        if field.ndim == 0 or field.shape[0] != expected:
            raise FieldContractError(
                f"{name} has {field.shape[0] if field.ndim else 0} entries, "
                f"picpart has {expected} entities of dimension {dim}"
            )
        if not np.issubdtype(field.dtype, np.number):
            raise FieldContractError(f"{name} must have a numeric dtype, got {field.dtype}")
        if not field.flags.c_contiguous or not field.flags.writeable:
            raise FieldContractError(f"{name} must be a writeable C-contiguous array")
        if self.stale_fill is not None and not np.can_cast(
            np.min_scalar_type(self.stale_fill), field.dtype, casting="same_kind"
        ):
            raise FieldContractError(f"stale_fill {self.stale_fill!r} cannot be stored in a {field.dtype} {name}")

    def _check_minor(self, dim: int, field: np.ndarray, minor: Optional[np.ndarray]) -> None:
        if minor is None:
            return
        self._check_field(dim, minor, name="minor")
        if minor.shape != field.shape or minor.dtype != field.dtype:
            raise FieldContractError(
                f"minor {minor.shape}/{minor.dtype} does not match field {field.shape}/{field.dtype}"
            )
        if np.shares_memory(minor, field):
            raise FieldContractError("minor and field must not overlap")

    def _arrays(self, field: np.ndarray, minor: Optional[np.ndarray]) -> List[np.ndarray]:
        return [field] if minor is None else [field, minor]

    # ------------------------------
    # Gather
    # ------------------------------
    def gather_field(self, dim: int, field: np.ndarray,
                     start_level: PartitionLevel = PartitionLevel.GROUP,
                     end_level: PartitionLevel = PartitionLevel.MESH,
                     minor: Optional[np.ndarray] = None) -> None:
        """Accumulate contributions from `start_level` to `end_level` inclusive.

        After a full gather the major-plane group leader of every plane holds
        the accumulated value; other ranks' arrays carry no meaning until the
        next scatter. Without `minor`, `field` is both the outgoing minor-plane
        contribution and the major-plane accumulator; on a one-plane ring it
        is then already complete after the GROUP level.
        """
        levels = gather_levels(start_level, end_level)
        self._check_field(dim, field)
        self._check_minor(dim, field, minor)
        for level in levels:
            if level is PartitionLevel.GROUP:
                self._gather_group(field, minor)
            elif level is PartitionLevel.TOROIDAL:
                self._gather_toroidal(field, minor)
            else:
                self._gather_mesh(dim, field)

    def _gather_group(self, field: np.ndarray, minor: Optional[np.ndarray]) -> None:
        comm = self.hierarchy.group_comm()
        for arr in self._arrays(field, minor):
            comm.reduce(arr, ReduceOp.SUM, root=0)
        if not self.hierarchy.is_group_leader() and self.stale_fill is not None:
            for arr in self._arrays(field, minor):
                arr.fill(self.stale_fill)
        logger.debug("gather GROUP done (group size=%d)", comm.size())

    def _gather_toroidal(self, field: np.ndarray, minor: Optional[np.ndarray]) -> None:
        if not self.hierarchy.is_group_leader():
            return
        if minor is None and self.hierarchy.toroidal_size() == 1:
            # Major and minor plane are the same array; nothing to fold.
            return
        pairing = self.planes.pairing
        outgoing = field if minor is None else minor
        incoming = np.empty_like(field)
        self.hierarchy.toroidal_comm().sendrecv(
            outgoing, dest=pairing.gather_dest, recvbuf=incoming,
            source=pairing.gather_source, tag=TAG_TOROIDAL_GATHER,
        )
        field += incoming
        logger.debug(
            "gather TOROIDAL: plane %d -> %d, received from %d",
            self.planes.major_plane, pairing.gather_dest, pairing.gather_source,
        )

    def _gather_mesh(self, dim: int, field: np.ndarray) -> None:
        if not self.hierarchy.is_group_leader():
            return
        combine_shared(self.hierarchy.mesh_comm(), self.picpart, dim, field, ReduceOp.SUM, tag=TAG_MESH_GATHER)
        logger.debug("gather MESH done (picpart %d)", self.picpart.part)

    # ------------------------------
    # Scatter
    # ------------------------------
    def scatter_field(self, dim: int, field: np.ndarray,
                      start_level: PartitionLevel = PartitionLevel.MESH,
                      end_level: PartitionLevel = PartitionLevel.GROUP,
                      minor: Optional[np.ndarray] = None) -> None:
        """Distribute authoritative values from `start_level` down to `end_level` inclusive.

        The TOROIDAL step writes the received minor-plane values into `minor`
        when given, otherwise into `field`.
        """
        levels = scatter_levels(start_level, end_level)
        self._check_field(dim, field)
        self._check_minor(dim, field, minor)
        for level in levels:
            if level is PartitionLevel.MESH:
                self._scatter_mesh(dim, field)
            elif level is PartitionLevel.TOROIDAL:
                self._scatter_toroidal(field, minor)
            else:
                self._scatter_group(field, minor)

    def _scatter_mesh(self, dim: int, field: np.ndarray) -> None:
        if not self.hierarchy.is_group_leader():
            return
        combine_shared(self.hierarchy.mesh_comm(), self.picpart, dim, field, ReduceOp.MAX, tag=TAG_MESH_SCATTER)
        logger.debug("scatter MESH done (picpart %d)", self.picpart.part)

    def _scatter_toroidal(self, field: np.ndarray, minor: Optional[np.ndarray]) -> None:
        if not self.hierarchy.is_group_leader():
            return
        if minor is None and self.hierarchy.toroidal_size() == 1:
            return
        pairing = self.planes.pairing
        target = field if minor is None else minor
        incoming = np.empty_like(field)
        self.hierarchy.toroidal_comm().sendrecv(
            field, dest=pairing.scatter_dest, recvbuf=incoming,
            source=pairing.scatter_source, tag=TAG_TOROIDAL_SCATTER,
        )
        target[...] = incoming
        logger.debug(
            "scatter TOROIDAL: plane %d -> %d, received plane %d",
            self.planes.major_plane, pairing.scatter_dest, pairing.scatter_source,
        )

    def _scatter_group(self, field: np.ndarray, minor: Optional[np.ndarray]) -> None:
        comm = self.hierarchy.group_comm()
        for arr in self._arrays(field, minor):
            comm.bcast(arr, root=0)
        logger.debug("scatter GROUP done (group size=%d)", comm.size())
