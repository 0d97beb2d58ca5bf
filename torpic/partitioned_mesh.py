# -*- coding: utf-8 -*-
"""Partitioned mesh: picpart, plane roles, process groups and field aggregation.

Partition description:
  The mesh is split into picparts by an element-to-part vector.

  The toroidal direction is split into planes; each process keeps a major and
  a minor plane. Every plane is held by two toroidal ranks, major on exactly
  one of them, and that rank owns (solves and updates) the plane.

  Groups are copies of the same picpart/plane. Fields are accumulated to the
  group leader and scattered back to the members.
"""

# Import logging.
import logging

# Import typing primitives.
from typing import Any, Dict, Optional

# Import numpy.
import numpy as np

# Import local modules.
from .aggregation import FieldAggregator
from .config import ConfigurationError
from .gyro import GyroProjectionMaps
from .mesh import FullMesh, MeshInput, Picpart, build_picpart, partition_elements
from .mpi_utils import Comm
from .partition import CommHierarchy, PartitionConfig, PartitionLevel
from .planes import PlaneRegistry

logger = logging.getLogger("torpic")


class PartitionedMesh:
    """Owns the local picpart and exposes the partition hierarchy around it.

    The full mesh is referenced, not owned. Nothing is replaceable after
    construction.
    """

    def __init__(self, cfg: Dict[str, Any], world: Comm, mesh_input: MeshInput) -> None:
        # Validate counts before any communicator is split.
        pcfg = PartitionConfig.from_dict(cfg.get("partition", {}), world_size=world.size())
        self._hierarchy = CommHierarchy.build(world, pcfg)
        self._planes = PlaneRegistry.from_config(self._hierarchy.toroidal_rank(), pcfg.planes, cfg.get("planes", {}))
        self._full_mesh = mesh_input.full_mesh

        mesh_cfg = cfg.get("mesh", {})
        elem_parts = mesh_input.elem_parts
        if elem_parts is None:
            elem_parts = partition_elements(self._full_mesh, pcfg.picparts, mesh_cfg.get("decomposition", "even"))
        elem_parts = np.asarray(elem_parts)
        if elem_parts.size and (elem_parts.min() < 0 or elem_parts.max() >= pcfg.picparts):
            raise ConfigurationError(
                f"element partition uses parts [{elem_parts.min()}, {elem_parts.max()}], "
                f"configuration has {pcfg.picparts} picparts"
            )
        self._picpart = build_picpart(self._full_mesh, elem_parts, self._hierarchy.mesh_rank())

        if bool(cfg.get("gyro", {}).get("enabled", False)):
            self._gyro = GyroProjectionMaps.from_global(mesh_input.gyro_maps, self._picpart.global_ids(0))
        else:
            self._gyro = GyroProjectionMaps.empty()
        self._gyro.validate(self._picpart.nents(0))

        stale_fill = cfg.get("field", {}).get("stale_fill", None)
        self._aggregator = FieldAggregator(self._hierarchy, self._planes, self._picpart, stale_fill=stale_fill)

        if self._hierarchy.world_rank() == 0:
            logger.info(
                "Partition: %d picparts x %d planes x group size %d (%d processes)",
                pcfg.picparts, pcfg.planes, pcfg.group_size, pcfg.world_size,
            )
        logger.debug(
            "picpart %d: %d elements, %d vertices, %d vertex neighbours",
            self._picpart.part, self._picpart.nelems(), self._picpart.nents(0), len(self._picpart.shared(0)),
        )

    # Raw access to the underlying mesh structures.
    @property
    def picpart(self) -> Picpart:
        return self._picpart

    @property
    def full_mesh(self) -> FullMesh:
        return self._full_mesh

    @property
    def hierarchy(self) -> CommHierarchy:
        return self._hierarchy

    @property
    def gyro_maps(self) -> GyroProjectionMaps:
        return self._gyro

    # Mesh counts.
    def dim(self) -> int:
        return self._picpart.dim()

    def nents(self, dim: int) -> int:
        return self._picpart.nents(dim)

    def nelems(self) -> int:
        return self._picpart.nelems()

    # Rank/size/comm per level.
    def world_rank(self) -> int:
        return self._hierarchy.world_rank()

    def world_size(self) -> int:
        return self._hierarchy.world_size()

    def world_comm(self) -> Comm:
        return self._hierarchy.world_comm()

    def mesh_rank(self) -> int:
        return self._hierarchy.mesh_rank()

    def mesh_size(self) -> int:
        return self._hierarchy.mesh_size()

    def mesh_comm(self) -> Comm:
        return self._hierarchy.mesh_comm()

    def group_rank(self) -> int:
        return self._hierarchy.group_rank()

    def group_size(self) -> int:
        return self._hierarchy.group_size()

    def group_comm(self) -> Comm:
        return self._hierarchy.group_comm()

    def is_group_leader(self) -> bool:
        return self._hierarchy.is_group_leader()

    def toroidal_rank(self) -> int:
        return self._hierarchy.toroidal_rank()

    def toroidal_size(self) -> int:
        return self._hierarchy.toroidal_size()

    def toroidal_comm(self) -> Comm:
        return self._hierarchy.toroidal_comm()

    # Plane roles.
    def plane_id(self) -> int:
        return self._planes.plane_id()

    def minor_plane_id(self) -> int:
        return self._planes.minor_plane

    def major_plane_angle(self) -> float:
        return self._planes.major_angle()

    def minor_plane_angle(self) -> float:
        return self._planes.minor_angle()

    # Field aggregation.
    def gather_field(self, dim: int, field: np.ndarray,
                     start_level: PartitionLevel = PartitionLevel.GROUP,
                     end_level: PartitionLevel = PartitionLevel.MESH,
                     minor: Optional[np.ndarray] = None) -> None:
        """Accumulate `field` from `start_level` up to `end_level` (see FieldAggregator)."""
        self._aggregator.gather_field(dim, field, start_level, end_level, minor=minor)

    def scatter_field(self, dim: int, field: np.ndarray,
                      start_level: PartitionLevel = PartitionLevel.MESH,
                      end_level: PartitionLevel = PartitionLevel.GROUP,
                      minor: Optional[np.ndarray] = None) -> None:
        """Distribute `field` from `start_level` down to `end_level` (see FieldAggregator)."""
        self._aggregator.scatter_field(dim, field, start_level, end_level, minor=minor)
