# -*- coding: utf-8 -*-
"""Process hierarchy: redundancy groups, toroidal planes and spatial picparts.

Every world rank belongs to exactly one GROUP (copies of the same
picpart/plane pair), one TOROIDAL ring (same picpart, same group rank) and one
MESH decomposition (same plane, same group rank). Ranks are laid out so that
group members are contiguous:

    world_rank = (picpart * planes + plane) * group_size + group_rank
"""

# Import dataclass for structured configs.
from dataclasses import dataclass

# Import IntEnum for the ordered partition levels.
from enum import IntEnum

# Import logging.
import logging

# Import typing primitives.
from typing import Any, Dict

# Import local helpers.
from .config import ConfigurationError
from .mpi_utils import Comm

logger = logging.getLogger("torpic")


class PartitionLevel(IntEnum):
    """Partition levels, totally ordered GROUP < TOROIDAL < MESH."""

    GROUP = 0
    TOROIDAL = 1
    MESH = 2


def _positive_int(cfg: Dict[str, Any], key: str) -> int:
    raw = cfg.get(key, None)
    if isinstance(raw, bool):
        raise ConfigurationError(f"partition.{key} must be a positive integer, got {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"partition.{key} must be a positive integer, got {raw!r}") from None
    if value < 1 or value != raw:
        raise ConfigurationError(f"partition.{key} must be a positive integer, got {raw!r}")
    return value


@dataclass(frozen=True)
class PartitionConfig:
    """Partition counts; their product must equal the number of processes."""

    picparts: int
    planes: int
    group_size: int

    @classmethod
    def from_dict(cls, cfg: dict, world_size: int) -> "PartitionConfig":
        """Validate partition counts against the world size."""
        world = int(world_size)
        picparts = _positive_int(cfg, "picparts")
        planes = _positive_int(cfg, "planes")
        if world % (picparts * planes) != 0:
            raise ConfigurationError(
                f"{picparts} picparts x {planes} planes do not evenly divide {world} processes"
            )
        if cfg.get("group_size", None) is None:
            group_size = world // (picparts * planes)
        else:
            group_size = _positive_int(cfg, "group_size")
        if picparts * planes * group_size != world:
            raise ConfigurationError(
                f"{picparts} picparts x {planes} planes x group size {group_size} "
                f"does not cover {world} processes"
            )
        return cls(picparts=picparts, planes=planes, group_size=group_size)

    @property
    def world_size(self) -> int:
        return self.picparts * self.planes * self.group_size


@dataclass(frozen=True)
class RankLayout:
    """Position of one world rank inside the partition hierarchy."""

    picpart: int
    plane: int
    group_rank: int

    @classmethod
    def from_world_rank(cls, world_rank: int, pcfg: PartitionConfig) -> "RankLayout":
        if not 0 <= world_rank < pcfg.world_size:
            raise ConfigurationError(f"world rank {world_rank} outside [0, {pcfg.world_size})")
        group_rank = world_rank % pcfg.group_size
        plane = (world_rank // pcfg.group_size) % pcfg.planes
        picpart = world_rank // (pcfg.group_size * pcfg.planes)
        return cls(picpart=picpart, plane=plane, group_rank=group_rank)

    def world_rank(self, pcfg: PartitionConfig) -> int:
        return (self.picpart * pcfg.planes + self.plane) * pcfg.group_size + self.group_rank


class CommHierarchy:
    """GROUP/TOROIDAL/MESH communicators of the calling process (fixed after build)."""

    def __init__(self, world: Comm, pcfg: PartitionConfig, layout: RankLayout,
                 group: Comm, toroidal: Comm, mesh: Comm) -> None:
        self._world = world
        self.config = pcfg
        self.layout = layout
        self._comms = {
            PartitionLevel.GROUP: group,
            PartitionLevel.TOROIDAL: toroidal,
            PartitionLevel.MESH: mesh,
        }

    @classmethod
    def build(cls, world: Comm, pcfg: PartitionConfig) -> "CommHierarchy":
        """Split `world` into the three level communicators (collective on `world`)."""
        if world.size() != pcfg.world_size:
            raise ConfigurationError(
                f"partition expects {pcfg.world_size} processes, communicator has {world.size()}"
            )
        lay = RankLayout.from_world_rank(world.rank(), pcfg)
        group = world.split(color=lay.picpart * pcfg.planes + lay.plane, key=lay.group_rank, name="group")
        toroidal = world.split(color=lay.picpart * pcfg.group_size + lay.group_rank, key=lay.plane, name="toroidal")
        mesh = world.split(color=lay.plane * pcfg.group_size + lay.group_rank, key=lay.picpart, name="mesh")
        logger.debug(
            "world rank %d -> picpart=%d plane=%d group_rank=%d",
            world.rank(), lay.picpart, lay.plane, lay.group_rank,
        )
        return cls(world, pcfg, lay, group, toroidal, mesh)

    def comm(self, level: PartitionLevel) -> Comm:
        return self._comms[PartitionLevel(level)]

    def world_rank(self) -> int:
        return self._world.rank()

    def world_size(self) -> int:
        return self._world.size()

    def world_comm(self) -> Comm:
        return self._world

    def group_rank(self) -> int:
        return self._comms[PartitionLevel.GROUP].rank()

    def group_size(self) -> int:
        return self._comms[PartitionLevel.GROUP].size()

    def group_comm(self) -> Comm:
        return self._comms[PartitionLevel.GROUP]

    def toroidal_rank(self) -> int:
        return self._comms[PartitionLevel.TOROIDAL].rank()

    def toroidal_size(self) -> int:
        return self._comms[PartitionLevel.TOROIDAL].size()

    def toroidal_comm(self) -> Comm:
        return self._comms[PartitionLevel.TOROIDAL]

    def mesh_rank(self) -> int:
        return self._comms[PartitionLevel.MESH].rank()

    def mesh_size(self) -> int:
        return self._comms[PartitionLevel.MESH].size()

    def mesh_comm(self) -> Comm:
        return self._comms[PartitionLevel.MESH]

    def is_group_leader(self) -> bool:
        return self.group_rank() == 0
