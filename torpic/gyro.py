# -*- coding: utf-8 -*-
"""Gyro-average projection tables.

Each ring sample point maps to three mesh vertices. The tables are built
elsewhere; here they are only localized to a picpart and frozen.
"""

# Import dataclass for an immutable record.
from dataclasses import dataclass

# Import typing primitives.
from typing import Dict, Optional

# Import numpy for arrays.
import numpy as np

MAP_NAMES = ("forward_ion", "backward_ion", "forward_electron", "backward_electron")


def _frozen_map(arr: Optional[np.ndarray]) -> np.ndarray:
    """Return a read-only (npoints, 3) int32 copy."""
    if arr is None:
        out = np.zeros((0, 3), dtype=np.int32)
    else:
        out = np.array(arr, dtype=np.int32, copy=True)
        if out.ndim != 2 or out.shape[1] != 3:
            raise ValueError(f"gyro map must have shape (npoints, 3), got {out.shape}")
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class GyroProjectionMaps:
    """Forward/backward ion and electron ring-point to vertex maps (-1 = not resident)."""

    forward_ion: np.ndarray
    backward_ion: np.ndarray
    forward_electron: np.ndarray
    backward_electron: np.ndarray

    @classmethod
    def empty(cls) -> "GyroProjectionMaps":
        return cls(*(_frozen_map(None) for _ in MAP_NAMES))

    @classmethod
    def from_arrays(cls, maps: Dict[str, Optional[np.ndarray]]) -> "GyroProjectionMaps":
        return cls(**{name: _frozen_map(maps.get(name)) for name in MAP_NAMES})

    @classmethod
    def from_global(cls, maps: Dict[str, Optional[np.ndarray]], vertex_gids: np.ndarray) -> "GyroProjectionMaps":
        """Translate global vertex ids to local indices within `vertex_gids` (sorted)."""
        local: Dict[str, Optional[np.ndarray]] = {}
        for name in MAP_NAMES:
            arr = maps.get(name)
            if arr is None:
                local[name] = None
                continue
            arr = np.asarray(arr, dtype=np.int64)
            pos = np.searchsorted(vertex_gids, arr)
            pos_clipped = np.minimum(pos, max(vertex_gids.size - 1, 0))
            resident = (vertex_gids.size > 0) & (arr >= 0)
            if vertex_gids.size:
                resident = resident & (vertex_gids[pos_clipped] == arr)
            local[name] = np.where(resident, pos, -1)
        return cls.from_arrays(local)

    def validate(self, nverts: int) -> None:
        for name in MAP_NAMES:
            arr = getattr(self, name)
            if arr.size and (arr.min() < -1 or arr.max() >= nverts):
                raise ValueError(f"{name} gyro map references vertices outside [0, {nverts})")

    def npoints(self, name: str) -> int:
        return int(getattr(self, name).shape[0])
