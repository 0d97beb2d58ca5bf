# -*- coding: utf-8 -*-
"""Toroidal plane roles of a process.

Each process owns its major plane (index = toroidal rank) and replicates the
next plane around the ring as its minor plane. Every plane is therefore major
on exactly one toroidal rank and minor on its predecessor.
"""

# Import dataclass for immutable records.
from dataclasses import dataclass

# Import math for default angles.
import math

# Import typing primitives.
from typing import Any, Dict


@dataclass(frozen=True)
class NeighborPairing:
    """Toroidal ranks addressed by the directed plane exchanges.

    Gather sends the minor-plane contribution to its owner (`gather_dest`) and
    receives from the rank replicating our major plane (`gather_source`).
    Scatter walks the same edges backwards.
    """

    gather_dest: int
    gather_source: int
    scatter_dest: int
    scatter_source: int

    @classmethod
    def for_ring(cls, toroidal_rank: int, ring_size: int) -> "NeighborPairing":
        if ring_size < 1 or not 0 <= toroidal_rank < ring_size:
            raise ValueError(f"toroidal rank {toroidal_rank} outside ring of size {ring_size}")
        nxt = (toroidal_rank + 1) % ring_size
        prev = (toroidal_rank - 1) % ring_size
        return cls(gather_dest=nxt, gather_source=prev, scatter_dest=prev, scatter_source=nxt)


@dataclass(frozen=True)
class PlaneRegistry:
    """Major/minor plane indices and toroidal angles for one process."""

    major_plane: int
    minor_plane: int
    num_planes: int
    major_phi: float
    minor_phi: float
    pairing: NeighborPairing

    @classmethod
    def from_config(cls, toroidal_rank: int, num_planes: int, planes_cfg: Dict[str, Any] | None = None) -> "PlaneRegistry":
        cfg = planes_cfg or {}
        phi_start = float(cfg.get("phi_start", 0.0))
        extent = float(cfg.get("extent", 2.0 * math.pi))
        pairing = NeighborPairing.for_ring(toroidal_rank, num_planes)
        minor = pairing.gather_dest
        dphi = extent / num_planes
        return cls(
            major_plane=toroidal_rank,
            minor_plane=minor,
            num_planes=num_planes,
            major_phi=phi_start + toroidal_rank * dphi,
            # Unwrapped so the minor plane always sits one step ahead (the last
            # plane's minor angle is phi_start + extent, i.e. plane 0 one period on).
            minor_phi=phi_start + (toroidal_rank + 1) * dphi,
            pairing=pairing,
        )

    def plane_id(self) -> int:
        return self.major_plane

    def major_angle(self) -> float:
        return self.major_phi

    def minor_angle(self) -> float:
        return self.minor_phi
