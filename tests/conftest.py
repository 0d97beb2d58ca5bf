# -*- coding: utf-8 -*-
"""Shared fixtures for torpic tests."""

# Import typing primitives.
from typing import Any, Dict, Optional

# Import pytest.
import pytest

# Import local modules.
from torpic.config import deep_update, default_config
from torpic.mesh import MeshInput, rectangle_mesh
from torpic.partitioned_mesh import PartitionedMesh


def make_cfg(picparts: int = 1, planes: int = 1, group_size: Optional[int] = None,
             overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    cfg = default_config()
    cfg["partition"] = {"picparts": picparts, "planes": planes, "group_size": group_size}
    return deep_update(cfg, overrides or {})


def build_pmesh(world: Any, cfg: Dict[str, Any], nx: int = 4, ny: int = 2) -> PartitionedMesh:
    # One mesh object per rank; FullMesh caches are not shared across threads.
    return PartitionedMesh(cfg, world, MeshInput(full_mesh=rectangle_mesh(nx, ny)))


@pytest.fixture
def small_mesh():
    return rectangle_mesh(4, 2)
