# -*- coding: utf-8 -*-
"""Rank layout and the GROUP/TOROIDAL/MESH communicator splits."""

import pytest

from thread_comm import run_spmd
from torpic.config import ConfigurationError
from torpic.mpi_utils import Comm
from torpic.partition import CommHierarchy, PartitionConfig, PartitionLevel, RankLayout


def test_levels_are_totally_ordered():
    assert PartitionLevel.GROUP < PartitionLevel.TOROIDAL < PartitionLevel.MESH


def test_rank_layout_round_trip():
    pcfg = PartitionConfig(picparts=3, planes=2, group_size=2)
    seen = set()
    for rank in range(pcfg.world_size):
        lay = RankLayout.from_world_rank(rank, pcfg)
        assert lay.world_rank(pcfg) == rank
        seen.add((lay.picpart, lay.plane, lay.group_rank))
    assert len(seen) == pcfg.world_size


def test_group_members_are_contiguous_world_ranks():
    pcfg = PartitionConfig(picparts=2, planes=2, group_size=3)
    lay = RankLayout.from_world_rank(4, pcfg)
    assert (lay.picpart, lay.plane, lay.group_rank) == (0, 1, 1)


def test_rank_outside_world_is_rejected():
    with pytest.raises(ConfigurationError):
        RankLayout.from_world_rank(4, PartitionConfig(picparts=1, planes=2, group_size=2))


def test_serial_hierarchy():
    h = CommHierarchy.build(Comm(None), PartitionConfig(picparts=1, planes=1, group_size=1))
    assert h.is_group_leader()
    for level in PartitionLevel:
        assert (h.comm(level).rank(), h.comm(level).size()) == (0, 1)


def test_hierarchy_rejects_mismatched_world():
    with pytest.raises(ConfigurationError):
        CommHierarchy.build(Comm(None), PartitionConfig(picparts=1, planes=2, group_size=1))


def test_eight_rank_splits():
    pcfg = PartitionConfig(picparts=2, planes=2, group_size=2)

    def body(world):
        h = CommHierarchy.build(world, pcfg)
        return (
            h.layout,
            (h.group_rank(), h.group_size()),
            (h.toroidal_rank(), h.toroidal_size()),
            (h.mesh_rank(), h.mesh_size()),
            h.is_group_leader(),
        )

    for rank, (lay, group, toroidal, mesh, leader) in enumerate(run_spmd(8, body)):
        assert lay == RankLayout.from_world_rank(rank, pcfg)
        assert group == (lay.group_rank, 2)
        assert toroidal == (lay.plane, 2)
        assert mesh == (lay.picpart, 2)
        assert leader == (lay.group_rank == 0)
