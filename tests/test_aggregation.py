# -*- coding: utf-8 -*-
"""Gather/scatter across GROUP, TOROIDAL and MESH levels."""

import numpy as np
import pytest

from thread_comm import run_spmd
from torpic.aggregation import FieldContractError, gather_levels, scatter_levels
from torpic.mpi_utils import Comm
from torpic.partition import PartitionLevel

from conftest import build_pmesh, make_cfg

GROUP = PartitionLevel.GROUP
TOROIDAL = PartitionLevel.TOROIDAL
MESH = PartitionLevel.MESH


@pytest.fixture
def serial_pmesh():
    return build_pmesh(Comm(None), make_cfg())


def test_level_sequences():
    assert gather_levels(GROUP, MESH) == [GROUP, TOROIDAL, MESH]
    assert gather_levels(TOROIDAL, TOROIDAL) == [TOROIDAL]
    assert scatter_levels(MESH, GROUP) == [MESH, TOROIDAL, GROUP]
    assert scatter_levels(MESH, TOROIDAL) == [MESH, TOROIDAL]


def test_inverted_levels_raise_without_touching_field(serial_pmesh):
    field = np.arange(serial_pmesh.nents(0), dtype=np.float64)
    before = field.copy()
    with pytest.raises(FieldContractError):
        serial_pmesh.gather_field(0, field, start_level=MESH, end_level=GROUP)
    with pytest.raises(FieldContractError):
        serial_pmesh.scatter_field(0, field, start_level=GROUP, end_level=MESH)
    np.testing.assert_array_equal(field, before)


def test_field_contract_checks(serial_pmesh):
    n = serial_pmesh.nents(0)
    with pytest.raises(FieldContractError, match="entries"):
        serial_pmesh.gather_field(0, np.zeros(n + 1))
    with pytest.raises(FieldContractError, match="numpy array"):
        serial_pmesh.gather_field(0, [0.0] * n)
    with pytest.raises(FieldContractError, match="C-contiguous"):
        serial_pmesh.gather_field(0, np.zeros(2 * n)[::2])
    frozen = np.zeros(n)
    frozen.setflags(write=False)
    with pytest.raises(FieldContractError, match="writeable"):
        serial_pmesh.scatter_field(0, frozen)
    with pytest.raises(FieldContractError, match="dimension"):
        serial_pmesh.gather_field(3, np.zeros(n))


def test_minor_contract_checks(serial_pmesh):
    n = serial_pmesh.nents(0)
    field = np.zeros(n)
    with pytest.raises(FieldContractError, match="does not match"):
        serial_pmesh.gather_field(0, field, minor=np.zeros(n, dtype=np.float32))
    with pytest.raises(FieldContractError, match="overlap"):
        serial_pmesh.gather_field(0, field, minor=field)
    assert isinstance(FieldContractError("x"), ValueError)


def test_serial_gather_folds_minor_onto_major(serial_pmesh):
    n = serial_pmesh.nents(0)
    field = np.full(n, 2.0)
    minor = np.full(n, 3.0)
    serial_pmesh.gather_field(0, field, minor=minor)
    np.testing.assert_array_equal(field, 5.0)


def _gather_constant(cfg, start=GROUP, end=MESH):
    def body(world):
        pm = build_pmesh(world, cfg)
        field = np.full(pm.nents(0), 1.0)
        pm.gather_field(0, field, start_level=start, end_level=end)
        return pm.is_group_leader(), field
    return run_spmd(4, body)


def test_full_gather_accumulates_on_leaders():
    for leader, field in _gather_constant(make_cfg(1, 2, 2)):
        # Two group members per plane, then the neighbouring plane's two.
        np.testing.assert_array_equal(field, 4.0 if leader else 1.0)


def test_stale_fill_marks_non_leader_arrays():
    cfg = make_cfg(1, 2, 2, overrides={"field": {"stale_fill": float("nan")}})
    for leader, field in _gather_constant(cfg):
        if leader:
            np.testing.assert_array_equal(field, 4.0)
        else:
            assert np.isnan(field).all()


def test_toroidal_only_gather():
    for leader, field in _gather_constant(make_cfg(1, 2, 2), start=TOROIDAL, end=TOROIDAL):
        np.testing.assert_array_equal(field, 2.0 if leader else 1.0)


def test_gather_sends_minor_contribution_forward():
    def body(world):
        pm = build_pmesh(world, make_cfg(1, 3, 1))
        t = pm.plane_id()
        field = np.full(pm.nents(0), 100.0 * t)
        minor = np.full(pm.nents(0), t + 1.0)
        pm.gather_field(0, field, minor=minor)
        return t, field

    for t, field in run_spmd(3, body):
        # Plane t also receives what plane t-1 deposited on its minor plane.
        np.testing.assert_array_equal(field, 100.0 * t + ((t - 1) % 3) + 1.0)


def test_scatter_delivers_next_plane_to_minor():
    def body(world):
        pm = build_pmesh(world, make_cfg(1, 3, 1))
        t = pm.plane_id()
        field = np.full(pm.nents(0), 100.0 * t)
        minor = np.zeros(pm.nents(0))
        pm.scatter_field(0, field, minor=minor)
        single = np.full(pm.nents(0), 100.0 * t)
        pm.scatter_field(0, single, start_level=TOROIDAL, end_level=TOROIDAL)
        return t, pm.minor_plane_id(), field, minor, single

    for t, minor_id, field, minor, single in run_spmd(3, body):
        assert minor_id == (t + 1) % 3
        np.testing.assert_array_equal(field, 100.0 * t)
        np.testing.assert_array_equal(minor, 100.0 * minor_id)
        np.testing.assert_array_equal(single, 100.0 * minor_id)


def test_gather_then_scatter_replicates_group():
    def body(world):
        pm = build_pmesh(world, make_cfg(1, 2, 2))
        r = float(pm.world_rank() + 1)
        field = np.full(pm.nents(0), r)
        minor = np.full(pm.nents(0), 0.5 * r)
        pm.gather_field(0, field, minor=minor)
        pm.scatter_field(0, field, minor=minor)
        return pm.plane_id(), field, minor

    results = run_spmd(4, body)
    # Plane 0: 1+2 plus plane 1's minor 0.5*(3+4); plane 1: 3+4 plus 0.5*(1+2).
    expected = {0: 6.5, 1: 8.5}
    for plane, field, minor in results:
        np.testing.assert_array_equal(field, expected[plane])
        np.testing.assert_array_equal(minor, expected[1 - plane])
    # Group members hold bit-identical copies.
    assert results[0][1].tobytes() == results[1][1].tobytes()
    assert results[2][2].tobytes() == results[3][2].tobytes()


def _shared_gids(pm, dim):
    pp = pm.picpart
    idx = np.concatenate([i for i in pp.shared(dim).values()]) if pp.shared(dim) else np.zeros(0, dtype=np.int64)
    return pp.global_ids(dim)[np.unique(idx)]


def test_mesh_gather_sums_shared_entities():
    def body(world):
        pm = build_pmesh(world, make_cfg(2, 1, 1))
        field = np.ones(pm.nents(0))
        pm.gather_field(0, field, start_level=MESH, end_level=MESH)
        return pm.picpart.global_ids(0), _shared_gids(pm, 0), field

    for gids, shared, field in run_spmd(2, body):
        assert shared.size == 3
        np.testing.assert_array_equal(field, np.where(np.isin(gids, shared), 2.0, 1.0))


def test_mesh_scatter_takes_max_of_shared_entities():
    def body(world):
        pm = build_pmesh(world, make_cfg(2, 1, 1))
        field = np.full(pm.nents(0), 10.0 * (pm.mesh_rank() + 1))
        pm.scatter_field(0, field, start_level=MESH, end_level=MESH)
        return pm.mesh_rank(), pm.picpart.global_ids(0), _shared_gids(pm, 0), field

    for part, gids, shared, field in run_spmd(2, body):
        own = 10.0 * (part + 1)
        np.testing.assert_array_equal(field, np.where(np.isin(gids, shared), 20.0, own))


def test_multi_component_edge_field():
    def body(world):
        pm = build_pmesh(world, make_cfg(2, 1, 1))
        field = np.ones((pm.nents(1), 3))
        field[:, 2] = 5.0
        pm.gather_field(1, field, start_level=MESH, end_level=MESH)
        return pm.picpart.global_ids(1), _shared_gids(pm, 1), field

    for gids, shared, field in run_spmd(2, body):
        assert shared.size == 2
        factor = np.where(np.isin(gids, shared), 2.0, 1.0)[:, None]
        np.testing.assert_array_equal(field, factor * np.array([1.0, 1.0, 5.0]))


def test_full_gather_matches_global_assembly():
    def body(world):
        pm = build_pmesh(world, make_cfg(2, 2, 2))
        # Each rank deposits a unit per local element corner.
        field = np.zeros(pm.nents(0))
        np.add.at(field, pm.picpart.elem_verts.ravel(), 1.0)
        pm.gather_field(0, field)
        return pm.is_group_leader(), pm.picpart.global_ids(0), field, pm.full_mesh.elem_verts

    for leader, gids, field, elem_verts in run_spmd(8, body):
        if not leader:
            continue
        # Two group members times two planes contribute per element corner.
        assembled = 4.0 * np.bincount(elem_verts.ravel(), minlength=gids.max() + 1)
        np.testing.assert_array_equal(field, assembled[gids])


def test_contract_rejects_non_numeric_fields(serial_pmesh):
    n = serial_pmesh.nents(0)
    with pytest.raises(FieldContractError, match="numeric"):
        serial_pmesh.gather_field(0, np.empty(n, dtype=object))
    with pytest.raises(FieldContractError, match="numeric"):
        serial_pmesh.scatter_field(0, np.full(n, "x"))


def test_stale_fill_must_fit_field_dtype():
    cfg = make_cfg(1, 1, 2, overrides={"field": {"stale_fill": float("nan")}})

    def body(world):
        pm = build_pmesh(world, cfg)
        field = np.full(pm.nents(0), 3, dtype=np.int64)
        with pytest.raises(FieldContractError, match="stale_fill"):
            pm.gather_field(0, field)
        # Rejected before the GROUP reduce ran on any rank.
        return field

    for field in run_spmd(2, body):
        np.testing.assert_array_equal(field, 3)


def test_single_plane_ring_counts_group_sum_once():
    def body(world):
        pm = build_pmesh(world, make_cfg(1, 1, 2))
        field = np.full(pm.nents(0), 3, dtype=np.int64)
        pm.gather_field(0, field)
        gathered = field.copy()
        pm.scatter_field(0, field)
        return pm.is_group_leader(), gathered, field

    for leader, gathered, field in run_spmd(2, body):
        np.testing.assert_array_equal(gathered, 6 if leader else 3)
        np.testing.assert_array_equal(field, 6)


@pytest.mark.parametrize("planes, expected", [
    # Each plane: own group sum plus its predecessor's, then the successor's value comes back.
    (2, {0: 10.0, 1: 10.0}),
    (3, {0: 10.0, 1: 18.0, 2: 14.0}),
])
def test_single_array_round_trip_replicates_group(planes, expected):
    def body(world):
        pm = build_pmesh(world, make_cfg(1, planes, 2))
        field = np.full(pm.nents(0), float(pm.world_rank() + 1))
        pm.gather_field(0, field)
        pm.scatter_field(0, field)
        return pm.plane_id(), field

    results = run_spmd(2 * planes, body)
    for plane, field in results:
        np.testing.assert_array_equal(field, expected[plane])
    # World ranks 2k and 2k+1 form one group.
    for k in range(planes):
        assert results[2 * k][1].tobytes() == results[2 * k + 1][1].tobytes()
