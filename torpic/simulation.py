# -*- coding: utf-8 -*-
"""Time-stepping driver exercising the gather/scatter cycle.

Every step each process deposits a synthetic per-entity contribution (one unit
per local element, split evenly across the group and between the major and
minor planes), gathers it onto the plane owners, checks that each plane holds
exactly one unit per mesh element, scatters the result back and checks that
all group members agree.
"""

# Import logging.
import logging

# Import time for step timing.
from time import perf_counter

# Import typing primitives.
from typing import Any, Dict, Tuple

# Import numpy.
import numpy as np

# Import local modules.
from .io_netcdf import tag_path, write_field_netcdf
from .mpi_utils import ReduceOp
from .partitioned_mesh import PartitionedMesh

logger = logging.getLogger("torpic")


def deposit_unit_elements(pmesh: PartitionedMesh, dim: int, scale: float = 1.0) -> np.ndarray:
    """Spread `scale` per local element evenly over its bounding dim-entities."""
    picpart = pmesh.picpart
    elem_gids = picpart.global_ids(picpart.dim())
    # Element -> local dim-entity indices.
    adj_global = pmesh.full_mesh.elem_entities(dim)[elem_gids]
    adj_local = np.searchsorted(picpart.global_ids(dim), adj_global)
    out = np.zeros(picpart.nents(dim), dtype=np.float64)
    if adj_local.size:
        np.add.at(out, adj_local.ravel(), scale / adj_local.shape[1])
    return out


def plane_total(pmesh: PartitionedMesh, dim: int, field: np.ndarray) -> float:
    """Sum of owned entities over the MESH communicator (call on group leaders)."""
    owned = pmesh.picpart.owned_mask(dim)
    return float(pmesh.mesh_comm().allreduce(float(np.sum(field[owned])), op=ReduceOp.SUM))


def group_spread(pmesh: PartitionedMesh, field: np.ndarray) -> float:
    """Max minus min of per-member checksums within the group."""
    local = float(np.sum(field))
    comm = pmesh.group_comm()
    hi = comm.allreduce(local, op=ReduceOp.MAX)
    lo = -comm.allreduce(-local, op=ReduceOp.MAX)
    return float(hi - lo)


def run_step(pmesh: PartitionedMesh, dim: int, scale: float) -> Tuple[np.ndarray, np.ndarray, float]:
    """One deposit/gather/scatter cycle; returns (field, minor, plane total or nan)."""
    share = deposit_unit_elements(pmesh, dim, scale=scale) / pmesh.group_size()
    field = np.ascontiguousarray(0.5 * share)
    minor = np.ascontiguousarray(0.5 * share)

    pmesh.gather_field(dim, field, minor=minor)
    total = plane_total(pmesh, dim, field) if pmesh.is_group_leader() else float("nan")

    pmesh.scatter_field(dim, field, minor=minor)
    return field, minor, total


def run_simulation(pmesh: PartitionedMesh, cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Run the configured number of aggregation cycles."""
    dcfg = cfg.get("driver", {})
    steps = int(dcfg.get("steps", 1))
    log_every = max(1, int(dcfg.get("log_every", 1)))
    rtol = float(dcfg.get("rtol", 1.0e-10))
    dim = int(cfg.get("field", {}).get("dim", 0))
    out_nc = cfg.get("output", {}).get("out_netcdf", None)

    expected_unit = float(pmesh.full_mesh.nelems)
    world_rank = pmesh.world_rank()
    summary: Dict[str, Any] = {"steps": 0, "plane_total": None, "expected_total": None, "max_group_spread": 0.0}

    field = np.zeros(pmesh.nents(dim))
    for step in range(steps):
        t0 = perf_counter()
        scale = float(step + 1)
        field, minor, total = run_step(pmesh, dim, scale)
        expected = expected_unit * scale

        if pmesh.is_group_leader() and not np.isclose(total, expected, rtol=rtol, atol=0.0):
            raise RuntimeError(
                f"plane {pmesh.plane_id()} accumulated {total!r}, expected {expected!r} at step {step}"
            )
        spread = max(group_spread(pmesh, field), group_spread(pmesh, minor))
        if spread > rtol * max(1.0, abs(expected)):
            raise RuntimeError(f"group replicas disagree by {spread!r} at step {step}")

        summary["steps"] = step + 1
        summary["expected_total"] = expected
        if pmesh.is_group_leader():
            summary["plane_total"] = total
        summary["max_group_spread"] = max(summary["max_group_spread"], spread)

        if world_rank == 0 and ((step + 1) % log_every == 0 or step + 1 == steps):
            logger.info(
                "step %d/%d: plane %d total=%.6g (expected %.6g), group spread=%.3g, %.3fs",
                step + 1, steps, pmesh.plane_id(), total, expected, spread, perf_counter() - t0,
            )

    # Plane owners write their picpart of the final field.
    if out_nc and pmesh.is_group_leader() and steps > 0:
        path = tag_path(out_nc, f"plane{pmesh.plane_id()}_part{pmesh.picpart.part}")
        write_field_netcdf(
            path, cfg, pmesh.picpart.global_ids(dim), field, dim=dim, plane_id=pmesh.plane_id(),
            phi=pmesh.major_plane_angle(), picpart=pmesh.picpart.part, step=steps,
        )
        logger.debug("field written to %s", path)

    return summary
