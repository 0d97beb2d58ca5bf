#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""torpic entry point.

This file is intentionally small:
- parse CLI
- load+merge configuration
- initialize MPI (optional)
- load+broadcast mesh
- build the partitioned mesh and run the aggregation driver

All real logic lives in the `torpic/` package.
"""

# Import logging (for module-level logger).
import logging

# Import stdlib helpers.
import importlib.util
import sys
from typing import Any, Dict

# Import lightweight config helpers early for shared utilities.
from torpic.config import deep_update, default_config, load_json


def _require_numpy() -> None:
    """Validate that NumPy is available before importing torpic modules."""
    if importlib.util.find_spec("numpy") is None:
        raise ModuleNotFoundError(
            "NumPy is required to run torpic. Activate your virtual environment "
            f"or install it with '{sys.executable} -m pip install numpy'."
        )


def _apply_cli_overrides(cfg: Dict[str, Any], args: Any) -> Dict[str, Any]:
    """Apply CLI overrides (only if options were explicitly supplied)."""
    if args.mesh_nc is not None:
        cfg["mesh"]["mesh_nc"] = args.mesh_nc
    if args.picparts is not None:
        cfg["partition"]["picparts"] = args.picparts
    if args.planes is not None:
        cfg["partition"]["planes"] = args.planes
    if args.group_size is not None:
        cfg["partition"]["group_size"] = args.group_size
    if args.decomposition is not None:
        cfg["mesh"]["decomposition"] = args.decomposition
    if args.gyro:
        cfg["gyro"]["enabled"] = True
    if args.field_dim is not None:
        cfg["field"]["dim"] = args.field_dim
    if args.steps is not None:
        cfg["driver"]["steps"] = args.steps
    if args.out_nc is not None:
        cfg["output"]["out_netcdf"] = args.out_nc
    # MPI overrides (independent from how the launcher was invoked).
    mpi_cfg_overrides = cfg.setdefault("compute", {}).setdefault("mpi", {})
    if args.mpi_mode is not None:
        if args.mpi_mode == "enabled":
            mpi_cfg_overrides["enabled"] = True
        elif args.mpi_mode == "disabled":
            mpi_cfg_overrides["enabled"] = False
        else:
            mpi_cfg_overrides["enabled"] = None
    return cfg


def main() -> None:
    """Program entry point."""
    _require_numpy()

    from torpic.cli import parse_args
    from torpic.logging_utils import setup_logging
    from torpic.mpi_utils import HAVE_MPI, MPI, MPIConfig, initialize_mpi
    from torpic.io_netcdf import bcast_mesh_input, read_mesh_netcdf_rank0
    from torpic.partitioned_mesh import PartitionedMesh
    from torpic.simulation import run_simulation

    args = parse_args()

    # Defaults, then the user file, then CLI flags.
    cfg = default_config()
    if args.config is not None:
        cfg = deep_update(cfg, load_json(args.config))
    cfg = _apply_cli_overrides(cfg, args)

    # Resolve MPI preferences and initialize communicator after config parsing.
    world_size_guess = MPI.COMM_WORLD.Get_size() if HAVE_MPI else 1
    mpi_cfg = MPIConfig.from_dict(cfg.get("compute", {}).get("mpi", {}), world_size=world_size_guess)
    cfg["compute"]["mpi"] = {"enabled": mpi_cfg.enabled}
    world, mpi_world_size, mpi_active = initialize_mpi(mpi_cfg)
    rank = world.rank()

    # Configure logging (include rank so MPI logs are distinguishable).
    log_file = args.log_file.replace("{rank}", str(rank)) if args.log_file else None
    setup_logging(args.log_level, rank, log_file=log_file)
    logger = logging.getLogger("torpic")
    if rank == 0 and not mpi_active and mpi_world_size > 1:
        logger.info(
            "MPI explicitly disabled in configuration; running serial on rank0 (world_size=%d).",
            mpi_world_size,
        )

    try:
        # Only rank 0 reads the mesh; everybody else receives it.
        m0 = read_mesh_netcdf_rank0(cfg) if rank == 0 else None
        if rank == 0:
            logger.info(
                "Mesh '%s' loaded (rank0): %d vertices, %d elements",
                cfg["mesh"]["mesh_nc"], m0.full_mesh.nverts, m0.full_mesh.nelems,
            )
        mesh_input = bcast_mesh_input(world, m0) if world.size() > 1 else m0

        pmesh = PartitionedMesh(cfg, world, mesh_input)
        summary = run_simulation(pmesh, cfg)
    except Exception:
        # A failure on any rank invalidates the whole run.
        logger.exception("torpic failed on rank %d", rank)
        if mpi_active:
            world.abort(1)
        raise

    if rank == 0:
        logger.info("torpic finished %d step(s).", summary["steps"])


if __name__ == "__main__":
    main()
