# -*- coding: utf-8 -*-
"""Command line interface for torpic."""

# Import argparse for CLI parsing.
import argparse

# Import typing primitives.
from typing import List, Optional


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(prog="torpic")
    ap.add_argument("--config", default=None, help="Path to configuration JSON file.")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    ap.add_argument("--log-file", default=None, help="Optional log file; '{rank}' is replaced by the world rank.")
    # Partition overrides.
    ap.add_argument("--mesh-nc", default=None, help="Mesh NetCDF path.")
    ap.add_argument("--picparts", default=None, type=int, help="Number of spatial picparts per plane.")
    ap.add_argument("--planes", default=None, type=int, help="Number of toroidal planes.")
    ap.add_argument("--group-size", default=None, type=int, help="Redundant copies per picpart/plane pair.")
    ap.add_argument(
        "--decomposition",
        default=None,
        choices=["even", "index"],
        help="Element decomposition when the mesh file has no partition vector.",
    )
    ap.add_argument("--gyro", action="store_true", help="Load gyro projection maps from the mesh file.")
    # Driver overrides.
    ap.add_argument("--field-dim", default=None, type=int, help="Entity dimension of the driver field.")
    ap.add_argument("--steps", default=None, type=int, help="Number of gather/scatter cycles.")
    ap.add_argument("--out-nc", default=None, help="Per-plane field output NetCDF path (plane owners only).")
    ap.add_argument(
        "--mpi-mode",
        default=None,
        choices=["auto", "enabled", "disabled"],
        help="Force MPI on/off or auto-detect based on launcher.",
    )
    return ap.parse_args(argv)
