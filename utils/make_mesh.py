#!/usr/bin/env python3
"""Create a triangulated rectangle mesh NetCDF for torpic runs."""
from __future__ import annotations

import argparse  # Parse command-line arguments for the CLI.

import numpy as np  # Numerical arrays and math utilities.

from torpic.mesh import FullMesh, MeshInput, partition_elements, rectangle_mesh
from torpic.io_netcdf import save_mesh_netcdf


def synthetic_gyro_maps(full: FullMesh, npoints: int, seed: int) -> dict[str, np.ndarray]:
    """Map random ring points to the vertices of random elements."""
    rng = np.random.default_rng(seed)
    maps = {}
    for name in ("forward_ion", "backward_ion", "forward_electron", "backward_electron"):
        elems = rng.integers(0, full.nelems, size=npoints)
        maps[name] = full.elem_verts[elems].astype(np.int64)
    return maps


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)  # CLI parser with module docstring.
    parser.add_argument("--out", default="mesh.nc", help="Output NetCDF path.")
    parser.add_argument("--nx", type=int, default=8, help="Cells along x.")
    parser.add_argument("--ny", type=int, default=8, help="Cells along y.")
    parser.add_argument("--lx", type=float, default=1.0, help="Domain length along x.")
    parser.add_argument("--ly", type=float, default=1.0, help="Domain length along y.")
    parser.add_argument("--picparts", type=int, default=0, help="Embed an element partition vector (0 = none).")
    parser.add_argument("--decomposition", default="even", choices=["even", "index"])
    parser.add_argument("--gyro-points", type=int, default=0, help="Embed synthetic gyro maps with this many points.")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    full = rectangle_mesh(args.nx, args.ny, args.lx, args.ly)
    elem_parts = partition_elements(full, args.picparts, args.decomposition) if args.picparts > 0 else None
    gyro = synthetic_gyro_maps(full, args.gyro_points, args.seed) if args.gyro_points > 0 else {}
    save_mesh_netcdf(args.out, MeshInput(full_mesh=full, elem_parts=elem_parts, gyro_maps=gyro))
    print(f"Wrote {args.out}: {full.nverts} vertices, {full.nelems} elements")


if __name__ == "__main__":
    main()
