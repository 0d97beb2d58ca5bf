# -*- coding: utf-8 -*-
"""NetCDF I/O: mesh input (rank0 + broadcast) and per-plane field output."""

# Import JSON for embedding config as provenance attribute.
import json

# Import datetime utilities for history attributes.
from datetime import datetime, timezone

# Import pathlib for output path tagging.
from pathlib import Path

# Import typing primitives.
from typing import Any, Dict, Optional

# Import numpy.
import numpy as np

# Import xarray.
import xarray as xr

# Import local modules.
from .gyro import MAP_NAMES
from .mesh import FullMesh, MeshInput
from .mpi_utils import Comm


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def tag_path(path: str, label: str) -> str:
    """Append a label suffix to a path while preserving extension."""
    p = Path(str(path))
    return str(p.with_name(f"{p.stem}_{label}{p.suffix}"))


def read_mesh_netcdf_rank0(cfg: Dict[str, Any]) -> MeshInput:
    """Read mesh NetCDF on rank 0."""
    mesh_cfg = cfg["mesh"]
    varmap = mesh_cfg.get("varmap", {})
    gyro_cfg = cfg.get("gyro", {})

    ds = xr.open_dataset(mesh_cfg["mesh_nc"])
    try:
        coords = np.asarray(ds[varmap.get("coords", "coords")].values, dtype=np.float64)
        elem_verts = np.asarray(ds[varmap.get("elem_verts", "elem_verts")].values, dtype=np.int64)
        # Optional element partition vector.
        parts_name = varmap.get("elem_parts", "elem_parts")
        elem_parts = np.asarray(ds[parts_name].values, dtype=np.int32) if parts_name in ds else None
        # Optional gyro projection maps (global vertex ids).
        gyro_maps: Dict[str, np.ndarray] = {}
        if bool(gyro_cfg.get("enabled", False)):
            gyro_varmap = gyro_cfg.get("varmap", {})
            for name in MAP_NAMES:
                var = gyro_varmap.get(name, f"{name}_gyro_map")
                if var in ds:
                    gyro_maps[name] = np.asarray(ds[var].values, dtype=np.int64)
    finally:
        ds.close()

    return MeshInput(full_mesh=FullMesh(coords, elem_verts), elem_parts=elem_parts, gyro_maps=gyro_maps)


def _bcast_array(comm: Comm, arr: Optional[np.ndarray], shape: tuple, dtype: Any) -> np.ndarray:
    if comm.rank() == 0:
        buf = np.ascontiguousarray(arr, dtype=dtype)
    else:
        buf = np.empty(shape, dtype=dtype)
    comm.bcast(buf, root=0)
    return buf


def bcast_mesh_input(comm: Comm, m0: Optional[MeshInput]) -> MeshInput:
    """Broadcast MeshInput from rank0 to all ranks."""
    if comm.rank() == 0:
        meta = {
            "coords": m0.full_mesh.coords.shape,
            "elem_verts": m0.full_mesh.elem_verts.shape,
            "elem_parts": None if m0.elem_parts is None else m0.elem_parts.shape,
            "gyro": {name: arr.shape for name, arr in m0.gyro_maps.items()},
        }
    else:
        meta = None
    # Broadcast metadata (pickle-based).
    meta = comm.bcast_obj(meta, root=0)

    def _src(getter):
        return getter() if comm.rank() == 0 else None

    coords = _bcast_array(comm, _src(lambda: m0.full_mesh.coords), meta["coords"], np.float64)
    elem_verts = _bcast_array(comm, _src(lambda: m0.full_mesh.elem_verts), meta["elem_verts"], np.int64)
    elem_parts = None
    if meta["elem_parts"] is not None:
        elem_parts = _bcast_array(comm, _src(lambda: m0.elem_parts), meta["elem_parts"], np.int32)
    gyro_maps: Dict[str, np.ndarray] = {}
    for name in sorted(meta["gyro"]):
        gyro_maps[name] = _bcast_array(comm, _src(lambda: m0.gyro_maps[name]), meta["gyro"][name], np.int64)

    return MeshInput(full_mesh=FullMesh(coords, elem_verts), elem_parts=elem_parts, gyro_maps=gyro_maps)


def save_mesh_netcdf(path: str, mesh_input: MeshInput, title: str = "torpic mesh") -> None:
    """Write a mesh (and optional partition vector / gyro maps) to NetCDF."""
    full = mesh_input.full_mesh
    ds = xr.Dataset()
    ds["coords"] = xr.DataArray(full.coords, dims=("vertex", "coord"), attrs={"long_name": "vertex_coordinates"})
    ds["elem_verts"] = xr.DataArray(
        full.elem_verts.astype(np.int64), dims=("element", "corner"), attrs={"long_name": "element_to_vertex"}
    )
    if mesh_input.elem_parts is not None:
        ds["elem_parts"] = xr.DataArray(
            np.asarray(mesh_input.elem_parts, dtype=np.int32), dims=("element",), attrs={"long_name": "element_picpart"}
        )
    for name, arr in mesh_input.gyro_maps.items():
        ds[f"{name}_gyro_map"] = xr.DataArray(
            np.asarray(arr, dtype=np.int64), dims=(f"{name}_point", "gyro_vertex"),
            attrs={"long_name": f"{name}_gyro_projection"},
        )
    ds.attrs["title"] = title
    ds.attrs["source"] = "torpic"
    ds.attrs["history"] = f"{_utc_now_iso()}: mesh written by torpic"
    ds.to_netcdf(path)


def write_field_netcdf(out_path: str, cfg: Dict[str, Any], global_ids: np.ndarray, field: np.ndarray,
                       dim: int, plane_id: int, phi: float, picpart: int, step: int) -> None:
    """Write one plane's field values for one picpart."""
    out_cfg = cfg.get("output", {})
    values = np.asarray(field)
    dims = ("entity",) + tuple(f"component_{i}" for i in range(1, values.ndim))

    ds = xr.Dataset()
    ds = ds.assign_coords({
        "entity": xr.DataArray(np.arange(values.shape[0], dtype=np.int64), dims=("entity",)),
    })
    ds["global_id"] = xr.DataArray(np.asarray(global_ids, dtype=np.int64), dims=("entity",), attrs={"units": "1"})
    ds["field"] = xr.DataArray(values, dims=dims, attrs={"long_name": "aggregated_field", "entity_dim": int(dim)})

    ds.attrs["title"] = out_cfg.get("title", "torpic plane field")
    ds.attrs["institution"] = out_cfg.get("institution", "")
    ds.attrs["source"] = "torpic"
    ds.attrs["plane_id"] = int(plane_id)
    ds.attrs["phi"] = float(phi)
    ds.attrs["picpart"] = int(picpart)
    ds.attrs["step"] = int(step)
    ds.attrs["history"] = f"{_utc_now_iso()}: field written by torpic"
    ds.attrs["torpic_config_json"] = json.dumps(cfg, separators=(",", ":"), sort_keys=True, default=str)

    ds.to_netcdf(out_path)
