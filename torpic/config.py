# -*- coding: utf-8 -*-
"""Configuration handling for torpic.

The partition hierarchy is configured via:
1) A JSON configuration file (config.json).
2) Optional CLI overrides (handled in cli.py).
"""

# Import JSON for reading configuration files.
import json

# Import math for the default toroidal extent.
import math

# Import typing primitives.
from typing import Any, Dict


class ConfigurationError(ValueError):
    """Partition configuration that cannot describe the launched process set."""


def default_config() -> Dict[str, Any]:
    """Return a complete default configuration dictionary."""
    return {
        "partition": {
            # Spatial picparts per plane.
            "picparts": 1,
            # Toroidal planes in the ring.
            "planes": 1,
            # Redundant copies per picpart/plane pair; null derives it from the world size.
            "group_size": None,
        },
        "planes": {
            "phi_start": 0.0,
            "extent": 2.0 * math.pi,
        },
        "mesh": {
            "mesh_nc": "mesh.nc",
            "varmap": {
                "coords": "coords",
                "elem_verts": "elem_verts",
                "elem_parts": "elem_parts",
            },
            # Used when the mesh file carries no element partition vector.
            "decomposition": "even",
        },
        "gyro": {
            "enabled": False,
            "varmap": {
                "forward_ion": "forward_ion_gyro_map",
                "backward_ion": "backward_ion_gyro_map",
                "forward_electron": "forward_electron_gyro_map",
                "backward_electron": "backward_electron_gyro_map",
            },
        },
        "field": {
            "dim": 0,
            # Sentinel written to non-leader arrays after the GROUP gather (null = untouched).
            "stale_fill": None,
        },
        "driver": {
            "steps": 1,
            "log_every": 1,
            "rtol": 1.0e-10,
        },
        "output": {
            "out_netcdf": None,
            "title": "torpic plane field",
            "institution": "",
        },
        "compute": {
            "mpi": {
                "enabled": None,
            },
        },
    }


def load_json(path: str) -> Dict[str, Any]:
    """Load a JSON file into a Python dictionary."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def deep_update(base: Dict[str, Any], other: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge dict `other` into dict `base` (non-destructive)."""
    # Start from a shallow copy of base.
    out = dict(base)
    for k, v in other.items():
        # If both sides are dicts, merge recursively.
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_update(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = v
    return out
