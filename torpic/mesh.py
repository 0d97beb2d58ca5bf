# -*- coding: utf-8 -*-
"""Simplex mesh and its spatial partition into picparts.

The full mesh is shared and never modified. A picpart holds the elements of
one part plus every lower-dimensional entity bounding them; entities that also
bound elements of another part are recorded as shared with that part, ordered
by global id so both sides of a link agree on the buffer layout.
"""

# Import dataclass for structured mesh objects.
from dataclasses import dataclass, field

# Import itertools for simplex sub-entity enumeration.
import itertools

# Import typing primitives.
from typing import Dict, List, Optional

# Import numpy for arrays.
import numpy as np

# Import local helpers.
from .mpi_utils import slab_counts_starts


class FullMesh:
    """Unpartitioned simplex mesh (vertex coordinates + element-to-vertex table)."""

    def __init__(self, coords: np.ndarray, elem_verts: np.ndarray) -> None:
        coords = np.asarray(coords, dtype=np.float64)
        elem_verts = np.asarray(elem_verts, dtype=np.int64)
        if coords.ndim != 2 or coords.shape[1] not in (1, 2, 3):
            raise ValueError(f"coords must have shape (nverts, 1|2|3), got {coords.shape}")
        dim = coords.shape[1]
        if elem_verts.ndim != 2 or elem_verts.shape[1] != dim + 1:
            raise ValueError(f"elem_verts must have shape (nelems, {dim + 1}), got {elem_verts.shape}")
        if elem_verts.size and (elem_verts.min() < 0 or elem_verts.max() >= coords.shape[0]):
            raise ValueError("elem_verts references vertices outside coords")
        self.coords = coords
        self.elem_verts = elem_verts
        self._ents: Dict[int, np.ndarray] = {}
        self._adj: Dict[int, np.ndarray] = {}

    @property
    def dim(self) -> int:
        return int(self.coords.shape[1])

    @property
    def nverts(self) -> int:
        return int(self.coords.shape[0])

    @property
    def nelems(self) -> int:
        return int(self.elem_verts.shape[0])

    def nents(self, dim: int) -> int:
        return int(self.entity_verts(dim).shape[0])

    def _check_dim(self, dim: int) -> None:
        if not 0 <= dim <= self.dim:
            raise ValueError(f"entity dimension {dim} outside [0, {self.dim}]")

    def _enumerate(self, dim: int) -> None:
        """Number the dim-entities as unique sorted vertex tuples of element faces."""
        combos = list(itertools.combinations(range(self.dim + 1), dim + 1))
        cand = np.sort(self.elem_verts[:, combos], axis=2).reshape(-1, dim + 1)
        uniq, inverse = np.unique(cand, axis=0, return_inverse=True)
        self._ents[dim] = uniq
        self._adj[dim] = inverse.reshape(-1).reshape(self.nelems, len(combos))

    def entity_verts(self, dim: int) -> np.ndarray:
        """Return the (n_d, dim+1) vertex table of dim-entities."""
        self._check_dim(dim)
        if dim == 0:
            return np.arange(self.nverts, dtype=np.int64)[:, None]
        if dim == self.dim:
            return self.elem_verts
        if dim not in self._ents:
            self._enumerate(dim)
        return self._ents[dim]

    def elem_entities(self, dim: int) -> np.ndarray:
        """Return the (nelems, k) global ids of dim-entities bounding each element."""
        self._check_dim(dim)
        if dim == 0:
            return self.elem_verts
        if dim == self.dim:
            return np.arange(self.nelems, dtype=np.int64)[:, None]
        if dim not in self._adj:
            self._enumerate(dim)
        return self._adj[dim]

    def centroids(self) -> np.ndarray:
        return self.coords[self.elem_verts].mean(axis=1)


def rectangle_mesh(nx: int, ny: int, lx: float = 1.0, ly: float = 1.0) -> FullMesh:
    """Triangulate an nx*ny grid of rectangular cells (two triangles per cell)."""
    if nx < 1 or ny < 1:
        raise ValueError("nx and ny must be >= 1")
    xs = np.linspace(0.0, lx, nx + 1)
    ys = np.linspace(0.0, ly, ny + 1)
    X, Y = np.meshgrid(xs, ys, indexing="xy")
    coords = np.column_stack([X.ravel(), Y.ravel()])
    # Vertex index of grid node (i, j) = j * (nx + 1) + i.
    i, j = np.meshgrid(np.arange(nx), np.arange(ny), indexing="xy")
    v00 = (j * (nx + 1) + i).ravel()
    v10 = v00 + 1
    v01 = v00 + (nx + 1)
    v11 = v01 + 1
    elem_verts = np.empty((2 * v00.size, 3), dtype=np.int64)
    elem_verts[0::2] = np.column_stack([v00, v10, v11])
    elem_verts[1::2] = np.column_stack([v00, v11, v01])
    return FullMesh(coords, elem_verts)


def partition_elements(full: FullMesh, nparts: int, strategy: str = "even") -> np.ndarray:
    """Assign every element to one of `nparts` picparts."""
    if nparts < 1:
        raise ValueError("nparts must be >= 1")
    strat = (strategy or "even").lower().strip()
    if strat == "even":
        # Contiguous slabs along the first coordinate of element centroids.
        order = np.argsort(full.centroids()[:, 0], kind="stable")
    elif strat == "index":
        order = np.arange(full.nelems)
    else:
        raise ValueError(f"Unknown mesh decomposition '{strategy}'. Use 'even' or 'index'.")
    counts, starts = slab_counts_starts(full.nelems, nparts)
    parts = np.empty(full.nelems, dtype=np.int32)
    for p in range(nparts):
        parts[order[starts[p] : starts[p] + counts[p]]] = p
    return parts


@dataclass
class Picpart:
    """Locally resident part of the full mesh.

    Attributes
    ----------
    part : int
        Picpart index (equal to the rank in the MESH communicator).
    gids : list of np.ndarray
        Sorted global ids of the local entities, one array per dimension.
    coords : np.ndarray
        Coordinates of the local vertices.
    elem_verts : np.ndarray
        Element-to-vertex table in local vertex indices.
    links : list of dict
        Per dimension, ``{neighbour part: local indices}`` of shared entities.
    """

    part: int
    gids: List[np.ndarray]
    coords: np.ndarray
    elem_verts: np.ndarray
    links: List[Dict[int, np.ndarray]] = field(default_factory=list)

    def dim(self) -> int:
        return len(self.gids) - 1

    def nents(self, dim: int) -> int:
        return int(self.gids[dim].size)

    def nelems(self) -> int:
        return self.nents(self.dim())

    def global_ids(self, dim: int) -> np.ndarray:
        return self.gids[dim]

    def shared(self, dim: int) -> Dict[int, np.ndarray]:
        return self.links[dim]

    def owned_mask(self, dim: int) -> np.ndarray:
        """True for entities this part owns (lowest part index among sharers)."""
        mask = np.ones(self.nents(dim), dtype=bool)
        for nbr, idx in self.links[dim].items():
            if nbr < self.part:
                mask[idx] = False
        return mask


def build_picpart(full: FullMesh, elem_parts: np.ndarray, part: int) -> Picpart:
    """Extract picpart `part` from the full mesh given an element-to-part vector."""
    elem_parts = np.asarray(elem_parts, dtype=np.int64)
    if elem_parts.shape != (full.nelems,):
        raise ValueError(f"elem_parts must have shape ({full.nelems},), got {elem_parts.shape}")
    local_elems = np.nonzero(elem_parts == part)[0]

    gids: List[np.ndarray] = []
    links: List[Dict[int, np.ndarray]] = []
    for d in range(full.dim):
        adj = full.elem_entities(d)
        mine = np.unique(adj[local_elems])
        # (entity, part) incidence over the whole mesh.
        pairs = np.unique(np.column_stack([adj.ravel(), np.repeat(elem_parts, adj.shape[1])]), axis=0)
        shared: Dict[int, np.ndarray] = {}
        for nbr in np.unique(pairs[:, 1]):
            if int(nbr) == part:
                continue
            common = np.intersect1d(mine, pairs[pairs[:, 1] == nbr, 0], assume_unique=True)
            if common.size:
                shared[int(nbr)] = np.searchsorted(mine, common)
        gids.append(mine)
        links.append(shared)
    # Elements are never shared.
    gids.append(local_elems.astype(np.int64))
    links.append({})

    return Picpart(
        part=int(part),
        gids=gids,
        coords=full.coords[gids[0]],
        elem_verts=np.searchsorted(gids[0], full.elem_verts[local_elems]),
        links=links,
    )


@dataclass
class MeshInput:
    """Everything read from the mesh file that the partition needs."""

    full_mesh: FullMesh
    elem_parts: Optional[np.ndarray] = None
    gyro_maps: Dict[str, np.ndarray] = field(default_factory=dict)
