"""Voronoi graph generation.

Cells are the Voronoi regions around a jittered square lattice of points;
vertices are the circumcenters of the Delaunay triangles of those points
plus a ring of boundary points that pseudo-clips the outer cells.
"""

import math
import numpy as np
from scipy.spatial import Delaunay, QhullError
from typing import Dict, List, NamedTuple, Optional, Union
from dataclasses import dataclass, field
import structlog

from .alea_prng import AleaPRNG
from .exceptions import ConfigurationError, GeometryDegeneracy

logger = structlog.get_logger()

MAX_CELLS = 100000


class GridConfig(NamedTuple):
    """Configuration for grid generation."""
    width: float
    height: float
    cells_desired: int


@dataclass
class VoronoiGraph:
    """Cell/vertex dual mesh plus the per-cell layers later stages fill in.

    Mutable while the pipeline runs; the final snapshot freezes the arrays.
    """
    # Grid parameters
    spacing: float
    cells_desired: int
    graph_width: float
    graph_height: float
    seed: str

    # Points data
    boundary_points: np.ndarray
    points: np.ndarray
    cells_x: int
    cells_y: int

    # Cell connectivity data
    cell_neighbors: List[List[int]]  # adjacent cell ids, boundary points excluded
    cell_vertices: List[List[int]]   # vertex ids around the cell, angularly ordered
    cell_border_flags: np.ndarray    # 1 if the cell touches a boundary point
    heights: np.ndarray

    # Vertex data
    vertex_coordinates: np.ndarray   # (m, 2) floored circumcenters
    vertex_neighbors: np.ndarray     # (m, 3) adjacent vertex ids, -1 on the hull
    vertex_cells: np.ndarray         # (m, 3) adjacent cell ids, >= n for boundary points

    # Set by regraph: packed cell -> grid cell
    grid_indices: Optional[np.ndarray] = field(default=None)

    # Feature layers
    distance_field: Optional[np.ndarray] = field(default=None)
    feature_ids: Optional[np.ndarray] = field(default=None)
    features: Optional[List] = field(default=None)
    haven: Optional[np.ndarray] = field(default=None)
    harbor: Optional[np.ndarray] = field(default=None)
    cell_areas: Optional[np.ndarray] = field(default=None)

    @property
    def n_cells(self) -> int:
        return len(self.points)


def calculate_spacing(width: float, height: float, cells_desired: int) -> float:
    """Lattice step giving roughly ``cells_desired`` cells on the canvas."""
    return round(math.sqrt(width * height / cells_desired), 2)


def lattice_size(width: float, height: float, spacing: float) -> tuple:
    """Number of lattice columns and rows for a spacing."""
    radius = spacing / 2
    cells_x = int((width + radius - 1e-10) / spacing)
    cells_y = int((height + radius - 1e-10) / spacing)
    return max(cells_x, 1), max(cells_y, 1)


def get_jittered_grid(width: float, height: float, spacing: float, prng) -> np.ndarray:
    """
    Generate jittered square grid points.

    Lattice points start half a step from the corner and move by up to 90%
    of half a step in each axis, so neighbouring points never swap places.

    Args:
        width: Grid width
        height: Grid height
        spacing: Distance between grid points
        prng: Seeded generator

    Returns:
        Array of [x, y] point coordinates, row-major
    """
    radius = spacing / 2
    jittering = radius * 0.9
    double_jittering = jittering * 2
    cells_x, cells_y = lattice_size(width, height, spacing)

    def jitter():
        return prng.random() * double_jittering - jittering

    points = np.empty((cells_x * cells_y, 2), dtype=np.float64)
    i = 0
    for row in range(cells_y):
        y = radius + row * spacing
        for col in range(cells_x):
            x = radius + col * spacing
            points[i, 0] = min(round(x + jitter(), 2), width)
            points[i, 1] = min(round(y + jitter(), 2), height)
            i += 1

    return points


def get_boundary_points(width: float, height: float, spacing: float) -> np.ndarray:
    """
    Generate boundary points for pseudo-clipping Voronoi cells.

    A sparse ring just outside the canvas keeps outer cells finite.

    Args:
        width: Grid width
        height: Grid height
        spacing: Base spacing for points

    Returns:
        Array of boundary point coordinates
    """
    offset = round(-1 * spacing)
    b_spacing = spacing * 2
    w = width - offset * 2
    h = height - offset * 2

    number_x = max(int(np.ceil(w / b_spacing) - 1), 1)
    number_y = max(int(np.ceil(h / b_spacing) - 1), 1)

    points = []

    for i in range(number_x):
        x = int(np.ceil((w * (i + 0.5)) / number_x + offset))
        points.append([x, offset])
        points.append([x, h + offset])

    for i in range(number_y):
        y = int(np.ceil((h * (i + 0.5)) / number_y + offset))
        points.append([offset, y])
        points.append([w + offset, y])

    return np.array(points, dtype=np.float64)


def _circumcenters(coords: np.ndarray, simplices: np.ndarray) -> np.ndarray:
    """Circumcenter of every triangle; centroid where a triangle is flat."""
    a = coords[simplices[:, 0]]
    b = coords[simplices[:, 1]]
    c = coords[simplices[:, 2]]
    ax, ay = a[:, 0], a[:, 1]
    bx, by = b[:, 0], b[:, 1]
    cx, cy = c[:, 0], c[:, 1]

    d = 2 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
    a2 = ax * ax + ay * ay
    b2 = bx * bx + by * by
    c2 = cx * cx + cy * cy

    flat = np.abs(d) < 1e-12
    safe_d = np.where(flat, 1.0, d)
    ux = (a2 * (by - cy) + b2 * (cy - ay) + c2 * (ay - by)) / safe_d
    uy = (a2 * (cx - bx) + b2 * (ax - cx) + c2 * (bx - ax)) / safe_d

    centers = np.column_stack([ux, uy])
    if flat.any():
        centers[flat] = (a[flat] + b[flat] + c[flat]) / 3
    return centers


def build_voronoi(points: np.ndarray, boundary_points: np.ndarray) -> Dict[str, object]:
    """
    Build the Voronoi dual of the Delaunay triangulation of ``points``.

    Vertex ``t`` is the circumcenter of triangle ``t``. Its neighbour ``k``
    is the triangle across the edge between its cells ``k`` and ``k + 1``.

    Args:
        points: Interior points, one per cell
        boundary_points: Clipping ring, never turned into cells

    Returns:
        Dict with cell_neighbors, cell_vertices, cell_border_flags,
        vertex_coordinates, vertex_neighbors, vertex_cells

    Raises:
        GeometryDegeneracy: if the points cannot be triangulated
    """
    n = len(points)
    if n < 3 or len(np.unique(points, axis=0)) < 3:
        raise GeometryDegeneracy(f"Need at least 3 distinct points, got {n}")

    all_points = np.vstack([points, boundary_points]) if len(boundary_points) else points

    try:
        tri = Delaunay(all_points)
    except (QhullError, ValueError) as e:
        raise GeometryDegeneracy(f"Triangulation failed: {e}") from e

    if len(tri.coplanar) and np.any(tri.coplanar[:, 0] < n):
        raise GeometryDegeneracy("Duplicate or coplanar points left cells without triangles")

    simplices = tri.simplices.astype(np.int64)
    vertex_coordinates = np.floor(_circumcenters(all_points, simplices))

    # neighbors[t][k] is opposite corner k, i.e. across edge (k+1, k+2)
    nb = tri.neighbors
    vertex_neighbors = np.column_stack([nb[:, 2], nb[:, 0], nb[:, 1]]).astype(np.int64)
    vertex_cells = simplices

    # Cells: triangles around each interior point, ordered by angle
    incident: List[List[int]] = [[] for _ in range(n)]
    for t, corners in enumerate(simplices):
        for p in corners:
            if p < n:
                incident[p].append(t)

    centroids = all_points[simplices].mean(axis=1)
    cell_vertices: List[List[int]] = []
    for i in range(n):
        tris = incident[i]
        px, py = all_points[i]
        tris.sort(key=lambda t: math.atan2(centroids[t, 1] - py, centroids[t, 0] - px))
        cell_vertices.append(tris)

    indptr, indices = tri.vertex_neighbor_vertices
    cell_neighbors: List[List[int]] = []
    border_flags = np.zeros(n, dtype=np.uint8)
    for i in range(n):
        adjacent = indices[indptr[i]:indptr[i + 1]]
        if np.any(adjacent >= n):
            border_flags[i] = 1
        cell_neighbors.append(sorted(int(c) for c in adjacent if c < n))

    return {
        "cell_neighbors": cell_neighbors,
        "cell_vertices": cell_vertices,
        "cell_border_flags": border_flags,
        "vertex_coordinates": vertex_coordinates,
        "vertex_neighbors": vertex_neighbors,
        "vertex_cells": vertex_cells,
    }


def validate_grid_config(config: GridConfig, max_cells: int = MAX_CELLS) -> None:
    """Raise ConfigurationError for dimensions or counts that cannot form a mesh."""
    if config.width <= 0 or config.height <= 0:
        raise ConfigurationError(
            f"Canvas must have positive size, got {config.width}x{config.height}"
        )
    if config.cells_desired < 4:
        raise ConfigurationError(f"Need at least 4 cells, got {config.cells_desired}")
    if config.cells_desired > max_cells:
        raise ConfigurationError(
            f"At most {max_cells} cells are supported, got {config.cells_desired}"
        )


def generate_voronoi_graph(config: GridConfig, prng: Union[AleaPRNG, str, None] = None,
                           max_cells: int = MAX_CELLS) -> VoronoiGraph:
    """
    Generate the grid mesh.

    Args:
        config: Grid configuration
        prng: Seeded generator, or a seed string to build one from
        max_cells: Upper bound on ``config.cells_desired``

    Returns:
        Complete Voronoi graph with zeroed heights
    """
    validate_grid_config(config, max_cells)

    if prng is None or isinstance(prng, str):
        prng = AleaPRNG(prng or "default")
    seed = str(getattr(prng, "seed", ""))

    logger.info("Generating Voronoi graph",
                width=config.width, height=config.height,
                cells_desired=config.cells_desired)

    spacing = calculate_spacing(config.width, config.height, config.cells_desired)
    if spacing <= 0:
        raise ConfigurationError("Cell spacing rounds to zero; use fewer cells or a larger canvas")

    cells_x, cells_y = lattice_size(config.width, config.height, spacing)
    points = get_jittered_grid(config.width, config.height, spacing, prng)
    boundary = get_boundary_points(config.width, config.height, spacing)

    mesh = build_voronoi(points, boundary)

    graph = VoronoiGraph(
        spacing=spacing,
        cells_desired=config.cells_desired,
        graph_width=config.width,
        graph_height=config.height,
        seed=seed,
        boundary_points=boundary,
        points=points,
        cells_x=cells_x,
        cells_y=cells_y,
        heights=np.zeros(len(points), dtype=np.uint8),
        **mesh,
    )

    logger.info("Voronoi graph generated",
                cells=len(points), vertices=len(graph.vertex_coordinates),
                spacing=spacing, cells_x=cells_x, cells_y=cells_y)
    return graph


def find_grid_cell(x: float, y: float, graph: VoronoiGraph) -> int:
    """Lattice cell containing a canvas point."""
    row = int(math.floor(min(y / graph.spacing, graph.cells_y - 1)))
    col = int(math.floor(min(x / graph.spacing, graph.cells_x - 1)))
    return max(row, 0) * graph.cells_x + max(col, 0)
