"""
Boundary extraction over the vertex graph.

Every contour the pipeline emits (coastlines, lake shores, ocean depth
layers, elevation bands, biome regions) is found the same way: start at a
vertex on the boundary of a region and march along vertices whose flanking
cells disagree about membership until the chain closes.
"""

from typing import Callable, List, Optional, Sequence

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon

MAX_CHAIN_STEPS = 20000


def connect_vertices(
    graph,
    start: int,
    outside: Callable[[int], bool],
    visit: Optional[Callable[[int], None]] = None,
    max_steps: int = MAX_CHAIN_STEPS,
) -> List[int]:
    """
    Walk the boundary of a cell region starting from a boundary vertex.

    Args:
        graph: VoronoiGraph providing vertex_cells and vertex_neighbors
        start: Vertex on the region boundary
        outside: Predicate telling whether a cell id (possibly a boundary
            point id >= n) lies outside the region
        visit: Called with every cell adjacent to a walked vertex
        max_steps: Hard cap on the chain length

    Returns:
        Vertex ids in walking order; the start vertex is not repeated
    """
    chain: List[int] = []
    current = start

    for step in range(max_steps):
        if step and current == start:
            break
        prev = chain[-1] if chain else -1
        chain.append(current)

        cells = graph.vertex_cells[current]
        if visit is not None:
            for c in cells:
                visit(int(c))

        c0 = outside(int(cells[0]))
        c1 = outside(int(cells[1]))
        c2 = outside(int(cells[2]))

        v = graph.vertex_neighbors[current]
        if v[0] != -1 and v[0] != prev and c0 != c1:
            current = int(v[0])
        elif v[1] != -1 and v[1] != prev and c1 != c2:
            current = int(v[1])
        elif v[2] != -1 and v[2] != prev and c0 != c2:
            current = int(v[2])

        if current == chain[-1]:
            break

    return chain


def find_boundary_vertex(graph, cell: int, outside: Callable[[int], bool]) -> int:
    """First vertex of ``cell`` touching a cell outside the region, or -1."""
    for v in graph.cell_vertices[cell]:
        if any(outside(int(c)) for c in graph.vertex_cells[v]):
            return v
    return -1


def polygon_area(points: Sequence[Sequence[float]]) -> float:
    """Signed shoelace area of a closed ring (first point not repeated)."""
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(np.dot(np.roll(x, 1), y) - np.dot(x, np.roll(y, 1))) / 2


def clip_polygon(points: Sequence[Sequence[float]], width: float, height: float,
                 digits: Optional[int] = None) -> List[List[float]]:
    """
    Clip a ring to the canvas rectangle.

    Self-touching rings are repaired first. When clipping splits the ring,
    the largest piece is kept.

    Args:
        points: Ring coordinates
        width: Canvas width
        height: Canvas height
        digits: Round output coordinates when given

    Returns:
        Clipped exterior ring as a list of [x, y], empty if nothing remains
    """
    if len(points) < 3:
        return []

    polygon = Polygon(points)
    if not polygon.is_valid:
        polygon = shapely.make_valid(polygon)

    clipped = shapely.clip_by_rect(polygon, 0, 0, width, height)
    if clipped.is_empty:
        return []

    if not isinstance(clipped, Polygon):
        parts = [g for g in getattr(clipped, "geoms", []) if isinstance(g, (Polygon, MultiPolygon))]
        polys = []
        for part in parts:
            polys.extend(part.geoms if isinstance(part, MultiPolygon) else [part])
        if not polys:
            return []
        clipped = max(polys, key=lambda p: p.area)

    coords = list(clipped.exterior.coords)[:-1]
    if digits is not None:
        return [[round(x, digits), round(y, digits)] for x, y in coords]
    return [[x, y] for x, y in coords]


def chain_coordinates(graph, chain: Sequence[int]) -> List[List[float]]:
    return [graph.vertex_coordinates[v].tolist() for v in chain]
