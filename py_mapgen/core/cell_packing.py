"""
Cell packing (regraph).

Rebuilds the mesh over the cells that matter for hydrology and biomes:
1. Drops water cells that are not next to land
2. Adds intermediate points along coastlines
3. Triangulates the kept points again with the same boundary ring

The packed mesh keeps, for every cell, the grid cell it came from so that
grid layers such as temperature and precipitation can be read back.
"""

import numpy as np
import structlog

from .features import LAND_COAST, WATER_COAST
from .polygons import polygon_area
from .voronoi_graph import VoronoiGraph, build_voronoi

logger = structlog.get_logger()

MAX_CELL_AREA = 65535


def calculate_cell_areas(graph: VoronoiGraph) -> np.ndarray:
    """Absolute polygon area of every cell, capped to fit 16 bits."""
    areas = np.zeros(graph.n_cells, dtype=np.uint16)
    coords = graph.vertex_coordinates
    for i, vertices in enumerate(graph.cell_vertices):
        if len(vertices) < 3:
            continue
        area = abs(polygon_area(coords[vertices]))
        areas[i] = min(int(round(area)), MAX_CELL_AREA)
    return areas


def regraph(graph: VoronoiGraph) -> VoronoiGraph:
    """
    Create the packed mesh from a classified grid.

    Args:
        graph: Grid with heights, ``distance_field`` and features populated

    Returns:
        New packed VoronoiGraph with ``grid_indices`` and ``cell_areas`` set

    Raises:
        ValueError: if the grid has not been classified yet
    """
    logger.info("Starting reGraph operation", original_cells=graph.n_cells)

    if graph.distance_field is None:
        raise ValueError("graph.distance_field not found. Call Features.markup_grid() first!")

    cell_types = graph.distance_field
    spacing_squared = graph.spacing ** 2

    new_points = []
    new_heights = []
    new_grid_indices = []

    for i in range(graph.n_cells):
        cell_type = cell_types[i]
        height = graph.heights[i]

        # deep water, lakes included, keeps only its coastal ring
        if height < 20 and cell_type != WATER_COAST:
            continue

        x, y = graph.points[i]
        new_points.append((x, y))
        new_heights.append(height)
        new_grid_indices.append(i)

        if cell_type != LAND_COAST and cell_type != WATER_COAST:
            continue
        if graph.cell_border_flags[i]:
            continue

        for e in graph.cell_neighbors[i]:
            if i > e or cell_types[e] != cell_type:
                continue
            nx, ny = graph.points[e]
            dist_squared = (y - ny) ** 2 + (x - nx) ** 2
            if dist_squared < spacing_squared:
                continue
            new_points.append((round((x + nx) / 2, 1), round((y + ny) / 2, 1)))
            new_heights.append(height)
            new_grid_indices.append(i)

    logger.info("Points collected for packing",
                original=graph.n_cells,
                packed=len(new_points),
                reduction_pct=round((1 - len(new_points) / graph.n_cells) * 100, 1))

    points = np.array(new_points, dtype=np.float64)
    mesh = build_voronoi(points, graph.boundary_points)

    packed = VoronoiGraph(
        spacing=graph.spacing,
        cells_desired=graph.cells_desired,
        graph_width=graph.graph_width,
        graph_height=graph.graph_height,
        seed=graph.seed,
        boundary_points=graph.boundary_points,
        points=points,
        cells_x=graph.cells_x,
        cells_y=graph.cells_y,
        heights=np.array(new_heights, dtype=np.uint8),
        grid_indices=np.array(new_grid_indices, dtype=np.int64),
        **mesh,
    )
    packed.cell_areas = calculate_cell_areas(packed)

    logger.info("reGraph complete",
                packed_cells=packed.n_cells,
                coastal_points_added=packed.n_cells - len(np.unique(packed.grid_indices)))
    return packed
