"""
Lake properties on the packed graph.

Lakes are created by feature markup; these helpers give them a surface
height, a shoreline, climate data and, once rivers exist, a group.
"""

from typing import Dict, Iterator, List, Optional, Set

import numpy as np
import structlog

from ..utils.numbers import round_number
from .features import Lake

logger = structlog.get_logger()

FROZEN_TEMPERATURE = -3
LAVA_HEIGHT = 60
# Elevation limit at which every lake is allowed to drain
OPEN_LAKES_LIMIT = 80


def iter_lakes(graph) -> Iterator[Lake]:
    """Lake features of a packed graph."""
    for feature in graph.features or []:
        if isinstance(feature, Lake) and feature.type == "lake":
            yield feature


def get_shoreline(graph, lake: Lake) -> List[int]:
    """Land cells around the vertices of a lake, in first-seen order."""
    n = graph.n_cells
    seen: Dict[int, None] = {}
    for v in lake.vertices:
        for c in graph.vertex_cells[v]:
            c = int(c)
            if c < n and graph.heights[c] >= 20:
                seen.setdefault(c, None)
    return list(seen)


def prepare_lake_data(graph, heights: np.ndarray, lake_elevation_limit: float) -> None:
    """
    Reset lake hydrology fields and find shoreline, surface and closed flag.

    A lake is closed when no ocean, and no lake with a lower surface, can be
    reached from its lowest shoreline cell without climbing above
    ``surface + lake_elevation_limit``.

    Args:
        graph: Packed graph after feature markup
        heights: Routing heights
        lake_elevation_limit: Extra height lake water may climb to drain
    """
    lakes = list(iter_lakes(graph))

    for lake in lakes:
        lake.flux = 0.0
        lake.inlets = []
        lake.outlet = 0
        lake.river = 0
        lake.enter_flux = 0.0
        lake.out_cell = -1
        lake.closed = False

        shoreline = get_shoreline(graph, lake)
        shoreline.sort(key=lambda c: heights[c])
        lake.shoreline = shoreline
        lake.height = float(heights[shoreline[0]]) - 0.1 if shoreline else 19.9

    if lake_elevation_limit >= OPEN_LAKES_LIMIT:
        return

    features = graph.features
    feature_ids = graph.feature_ids
    for lake in lakes:
        if not lake.shoreline:
            lake.closed = True
            continue

        start = lake.shoreline[0]
        threshold = lake.height + lake_elevation_limit
        stack = [start]
        checked: Set[int] = {start}
        deep = True

        while deep and stack:
            q = stack.pop()
            for n in graph.cell_neighbors[q]:
                if n in checked or heights[n] >= threshold:
                    continue
                if heights[n] < 20:
                    other = features[feature_ids[n]]
                    if other.type == "ocean" or (isinstance(other, Lake) and lake.height > other.height):
                        deep = False
                        break
                checked.add(n)
                stack.append(n)

        lake.closed = deep

    closed = sum(1 for lake in lakes if lake.closed)
    if closed:
        logger.info("Closed lakes found", closed=closed, lakes=len(lakes))


def set_lake_climate_data(graph, heights: np.ndarray, temperatures: np.ndarray,
                          precipitation: np.ndarray, height_exponent: float) -> Dict[int, List[Lake]]:
    """
    Lake flux, temperature, evaporation and outlet cell.

    Args:
        graph: Packed graph with ``grid_indices``
        heights: Routing heights
        temperatures: Grid temperatures
        precipitation: Grid precipitation
        height_exponent: Exponent converting height to altitude

    Returns:
        Mapping of outlet cell to the open lakes draining through it
    """
    grid_indices = graph.grid_indices
    out_cells: Dict[int, List[Lake]] = {}

    for lake in iter_lakes(graph):
        shore_grid = grid_indices[lake.shoreline] if lake.shoreline else np.array([], dtype=np.int64)
        lake.flux = float(precipitation[shore_grid].sum()) if len(shore_grid) else 0.0
        lake.temperature = round_number(float(temperatures[shore_grid].mean()), 1) if len(shore_grid) else 0.0

        altitude = max(lake.height - 18, 0) ** height_exponent
        # Penman formula, roughly 1..11
        lake.evaporation = ((700 * (lake.temperature + 0.006 * altitude)) / 50 + 75) / (80 - lake.temperature)

        if lake.closed or not lake.shoreline:
            continue

        lake.out_cell = min(lake.shoreline, key=lambda c: heights[c])
        out_cells.setdefault(lake.out_cell, []).append(lake)

    return out_cells


def cleanup_lake_data(graph, river_ids: Set[int]) -> None:
    """Drop references to rivers that were discarded and round surfaces."""
    for lake in iter_lakes(graph):
        lake.river = 0
        lake.enter_flux = 0.0
        lake.height = round_number(lake.height, 3)
        lake.inlets = [r for r in lake.inlets if r in river_ids]
        if lake.outlet not in river_ids:
            lake.outlet = 0


def get_lake_group(lake: Lake) -> str:
    if lake.temperature < FROZEN_TEMPERATURE:
        return "frozen"
    if lake.height > LAVA_HEIGHT:
        return "lava"
    if not lake.inlets and not lake.outlet and lake.evaporation > lake.flux * 4:
        return "dry"
    if not lake.outlet and lake.evaporation > lake.flux:
        return "salt"
    return "freshwater"


def define_lake_groups(graph) -> Dict[str, int]:
    """Assign the drawing group of every lake; returns counts per group."""
    counts: Dict[str, int] = {}
    for lake in iter_lakes(graph):
        lake.group = get_lake_group(lake)
        counts[lake.group] = counts.get(lake.group, 0) + 1
    if counts:
        logger.info("Lake groups defined", **counts)
    return counts


def find_lake(graph, cell: int) -> Optional[Lake]:
    feature = graph.features[graph.feature_ids[cell]]
    return feature if isinstance(feature, Lake) and feature.type == "lake" else None
