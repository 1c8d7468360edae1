"""
Geographic features detection and markup.

This module handles:
- Ocean/land classification based on height
- Lake detection in deep depressions and opening of near-sea lakes
- Coastline detection and boundary polygons
- Island and water body size groups
- Distance field calculation
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import structlog

from .polygons import (
    chain_coordinates,
    clip_polygon,
    connect_vertices,
    find_boundary_vertex,
    polygon_area,
)

logger = structlog.get_logger()

# Feature type constants
DEEPER_LAND = 3
LANDLOCKED = 2
LAND_COAST = 1
UNMARKED = 0
WATER_COAST = -1
DEEP_WATER = -2

# Max height a lake can breach to reach the ocean
LAKE_BREACH_LIMIT = 22

OCEAN_LAYER_LIMITS = (-6, -3, -1)


@dataclass
class Feature:
    """Represents a geographic feature (ocean, lake, island)."""

    id: int
    type: str  # "ocean", "lake", "island"
    land: bool
    border: bool  # touches map edge
    cells: int  # total cells in feature
    first_cell: int
    vertices: List[int] = field(default_factory=list)
    polygon: List[List[float]] = field(default_factory=list)
    area: float = 0.0
    group: str = ""


@dataclass
class Lake(Feature):
    """Lake feature with hydrology properties."""

    height: float = 0.0  # water surface
    shoreline: List[int] = field(default_factory=list)
    flux: float = 0.0
    evaporation: float = 0.0
    temperature: float = 0.0
    closed: bool = False
    inlets: List[int] = field(default_factory=list)
    outlet: int = 0  # river id, 0 if none
    out_cell: int = -1  # shoreline cell the outlet river starts from
    river: int = 0  # river flowing into the lake with the largest flux
    enter_flux: float = 0.0


class Features:
    """Handles geographic feature detection and markup."""

    def __init__(self, graph):
        """
        Initialize Features with a VoronoiGraph.

        Args:
            graph: VoronoiGraph instance with populated heights
        """
        self.graph = graph
        self.n_cells = graph.n_cells
        self.border_cells = graph.cell_border_flags

    @staticmethod
    def _next_unmarked(feature_ids: np.ndarray, start: int) -> int:
        unmarked = np.flatnonzero(feature_ids[start:] == UNMARKED)
        return int(start + unmarked[0]) if len(unmarked) else -1

    def markup_grid(self):
        """
        Mark grid features (ocean, lakes, islands) and the water distance field.

        Results are stored on the graph as ``distance_field``,
        ``feature_ids`` and ``features`` (index 0 is reserved).
        """
        graph = self.graph
        heights = graph.heights
        self.distance_field = np.zeros(self.n_cells, dtype=np.int8)
        self.feature_ids = np.zeros(self.n_cells, dtype=np.uint16)
        self.features: List[Optional[Feature]] = [None]

        first_cell = 0
        feature_id = 1
        while first_cell != -1:
            self.feature_ids[first_cell] = feature_id
            land = heights[first_cell] >= 20
            border = False
            cell_count = 0

            # DFS over same-class cells
            stack = [first_cell]
            while stack:
                cell_id = stack.pop()
                cell_count += 1
                if not border and self.border_cells[cell_id]:
                    border = True

                for neighbor_id in graph.cell_neighbors[cell_id]:
                    is_neib_land = heights[neighbor_id] >= 20
                    if land == is_neib_land and self.feature_ids[neighbor_id] == UNMARKED:
                        self.feature_ids[neighbor_id] = feature_id
                        stack.append(neighbor_id)
                    elif land and not is_neib_land:
                        self.distance_field[cell_id] = LAND_COAST
                        self.distance_field[neighbor_id] = WATER_COAST

            if land:
                feature_type = "island"
            elif border:
                feature_type = "ocean"
            else:
                feature_type = "lake"

            self.features.append(Feature(
                id=feature_id,
                type=feature_type,
                land=bool(land),
                border=border,
                cells=cell_count,
                first_cell=first_cell,
            ))

            first_cell = self._next_unmarked(self.feature_ids, first_cell)
            feature_id += 1

        self._markup_distance_field(self.distance_field, graph.cell_neighbors,
                                    start=DEEP_WATER, increment=-1, limit=-10)

        graph.distance_field = self.distance_field
        graph.feature_ids = self.feature_ids
        graph.features = self.features

        logger.info("Grid features marked",
                    features=len(self.features) - 1,
                    oceans=sum(1 for f in self.features[1:] if f.type == "ocean"),
                    lakes=sum(1 for f in self.features[1:] if f.type == "lake"),
                    islands=sum(1 for f in self.features[1:] if f.type == "island"))

    @staticmethod
    def _markup_distance_field(distance_field: np.ndarray, neighbors: List[List[int]],
                               start: int, increment: int, limit: int = 127):
        """
        Expand rings of increasing distance from the coast.

        Args:
            distance_field: Cell types, modified in place
            neighbors: Cell adjacency
            start: First ring value
            increment: Step between rings (sign gives land or water)
            limit: Ring value at which expansion stops
        """
        distance = start
        prev = distance - increment
        frontier = np.flatnonzero(distance_field == prev)

        while len(frontier) and distance != limit:
            marked = []
            for cell_id in frontier:
                for neighbor_id in neighbors[cell_id]:
                    if distance_field[neighbor_id] == UNMARKED:
                        distance_field[neighbor_id] = distance
                        marked.append(neighbor_id)
            frontier = marked
            distance += increment

    def add_lakes_in_deep_depressions(self, elevation_limit: float = 20):
        """
        Turn land depressions that cannot drain to the sea into lakes.

        A candidate is a non-border land cell no higher than its lowest
        neighbour. If no water cell is reachable without climbing
        ``elevation_limit`` above it, the cell and its equal-height
        neighbours become a new lake.

        Args:
            elevation_limit: Extra height water may climb to escape;
                80 or more disables lake creation
        """
        if elevation_limit >= 80:
            return

        graph = self.graph
        heights = graph.heights
        added = 0

        for i in range(self.n_cells):
            if self.border_cells[i] or heights[i] < 20:
                continue

            neighbors = graph.cell_neighbors[i]
            if not neighbors or heights[i] > min(heights[n] for n in neighbors):
                continue

            deep = True
            threshold = int(heights[i]) + elevation_limit
            stack = [i]
            checked = {i}

            while deep and stack:
                q = stack.pop()
                for n in graph.cell_neighbors[q]:
                    if n in checked:
                        continue
                    if heights[n] >= threshold:
                        continue
                    if heights[n] < 20:
                        deep = False
                        break
                    checked.add(n)
                    stack.append(n)

            if deep:
                lake_cells = [i] + [n for n in neighbors if heights[n] == heights[i]]
                self._add_lake(lake_cells)
                added += 1

        if added:
            logger.info("Lakes added in deep depressions", lakes=added, elevation_limit=elevation_limit)

    def _add_lake(self, lake_cells: List[int]):
        """Add a lake feature from given cells."""
        feature_id = len(self.features)
        lake_set = set(lake_cells)

        for cell_id in lake_cells:
            self.features[self.feature_ids[cell_id]].cells -= 1
            self.graph.heights[cell_id] = 19
            self.distance_field[cell_id] = WATER_COAST
            self.feature_ids[cell_id] = feature_id
            for n in self.graph.cell_neighbors[cell_id]:
                if n not in lake_set:
                    self.distance_field[n] = LAND_COAST

        self.features.append(Feature(
            id=feature_id,
            type="lake",
            land=False,
            border=False,
            cells=len(lake_cells),
            first_cell=lake_cells[0],
        ))

    def open_near_sea_lakes(self, template_name: str = ""):
        """
        Breach lakes separated from the ocean by a single low coastal cell.

        Atolls keep their lagoon closed.

        Args:
            template_name: Heightmap template key or display name
        """
        if template_name.lower() == "atoll":
            return

        if not any(f is not None and f.type == "lake" for f in self.features):
            return

        graph = self.graph
        heights = graph.heights
        breached = 0

        for i in range(self.n_cells):
            lake = self.features[self.feature_ids[i]]
            if lake is None or lake.type != "lake":
                continue

            for c in graph.cell_neighbors[i]:
                if self.distance_field[c] != LAND_COAST or heights[c] > LAKE_BREACH_LIMIT:
                    continue

                ocean_id = next(
                    (self.feature_ids[n] for n in graph.cell_neighbors[c]
                     if self.features[self.feature_ids[n]] is not None
                     and self.features[self.feature_ids[n]].type == "ocean"),
                    None,
                )
                if ocean_id is None:
                    continue

                self._remove_lake(c, lake.id, int(ocean_id))
                breached += 1
                break

        if breached:
            logger.info("Near-sea lakes opened", lakes=breached)

    def _remove_lake(self, threshold_cell: int, lake_id: int, ocean_id: int):
        """Convert a lake to ocean by breaching at threshold cell."""
        graph = self.graph
        island = self.features[self.feature_ids[threshold_cell]]
        island.cells -= 1

        graph.heights[threshold_cell] = 19
        self.distance_field[threshold_cell] = WATER_COAST
        self.feature_ids[threshold_cell] = ocean_id

        for c in graph.cell_neighbors[threshold_cell]:
            if graph.heights[c] >= 20:
                self.distance_field[c] = LAND_COAST

        self.feature_ids[self.feature_ids == lake_id] = ocean_id

        ocean = self.features[ocean_id]
        lake = self.features[lake_id]
        ocean.cells += lake.cells + 1
        lake.type = "ocean"
        lake.cells = 0

    def markup_pack(self, packed_graph, grid_cells: int):
        """
        Mark packed features and calculate additional properties.

        Sets ``distance_field`` (coast distance for land and water),
        ``feature_ids``, ``haven``, ``harbor`` and ``features`` on the
        packed graph. Lakes are created as :class:`Lake`.

        Args:
            packed_graph: Packed VoronoiGraph from regraph()
            grid_cells: Cell count of the grid, used for size groups
        """
        n_cells = packed_graph.n_cells
        heights = packed_graph.heights
        neighbors = packed_graph.cell_neighbors
        border_flags = packed_graph.cell_border_flags

        distance_field = np.zeros(n_cells, dtype=np.int8)
        feature_ids = np.zeros(n_cells, dtype=np.uint16)
        haven = np.full(n_cells, -1, dtype=np.int64)
        harbor = np.zeros(n_cells, dtype=np.uint8)
        features: List[Optional[Feature]] = [None]

        first_cell = 0
        feature_id = 1
        while first_cell != -1:
            feature_ids[first_cell] = feature_id
            land = heights[first_cell] >= 20
            border = False
            total_cells = 1

            stack = [first_cell]
            while stack:
                cell_id = stack.pop()
                if border_flags[cell_id]:
                    border = True

                for neighbor_id in neighbors[cell_id]:
                    is_neib_land = heights[neighbor_id] >= 20

                    if land and not is_neib_land:
                        distance_field[cell_id] = LAND_COAST
                        distance_field[neighbor_id] = WATER_COAST
                        if haven[cell_id] < 0:
                            self._define_haven(packed_graph, cell_id, haven, harbor)
                    elif land and is_neib_land:
                        if distance_field[neighbor_id] == UNMARKED and distance_field[cell_id] == LAND_COAST:
                            distance_field[neighbor_id] = LANDLOCKED
                        elif distance_field[cell_id] == UNMARKED and distance_field[neighbor_id] == LAND_COAST:
                            distance_field[cell_id] = LANDLOCKED

                    if feature_ids[neighbor_id] == UNMARKED and land == is_neib_land:
                        stack.append(neighbor_id)
                        feature_ids[neighbor_id] = feature_id
                        total_cells += 1

            feature_type = "island" if land else ("ocean" if border else "lake")
            cls = Lake if feature_type == "lake" else Feature
            features.append(cls(
                id=feature_id,
                type=feature_type,
                land=bool(land),
                border=border,
                cells=total_cells,
                first_cell=first_cell,
            ))

            first_cell = self._next_unmarked(feature_ids, first_cell)
            feature_id += 1

        self._markup_distance_field(distance_field, neighbors, start=DEEPER_LAND, increment=1, limit=127)
        self._markup_distance_field(distance_field, neighbors, start=DEEP_WATER, increment=-1, limit=-10)

        packed_graph.distance_field = distance_field
        packed_graph.feature_ids = feature_ids
        packed_graph.haven = haven
        packed_graph.harbor = harbor
        packed_graph.features = features

        for feature in features[1:]:
            self._define_feature_shape(packed_graph, feature)
        self.define_groups(packed_graph, grid_cells)

        logger.info("Packed features marked",
                    features=len(features) - 1,
                    coastal_cells=int(np.sum(distance_field == LAND_COAST)))

    def _define_haven(self, packed_graph, cell_id: int, haven: np.ndarray, harbor: np.ndarray):
        """Define haven (closest water cell) and harbor (water neighbor count)."""
        water_cells = [n for n in packed_graph.cell_neighbors[cell_id]
                       if packed_graph.heights[n] < 20]
        if not water_cells:
            return

        x, y = packed_graph.points[cell_id]
        water_points = packed_graph.points[water_cells]
        distances = (water_points[:, 0] - x) ** 2 + (water_points[:, 1] - y) ** 2
        haven[cell_id] = water_cells[int(np.argmin(distances))]
        harbor[cell_id] = len(water_cells)

    def _define_feature_shape(self, packed_graph, feature: Feature):
        """Boundary vertices, clipped polygon and area of a feature."""
        n = packed_graph.n_cells
        feature_ids = packed_graph.feature_ids

        if feature.type == "ocean":
            cells = feature_ids == feature.id
            feature.area = float(packed_graph.cell_areas[cells].sum()) if packed_graph.cell_areas is not None else 0.0
            return

        def outside(c: int) -> bool:
            return c >= n or feature_ids[c] != feature.id

        start = find_boundary_vertex(packed_graph, feature.first_cell, outside)
        if start < 0:
            return

        chain = connect_vertices(packed_graph, start, outside)
        feature.vertices = chain
        coords = chain_coordinates(packed_graph, chain)
        feature.area = abs(polygon_area(coords))
        feature.polygon = clip_polygon(coords, packed_graph.graph_width, packed_graph.graph_height, digits=1)

    def define_groups(self, packed_graph, grid_cells: int):
        """Assign relative-size groups to every packed feature."""
        for feature in packed_graph.features[1:]:
            if feature.type == "ocean":
                if feature.cells > grid_cells / 25:
                    feature.group = "ocean"
                elif feature.cells > grid_cells / 100:
                    feature.group = "sea"
                else:
                    feature.group = "gulf"
            elif feature.type == "lake":
                feature.group = "freshwater"
            else:
                feature.group = self._island_group(packed_graph, feature, grid_cells)

    @staticmethod
    def _island_group(packed_graph, feature: Feature, grid_cells: int) -> str:
        feature_ids = packed_graph.feature_ids
        features = packed_graph.features
        if not feature.border:
            cells = np.flatnonzero(feature_ids == feature.id)
            shore = {int(feature_ids[n]) for c in cells for n in packed_graph.cell_neighbors[c]
                     if packed_graph.heights[n] < 20}
            if shore and all(features[f].type == "lake" for f in shore):
                return "lake_island"
        if feature.cells > grid_cells / 10:
            return "continent"
        if feature.cells > grid_cells / 1000:
            return "island"
        return "isle"


def define_ocean_layers(graph, limits=OCEAN_LAYER_LIMITS) -> Dict[int, List[List[List[float]]]]:
    """
    Contours of the water distance bands of the grid.

    Args:
        graph: Grid with ``distance_field`` populated
        limits: Distance values to outline

    Returns:
        Mapping of distance value to a list of clipped rings
    """
    n = graph.n_cells
    types = graph.distance_field
    used = np.zeros(n, dtype=bool)
    layers: Dict[int, List[List[List[float]]]] = {}

    for i in range(n):
        t = int(types[i])
        if t > 0 or used[i] or t not in limits:
            continue

        # land (0 or positive) counts as shallower than any water band
        def outside(c: int, t=t) -> bool:
            return c >= n or (types[c] < 0 and types[c] < t)

        start = find_boundary_vertex(graph, i, outside)
        if start < 0:
            continue
        used[i] = True

        def visit(c: int, t=t):
            if c < n and types[c] == t:
                used[c] = True

        chain = connect_vertices(graph, start, outside, visit=visit, max_steps=10000)
        if len(chain) < 3:
            continue

        relax = 1 + t * -2
        relaxed = [v for k, v in enumerate(chain)
                   if k % relax == 0 or any(c >= n for c in graph.vertex_cells[v])]
        if len(relaxed) < 3:
            continue

        ring = clip_polygon(chain_coordinates(graph, relaxed), graph.graph_width, graph.graph_height, digits=0)
        if ring:
            layers.setdefault(t, []).append(ring)

    return layers
