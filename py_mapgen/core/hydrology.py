"""
Hydrology system for river generation and water flow simulation.

This module implements:
- Height alteration and iterative depression resolution
- Water drainage from the highest land cell down, with lake outlets
- River definition with meandering, length and width
- Confluence flux and river bed downcutting

All of it runs on the packed graph; precipitation and temperature are
read back from the grid through ``grid_indices``.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import structlog

from ..utils.numbers import round_number
from .features import Lake
from .lakes import cleanup_lake_data, iter_lakes, prepare_lake_data, set_lake_climate_data

logger = structlog.get_logger()

FLUX_FACTOR = 500
MAX_FLUX_WIDTH = 2
LENGTH_FACTOR = 200
STEP_WIDTH = 1 / LENGTH_FACTOR
LENGTH_PROGRESSION = [n / LENGTH_FACTOR for n in (1, 1, 2, 3, 5, 8, 13, 21, 34)]
MAX_PROGRESSION = LENGTH_PROGRESSION[-1]

# Marks a river leaving the canvas
OFF_MAP = -1


@dataclass
class HydrologyOptions:
    """Hydrology calculation options."""
    lake_elevation_limit: float = 20  # Height lake water may climb to drain
    resolve_depressions_steps: int = 250  # Iteration cap for depression filling
    height_exponent: float = 2.0  # Exponent converting height to altitude
    cells_desired: Optional[int] = None  # Requested cell count, scales the flux
    allow_erosion: bool = True  # Apply routing heights and downcut river beds

    min_river_flux: float = 30.0  # Minimum flux to form a river
    check_lake_fraction: float = 0.85  # Share of iterations raising lakes
    elevate_lake_fraction: float = 0.75  # Past this share stubborn lakes close
    progress_window: int = 5  # Iterations before the progress check applies
    lake_elevation_increment: float = 0.2  # Lake raise per iteration
    depression_elevation_increment: float = 0.1  # Land raise per iteration

    meandering: float = 0.5  # Base factor for river meandering
    max_downcut: int = 5
    downcut_min_height: int = 35  # Lowlands are never downcut


@dataclass
class DepressionResult:
    """Outcome of depression resolution."""
    converged: bool
    iterations: int
    remaining: int
    fallback: bool = False


@dataclass
class River:
    """Represents a river with its properties."""
    id: int
    source: int  # Source cell index
    mouth: int  # Last land cell before the river ends
    parent: int  # River this one flows into, 0 for a main stem
    cells: List[int]  # Cell indices forming the river, OFF_MAP at the canvas edge
    discharge: float  # Flux at the mouth
    length: float
    width: float
    width_factor: float
    points: List[List[float]] = field(default_factory=list)  # [x, y, flux] polyline


class Hydrology:
    """Handles water flow simulation and river generation."""

    def __init__(self, graph, temperatures: np.ndarray, precipitation: np.ndarray,
                 options: Optional[HydrologyOptions] = None):
        """
        Initialize hydrology system.

        Args:
            graph: Packed VoronoiGraph after feature markup
            temperatures: Grid temperatures
            precipitation: Grid precipitation
            options: Hydrology calculation options
        """
        self.graph = graph
        self.temperatures = temperatures
        self.precipitation = precipitation
        self.options = options or HydrologyOptions()

        n_cells = graph.n_cells
        self.flux = np.zeros(n_cells, dtype=np.float64)
        self.river_ids = np.zeros(n_cells, dtype=np.int64)
        self.confluences = np.zeros(n_cells, dtype=np.float64)

        self.heights: Optional[np.ndarray] = None  # routing heights
        self.depressions: Optional[DepressionResult] = None
        self.rivers: List[River] = []

        self._rivers_data: Dict[int, List[int]] = {}
        self._river_parents: Dict[int, int] = {}
        self._next_river = 1

    @property
    def cells_number_modifier(self) -> float:
        cells = self.options.cells_desired or self.graph.cells_desired
        return (cells / 10000) ** 0.25

    def generate_rivers(self) -> List[River]:
        """
        Run the whole hydrology stage.

        Returns:
            Rivers kept after pruning, ordered by id
        """
        logger.info("Starting river generation", cells=self.graph.n_cells)

        heights = self.alter_heights()
        prepare_lake_data(self.graph, heights, self.options.lake_elevation_limit)
        self.depressions = self.resolve_depressions(heights)
        self.drain_water()
        self.define_rivers()
        self.calculate_confluence_flux()
        cleanup_lake_data(self.graph, {river.id for river in self.rivers})

        if self.options.allow_erosion:
            self.graph.heights = np.clip(self.heights, 0, 100).astype(np.uint8)
            self.downcut_rivers()

        logger.info("River generation complete",
                    rivers=len(self.rivers),
                    converged=self.depressions.converged,
                    fallback=self.depressions.fallback)
        return self.rivers

    def alter_heights(self) -> np.ndarray:
        """
        Routing heights: land gets a small bonus growing with coast distance.

        Breaks ties on flat land so that water always finds a way downhill.
        """
        graph = self.graph
        types = graph.distance_field.astype(np.float64)
        heights = graph.heights.astype(np.float64)

        for i in range(graph.n_cells):
            if heights[i] < 20 or types[i] < 1:
                continue
            neighbors = graph.cell_neighbors[i]
            mean_type = types[neighbors].mean() if neighbors else 0.0
            heights[i] += types[i] / 100 + mean_type / 10000

        return heights

    def resolve_depressions(self, heights: np.ndarray) -> DepressionResult:
        """
        Raise depressed land cells and open lakes until everything drains.

        Cells are raised just above their lowest neighbour, lakes just above
        their lowest shoreline cell. Late in the run, lakes that still need
        raising are closed instead. When the depression count keeps growing
        the altered heights are used unchanged.

        Args:
            heights: Routing heights, modified in place

        Returns:
            DepressionResult; the heights to route with are in ``self.heights``
        """
        opts = self.options
        graph = self.graph
        original = graph.heights

        max_iterations = opts.resolve_depressions_steps
        check_lake_max_iteration = max_iterations * opts.check_lake_fraction
        elevate_lake_max_iteration = max_iterations * opts.elevate_lake_fraction

        def height(i: int) -> float:
            return self._surface_height(heights, i)

        lakes = list(iter_lakes(graph))
        land = [i for i in range(graph.n_cells)
                if heights[i] >= 20 and not graph.cell_border_flags[i]]
        land.sort(key=lambda i: heights[i])

        logger.info("Resolving depressions", lakes=len(lakes), land=len(land), steps=max_iterations)

        progress: List[int] = []
        depressions = None
        prev_depressions = None
        iterations = 0
        fallback = False

        for iteration in range(max_iterations):
            if len(progress) > opts.progress_window and sum(progress) > 0:
                heights = self.alter_heights()
                depressions = progress[0]
                fallback = True
                break

            depressions = 0
            iterations = iteration + 1

            if iteration < check_lake_max_iteration:
                for lake in lakes:
                    if lake.closed or not lake.shoreline:
                        continue

                    min_height = min(heights[s] for s in lake.shoreline)
                    if min_height >= 100 or lake.height > min_height:
                        continue

                    if iteration > elevate_lake_max_iteration:
                        for s in lake.shoreline:
                            heights[s] = original[s]
                        lake.height = min(heights[s] for s in lake.shoreline) - 1
                        lake.closed = True
                        continue

                    depressions += 1
                    lake.height = min_height + opts.lake_elevation_increment

            for i in land:
                min_height = min(height(c) for c in graph.cell_neighbors[i])
                if min_height >= 100 or heights[i] > min_height:
                    continue

                depressions += 1
                heights[i] = min_height + opts.depression_elevation_increment

            if prev_depressions is not None:
                progress.append(depressions - prev_depressions)
            prev_depressions = depressions

            if not depressions:
                break

        if depressions is None:
            depressions = self.count_depressions(heights)

        self.heights = heights
        result = DepressionResult(
            converged=depressions == 0 and not fallback,
            iterations=iterations,
            remaining=int(depressions),
            fallback=fallback,
        )

        if fallback:
            logger.warning("Depression resolution is not converging, using altered heights",
                           error="AlgorithmNonConvergence",
                           iterations=iterations,
                           remaining=result.remaining)
        elif depressions:
            logger.warning("Unresolved depressions", remaining=result.remaining, iterations=iterations)
        else:
            logger.info("Depression resolution converged", iterations=iterations)

        return result

    def _surface_height(self, heights: np.ndarray, i: int) -> float:
        """Lake surface for lake cells, routing height otherwise."""
        feature = self.graph.features[self.graph.feature_ids[i]]
        if isinstance(feature, Lake) and feature.height:
            return feature.height
        return heights[i]

    def count_depressions(self, heights: Optional[np.ndarray] = None) -> int:
        """Non-border land cells no higher than their lowest neighbour."""
        heights = self.heights if heights is None else heights
        graph = self.graph
        count = 0
        for i in range(graph.n_cells):
            if heights[i] < 20 or graph.cell_border_flags[i]:
                continue
            min_height = min(self._surface_height(heights, c) for c in graph.cell_neighbors[i])
            if min_height < 100 and heights[i] <= min_height:
                count += 1
        return count

    def _add_cell_to_river(self, cell: int, river: int) -> None:
        self._rivers_data.setdefault(river, []).append(cell)

    def _new_river(self, cell: int) -> int:
        river = self._next_river
        self._next_river += 1
        self.river_ids[cell] = river
        self._add_cell_to_river(cell, river)
        return river

    def drain_water(self) -> None:
        """
        Route precipitation from the highest land cell to the lowest.

        Every land cell adds its precipitation to the flux and passes the
        flux to its downhill cell. Flux above ``min_river_flux`` forms a
        river. Open lakes whose inflow beats evaporation drain through
        their outlet cell.
        """
        graph = self.graph
        opts = self.options
        heights = self.heights
        features = graph.features
        feature_ids = graph.feature_ids
        neighbors = graph.cell_neighbors
        grid_indices = graph.grid_indices
        flux = self.flux
        river_ids = self.river_ids

        modifier = self.cells_number_modifier
        land = [i for i in np.argsort(-heights, kind="stable") if heights[i] >= 20]
        lake_out_cells = set_lake_climate_data(graph, heights, self.temperatures,
                                               self.precipitation, opts.height_exponent)

        def surface(c: int) -> float:
            return self._surface_height(heights, c)

        for i in land:
            i = int(i)
            flux[i] += self.precipitation[grid_indices[i]] / modifier

            draining = [lake for lake in lake_out_cells.get(i, []) if lake.flux > lake.evaporation]
            for lake in draining:
                lake_cell = next((c for c in neighbors[i]
                                  if heights[c] < 20 and feature_ids[c] == lake.id), None)
                if lake_cell is None:
                    continue

                # water that does not evaporate leaves through the outlet
                flux[lake_cell] += max(lake.flux - lake.evaporation, 0)

                if river_ids[lake_cell] != lake.river:
                    same_river = any(river_ids[c] == lake.river for c in neighbors[lake_cell])
                    if same_river and lake.river:
                        river_ids[lake_cell] = lake.river
                        self._add_cell_to_river(lake_cell, lake.river)
                    else:
                        self._new_river(lake_cell)

                lake.outlet = int(river_ids[lake_cell])
                self._flow_down(i, flux[lake_cell], lake.outlet)

            if draining:
                outlet = draining[0].outlet
                for lake in draining:
                    for inlet in lake.inlets:
                        self._river_parents[inlet] = outlet

            if graph.cell_border_flags[i] and river_ids[i]:
                self._add_cell_to_river(OFF_MAP, int(river_ids[i]))
                continue

            if i in lake_out_cells:
                source_lakes = {lake.id for lake in draining}
                candidates = [c for c in neighbors[i] if feature_ids[c] not in source_lakes]
            else:
                candidates = neighbors[i]
            downhill = min(candidates, key=surface) if candidates else None

            # the haven wins unless it is a lake standing above this cell
            if i not in lake_out_cells and graph.haven is not None and graph.haven[i] >= 0:
                haven = int(graph.haven[i])
                if surface(haven) < heights[i]:
                    downhill = haven

            # depressed cell
            if downhill is None or heights[i] <= surface(downhill):
                continue

            if flux[i] < opts.min_river_flux:
                if heights[downhill] >= 20:
                    flux[downhill] += flux[i]
                continue

            if not river_ids[i]:
                self._new_river(i)

            self._flow_down(downhill, flux[i], int(river_ids[i]))

        logger.info("Water drained",
                    river_segments=len(self._rivers_data),
                    max_flux=round(float(flux.max()), 1) if len(flux) else 0)

    def _flow_down(self, to_cell: int, from_flux: float, river: int) -> None:
        """Carry a river's flux into ``to_cell``, handling confluences and lakes."""
        graph = self.graph
        heights = self.heights
        flux = self.flux
        river_ids = self.river_ids

        to_flux = flux[to_cell] - self.confluences[to_cell]
        to_river = int(river_ids[to_cell])

        if to_river:
            if from_flux > to_flux:
                self.confluences[to_cell] += flux[to_cell]
                # the smaller river becomes a tributary of the current one
                if heights[to_cell] >= 20:
                    self._river_parents[to_river] = river
                river_ids[to_cell] = river
            else:
                self.confluences[to_cell] += from_flux
                if heights[to_cell] >= 20:
                    self._river_parents[river] = to_river
        else:
            river_ids[to_cell] = river

        if heights[to_cell] < 20:
            water_body = graph.features[graph.feature_ids[to_cell]]
            if isinstance(water_body, Lake) and water_body.type == "lake":
                if not water_body.river or from_flux > water_body.enter_flux:
                    water_body.river = river
                    water_body.enter_flux = from_flux
                water_body.flux += from_flux
                water_body.inlets.append(river)
        else:
            flux[to_cell] += from_flux

        self._add_cell_to_river(to_cell, river)

    def define_rivers(self) -> None:
        """
        Build River records from the drained segments.

        Segments shorter than three cells are dropped. Cell river ids and
        confluence flags are rebuilt from the kept rivers.
        """
        graph = self.graph
        n_cells = graph.n_cells
        pack_heights = graph.heights

        self.river_ids = np.zeros(n_cells, dtype=np.int64)
        self.confluences = np.zeros(n_cells, dtype=np.float64)
        self.rivers = []

        default_width_factor = round_number(1 / self.cells_number_modifier, 2)
        main_stem_width_factor = default_width_factor * 1.2

        for river_id in sorted(self._rivers_data):
            cells = self._rivers_data[river_id]
            if len(cells) < 3:
                continue

            for cell in cells:
                if cell < 0 or pack_heights[cell] < 20:
                    continue
                if self.river_ids[cell]:
                    self.confluences[cell] = 1
                else:
                    self.river_ids[cell] = river_id

            source = cells[0]
            mouth = next(c for c in reversed(cells[:-1]) if c >= 0)
            parent = self._river_parents.get(river_id, 0) or 0

            width_factor = main_stem_width_factor if not parent or parent == river_id else default_width_factor
            points = self._add_meandering(cells)

            discharge = float(self.flux[mouth])
            length = self._approximate_length(points)
            width = self._width(self._offset(discharge, len(points), width_factor))

            self.rivers.append(River(
                id=river_id,
                source=source,
                mouth=mouth,
                parent=parent,
                cells=list(cells),
                discharge=discharge,
                length=length,
                width=width,
                width_factor=width_factor,
                points=points,
            ))

        logger.info("Rivers defined",
                    rivers=len(self.rivers),
                    dropped=len(self._rivers_data) - len(self.rivers))

    def _border_point(self, cell: int) -> List[float]:
        """Point where a river leaving through ``cell`` crosses the canvas edge."""
        x, y = self.graph.points[cell]
        width, height = self.graph.graph_width, self.graph.graph_height
        nearest = min(y, height - y, x, width - x)
        if nearest == y:
            return [x, 0]
        if nearest == height - y:
            return [x, height]
        if nearest == x:
            return [0, y]
        return [width, y]

    def _river_points(self, cells: List[int]) -> List[List[float]]:
        points = []
        for k, cell in enumerate(cells):
            if cell == OFF_MAP:
                points.append(self._border_point(cells[k - 1]))
            else:
                points.append(self.graph.points[cell].tolist())
        return points

    def _add_meandering(self, cells: List[int]) -> List[List[float]]:
        """
        Polyline of a river with extra points between distant cells.

        Points at a third and two thirds (or halfway) of a segment are
        pushed sideways, less and less as the river grows.

        Returns:
            [x, y, flux] triples
        """
        flux = self.flux
        confluences = self.confluences
        meandering = self.options.meandering
        last_step = len(cells) - 1
        points = self._river_points(cells)
        first_step = 1 if self.graph.heights[cells[0]] < 20 else 10

        meandered: List[List[float]] = []
        flux_prev = 0.0

        for k in range(last_step + 1):
            step = first_step + k
            cell = cells[k]
            x1, y1 = points[k]
            flux1 = flux_prev if k == last_step else float(flux[cell])
            flux_prev = flux1

            meandered.append([x1, y1, flux1])
            if k == last_step:
                break

            next_cell = cells[k + 1]
            x2, y2 = points[k + 1]
            if next_cell == OFF_MAP:
                meandered.append([x2, y2, flux_prev])
                break

            dist2 = (x2 - x1) ** 2 + (y2 - y1) ** 2
            if dist2 <= 25 and len(cells) >= 6:
                continue

            flux2 = flux_prev if k + 1 == last_step else float(flux[next_cell])
            keep_initial_flux = bool(confluences[next_cell]) or flux1 == flux2

            meander = meandering + 1 / step + max(meandering - step / 100, 0)
            angle = math.atan2(y2 - y1, x2 - x1)
            sin_meander = math.sin(angle) * meander
            cos_meander = math.cos(angle) * meander

            if step < 10 and (dist2 > 64 or (dist2 > 36 and len(cells) < 5)):
                p1 = [(x1 * 2 + x2) / 3 - sin_meander, (y1 * 2 + y2) / 3 + cos_meander]
                p2 = [(x1 + x2 * 2) / 3 + sin_meander / 2, (y1 + y2 * 2) / 3 - cos_meander / 2]
                if keep_initial_flux:
                    fl1 = fl2 = flux1
                else:
                    fl1, fl2 = (flux1 * 2 + flux2) / 3, (flux1 + flux2 * 2) / 3
                meandered.append(p1 + [fl1])
                meandered.append(p2 + [fl2])
            elif dist2 > 25 or len(cells) < 6:
                p1 = [(x1 + x2) / 2 - sin_meander, (y1 + y2) / 2 + cos_meander]
                meandered.append(p1 + [flux1 if keep_initial_flux else (flux1 + flux2) / 2])

        return meandered

    @staticmethod
    def _approximate_length(points: List[List[float]]) -> float:
        length = sum(math.hypot(b[0] - a[0], b[1] - a[1]) for a, b in zip(points, points[1:]))
        return round_number(length, 2)

    @staticmethod
    def _offset(flux: float, point_number: int, width_factor: float, starting_width: float = 0) -> float:
        flux_width = min(max(flux, 0) ** 0.9 / FLUX_FACTOR, MAX_FLUX_WIDTH)
        progression = LENGTH_PROGRESSION[point_number] if point_number < len(LENGTH_PROGRESSION) else MAX_PROGRESSION
        length_width = point_number * STEP_WIDTH + progression
        return width_factor * (length_width + flux_width) + starting_width

    @staticmethod
    def _width(offset: float) -> float:
        """Mouth width in km."""
        return round_number((offset / 1.5) ** 1.8, 2)

    def calculate_confluence_flux(self) -> None:
        """Confluence cells get the flux of every inflow but the largest."""
        heights = self.heights
        neighbors = self.graph.cell_neighbors
        for i in np.flatnonzero(self.confluences):
            influx = sorted((self.flux[c] for c in neighbors[i]
                             if self.river_ids[c] and heights[c] > heights[i]), reverse=True)
            self.confluences[i] = float(sum(influx[1:]))

    def downcut_rivers(self) -> None:
        """Deepen river beds that carry more water than flows into them."""
        opts = self.options
        heights = self.graph.heights
        flux = self.flux
        cut = 0

        for i in range(self.graph.n_cells):
            if heights[i] < opts.downcut_min_height or not flux[i]:
                continue

            higher = [c for c in self.graph.cell_neighbors[i] if heights[c] > heights[i]]
            if not higher:
                continue
            higher_flux = sum(flux[c] for c in higher) / len(higher)
            if not higher_flux:
                continue

            downcut = math.floor(flux[i] / higher_flux)
            if downcut:
                heights[i] -= min(downcut, opts.max_downcut)
                cut += 1

        if cut:
            logger.info("River beds downcut", cells=cut)
