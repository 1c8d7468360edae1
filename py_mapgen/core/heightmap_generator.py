"""
Heightmap generation module.

A heightmap is built by running a template, an ordered list of terrain
tools, against the grid. Each tool is a small frozen dataclass; the
generator holds one handler per tool type and dispatches on the step's
class. Heights stay integral and inside [0, 100] after every step.
"""

import math
import re
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import structlog

from ..config.heightmap_templates import get_template
from ..utils.random import (
    get_number_in_range,
    get_point_in_range,
    probability,
)
from .exceptions import BoundedSearchExhaustion, ConfigurationError
from .voronoi_graph import VoronoiGraph, find_grid_cell

logger = structlog.get_logger()

Span = Tuple[float, float]
NumberOrSpan = Union[float, Span]

MAX_PLACEMENT_ATTEMPTS = 50

BLOB_POWER = {
    1000: 0.93,
    2000: 0.95,
    5000: 0.97,
    10000: 0.98,
    20000: 0.99,
    30000: 0.991,
    40000: 0.993,
    50000: 0.994,
    60000: 0.995,
    70000: 0.9955,
    80000: 0.996,
    90000: 0.9964,
    100000: 0.9973,
}

LINE_POWER = {
    1000: 0.75,
    2000: 0.77,
    5000: 0.79,
    10000: 0.81,
    20000: 0.82,
    30000: 0.83,
    40000: 0.84,
    50000: 0.86,
    60000: 0.87,
    70000: 0.88,
    80000: 0.91,
    90000: 0.92,
    100000: 0.93,
}


def _nearest_bucket(table: Dict[int, float], cells: int) -> float:
    key = min(table, key=lambda k: (abs(k - cells), k))
    return table[key]


def get_blob_power(cells: int) -> float:
    """Decay exponent for hills and pits at a cell count."""
    return _nearest_bucket(BLOB_POWER, cells)


def get_line_power(cells: int) -> float:
    """Decay exponent for ranges and troughs at a cell count."""
    return _nearest_bucket(LINE_POWER, cells)


@dataclass(frozen=True)
class HillStep:
    count: NumberOrSpan
    height: NumberOrSpan
    range_x: Span
    range_y: Span


@dataclass(frozen=True)
class PitStep:
    count: NumberOrSpan
    height: NumberOrSpan
    range_x: Span
    range_y: Span


@dataclass(frozen=True)
class RangeStep:
    count: NumberOrSpan
    height: NumberOrSpan
    range_x: Span
    range_y: Span


@dataclass(frozen=True)
class TroughStep:
    count: NumberOrSpan
    height: NumberOrSpan
    range_x: Span
    range_y: Span


@dataclass(frozen=True)
class StraitStep:
    width: NumberOrSpan
    direction: str = "vertical"


@dataclass(frozen=True)
class MaskStep:
    power: float = 1


@dataclass(frozen=True)
class InvertStep:
    probability: float
    axes: str = "both"


@dataclass(frozen=True)
class AddStep:
    value: float
    band: Union[str, Span] = "all"


@dataclass(frozen=True)
class MultiplyStep:
    value: float
    band: Union[str, Span] = "all"


@dataclass(frozen=True)
class SmoothStep:
    power: float = 2


HeightmapStep = Union[
    HillStep, PitStep, RangeStep, TroughStep, StraitStep,
    MaskStep, InvertStep, AddStep, MultiplyStep, SmoothStep,
]

_SPAN_RE = re.compile(r"^(-?\d+(?:\.\d+)?)-(-?\d+(?:\.\d+)?)$")


def _parse_number_or_span(token: str) -> NumberOrSpan:
    match = _SPAN_RE.match(token)
    if match:
        return (float(match.group(1)), float(match.group(2)))
    return float(token)


def _parse_span(token: str) -> Span:
    value = _parse_number_or_span(token)
    if isinstance(value, tuple):
        return value
    return (value, value)


def _parse_band(token: str) -> Union[str, Span]:
    if token in ("land", "all"):
        return token
    return _parse_span(token)


def parse_template(text: str) -> List[HeightmapStep]:
    """
    Parse template text into heightmap steps.

    Args:
        text: One step per line, ``Tool a b c d``

    Returns:
        Ordered list of steps

    Raises:
        ConfigurationError: on an unknown tool or malformed line
    """
    steps: List[HeightmapStep] = []
    for line_no, line in enumerate(text.strip().splitlines(), start=1):
        parts = line.split()
        if not parts:
            continue
        tool, args = parts[0], parts[1:]
        try:
            if tool in ("Hill", "Pit", "Range", "Trough"):
                cls = {"Hill": HillStep, "Pit": PitStep,
                       "Range": RangeStep, "Trough": TroughStep}[tool]
                steps.append(cls(
                    count=_parse_number_or_span(args[0]),
                    height=_parse_number_or_span(args[1]),
                    range_x=_parse_span(args[2]),
                    range_y=_parse_span(args[3]),
                ))
            elif tool == "Strait":
                direction = args[1] if len(args) > 1 else "vertical"
                if direction not in ("vertical", "horizontal"):
                    raise ValueError(f"bad direction {direction}")
                steps.append(StraitStep(_parse_number_or_span(args[0]), direction))
            elif tool == "Mask":
                steps.append(MaskStep(float(args[0])))
            elif tool == "Invert":
                axes = args[1] if len(args) > 1 else "both"
                if axes not in ("x", "y", "both"):
                    raise ValueError(f"bad axes {axes}")
                steps.append(InvertStep(float(args[0]), axes))
            elif tool == "Add":
                steps.append(AddStep(float(args[0]), _parse_band(args[1])))
            elif tool == "Multiply":
                steps.append(MultiplyStep(float(args[0]), _parse_band(args[1])))
            elif tool == "Smooth":
                steps.append(SmoothStep(float(args[0])))
            else:
                raise ValueError(f"unknown tool {tool}")
        except (IndexError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid template line {line_no}: {line.strip()!r} ({e})"
            ) from e
    return steps


class HeightmapGenerator:
    """
    Applies terrain tools to the heights of a grid.

    All random draws go through the generator passed in, so the same
    grid, template and generator state always give the same heights.
    """

    def __init__(self, graph: VoronoiGraph, prng, cells_desired: Optional[int] = None):
        """
        Initialize the heightmap generator.

        Args:
            graph: Grid to shape; its current heights are the starting field
            prng: Seeded generator
            cells_desired: Cell count used for the decay exponents,
                defaults to the grid's requested count
        """
        self.graph = graph
        self.prng = prng
        self.n_cells = graph.n_cells
        self.width = graph.graph_width
        self.height = graph.graph_height

        self.heights = np.asarray(graph.heights, dtype=np.float64).copy()

        cells = cells_desired or graph.cells_desired
        self.blob_power = get_blob_power(cells)
        self.line_power = get_line_power(cells)

        self._tools: Dict[type, Callable] = {
            HillStep: self.add_hill,
            PitStep: self.add_pit,
            RangeStep: self.add_range,
            TroughStep: self.add_trough,
            StraitStep: self.add_strait,
            MaskStep: self.mask,
            InvertStep: self.invert,
            AddStep: self.add,
            MultiplyStep: self.multiply,
            SmoothStep: self.smooth,
        }

    def _random(self) -> float:
        return self.prng.random()

    @staticmethod
    def _lim(value):
        """Clamp to 0-100 and drop the fractional part."""
        return np.floor(np.clip(value, 0, 100))

    def _random_cell(self, step) -> int:
        x = get_point_in_range(self.prng, step.range_x, self.width)
        y = get_point_in_range(self.prng, step.range_y, self.height)
        return find_grid_cell(x, y, self.graph)

    def _find_start(self, step, accept: Callable[[int], bool],
                    score: Callable[[int], float], tool: str) -> int:
        """Pick a start cell in the step's rectangle.

        Retries up to MAX_PLACEMENT_ATTEMPTS; if none is acceptable the
        lowest-scoring candidate is used and a warning is logged.
        """
        best = -1
        for _ in range(MAX_PLACEMENT_ATTEMPTS):
            cell = self._random_cell(step)
            if accept(cell):
                return cell
            if best < 0 or score(cell) < score(best):
                best = cell

        logger.warning("Placement search exhausted, using best candidate",
                       error=BoundedSearchExhaustion.__name__, tool=tool,
                       attempts=MAX_PLACEMENT_ATTEMPTS, cell=best,
                       height=int(self.heights[best]))
        return best

    def add_hill(self, step: HillStep) -> None:
        """Raise blobs of land spreading out from random start cells."""
        count = get_number_in_range(self.prng, step.count)
        for _ in range(count):
            self._add_one_hill(step)

    def _add_one_hill(self, step: HillStep) -> None:
        change = np.zeros(self.n_cells, dtype=np.float64)
        h = float(self._lim(get_number_in_range(self.prng, step.height)))

        start = self._find_start(
            step,
            accept=lambda c: self.heights[c] + h <= 90,
            score=lambda c: self.heights[c] + h,
            tool="Hill",
        )

        change[start] = h
        queue = deque([start])
        while queue:
            q = queue.popleft()
            for c in self.graph.cell_neighbors[q]:
                if change[c]:
                    continue
                change[c] = math.floor(change[q] ** self.blob_power * (self._random() * 0.2 + 0.9))
                if change[c] > 1:
                    queue.append(c)

        self.heights = self._lim(self.heights + change)

    def add_pit(self, step: PitStep) -> None:
        """Dig depressions spreading out from random land cells."""
        count = get_number_in_range(self.prng, step.count)
        for _ in range(count):
            self._add_one_pit(step)

    def _add_one_pit(self, step: PitStep) -> None:
        used = np.zeros(self.n_cells, dtype=bool)
        h = float(self._lim(get_number_in_range(self.prng, step.height)))

        start = self._find_start(
            step,
            accept=lambda c: self.heights[c] >= 20,
            score=lambda c: -self.heights[c],
            tool="Pit",
        )

        queue = deque([start])
        while queue:
            q = queue.popleft()
            h = math.floor(h ** self.blob_power * (self._random() * 0.2 + 0.9))
            if h < 1:
                break
            for c in self.graph.cell_neighbors[q]:
                if used[c]:
                    continue
                self.heights[c] = self._lim(self.heights[c] - h * (self._random() * 0.2 + 0.9))
                used[c] = True
                queue.append(c)

    def add_range(self, step: RangeStep) -> None:
        """Raise mountain ridges."""
        count = get_number_in_range(self.prng, step.count)
        for _ in range(count):
            self._add_linear_feature(step, raise_=True)

    def add_trough(self, step: TroughStep) -> None:
        """Carve valleys, starting on land where possible."""
        count = get_number_in_range(self.prng, step.count)
        for _ in range(count):
            self._add_linear_feature(step, raise_=False)

    def _find_end_point(self, start_x: float, start_y: float, max_dist: float) -> Tuple[float, float]:
        min_dist = self.width / 8
        best = None
        best_miss = math.inf
        for _ in range(MAX_PLACEMENT_ATTEMPTS):
            end_x = self._random() * self.width * 0.8 + self.width * 0.1
            end_y = self._random() * self.height * 0.7 + self.height * 0.15
            dist = abs(end_y - start_y) + abs(end_x - start_x)
            if min_dist <= dist <= max_dist:
                return end_x, end_y
            miss = min_dist - dist if dist < min_dist else dist - max_dist
            if miss < best_miss:
                best, best_miss = (end_x, end_y), miss

        logger.debug("End point search exhausted, using best candidate",
                     error=BoundedSearchExhaustion.__name__, miss=round(best_miss, 2))
        return best

    def _add_linear_feature(self, step: Union[RangeStep, TroughStep], raise_: bool) -> None:
        used = np.zeros(self.n_cells, dtype=bool)
        h = float(self._lim(get_number_in_range(self.prng, step.height)))

        if raise_:
            start_x = get_point_in_range(self.prng, step.range_x, self.width)
            start_y = get_point_in_range(self.prng, step.range_y, self.height)
            start_cell = find_grid_cell(start_x, start_y, self.graph)
            end_x, end_y = self._find_end_point(start_x, start_y, self.width / 3)
            halve_above = 0.85
        else:
            start_x = start_y = 0.0
            start_cell = -1
            best_cell, best = -1, None
            for _ in range(MAX_PLACEMENT_ATTEMPTS):
                start_x = get_point_in_range(self.prng, step.range_x, self.width)
                start_y = get_point_in_range(self.prng, step.range_y, self.height)
                start_cell = find_grid_cell(start_x, start_y, self.graph)
                if self.heights[start_cell] >= 20:
                    break
                if best is None or self.heights[start_cell] > self.heights[best_cell]:
                    best_cell, best = start_cell, (start_x, start_y)
            else:
                logger.warning("Placement search exhausted, using best candidate",
                               error=BoundedSearchExhaustion.__name__, tool="Trough",
                               attempts=MAX_PLACEMENT_ATTEMPTS, cell=best_cell)
                start_cell = best_cell
                start_x, start_y = best
            end_x, end_y = self._find_end_point(start_x, start_y, self.width / 2)
            halve_above = 0.8

        end_cell = find_grid_cell(end_x, end_y, self.graph)
        ridge = self._get_range_path(start_cell, end_cell, used, halve_above)

        # add height to ridge and cells around
        sign = 1 if raise_ else -1
        queue = list(ridge)
        rings = 0
        while queue:
            frontier = queue
            queue = []
            rings += 1

            for i in frontier:
                self.heights[i] = self._lim(
                    self.heights[i] + sign * h * (self._random() * 0.3 + 0.85)
                )

            h = h ** self.line_power - 1
            if h < 2:
                break

            for f in frontier:
                for i in self.graph.cell_neighbors[f]:
                    if not used[i]:
                        queue.append(i)
                        used[i] = True

        self._add_prominences(ridge, rings)

    def _get_range_path(self, cur: int, end: int, used: np.ndarray, halve_above: float) -> List[int]:
        """Greedy walk from ``cur`` toward ``end`` over unused cells."""
        points = self.graph.points
        path = [cur]
        used[cur] = True

        while cur != end:
            min_diff = math.inf
            nxt = cur
            for e in self.graph.cell_neighbors[cur]:
                if used[e]:
                    continue
                diff = (points[end][0] - points[e][0]) ** 2 + (points[end][1] - points[e][1]) ** 2
                if self._random() > halve_above:
                    diff = diff / 2
                if diff < min_diff:
                    min_diff = diff
                    nxt = e
            if min_diff == math.inf:
                break
            cur = nxt
            path.append(cur)
            used[cur] = True

        return path

    def _add_prominences(self, ridge: List[int], iterations: int) -> None:
        """Every 6th ridge cell drags its lowest neighbours up into a spur."""
        for d, cur in enumerate(ridge):
            if d % 6 != 0:
                continue
            for _ in range(iterations):
                neighbors = self.graph.cell_neighbors[cur]
                if not neighbors:
                    break
                low = min(neighbors, key=lambda c: self.heights[c])
                self.heights[low] = math.floor((self.heights[cur] * 2 + self.heights[low]) / 3)
                cur = low

    def add_strait(self, step: StraitStep) -> None:
        """Cut a water passage across the whole canvas."""
        width = min(get_number_in_range(self.prng, step.width), self.graph.cells_x / 3)
        if width < 1 and probability(self.prng, width):
            return

        used = np.zeros(self.n_cells, dtype=bool)
        w, hgt = self.width, self.height
        vertical = step.direction == "vertical"

        if vertical:
            start_x = math.floor(self._random() * w * 0.4 + w * 0.3)
            start_y = 5
            end_x = math.floor(w - start_x - w * 0.1 + self._random() * w * 0.2)
            end_y = hgt - 5
        else:
            start_x = 5
            start_y = math.floor(self._random() * hgt * 0.4 + hgt * 0.3)
            end_x = w - 5
            end_y = math.floor(hgt - start_y - hgt * 0.1 + self._random() * hgt * 0.2)

        start = find_grid_cell(start_x, start_y, self.graph)
        end = find_grid_cell(end_x, end_y, self.graph)
        path = self._get_strait_path(start, end)

        query: List[int] = []
        exp = 0.8
        i = width
        while i > 0:
            for r in path:
                for e in self.graph.cell_neighbors[r]:
                    if used[e]:
                        continue
                    used[e] = True
                    query.append(e)
                    value = math.floor(self.heights[e] ** exp)
                    self.heights[e] = 5 if value > 100 else value
            path = list(query)
            i -= 1

    def _get_strait_path(self, cur: int, end: int) -> List[int]:
        """Greedy walk that may revisit cells; capped at the cell count."""
        points = self.graph.points
        path: List[int] = []
        steps = 0
        while cur != end and steps < self.n_cells:
            min_diff = math.inf
            nxt = cur
            for e in self.graph.cell_neighbors[cur]:
                diff = (points[end][0] - points[e][0]) ** 2 + (points[end][1] - points[e][1]) ** 2
                if self._random() > 0.8:
                    diff = diff / 2
                if diff < min_diff:
                    min_diff = diff
                    nxt = e
            cur = nxt
            path.append(cur)
            steps += 1
        return path

    @staticmethod
    def _band(band: Union[str, Span]) -> Tuple[float, float]:
        if band == "land":
            return 20, 100
        if band == "all":
            return 0, 100
        return band

    def add(self, step: AddStep) -> None:
        """Add a constant to heights inside a band; the land band never sinks below 20."""
        low, high = self._band(step.band)
        is_land = low == 20
        h = self.heights
        mask = (h >= low) & (h <= high)
        raised = h + step.value
        if is_land:
            raised = np.maximum(raised, 20)
        self.heights = np.where(mask, self._lim(raised), h)

    def multiply(self, step: MultiplyStep) -> None:
        """Scale heights inside a band; the land band scales height above sea level."""
        low, high = self._band(step.band)
        is_land = low == 20
        h = self.heights
        mask = (h >= low) & (h <= high)
        scaled = (h - 20) * step.value + 20 if is_land else h * step.value
        self.heights = np.where(mask, self._lim(scaled), h)

    def smooth(self, step: SmoothStep) -> None:
        """Blend each cell toward the mean of itself and its neighbours."""
        power = step.power
        h = self.heights
        smoothed = np.empty_like(h)
        for i, neighbors in enumerate(self.graph.cell_neighbors):
            mean = (h[i] + h[neighbors].sum()) / (len(neighbors) + 1)
            smoothed[i] = mean if power == 1 else (h[i] * (power - 1) + mean) / power
        self.heights = self._lim(smoothed)

    def mask(self, step: MaskStep) -> None:
        """Fade heights toward the canvas edge, or toward the center for negative power."""
        factor = abs(step.power) if step.power else 1
        x = self.graph.points[:, 0]
        y = self.graph.points[:, 1]
        nx = 2 * x / self.width - 1
        ny = 2 * y / self.height - 1
        distance = (1 - nx ** 2) * (1 - ny ** 2)
        if step.power < 0:
            distance = 1 - distance
        masked = self.heights * distance
        self.heights = self._lim((self.heights * (factor - 1) + masked) / factor)

    def invert(self, step: InvertStep) -> None:
        """Mirror the field across lattice axes with the step's probability."""
        if not probability(self.prng, step.probability):
            return

        cells_x, cells_y = self.graph.cells_x, self.graph.cells_y
        idx = np.arange(self.n_cells)
        x = idx % cells_x
        y = idx // cells_x
        nx = cells_x - x - 1 if step.axes != "y" else x
        ny = cells_y - y - 1 if step.axes != "x" else y
        self.heights = self.heights[ny * cells_x + nx]

    def apply_step(self, step: HeightmapStep) -> None:
        """Run a single step and re-establish the [0, 100] integer bounds."""
        handler = self._tools.get(type(step))
        if handler is None:
            raise ConfigurationError(f"Unsupported heightmap step: {step!r}")
        handler(step)
        self.heights = self._lim(self.heights)

    def apply_steps(self, steps: List[HeightmapStep]) -> np.ndarray:
        for step in steps:
            self.apply_step(step)
        return self.heights.astype(np.uint8)

    def from_template(self, template_name: str) -> np.ndarray:
        """
        Generate heightmap from a template name.

        Args:
            template_name: Catalog key or display name

        Returns:
            Heights as uint8

        Raises:
            ConfigurationError: if the template is unknown
        """
        try:
            template = get_template(template_name)
        except KeyError as e:
            raise ConfigurationError(str(e)) from e

        logger.info("Generating heightmap", template=template.key,
                    blob_power=self.blob_power, line_power=self.line_power)

        heights = self.apply_steps(parse_template(template.steps))

        logger.info("Heightmap generated", template=template.key,
                    land_cells=int(np.sum(heights >= 20)),
                    max_height=int(heights.max()))
        return heights
