"""
Climate calculation system for temperature and precipitation.

This module implements:
- Placement of the map on a globe (size and latitude)
- Latitude-based temperature with altitude drop
- Wind-driven precipitation with orographic effects and rain shadows

Both layers live on the grid: lattice rows map to latitudes, so the
cells must come from the jittered square lattice in row-major order.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from .exceptions import ConfigurationError
from ..utils.numbers import clamp, ease_poly_in_out, round_number
from ..utils.random import gauss, probability, rand

logger = structlog.get_logger()

DEFAULT_WINDS = [225, 45, 225, 315, 135, 315]

# Precipitation multiplier per 5 degree latitude band, equator first
LATITUDE_MODIFIERS = [4, 2, 2, 2, 1, 1, 2, 2, 2, 2, 3, 3, 2, 2, 1, 1, 1, 0.5]

# Templates that may cover the whole globe when no land touches the edge
_WORLD_CHANCE = {
    "pangea": 1.0,
    "shattered": 0.7,
    "continents": 0.5,
    "archipelago": 0.35,
    "highIsland": 0.25,
    "lowIsland": 0.1,
}

# (expected, deviation, minimum, maximum or None for the border cap)
_SIZE_DISTRIBUTION = {
    "pangea": (70, 20, 30, None),
    "volcano": (20, 20, 10, None),
    "mediterranean": (25, 30, 15, 80),
    "peninsula": (15, 15, 5, 80),
    "isthmus": (15, 20, 3, 80),
    "atoll": (5, 10, 2, None),
}
_DEFAULT_SIZE = (30, 20, 15, None)


@dataclass
class ClimateOptions:
    """Climate calculation options."""

    # Temperature settings
    temperature_equator: float = 27.0  # °C at equator
    temperature_pole: float = -30.0  # °C at the poles
    height_exponent: float = 2.0  # Exponent converting height to altitude
    temperature_lapse_rate: float = 6.5  # °C per km altitude drop

    # Precipitation settings
    precipitation_modifier: float = 100.0  # Percent of the base water amount
    base_precipitation_west: float = 120.0  # Westerly and easterly packets
    base_precipitation_vertical: float = 60.0  # Northerly and southerly packets
    water_humidity_gain: float = 5.0  # Humidity gain over water
    permafrost_threshold: float = -5.0  # No precipitation below this

    # Wind system
    winds: Optional[List[float]] = None  # Wind angle per 30 degree latitude tier

    # Orographic effects
    max_passable_elevation: int = 85  # Winds do not cross higher cells
    terrain_mod_threshold: float = 70.0  # Height at which slopes double the loss

    latitude_precipitation_modifiers: Optional[List[float]] = None

    def __post_init__(self):
        if self.winds is None:
            self.winds = list(DEFAULT_WINDS)
        if self.latitude_precipitation_modifiers is None:
            self.latitude_precipitation_modifiers = list(LATITUDE_MODIFIERS)


@dataclass
class MapCoordinates:
    """Where the canvas sits on the globe, in degrees."""

    lat_n: float = 90  # Northern latitude boundary
    lat_s: float = -90  # Southern latitude boundary
    lon_w: float = -180
    lon_e: float = 180

    @property
    def lat_t(self) -> float:
        """Total latitude span."""
        return round_number(self.lat_n - self.lat_s, 1)

    @property
    def lon_t(self) -> float:
        """Total longitude span."""
        return self.lon_e - self.lon_w

    @classmethod
    def from_map_size(cls, size: float, latitude: float, width: float, height: float) -> "MapCoordinates":
        """
        Derive coordinates from a map size percentage and latitude shift.

        Args:
            size: Share of the globe's latitude range covered, 1..100
            latitude: Shift of the map from north (0) to south (100)
            width: Canvas width
            height: Canvas height
        """
        lat_t = round_number(size / 100 * 180, 1)
        lat_n = round_number(90 - (180 - lat_t) * latitude / 100, 1)
        lat_s = round_number(lat_n - lat_t, 1)
        lon = round_number(min(width / height * lat_t / 2, 180))
        return cls(lat_n=lat_n, lat_s=lat_s, lon_w=-lon, lon_e=lon)

    def to_dict(self) -> dict:
        return {
            "lat_n": self.lat_n,
            "lat_s": self.lat_s,
            "lat_t": self.lat_t,
            "lon_w": self.lon_w,
            "lon_e": self.lon_e,
            "lon_t": self.lon_t,
        }


def define_map_size(features: Sequence, template: str, prng) -> Tuple[float, float]:
    """
    Pick the map size and latitude for a heightmap template.

    Maps whose land runs off the canvas are capped at 80% of the globe;
    some templates may then instead cover the whole globe.

    Args:
        features: Grid features (index 0 is None)
        template: Template key
        prng: Seeded generator

    Returns:
        (size, latitude) as percentages
    """
    part = any(f is not None and f.land and f.border for f in features)
    cap = 80 if part else 100

    if not part:
        chance = _WORLD_CHANCE.get(template)
        if chance is not None and probability(prng, chance):
            return 100.0, 50.0

    expected, deviation, minimum, maximum = _SIZE_DISTRIBUTION.get(template, _DEFAULT_SIZE)
    size = gauss(prng, expected, deviation, minimum, cap if maximum is None else maximum)
    latitude = gauss(prng, 40 if probability(prng, 0.5) else 60, 15, 25, 75)
    return size, latitude


class Climate:
    """Handles temperature and precipitation calculations."""

    def __init__(
        self,
        graph,
        prng,
        options: Optional[ClimateOptions] = None,
        map_coords: Optional[MapCoordinates] = None,
    ):
        """
        Initialize climate calculator.

        Args:
            graph: Grid VoronoiGraph with heights
            prng: Seeded generator for coastal precipitation
            options: Climate options
            map_coords: Map coordinates, whole globe by default
        """
        self.graph = graph
        self.prng = prng
        self.options = options or ClimateOptions()
        self.map_coords = map_coords or MapCoordinates()

        if len(self.options.winds) != 6:
            raise ConfigurationError("winds must hold one angle per latitude tier (6)")

        n_cells = graph.n_cells
        self.temperatures = np.zeros(n_cells, dtype=np.int8)
        self.precipitation = np.zeros(n_cells, dtype=np.uint8)

    def calculate_temperatures(self) -> np.ndarray:
        """
        Temperature per cell from its lattice row latitude and altitude.

        Returns:
            int8 temperatures in °C
        """
        graph = self.graph
        opts = self.options
        coords = self.map_coords
        heights = graph.heights
        cells_x = graph.cells_x
        t_delta = opts.temperature_equator - opts.temperature_pole

        for r in range(0, graph.n_cells, cells_x):
            y = graph.points[r][1]
            lat = abs(coords.lat_n - y / graph.graph_height * coords.lat_t)
            init_temp = opts.temperature_equator - ease_poly_in_out(lat / 90, 0.5) * t_delta
            for i in range(r, min(r + cells_x, graph.n_cells)):
                drop = self._altitude_drop(heights[i])
                self.temperatures[i] = int(clamp(init_temp - drop, -128, 127))

        logger.info("Temperatures calculated",
                    min=int(self.temperatures.min()),
                    max=int(self.temperatures.max()),
                    mean=round(float(self.temperatures.mean()), 1))
        return self.temperatures

    def _altitude_drop(self, height: float) -> float:
        if height < 20:
            return 0
        altitude = (float(height) - 18) ** self.options.height_exponent
        return round_number(altitude / 1000 * self.options.temperature_lapse_rate)

    def wind_directions(self, tier: int) -> Tuple[bool, bool, bool, bool]:
        """(west, east, north, south) flags for a wind tier."""
        angle = self.options.winds[tier]
        is_west = 40 < angle < 140
        is_east = 220 < angle < 320
        is_north = 100 < angle < 260
        is_south = angle > 280 or angle < 80
        return is_west, is_east, is_north, is_south

    def generate_precipitation(self, cells_desired: Optional[int] = None) -> np.ndarray:
        """
        Drive humid air packets across the grid and collect precipitation.

        Args:
            cells_desired: Requested cell count, scales the water amount

        Returns:
            uint8 precipitation per cell
        """
        graph = self.graph
        opts = self.options
        coords = self.map_coords
        cells_x, cells_y = graph.cells_x, graph.cells_y
        n_cells = graph.n_cells
        lat_mods = opts.latitude_precipitation_modifiers

        cells_desired = cells_desired or graph.cells_desired
        modifier = (cells_desired / 10000) ** 0.25 * opts.precipitation_modifier / 100

        # accumulate unbounded, saturate at the end
        self._precipitation = np.zeros(n_cells, dtype=np.int64)

        westerly = []
        easterly = []
        northerly = 0
        southerly = 0

        for i, c in enumerate(range(0, n_cells, cells_x)):
            lat = coords.lat_n - (i / cells_y) * coords.lat_t
            band = int(clamp(int((abs(lat) - 1) / 5), 0, len(lat_mods) - 1))
            tier = int(clamp(int(abs(lat - 89) / 30), 0, 5))
            is_west, is_east, is_north, is_south = self.wind_directions(tier)

            if is_west:
                westerly.append((c, lat_mods[band]))
            if is_east:
                easterly.append((c + cells_x - 1, lat_mods[band]))
            if is_north:
                northerly += 1
            if is_south:
                southerly += 1

        if westerly:
            self._pass_wind(westerly, opts.base_precipitation_west * modifier, 1, cells_x, modifier)
        if easterly:
            self._pass_wind(easterly, opts.base_precipitation_west * modifier, -1, cells_x, modifier)

        vert_t = northerly + southerly
        if northerly:
            lat_mod = self._edge_modifier(coords.lat_n)
            max_prec = northerly / vert_t * opts.base_precipitation_vertical * modifier * lat_mod
            self._pass_wind(range(0, cells_x), max_prec, cells_x, cells_y, modifier)
        if southerly:
            lat_mod = self._edge_modifier(coords.lat_s)
            max_prec = southerly / vert_t * opts.base_precipitation_vertical * modifier * lat_mod
            self._pass_wind(range(n_cells - cells_x, n_cells), max_prec, -cells_x, cells_y, modifier)

        self.precipitation = np.minimum(self._precipitation, 255).astype(np.uint8)

        logger.info("Precipitation generated",
                    westerly=len(westerly),
                    easterly=len(easterly),
                    northerly=northerly,
                    southerly=southerly,
                    mean=round(float(self.precipitation.mean()), 1),
                    max=int(self.precipitation.max()))
        return self.precipitation

    def _edge_modifier(self, latitude: float) -> float:
        lat_mods = self.options.latitude_precipitation_modifiers
        if self.map_coords.lat_t > 60:
            return float(np.mean(lat_mods))
        band = int(clamp(int((abs(latitude) - 1) / 5), 0, len(lat_mods) - 1))
        return lat_mods[band]

    def _pass_wind(self, source: Sequence[Union[int, Tuple[int, float]]], max_prec: float,
                   next_step: int, steps: int, modifier: float) -> None:
        """
        Move humidity packets from each source cell along a row or column.

        Args:
            source: Start cells, or (start cell, latitude modifier) pairs
            max_prec: Humidity capacity of a packet
            next_step: Index offset to the next cell downwind
            steps: Cells in the row or column
            modifier: Global precipitation modifier
        """
        opts = self.options
        heights = self.graph.heights
        temperatures = self.temperatures
        prec = self._precipitation
        max_prec_init = max_prec

        for first in source:
            if isinstance(first, tuple):
                first, lat_mod = first
                max_prec = min(max_prec_init * lat_mod, 255)

            humidity = max_prec - float(heights[first])
            if humidity <= 0:
                continue

            current = first
            for _ in range(steps - 1):
                nxt = current + next_step
                if temperatures[current] < opts.permafrost_threshold:
                    current = nxt
                    continue

                if heights[current] < 20:
                    if heights[nxt] >= 20:
                        # coastal precipitation
                        prec[nxt] += math.floor(max(humidity / rand(self.prng, 10, 20), 1))
                    else:
                        humidity = min(humidity + opts.water_humidity_gain * modifier, max_prec)
                        prec[current] += math.floor(opts.water_humidity_gain * modifier)
                    current = nxt
                    continue

                passable = heights[nxt] <= opts.max_passable_elevation
                if passable:
                    loss = self._orographic_loss(humidity, current, nxt, modifier)
                else:
                    loss = humidity
                prec[current] += math.floor(loss)
                evaporation = 1 if loss > 1.5 else 0
                humidity = clamp(humidity - loss + evaporation, 0, max_prec) if passable else 0
                current = nxt

    def _orographic_loss(self, humidity: float, current: int, nxt: int, modifier: float) -> float:
        heights = self.graph.heights
        normal_loss = max(humidity / (10 * modifier), 1)
        diff = max(float(heights[nxt]) - float(heights[current]), 0)
        slope = (float(heights[nxt]) / self.options.terrain_mod_threshold) ** 2
        return math.floor(clamp(normal_loss + diff * slope, 1, humidity))

    def run(self, cells_desired: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Temperatures then precipitation; returns both grid layers."""
        self.calculate_temperatures()
        self.generate_precipitation(cells_desired)
        return self.temperatures, self.precipitation
