"""
Biome classification system based on temperature and moisture.

This module implements:
- Moisture from precipitation, rivers and neighbouring land
- Temperature/moisture matrix classification with wetland, glacier and
  marine overrides
- Biome and elevation band contours for drawing
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional

import numpy as np
import structlog

from ..utils.numbers import clamp, round_number
from .polygons import chain_coordinates, clip_polygon, connect_vertices, find_boundary_vertex

logger = structlog.get_logger()


class BiomeType(IntEnum):
    """Biome ids."""

    MARINE = 0
    HOT_DESERT = 1
    COLD_DESERT = 2
    SAVANNA = 3
    GRASSLAND = 4
    TROPICAL_SEASONAL_FOREST = 5
    TEMPERATE_DECIDUOUS_FOREST = 6
    TROPICAL_RAINFOREST = 7
    TEMPERATE_RAINFOREST = 8
    TAIGA = 9
    TUNDRA = 10
    GLACIER = 11
    WETLAND = 12


# Biome names for display
BIOME_NAMES = {
    BiomeType.MARINE: "Marine",
    BiomeType.HOT_DESERT: "Hot desert",
    BiomeType.COLD_DESERT: "Cold desert",
    BiomeType.SAVANNA: "Savanna",
    BiomeType.GRASSLAND: "Grassland",
    BiomeType.TROPICAL_SEASONAL_FOREST: "Tropical seasonal forest",
    BiomeType.TEMPERATE_DECIDUOUS_FOREST: "Temperate deciduous forest",
    BiomeType.TROPICAL_RAINFOREST: "Tropical rainforest",
    BiomeType.TEMPERATE_RAINFOREST: "Temperate rainforest",
    BiomeType.TAIGA: "Taiga",
    BiomeType.TUNDRA: "Tundra",
    BiomeType.GLACIER: "Glacier",
    BiomeType.WETLAND: "Wetland",
}

# 0 (uninhabitable) to 100
BIOME_HABITABILITY = [0, 4, 10, 22, 30, 50, 100, 80, 90, 12, 4, 0, 12]

# Rows: moisture band, dry to wet. Columns: 20 - temperature, hot to cold.
BIOME_MATRIX = np.array([
    [1, 1, 1, 1, 1, 1, 1, 1, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 10],
    [3, 3, 3, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 9, 9, 9, 9, 10, 10, 10],
    [5, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 6, 9, 9, 9, 9, 9, 10, 10, 10],
    [5, 6, 6, 6, 6, 6, 6, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 9, 9, 9, 9, 9, 9, 10, 10, 10],
    [7, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 9, 9, 9, 9, 9, 9, 9, 10, 10],
], dtype=np.uint8)

HEIGHT_LAYER_START = 20
HEIGHT_LAYER_SKIP = 6


@dataclass
class BiomeOptions:
    """Biome classification options."""

    glacier_temperature: float = -5  # Colder land is glacier
    wetland_min_temperature: float = -2
    coastal_wetland_moisture: float = 40
    coastal_wetland_max_height: int = 25
    inland_wetland_moisture: float = 24
    inland_wetland_max_height: int = 60
    river_moisture_divisor: float = 20  # River flux to moisture
    min_river_moisture: float = 2


class BiomeClassifier:
    """Handles biome classification based on climate and geography."""

    def __init__(self, graph, temperatures: np.ndarray, precipitation: np.ndarray,
                 flux: Optional[np.ndarray] = None, river_ids: Optional[np.ndarray] = None,
                 options: Optional[BiomeOptions] = None):
        """
        Initialize biome classifier.

        Args:
            graph: Packed VoronoiGraph with ``grid_indices``
            temperatures: Grid temperatures
            precipitation: Grid precipitation
            flux: Water flux per packed cell
            river_ids: River id per packed cell, 0 for none
            options: Biome classification options
        """
        n_cells = graph.n_cells
        self.graph = graph
        self.temperatures = temperatures
        self.precipitation = precipitation
        self.flux = flux if flux is not None else np.zeros(n_cells)
        self.river_ids = river_ids if river_ids is not None else np.zeros(n_cells, dtype=np.int64)
        self.options = options or BiomeOptions()

        self.biomes: Optional[np.ndarray] = None
        self.moisture: Optional[np.ndarray] = None

    def calculate_moisture(self, i: int) -> float:
        """Precipitation of a land cell and its land neighbours, plus river water."""
        graph = self.graph
        grid_indices = graph.grid_indices
        opts = self.options

        moist = float(self.precipitation[grid_indices[i]])
        if self.river_ids[i]:
            moist += max(self.flux[i] / opts.river_moisture_divisor, opts.min_river_moisture)

        values = [float(self.precipitation[grid_indices[c]])
                  for c in graph.cell_neighbors[i] if graph.heights[c] >= 20]
        values.append(moist)
        return round_number(4 + sum(values) / len(values))

    def is_wetland(self, moisture: float, temperature: float, height: float) -> bool:
        opts = self.options
        if temperature <= opts.wetland_min_temperature:
            return False
        # near coast
        if moisture > opts.coastal_wetland_moisture and height < opts.coastal_wetland_max_height:
            return True
        # off coast
        return (moisture > opts.inland_wetland_moisture
                and opts.coastal_wetland_max_height - 1 < height < opts.inland_wetland_max_height)

    def get_biome_id(self, moisture: float, temperature: float, height: float) -> BiomeType:
        """
        Biome for a cell's climate and elevation.

        Args:
            moisture: Moisture index
            temperature: Temperature in °C
            height: Elevation 0..100

        Returns:
            BiomeType
        """
        if height < 20:
            return BiomeType.MARINE
        if temperature < self.options.glacier_temperature:
            return BiomeType.GLACIER
        if self.is_wetland(moisture, temperature, height):
            return BiomeType.WETLAND

        moisture_band = min(int(moisture // 5), 4)
        temperature_band = int(clamp(20 - temperature, 0, 25))
        return BiomeType(int(BIOME_MATRIX[moisture_band][temperature_band]))

    def classify_biomes(self) -> np.ndarray:
        """
        Classify biomes for all packed cells.

        Returns:
            uint8 biome id per cell
        """
        logger.info("Classifying biomes")

        graph = self.graph
        n_cells = graph.n_cells
        self.biomes = np.zeros(n_cells, dtype=np.uint8)
        self.moisture = np.zeros(n_cells, dtype=np.float64)

        for i in range(n_cells):
            temperature = int(self.temperatures[graph.grid_indices[i]])
            height = int(graph.heights[i])
            moisture = 0 if height < 20 else self.calculate_moisture(i)
            self.moisture[i] = moisture
            self.biomes[i] = self.get_biome_id(moisture, temperature, height)

        logger.info("Biome classification completed",
                    unique_biomes=len(np.unique(self.biomes)))
        return self.biomes

    def get_biome_statistics(self) -> Dict[str, int]:
        """
        Get statistics about biome distribution.

        Returns:
            Dictionary with biome names and cell counts
        """
        if self.biomes is None:
            return {}

        unique_biomes, counts = np.unique(self.biomes, return_counts=True)
        return {BIOME_NAMES[BiomeType(b)]: int(c) for b, c in zip(unique_biomes, counts)}

    def group_biomes(self) -> Dict[int, List[List[List[float]]]]:
        """
        Contours of contiguous biome regions.

        A region's outline treats cells with a higher biome id as inside, so
        that regions drawn in id order overlap rather than leave gaps.

        Returns:
            Mapping of biome id to clipped rings; marine is not outlined
        """
        graph = self.graph
        biomes = self.biomes
        n = graph.n_cells
        used = np.zeros(n, dtype=bool)
        paths: Dict[int, List[List[List[float]]]] = {int(b): [] for b in BiomeType}

        for i in range(n):
            biome = int(biomes[i])
            if biome == BiomeType.MARINE or used[i]:
                continue
            if not any(biomes[c] != biome for c in graph.cell_neighbors[i]):
                continue

            def differs(c: int, b=biome) -> bool:
                return c >= n or biomes[c] != b

            def outside(c: int, b=biome) -> bool:
                return c >= n or biomes[c] < b

            def visit(c: int, b=biome):
                if c < n and biomes[c] == b:
                    used[c] = True

            start = find_boundary_vertex(graph, i, differs)
            if start < 0:
                continue
            chain = connect_vertices(graph, start, outside, visit=visit)
            if len(chain) < 3:
                continue

            ring = clip_polygon(chain_coordinates(graph, chain), graph.graph_width, graph.graph_height)
            if ring:
                paths[biome].append(ring)

        logger.info("Biomes grouped", paths=sum(len(p) for p in paths.values()))
        return paths


def group_heights(graph, start: int = HEIGHT_LAYER_START,
                  skip: int = HEIGHT_LAYER_SKIP) -> Dict[int, List[List[List[float]]]]:
    """
    Elevation band contours.

    Every ``skip`` units from ``start`` up to 100, outlines the regions of
    cells at least that high.

    Args:
        graph: Packed graph with final heights
        start: Lowest outlined elevation
        skip: Elevation step between bands

    Returns:
        Mapping of band elevation to unclipped rings
    """
    n = graph.n_cells
    heights = graph.heights
    layers: Dict[int, List[List[List[float]]]] = {}

    for layer in range(start, 101, skip):
        used = np.zeros(n, dtype=bool)

        def outside(c: int, h=layer) -> bool:
            return c >= n or heights[c] < h

        def visit(c: int, h=layer):
            if c < n and heights[c] >= h:
                used[c] = True

        rings = []
        for i in np.flatnonzero(heights >= layer):
            i = int(i)
            if used[i] or not any(heights[c] < layer for c in graph.cell_neighbors[i]):
                continue
            vertex = find_boundary_vertex(graph, i, outside)
            if vertex < 0:
                continue
            chain = connect_vertices(graph, vertex, outside, visit=visit)
            if len(chain) >= 3:
                rings.append(chain_coordinates(graph, chain))

        if rings:
            layers[layer] = rings

    return layers
