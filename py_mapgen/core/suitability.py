"""
Cell suitability and rural population.

Scores every land cell by how pleasant it is to live on: biome
habitability, river water, elevation and what kind of shore it has.
"""

from typing import Tuple

import numpy as np
import structlog

from ..utils.numbers import normalize
from .biomes import BIOME_HABITABILITY
from .features import LAND_COAST

logger = structlog.get_logger()

LAKE_SHORE_BONUS = {
    "freshwater": 30,
    "salt": 10,
    "frozen": 1,
    "dry": -5,
    "lava": -30,
}


def rank_cells(graph, biomes: np.ndarray, flux: np.ndarray, confluences: np.ndarray,
               river_ids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Calculate cell suitability scores and rural population.

    Args:
        graph: Packed graph with features, ``haven``, ``harbor`` and ``cell_areas``
        biomes: Biome id per cell
        flux: Water flux per cell
        confluences: Confluence flux per cell
        river_ids: River id per cell

    Returns:
        (suitability int16, population float32)
    """
    n_cells = graph.n_cells
    heights = graph.heights
    suitability = np.zeros(n_cells, dtype=np.int16)
    population = np.zeros(n_cells, dtype=np.float32)

    wet = flux[flux > 0]
    fl_mean = float(np.median(wet)) if len(wet) else 0.0
    # to normalize flux
    fl_max = float(flux.max() + confluences.max()) if n_cells else 0.0
    # to adjust population by cell area
    area_mean = float(np.mean(graph.cell_areas)) if graph.cell_areas is not None and n_cells else 1.0

    for i in range(n_cells):
        if heights[i] < 20:
            continue

        s = float(BIOME_HABITABILITY[biomes[i]])
        if not s:
            continue

        # big rivers and confluences are valued
        if fl_mean:
            s += normalize(flux[i] + confluences[i], fl_mean, fl_max) * 250
        # low elevation is valued, high is not
        s -= (float(heights[i]) - 50) / 5

        if graph.distance_field[i] == LAND_COAST:
            # estuary
            if river_ids[i]:
                s += 15

            haven = graph.haven[i]
            shore = graph.features[graph.feature_ids[haven]] if haven >= 0 else None
            if shore is not None and shore.type == "lake":
                s += LAKE_SHORE_BONUS.get(shore.group, 0)
            elif shore is not None:
                # ocean coast, more for a safe harbor
                s += 5
                if graph.harbor[i] == 1:
                    s += 20

        suitability[i] = int(s / 5)
        if suitability[i] > 0 and area_mean:
            population[i] = suitability[i] * float(graph.cell_areas[i]) / area_mean

    logger.info("Cells ranked",
                habitable=int(np.sum(suitability > 0)),
                population=round(float(population.sum()), 1))
    return suitability, population
