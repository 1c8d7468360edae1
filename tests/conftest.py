"""Shared synthetic maps for hydrology, lake and biome tests."""

import numpy as np
import pytest

from py_mapgen.core.alea_prng import AleaPRNG
from py_mapgen.core.cell_packing import regraph
from py_mapgen.core.features import Features
from py_mapgen.core.voronoi_graph import GridConfig, find_grid_cell, generate_voronoi_graph


def _island(seed, rings=()):
    """Round island of height 40; ``rings`` sets heights by distance in cells from the center."""
    graph = generate_voronoi_graph(GridConfig(100, 100, 1000), AleaPRNG(seed))
    r = np.linalg.norm(graph.points - np.array([50.0, 50.0]), axis=1)
    graph.heights[:] = np.where(r < 35, 40, 5)

    center = find_grid_cell(50, 50, graph)
    layer = [center]
    seen = {center}
    for height in rings:
        for c in layer:
            graph.heights[c] = height
        nxt = []
        for c in layer:
            for n in graph.cell_neighbors[c]:
                if n not in seen:
                    seen.add(n)
                    nxt.append(n)
        layer = nxt
    return graph


def _pack(graph, lake_elevation_limit=20):
    features = Features(graph)
    features.markup_grid()
    features.add_lakes_in_deep_depressions(lake_elevation_limit)
    features.open_near_sea_lakes("continents")
    pack = regraph(graph)
    Features(pack).markup_pack(pack, graph.n_cells)
    return graph, pack


@pytest.fixture
def flat_island():
    """Grid and pack of an island without any depression."""
    return _pack(_island("flat_island"))


@pytest.fixture
def pit_island():
    """Grid and pack of an island with a lake that can drain over its rim."""
    return _pack(_island("pit_island", rings=(30, 60)))


@pytest.fixture
def crater_island():
    """Grid and pack of an island with a lake walled in by a high crater."""
    return _pack(_island("crater_island", rings=(30, 60, 90)))


@pytest.fixture
def climate_layers():
    """Uniform grid temperature and precipitation factory."""
    def make(graph, temperature=15, precipitation=40):
        return (np.full(graph.n_cells, temperature, dtype=np.int8),
                np.full(graph.n_cells, precipitation, dtype=np.uint8))
    return make
