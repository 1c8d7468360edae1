"""Tests for climate calculation module."""

import numpy as np
import pytest

from py_mapgen.core.alea_prng import AleaPRNG
from py_mapgen.core.climate import (
    DEFAULT_WINDS,
    Climate,
    ClimateOptions,
    MapCoordinates,
    define_map_size,
)
from py_mapgen.core.exceptions import ConfigurationError
from py_mapgen.core.features import Feature
from py_mapgen.core.voronoi_graph import GridConfig, generate_voronoi_graph


class TestMapCoordinates:
    """Test globe placement."""

    def test_whole_globe(self):
        coords = MapCoordinates.from_map_size(100, 50, 800, 600)
        assert coords.lat_n == 90
        assert coords.lat_s == -90
        assert coords.lat_t == 180
        assert coords.lon_w == -120
        assert coords.lon_e == 120

    def test_northern_strip(self):
        coords = MapCoordinates.from_map_size(50, 0, 100, 100)
        assert coords.lat_n == 90
        assert coords.lat_s == 0
        assert coords.lon_t == 90

    def test_to_dict(self):
        data = MapCoordinates().to_dict()
        assert data == {"lat_n": 90, "lat_s": -90, "lat_t": 180,
                        "lon_w": -180, "lon_e": 180, "lon_t": 360}


class TestMapSize:
    """Test size and latitude selection."""

    def _features(self, border):
        return [None, Feature(id=1, type="island", land=True, border=border, cells=10, first_cell=0)]

    def test_pangea_covers_globe(self):
        size, latitude = define_map_size(self._features(False), "pangea", AleaPRNG("p"))
        assert (size, latitude) == (100.0, 50.0)

    @pytest.mark.parametrize("template", ["volcano", "continents", "atoll", "mediterranean", "oldWorld"])
    def test_ranges(self, template):
        prng = AleaPRNG(template)
        for _ in range(20):
            size, latitude = define_map_size(self._features(True), template, prng)
            assert 1 <= size <= 80
            assert 25 <= latitude <= 75


class TestClimate:
    """Test climate calculations."""

    @pytest.fixture
    def graph(self):
        graph = generate_voronoi_graph(GridConfig(100, 100, 400), AleaPRNG("climate_test"))
        graph.heights[:] = 30
        x = graph.points[:, 0]
        graph.heights[x < 20] = 10
        graph.heights[x > 80] = 70
        return graph

    def test_wind_count(self, graph):
        with pytest.raises(ConfigurationError):
            Climate(graph, AleaPRNG("w"), ClimateOptions(winds=[90, 90]))

    def test_default_winds(self):
        assert ClimateOptions().winds == DEFAULT_WINDS

    def test_wind_directions(self, graph):
        climate = Climate(graph, AleaPRNG("w"))
        assert climate.wind_directions(0) == (False, True, True, False)
        assert climate.wind_directions(1) == (True, False, False, True)

    def test_temperature_dtype(self, graph):
        temperatures = Climate(graph, AleaPRNG("t")).calculate_temperatures()
        assert temperatures.dtype == np.int8
        assert len(temperatures) == graph.n_cells

    def test_latitude_gradient(self, graph):
        graph.heights[:] = 10
        climate = Climate(graph, AleaPRNG("t"), map_coords=MapCoordinates(lat_n=90, lat_s=-90))
        temperatures = climate.calculate_temperatures()
        cells_x = graph.cells_x
        middle = (graph.cells_y // 2) * cells_x
        assert temperatures[middle] > temperatures[0]
        assert temperatures[middle] > temperatures[graph.n_cells - 1]
        assert temperatures.max() <= 27
        assert temperatures.min() >= -30

    def test_altitude_drop(self, graph):
        climate = Climate(graph, AleaPRNG("t"))
        temperatures = climate.calculate_temperatures()
        row = (graph.cells_y // 2) * graph.cells_x
        cells = range(row, row + graph.cells_x)
        low = [temperatures[i] for i in cells if graph.heights[i] == 30]
        high = [temperatures[i] for i in cells if graph.heights[i] == 70]
        assert max(high) < min(low)

    def test_precipitation(self, graph):
        climate = Climate(graph, AleaPRNG("p"))
        climate.calculate_temperatures()
        precipitation = climate.generate_precipitation()
        assert precipitation.dtype == np.uint8
        assert precipitation.sum() > 0

    def test_permafrost_is_dry(self, graph):
        options = ClimateOptions(temperature_equator=-20, temperature_pole=-30)
        climate = Climate(graph, AleaPRNG("p"), options)
        climate.calculate_temperatures()
        assert not climate.generate_precipitation().any()

    def test_no_water_no_rain(self, graph):
        options = ClimateOptions(precipitation_modifier=0)
        climate = Climate(graph, AleaPRNG("p"), options)
        climate.calculate_temperatures()
        assert not climate.generate_precipitation().any()

    def test_deterministic(self, graph):
        a = Climate(graph, AleaPRNG("same")).run()
        b = Climate(graph, AleaPRNG("same")).run()
        np.testing.assert_array_equal(a[0], b[0])
        np.testing.assert_array_equal(a[1], b[1])
