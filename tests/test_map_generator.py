"""Tests for the end-to-end generation pipeline."""

import dataclasses
import hashlib

import numpy as np
import pytest

from py_mapgen.core.exceptions import AlgorithmNonConvergence, ConfigurationError
from py_mapgen.core.hydrology import OFF_MAP, DepressionResult, Hydrology
from py_mapgen.core.map_generator import GenerationOptions, MapGenerator, MapSnapshot, generate_map

SMALL = dict(cells_to_generate=2000, graph_width=400, graph_height=300)


def _digest(array):
    return hashlib.md5(np.ascontiguousarray(array).tobytes()).hexdigest()


@pytest.fixture(scope="module")
def small_map():
    return generate_map(seed="snapshot", heightmap_template="continents", **SMALL)


class TestGenerationOptions:
    """Test option validation."""

    def test_defaults(self):
        options = GenerationOptions()
        assert options.cells_to_generate == 10000
        assert options.graph_width == 800
        assert options.graph_height == 600
        assert options.lake_elevation_limit == 20
        assert options.heightmap_template is None

    def test_template_by_name(self):
        assert GenerationOptions(heightmap_template="High Island").heightmap_template == "High Island"

    @pytest.mark.parametrize("options", [
        {"cells_to_generate": 2},
        {"winds": [225, 45, 225, 315, 135]},
        {"winds": [225, 45, 225, 315, 135, 400]},
        {"heightmap_template": "moon"},
        {"graph_width": -10},
        {"lake_elevation_limit": 81},
        {"height_exponent": 3},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ConfigurationError):
            MapGenerator(options)

    def test_max_cells(self):
        with pytest.raises(ConfigurationError):
            MapGenerator({"cells_to_generate": 5000}, max_cells=1000)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            MapGenerator({"cells_to_generate": 0})


class TestDeterminism:
    """Same seed and options give the same map."""

    def test_same_seed_same_map(self):
        options = dict(seed="abc", heightmap_template="continents",
                       cells_to_generate=10000, graph_width=800, graph_height=600)
        first = generate_map(**options)
        second = generate_map(**options)

        assert _digest(first.heights) == _digest(second.heights)
        assert _digest(first.temperatures) == _digest(second.temperatures)
        assert _digest(first.precipitation) == _digest(second.precipitation)
        assert _digest(first.biomes) == _digest(second.biomes)
        assert _digest(first.flux) == _digest(second.flux)
        assert len(first.features) == len(second.features)
        assert [r.cells for r in first.rivers] == [r.cells for r in second.rivers]
        assert first.map_size == second.map_size
        assert first.map_latitude == second.map_latitude

    def test_different_seed_differs(self):
        first = generate_map(seed="one", heightmap_template="continents", **SMALL)
        second = generate_map(seed="two", heightmap_template="continents", **SMALL)
        assert _digest(first.grid.points) != _digest(second.grid.points)

    def test_seed_generated(self):
        snapshot = generate_map(heightmap_template="atoll", **SMALL)
        assert isinstance(snapshot.seed, str)
        assert len(snapshot.seed) == 8

    def test_weighted_template_pick(self):
        first = generate_map(seed="pick", **SMALL)
        second = generate_map(seed="pick", **SMALL)
        assert first.template == second.template


class TestSnapshot:
    """Test the generated snapshot."""

    def test_type(self, small_map):
        assert isinstance(small_map, MapSnapshot)
        assert small_map.template == "continents"
        assert small_map.seed == "snapshot"

    def test_layer_shapes(self, small_map):
        n_grid = small_map.grid.n_cells
        n_pack = small_map.pack.n_cells
        assert small_map.temperatures.shape == (n_grid,)
        assert small_map.precipitation.shape == (n_grid,)
        for layer in (small_map.heights, small_map.flux, small_map.river_ids,
                      small_map.confluences, small_map.biomes, small_map.suitability,
                      small_map.population):
            assert layer.shape == (n_pack,)

    def test_dtypes(self, small_map):
        assert small_map.heights.dtype == np.uint8
        assert small_map.temperatures.dtype == np.int8
        assert small_map.precipitation.dtype == np.uint8
        assert small_map.biomes.dtype == np.uint8
        assert small_map.suitability.dtype == np.int16

    def test_bounds(self, small_map):
        assert small_map.heights.max() <= 100
        assert small_map.biomes.max() <= 12
        assert np.all(small_map.flux >= 0)
        assert 0 <= small_map.map_latitude <= 100
        assert 0 < small_map.map_size <= 100

    def test_water_is_marine(self, small_map):
        water = small_map.heights < 20
        assert np.all(small_map.biomes[water] == 0)

    def test_pack_features_partition(self, small_map):
        pack = small_map.pack
        assert small_map.features[0] is None
        assert np.all(pack.feature_ids > 0)
        for feature in small_map.features[1:]:
            assert int(np.sum(pack.feature_ids == feature.id)) == feature.cells

    def test_rivers_on_land(self, small_map):
        for river in small_map.rivers:
            assert len(river.cells) >= 3
            assert river.discharge > 0
            assert small_map.heights[river.source] >= 20

    def test_read_only_layers(self, small_map):
        with pytest.raises(ValueError):
            small_map.heights[0] = 1
        with pytest.raises(ValueError):
            small_map.temperatures[0] = 1
        with pytest.raises(ValueError):
            small_map.pack.heights[0] = 1
        with pytest.raises(ValueError):
            small_map.grid.points[0, 0] = 1.0

    def test_frozen(self, small_map):
        with pytest.raises(dataclasses.FrozenInstanceError):
            small_map.seed = "other"

    def test_contours(self, small_map):
        assert set(small_map.ocean_layers) <= {-1, -3, -6}
        assert all(layer >= 20 for layer in small_map.height_layers)
        assert 0 not in small_map.biome_groups or small_map.biome_groups[0] == []

    def test_coastlines(self, small_map):
        coastlines = small_map.coastlines
        assert coastlines
        ids = {f.id for f in small_map.features[1:]}
        assert set(coastlines) <= ids


class TestSummary:
    """Test the summary and statistics reports."""

    def test_summary(self, small_map):
        summary = small_map.summary()
        assert summary["seed"] == "snapshot"
        assert summary["template"] == "continents"
        assert summary["width"] == 400
        assert summary["height"] == 300
        assert summary["land_cells"] + summary["water_cells"] == summary["pack_cells"]
        assert summary["features"] == len(small_map.features) - 1
        assert summary["rivers"] == len(small_map.rivers)
        assert set(summary["coordinates"]) == {"lat_t", "lat_n", "lat_s", "lon_t", "lon_w", "lon_e"}

    def test_statistics(self, small_map):
        stats = small_map.statistics()
        assert stats["total_cells"] == small_map.n_cells
        assert stats["land_cells"] + stats["water_cells"] == stats["total_cells"]
        assert sum(b["cell_count"] for b in stats["biome_distribution"]) == stats["total_cells"]
        assert sum(stats["lake_groups"].values()) == stats["lakes_count"]
        assert len(stats["major_rivers"]) <= 10
        discharges = [r["discharge"] for r in stats["major_rivers"]]
        assert discharges == sorted(discharges, reverse=True)
        low, high = stats["temperature_range"]
        assert low <= high


class TestStrictMode:
    """Test depression non-convergence handling."""

    @pytest.fixture
    def stalled(self, monkeypatch):
        def resolve(self, heights):
            self.heights = heights
            return DepressionResult(converged=False, iterations=5, remaining=3, fallback=True)
        monkeypatch.setattr(Hydrology, "resolve_depressions", resolve)

    def test_strict_raises(self, stalled):
        with pytest.raises(AlgorithmNonConvergence) as info:
            generate_map(seed="strict", heightmap_template="continents", strict=True, **SMALL)
        assert info.value.remaining == 3
        assert info.value.iterations == 5

    def test_lenient_falls_back(self, stalled):
        snapshot = generate_map(seed="strict", heightmap_template="continents", **SMALL)
        assert not snapshot.depressions.converged
        assert snapshot.depressions.fallback
        assert snapshot.summary()["depressions_converged"] is False


@pytest.fixture(scope="module", params=[
    ("a1", "lowIsland"),
    ("b2", "archipelago"),
    ("c3", "volcano"),
    ("c3", "atoll"),
    ("d4", "highIsland"),
    ("e5", "continents"),
], ids=lambda p: "-".join(p))
def generated(request):
    seed, template = request.param
    return generate_map(seed=seed, heightmap_template=template, **SMALL)


def _levels(snapshot):
    """Routing height per pack cell, with lake cells at their surface."""
    levels = snapshot.routing_heights.astype(np.float64)
    for lake in snapshot.lakes:
        levels[snapshot.pack.feature_ids == lake.id] = lake.height
    return levels


class TestPipelineInvariants:
    """Properties every generated map keeps."""

    def test_grid_partition(self, generated):
        grid = generated.grid
        assert np.all(grid.feature_ids > 0)
        for feature in grid.features[1:]:
            assert int(np.sum(grid.feature_ids == feature.id)) == feature.cells
        assert sum(f.cells for f in grid.features[1:]) == grid.n_cells

    def test_pack_partition(self, generated):
        pack = generated.pack
        for feature in pack.features[1:]:
            assert int(np.sum(pack.feature_ids == feature.id)) == feature.cells
        assert sum(f.cells for f in pack.features[1:]) == pack.n_cells

    def test_rivers_never_climb(self, generated):
        levels = _levels(generated)
        lake_ids = {lake.id for lake in generated.lakes}
        feature_ids = generated.pack.feature_ids
        for river in generated.rivers:
            for a, b in zip(river.cells, river.cells[1:]):
                if a == OFF_MAP or b == OFF_MAP:
                    continue
                leaves_lake = int(feature_ids[a]) in lake_ids and int(feature_ids[b]) not in lake_ids
                if leaves_lake and not generated.depressions.converged:
                    continue
                assert levels[a] >= levels[b] - 1e-3, (river.id, a, b)

    def test_outlets_are_lowest_shore(self, generated):
        heights = generated.routing_heights
        for lake in generated.lakes:
            if lake.closed:
                assert lake.outlet == 0
                continue
            if lake.out_cell < 0:
                continue
            assert lake.out_cell in lake.shoreline
            assert heights[lake.out_cell] == min(heights[s] for s in lake.shoreline)

    def test_converged_leaves_no_depressions(self, generated):
        if not generated.depressions.converged:
            pytest.skip("depression resolution fell back")
        pack = generated.pack
        heights = generated.routing_heights
        levels = _levels(generated)
        for i in range(pack.n_cells):
            if heights[i] < 20 or pack.cell_border_flags[i]:
                continue
            lowest = min(levels[c] for c in pack.cell_neighbors[i])
            assert lowest >= 100 or heights[i] > lowest - 1e-3, i

    def test_biomes_total(self, generated):
        land = generated.heights >= 20
        assert np.all(generated.biomes[~land] == 0)
        assert np.all((generated.biomes[land] >= 1) & (generated.biomes[land] <= 12))
