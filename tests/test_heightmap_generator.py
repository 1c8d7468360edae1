"""Tests for heightmap generation."""

import numpy as np
import pytest

from py_mapgen.config.heightmap_templates import TEMPLATES
from py_mapgen.core.alea_prng import AleaPRNG
from py_mapgen.core.exceptions import ConfigurationError
from py_mapgen.core.heightmap_generator import (
    AddStep,
    HeightmapGenerator,
    HillStep,
    InvertStep,
    MaskStep,
    MultiplyStep,
    PitStep,
    RangeStep,
    SmoothStep,
    StraitStep,
    TroughStep,
    get_blob_power,
    get_line_power,
    parse_template,
)
from py_mapgen.core.voronoi_graph import GridConfig, find_grid_cell, generate_voronoi_graph


def bfs_rings(graph, start):
    """Shortest adjacency distance of every cell from ``start``."""
    distance = {start: 0}
    frontier = [start]
    while frontier:
        nxt = []
        for c in frontier:
            for n in graph.cell_neighbors[c]:
                if n not in distance:
                    distance[n] = distance[c] + 1
                    nxt.append(n)
        frontier = nxt
    return distance


class TestPowerTables:
    """Test decay exponent lookup."""

    def test_exact_buckets(self):
        assert get_blob_power(10000) == 0.98
        assert get_line_power(10000) == 0.81

    def test_nearest_bucket(self):
        assert get_blob_power(1100) == 0.93
        assert get_blob_power(9000) == 0.98
        assert get_line_power(250000) == 0.93


class TestTemplateParsing:
    """Test template text parsing."""

    def test_parse_steps(self):
        steps = parse_template("""
            Hill 1 90-100 44-56 40-60
            Multiply 0.8 50-100 0 0
            Add 7 all 0 0
            Strait 2 horizontal 0 0
            Invert 0.25 x 0 0
            Mask 3 0 0 0
            Smooth 2 0 0 0
        """)
        assert steps[0] == HillStep(1.0, (90.0, 100.0), (44.0, 56.0), (40.0, 60.0))
        assert steps[1] == MultiplyStep(0.8, (50.0, 100.0))
        assert steps[2] == AddStep(7.0, "all")
        assert steps[3] == StraitStep(2.0, "horizontal")
        assert steps[4] == InvertStep(0.25, "x")
        assert steps[5] == MaskStep(3.0)
        assert steps[6] == SmoothStep(2.0)

    def test_single_value_span(self):
        step = parse_template("Pit 2 10 50 50")[0]
        assert step == PitStep(2.0, 10.0, (50.0, 50.0), (50.0, 50.0))

    def test_every_catalog_template_parses(self):
        for template in TEMPLATES.values():
            assert parse_template(template.steps)

    @pytest.mark.parametrize("text", ["Volcano 1 2 3 4", "Hill 1", "Strait 2 diagonal 0 0"])
    def test_invalid_lines(self, text):
        with pytest.raises(ConfigurationError):
            parse_template(text)


class TestHeightmapTools:
    """Test the individual terrain tools."""

    @pytest.fixture
    def graph(self):
        return generate_voronoi_graph(GridConfig(100, 100, 1000), AleaPRNG("heightmap_test"))

    def test_single_hill_decays_outward(self, graph):
        generator = HeightmapGenerator(graph, AleaPRNG("hill"))
        generator.apply_step(HillStep(1, 100, (50, 50), (50, 50)))
        heights = generator.heights

        start = find_grid_cell(50, 50, graph)
        assert heights[start] == 100
        assert heights.max() == 100

        rings = {}
        for cell, d in bfs_rings(graph, start).items():
            rings[d] = max(rings.get(d, 0), heights[cell])

        ring_min = {}
        for cell, d in bfs_rings(graph, start).items():
            ring_min[d] = min(ring_min.get(d, 100), heights[cell])

        # while every cell of the previous ring still spreads, the blob
        # decays ring by ring, strictly until it fades out
        d = 1
        while d in rings and ring_min[d - 1] > 1:
            assert rings[d] <= rings[d - 1]
            if rings[d - 1] >= 4:
                assert rings[d] < rings[d - 1]
            d += 1
        assert d > 3

    def test_pit_lowers_land(self, graph):
        graph.heights[:] = 50
        generator = HeightmapGenerator(graph, AleaPRNG("pit"))
        generator.apply_step(PitStep(1, 30, (40, 60), (40, 60)))
        assert generator.heights.min() < 50
        assert generator.heights.max() == 50

    def test_pit_depth_decays_in_whole_steps(self, graph):
        class MidPRNG:
            def random(self):
                return 0.5

        graph.heights[:] = 50
        generator = HeightmapGenerator(graph, MidPRNG())
        generator.apply_step(PitStep(1, 30, (50, 50), (50, 50)))

        # 30 -> floor(30 ** 0.93) -> ... settles at 1
        drops = set((50 - generator.heights).astype(int).tolist())
        assert max(drops) == 23
        assert drops <= {23, 18, 14, 11, 9, 7, 6, 5, 4, 3, 2, 1}

    def test_range_raises_ridge(self, graph):
        generator = HeightmapGenerator(graph, AleaPRNG("range"))
        generator.apply_step(RangeStep(1, 40, (20, 30), (40, 60)))
        assert generator.heights.max() > 20

    def test_trough_carves_land(self, graph):
        graph.heights[:] = 60
        generator = HeightmapGenerator(graph, AleaPRNG("trough"))
        generator.apply_step(TroughStep(1, 30, (20, 80), (20, 80)))
        assert generator.heights.min() < 60

    def test_strait_cuts_water(self, graph):
        graph.heights[:] = 60
        generator = HeightmapGenerator(graph, AleaPRNG("strait"))
        generator.apply_step(StraitStep(2, "vertical"))
        assert (generator.heights < 60).sum() > graph.cells_y

    def test_add_land_band_never_sinks(self, graph):
        graph.heights[:] = 25
        graph.heights[:10] = 10
        generator = HeightmapGenerator(graph, AleaPRNG("add"))
        generator.apply_step(AddStep(-20, "land"))
        assert np.all(generator.heights[10:] == 20)
        assert np.all(generator.heights[:10] == 10)

    def test_multiply_land_band(self, graph):
        graph.heights[:] = 60
        generator = HeightmapGenerator(graph, AleaPRNG("multiply"))
        generator.apply_step(MultiplyStep(0.5, "land"))
        assert np.all(generator.heights == 40)

    def test_smooth_flattens(self, graph):
        graph.heights[:] = 0
        graph.heights[500] = 100
        generator = HeightmapGenerator(graph, AleaPRNG("smooth"))
        generator.apply_step(SmoothStep(2))
        assert generator.heights[500] < 100
        assert generator.heights[graph.cell_neighbors[500][0]] > 0

    def test_mask_fades_edges(self, graph):
        graph.heights[:] = 50
        generator = HeightmapGenerator(graph, AleaPRNG("mask"))
        generator.apply_step(MaskStep(1))
        assert generator.heights[0] < 10
        center = find_grid_cell(50, 50, graph)
        assert generator.heights[center] >= 45

    def test_invert_mirrors(self, graph):
        graph.heights[:] = 0
        graph.heights[0] = 77
        generator = HeightmapGenerator(graph, AleaPRNG("invert"))
        generator.apply_step(InvertStep(1, "both"))
        assert generator.heights[graph.n_cells - 1] == 77
        assert generator.heights[0] == 0

    def test_invert_skipped(self, graph):
        graph.heights[:] = 0
        graph.heights[0] = 77
        generator = HeightmapGenerator(graph, AleaPRNG("invert"))
        generator.apply_step(InvertStep(0, "both"))
        assert generator.heights[0] == 77

    def test_bounds_after_every_step(self, graph):
        generator = HeightmapGenerator(graph, AleaPRNG("bounds"))
        for step in parse_template(TEMPLATES["volcano"].steps + TEMPLATES["fractious"].steps):
            generator.apply_step(step)
            assert generator.heights.min() >= 0
            assert generator.heights.max() <= 100
            assert np.all(generator.heights == np.floor(generator.heights))

    def test_unsupported_step(self, graph):
        generator = HeightmapGenerator(graph, AleaPRNG("bad"))
        with pytest.raises(ConfigurationError):
            generator.apply_step("Hill 1 2 3 4")


class TestFromTemplate:
    """Test whole-template generation."""

    @pytest.fixture
    def graph(self):
        return generate_voronoi_graph(GridConfig(300, 200, 2000), AleaPRNG("template_test"))

    @pytest.mark.parametrize("name", list(TEMPLATES))
    def test_every_template(self, graph, name):
        heights = HeightmapGenerator(graph, AleaPRNG(name)).from_template(name)
        assert heights.dtype == np.uint8
        assert len(heights) == graph.n_cells
        assert heights.max() <= 100

    def test_display_name(self, graph):
        heights = HeightmapGenerator(graph, AleaPRNG("x")).from_template("High Island")
        assert (heights >= 20).any()

    def test_deterministic(self, graph):
        a = HeightmapGenerator(graph, AleaPRNG("same")).from_template("continents")
        b = HeightmapGenerator(graph, AleaPRNG("same")).from_template("continents")
        np.testing.assert_array_equal(a, b)

    def test_unknown_template(self, graph):
        with pytest.raises(ConfigurationError):
            HeightmapGenerator(graph, AleaPRNG("x")).from_template("nonexistent")
