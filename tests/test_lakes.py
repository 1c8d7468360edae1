"""Tests for lake properties."""

import numpy as np
import pytest

from py_mapgen.core.features import Lake
from py_mapgen.core.hydrology import Hydrology
from py_mapgen.core.lakes import (
    OPEN_LAKES_LIMIT,
    cleanup_lake_data,
    define_lake_groups,
    find_lake,
    get_lake_group,
    get_shoreline,
    iter_lakes,
    prepare_lake_data,
    set_lake_climate_data,
)


def make_lake(**kwargs):
    defaults = dict(id=1, type="lake", land=False, border=False, cells=1, first_cell=0)
    defaults.update(kwargs)
    return Lake(**defaults)


def routing_heights(pack):
    return Hydrology(pack, np.zeros(1), np.zeros(1)).alter_heights()


class TestShoreline:
    """Test shoreline and surface detection."""

    def test_iter_lakes(self, crater_island):
        _, pack = crater_island
        lakes = list(iter_lakes(pack))
        assert lakes
        assert all(isinstance(lake, Lake) for lake in lakes)

    def test_shoreline_is_land_around_lake(self, crater_island):
        _, pack = crater_island
        for lake in iter_lakes(pack):
            shoreline = get_shoreline(pack, lake)
            assert len(shoreline) == len(set(shoreline))
            for cell in shoreline:
                assert pack.heights[cell] >= 20

    def test_find_lake(self, crater_island):
        _, pack = crater_island
        lake = next(iter_lakes(pack))
        cell = int(np.flatnonzero(pack.feature_ids == lake.id)[0])
        assert find_lake(pack, cell) is lake
        land = int(np.flatnonzero(pack.heights >= 20)[0])
        assert find_lake(pack, land) is None

    def test_surface_below_lowest_shore(self, crater_island):
        _, pack = crater_island
        heights = routing_heights(pack)
        prepare_lake_data(pack, heights, 20)
        for lake in iter_lakes(pack):
            if lake.shoreline:
                assert lake.shoreline == sorted(lake.shoreline, key=lambda c: heights[c])
                assert lake.height == pytest.approx(heights[lake.shoreline[0]] - 0.1)

    def test_crater_closed(self, crater_island):
        _, pack = crater_island
        prepare_lake_data(pack, routing_heights(pack), 20)
        crater = max(iter_lakes(pack), key=lambda lake: lake.height)
        assert crater.closed

    def test_drainable_lake_open(self, pit_island):
        _, pack = pit_island
        prepare_lake_data(pack, routing_heights(pack), 20)
        lake = max(iter_lakes(pack), key=lambda lake: lake.height)
        assert not lake.closed

    def test_open_lakes_limit(self, crater_island):
        _, pack = crater_island
        prepare_lake_data(pack, routing_heights(pack), OPEN_LAKES_LIMIT)
        assert not any(lake.closed for lake in iter_lakes(pack))


class TestLakeClimate:
    """Test lake flux, temperature and evaporation."""

    def test_climate_data(self, pit_island, climate_layers):
        grid, pack = pit_island
        temperatures, precipitation = climate_layers(grid, temperature=12, precipitation=10)
        heights = routing_heights(pack)
        prepare_lake_data(pack, heights, 20)
        out_cells = set_lake_climate_data(pack, heights, temperatures, precipitation, 2)

        lake = max(iter_lakes(pack), key=lambda lake: lake.height)
        assert lake.flux == 10 * len(lake.shoreline)
        assert lake.temperature == 12
        assert 1 < lake.evaporation < 11
        assert lake in out_cells[lake.out_cell]

    def test_closed_lake_has_no_out_cell(self, crater_island, climate_layers):
        grid, pack = crater_island
        heights = routing_heights(pack)
        prepare_lake_data(pack, heights, 20)
        out_cells = set_lake_climate_data(pack, heights, *climate_layers(grid), 2)
        crater = max(iter_lakes(pack), key=lambda lake: lake.height)
        assert crater.out_cell == -1
        assert all(crater not in lakes for lakes in out_cells.values())

    def test_cleanup_drops_missing_rivers(self):
        lake = make_lake(inlets=[1, 2, 3], outlet=4, river=2, enter_flux=5.0, height=19.12345)

        class Pack:
            features = [None, lake]

        cleanup_lake_data(Pack, {1, 3})
        assert lake.inlets == [1, 3]
        assert lake.outlet == 0
        assert lake.river == 0
        assert lake.height == 19.123


class TestLakeGroups:
    """Test lake classification."""

    @pytest.mark.parametrize("fields, group", [
        (dict(temperature=-5), "frozen"),
        (dict(temperature=10, height=65), "lava"),
        (dict(temperature=10, height=30, evaporation=50, flux=10), "dry"),
        (dict(temperature=10, height=30, evaporation=15, flux=10, inlets=[3]), "salt"),
        (dict(temperature=10, height=30, evaporation=5, flux=10), "freshwater"),
        (dict(temperature=10, height=30, evaporation=50, flux=10, outlet=2), "freshwater"),
    ])
    def test_group(self, fields, group):
        assert get_lake_group(make_lake(**fields)) == group

    def test_define_lake_groups(self, pit_island):
        _, pack = pit_island
        for lake in iter_lakes(pack):
            lake.temperature = -10
        counts = define_lake_groups(pack)
        assert counts == {"frozen": len(list(iter_lakes(pack)))}
        assert all(lake.group == "frozen" for lake in iter_lakes(pack))
