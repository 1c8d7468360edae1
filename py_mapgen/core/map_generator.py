"""
Map generation pipeline.

Runs every stage in order over one seeded generator and returns an
immutable snapshot:

grid -> heightmap -> grid features -> map placement -> climate ->
pack -> pack features -> hydrology -> lake groups -> biomes ->
contours -> suitability
"""

import time
import uuid
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

import numpy as np
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..config.heightmap_templates import HeightmapTemplate, get_template, pick_template
from ..config.settings import settings
from .alea_prng import AleaPRNG
from .biomes import BIOME_NAMES, BiomeClassifier, BiomeType, group_heights
from .cell_packing import regraph
from .climate import Climate, ClimateOptions, MapCoordinates, define_map_size
from .exceptions import AlgorithmNonConvergence, ConfigurationError
from .features import Feature, Features, Lake, define_ocean_layers
from .heightmap_generator import HeightmapGenerator
from .hydrology import DepressionResult, Hydrology, HydrologyOptions, River
from .lakes import define_lake_groups, iter_lakes
from .suitability import rank_cells
from .voronoi_graph import GridConfig, VoronoiGraph, generate_voronoi_graph

logger = structlog.get_logger()


class GenerationOptions(BaseModel):
    """Per-run generation input."""

    seed: Optional[str] = Field(None, description="Random seed, generated when omitted")
    cells_to_generate: int = Field(settings.default_cells, ge=4, description="Target number of cells")
    graph_width: float = Field(settings.default_map_width, gt=0, description="Canvas width")
    graph_height: float = Field(settings.default_map_height, gt=0, description="Canvas height")
    lake_elevation_limit: float = Field(20, ge=0, le=80, description="Height lake water may climb to drain")
    temperature_equator: float = Field(27, ge=-50, le=50, description="Equator temperature in °C")
    temperature_pole: float = Field(-30, ge=-60, le=30, description="Pole temperature in °C")
    height_exponent: float = Field(2.0, ge=1.5, le=2.2, description="Height to altitude exponent")
    precipitation_modifier: float = Field(100, ge=0, le=500, description="Percent of the base water amount")
    winds: Optional[List[float]] = Field(None, description="Wind angle per 30 degree latitude tier")
    resolve_depressions_steps: int = Field(250, ge=0, le=1000, description="Depression filling iteration cap")
    heightmap_template: Optional[str] = Field(settings.default_template or None, description="Template key or name, weighted pick when omitted")
    allow_erosion: bool = Field(True, description="Downcut river beds")

    @field_validator("winds")
    @classmethod
    def _six_winds(cls, value):
        if value is None:
            return value
        if len(value) != 6:
            raise ValueError("winds must hold exactly 6 angles")
        if any(not 0 <= angle <= 360 for angle in value):
            raise ValueError("wind angles must be within 0..360")
        return value

    @field_validator("heightmap_template")
    @classmethod
    def _known_template(cls, value):
        if value:
            try:
                get_template(value)
            except KeyError as e:
                raise ValueError(str(e)) from e
        return value or None


def _read_only(array: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if array is None:
        return None
    view = array.view()
    view.setflags(write=False)
    return view


def _freeze_graph(graph: VoronoiGraph) -> None:
    for f in fields(graph):
        value = getattr(graph, f.name)
        if isinstance(value, np.ndarray):
            value.setflags(write=False)


@dataclass(frozen=True)
class MapSnapshot:
    """Physical geography of one generated map."""

    seed: str
    template: str
    options: Dict[str, Any]
    map_size: float
    map_latitude: float
    coordinates: MapCoordinates

    grid: VoronoiGraph
    pack: VoronoiGraph

    # grid layers
    temperatures: np.ndarray
    precipitation: np.ndarray

    # pack layers
    heights: np.ndarray
    routing_heights: np.ndarray
    flux: np.ndarray
    river_ids: np.ndarray
    confluences: np.ndarray
    biomes: np.ndarray
    suitability: np.ndarray
    population: np.ndarray

    rivers: List[River]
    depressions: DepressionResult

    ocean_layers: Dict[int, List[List[List[float]]]] = field(default_factory=dict)
    height_layers: Dict[int, List[List[List[float]]]] = field(default_factory=dict)
    biome_groups: Dict[int, List[List[List[float]]]] = field(default_factory=dict)
    generation_time: float = 0.0

    @property
    def features(self) -> List[Optional[Feature]]:
        return self.pack.features

    @property
    def lakes(self) -> List[Lake]:
        return list(iter_lakes(self.pack))

    @property
    def coastlines(self) -> Dict[int, List[List[float]]]:
        """Clipped outline of every island and lake."""
        return {f.id: f.polygon for f in self.features[1:] if f.polygon}

    @property
    def n_cells(self) -> int:
        return self.pack.n_cells

    def summary(self) -> Dict[str, Any]:
        heights = self.heights
        return {
            "seed": self.seed,
            "template": self.template,
            "width": self.grid.graph_width,
            "height": self.grid.graph_height,
            "grid_cells": self.grid.n_cells,
            "pack_cells": self.pack.n_cells,
            "land_cells": int(np.sum(heights >= 20)),
            "water_cells": int(np.sum(heights < 20)),
            "features": len(self.features) - 1,
            "lakes": len(self.lakes),
            "rivers": len(self.rivers),
            "map_size": self.map_size,
            "map_latitude": self.map_latitude,
            "coordinates": self.coordinates.to_dict(),
            "depressions_converged": self.depressions.converged,
            "generation_time_seconds": round(self.generation_time, 3),
        }

    def statistics(self) -> Dict[str, Any]:
        land = self.heights >= 20
        biome_ids, counts = np.unique(self.biomes, return_counts=True)
        total = max(self.n_cells, 1)
        grid_of = self.pack.grid_indices

        biome_distribution = []
        for biome, count in zip(biome_ids, counts):
            cells = self.biomes == biome
            biome_distribution.append({
                "biome_id": int(biome),
                "biome_name": BIOME_NAMES[BiomeType(int(biome))],
                "cell_count": int(count),
                "percentage": round(float(count) / total * 100, 2),
                "avg_temperature": round(float(self.temperatures[grid_of[cells]].mean()), 1),
                "avg_precipitation": round(float(self.precipitation[grid_of[cells]].mean()), 1),
            })

        major_rivers = sorted(self.rivers, key=lambda r: r.discharge, reverse=True)[:10]
        return {
            "seed": self.seed,
            "total_cells": self.n_cells,
            "land_cells": int(land.sum()),
            "water_cells": int((~land).sum()),
            "rivers_count": len(self.rivers),
            "lakes_count": len(self.lakes),
            "lake_groups": {g: sum(1 for lake in self.lakes if lake.group == g)
                            for g in sorted({lake.group for lake in self.lakes})},
            "biome_distribution": biome_distribution,
            "major_rivers": [
                {
                    "id": r.id,
                    "length": r.length,
                    "discharge": round(r.discharge, 2),
                    "width": r.width,
                    "source_cell": r.source,
                    "mouth_cell": r.mouth,
                    "cell_count": len(r.cells),
                }
                for r in major_rivers
            ],
            "temperature_range": [int(self.temperatures.min()), int(self.temperatures.max())],
            "precipitation_range": [int(self.precipitation.min()), int(self.precipitation.max())],
            "population": round(float(self.population.sum()), 1),
        }


class MapGenerator:
    """Runs the generation stages for one set of options."""

    def __init__(self, options: Union[GenerationOptions, Dict[str, Any], None] = None,
                 strict: bool = False, max_cells: Optional[int] = None):
        """
        Args:
            options: Generation options or a mapping of them
            strict: Raise AlgorithmNonConvergence instead of falling back
            max_cells: Upper bound on the requested cell count

        Raises:
            ConfigurationError: if the options are invalid
        """
        self.options = self._validate(options)
        self.strict = strict
        self.max_cells = max_cells or settings.max_cells

        if self.options.cells_to_generate > self.max_cells:
            raise ConfigurationError(
                f"At most {self.max_cells} cells are supported, got {self.options.cells_to_generate}"
            )

    @staticmethod
    def _validate(options) -> GenerationOptions:
        if isinstance(options, GenerationOptions):
            return options
        try:
            return GenerationOptions(**(options or {}))
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def _pick_template(self, prng) -> HeightmapTemplate:
        name = self.options.heightmap_template
        if name:
            return get_template(name)
        return pick_template(prng)

    def generate(self) -> MapSnapshot:
        """
        Generate a map.

        Returns:
            A fresh MapSnapshot

        Raises:
            ConfigurationError: for invalid options
            GeometryDegeneracy: if the points cannot be triangulated
            AlgorithmNonConvergence: in strict mode, when depressions remain
        """
        started = time.perf_counter()
        opts = self.options
        seed = opts.seed or str(uuid.uuid4())[:8]
        prng = AleaPRNG(seed)
        log = logger.bind(seed=seed)
        log.info("Starting map generation", cells=opts.cells_to_generate,
                 width=opts.graph_width, height=opts.graph_height)

        # Stage 1: Grid
        config = GridConfig(width=opts.graph_width, height=opts.graph_height,
                            cells_desired=opts.cells_to_generate)
        grid = generate_voronoi_graph(config, prng, max_cells=self.max_cells)

        # Stage 2: Heightmap
        template = self._pick_template(prng)
        log.info("Generating heightmap", template=template.key)
        heightmap = HeightmapGenerator(grid, prng, opts.cells_to_generate)
        grid.heights = heightmap.from_template(template.key)

        # Stage 3: Grid features and lakes
        features = Features(grid)
        features.markup_grid()
        features.add_lakes_in_deep_depressions(opts.lake_elevation_limit)
        features.open_near_sea_lakes(template.key)

        # Stage 4: Place the map on the globe
        map_size, map_latitude = define_map_size(grid.features, template.key, prng)
        coordinates = MapCoordinates.from_map_size(map_size, map_latitude, opts.graph_width, opts.graph_height)
        log.info("Map placed", size=map_size, latitude=map_latitude, **coordinates.to_dict())

        # Stage 5: Climate
        climate = Climate(grid, prng, ClimateOptions(
            temperature_equator=opts.temperature_equator,
            temperature_pole=opts.temperature_pole,
            height_exponent=opts.height_exponent,
            precipitation_modifier=opts.precipitation_modifier,
            winds=list(opts.winds) if opts.winds else None,
        ), coordinates)
        temperatures, precipitation = climate.run(opts.cells_to_generate)

        # Stage 6: Pack
        pack = regraph(grid)
        Features(pack).markup_pack(pack, grid.n_cells)

        # Stage 7: Hydrology
        hydrology = Hydrology(pack, temperatures, precipitation, HydrologyOptions(
            lake_elevation_limit=opts.lake_elevation_limit,
            resolve_depressions_steps=opts.resolve_depressions_steps,
            height_exponent=opts.height_exponent,
            cells_desired=opts.cells_to_generate,
            allow_erosion=opts.allow_erosion,
        ))
        rivers = hydrology.generate_rivers()
        depressions = hydrology.depressions
        if self.strict and not depressions.converged:
            raise AlgorithmNonConvergence(
                "Depression resolution did not converge",
                remaining=depressions.remaining,
                iterations=depressions.iterations,
            )
        define_lake_groups(pack)

        # Stage 8: Biomes
        classifier = BiomeClassifier(pack, temperatures, precipitation,
                                     hydrology.flux, hydrology.river_ids)
        biomes = classifier.classify_biomes()

        # Stage 9: Contours
        ocean_layers = define_ocean_layers(grid)
        height_layers = group_heights(pack)
        biome_groups = classifier.group_biomes()

        # Stage 10: Suitability
        suitability, population = rank_cells(pack, biomes, hydrology.flux,
                                             hydrology.confluences, hydrology.river_ids)

        _freeze_graph(grid)
        _freeze_graph(pack)

        snapshot = MapSnapshot(
            seed=seed,
            template=template.key,
            options=opts.model_dump(),
            map_size=map_size,
            map_latitude=map_latitude,
            coordinates=coordinates,
            grid=grid,
            pack=pack,
            temperatures=_read_only(temperatures),
            precipitation=_read_only(precipitation),
            heights=_read_only(pack.heights),
            routing_heights=_read_only(hydrology.heights),
            flux=_read_only(hydrology.flux),
            river_ids=_read_only(hydrology.river_ids),
            confluences=_read_only(hydrology.confluences),
            biomes=_read_only(biomes),
            suitability=_read_only(suitability),
            population=_read_only(population),
            rivers=rivers,
            depressions=depressions,
            ocean_layers=ocean_layers,
            height_layers=height_layers,
            biome_groups=biome_groups,
            generation_time=time.perf_counter() - started,
        )

        log.info("Map generation completed", **{k: v for k, v in snapshot.summary().items()
                                                 if k not in ("seed", "coordinates")})
        return snapshot


def generate_map(**kwargs) -> MapSnapshot:
    """Generate a map from keyword options; ``strict`` is passed to the generator."""
    strict = kwargs.pop("strict", False)
    return MapGenerator(kwargs, strict=strict).generate()
