"""
Core map generation functionality.
"""

from .alea_prng import AleaPRNG
from .voronoi_graph import GridConfig, VoronoiGraph, generate_voronoi_graph
from .heightmap_generator import HeightmapGenerator
from .cell_packing import regraph
from .features import Feature, Features, Lake
from .climate import Climate, ClimateOptions, MapCoordinates
from .hydrology import Hydrology, HydrologyOptions, River
from .biomes import BiomeClassifier, BiomeType
from .map_generator import GenerationOptions, MapGenerator, MapSnapshot, generate_map

__all__ = ['AleaPRNG', 'GridConfig', 'VoronoiGraph', 'generate_voronoi_graph',
           'HeightmapGenerator', 'regraph', 'Feature', 'Features', 'Lake',
           'Climate', 'ClimateOptions', 'MapCoordinates',
           'Hydrology', 'HydrologyOptions', 'River', 'BiomeClassifier', 'BiomeType',
           'GenerationOptions', 'MapGenerator', 'MapSnapshot', 'generate_map']
