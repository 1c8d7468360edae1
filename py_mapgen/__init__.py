"""Procedural fantasy map generation: terrain, climate, rivers and biomes."""

__version__ = "0.1.0"
