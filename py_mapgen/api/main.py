"""FastAPI main application."""

import threading
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..config import TEMPLATES, settings
from ..core.exceptions import AlgorithmNonConvergence, ConfigurationError, GeometryDegeneracy
from ..core.map_generator import GenerationOptions, MapGenerator, MapSnapshot
from ..utils.logging import configure_logging

configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger()

# Initialize FastAPI app
app = FastAPI(
    title="Fantasy Map Generator API",
    description="Procedural terrain, climate, river and biome generation",
    version="0.1.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One generation at a time; the last result is kept in memory
_generation_lock = threading.Lock()
_latest: Dict[str, MapSnapshot] = {}


class MapGenerationRequest(GenerationOptions):
    """Request to generate a new map."""

    strict: bool = False


class MapSummary(BaseModel):
    """Summary information about a generated map."""

    seed: str
    template: str
    width: float
    height: float
    grid_cells: int
    pack_cells: int
    land_cells: int
    water_cells: int
    features: int
    lakes: int
    rivers: int
    map_size: float
    map_latitude: float
    coordinates: Dict[str, float]
    depressions_converged: bool
    generation_time_seconds: float


class BiomeStatistics(BaseModel):
    """Biome distribution statistics for a map."""

    biome_id: int
    biome_name: str
    cell_count: int
    percentage: float
    avg_temperature: Optional[float] = None
    avg_precipitation: Optional[float] = None


class RiverInfo(BaseModel):
    """Information about a river."""

    id: int
    length: float
    discharge: float
    width: float
    source_cell: int
    mouth_cell: int
    cell_count: int


class MapStatistics(BaseModel):
    """Comprehensive statistics about a generated map."""

    seed: str
    total_cells: int
    land_cells: int
    water_cells: int
    rivers_count: int
    lakes_count: int
    lake_groups: Dict[str, int]
    biome_distribution: List[BiomeStatistics]
    major_rivers: List[RiverInfo]
    temperature_range: Tuple[float, float]
    precipitation_range: Tuple[float, float]
    population: float


def _latest_snapshot() -> MapSnapshot:
    snapshot = _latest.get("map")
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No map generated yet")
    return snapshot


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Fantasy Map Generator API",
        "version": "0.1.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "busy": _generation_lock.locked()}


@app.get("/templates")
def get_templates() -> List[Dict[str, Any]]:
    """Available heightmap templates with their pick weights."""
    return [{"key": t.key, "name": t.name, "probability": t.probability} for t in TEMPLATES.values()]


@app.post("/maps/generate", response_model=MapSummary)
def generate_map(request: MapGenerationRequest):
    """Generate a map synchronously and keep it as the latest result."""
    if not _generation_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A map is already being generated")

    try:
        options = GenerationOptions(**request.model_dump(exclude={"strict"}))
        snapshot = MapGenerator(options, strict=request.strict).generate()
    except ConfigurationError as e:
        logger.warning("Rejected generation request", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))
    except AlgorithmNonConvergence as e:
        logger.error("Map generation did not converge", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except GeometryDegeneracy as e:
        logger.error("Map generation failed", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        _generation_lock.release()

    _latest["map"] = snapshot
    return snapshot.summary()


@app.get("/maps/latest", response_model=MapSummary)
def get_latest_map():
    """Summary of the most recently generated map."""
    return _latest_snapshot().summary()


@app.get("/maps/latest/statistics", response_model=MapStatistics)
def get_latest_statistics():
    """Land, water, biome and river statistics of the latest map."""
    return _latest_snapshot().statistics()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
