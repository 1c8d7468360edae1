"""Application settings loaded from the environment and an optional .env file."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings pulled from ``MAPGEN_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MAPGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (plain or json)")

    # Map Generation Configuration
    default_map_width: int = Field(default=800, description="Default map width")
    default_map_height: int = Field(default=600, description="Default map height")
    default_cells: int = Field(default=10000, description="Default number of cells")
    max_cells: int = Field(default=100000, description="Max allowed number of cells")
    default_template: str = Field(default="", description="Default heightmap template, empty for a weighted pick")


settings = Settings()
