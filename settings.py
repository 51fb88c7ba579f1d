"""
Configuration for the chapter PDF server.
Loads from environment variables (and an optional .env file).
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    server_host: str = Field(default="0.0.0.0", alias="SERVER_HOST")
    server_port: int = Field(default=8080, alias="SERVER_PORT")
    cors_origins: List[str] = Field(default=["*"], alias="CORS_ORIGINS")
    download_dir: str = Field(default="downloads", alias="DOWNLOAD_DIR")

    # Catalog
    catalog_site: str = Field(default="mangadex", alias="CATALOG_SITE")
    api_key: Optional[str] = Field(default=None, alias="MANGADEX_API_KEY")
    rate_interval: float = Field(default=1.0, alias="RATE_INTERVAL")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")

    # PDF rendering
    pdf_dpi: int = Field(default=144, alias="PDF_DPI")

    @field_validator("rate_interval")
    @classmethod
    def _non_negative_interval(cls, v: float) -> float:
        if v < 0:
            raise ValueError("RATE_INTERVAL must be >= 0")
        return v

    @field_validator("pdf_dpi")
    @classmethod
    def _positive_dpi(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("PDF_DPI must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
