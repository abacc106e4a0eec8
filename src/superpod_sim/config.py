"""Configuration management for the simulator."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SUPERPOD_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cluster shape
    cluster_name: str = Field(default="dgx-cluster", description="Cluster name shown by Slurm and cmsh")
    node_count: int = Field(default=8, description="Number of DGX compute nodes")
    system_type: str = Field(default="DGX-H100", description="DGX system model for every node")
    node_prefix: str = Field(default="dgx-node", description="Hostname prefix for compute nodes")
    headnode: str = Field(default="dgx-headnode", description="Hostname of the management head node")
    default_node: str | None = Field(default=None, description="Node the terminal starts on")

    # Terminal
    history_file: Path | None = Field(default=None, description="Optional prompt history file")

    # Logging
    log_level: str = Field(default="WARNING", description="Log level")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings loaded from env and .env."""
    return Settings()
