"""
jsx-stream-preview Configuration
================================

This module handles configuration loading for the preview service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    JSX_STREAM_URL             -> stream.url
    JSX_STREAM_MAX_RETRIES     -> stream.max_retries
    JSX_STREAM_BACKOFF_MS      -> stream.backoff_base_ms
    JSX_STREAM_BACKOFF_MAX_MS  -> stream.backoff_max_ms
    JSX_STREAM_AUTOSTART       -> stream.autostart
    JSX_STREAM_FORMAT          -> stream.format
    JSX_REGISTRY_CAPACITY      -> registry.capacity
    JSX_LOG_LEVEL              -> logging.level
    PORT                       -> server.port

Example:
    from jsx_stream.config import settings

    print(settings.stream.url)
    print(settings.registry.capacity)
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AppConfig(BaseModel):
    """Service identification."""

    name: str = Field(default="jsx-stream-preview", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class StreamConfig(BaseModel):
    """Generation stream connection configuration."""

    url: str = Field(
        default="http://localhost:3001/api/generate",
        description="Endpoint the generation request is POSTed to",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Reconnect attempts before the session is disconnected",
    )
    backoff_base_ms: int = Field(
        default=500,
        ge=1,
        description="First reconnect delay in milliseconds (doubles per attempt)",
    )
    backoff_max_ms: int = Field(
        default=8000,
        ge=1,
        description="Upper bound for the reconnect delay in milliseconds",
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Read timeout for the streaming response",
    )
    format: Literal["events", "marked_text"] = Field(
        default="events",
        description="events: per-component frames; marked_text: raw model text with /// START and /// END lines",
    )
    autostart: bool = Field(
        default=False,
        description="Start a generation request with request_body on startup",
    )
    request_body: Dict[str, Any] = Field(
        default_factory=dict,
        description="Body sent with the autostart request",
    )


class RegistryConfig(BaseModel):
    """Component registry configuration."""

    capacity: int = Field(
        default=20,
        ge=1,
        description="Completed components retained before eviction",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8001, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for jsx-stream-preview.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    app: AppConfig = Field(default_factory=AppConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Stream settings
    if env_url := os.environ.get("JSX_STREAM_URL"):
        config_data.setdefault("stream", {})["url"] = env_url
    if env_retries := os.environ.get("JSX_STREAM_MAX_RETRIES"):
        config_data.setdefault("stream", {})["max_retries"] = int(env_retries)
    if env_backoff := os.environ.get("JSX_STREAM_BACKOFF_MS"):
        config_data.setdefault("stream", {})["backoff_base_ms"] = int(env_backoff)
    if env_backoff_max := os.environ.get("JSX_STREAM_BACKOFF_MAX_MS"):
        config_data.setdefault("stream", {})["backoff_max_ms"] = int(env_backoff_max)
    if env_autostart := os.environ.get("JSX_STREAM_AUTOSTART"):
        config_data.setdefault("stream", {})["autostart"] = env_autostart.lower() in ("1", "true", "yes")
    if env_format := os.environ.get("JSX_STREAM_FORMAT"):
        config_data.setdefault("stream", {})["format"] = env_format

    # Registry settings
    if env_capacity := os.environ.get("JSX_REGISTRY_CAPACITY"):
        config_data.setdefault("registry", {})["capacity"] = int(env_capacity)

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("JSX_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
