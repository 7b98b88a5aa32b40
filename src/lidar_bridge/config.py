"""
LidarBridge Configuration
=========================

This module handles configuration loading for the LIDAR bridge.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    LIDAR_BRIDGE_CONFIG             -> path of the YAML file
    LIDAR_BRIDGE_UPSTREAM_HOST      -> upstream.host
    LIDAR_BRIDGE_UPSTREAM_PORT      -> upstream.port
    LIDAR_BRIDGE_RECONNECT          -> upstream.reconnect_enabled
    LIDAR_BRIDGE_RECONNECT_BACKOFF_MS -> upstream.reconnect_backoff_ms
    LIDAR_BRIDGE_QUEUE_SIZE         -> fanout.queue_size
    LIDAR_BRIDGE_HTTP_PORT          -> server.port
    LIDAR_BRIDGE_STATIC_DIR         -> server.static_dir
    LIDAR_BRIDGE_LOG_LEVEL          -> logging.level
    PORT                            -> server.port (container platforms)

Example:
    from lidar_bridge.config import settings

    print(settings.upstream.endpoint)
    print(settings.server.port)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

DEFAULT_STATIC_DIR = Path(__file__).parent / "static"


# =============================================================================
# Configuration Models
# =============================================================================

class BridgeConfig(BaseModel):
    """Bridge identification configuration."""

    name: str = Field(default="lidar-bridge", description="Service name")
    version: str = Field(default="v1.0.0", description="Service version")


class UpstreamConfig(BaseModel):
    """ZeroMQ publisher connection configuration."""

    host: str = Field(default="127.0.0.1", description="Publisher host")
    port: int = Field(default=5551, ge=1, le=65535, description="Publisher port")
    poll_timeout_ms: int = Field(
        default=250,
        ge=10,
        description="Poll interval; bounds how long stop() waits for a pending read",
    )
    receive_hwm: int = Field(
        default=100,
        ge=1,
        description="ZeroMQ receive high water mark (frames)",
    )
    monitor: bool = Field(
        default=True,
        description="Track peer connect/disconnect through a socket monitor",
    )
    reconnect_enabled: bool = Field(
        default=True,
        description="Re-open the subscriber after a transport error",
    )
    reconnect_backoff_ms: int = Field(
        default=500,
        ge=10,
        description="Initial backoff between reconnect attempts",
    )
    reconnect_backoff_max_ms: int = Field(
        default=10000,
        ge=10,
        description="Upper bound for the exponential reconnect backoff",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )
    close_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Bounded wait for the subscriber to stop on shutdown",
    )

    @property
    def endpoint(self) -> str:
        """ZeroMQ endpoint the subscriber connects to."""
        return f"tcp://{self.host}:{self.port}"


class FanoutConfig(BaseModel):
    """Downstream fan-out configuration."""

    queue_size: int = Field(
        default=16,
        ge=1,
        description="Per-consumer outbound queue size (drops oldest on overflow)",
    )
    status_message: str = Field(
        default="Connected to LIDAR bridge",
        description="Message sent in the status event on connect",
    )
    stats_log_probability: float = Field(
        default=0.01,
        ge=0,
        le=1.0,
        description="Probability of logging a broadcast summary",
    )


class ServerConfig(BaseModel):
    """HTTP / WebSocket server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    ws_path: str = Field(default="/ws/scans", description="WebSocket push endpoint")
    static_dir: str = Field(
        default=str(DEFAULT_STATIC_DIR),
        description="Directory holding the client application",
    )
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the LIDAR bridge.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    fanout: FanoutConfig = Field(default_factory=FanoutConfig)
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
    if config_path is None:
        config_path = os.environ.get("LIDAR_BRIDGE_CONFIG")

    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Upstream settings
    if env_host := os.environ.get("LIDAR_BRIDGE_UPSTREAM_HOST"):
        config_data.setdefault("upstream", {})["host"] = env_host
    if env_port := os.environ.get("LIDAR_BRIDGE_UPSTREAM_PORT"):
        config_data.setdefault("upstream", {})["port"] = int(env_port)
    if env_reconnect := os.environ.get("LIDAR_BRIDGE_RECONNECT"):
        config_data.setdefault("upstream", {})["reconnect_enabled"] = _parse_bool(env_reconnect)
    if env_backoff := os.environ.get("LIDAR_BRIDGE_RECONNECT_BACKOFF_MS"):
        config_data.setdefault("upstream", {})["reconnect_backoff_ms"] = int(env_backoff)

    # Fan-out settings
    if env_queue := os.environ.get("LIDAR_BRIDGE_QUEUE_SIZE"):
        config_data.setdefault("fanout", {})["queue_size"] = int(env_queue)

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("LIDAR_BRIDGE_HTTP_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    if env_static := os.environ.get("LIDAR_BRIDGE_STATIC_DIR"):
        config_data.setdefault("server", {})["static_dir"] = env_static

    # Logging settings
    if env_log := os.environ.get("LIDAR_BRIDGE_LOG_LEVEL"):
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
