"""
Configuration loader for hostwatch.

This module provides configuration management with:
- Multiple configuration sources (JSON, YAML, TOML, .env files, dicts)
- HOSTWATCH_* environment variable overrides
- Schema validation with pydantic
- Hot reloading with watchdog
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Callable
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent
import asyncio

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("hostwatch.config")

ENV_PREFIX = "HOSTWATCH_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".hostwatch" / "logs")
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10
    enable_console: bool = True
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class MonitorConfig(BaseModel):
    """Scan cycle, classification and remediation settings."""
    check_frequency: float = Field(default=5.0, gt=0)  # seconds between scans
    command_timeout: float = Field(default=10.0, gt=0)
    ghost_auto_cleanup: bool = False
    notifications_enabled: bool = True
    cpu_threshold: float = Field(default=90.0, ge=0, le=100)
    memory_threshold: float = Field(default=90.0, ge=0, le=100)
    saturation_cycles: int = Field(default=1, ge=1)
    port_search_start: int = Field(default=3000, ge=1, le=65535)
    port_search_width: int = Field(default=100, ge=1)
    watched_ports: List[int] = Field(default_factory=list)

    @field_validator('watched_ports', mode='before')
    @classmethod
    def parse_watched_ports(cls, v):
        """Accept a single port or a comma separated string."""
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [int(p) for p in v.split(",") if p.strip()]
        return v

    @field_validator('watched_ports')
    @classmethod
    def validate_watched_ports(cls, v):
        for port in v:
            if not 1 <= port <= 65535:
                raise ValueError(f"Invalid port: {port}")
        return v


class ApplicationConfig(BaseModel):
    """An application tracked by the monitor."""
    id: str
    name: str = ""
    ports: List[int] = Field(default_factory=list)
    ghost_detection: bool = False


class HostwatchConfig(BaseModel):
    """Main hostwatch configuration."""
    app_name: str = "hostwatch"
    version: str = "0.1.0"
    debug: bool = False

    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    applications: List[ApplicationConfig] = Field(default_factory=list)

    enable_hot_reload: bool = False

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self):
        self._sources: List[ConfigSource] = []
        self._config: Optional[HostwatchConfig] = None
        self._observers: List[Observer] = []
        self._callbacks: List[Callable[[HostwatchConfig], Any]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = asyncio.Lock()

    @property
    def config(self) -> Optional[HostwatchConfig]:
        return self._config

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source).expanduser()
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Merge order: lowest priority first so higher priorities overwrite
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        elif suffix == ".env" or path.name == ".env":
            return "env"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> HostwatchConfig:
        """
        Load configuration from all sources.

        Environment variables are applied last and win over every file.

        Raises:
            ConfigurationError: if the merged configuration is invalid
        """
        async with self._lock:
            self._loop = asyncio.get_running_loop()
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                try:
                    data = self._load_source(source)
                    merged_data = self._deep_merge(merged_data, data)
                except (OSError, ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
                    logger.error(
                        "failed_to_load_source",
                        source=str(source.path or "dict"),
                        error=str(e)
                    )
                    if source.priority >= 100:
                        raise ConfigurationError(
                            f"Failed to load {source.path}: {e}", cause=e
                        ) from e

            merged_data = self._deep_merge(merged_data, self._load_env_vars())

            try:
                self._config = HostwatchConfig(**merged_data)
            except ValidationError as e:
                errors = []
                for error in e.errors():
                    field = ".".join(str(x) for x in error["loc"])
                    errors.append(f"{field}: {error['msg']}")

                raise ConfigurationError(
                    f"Configuration validation failed: {'; '.join(errors)}"
                ) from e

            logger.info("configuration_loaded", sources=len(self._sources))

            if self._config.enable_hot_reload and not self._observers:
                self._setup_hot_reload()

            return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        elif source.source_type == "env":
            return self._parse_env_file(content)
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _nest(self, result: Dict[str, Any], key: str, value: Any) -> None:
        parts = key.lower().split(ENV_NESTING)
        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    def _parse_env_file(self, content: str) -> Dict[str, Any]:
        """Parse .env file format. Keys may carry the HOSTWATCH_ prefix."""
        result: Dict[str, Any] = {}

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            if key.upper().startswith(ENV_PREFIX):
                key = key[len(ENV_PREFIX):]
            value = value.strip().strip('"').strip("'")
            self._nest(result, key, self._convert_value(value))

        return result

    def _load_env_vars(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        ``HOSTWATCH_MONITOR__CHECK_FREQUENCY=2`` sets ``monitor.check_frequency``.
        """
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX):
                self._nest(result, key[len(ENV_PREFIX):], self._convert_value(value))

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # List (comma-separated)
        if "," in value:
            return [v.strip() for v in value.split(",")]

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _setup_hot_reload(self) -> None:
        """Watch every file source for changes."""
        for source in self._sources:
            if source.path and source.path.exists():
                observer = Observer()
                handler = ConfigFileHandler(self, source.path)
                observer.schedule(handler, str(source.path.parent), recursive=False)
                observer.start()
                self._observers.append(observer)

                logger.info("hot_reload_enabled", path=str(source.path))

    def register_callback(self, callback: Callable[[HostwatchConfig], Any]) -> None:
        """Register configuration change callback."""
        self._callbacks.append(callback)

    def schedule_reload(self) -> None:
        """Thread-safe reload request, used by the file watcher."""
        if self._loop is None or self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.reload(), self._loop)

    async def reload(self) -> None:
        """Reload configuration and notify callbacks when it changed."""
        logger.info("reloading_configuration")

        old_config = self._config
        try:
            new_config = await self.load()
        except ConfigurationError as e:
            # Keep running on the last good configuration
            logger.error("reload_failed", error=str(e))
            return

        if old_config == new_config:
            return

        for callback in self._callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(new_config)
                else:
                    callback(new_config)
            except Exception as e:
                logger.error(
                    "callback_error",
                    callback=getattr(callback, '__name__', repr(callback)),
                    error=str(e)
                )

    def get_config(self) -> HostwatchConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config

    def shutdown(self) -> None:
        """Stop file watchers."""
        for observer in self._observers:
            observer.stop()
            observer.join()
        self._observers.clear()


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration files."""

    def __init__(self, loader: ConfigLoader, path: Path):
        self.loader = loader
        self.path = path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and Path(event.src_path) == self.path:
            logger.info("config_file_modified", path=event.src_path)
            self.loader.schedule_reload()


def default_config_paths() -> List[Path]:
    """Standard configuration locations, lowest priority first."""
    return [
        Path("/etc/hostwatch/config.yaml"),
        Path.home() / ".hostwatch" / "config.json",
        Path.home() / ".hostwatch" / "config.yaml",
        Path("./hostwatch.json"),
        Path("./hostwatch.yaml"),
    ]


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    loader: Optional[ConfigLoader] = None,
    search_defaults: bool = True
) -> HostwatchConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths (win over defaults)
        extra_config: Extra configuration to merge (wins over files)
        loader: Loader to populate, a new one if None
        search_defaults: Whether to look in the standard locations

    Returns:
        Loaded configuration
    """
    loader = loader or ConfigLoader()

    if search_defaults:
        for i, path in enumerate(default_config_paths()):
            if path.exists():
                loader.add_source(path, priority=10 + i)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=90)

    return await loader.load()


__all__ = [
    'HostwatchConfig',
    'MonitorConfig',
    'LoggingConfig',
    'ApplicationConfig',
    'ConfigLoader',
    'ConfigFileHandler',
    'default_config_paths',
    'load_config',
]
