#!/usr/bin/env python3
"""
Configuration management for microbatch.

Settings come from, in increasing priority: dataclass defaults, ``MICROBATCH_*``
environment variables, and the first JSON config file found among
``~/.microbatch/config.json``, ``./microbatch.json`` and
``$MICROBATCH_CONFIG_FILE``.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Scheduler settings."""
    batch_interval: float = 1.0
    error_queue_size: int = 1000


@dataclass
class SourceConfig:
    """Defaults for the built-in source adapters."""
    buffer_size: int = 10000
    max_batch_size: Optional[int] = None
    reconnect_delay: float = 0.5
    max_reconnect_delay: float = 30.0
    socket_line_limit: int = 65536


@dataclass
class OperationalConfig:
    """Operational configuration."""
    log_level: str = "INFO"
    enable_metrics: bool = True
    print_num: int = 10


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes')


def _env_optional_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return default
    if value.lower() in ('', 'none'):
        return None
    return int(value)


@dataclass
class MicrobatchConfig:
    """Main microbatch configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)
    operational: OperationalConfig = field(default_factory=OperationalConfig)
    load: bool = field(default=True, repr=False)

    def __post_init__(self):
        """Load configuration from environment and files."""
        if self.load:
            self._load_from_environment()
            self._load_from_config_files()

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        # Engine
        self.engine.batch_interval = float(os.getenv('MICROBATCH_BATCH_INTERVAL', self.engine.batch_interval))
        self.engine.error_queue_size = int(os.getenv('MICROBATCH_ERROR_QUEUE_SIZE', self.engine.error_queue_size))

        # Sources
        self.sources.buffer_size = int(os.getenv('MICROBATCH_SOURCE_BUFFER_SIZE', self.sources.buffer_size))
        self.sources.max_batch_size = _env_optional_int('MICROBATCH_MAX_BATCH_SIZE', self.sources.max_batch_size)
        self.sources.reconnect_delay = float(os.getenv('MICROBATCH_RECONNECT_DELAY', self.sources.reconnect_delay))
        self.sources.max_reconnect_delay = float(os.getenv('MICROBATCH_MAX_RECONNECT_DELAY', self.sources.max_reconnect_delay))
        self.sources.socket_line_limit = int(os.getenv('MICROBATCH_SOCKET_LINE_LIMIT', self.sources.socket_line_limit))

        # Operational
        self.operational.log_level = os.getenv('MICROBATCH_LOG_LEVEL', self.operational.log_level)
        self.operational.enable_metrics = _env_bool('MICROBATCH_ENABLE_METRICS', self.operational.enable_metrics)
        self.operational.print_num = int(os.getenv('MICROBATCH_PRINT_NUM', self.operational.print_num))

    def _load_from_config_files(self):
        """Load configuration from the first config file found."""
        config_paths = [
            Path.home() / '.microbatch' / 'config.json',
            Path.cwd() / 'microbatch.json',
        ]
        env_path = os.getenv('MICROBATCH_CONFIG_FILE')
        if env_path:
            config_paths.append(Path(env_path))

        for config_path in config_paths:
            if config_path.is_file():
                self.update_from_file(config_path)
                break

    def update_from_file(self, path: Path) -> None:
        try:
            with open(path, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return
        self._update_from_dict(config_data)
        logger.debug(f"Loaded configuration from {path}")

    def _update_from_dict(self, data: Dict[str, Any]):
        """Update configuration from dictionary, ignoring unknown keys."""
        for section_name in ('engine', 'sources', 'operational'):
            section = getattr(self, section_name)
            for key, value in data.get(section_name, {}).items():
                if hasattr(section, key):
                    setattr(section, key, value)
                else:
                    logger.warning(f"Unknown config key {section_name}.{key}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'engine': asdict(self.engine),
            'sources': asdict(self.sources),
            'operational': asdict(self.operational),
        }

    def save_to_file(self, path: Path):
        """Save configuration to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Global configuration instance
_config: Optional[MicrobatchConfig] = None


def get_config() -> MicrobatchConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = MicrobatchConfig()
    return _config


def init_config(config_file: Optional[str] = None) -> MicrobatchConfig:
    """(Re)initialize the global configuration, optionally from an explicit file."""
    global _config
    _config = MicrobatchConfig()
    if config_file:
        _config.update_from_file(Path(config_file))
    return _config
