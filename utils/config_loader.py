"""
Configuration management for the music library synchronizer.

This module handles loading and validating configuration from YAML files
with sensible defaults and environment variable support.
"""

import json
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

from utils.exceptions import ConfigurationError

DEVICE_MARKER = "adb"
FILE_TYPE_NAMES = ['mp3', 'wav', 'flac', 'm4a']


@dataclass
class DeviceConfig:
    adb_path: str = "adb"
    music_root: str = "/storage/emulated/0/Music"
    serial: Optional[str] = None


@dataclass
class EncoderConfig:
    ffmpeg_path: str = "ffmpeg"
    mp3_bitrate: str = "320k"
    m4a_bitrate: str = "256k"


@dataclass
class FilesystemConfig:
    music_extensions: list = field(default_factory=lambda: ['mp3', 'flac', 'wav', 'm4a'])
    image_extensions: list = field(default_factory=lambda: ['jpg', 'jpeg', 'png'])


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DiscogsConfig:
    key: Optional[str] = None
    secret: Optional[str] = None
    user_agent: str = "morg/1.0 +music library synchronizer"
    cache_file: str = "~/.cache/morg/release_info.json"
    min_remaining: int = 1
    pause_seconds: float = 60.0


@dataclass
class MorgConfig:
    """Structured configuration class with defaults."""

    # Ordered source roots; earlier roots lose key collisions to later ones
    sources: List[str] = field(default_factory=list)

    # Ordered {location, file_type, allow_any} entries
    destinations: List[Dict[str, Any]] = field(default_factory=list)

    device: DeviceConfig = field(default_factory=DeviceConfig)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    filesystem: FilesystemConfig = field(default_factory=FilesystemConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    discogs: DiscogsConfig = field(default_factory=DiscogsConfig)


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with defaults and environment variable support.

    Args:
        config_path: Path to configuration file (optional)

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config_dict = _dataclass_to_dict(MorgConfig())

    if config_path and config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                file_config = yaml.safe_load(f)
                if file_config:
                    if not isinstance(file_config, dict):
                        raise ConfigurationError(
                            f"Config file {config_path} must contain a mapping"
                        )
                    config_dict = _merge_configs(config_dict, file_config)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except IOError as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}")

    config_dict = _apply_env_overrides(config_dict)

    _validate_config(config_dict)
    _normalize_config(config_dict)

    return config_dict


def _dataclass_to_dict(obj) -> Dict[str, Any]:
    """Convert dataclass to dictionary recursively."""
    if hasattr(obj, '__dataclass_fields__'):
        result = {}
        for field_name in obj.__dataclass_fields__:
            value = getattr(obj, field_name)
            result[field_name] = _dataclass_to_dict(value)
        return result
    elif isinstance(obj, dict):
        return {k: _dataclass_to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_dataclass_to_dict(item) for item in obj]
    else:
        return obj


def _merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge configuration dictionaries.

    Lists are replaced, not concatenated.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables should be prefixed with MORG_ and use
    double underscores to represent nested keys.

    Examples:
        MORG_LOGGING__LEVEL=DEBUG
        MORG_DEVICE__MUSIC_ROOT=/sdcard/Music
        MORG_SOURCES='["/music/flac", "/music/mp3"]'
    """
    prefix = "MORG_"

    for env_var, value in os.environ.items():
        if not env_var.startswith(prefix):
            continue

        key_path = env_var[len(prefix):].lower().split('__')
        _set_nested_value(config, key_path, _convert_env_value(value))

    return config


def _convert_env_value(value: str) -> Any:
    """Convert environment variable string to appropriate Python type."""
    if value.lower() in ('true', 'yes', 'on'):
        return True
    elif value.lower() in ('false', 'no', 'off'):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.startswith(('[', '{')):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def _set_nested_value(config: Dict[str, Any], key_path: list, value: Any):
    """Set a value in a nested dictionary using a list of keys."""
    current = config

    for key in key_path[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[key_path[-1]] = value


def _validate_config(config: Dict[str, Any]):
    """
    Validate configuration values.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    sources = config.get('sources', [])
    if not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
        raise ConfigurationError("sources must be a list of directory paths")

    destinations = config.get('destinations', [])
    if not isinstance(destinations, list):
        raise ConfigurationError("destinations must be a list")

    for i, dest in enumerate(destinations):
        if not isinstance(dest, dict):
            raise ConfigurationError(f"destinations[{i}] must be a mapping")
        if not dest.get('location'):
            raise ConfigurationError(f"destinations[{i}].location is required")
        file_type = str(dest.get('file_type', '')).lower()
        if file_type not in FILE_TYPE_NAMES:
            raise ConfigurationError(
                f"destinations[{i}].file_type must be one of {FILE_TYPE_NAMES}"
            )
        if not isinstance(dest.get('allow_any', False), bool):
            raise ConfigurationError(f"destinations[{i}].allow_any must be true or false")

    filesystem_config = config.get('filesystem', {})
    for key in ('music_extensions', 'image_extensions'):
        extensions = filesystem_config.get(key, [])
        if not isinstance(extensions, list) or not extensions:
            raise ConfigurationError(f"filesystem.{key} must be a non-empty list")

    logging_config = config.get('logging', {})
    log_level = str(logging_config.get('level', 'INFO'))
    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if log_level.upper() not in valid_levels:
        raise ConfigurationError(f"logging.level must be one of {valid_levels}")

    discogs_config = config.get('discogs', {})
    min_remaining = discogs_config.get('min_remaining', 1)
    if not isinstance(min_remaining, int) or min_remaining < 0:
        raise ConfigurationError("discogs.min_remaining must be a non-negative integer")

    pause_seconds = discogs_config.get('pause_seconds', 60.0)
    if not isinstance(pause_seconds, (int, float)) or pause_seconds < 0:
        raise ConfigurationError("discogs.pause_seconds must be a non-negative number")


def _normalize_config(config: Dict[str, Any]):
    """Normalize extensions and destination entries after validation."""
    filesystem_config = config['filesystem']
    for key in ('music_extensions', 'image_extensions'):
        filesystem_config[key] = [ext.lower().lstrip('.') for ext in filesystem_config[key]]

    config['destinations'] = [
        {
            'location': str(dest['location']),
            'file_type': str(dest['file_type']).lower(),
            'allow_any': bool(dest.get('allow_any', False)),
        }
        for dest in config['destinations']
    ]


def get_config_template() -> str:
    """
    Get a YAML template for the configuration file.

    Returns:
        YAML configuration template as string
    """
    return """# Configuration for morg
# Source roots, in order. On duplicate albums the later root wins.
sources:
  - ~/Music/lossless
  - ~/Music/lossy

# Destinations, in order. Directory destinations are always synced before
# the device ("adb") so conversions exist before they are pushed.
destinations:
  - location: /media/usb/Music
    file_type: flac
    allow_any: true
  - location: adb
    file_type: mp3
    allow_any: false

device:
  adb_path: adb
  music_root: /storage/emulated/0/Music
  serial: null

encoder:
  ffmpeg_path: ffmpeg
  mp3_bitrate: 320k
  m4a_bitrate: 256k

filesystem:
  music_extensions: [mp3, flac, wav, m4a]
  image_extensions: [jpg, jpeg, png]

logging:
  level: INFO
  file: null

discogs:
  key: null
  secret: null
  user_agent: "morg/1.0 +music library synchronizer"
  cache_file: ~/.cache/morg/release_info.json
  min_remaining: 1       # pause when this few requests remain
  pause_seconds: 60
"""
