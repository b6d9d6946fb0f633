"""
Configuration Persistence

Reads and writes one JSON document per application.
Writes go to a temp file that then replaces the target.
"""

import json
import os
from pathlib import Path

from .exceptions import ConfigDirError, ConfigNotFoundError, ConfigParseError
from .logging_setup import get_service_logger
from .values import ConfigMap, config_map_from_json, config_map_to_json

logger = get_service_logger("persistence")

JSON_INDENT = 4


def load_config_map(path: str | Path) -> ConfigMap:
    """
    Load a configuration file.

    Raises:
        ConfigNotFoundError: file does not exist
        ConfigParseError: content is not a JSON object
        ValueTypeError: a value has an unsupported type
    """
    path = Path(path)
    logger.debug(f"Parsing config file: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigNotFoundError(str(path)) from None
    except json.JSONDecodeError as e:
        raise ConfigParseError(str(e), str(path)) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigParseError(f"cannot read file: {e}", str(path)) from e

    if not isinstance(data, dict):
        raise ConfigParseError(
            f"top level must be an object, got {type(data).__name__}", str(path)
        )

    config_map = config_map_from_json(data)
    logger.info(f"Loaded {len(config_map)} keys from {path}")
    return config_map


def _write_json(path: Path, config_map: ConfigMap) -> None:
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(config_map_to_json(config_map), f, indent=JSON_INDENT, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove temp file {temp_path}: {e}")
        raise


def save_config_map(path: str | Path, config_map: ConfigMap) -> bool:
    """
    Serialize a configuration map back to its file.

    Failures are logged and never raised: the in-memory map stays authoritative.

    Returns:
        True if the file was written
    """
    path = Path(path)
    try:
        _write_json(path, config_map)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save configuration to {path}: {e}")
        return False

    logger.debug(f"Configuration saved to file: {path}")
    return True


def ensure_directory(path: str | Path) -> Path:
    """Create a directory (and parents) if missing"""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigDirError(f"cannot create directory {path}: {e}", str(path)) from e
    return path


def load_or_create(
    path: str | Path,
    defaults: ConfigMap,
    force_create: bool = False,
) -> tuple[ConfigMap, bool]:
    """
    First-run policy.

    If the file is missing, or force_create is set, the defaults are written
    and returned without reading the file back.

    Returns:
        (config map, True if the file was created from the defaults)

    Raises:
        ConfigDirError: the directory or file could not be created
        ConfigParseError / ValueTypeError: the existing file is unusable
    """
    path = Path(path)
    ensure_directory(path.parent)

    if force_create or not path.exists():
        try:
            _write_json(path, defaults)
        except OSError as e:
            raise ConfigDirError(f"cannot create config file {path}: {e}", str(path)) from e
        logger.info(f"Created configuration file {path}")
        return dict(defaults), True

    return load_config_map(path), False
