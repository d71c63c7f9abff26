"""Configuration management for the niimbridge print bridge.

Settings are merged from three sources, lowest precedence first: built-in
defaults, config/bridge.config.json and environment overrides.
"""

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from niimbridge.errors import ConfigError

logger = logging.getLogger(__name__)

# Config file location, relative to the working directory of the front-end
DEFAULT_CONFIG_FILE = Path("config") / "bridge.config.json"

# Env override variants, tried in order
ENV_PREFIXES = ("NIIMBOT_", "NIIMBLUE_", "")

DEFAULTS: dict[str, str | int] = {
    "NIIMBLUE_NAME": "",
    "RENDER": "text",
    "THRESHOLD": "60%",
    "DIRECTION": "",
    "ROTATE_FOR_LEFT": "0",
    "LABEL_TYPE": 1,
    "QUANTITY": 1,
    "DEBUG": "0",
}

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")


class RenderMode(str, Enum):
    """Image processing strategy."""

    TEXT = "text"
    PHOTO = "photo"


class Direction(str, Enum):
    """Print direction the printer expects for the label stock."""

    UNSET = ""
    TOP = "top"
    LEFT = "left"
    RIGHT = "right"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Settings:
    """Resolved settings for one bridge invocation.

    Attributes:
        printer_name: Bluetooth name of the printer (e.g. D110_M-H1234567).
        render: Render mode, text (hard threshold) or photo (dithered).
        threshold: Threshold string used in text mode (e.g. "60%").
        direction: Explicit print direction override (UNSET = ask the printer).
        rotate_for_left: Rotate the raster 90 degrees when printing "left".
        label_type: Label type sent to the printer.
        quantity: Labels printed per job.
        debug: Verbose logging and debug raster copies.
    """

    printer_name: str
    render: RenderMode = RenderMode.TEXT
    threshold: str = "60%"
    direction: Direction = Direction.UNSET
    rotate_for_left: bool = False
    label_type: int = 1
    quantity: int = 1
    debug: bool = False


def parse_int(value: str | None) -> int | None:
    """Parse the leading integer of a string ("60%" -> 60).

    Args:
        value: String to parse.

    Returns:
        int | None: Parsed integer, or None if the string does not start with one.
    """
    if value is None:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if value is None:
        return ""
    return str(value)


def load_config_file(path: Path | None = None) -> dict[str, str]:
    """Load the key/value config file.

    A missing, unreadable or malformed file is treated as empty.

    Args:
        path: Path to config file (default: config/bridge.config.json).

    Returns:
        dict[str, str]: Config values as strings.
    """
    path = path or DEFAULT_CONFIG_FILE

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring config file {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: expected a JSON object")
        return {}

    return {str(key): _stringify(value) for key, value in data.items()}


def pick(
    key: str,
    defaults: Mapping[str, object],
    file_values: Mapping[str, object],
    environ: Mapping[str, str],
) -> str:
    """Look up one setting: environment > config file > default.

    Empty strings count as absent in every source.

    Args:
        key: Setting name (e.g. "QUANTITY").
        defaults: Built-in defaults.
        file_values: Values read from the config file.
        environ: Environment mapping.

    Returns:
        str: Resolved value as a string.
    """
    for prefix in ENV_PREFIXES:
        value = environ.get(prefix + key)
        if value:
            return value

    value = _stringify(file_values.get(key))
    if value:
        return value

    return _stringify(defaults.get(key))


def _positive_int(raw: str, default) -> int:
    value = parse_int(raw)
    if value is None:
        value = int(default)
    return max(1, value)


def _enum_value(enum_cls, raw: str, fallback, label: str):
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        logger.warning(f"Unknown {label} {raw!r}, using {fallback.value!r}")
        return fallback


def resolve_settings(
    defaults: Mapping[str, object],
    file_values: Mapping[str, object],
    environ: Mapping[str, str],
    config_path: Path | None = None,
) -> Settings:
    """Merge the three setting sources into a Settings record.

    Args:
        defaults: Built-in defaults.
        file_values: Values read from the config file.
        environ: Environment mapping.
        config_path: Config file path, only used in the error message.

    Returns:
        Settings: Immutable resolved settings.

    Raises:
        ConfigError: If no printer name is configured.
    """

    def get(key: str) -> str:
        return pick(key, defaults, file_values, environ)

    printer_name = get("NIIMBLUE_NAME").strip()
    if not printer_name:
        path = config_path or DEFAULT_CONFIG_FILE
        raise ConfigError(
            f'Set your printer name in {path} ({{"NIIMBLUE_NAME":"D110_M-...."}}) '
            "or via env NIIMBLUE_NAME."
        )

    return Settings(
        printer_name=printer_name,
        render=_enum_value(RenderMode, get("RENDER"), RenderMode.TEXT, "render mode"),
        threshold=get("THRESHOLD"),
        direction=_enum_value(Direction, get("DIRECTION"), Direction.UNSET, "direction"),
        rotate_for_left=get("ROTATE_FOR_LEFT") == "1",
        label_type=_positive_int(get("LABEL_TYPE"), defaults.get("LABEL_TYPE", 1)),
        quantity=_positive_int(get("QUANTITY"), defaults.get("QUANTITY", 1)),
        debug=get("DEBUG") == "1",
    )


def get_settings(
    config_path: Path | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Get the settings for this invocation.

    Args:
        config_path: Optional custom config path.
        environ: Environment mapping (default: os.environ).

    Returns:
        Settings: Resolved settings.
    """
    environ = os.environ if environ is None else environ
    return resolve_settings(
        DEFAULTS, load_config_file(config_path), environ, config_path=config_path
    )
