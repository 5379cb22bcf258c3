"""Reading and writing ``~/.turnstream/config.json``."""

import json
import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from turnstream.config.schema import Config

# Mappings whose keys are user data (HTTP header names) and must not be renamed
_VERBATIM_KEYS = {"extra_headers", "extraHeaders"}

_UPPER = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    return Path.home() / ".turnstream" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Read the camelCase JSON file into a ``Config``.

    A missing file yields defaults. An unreadable or malformed one is logged
    and also yields defaults, so a bad edit never keeps the bot from starting.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        return Config.model_validate(convert_keys(data))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Ignoring config at {path} ({e}), using defaults")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write ``config`` as camelCase JSON and return the path written."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def convert_keys(data: Any) -> Any:
    """camelCase keys to snake_case, recursively."""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case keys to camelCase, recursively."""
    return _rename_keys(data, snake_to_camel)


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    return {
        rename(key): value if key in _VERBATIM_KEYS else _rename_keys(value, rename)
        for key, value in data.items()
    }


def camel_to_snake(name: str) -> str:
    return _UPPER.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
