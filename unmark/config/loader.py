"""YAML configuration loading for unmark."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union

import yaml

PathLike = Union[str, Path]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"
CONFIG_ENV_VAR = "UNMARK_CONFIG"


def _merge_dicts(base: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    """Recursively merge ``overrides`` into ``base`` in-place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], MutableMapping) and isinstance(value, Mapping):
            _merge_dicts(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def _resolve_relative_assets(data: MutableMapping[str, Any], config_path: Path) -> None:
    # Asset directories in a config file are relative to that file.
    assets = data.get("assets")
    if isinstance(assets, MutableMapping) and assets.get("directory"):
        directory = Path(os.path.expandvars(str(assets["directory"]))).expanduser()
        if not directory.is_absolute():
            directory = config_path.parent / directory
        assets["directory"] = str(directory)


def load_config(
    path: Optional[PathLike] = None, *, overrides: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Load YAML configuration and apply overrides.

    The path defaults to ``$UNMARK_CONFIG`` and then to the packaged
    ``config.yaml``.
    """
    if path:
        config_path = Path(path)
    elif os.environ.get(CONFIG_ENV_VAR):
        config_path = Path(os.environ[CONFIG_ENV_VAR])
    else:
        config_path = DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, MutableMapping):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")
    _resolve_relative_assets(data, config_path)
    if overrides:
        _merge_dicts(data, overrides)
    return data


def get_section(config: Mapping[str, Any], section: str, default: Optional[Any] = None) -> Any:
    """Return a deep copy of a configuration subsection."""
    return copy.deepcopy(config.get(section, default))


__all__ = ["CONFIG_ENV_VAR", "DEFAULT_CONFIG_PATH", "get_section", "load_config"]
