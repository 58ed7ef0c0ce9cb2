from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, Dict, MutableMapping, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from openalex_cache.config.models import AppConfig, ConfigLoadRequest

_EXAMPLE_CONFIG_PATH = Path("examples/config.yaml")


def _read_yaml_config(path: Path) -> Dict[str, Any]:
    if not path.exists() and _EXAMPLE_CONFIG_PATH.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(_EXAMPLE_CONFIG_PATH, path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _override_key_path(env_var_name: str, prefix: str) -> Tuple[str, ...]:
    """``APP__CACHE__ROOT_PATH`` -> ``("cache", "root_path")``, checked against the config models."""
    key_path = tuple(part.lower() for part in env_var_name[len(prefix) :].split("__") if part)
    if not key_path:
        raise ValueError(f"Invalid environment variable override name: {env_var_name}")

    model: Any = AppConfig
    for segment in key_path:
        fields = getattr(model, "model_fields", None)
        if not fields or segment not in fields:
            raise KeyError(f"Unknown configuration key path: {'.'.join(key_path)}")
        model = fields[segment].annotation
    if isinstance(model, type) and issubclass(model, BaseModel):
        raise TypeError(f"Configuration key path points to a section, not a value: {'.'.join(key_path)}")
    return key_path


def _apply_env_overrides(config: MutableMapping[str, Any], env_prefix: str) -> None:
    for name, value in os.environ.items():
        if not name.startswith(env_prefix):
            continue

        key_path = _override_key_path(name, env_prefix)
        section = config
        for segment in key_path[:-1]:
            # Sections left at their defaults may be absent from the YAML file.
            section = section.setdefault(segment, {})
            if not isinstance(section, dict):
                raise TypeError(f"Configuration key path does not point to a mapping: {'.'.join(key_path)}")

        # Pydantic coerces the string during validation.
        section[key_path[-1]] = value


class YamlConfigLoader:
    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        config = _read_yaml_config(Path(request.yaml_path))

        if request.dotenv_path is not None and Path(request.dotenv_path).exists():
            load_dotenv(dotenv_path=request.dotenv_path, override=False)

        _apply_env_overrides(config, request.env_prefix)
        return AppConfig.model_validate(config)
