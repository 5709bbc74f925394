"""Application configuration: settings schema and config.yaml loader"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


CONFIG_FILE = "config.yaml"
ENV_PREFIX = "BLOCKDOC_"


class Settings(BaseModel):
    app_name:      str = "blockdoc"
    target_format: str = Field(default="blockdoc", pattern="^(blockdoc|epub)$", description="Save target: blockdoc package or epub")
    language:      str = Field(default="en", min_length=2, description="Language code written into e-book metadata")
    default_title: str = Field(default="Unsaved Document", description="Title of a document that was never saved")
    fetch_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for each image fetch")
    title_words:   int = Field(default=10, ge=1, description="Max words of a title derived from the first block")
    download_dir:  str = Field(default="downloads", description="Directory for one-shot downloads when no handle is writable")
    log_level:     str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$", description="Package log level")


def _file_values(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {path}: expected a mapping of setting names to values")
    return data


def _env_values() -> dict[str, str]:
    """Non-empty BLOCKDOC_<FIELD> variables, keyed by field name."""
    found = {}
    for name in Settings.model_fields:
        if val := os.getenv(f"{ENV_PREFIX}{name.upper()}"):
            found[name] = val
    return found


def load_config(overrides: dict[str, Any] = None, path: str | Path = CONFIG_FILE) -> Settings:
    """Build Settings from the config file, then BLOCKDOC_<FIELD> env vars, then non-None overrides.

    Raises ValueError for an unreadable config file and pydantic's
    ValidationError (also a ValueError) for values outside the schema.
    """
    data = {**_file_values(Path(path)), **_env_values()}
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
