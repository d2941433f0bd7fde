"""
Configuration loading for the retrieval core.

Settings live in config/config.yaml (override the location with the
RAG_CONFIG_PATH environment variable). Secrets such as provider API keys
are read from the environment, with a .env file loaded on first use.

Each component owns a dataclass config (ChunkConfig, EmbeddingConfig,
VectorStoreConfig, BM25Config, RAGConfig) with a from_dict() constructor;
this module only finds and parses the YAML.
"""

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

_dotenv_loaded = False


def load_env():
    """Load variables from a .env file once per process."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        load_dotenv()
        _dotenv_loaded = True


def get_config_path() -> Path:
    """Resolve the YAML config path (RAG_CONFIG_PATH wins over the default)."""
    load_env()
    override = os.getenv("RAG_CONFIG_PATH")
    return Path(override) if override else DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> dict:
    """
    Load configuration from config.yaml.

    Args:
        path: Explicit path to a YAML file (default: get_config_path())

    Returns:
        Parsed config dict, empty if the file does not exist
    """
    config_path = Path(path) if path else get_config_path()
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    logger.info(f"Loaded config from {config_path}")
    return data


def get_section(name: str, path: Optional[Path] = None) -> dict:
    """Return one top-level section of the config file (empty if missing)."""
    return load_config(path).get(name, {}) or {}


def pick_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys of `data` that are fields of dataclass `cls`."""
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} options: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in names}
