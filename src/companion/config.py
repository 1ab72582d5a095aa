"""Configuration loading utilities for the companion server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable COMPANION_CONFIG
3. Fallback to "config/default.yaml"

Missing keys are filled from :data:`DEFAULT_CONFIG`. It also supports
overrides from environment variables with prefix ``COMPANION__``
(e.g., COMPANION__RETRIEVAL__K=4). A ``.env`` file in the working
directory is loaded first so provider credentials can live there.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "COMPANION__"

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "history": {
        "backend": "jsonl",
        "session_id": "oldEmoChatBot",
        "data_dir": "data/history",
        "context_messages": 20,
        "upstash_url_env": "UPSTASH_REDIS_REST_URL",
        "upstash_token_env": "UPSTASH_REDIS_REST_TOKEN",
    },
    "corpus": {"path": "data/context.json"},
    "chunking": {"chunk_size": 100, "overlap": 10},
    "embeddings": {
        "provider": "openai_compat",
        "base_url": "https://dashscope.aliyuncs.com/compatible-mode/v1",
        "model": "text-embedding-v3",
        "api_key_env": "DASHSCOPE_API_KEY",
        "batch_size": 10,
        "local_model": "sentence-transformers/all-MiniLM-L6-v2",
    },
    "model": {
        "provider": "openai_compat",
        "base_url": "https://dashscope.aliyuncs.com/compatible-mode/v1",
        "model": "qwen-plus",
        "api_key_env": "DASHSCOPE_API_KEY",
    },
    "rewriter": {"temperature": 0.3, "max_new_tokens": 64},
    "retrieval": {"k": 2},
    "generation": {"temperature": 1.3, "max_new_tokens": 512},
    "timeouts": {"completion_s": 60.0, "embedding_s": 30.0},
    "logging": {"level": "INFO"},
}


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix COMPANION__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., COMPANION__MODEL__BASE_URL -> cfg["model"]["base_url"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the companion server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``COMPANION_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file, then environment overrides applied.
    """
    load_dotenv()

    if path is None:
        path = os.environ.get("COMPANION_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULT_CONFIG))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(raw, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_deep_merge(DEFAULT_CONFIG, raw))


def section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return ``cfg[name]`` as a dict, tolerating absent or malformed sections."""
    value = (cfg or {}).get(name)
    return value if isinstance(value, dict) else {}


def env_secret(name: str | None) -> str:
    """Read a credential from the environment by variable name."""
    if not name:
        return ""
    return os.environ.get(str(name), "").strip()
