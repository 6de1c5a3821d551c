"""
Config loader for scoutrelay.
Reads config.yaml once at startup. All other modules import from here.
${ENV_VAR} placeholders are resolved against the environment (and .env),
so secrets never live in the YAML file itself.
"""

import os
import re
import yaml
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

# Used when a section or key is missing from config.yaml
DEFAULTS: dict = {
    "server": {"host": "0.0.0.0", "port": 8000},
    "upstream": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "api_key": "",
        "chat_model": "gemini-2.5-flash",
        "oneshot_model": "gemini-2.0-flash",
        "extract_model": "gemini-2.5-flash",
        "timeout": 10,
        "idle_timeout": 30,
        "oneshot_timeout": 30,
    },
    "auth": {"url": "", "anon_key": ""},
    "storage": {"sqlite_path": "./data/scoutrelay.db"},
    "webhook": {
        "secret": "",
        "form_sources": {
            "1260": "sportstipendium",
            "5187": "showcase",
            "3959": "advertising",
            "6861": "sportstipendium_en",
        },
    },
    "rate_limits": {
        "coach_chat": {"limit": 10, "window": 60},
        "feedback": {"limit": 10, "window": 60},
        "extract_cv": {"limit": 3, "window": 60},
        "webhook": {"limit": 30, "window": 60},
    },
    "logging": {"level": "INFO", "file": ""},
    "wiretap": {"enabled": True, "path": "./data/wire.jsonl"},
}


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge(base: dict, override: dict) -> dict:
    """Deep-merge override onto base, returning a new dict."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None:
        return _config

    env_path = os.environ.get("SCOUTRELAY_CONFIG")
    config_path = path or (Path(env_path) if env_path else _CONFIG_PATH)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(_merge(DEFAULTS, raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def set_config(cfg: dict | None):
    """
    Replace the cached config. Passing None forces a reload on next access.
    Values are merged onto DEFAULTS so partial dicts (tests) still work.
    """
    global _config
    _config = None if cfg is None else _walk_and_resolve(_merge(DEFAULTS, cfg))
