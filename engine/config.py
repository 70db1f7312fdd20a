"""Lightweight loader for shared arena/gameplay configuration."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

_DEFAULT_PATH = Path(__file__).resolve().parent.parent / "configs" / "defaults.json"
_CONFIG_PATH: Path = _DEFAULT_PATH
_CONFIG_DATA: Optional[Dict[str, Any]] = None


def _load() -> Dict[str, Any]:
    try:
        with _CONFIG_PATH.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return {}
    except ValueError as e:
        print(f"[config] failed to parse {_CONFIG_PATH}: {e}")
        return {}


def _ensure_loaded() -> Dict[str, Any]:
    global _CONFIG_DATA
    if _CONFIG_DATA is None:
        _CONFIG_DATA = _load()
    return _CONFIG_DATA


def use(path: str) -> None:
    """Point lookups at another config file (e.g. a ``--config`` override)."""
    global _CONFIG_PATH, _CONFIG_DATA
    _CONFIG_PATH = Path(path)
    _CONFIG_DATA = None


def section(name: str) -> Dict[str, Any]:
    value = get(name, {})
    return value if isinstance(value, dict) else {}


def get(path: str, default: Any = None) -> Any:
    """Return a config value using dotted paths, or default when missing."""
    data = _ensure_loaded()
    if not path:
        return data

    current: Any = data
    for segment in path.split('.'):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return default
    return current
