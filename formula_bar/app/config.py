from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


class AttrDict(dict):
    """Dict with attribute access (x.y)."""
    def __getattr__(self, name: str):
        try:
            return self[name]
        except KeyError as e:
            raise AttributeError(name) from e
    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value
    def __delattr__(self, name: str) -> None:
        del self[name]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# ------------------------------------------------------------------
# DEFAULT_CONFIG carries flat UPPERCASE keys (what Flask's app.config
# expects) and nested sections; _ensure_compat_keys keeps them in step.
# ------------------------------------------------------------------
DEFAULT_CONFIG: AttrDict = AttrDict({
    "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///./data/formula_bar.db"),
    "DATABASE_ECHO": _env_flag("DATABASE_ECHO", "false"),
    "STORAGE_NAMESPACE": os.getenv("FORMULA_STORAGE_NAMESPACE", "formula-storage"),
    "SUGGESTION_LIMIT": int(os.getenv("FORMULA_SUGGESTION_LIMIT", "10")),
    "SUGGESTION_LATENCY_MS": int(os.getenv("FORMULA_SUGGESTION_LATENCY_MS", "300")),
    "SESSION_IDLE_SECONDS": int(os.getenv("FORMULA_SESSION_IDLE_SECONDS", "3600")),
    "SERVER_HOST": os.getenv("SERVER_HOST", "0.0.0.0"),
    "SERVER_PORT": int(os.getenv("SERVER_PORT", "7600")),
    "DEBUG": _env_flag("DEBUG", "false"),
    "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
    "server": {
        "host": os.getenv("SERVER_HOST", "0.0.0.0"),
        "port": int(os.getenv("SERVER_PORT", "7600")),
        "debug": _env_flag("DEBUG", "false"),
    },
    "database": {
        "url": os.getenv("DATABASE_URL", "sqlite:///./data/formula_bar.db"),
        "echo": _env_flag("DATABASE_ECHO", "false"),
    },
    "editor": {
        "storage_namespace": os.getenv("FORMULA_STORAGE_NAMESPACE", "formula-storage"),
        "suggestion_limit": int(os.getenv("FORMULA_SUGGESTION_LIMIT", "10")),
        "suggestion_latency_ms": int(os.getenv("FORMULA_SUGGESTION_LATENCY_MS", "300")),
        "session_idle_seconds": int(os.getenv("FORMULA_SESSION_IDLE_SECONDS", "3600")),
    },
})


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    ext = path.suffix.lower()
    if ext == ".toml":
        return tomllib.loads(path.read_text(encoding="utf-8"))
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Unsupported config format for {path}. {e}") from e


def _deep_merge(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


_SECTION_KEYS = {
    "database": {"url": "DATABASE_URL", "echo": "DATABASE_ECHO"},
    "editor": {
        "storage_namespace": "STORAGE_NAMESPACE",
        "suggestion_limit": "SUGGESTION_LIMIT",
        "suggestion_latency_ms": "SUGGESTION_LATENCY_MS",
        "session_idle_seconds": "SESSION_IDLE_SECONDS",
    },
    "server": {"host": "SERVER_HOST", "port": "SERVER_PORT", "debug": "DEBUG"},
}


def _ensure_compat_keys(cfg: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Make flat and nested keys agree, preferring whichever the file set."""
    for section, keys in _SECTION_KEYS.items():
        nested = cfg.setdefault(section, {})
        nested_overrides = overrides.get(section) or {}
        for key, flat in keys.items():
            if flat in overrides:
                nested[key] = cfg[flat]
            elif key in nested_overrides:
                cfg[flat] = nested[key]
            else:
                nested.setdefault(key, cfg.get(flat))


def load_config(config_path: Optional[str] = None) -> AttrDict:
    """Start from DEFAULT_CONFIG, deep-merge an optional JSON/TOML file on top,
    and return an AttrDict with both flat and nested keys populated."""
    base = {k: (v.copy() if isinstance(v, dict) else v) for k, v in DEFAULT_CONFIG.items()}
    overrides: Dict[str, Any] = {}
    if config_path:
        p = Path(config_path)
        if p.exists():
            overrides = _read_config_file(p) or {}
            _deep_merge(base, overrides)
    _ensure_compat_keys(base, overrides)
    return AttrDict(base)


@dataclass(frozen=True)
class EditorSettings:
    storage_namespace: str = "formula-storage"
    suggestion_limit: int = 10
    suggestion_latency_ms: int = 300
    session_idle_seconds: int = 3600


def get_editor_settings(cfg: Optional[Dict[str, Any]] = None) -> EditorSettings:
    cfg = cfg if cfg is not None else load_config()
    editor = cfg.get("editor", {})
    return EditorSettings(
        storage_namespace=str(editor.get("storage_namespace", "formula-storage")),
        suggestion_limit=int(editor.get("suggestion_limit", 10)),
        suggestion_latency_ms=int(editor.get("suggestion_latency_ms", 300)),
        session_idle_seconds=int(editor.get("session_idle_seconds", 3600)),
    )
