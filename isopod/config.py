# isopod/config.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import functools
import importlib.resources as ir
import logging
import os
import threading

from .errors import ConfigError

# Exposed for debugging: where the *project-local* config was loaded from (or None)
LAST_CONFIG_PATH: Path | None = None

_log = logging.getLogger("isopod.config")

DEFAULT_HOST_ROOTS: Tuple[str, ...] = (
    "builtins",
    "collections",
    "datetime",
    "re",
    "types",
    "math",
    "operator",
    "functools",
    "itertools",
    "enum",
)

_SERIALIZE_UNSUPPORTED = ("tag", "raise")
_DESERIALIZE_UNSUPPORTED = ("skip", "raise")
_DESERIALIZE_UNRESOLVED = ("raise", "none")


@dataclass(frozen=True)
class Settings:
    """
    Effective engine settings. Built from the layered config files by
    `load_settings()`; tests and callers may also construct it directly.
    """
    serialize_on_unsupported: str = "tag"
    deserialize_on_unsupported: str = "skip"
    deserialize_on_unresolved: str = "raise"
    compile_callables: bool = True
    host_roots: Tuple[str, ...] = DEFAULT_HOST_ROOTS
    host_max_depth: int = 3


# ---------- File discovery helpers ----------


def _first_existing(paths: list[Path]) -> Path | None:
    for p in paths:
        if p.is_file():
            return p
    return None


def _candidates(base: Path) -> list[Path]:
    return [base / "config.toml", base / "config.yaml", base / "config.yml"]


def _find_project_config(start: Path) -> Path | None:
    """
    Return the nearest '.isopod/config.{toml,yaml,yml}' walking upward from 'start'.
    """
    cur = start.resolve()
    for p in [cur, *cur.parents]:
        cand = _first_existing(_candidates(p / ".isopod"))
        if cand:
            _log.info("project config: %s", cand)
            return cand
    return None


def _find_user_config() -> Path | None:
    """
    Return the user-level config in precedence order:
      1) $ISOPOD_CONFIG            (exact path)
      2) $XDG_CONFIG_HOME/isopod/config.{toml,yaml,yml}
      3) ~/.config/isopod/config.{toml,yaml,yml}
      4) ~/.isopod/config.{toml,yaml,yml}
    """
    env_path = os.getenv("ISOPOD_CONFIG")
    if env_path:
        env_cand = Path(env_path).expanduser()
        if env_cand.is_file():
            _log.info("user config via ISOPOD_CONFIG=%s", env_cand)
            return env_cand

    xdg_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_home:
        cand = _first_existing(_candidates(Path(xdg_home) / "isopod"))
        if cand:
            _log.info("user config via XDG: %s", cand)
            return cand

    for base in (Path.home() / ".config" / "isopod", Path.home() / ".isopod"):
        cand = _first_existing(_candidates(base))
        if cand:
            _log.info("user config: %s", cand)
            return cand

    return None


# ---------- Parsers ----------


def _load_toml_text(txt: str) -> Dict[str, Any]:
    try:
        import tomllib  # Python >= 3.11

        return tomllib.loads(txt)
    except ModuleNotFoundError:
        try:
            import tomli  # backport on 3.10

            return tomli.loads(txt)
        except Exception as exc:
            _log.warning("Failed to parse TOML with tomli: %s", exc)
            return {}
    except Exception as exc:
        _log.warning("Failed to parse TOML with tomllib: %s", exc)
        return {}


def _load_yaml_text(txt: str) -> Dict[str, Any]:
    import yaml  # PyYAML

    try:
        data = yaml.safe_load(txt) or {}
    except yaml.YAMLError as exc:
        _log.warning("Failed to parse YAML: %s", exc)
        return {}
    if not isinstance(data, dict):
        _log.warning("YAML config root is not a mapping; ignoring.")
        return {}
    return data


def _parse_config_file(path: Path) -> Dict[str, Any]:
    txt = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix == ".toml":
        return _load_toml_text(txt) or {}
    if suffix in (".yaml", ".yml"):
        return _load_yaml_text(txt) or {}
    _log.warning("Unknown config extension '%s' for %s; ignoring.", suffix, path)
    return {}


# ---------- Merging & coercion ----------


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge two dicts: values in 'b' override 'a'; nested dicts are merged recursively.
    """
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _choice(section: Dict[str, Any], key: str, allowed: Tuple[str, ...], default: str, label: str) -> str:
    v = section.get(key, default)
    v = str(v).strip().lower()
    if v not in allowed:
        raise ConfigError(f"[{label}].{key} must be one of {', '.join(allowed)} (got {v!r})")
    return v


def _coerce_settings(raw: Dict[str, Any]) -> Settings:
    """
    Coerce the merged sections into a Settings instance.
      - [serialize]   on_unsupported: "tag" | "raise"
      - [deserialize] on_unsupported: "skip" | "raise"
                      on_unresolved:  "raise" | "none"
                      compile_callables: bool
      - [host_index]  roots: list[str] (or a single str), max_depth: int
    """
    ser = raw.get("serialize") or {}
    des = raw.get("deserialize") or {}
    idx = raw.get("host_index") or {}
    defaults = Settings()

    roots = idx.get("roots", defaults.host_roots)
    if isinstance(roots, str):
        roots = [roots]
    try:
        roots_t = tuple(str(r) for r in roots)
    except TypeError:
        raise ConfigError(f"[host_index].roots must be a list of module names (got {roots!r})")

    try:
        depth = int(idx.get("max_depth", defaults.host_max_depth))
    except (TypeError, ValueError):
        raise ConfigError(f"[host_index].max_depth must be an integer (got {idx.get('max_depth')!r})")
    if depth < 0:
        raise ConfigError("[host_index].max_depth must be >= 0")

    return Settings(
        serialize_on_unsupported=_choice(ser, "on_unsupported", _SERIALIZE_UNSUPPORTED, defaults.serialize_on_unsupported, "serialize"),
        deserialize_on_unsupported=_choice(des, "on_unsupported", _DESERIALIZE_UNSUPPORTED, defaults.deserialize_on_unsupported, "deserialize"),
        deserialize_on_unresolved=_choice(des, "on_unresolved", _DESERIALIZE_UNRESOLVED, defaults.deserialize_on_unresolved, "deserialize"),
        compile_callables=bool(des.get("compile_callables", defaults.compile_callables)),
        host_roots=roots_t,
        host_max_depth=depth,
    )


# ---------- Loader (layering: embedded < user < project) ----------


def _load_layered_config(start: Path | None = None) -> Dict[str, Any]:
    """
    Layered load:
      base = packaged defaults (isopod/default_config.toml)
      base ← deep-merge user-level config (if any)
      base ← deep-merge nearest project config (if any)
    """
    global LAST_CONFIG_PATH

    # 1) Packaged defaults (TOML)
    base: Dict[str, Any] = {}
    try:
        txt = (
            ir.files("isopod")
            .joinpath("default_config.toml")
            .read_text(encoding="utf-8")
        )
        base = _load_toml_text(txt) or {}
    except (FileNotFoundError, ModuleNotFoundError) as exc:
        _log.info("No packaged defaults available: %s", exc)
        base = {}

    # 2) User-level (global) config
    user_cfg_path = _find_user_config()
    if user_cfg_path:
        try:
            base = _deep_merge(base, _parse_config_file(user_cfg_path))
        except OSError as exc:
            _log.warning("Failed to read user config %s: %s", user_cfg_path, exc)

    # 3) Project-local (most specific) config
    proj_cfg_path = _find_project_config((start or Path.cwd()).resolve())
    if proj_cfg_path:
        try:
            base = _deep_merge(base, _parse_config_file(proj_cfg_path))
        except OSError as exc:
            _log.warning("Failed to read project config %s: %s", proj_cfg_path, exc)
        LAST_CONFIG_PATH = proj_cfg_path
    else:
        LAST_CONFIG_PATH = None

    return base


def load_settings(start: Path | None = None) -> Settings:
    """
    Return the effective Settings from the layered configuration
    (embedded < user < project). The project search starts at `start`
    (default: the current working directory).

    Raises
    ------
    ConfigError
        If a policy value is not one of its allowed choices.
    """
    raw = _load_layered_config(start)
    settings = _coerce_settings(raw)
    _log.info("Effective settings: %s", settings)
    return settings


_settings_lock = threading.Lock()


@functools.lru_cache(maxsize=None)
def _cached_settings() -> Settings:
    return load_settings()


def default_settings() -> Settings:
    """Process-wide settings, loaded once. Use `reset_default_settings()` to reload."""
    with _settings_lock:
        return _cached_settings()


def reset_default_settings() -> None:
    with _settings_lock:
        _cached_settings.cache_clear()


def resolve_settings(settings: Optional[Settings]) -> Settings:
    return settings if settings is not None else default_settings()
