# tests/test_config_layering.py
from pathlib import Path

import pytest

import isopod.config as cfg
from isopod.config import Settings
from isopod.errors import ConfigError


class _DummyFiles:
    def __init__(self, text: str):
        self._text = text

    def joinpath(self, name: str):
        return self

    def read_text(self, encoding: str = "utf-8") -> str:
        return self._text


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    # Fake HOME, no XDG / env override: nothing leaks from the host
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("ISOPOD_CONFIG", raising=False)
    return home


def test_packaged_defaults_match_settings_defaults(isolated_home, tmp_path):
    proj = tmp_path / "empty"
    proj.mkdir()
    assert cfg.load_settings(start=proj) == Settings()
    assert cfg.LAST_CONFIG_PATH is None


def test_layering_embedded_user_local(tmp_path, monkeypatch, isolated_home):
    # 0) Packaged defaults
    packaged = """
[serialize]
on_unsupported = "tag"
[deserialize]
on_unsupported = "skip"
on_unresolved = "raise"
[host_index]
roots = ["builtins", "math"]
max_depth = 3
"""
    monkeypatch.setattr(cfg.ir, "files", lambda pkg: _DummyFiles(packaged))

    # 1) User-level (global) config under XDG_CONFIG_HOME
    xdg_home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg_home))
    _write(
        xdg_home / "isopod" / "config.toml",
        """
[deserialize]
on_unresolved = "none"   # overrides packaged default
[host_index]
max_depth = 2
""",
    )

    # 2) Local (project) config
    proj = tmp_path / "proj"
    local_cfg = _write(
        proj / ".isopod" / "config.toml",
        """
[host_index]
max_depth = 1            # overrides user-level value
""",
    )

    s = cfg.load_settings(start=proj)

    # Precedence: packaged < user < local
    assert s.host_max_depth == 1                     # local wins
    assert s.deserialize_on_unresolved == "none"     # user-level wins over packaged
    assert s.host_roots == ("builtins", "math")      # inherited from packaged
    assert s.serialize_on_unsupported == "tag"
    assert cfg.LAST_CONFIG_PATH == local_cfg


def test_yaml_user_config_under_home(tmp_path, isolated_home):
    _write(
        isolated_home / ".config" / "isopod" / "config.yaml",
        """
serialize:
  on_unsupported: raise
deserialize:
  compile_callables: false
""",
    )
    proj = tmp_path / "proj2"
    proj.mkdir()

    s = cfg.load_settings(start=proj)
    assert s.serialize_on_unsupported == "raise"
    assert s.compile_callables is False
    assert cfg.LAST_CONFIG_PATH is None


def test_env_var_config_wins_over_xdg(tmp_path, monkeypatch, isolated_home):
    xdg_home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg_home))
    _write(xdg_home / "isopod" / "config.toml", '[deserialize]\non_unsupported = "skip"\n')
    env_cfg = _write(tmp_path / "elsewhere" / "mine.toml", '[deserialize]\non_unsupported = "raise"\n')
    monkeypatch.setenv("ISOPOD_CONFIG", str(env_cfg))

    proj = tmp_path / "proj3"
    proj.mkdir()
    assert cfg.load_settings(start=proj).deserialize_on_unsupported == "raise"


def test_nearest_project_config_wins(tmp_path, isolated_home):
    parent = tmp_path / "mono"
    proj = parent / "pkg"
    deep = proj / "src" / "mod"
    _write(parent / ".isopod" / "config.toml", "[host_index]\nmax_depth = 5\n")
    chosen = _write(proj / ".isopod" / "config.yml", "host_index:\n  max_depth: 4\n")
    deep.mkdir(parents=True)

    s = cfg.load_settings(start=deep)
    assert s.host_max_depth == 4
    assert cfg.LAST_CONFIG_PATH == chosen


def test_single_root_string_is_accepted(tmp_path, isolated_home):
    proj = tmp_path / "p"
    _write(proj / ".isopod" / "config.toml", '[host_index]\nroots = "math"\n')
    assert cfg.load_settings(start=proj).host_roots == ("math",)


@pytest.mark.parametrize(
    "text",
    [
        '[serialize]\non_unsupported = "explode"\n',
        '[deserialize]\non_unresolved = "maybe"\n',
        '[host_index]\nmax_depth = "deep"\n',
        "[host_index]\nmax_depth = -1\n",
    ],
)
def test_invalid_values_raise_config_error(tmp_path, isolated_home, text):
    proj = tmp_path / "bad"
    _write(proj / ".isopod" / "config.toml", text)
    with pytest.raises(ConfigError):
        cfg.load_settings(start=proj)


def test_malformed_toml_is_ignored(tmp_path, isolated_home):
    proj = tmp_path / "broken"
    _write(proj / ".isopod" / "config.toml", "[serialize\non_unsupported = \n")
    assert cfg.load_settings(start=proj) == Settings()


def test_default_settings_are_cached_until_reset(tmp_path, monkeypatch, isolated_home):
    proj = tmp_path / "cached"
    _write(proj / ".isopod" / "config.toml", '[serialize]\non_unsupported = "raise"\n')
    monkeypatch.chdir(proj)
    cfg.reset_default_settings()
    try:
        first = cfg.default_settings()
        assert first.serialize_on_unsupported == "raise"
        assert cfg.default_settings() is first
        assert cfg.resolve_settings(None) is first
        explicit = Settings()
        assert cfg.resolve_settings(explicit) is explicit
    finally:
        cfg.reset_default_settings()
