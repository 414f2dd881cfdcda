"""Tests for brew_sync.config_loader -- hierarchical config loading."""

import textwrap

import pytest
import yaml

from brew_sync.config_loader import (
    CONFIG_ENV_VAR,
    _interpolate_tree,
    _load_yaml,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    resolve_config_path,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty CWD and HOME so no real config files are discovered."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.chdir(work)
    return work, home


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("DAV_HOST", "dav.local")
        assert interpolate_env_vars("https://${DAV_HOST}/x") == "https://dav.local/x"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-fallback}") == "fallback"

    def test_default_used_when_empty(self, monkeypatch):
        monkeypatch.setenv("EMPTY_VAR_XYZ", "")
        assert interpolate_env_vars("${EMPTY_VAR_XYZ:-fallback}") == "fallback"

    def test_default_ignored_when_set(self, monkeypatch):
        monkeypatch.setenv("MY_BUCKET", "beans")
        assert interpolate_env_vars("${MY_BUCKET:-other}") == "beans"

    def test_unclosed_left_alone(self):
        assert interpolate_env_vars("${NOPE") == "${NOPE"

    def test_tree_interpolation(self, monkeypatch):
        monkeypatch.setenv("PW", "s3cret")
        tree = {"remote": {"password": "${PW}", "port": 443}, "list": ["${PW}"]}
        assert _interpolate_tree(tree) == {
            "remote": {"password": "s3cret", "port": 443},
            "list": ["s3cret"],
        }


# -------------------------------------------------------------------------
# !include
# -------------------------------------------------------------------------


class TestIncludes:
    """Tests for the !include YAML tag."""

    def test_relative_include(self, tmp_path):
        _write(tmp_path / "remote.yml", "url: https://dav.example.com\n")
        main = _write(tmp_path / "config.yml", "remote: !include remote.yml\n")
        assert _load_yaml(main) == {"remote": {"url": "https://dav.example.com"}}

    def test_missing_include(self, tmp_path):
        main = _write(tmp_path / "config.yml", "remote: !include nope.yml\n")
        with pytest.raises(FileNotFoundError, match="Include file not found"):
            _load_yaml(main)

    def test_circular_include(self, tmp_path):
        _write(tmp_path / "a.yml", "x: !include b.yml\n")
        _write(tmp_path / "b.yml", "y: !include a.yml\n")
        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml(tmp_path / "a.yml")

    def test_safe_loader_untouched(self):
        with pytest.raises(yaml.YAMLError):
            yaml.safe_load("x: !include foo.yml")


# -------------------------------------------------------------------------
# Discovery and merge
# -------------------------------------------------------------------------


class TestDiscovery:
    """Tests for discover_config_files() and load_hierarchical_config()."""

    def test_no_files(self, isolated):
        assert discover_config_files() == []
        assert load_hierarchical_config() == {}

    def test_project_and_global(self, isolated):
        work, home = isolated
        project = _write(work / ".brew_sync" / "config.yml", "sync: {}\n")
        global_ = _write(home / ".config" / "brew_sync" / "config.yml", "sync: {}\n")
        assert discover_config_files() == [project, global_]

    def test_env_var_first(self, isolated, tmp_path, monkeypatch):
        work, _ = isolated
        explicit = _write(tmp_path / "explicit.yml", "sync: {}\n")
        _write(work / ".brew_sync" / "config.yml", "sync: {}\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(explicit))
        assert discover_config_files()[0] == explicit.resolve()

    def test_project_section_replaces_global(self, isolated):
        work, home = isolated
        _write(
            home / ".config" / "brew_sync" / "config.yml",
            """\
            remote:
              url: https://global.example.com
            logging:
              level: DEBUG
            """,
        )
        _write(
            work / ".brew_sync" / "config.yml",
            """\
            remote:
              backend: s3
            """,
        )
        merged = load_hierarchical_config()
        assert merged["remote"] == {"backend": "s3"}
        assert merged["logging"] == {"level": "DEBUG"}

    def test_interpolation_after_merge(self, isolated, monkeypatch):
        work, _ = isolated
        monkeypatch.setenv("BREW_PW", "hunter2")
        _write(work / ".brew_sync" / "config.yml", "remote:\n  password: ${BREW_PW}\n")
        assert load_hierarchical_config()["remote"]["password"] == "hunter2"

    def test_non_dict_root_skipped(self, isolated):
        work, _ = isolated
        _write(work / ".brew_sync" / "config.yml", "- just\n- a list\n")
        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        work, _ = isolated
        _write(work / ".brew_sync" / "config.yml", "remote: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()


class TestEnsureConfig:
    """Tests for resolve_config_path() and ensure_config()."""

    def test_default_path(self, isolated):
        work, _ = isolated
        assert resolve_config_path() == work / ".brew_sync" / "config.yml"

    def test_creates_starter(self, isolated):
        work, _ = isolated
        path = ensure_config()
        assert path == work / ".brew_sync" / "config.yml"
        text = path.read_text(encoding="utf-8")
        assert "conflict_strategy" in text
        # starter is all comments, so it loads as empty config
        assert load_hierarchical_config() == {}

    def test_existing_file_kept(self, isolated):
        work, _ = isolated
        existing = _write(work / ".brew_sync" / "config.yml", "sync: {}\n")
        assert ensure_config() == existing
        assert existing.read_text(encoding="utf-8") == "sync: {}\n"
