"""Tests for scaffold_sync.config_loader -- hierarchical config loading."""

import textwrap

import pytest
import yaml

from scaffold_sync.config_loader import (
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    interpolate_env_vars,
    load_hierarchical_config,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty CWD and HOME, no SCAFFOLD_SYNC_CONFIG."""
    monkeypatch.delenv("SCAFFOLD_SYNC_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def _project_config(root, text, name="config.yml"):
    path = root / ".scaffold_sync" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


def _global_config(root, text):
    path = root / "home" / ".config" / "scaffold_sync" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("RELEASE_HOST", "templates.local")
        assert interpolate_env_vars("https://${RELEASE_HOST}") == "https://templates.local"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-fallback}") == "fallback"

    def test_default_ignored_when_set(self, monkeypatch):
        monkeypatch.setenv("MY_RETENTION", "8")
        assert interpolate_env_vars("${MY_RETENTION:-5}") == "8"

    def test_empty_env_var_uses_default(self, monkeypatch):
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${EMPTY_VAR:-fallback}") == "fallback"

    def test_literal_dollar_brace_no_closing(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("RELEASE_TOKEN", "t0k")
        data = {"source": {"token": "${RELEASE_TOKEN}", "timeout": 30}, "tags": ["${RELEASE_TOKEN}", 1]}
        assert _interpolate_recursive(data) == {
            "source": {"token": "t0k", "timeout": 30},
            "tags": ["t0k", 1],
        }


# -------------------------------------------------------------------------
# YAML !include support
# -------------------------------------------------------------------------


class TestIncludeDirective:
    """Tests for !include YAML loading via the ConfigLoader subclass."""

    def test_include_relative_file(self, tmp_path):
        (tmp_path / "secrets.yml").write_text("token: secret123\n")
        main = tmp_path / "config.yml"
        main.write_text("source: !include secrets.yml\n")

        assert _load_yaml_with_includes(main) == {"source": {"token": "secret123"}}

    def test_include_nonexistent_raises(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("data: !include missing.yml\n")

        with pytest.raises(FileNotFoundError, match="missing.yml"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_nested_includes(self, tmp_path):
        (tmp_path / "c.yml").write_text("val: deep\n")
        (tmp_path / "b.yml").write_text("inner: !include c.yml\n")
        (tmp_path / "a.yml").write_text("outer: !include b.yml\n")

        result = _load_yaml_with_includes(tmp_path / "a.yml")
        assert result == {"outer": {"inner": {"val": "deep"}}}

    def test_global_safe_loader_not_polluted(self, tmp_path):
        """!include is NOT registered on yaml.SafeLoader."""
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")

        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Convention-based file discovery
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    """Tests for discover_config_files() precedence and filtering."""

    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_explicit_first(self, isolated, monkeypatch):
        explicit = isolated / "explicit.yml"
        explicit.write_text("a: 1\n")
        env_cfg = isolated / "env.yml"
        env_cfg.write_text("b: 1\n")
        monkeypatch.setenv("SCAFFOLD_SYNC_CONFIG", str(env_cfg))

        result = discover_config_files(explicit)

        assert result[:2] == [explicit.resolve(), env_cfg.resolve()]

    def test_missing_explicit_raises(self, isolated):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            discover_config_files(isolated / "nope.yml")

    def test_project_before_global(self, isolated):
        proj = _project_config(isolated, "project: true\n")
        glob = _global_config(isolated, "global: true\n")

        result = discover_config_files()

        assert result.index(proj.resolve()) < result.index(glob.resolve())

    def test_yaml_extension(self, isolated):
        proj = _project_config(isolated, "x: 1\n", name="config.yaml")
        assert proj.resolve() in discover_config_files()


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    """Tests for load_hierarchical_config() merge and interpolation."""

    def test_zero_config_returns_empty_dict(self, isolated):
        assert load_hierarchical_config() == {}

    def test_project_replaces_global_section(self, isolated):
        _global_config(
            isolated,
            """\
            source:
              url: https://global.example.com
              token: globaltoken
            update:
              backup_retention: 9
            """,
        )
        _project_config(
            isolated,
            """\
            source:
              directory: ../releases
            """,
        )

        result = load_hierarchical_config()

        assert result["source"] == {"directory": "../releases"}
        assert result["update"]["backup_retention"] == 9

    def test_interpolation_after_merge(self, isolated, monkeypatch):
        monkeypatch.setenv("RELEASE_TOKEN", "s3cret")
        monkeypatch.delenv("RELEASE_URL", raising=False)
        _project_config(
            isolated,
            """\
            source:
              token: "${RELEASE_TOKEN}"
              url: "${RELEASE_URL:-https://default.example.com}"
            """,
        )

        result = load_hierarchical_config()

        assert result["source"]["token"] == "s3cret"
        assert result["source"]["url"] == "https://default.example.com"

    def test_non_dict_root_skipped(self, isolated, monkeypatch):
        bad = isolated / "bad.yml"
        bad.write_text("- item1\n- item2\n")
        monkeypatch.setenv("SCAFFOLD_SYNC_CONFIG", str(bad))

        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        _project_config(isolated, "source: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()
