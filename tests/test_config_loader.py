"""Tests for docsync.config_loader -- discovery, includes, merge, env."""

import textwrap

import pytest
import yaml

from docsync.config_loader import (
    apply_env_overrides,
    discover_config_files,
    ensure_config,
    expand_env_tree,
    interpolate_env_vars,
    load_config,
    load_hierarchical_config,
    read_yaml,
)
from docsync.config_schema import ConflictPolicy, CrossDomainPolicy, DeleteHandling
from docsync.errors import ConfigValidationError


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """CWD and HOME inside tmp_path, no DOCSYNC_* variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for name in (
        "DOCSYNC_CONFIG",
        "DOCSYNC_CONFLICT_POLICY",
        "DOCSYNC_SYNC_MOVES",
        "DOCSYNC_DELETE_HANDLING",
        "DOCSYNC_ARCHIVE_RETENTION_DAYS",
        "DOCSYNC_CROSS_DOMAIN_POLICY",
        "DOCSYNC_BACKGROUND_SYNC",
        "DOCSYNC_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("DS_FOLDER", "notes")
        assert interpolate_env_vars("${DS_FOLDER}/inbox") == "notes/inbox"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("DS_UNSET", raising=False)
        assert interpolate_env_vars("${DS_UNSET:-merge}") == "merge"

    def test_empty_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("DS_EMPTY", "")
        assert interpolate_env_vars("${DS_EMPTY:-archive}") == "archive"

    def test_unterminated_left_alone(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("DS_BASE", "work")
        data = {"policy": {"base_folder": "${DS_BASE}", "exclude": ["${DS_BASE}/tmp/*", 3]}}
        assert expand_env_tree(data) == {
            "policy": {"base_folder": "work", "exclude": ["work/tmp/*", 3]}
        }


# -------------------------------------------------------------------------
# YAML !include
# -------------------------------------------------------------------------


class TestIncludeDirective:
    def test_include_relative_file(self, tmp_path):
        _write(tmp_path / "retry.yml", "max_attempts: 7\n")
        main = _write(tmp_path / "config.yml", "retry: !include retry.yml\n")

        assert read_yaml(main) == {"retry": {"max_attempts": 7}}

    def test_include_absolute_path(self, tmp_path):
        shared = _write(tmp_path / "shared" / "policy.yml", "sync_moves: false\n")
        main = _write(
            tmp_path / "project" / "config.yml", f"policy: !include {shared}\n"
        )

        assert read_yaml(main) == {"policy": {"sync_moves": False}}

    def test_nested_include_resolves_against_includer(self, tmp_path):
        _write(tmp_path / "parts" / "retry.yml", "max_delay: 5.0\n")
        _write(tmp_path / "parts" / "all.yml", "retry: !include retry.yml\n")
        main = _write(tmp_path / "config.yml", "root: !include parts/all.yml\n")

        assert read_yaml(main) == {"root": {"retry": {"max_delay": 5.0}}}

    def test_missing_include_raises(self, tmp_path):
        main = _write(tmp_path / "config.yml", "policy: !include nope.yml\n")

        with pytest.raises(FileNotFoundError, match="nope.yml"):
            read_yaml(main)

    def test_circular_include_raises(self, tmp_path):
        _write(tmp_path / "a.yml", "x: !include b.yml\n")
        _write(tmp_path / "b.yml", "y: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            read_yaml(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        cfg = _write(tmp_path / "test.yml", "x: !include other.yml\n")

        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Discovery and merge
# -------------------------------------------------------------------------


class TestDiscovery:
    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_env_path_first(self, isolated, monkeypatch):
        custom = _write(isolated / "elsewhere.yml", "policy: {}\n")
        project = _write(isolated / ".docsync" / "config.yml", "policy: {}\n")
        monkeypatch.setenv("DOCSYNC_CONFIG", str(custom))

        found = discover_config_files()
        assert found[0] == custom.resolve()
        assert project in found

    def test_project_before_global(self, isolated):
        project = _write(isolated / ".docsync" / "config.yml", "a: 1\n")
        global_cfg = _write(
            isolated / "home" / ".config" / "docsync" / "config.yml", "b: 2\n"
        )

        found = discover_config_files()
        assert found.index(project) < found.index(global_cfg)


class TestLoadHierarchicalConfig:
    def test_zero_config(self, isolated):
        assert load_hierarchical_config() == {}

    def test_project_section_replaces_global(self, isolated):
        _write(
            isolated / "home" / ".config" / "docsync" / "config.yml",
            """\
            policy:
              conflict_policy: merge
              sync_moves: false
            retry:
              max_attempts: 2
            """,
        )
        _write(
            isolated / ".docsync" / "config.yml",
            """\
            policy:
              delete_handling: sync
            """,
        )

        raw = load_hierarchical_config()
        assert raw["policy"] == {"delete_handling": "sync"}
        assert raw["retry"] == {"max_attempts": 2}

    def test_non_mapping_file_ignored(self, isolated):
        _write(isolated / ".docsync" / "config.yml", "- just\n- a list\n")
        assert load_hierarchical_config() == {}

    def test_interpolation_applied(self, isolated, monkeypatch):
        monkeypatch.setenv("DS_POLICY", "prefer-remote")
        _write(
            isolated / ".docsync" / "config.yml",
            "policy:\n  conflict_policy: ${DS_POLICY}\n",
        )

        assert load_hierarchical_config()["policy"]["conflict_policy"] == (
            "prefer-remote"
        )


# -------------------------------------------------------------------------
# Env overrides and load_config
# -------------------------------------------------------------------------


class TestEnvOverrides:
    def test_override_creates_section(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_DELETE_HANDLING", "ignore")
        result = apply_env_overrides({})
        assert result == {"policy": {"delete_handling": "ignore"}}

    def test_override_does_not_mutate_input(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_CONFLICT_POLICY", "merge")
        raw = {"policy": {"conflict_policy": "prefer-local"}}
        result = apply_env_overrides(raw)
        assert raw["policy"]["conflict_policy"] == "prefer-local"
        assert result["policy"]["conflict_policy"] == "merge"

    def test_load_config_env_beats_yaml(self, isolated, monkeypatch):
        _write(
            isolated / ".docsync" / "config.yml",
            "policy:\n  conflict_policy: prefer-local\n  delete_handling: sync\n",
        )
        monkeypatch.setenv("DOCSYNC_CONFLICT_POLICY", "merge")

        config = load_config()
        assert config.policy.conflict_policy == ConflictPolicy.MERGE
        assert config.policy.delete_handling == DeleteHandling.SYNC

    def test_load_config_explicit_path(self, isolated, monkeypatch):
        _write(
            isolated / ".docsync" / "config.yml",
            "policy:\n  conflict_policy: prefer-local\n",
        )
        other = _write(
            isolated / "other.yml", "policy:\n  cross_domain_policy: warn\n"
        )

        config = load_config(other)
        assert config.policy.cross_domain_policy == CrossDomainPolicy.WARN
        assert config.policy.conflict_policy == ConflictPolicy.LAST_WRITE_WINS

    def test_empty_override_ignored(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_POLL_INTERVAL", "")
        assert apply_env_overrides({"background": {"poll_interval": 5}}) == {
            "background": {"poll_interval": 5}
        }

    def test_load_config_rejects_bad_value(self, isolated, monkeypatch):
        monkeypatch.setenv("DOCSYNC_DELETE_HANDLING", "shred")

        with pytest.raises(ConfigValidationError):
            load_config()


class TestEnsureConfig:
    def test_creates_starter(self, isolated):
        path = ensure_config()
        assert path == isolated / ".docsync" / "config.yml"
        # The starter file is all comments, so it loads as empty
        assert yaml.safe_load(path.read_text()) is None

    def test_existing_returned(self, isolated):
        existing = _write(isolated / ".docsync" / "config.yml", "policy: {}\n")
        assert ensure_config() == existing
