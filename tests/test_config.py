"""Tests for the configuration layer."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from activerun.config import loader
from activerun.config import watcher as watcher_module
from activerun.config.loader import (
    clamp_max_iterations,
    dict_to_config,
    env_overrides,
    load_config,
    load_yaml_file,
    on_config_reload,
    reload_config,
)
from activerun.config.merge import deep_merge, merge_configs
from activerun.config.paths import get_config_paths, get_project_config_path
from activerun.config.schema import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_GRACE_WINDOW,
    DEFAULT_MAX_ITERATIONS,
    Config,
    ProviderConfig,
)
from activerun.config.secrets import expand_references, fetch_secret
from activerun.config.watcher import ConfigWatcher


def write_project_config(root: Path, text: str) -> Path:
    path = root / ".activerun" / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project_only(tmp_path):
    """Restrict config discovery to the project file under tmp_path."""
    with patch.object(
        loader, "get_config_paths", lambda root: [get_project_config_path(root)] if root else []
    ):
        yield tmp_path


class TestDefaults:
    def test_empty_dict_gives_defaults(self):
        config = dict_to_config({})

        assert config.agent.max_iterations == DEFAULT_MAX_ITERATIONS
        assert config.agent.kill_switch_enabled is True
        assert config.agent.grace_window == 5.0
        assert config.providers == []
        assert config.server.port == 8765

    def test_config_dataclass_defaults_match_loader(self):
        assert Config().agent == dict_to_config({}).agent


class TestClampMaxIterations:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0, 1), (-5, 1), (1, 1), (10, 10), (20, 20), (21, 20), (500, 20), ("7", 7)],
    )
    def test_clamps_into_range(self, value, expected):
        assert clamp_max_iterations(value) == expected

    def test_invalid_value_falls_back_to_default(self):
        assert clamp_max_iterations("lots") == DEFAULT_MAX_ITERATIONS
        assert clamp_max_iterations(None) == DEFAULT_MAX_ITERATIONS

    def test_dict_to_config_clamps(self):
        config = dict_to_config({"agent": {"max_iterations": 99}})
        assert config.agent.max_iterations == 20


class TestProviders:
    def test_stdio_provider_fields(self):
        config = dict_to_config({
            "providers": [{
                "name": "fs",
                "command": ["npx", "-y", "server-filesystem"],
                "args": ["/tmp"],
                "env": {"TOKEN": "${TOKEN}"},
                "disabled_tools": ["write"],
            }]
        })

        (fs,) = config.providers
        assert fs.name == "fs"
        assert fs.command == ["npx", "-y", "server-filesystem"]
        assert fs.args == ["/tmp"]
        assert fs.env == {"TOKEN": "${TOKEN}"}
        assert fs.timeout == DEFAULT_CONNECT_TIMEOUT
        assert fs.disabled is False
        assert fs.disabled_tools == ["write"]

    def test_string_command_becomes_list(self):
        config = dict_to_config({"providers": [{"name": "x", "command": "server"}]})
        assert config.providers[0].command == ["server"]

    def test_url_provider(self):
        config = dict_to_config({
            "providers": [{"name": "web", "url": "ws://localhost:9000", "timeout": 3}]
        })
        web = config.providers[0]
        assert web.url == "ws://localhost:9000"
        assert web.command is None
        assert web.timeout == 3.0

    def test_null_values_use_defaults(self):
        config = dict_to_config({
            "agent": {"grace_window": None, "kill_switch_enabled": None},
            "logging": None,
            "providers": [{"name": "fs", "command": "a", "timeout": None}],
        })

        assert config.providers[0].timeout == DEFAULT_CONNECT_TIMEOUT
        assert config.agent.grace_window == DEFAULT_GRACE_WINDOW
        assert config.agent.kill_switch_enabled is True
        assert config.logging.level is None

    def test_duplicate_and_nameless_providers_skipped(self):
        config = dict_to_config({
            "providers": [
                {"name": "fs", "command": "a"},
                {"name": "fs", "command": "b"},
                {"command": "c"},
                "not-a-dict",
            ]
        })
        assert [p.command for p in config.providers] == [["a"]]

    def test_provider_equality_is_fieldwise(self):
        assert ProviderConfig(name="fs", command=["a"]) == ProviderConfig(name="fs", command=["a"])
        assert ProviderConfig(name="fs", command=["a"]) != ProviderConfig(name="fs", command=["b"])

    def test_unknown_sections_kept_as_extra(self):
        config = dict_to_config({"ui": {"theme": "dark"}})
        assert config.extra == {"ui": {"theme": "dark"}}


class TestMerge:
    def test_nested_dicts_merge(self):
        merged = deep_merge(
            {"agent": {"max_iterations": 5, "grace_window": 1.0}},
            {"agent": {"max_iterations": 8}},
        )
        assert merged == {"agent": {"max_iterations": 8, "grace_window": 1.0}}

    def test_lists_are_replaced(self):
        merged = merge_configs(
            {"providers": [{"name": "a"}]},
            {"providers": [{"name": "b"}]},
        )
        assert merged["providers"] == [{"name": "b"}]

    def test_none_does_not_override(self):
        assert deep_merge({"logging": {"level": "DEBUG"}}, {"logging": None}) == {
            "logging": {"level": "DEBUG"}
        }


class TestEnvironment:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ACTIVERUN_MAX_ITERATIONS", "3")
        monkeypatch.setenv("ACTIVERUN_LOG", "/tmp/activerun.log")

        assert env_overrides() == {
            "agent": {"max_iterations": 3},
            "logging": {"file": "/tmp/activerun.log"},
        }

    def test_non_integer_max_iterations_ignored(self, monkeypatch):
        monkeypatch.setenv("ACTIVERUN_MAX_ITERATIONS", "many")
        assert env_overrides() == {}


class TestLoading:
    def test_missing_yaml_is_empty(self, tmp_path):
        assert load_yaml_file(tmp_path / "nope.yaml") == {}

    def test_invalid_yaml_is_empty(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("agent: [unclosed", encoding="utf-8")
        assert load_yaml_file(path) == {}

    def test_project_paths_come_last(self, tmp_path):
        paths = get_config_paths(str(tmp_path))
        assert paths[-1] == tmp_path / ".activerun" / "config.yaml"

    def test_load_project_config(self, project_only):
        write_project_config(project_only, (
            "agent:\n"
            "  max_iterations: 4\n"
            "  kill_switch_enabled: false\n"
            "providers:\n"
            "  - name: fs\n"
            "    command: [fake-fs]\n"
        ))

        config = load_config(root=str(project_only))

        assert config.agent.max_iterations == 4
        assert config.agent.kill_switch_enabled is False
        assert [p.name for p in config.providers] == ["fs"]

    def test_env_beats_project(self, project_only, monkeypatch):
        write_project_config(project_only, "agent:\n  max_iterations: 4\n")
        monkeypatch.setenv("ACTIVERUN_MAX_ITERATIONS", "6")

        assert load_config(root=str(project_only)).agent.max_iterations == 6

    def test_reload_notifies_callbacks(self, project_only):
        write_project_config(project_only, "agent:\n  max_iterations: 2\n")
        seen: list[Config] = []
        unregister = on_config_reload(seen.append)
        try:
            reload_config(root=str(project_only))
        finally:
            unregister()

        assert len(seen) == 1
        assert seen[0].agent.max_iterations == 2

        reload_config(root=str(project_only))
        assert len(seen) == 1

    def test_failing_reload_callback_does_not_break_others(self, project_only):
        seen: list[Config] = []

        def broken(config: Config) -> None:
            raise RuntimeError("boom")

        remove_broken = on_config_reload(broken)
        remove_seen = on_config_reload(seen.append)
        try:
            reload_config(root=str(project_only))
        finally:
            remove_broken()
            remove_seen()

        assert len(seen) == 1


class TestSecrets:
    def test_environment_wins(self, monkeypatch, tmp_path):
        secrets = tmp_path / ".env.secrets"
        secrets.write_text("TOKEN=from-file\n", encoding="utf-8")
        monkeypatch.setenv("TOKEN", "from-env")

        assert fetch_secret("TOKEN", secrets_path=secrets) == "from-env"

    def test_secrets_file_fallback(self, monkeypatch, tmp_path):
        secrets = tmp_path / ".env.secrets"
        secrets.write_text("ONLY_IN_FILE=abc\n", encoding="utf-8")
        monkeypatch.delenv("ONLY_IN_FILE", raising=False)

        assert fetch_secret("ONLY_IN_FILE", secrets_path=secrets) == "abc"
        assert fetch_secret("MISSING_KEY_X", "dflt", secrets_path=secrets) == "dflt"

    def test_expand_references(self, monkeypatch):
        monkeypatch.setenv("API_HOST", "example.com")
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)

        assert expand_references("https://${API_HOST}/v1") == "https://example.com/v1"
        assert expand_references("${NOT_SET_ANYWHERE}") == ""
        assert expand_references("plain") == "plain"


class TestConfigWatcher:
    @pytest.mark.asyncio
    async def test_reloads_when_file_changes(self, tmp_path):
        path = write_project_config(tmp_path, "agent:\n  max_iterations: 2\n")
        reloads: list[str | None] = []

        with (
            patch.object(watcher_module, "get_config_paths", lambda root: [path]),
            patch.object(watcher_module, "reload_config", lambda root=None: reloads.append(root)),
        ):
            async with ConfigWatcher(root=str(tmp_path), poll_interval=0.01):
                await asyncio.sleep(0.05)
                assert reloads == []

                path.write_text("agent:\n  max_iterations: 3\n", encoding="utf-8")
                # Force a visible mtime change on coarse filesystems
                stat = path.stat()
                os.utime(path, (stat.st_atime, stat.st_mtime + 5))

                for _ in range(100):
                    if reloads:
                        break
                    await asyncio.sleep(0.01)

        assert reloads == [str(tmp_path)]

    def test_check_reports_created_and_deleted_files(self, tmp_path):
        path = tmp_path / ".activerun" / "config.yaml"
        watcher = ConfigWatcher(root=str(tmp_path))

        with patch.object(watcher_module, "get_config_paths", lambda root: [path]):
            assert watcher.check() == []

            write_project_config(tmp_path, "agent: {}\n")
            assert watcher.check() == [path]
            assert watcher.check() == []

            path.unlink()
            assert watcher.check() == [path]
