"""Tests for the activerun CLI."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from activerun import __version__
from activerun.cli import create_parser, load_decider, run_cli
from activerun.config import loader

from tests.utils import echo_decider


@pytest.fixture
def no_config_files():
    with patch.object(loader, "get_config_paths", lambda root: []):
        yield


class TestParser:
    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--version"])

        assert __version__ in capsys.readouterr().out

    def test_run_arguments(self):
        args = create_parser().parse_args(
            ["-vv", "run", "list /tmp", "--decider", "pkg:decide", "--max-iterations", "4"]
        )

        assert args.command == "run"
        assert args.request == "list /tmp"
        assert args.decider == "pkg:decide"
        assert args.max_iterations == 4
        assert args.verbose == 2

    def test_serve_requires_decider(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["serve"])

    def test_serve_overrides(self):
        args = create_parser().parse_args(
            ["serve", "--decider", "pkg:decide", "--host", "0.0.0.0", "--port", "9000"]
        )

        assert (args.host, args.port) == ("0.0.0.0", 9000)


class TestLoadDecider:
    def test_loads_function(self):
        assert load_decider("tests.utils:echo_decider") is echo_decider

    @pytest.mark.parametrize("target", ["no_colon", ":answer", "tests.utils:"])
    def test_malformed_target(self, target):
        with pytest.raises(ValueError, match="module:function"):
            load_decider(target)

    def test_missing_attribute(self):
        with pytest.raises(ValueError, match="not found"):
            load_decider("tests.utils:missing")

    def test_not_callable(self):
        with pytest.raises(ValueError, match="not callable"):
            load_decider("tests.utils:NOT_A_DECIDER")

    def test_missing_module(self):
        with pytest.raises(ImportError):
            load_decider("no_such_module_xyz:decide")


class TestRunCli:
    def test_no_command_prints_help(self, capsys):
        assert run_cli([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_bad_decider_exit_code(self, no_config_files):
        assert run_cli(["run", "hi", "--decider", "no_such_module_xyz:decide"]) == 2

    def test_run_prints_answer(self, no_config_files, capsys):
        code = run_cli(["run", "hello there", "--decider", "tests.utils:echo_decider"])

        assert code == 0
        out = capsys.readouterr().out
        assert "Task completed" in out
        assert "Echo: hello there" in out

    def test_failed_run_exit_code(self, no_config_files):
        assert run_cli(["run", "hello", "--decider", "tests.utils:failing_decider"]) == 1

    def test_tools_without_providers(self, no_config_files, capsys):
        assert run_cli(["tools"]) == 0
        assert "Tools (0)" in capsys.readouterr().out
