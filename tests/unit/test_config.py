"""Tests for longrun.core.config: layered configuration."""

from __future__ import annotations

import logging

import pytest

from longrun.core.config import (
    find_config_file,
    load_env_config,
    load_log_level,
    load_toml_config,
    resolve_budgets,
    resolve_max_sessions,
    resolve_model,
)
from longrun.types.config import SessionBudgets


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty cwd and HOME so no real config file is found."""
    home = tmp_path / "home"
    home.mkdir()
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(cwd)
    return tmp_path


def write_config(directory, text):
    path = directory / ".longrun" / "config.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestEnvConfig:
    def test_empty(self):
        assert load_env_config({}) == {}

    def test_budgets_and_model(self):
        config = load_env_config({
            "LONGRUN_SESSION_TIMEOUT": "120",
            "LONGRUN_IDLE_TIMEOUT": "30.5",
            "LONGRUN_POLL_INTERVAL": "2",
            "LONGRUN_MODEL": "opus",
            "LONGRUN_LOG_LEVEL": "info",
        })
        assert config == {
            "session_timeout": 120.0,
            "idle_timeout": 30.5,
            "poll_interval": 2.0,
            "model": "opus",
            "log_level": "info",
        }

    def test_legacy_names_are_fallbacks(self):
        assert load_env_config({"SESSION_TIMEOUT": "60", "IDLE_TIMEOUT": "9"}) == {
            "session_timeout": 60.0, "idle_timeout": 9.0,
        }
        config = load_env_config({"SESSION_TIMEOUT": "60", "LONGRUN_SESSION_TIMEOUT": "7"})
        assert config["session_timeout"] == 7.0

    @pytest.mark.parametrize("raw", ["abc", "nan", "inf"])
    def test_unparseable_ignored_with_warning(self, raw, caplog):
        with caplog.at_level(logging.WARNING, logger="longrun.core.config"):
            assert load_env_config({"LONGRUN_IDLE_TIMEOUT": raw}) == {}
        assert "LONGRUN_IDLE_TIMEOUT" in caplog.text

    def test_blank_value_skipped(self):
        assert load_env_config({"LONGRUN_IDLE_TIMEOUT": "  ", "IDLE_TIMEOUT": "5"}) == {
            "idle_timeout": 5.0,
        }


class TestTomlConfig:
    def test_none_found(self, isolated):
        assert find_config_file() is None
        assert load_toml_config() == {}

    def test_project_dir_first(self, isolated):
        project = isolated / "project"
        write_config(project, "[harness]\nmodel = 'haiku'\n")
        write_config(isolated / "cwd", "[harness]\nmodel = 'opus'\n")
        assert load_toml_config(project) == {"harness": {"model": "haiku"}}
        assert load_toml_config() == {"harness": {"model": "opus"}}

    def test_home_fallback(self, isolated):
        write_config(isolated / "home", "[supervisor]\nidle_timeout = 12\n")
        assert load_toml_config()["supervisor"]["idle_timeout"] == 12

    def test_invalid_toml_ignored(self, isolated, caplog):
        write_config(isolated / "cwd", "this is = = not toml")
        with caplog.at_level(logging.WARNING):
            assert load_toml_config() == {}
        assert "config file" in caplog.text


class TestResolveBudgets:
    def test_defaults(self, isolated):
        assert resolve_budgets(environ={}) == SessionBudgets()

    def test_priority_order(self, isolated):
        write_config(isolated / "cwd", (
            "[supervisor]\n"
            "session_timeout = 100\nidle_timeout = 50\npoll_interval = 5\ngrace_period = 2\n"
        ))
        budgets = resolve_budgets(
            {"session_timeout": 10.0, "idle_timeout": None},
            environ={"LONGRUN_SESSION_TIMEOUT": "20", "LONGRUN_IDLE_TIMEOUT": "40"},
        )
        assert budgets.session_timeout == 10.0  # explicit
        assert budgets.idle_timeout == 40.0  # env
        assert budgets.poll_interval == 5.0  # toml
        assert budgets.grace_period == 2.0  # toml
        assert budgets.drain_interval == SessionBudgets().drain_interval

    def test_bad_toml_values_skipped(self, isolated, caplog):
        write_config(isolated / "cwd", "[supervisor]\nidle_timeout = 'soon'\nbogus = 1\n")
        with caplog.at_level(logging.WARNING):
            budgets = resolve_budgets(environ={})
        assert budgets.idle_timeout == SessionBudgets().idle_timeout
        assert "bogus" in caplog.text

    def test_non_positive_rejected(self, isolated):
        with pytest.raises(ValueError, match="session_timeout"):
            resolve_budgets({"session_timeout": 0}, environ={})


class TestHarnessSettings:
    def test_model_priority(self, isolated):
        write_config(isolated / "cwd", "[harness]\nmodel = 'haiku'\n")
        assert resolve_model("opus", environ={"LONGRUN_MODEL": "x"}) == "opus"
        assert resolve_model(None, environ={"LONGRUN_MODEL": "x"}) == "x"
        assert resolve_model(None, environ={}) == "haiku"

    def test_model_default(self, isolated):
        assert resolve_model(environ={}) == "sonnet"

    def test_max_sessions(self, isolated):
        assert resolve_max_sessions() == 50
        write_config(isolated / "cwd", "[harness]\nmax_sessions = 7\n")
        assert resolve_max_sessions() == 7
        assert resolve_max_sessions(3) == 3

    def test_bad_max_sessions(self, isolated):
        write_config(isolated / "cwd", "[harness]\nmax_sessions = -2\n")
        assert resolve_max_sessions() == 50


class TestLogLevel:
    def test_default_warning(self):
        assert load_log_level({}) == logging.WARNING

    def test_case_insensitive(self):
        assert load_log_level({"LONGRUN_LOG_LEVEL": "debug"}) == logging.DEBUG

    def test_unknown_falls_back(self):
        assert load_log_level({"LONGRUN_LOG_LEVEL": "LOUD"}) == logging.WARNING
