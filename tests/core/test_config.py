"""Tests for the Config system."""

import os
from pathlib import Path

import pytest

from nudge.core.config import NudgeConfig, _expand_env, _load_from_env, _merge_layers
from nudge.core.errors import ConfigError

NO_FILES = dict(
    project_path=Path("/nonexistent/nudge.toml"),
    user_path=Path("/nonexistent/config.toml"),
)


def test_default_config():
    """Default config has sensible values."""
    config = NudgeConfig()

    assert config.store.backend == "sqlite"
    assert config.scheduler.hourly_cron == "0 * * * *"
    assert config.scheduler.quarter_hour_cron == "*/15 * * * *"
    assert config.scheduler.max_concurrent_sends == 10
    assert config.push.remove_gone_subscribers is True
    assert config.push.app_title == "Aiding Migraine"
    assert config.push.configured is False


def test_load_with_overrides():
    """Explicit overrides take highest precedence."""
    config = NudgeConfig.load(
        overrides={"store": {"backend": "json"}, "scheduler": {"max_concurrent_sends": 3}},
        **NO_FILES,
    )

    assert config.store.backend == "json"
    assert config.scheduler.max_concurrent_sends == 3
    # Defaults still work for non-overridden values
    assert config.scheduler.enabled is True


def test_env_var_loading(monkeypatch):
    """VAPID_* and NUDGE_* environment variables are loaded."""
    monkeypatch.setenv("VAPID_PRIVATE_KEY", "1234")
    monkeypatch.setenv("VAPID_SUBJECT", "mailto:ops@example.com")
    monkeypatch.setenv("NUDGE_STORE_BACKEND", "memory")
    monkeypatch.setenv("NUDGE_SCHEDULER_MAX_CONCURRENT_SENDS", "4")

    config = NudgeConfig.load(**NO_FILES)

    # numeric-looking keys must stay strings
    assert config.push.vapid_private_key == "1234"
    assert config.push.vapid_subject == "mailto:ops@example.com"
    assert config.push.configured is True
    assert config.store.backend == "memory"
    assert config.scheduler.max_concurrent_sends == 4


def test_project_toml_overrides_user_toml(tmp_path):
    user = tmp_path / "user.toml"
    user.write_text('[store]\nbackend = "json"\npath = "/data/user"\n')
    project = tmp_path / "nudge.toml"
    project.write_text('[store]\npath = "/data/project"\n')

    config = NudgeConfig.load(project_path=project, user_path=user)

    assert config.store.backend == "json"
    assert config.store.path == "/data/project"


def test_invalid_value_raises_config_error():
    with pytest.raises(ConfigError):
        NudgeConfig.load(overrides={"store": {"backend": "postgres"}}, **NO_FILES)


def test_malformed_toml_raises_config_error(tmp_path):
    bad = tmp_path / "nudge.toml"
    bad.write_text("[store\nbackend = ")
    with pytest.raises(ConfigError):
        NudgeConfig.load(project_path=bad, user_path=Path("/nonexistent/config.toml"))


def test_env_var_substitution(monkeypatch):
    """${VAR} in config values gets replaced with env var values."""
    monkeypatch.setenv("MY_KEY", "secret123")
    monkeypatch.delenv("NUDGE_UNSET_VAR", raising=False)
    data = {"push": {"vapid_private_key": "${MY_KEY}", "app_title": "x${NUDGE_UNSET_VAR}y"}, "n": 3}

    expanded = _expand_env(data)

    assert expanded == {"push": {"vapid_private_key": "secret123", "app_title": "xy"}, "n": 3}
    assert data["push"]["vapid_private_key"] == "${MY_KEY}"


def test_later_layers_win_per_key():
    merged = _merge_layers([
        {"store": {"backend": "json", "path": "/a"}, "logging": {"level": "DEBUG"}},
        {"store": {"path": "/b"}},
        {},
    ])

    assert merged == {"store": {"backend": "json", "path": "/b"}, "logging": {"level": "DEBUG"}}


def test_env_values_parsed_per_setting():
    layer = _load_from_env({
        "NUDGE_SCHEDULER_ENABLED": "no",
        "NUDGE_PUSH_TTL": "3600",
        "NUDGE_PUSH_APP_TITLE": "42",
    })

    assert layer["scheduler"]["enabled"] is False
    assert layer["push"]["ttl"] == 3600
    assert layer["push"]["app_title"] == "42"


def test_unparseable_env_value_raises_config_error():
    with pytest.raises(ConfigError):
        _load_from_env({"NUDGE_SCHEDULER_MAX_CONCURRENT_SENDS": "lots"})


def test_store_path_is_expanded():
    config = NudgeConfig()
    assert "~" not in str(config.get_store_path())
    assert config.get_store_path() == Path(os.path.expanduser("~/.nudge/data"))
