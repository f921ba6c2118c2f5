"""
Unit tests for run settings: layering, type coercion and validation.
"""

import json
from unittest.mock import patch

import pytest

from immich_stacker.core import config
from immich_stacker.core.settings import ConfigError, StackerConfig, load_settings

REQUIRED_ENV = {
    "IMMICH_API_KEY": "secret",
    "IMMICH_ENDPOINT": "https://photos.example.com",
    "IMMICH_MATCH": r"_\d+(?=\.)",
    "IMMICH_PARENT": r"^[^_]+\.",
}


@pytest.fixture
def no_default_file(tmp_path):
    with patch.object(config, "DEFAULT_CONFIG_PATH", tmp_path / "absent.json"):
        yield


def test_defaults():
    settings = StackerConfig()
    assert settings.log_level == "INFO"
    assert settings.source == config.SOURCE_SEARCH
    assert settings.mode == config.MODE_CREATE
    assert settings.page_size == config.DEFAULT_PAGE_SIZE
    assert settings.workers == 1
    assert settings.read_only is False
    assert settings.compare_created is False


def test_load_from_environment(no_default_file):
    env = dict(REQUIRED_ENV, IMMICH_READ_ONLY="true", IMMICH_COMPARE_CREATED="1", IMMICH_PAGE_SIZE="250")

    settings = load_settings(environ=env)

    assert settings.api_key == "secret"
    assert settings.read_only is True
    assert settings.compare_created is True
    assert settings.page_size == 250
    assert settings.match_pattern.pattern == REQUIRED_ENV["IMMICH_MATCH"]
    assert settings.parent_pattern is not None


def test_missing_required_settings(no_default_file):
    env = {"IMMICH_API_KEY": "secret"}
    with pytest.raises(ConfigError) as exc:
        load_settings(environ=env)
    message = str(exc.value)
    assert "IMMICH_ENDPOINT" in message
    assert "IMMICH_MATCH" in message
    assert "IMMICH_PARENT" in message


def test_invalid_match_pattern(no_default_file):
    env = dict(REQUIRED_ENV, IMMICH_MATCH="IMG_(\\d+")
    with pytest.raises(ConfigError, match="match pattern"):
        load_settings(environ=env)


def test_invalid_parent_pattern(no_default_file):
    env = dict(REQUIRED_ENV, IMMICH_PARENT="[")
    with pytest.raises(ConfigError, match="parent pattern"):
        load_settings(environ=env)


@pytest.mark.parametrize("value", ["maybe", "2"])
def test_invalid_boolean(no_default_file, value):
    env = dict(REQUIRED_ENV, IMMICH_INSECURE_TLS=value)
    with pytest.raises(ConfigError):
        load_settings(environ=env)


def test_invalid_number(no_default_file):
    env = dict(REQUIRED_ENV, IMMICH_WORKERS="many")
    with pytest.raises(ConfigError):
        load_settings(environ=env)


@pytest.mark.parametrize("name, value", [
    ("IMMICH_SOURCE", "albums"),
    ("IMMICH_MODE", "merge"),
    ("IMMICH_LOG_LEVEL", "LOUD"),
    ("IMMICH_PAGE_SIZE", "0"),
    ("IMMICH_ENDPOINT", "photos.example.com"),
])
def test_invalid_values(no_default_file, name, value):
    env = dict(REQUIRED_ENV, **{name: value})
    with pytest.raises(ConfigError):
        load_settings(environ=env)


def test_log_level_normalized(no_default_file):
    settings = load_settings(environ=dict(REQUIRED_ENV, IMMICH_LOG_LEVEL="debug"))
    assert settings.log_level == "DEBUG"


def test_precedence_file_env_overrides(tmp_path):
    path = tmp_path / "stacker.json"
    path.write_text(json.dumps({
        "api_key": "from-file",
        "endpoint": "https://file.example.com",
        "match": "_x",
        "parent": "^a",
        "workers": 3,
        "read_only": True,
    }))
    env = {"IMMICH_API_KEY": "from-env", "IMMICH_WORKERS": "5"}

    settings = load_settings(config_file=path, environ=env, overrides={"workers": 7, "match": None})

    assert settings.endpoint == "https://file.example.com"
    assert settings.api_key == "from-env"
    assert settings.workers == 7
    assert settings.match == "_x"
    assert settings.read_only is True


def test_explicit_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_settings(config_file=tmp_path / "missing.json", environ=REQUIRED_ENV)


def test_unknown_keys_ignored(no_default_file, caplog):
    settings = StackerConfig().update({"colour": "blue", "workers": "2"}, origin="test")
    assert settings.workers == 2
    assert "colour" in caplog.text


def test_describe_lists_settings_only():
    described = StackerConfig(api_key="secret").describe()
    assert described["api_key"] == "secret"
    assert "match_pattern" not in described
    assert set(described) == set(StackerConfig.setting_names())
