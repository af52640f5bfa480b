import logging

import pytest

from redcap_client import (
    Configuration,
    ConfigurationError,
    RedcapClient,
    get_default_configuration,
    set_default_configuration,
)


def test_from_options_defaults_format_to_json():
    """Test that a missing format falls back to json."""
    configuration = Configuration.from_options({"host": "h", "token": "t"})
    assert configuration.format == "json"
    assert configuration.host == "h"
    assert configuration.token == "t"
    assert isinstance(configuration.logger, logging.Logger)


def test_from_options_ignores_unknown_keys_and_accepts_empty_values():
    """Test that options are not validated."""
    configuration = Configuration.from_options(
        {"host": "", "token": "", "format": "csv", "colour": "blue"}
    )
    assert configuration.host == ""
    assert configuration.token == ""
    assert configuration.format == "csv"


def test_configuration_is_immutable():
    configuration = Configuration(host="h", token="t")
    with pytest.raises(AttributeError):
        configuration.host = "other"


def test_from_env_reads_host_and_token():
    configuration = Configuration.from_env(
        {"REDCAP_HOST": "https://x/api/", "REDCAP_TOKEN": "secret"}
    )
    assert configuration.host == "https://x/api/"
    assert configuration.token == "secret"
    assert configuration.format == "json"


def test_resolved_log_level():
    assert Configuration().resolved_log_level == logging.DEBUG
    assert Configuration(log_level="info").resolved_log_level == logging.INFO
    assert Configuration(log_level=logging.WARNING).resolved_log_level == logging.WARNING
    assert Configuration(log_level="nonsense").resolved_log_level == logging.DEBUG


def test_default_configuration_is_built_once_from_environment(monkeypatch):
    """Test lazy creation and reuse of the process default."""
    monkeypatch.setenv("REDCAP_HOST", "https://env/api/")
    monkeypatch.setenv("REDCAP_TOKEN", "env-token")
    first = get_default_configuration()
    assert first.host == "https://env/api/"
    monkeypatch.setenv("REDCAP_HOST", "https://changed/api/")
    assert get_default_configuration() is first


def test_set_default_configuration_from_mapping():
    configuration = set_default_configuration({"host": "h", "token": "t"})
    assert get_default_configuration() is configuration
    assert RedcapClient(cache=False).configuration is configuration


def test_unconfigured_default_fails_fast(mock_post):
    """Test that clearing the default makes the next request fail."""
    client = RedcapClient(cache=False)
    set_default_configuration(None)
    assert get_default_configuration() is None
    with pytest.raises(ConfigurationError):
        client.project()
    with pytest.raises(ConfigurationError):
        client.build_payload("record")
    mock_post.assert_not_called()
