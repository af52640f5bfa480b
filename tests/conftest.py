import json
from unittest.mock import MagicMock, patch

import pytest

from redcap_client import Configuration, RedcapClient, reset_default_configuration

HOST = "https://redcap.example.org/api/"
TOKEN = "ABCDEF0123456789"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep REDCAP_* variables and stray .env files out of the tests."""
    for name in ("REDCAP_HOST", "REDCAP_TOKEN", "REDCAP_FORMAT", "REDCAP_CACHE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("redcap_client.configuration.load_dotenv", lambda *a, **k: False)
    reset_default_configuration()
    yield
    reset_default_configuration()


@pytest.fixture
def configuration():
    return Configuration(host=HOST, token=TOKEN)


@pytest.fixture
def client(configuration):
    return RedcapClient(configuration, cache=False)


@pytest.fixture
def make_response():
    def _make(json_data=None, text=None, status_code=200, content=b""):
        response = MagicMock()
        response.status_code = status_code
        if text is None:
            text = "" if json_data is None else json.dumps(json_data)
        response.text = text
        if json_data is None:
            response.json.side_effect = json.JSONDecodeError("Expecting value", text, 0)
        else:
            response.json.return_value = json_data
        response.iter_content.return_value = [content] if content else []
        return response

    return _make


@pytest.fixture
def mock_post():
    with patch("redcap_client.client.requests.post") as post:
        yield post


@pytest.fixture
def sent_payload(mock_post):
    """Return the form data passed to requests.post."""
    def _sent(call_index=-1):
        return mock_post.call_args_list[call_index].kwargs["data"]

    return _sent
