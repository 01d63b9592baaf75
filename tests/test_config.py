import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fake_backend import make_settings

from coventure.core.config import load_settings
from coventure.core.errors import ConfigurationError


def test_missing_backend_url_is_fatal(monkeypatch):
    monkeypatch.delenv("backend_url", raising=False)
    monkeypatch.delenv("BACKEND_URL", raising=False)

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(backend_anon_key="anon", _env_file=None)

    assert "backend_url" in str(excinfo.value)


def test_empty_anon_key_is_fatal():
    with pytest.raises(ConfigurationError):
        load_settings(backend_url="http://backend.test", backend_anon_key="  ")


def test_unknown_status_policy_is_rejected():
    with pytest.raises(ConfigurationError):
        make_settings(project_status_policy="whenever")


def test_derived_urls():
    settings = make_settings(backend_url="https://abc.backend.co/")

    assert settings.rest_url == "https://abc.backend.co/rest/v1"
    assert settings.auth_url == "https://abc.backend.co/auth/v1"
    assert settings.realtime_url.startswith("wss://abc.backend.co/realtime/v1/websocket?apikey=anon-key")


def test_realtime_defaults():
    settings = make_settings()

    assert settings.realtime_max_retries == 3
    assert settings.realtime_base_delay_ms == 1000
    assert settings.realtime_max_delay_ms == 10000
    assert settings.http_timeout == 15.0
    assert settings.project_status_policy == "manual"


def test_cors_origins_list():
    settings = make_settings(backend_cors_origins="http://a.test, http://b.test,")

    assert settings.cors_origins_list == ["http://a.test", "http://b.test"]
