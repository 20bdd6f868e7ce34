"""Tests for settings and configuration stores."""
import pytest
from pydantic import ValidationError

from pybackupgw.config import EnvFileConfigStore, GatewayConfig, MemoryConfigStore, Settings


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("GW_HOST", "10.0.1.20")
    monkeypatch.setenv("GW_PORT", "8443")
    monkeypatch.setenv("GW_EMAIL", "me@example.com")
    monkeypatch.setenv("GW_POLL_INTERVAL", "3.5")
    monkeypatch.setenv("GW_DEBUG", "yes")
    monkeypatch.delenv("GW_PASSWORD", raising=False)
    settings = Settings()
    assert settings.port == 8443
    assert settings.poll_interval == 3.5
    assert settings.retry_interval == 60
    assert settings.failure_threshold == 5
    assert settings.debug is True
    config = settings.gateway_config()
    assert config.host == "10.0.1.20"
    assert config.email == "me@example.com"
    assert not config.has_credentials


def test_memory_store_update():
    store = MemoryConfigStore(GatewayConfig(host="10.0.1.20"))
    config = store.update(port=8443, password="secret")
    assert config.port == 8443
    assert store.load().password == "secret"
    assert store.load().host == "10.0.1.20"


def test_update_rejects_unknown_and_invalid_values():
    store = MemoryConfigStore()
    with pytest.raises(ValueError, match="hostname"):
        store.update(hostname="10.0.1.20")
    with pytest.raises(ValidationError):
        store.update(port=70000)
    assert store.load().port == 443


def test_env_file_store_round_trip(tmp_path):
    path = tmp_path / ".env"
    path.write_text("OTHER_SETTING=keep\nGW_PASSWORD=old\n")
    store = EnvFileConfigStore(str(path))
    store.update(host="10.0.1.20", email="me@example.com", password=None)
    config = store.load()
    assert config.host == "10.0.1.20"
    assert config.email == "me@example.com"
    assert config.password is None
    text = path.read_text()
    assert "OTHER_SETTING=keep" in text
    assert "GW_PASSWORD" not in text


def test_env_file_store_missing_file(tmp_path):
    store = EnvFileConfigStore(str(tmp_path / "missing.env"))
    assert store.load() == GatewayConfig()
