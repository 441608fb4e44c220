import asyncio
import logging

import pytest

from console_gateway.clients.upstream import UpstreamGateway
from console_gateway.config import Settings, get_settings
from console_gateway.errors import ConfigurationError
from console_gateway.logging_config import configure_logging
from console_gateway.models import SessionCredential
from console_gateway.session import CredentialHolder


def test_defaults_are_valid():
    settings = Settings()
    assert settings.validation_errors() == []
    settings.validate_runtime()
    assert settings.read_timeout_sec == 10
    assert settings.action_timeout_sec == 30
    assert settings.upstream_api_url == "https://localhost:8006/api2/json"


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("PROXMOX_HOST", "https://pve.example.test:8006/")
    monkeypatch.setenv("REFRESH_INTERVAL_SEC", "15")
    monkeypatch.setenv("VERIFY_TLS", "false")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.upstream_api_url == "https://pve.example.test:8006/api2/json"
        assert settings.refresh_interval_sec == 15
        assert settings.verify_tls is False
    finally:
        get_settings.cache_clear()


def test_validation_collects_every_error():
    settings = Settings(
        proxmox_host="not a url",
        console_host="ftp:/missing-host",
        api_timeout_ms=999,
        read_timeout_ms=10,
        refresh_interval_sec=4,
    )
    errors = settings.validation_errors()
    assert "PROXMOX_HOST must be a valid URL" in errors
    assert "CONSOLE_HOST must be a valid URL" in errors
    assert "API_TIMEOUT_MS must be at least 1000ms" in errors
    assert "READ_TIMEOUT_MS must be at least 1000ms" in errors
    assert "REFRESH_INTERVAL_SEC must be at least 5 seconds" in errors
    with pytest.raises(ConfigurationError) as excinfo:
        settings.validate_runtime()
    assert excinfo.value.errors == errors


def test_boundary_values_are_accepted():
    settings = Settings(api_timeout_ms=1000, read_timeout_ms=1000, refresh_interval_sec=5)
    assert settings.validation_errors() == []


def test_invalid_configuration_blocks_gateway_calls():
    settings = Settings(refresh_interval_sec=1)
    holder = CredentialHolder(SessionCredential("PVE:root@pam:AA", "csrf", "root@pam"))
    gateway = UpstreamGateway(settings, holder)

    async def call():
        try:
            await gateway.list_nodes()
        finally:
            await gateway.aclose()

    with pytest.raises(ConfigurationError):
        asyncio.run(call())


def test_client_config_hides_upstream_details():
    config = Settings(console_host="http://guac.example.test:8080").client_config()
    assert config["console"]["host"] == "http://guac.example.test:8080"
    assert config["dashboard"]["refreshInterval"] == 30
    assert "proxmox_host" not in str(config)


def test_debug_logging_raises_root_level(monkeypatch):
    root = logging.getLogger()
    previous = root.level
    monkeypatch.setenv("DEBUG_LOGGING", "true")
    get_settings.cache_clear()
    try:
        configure_logging()
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.setLevel(previous)
        get_settings.cache_clear()


def test_unparseable_values_become_configuration_error(monkeypatch):
    monkeypatch.setenv("READ_TIMEOUT_MS", "ten")
    monkeypatch.setenv("VERIFY_TLS", "maybe")
    monkeypatch.setenv("RETRY_ATTEMPTS", "0")
    get_settings.cache_clear()
    try:
        with pytest.raises(ConfigurationError) as excinfo:
            get_settings()
    finally:
        get_settings.cache_clear()
    assert sorted(excinfo.value.errors) == [
        "READ_TIMEOUT_MS must be an integer",
        "RETRY_ATTEMPTS must be at least 1",
        "VERIFY_TLS must be true or false",
    ]


@pytest.mark.parametrize(
    "host", ["https://pve.test:99999", "https://pve.test:port", "https://pve.test:0"]
)
def test_bad_port_is_not_a_valid_url(host):
    assert "PROXMOX_HOST must be a valid URL" in Settings(
        proxmox_host=host
    ).validation_errors()


def test_explicit_port_is_accepted():
    assert Settings(proxmox_host="https://pve.test:8006").validation_errors() == []
