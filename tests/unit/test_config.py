# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig


ENV_VARS = (
    "ENV",
    "LOG_EVENTS_ENABLED",
    "UPSTREAM_HOST",
    "UPSTREAM_PORT",
    "UPSTREAM_MODE",
    "SUBSCRIBER_QUEUE_MAX_FRAMES",
    "MUSIC_DIR",
    "BRIDGE_URL",
    "CLIENT_TRANSPORT",
    "CALIBRATION_MS",
    "SYNC_DELAY_S",
    "RECONNECT_DELAY_S",
    "AUDIO_DEVICE",
    "OUTPUT_SAMPLE_RATE_HZ",
    "ASSET_CACHE_MAX_ENTRIES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = AppConfig.load_from_env()

    assert config.upstream_host == "localhost"
    assert config.upstream_port == 12345
    assert config.upstream_mode == "shared"
    assert config.subscriber_queue_max_frames == 256
    assert config.sync_delay_s == 3.0
    assert config.calibration_ms == 0
    assert config.reconnect_delay_s == 3.0
    assert config.client_transport == "sse"
    assert config.audio_device is None
    assert config.output_sample_rate_hz is None
    assert config.asset_cache_max_entries is None
    assert config.log_events_enabled is True


def test_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("UPSTREAM_HOST", "10.0.0.5")
    monkeypatch.setenv("UPSTREAM_PORT", "9000")
    monkeypatch.setenv("UPSTREAM_MODE", "per_subscriber")
    monkeypatch.setenv("CLIENT_TRANSPORT", "ws")
    monkeypatch.setenv("CALIBRATION_MS", "35")
    monkeypatch.setenv("OUTPUT_SAMPLE_RATE_HZ", "48000")
    monkeypatch.setenv("ASSET_CACHE_MAX_ENTRIES", "8")
    monkeypatch.setenv("LOG_EVENTS_ENABLED", "0")

    config = AppConfig.load_from_env()

    assert config.upstream_host == "10.0.0.5"
    assert config.upstream_port == 9000
    assert config.upstream_mode == "per_subscriber"
    assert config.client_transport == "ws"
    assert config.calibration_ms == 35
    assert config.output_sample_rate_hz == 48000
    assert config.asset_cache_max_entries == 8
    assert config.log_events_enabled is False


@pytest.mark.parametrize(
    "name,value",
    [
        ("UPSTREAM_MODE", "broadcast"),
        ("CLIENT_TRANSPORT", "carrier-pigeon"),
        ("SUBSCRIBER_QUEUE_MAX_FRAMES", "0"),
        ("CALIBRATION_MS", "-1"),
        ("UPSTREAM_PORT", "not-a-port"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        AppConfig.load_from_env()
