from pathlib import Path

import pytest

from weightsmart_monitor.config.settings import AppSettings, ConnectionConfig, SettingsLoader
from weightsmart_monitor.models.sensors import WeightUnit
from weightsmart_monitor.security.validators import validate_host, validate_ip, validate_port


def test_default_config_roundtrip(tmp_path: Path) -> None:
    cfg = tmp_path / "weightsmart.yaml"
    SettingsLoader.dump_default(cfg)
    loaded = SettingsLoader.load(cfg)
    assert loaded == AppSettings()
    assert loaded.app_name == "WEIGHTSMART MONITOR"
    assert loaded.connection.max_retries == 3
    assert loaded.detection.max_alerts == 50


def test_custom_values_survive_dump_and_load(tmp_path: Path) -> None:
    cfg = tmp_path / "custom.yaml"
    settings = AppSettings(
        weight_unit=WeightUnit.OUNCES,
        enable_ml_detection=False,
        connection=ConnectionConfig(host="scale.local", port=8080, auto_reconnect=False),
    )
    SettingsLoader.dump(settings, cfg)
    assert SettingsLoader.load(cfg) == settings


def test_partial_yaml_takes_defaults(tmp_path: Path) -> None:
    cfg = tmp_path / "partial.yaml"
    cfg.write_text("connection:\n  host: 10.0.0.5\ndetection:\n  z_score_threshold: 2.5\n", encoding="utf-8")
    loaded = SettingsLoader.load(cfg)
    assert loaded.connection.host == "10.0.0.5"
    assert loaded.connection.port == 80
    assert loaded.detection.z_score_threshold == 2.5
    assert loaded.detection.history_size == 100


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("connection:\n  hots: 10.0.0.5\n", encoding="utf-8")
    with pytest.raises(ValueError):
        SettingsLoader.load(cfg)

    cfg.write_text("database:\n  path: x\n", encoding="utf-8")
    with pytest.raises(ValueError):
        SettingsLoader.load(cfg)


def test_invalid_connection_values() -> None:
    with pytest.raises(ValueError):
        ConnectionConfig(host="bad host!")
    with pytest.raises(ValueError):
        ConnectionConfig(port=70000)
    with pytest.raises(ValueError):
        ConnectionConfig(max_retries=-1)
    assert ConnectionConfig(host="10.0.0.2", port=8080).base_url == "http://10.0.0.2:8080"


def test_validators() -> None:
    assert validate_ip("192.168.1.1")
    assert not validate_ip("999.1.1.1")
    assert validate_host("esp8266.local")
    assert validate_host("::1")
    assert not validate_host("999.1.1.1")
    assert not validate_host("-bad.example")
    assert validate_port(80)
    assert not validate_port(0)
    assert not validate_port(True)


@pytest.mark.parametrize(
    "document",
    [
        'connection:\n  polling_interval_s: "abc"\n',
        "connection:\n  max_retries: 1.5\n",
        "connection:\n  auto_reconnect: 3\n",
        "detection:\n  z_score_threshold: alto\n",
        "detection:\n  history_size: true\n",
    ],
)
def test_wrongly_typed_yaml_values_raise_value_error(tmp_path: Path, document: str) -> None:
    cfg = tmp_path / "typed.yaml"
    cfg.write_text(document, encoding="utf-8")
    with pytest.raises(ValueError):
        SettingsLoader.load(cfg)


def test_non_numeric_connection_values_raise_value_error() -> None:
    with pytest.raises(ValueError):
        ConnectionConfig(polling_interval_s="abc")
    with pytest.raises(ValueError):
        ConnectionConfig(connect_timeout_s=True)
    with pytest.raises(ValueError):
        ConnectionConfig(max_retries=2.0)
