import json
import logging
from pathlib import Path

import pytest

from weightsmart_monitor.cli import app as cli_app
from weightsmart_monitor.config.settings import AppSettings, ConnectionConfig, SettingsLoader
from weightsmart_monitor.device.errors import TransportError


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _fast_settings(path: Path) -> Path:
    settings = AppSettings(
        connection=ConnectionConfig(polling_interval_s=0.01, use_push_channel=False),
    )
    SettingsLoader.dump(settings, path)
    return path


def test_init_config_writes_default_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "weightsmart.yaml"

    assert cli_app.main(["--config", str(config_path), "init-config"]) == 0

    assert SettingsLoader.load(config_path) == AppSettings()


def test_simulated_monitor_exports_alerts(tmp_path: Path) -> None:
    config_path = _fast_settings(tmp_path / "weightsmart.yaml")
    output = tmp_path / "alerts.json"

    code = cli_app.main(
        [
            "--config",
            str(config_path),
            "monitor",
            "--simulate",
            "--tamper-probability",
            "1.0",
            "--max-samples",
            "5",
            "--export-alerts",
            str(output),
        ]
    )

    assert code == 0
    alerts = json.loads(output.read_text(encoding="utf-8"))
    assert alerts
    assert {"id", "type", "severity", "message"} <= set(alerts[0])


def test_ping_reports_unreachable_device(tmp_path: Path, monkeypatch) -> None:
    config_path = _fast_settings(tmp_path / "weightsmart.yaml")

    async def _refuse(self) -> None:
        raise TransportError("connection refused")

    monkeypatch.setattr(cli_app.DeviceApi, "ping", _refuse)

    assert cli_app.main(["--config", str(config_path), "ping"]) == 1


def test_value_commands_require_value(tmp_path: Path) -> None:
    config_path = _fast_settings(tmp_path / "weightsmart.yaml")
    with pytest.raises(SystemExit):
        cli_app.main(["--config", str(config_path), "command", "calibrate"])


def test_wrongly_typed_config_is_a_usage_error(tmp_path: Path) -> None:
    config_path = tmp_path / "weightsmart.yaml"
    config_path.write_text('connection:\n  polling_interval_s: "abc"\n', encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        cli_app.main(["--config", str(config_path), "ping"])
    assert excinfo.value.code == 2
