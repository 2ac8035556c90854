import asyncio

import pytest

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.device.errors import CommandError
from weightsmart_monitor.device.simulated import SimulatedDevice, SimulatedDeviceApi
from weightsmart_monitor.models.commands import CommandKind, DeviceCommand
from weightsmart_monitor.models.events import Severity


def test_command_bodies_use_device_field_names() -> None:
    assert DeviceCommand.calibrate(500).body == {"knownWeight": 500}
    assert DeviceCommand.set_calibration_factor(420.5).body == {"factor": 420.5}
    assert DeviceCommand.set_light_threshold(150).body == {"threshold": 150}
    assert DeviceCommand.set_wifi("casa", "secreto").body == {"ssid": "casa", "password": "secreto", "useAP": False}
    assert DeviceCommand.ota_start("http://fw/1.bin", "1.1.0").body["force_update"] is False
    assert DeviceCommand.restart().body == {}


@pytest.mark.parametrize("factory", [DeviceCommand.calibrate, DeviceCommand.set_calibration_factor])
def test_non_positive_values_are_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory(0)


def test_severity_thresholds() -> None:
    assert Severity.from_confidence(0.95) is Severity.CRITICAL
    assert Severity.from_confidence(0.7) is Severity.HIGH
    assert Severity.from_confidence(0.5) is Severity.MEDIUM
    assert Severity.from_confidence(0.4) is Severity.LOW


def test_simulated_device_is_reproducible_with_seed() -> None:
    first = SimulatedDevice(seed=7)
    second = SimulatedDevice(seed=7)
    weights_a = [first.next_sample().weight.weight for _ in range(5)]
    weights_b = [second.next_sample().weight.weight for _ in range(5)]
    assert weights_a == weights_b
    assert len(first.history) == 5


def test_simulated_api_applies_commands() -> None:
    device = SimulatedDevice(seed=1)
    api = SimulatedDeviceApi(ConnectionConfig(), device)

    async def scenario() -> None:
        ack = await api.execute(DeviceCommand.set_light_threshold(250.0))
        assert ack.kind is CommandKind.SET_LIGHT_THRESHOLD
        info = await api.execute(DeviceCommand.firmware_info())
        assert info.data["current_version"] == "1.0.0"
        with pytest.raises(CommandError):
            await api.execute(DeviceCommand.calibrate(9000.0))

    asyncio.run(scenario())
    assert device.light_threshold == 250.0
