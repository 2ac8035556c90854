"""Dobles de prueba compartidos: dispositivo falso y utilidades asíncronas."""

from __future__ import annotations

import asyncio
from typing import Callable

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.device.errors import CommandError, TransportError
from weightsmart_monitor.models.commands import CommandAck, DeviceCommand
from weightsmart_monitor.models.sensors import DeviceStatus, LightReading, Sample, WeightReading


def make_sample(
    weight: float = 100.0,
    light_level: float = 5.0,
    is_tampered: bool = False,
    threshold: float = 1000.0,
    device_id: str = "ESP-TEST",
) -> Sample:
    return Sample(
        weight=WeightReading(weight=weight, raw_value=int(weight * 420), is_stable=True, calibration_factor=420.0),
        light=LightReading(light_level=light_level, is_tampered=is_tampered, threshold=threshold),
        device_id=device_id,
    )


def fast_config(**overrides) -> ConnectionConfig:
    values = {
        "host": "127.0.0.1",
        "polling_interval_s": 0.01,
        "reconnect_base_delay_s": 0.01,
        "use_push_channel": False,
    }
    values.update(overrides)
    return ConnectionConfig(**values)


class FakeDevice:
    """Estado compartido entre todas las instancias de ``FakeDeviceApi``."""

    def __init__(self) -> None:
        self.reachable = True
        self.ping_gate: asyncio.Event | None = None
        self.pings = 0
        self.ping_times: list[float] = []
        self.samples: list[Sample | Exception] = []
        self.default_sample = make_sample()
        self.commands: list[DeviceCommand] = []
        self.rejected: set = set()
        self.closed_apis = 0

    def factory(self) -> Callable[[ConnectionConfig], "FakeDeviceApi"]:
        return lambda config: FakeDeviceApi(config, self)


class FakeDeviceApi:
    def __init__(self, config: ConnectionConfig, device: FakeDevice) -> None:
        self.config = config
        self.device = device

    async def ping(self) -> None:
        self.device.pings += 1
        self.device.ping_times.append(asyncio.get_running_loop().time())
        if self.device.ping_gate is not None:
            await self.device.ping_gate.wait()
        if not self.device.reachable:
            raise TransportError("connection refused")

    async def sensor_data(self) -> Sample:
        await asyncio.sleep(0)
        if self.device.samples:
            item = self.device.samples.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.device.default_sample

    async def weight(self) -> WeightReading:
        return (await self.sensor_data()).weight

    async def light(self) -> LightReading:
        return (await self.sensor_data()).light

    async def status(self) -> DeviceStatus:
        return DeviceStatus(connected=True, ip_address=self.config.host)

    async def history(self, limit: int = 100) -> list[Sample]:
        return [self.device.default_sample][:limit]

    async def execute(self, command: DeviceCommand) -> CommandAck:
        self.device.commands.append(command)
        if command.kind in self.device.rejected:
            raise CommandError(f"{command.kind.value} rechazado")
        return CommandAck(kind=command.kind, success=True, message="OK")

    def close(self) -> None:
        self.device.closed_apis += 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condición no alcanzada a tiempo")
        await asyncio.sleep(0.005)
