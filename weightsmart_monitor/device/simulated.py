from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, AsyncIterator

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.device.errors import CommandError
from weightsmart_monitor.device.protocol import encode_sample
from weightsmart_monitor.models.commands import CommandAck, CommandKind, DeviceCommand
from weightsmart_monitor.models.sensors import DeviceStatus, LightReading, Sample, WeightReading

logger = logging.getLogger(__name__)


class SimulatedDevice:
    """Báscula sintética con caminata aleatoria e inyección opcional de manipulaciones."""

    def __init__(
        self,
        base_weight_g: float = 1000.0,
        tamper_probability: float = 0.0,
        seed: int | None = None,
        device_id: str = "SIM-ESP8266",
    ) -> None:
        self.device_id = device_id
        self.tamper_probability = tamper_probability
        self.calibration_factor = 420.0
        self.light_threshold = 100.0
        self.firmware_version = "1.0.0"
        self._rng = random.Random(seed)
        self._weight = base_weight_g
        self._offset = 0.0
        self._uptime_s = 0
        self.history: list[Sample] = []

    def next_sample(self) -> Sample:
        self._uptime_s += 1
        self._weight += self._rng.gauss(0, 0.4)
        weight = self._weight - self._offset
        light_level = abs(self._rng.gauss(4.0, 1.0))
        tampered = False

        if self._rng.random() < self.tamper_probability:
            if self._rng.random() < 0.5:
                light_level = self._rng.uniform(250.0, 800.0)
                tampered = light_level > self.light_threshold
            else:
                weight -= self._rng.uniform(80.0, 400.0)

        sample = Sample(
            weight=WeightReading(
                weight=round(weight, 2),
                raw_value=int(weight * self.calibration_factor),
                is_stable=abs(weight - (self._weight - self._offset)) < 0.5,
                calibration_factor=self.calibration_factor,
            ),
            light=LightReading(
                light_level=round(light_level, 1),
                is_tampered=tampered,
                threshold=self.light_threshold,
            ),
            device_id=self.device_id,
            firmware_version=self.firmware_version,
            wifi_rssi=self._rng.randint(-75, -45),
            uptime_s=self._uptime_s,
            free_heap=self._rng.randint(28_000, 32_000),
        )
        self.history = (self.history + [sample])[-100:]
        return sample

    def apply(self, command: DeviceCommand) -> dict[str, Any]:
        kind = command.kind
        if kind is CommandKind.TARE:
            self._offset = self._weight
        elif kind is CommandKind.CALIBRATE:
            known = command.body["knownWeight"]
            if known > 5000:
                raise CommandError(f"Peso de calibración fuera de rango: {known}")
            self.calibration_factor = round(self.calibration_factor * known / max(self._weight - self._offset, 1.0), 3)
        elif kind is CommandKind.SET_CALIBRATION_FACTOR:
            self.calibration_factor = command.body["factor"]
        elif kind is CommandKind.SET_LIGHT_THRESHOLD:
            self.light_threshold = command.body["threshold"]
        elif kind is CommandKind.FIRMWARE_INFO:
            return {
                "current_version": self.firmware_version,
                "latest_version": self.firmware_version,
                "update_available": False,
            }
        elif kind is CommandKind.OTA_STATUS:
            return {"success": True, "state": "idle", "progress": 0}
        elif kind is CommandKind.RESTART:
            self._uptime_s = 0
        return {}


class SimulatedDeviceApi:
    """Misma interfaz que ``DeviceApi`` sobre un ``SimulatedDevice`` en memoria."""

    def __init__(self, config: ConnectionConfig, device: SimulatedDevice | None = None) -> None:
        self.config = config
        self.device = device or SimulatedDevice()

    async def ping(self) -> None:
        await asyncio.sleep(0)

    async def sensor_data(self) -> Sample:
        await asyncio.sleep(0)
        return self.device.next_sample()

    async def weight(self) -> WeightReading:
        return (await self.sensor_data()).weight

    async def light(self) -> LightReading:
        return (await self.sensor_data()).light

    async def status(self) -> DeviceStatus:
        return DeviceStatus(connected=True, ip_address=self.config.host, ssid="simulated", signal_strength=-60)

    async def history(self, limit: int = 100) -> list[Sample]:
        return self.device.history[-limit:]

    async def execute(self, command: DeviceCommand) -> CommandAck:
        await asyncio.sleep(0)
        data = self.device.apply(command)
        return CommandAck(kind=command.kind, success=True, message="ok", data=data)

    def close(self) -> None:
        return None


class SimulatedPushChannel:
    def __init__(self, config: ConnectionConfig, device: SimulatedDevice | None = None, interval_s: float = 1.0) -> None:
        self.config = config
        self.device = device or SimulatedDevice()
        self.interval_s = interval_s
        self._closed = False

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        logger.warning("Canal push en modo simulación explícita")
        while not self._closed:
            await asyncio.sleep(self.interval_s)
            yield encode_sample(self.device.next_sample())

    async def close(self) -> None:
        self._closed = True
