from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class WeightReading:
    """Lectura de la celda de carga (HX711)."""

    weight: float = 0.0
    unit: str = "g"
    raw_value: int = 0
    timestamp_ms: int = field(default_factory=now_ms)
    is_stable: bool = False
    calibration_factor: float = 1.0


@dataclass(frozen=True, slots=True)
class LightReading:
    """Lectura del sensor de luz interior usado para detectar apertura."""

    light_level: float = 0.0
    is_tampered: bool = False
    threshold: float = 100.0
    timestamp_ms: int = field(default_factory=now_ms)
    ambient_light: float = 0.0


@dataclass(frozen=True, slots=True)
class Sample:
    weight: WeightReading = field(default_factory=WeightReading)
    light: LightReading = field(default_factory=LightReading)
    device_id: str = ""
    firmware_version: str = "1.0.0"
    wifi_rssi: int = 0
    uptime_s: int = 0
    free_heap: int = 0
    timestamp_ms: int = field(default_factory=now_ms)

    @property
    def is_empty(self) -> bool:
        # Placeholder snapshot: nothing has been read from a device yet.
        return not self.device_id and self.weight.weight == 0.0


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    connected: bool = False
    ip_address: str = ""
    mac_address: str = ""
    ssid: str = ""
    signal_strength: int = 0
    mode: str = "STA"


@dataclass(frozen=True, slots=True)
class FirmwareInfo:
    current_version: str = "1.0.0"
    latest_version: str = "1.0.0"
    update_available: bool = False
    firmware_size: int = 0
    changelog: str = ""
    download_url: str = ""
    checksum: str = ""
    release_date: str = ""


@dataclass(frozen=True, slots=True)
class OtaResponse:
    success: bool = False
    message: str = ""
    progress: int = 0
    state: str = "idle"


@dataclass(frozen=True, slots=True)
class WeightHistoryEntry:
    weight: float
    timestamp_ms: int


class WeightUnit(str, Enum):
    GRAMS = "g"
    KILOGRAMS = "kg"
    POUNDS = "lb"
    OUNCES = "oz"

    @property
    def multiplier(self) -> float:
        return _UNIT_MULTIPLIERS[self]


_UNIT_MULTIPLIERS = {
    WeightUnit.GRAMS: 1.0,
    WeightUnit.KILOGRAMS: 0.001,
    WeightUnit.POUNDS: 0.00220462,
    WeightUnit.OUNCES: 0.035274,
}


def format_weight(grams: float, unit: WeightUnit = WeightUnit.GRAMS) -> str:
    return f"{grams * unit.multiplier:.2f} {unit.value}"
