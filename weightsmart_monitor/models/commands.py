from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CommandKind(str, Enum):
    TARE = "tare"
    CALIBRATE = "calibrate"
    SET_CALIBRATION_FACTOR = "set_calibration_factor"
    SET_LIGHT_THRESHOLD = "set_light_threshold"
    RESTART = "restart"
    SET_WIFI = "set_wifi"
    FIRMWARE_INFO = "firmware_info"
    OTA_START = "ota_start"
    OTA_STATUS = "ota_status"
    OTA_UPLOAD = "ota_upload"


def _require_positive(name: str, value: float) -> float:
    value = float(value)
    if value <= 0:
        raise ValueError(f"{name} debe ser mayor que cero: {value}")
    return value


@dataclass(frozen=True, slots=True)
class DeviceCommand:
    """Operación puntual de petición/respuesta enviada al dispositivo."""

    kind: CommandKind
    body: dict[str, Any] = field(default_factory=dict)
    payload: bytes = b""

    @classmethod
    def tare(cls) -> "DeviceCommand":
        return cls(CommandKind.TARE)

    @classmethod
    def calibrate(cls, known_weight: float) -> "DeviceCommand":
        return cls(CommandKind.CALIBRATE, {"knownWeight": _require_positive("known_weight", known_weight)})

    @classmethod
    def set_calibration_factor(cls, factor: float) -> "DeviceCommand":
        return cls(CommandKind.SET_CALIBRATION_FACTOR, {"factor": _require_positive("factor", factor)})

    @classmethod
    def set_light_threshold(cls, threshold: float) -> "DeviceCommand":
        return cls(CommandKind.SET_LIGHT_THRESHOLD, {"threshold": _require_positive("threshold", threshold)})

    @classmethod
    def restart(cls) -> "DeviceCommand":
        return cls(CommandKind.RESTART)

    @classmethod
    def set_wifi(cls, ssid: str, password: str, use_ap: bool = False) -> "DeviceCommand":
        if not ssid:
            raise ValueError("ssid vacío")
        return cls(CommandKind.SET_WIFI, {"ssid": ssid, "password": password, "useAP": use_ap})

    @classmethod
    def firmware_info(cls) -> "DeviceCommand":
        return cls(CommandKind.FIRMWARE_INFO)

    @classmethod
    def ota_start(
        cls,
        firmware_url: str,
        version: str,
        checksum: str = "",
        force: bool = False,
    ) -> "DeviceCommand":
        return cls(
            CommandKind.OTA_START,
            {
                "firmware_url": firmware_url,
                "version": version,
                "checksum": checksum,
                "force_update": force,
            },
        )

    @classmethod
    def ota_status(cls) -> "DeviceCommand":
        return cls(CommandKind.OTA_STATUS)

    @classmethod
    def ota_upload(cls, firmware: bytes) -> "DeviceCommand":
        if not firmware:
            raise ValueError("imagen de firmware vacía")
        return cls(CommandKind.OTA_UPLOAD, payload=bytes(firmware))


@dataclass(frozen=True, slots=True)
class CommandAck:
    kind: CommandKind
    success: bool
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
