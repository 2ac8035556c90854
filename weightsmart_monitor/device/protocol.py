"""Codificación JSON del protocolo del dispositivo.

Los esquemas los define el firmware: se toleran campos ausentes (valor por
defecto) y campos extra (ignorados); un tipo incorrecto es ``ProtocolError``.
"""

from __future__ import annotations

import json
import math
from typing import Any

from weightsmart_monitor.device.errors import ProtocolError
from weightsmart_monitor.models.commands import CommandAck, CommandKind
from weightsmart_monitor.models.sensors import (
    DeviceStatus,
    FirmwareInfo,
    LightReading,
    OtaResponse,
    Sample,
    WeightReading,
    now_ms,
)

MAX_FRAME_BYTES = 1_000_000

PING_PATH = "/api/ping"
SENSORS_PATH = "/api/sensors"
WEIGHT_PATH = "/api/weight"
LIGHT_PATH = "/api/light"
STATUS_PATH = "/api/status"
HISTORY_PATH = "/api/history"

COMMAND_ROUTES: dict[CommandKind, tuple[str, str]] = {
    CommandKind.TARE: ("POST", "/api/tare"),
    CommandKind.CALIBRATE: ("POST", "/api/calibrate"),
    CommandKind.SET_CALIBRATION_FACTOR: ("POST", "/api/calibration-factor"),
    CommandKind.SET_LIGHT_THRESHOLD: ("POST", "/api/light/threshold"),
    CommandKind.RESTART: ("POST", "/api/restart"),
    CommandKind.SET_WIFI: ("POST", "/api/wifi/config"),
    CommandKind.FIRMWARE_INFO: ("GET", "/api/firmware"),
    CommandKind.OTA_START: ("POST", "/api/ota/start"),
    CommandKind.OTA_STATUS: ("GET", "/api/ota/status"),
    CommandKind.OTA_UPLOAD: ("POST", "/api/ota/upload"),
}


def _require_object(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolError(f"{what}: se esperaba un objeto JSON, llegó {type(payload).__name__}")
    return payload


def _number(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Campo '{key}' no numérico: {value!r}")
    return _finite(key, value)


def _integer(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Campo '{key}' no entero: {value!r}")
    _finite(key, value)
    return int(value)


def _finite(key: str, value: int | float) -> float:
    try:
        number = float(value)
    except OverflowError as exc:
        raise ProtocolError(f"Campo '{key}' fuera de rango: {value!r}") from exc
    if not math.isfinite(number):
        raise ProtocolError(f"Campo '{key}' no finito: {value!r}")
    return number


def _flag(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    raise ProtocolError(f"Campo '{key}' no booleano: {value!r}")


def _text(data: dict[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ProtocolError(f"Campo '{key}' no es texto: {value!r}")
    return value


def _timestamp(data: dict[str, Any]) -> int:
    if data.get("timestamp") is None:
        return now_ms()
    return _integer(data, "timestamp", 0)


def parse_weight(payload: Any) -> WeightReading:
    data = _require_object(payload, "weight")
    return WeightReading(
        weight=_number(data, "weight", 0.0),
        unit=_text(data, "unit", "g"),
        raw_value=_integer(data, "raw_value", 0),
        timestamp_ms=_timestamp(data),
        is_stable=_flag(data, "is_stable", False),
        calibration_factor=_number(data, "calibration_factor", 1.0),
    )


def parse_light(payload: Any) -> LightReading:
    data = _require_object(payload, "light")
    return LightReading(
        light_level=_number(data, "light_level", 0.0),
        is_tampered=_flag(data, "is_tampered", False),
        threshold=_number(data, "threshold", 100.0),
        timestamp_ms=_timestamp(data),
        ambient_light=_number(data, "ambient_light", 0.0),
    )


def parse_sample(payload: Any) -> Sample:
    data = _require_object(payload, "sensors")
    weight = data.get("weight")
    light = data.get("light")
    return Sample(
        weight=parse_weight(weight) if weight is not None else WeightReading(),
        light=parse_light(light) if light is not None else LightReading(),
        device_id=_text(data, "device_id", ""),
        firmware_version=_text(data, "firmware_version", "1.0.0"),
        wifi_rssi=_integer(data, "wifi_rssi", 0),
        uptime_s=_integer(data, "uptime", 0),
        free_heap=_integer(data, "free_heap", 0),
        timestamp_ms=_timestamp(data),
    )


def encode_sample(sample: Sample) -> dict[str, Any]:
    weight = sample.weight
    light = sample.light
    return {
        "weight": {
            "weight": weight.weight,
            "unit": weight.unit,
            "raw_value": weight.raw_value,
            "timestamp": weight.timestamp_ms,
            "is_stable": weight.is_stable,
            "calibration_factor": weight.calibration_factor,
        },
        "light": {
            "light_level": light.light_level,
            "is_tampered": light.is_tampered,
            "threshold": light.threshold,
            "timestamp": light.timestamp_ms,
            "ambient_light": light.ambient_light,
        },
        "device_id": sample.device_id,
        "firmware_version": sample.firmware_version,
        "wifi_rssi": sample.wifi_rssi,
        "uptime": sample.uptime_s,
        "free_heap": sample.free_heap,
        "timestamp": sample.timestamp_ms,
    }


def parse_history(payload: Any) -> list[Sample]:
    if not isinstance(payload, list):
        raise ProtocolError("history: se esperaba una lista")
    return [parse_sample(item) for item in payload]


def parse_device_status(payload: Any) -> DeviceStatus:
    data = _require_object(payload, "status")
    return DeviceStatus(
        connected=_flag(data, "connected", False),
        ip_address=_text(data, "ip_address", ""),
        mac_address=_text(data, "mac_address", ""),
        ssid=_text(data, "ssid", ""),
        signal_strength=_integer(data, "signal_strength", 0),
        mode=_text(data, "mode", "STA"),
    )


def parse_firmware_info(payload: Any) -> FirmwareInfo:
    data = _require_object(payload, "firmware")
    return FirmwareInfo(
        current_version=_text(data, "current_version", "1.0.0"),
        latest_version=_text(data, "latest_version", "1.0.0"),
        update_available=_flag(data, "update_available", False),
        firmware_size=_integer(data, "firmware_size", 0),
        changelog=_text(data, "changelog", ""),
        download_url=_text(data, "download_url", ""),
        checksum=_text(data, "checksum", ""),
        release_date=_text(data, "release_date", ""),
    )


def parse_ota_response(payload: Any) -> OtaResponse:
    data = _require_object(payload, "ota")
    return OtaResponse(
        success=_flag(data, "success", False),
        message=_text(data, "message", ""),
        progress=_integer(data, "progress", 0),
        state=_text(data, "state", "idle"),
    )


def parse_ack(kind: CommandKind, payload: Any) -> CommandAck:
    """Respuesta de un comando.

    Las lecturas (firmware, estado OTA) no traen ``success``: una respuesta
    bien formada cuenta como éxito y el cuerpo completo queda en ``data``.
    """
    if payload is None:
        return CommandAck(kind=kind, success=True)
    data = _require_object(payload, kind.value)
    nested = data.get("data")
    extra = nested if isinstance(nested, dict) else {k: v for k, v in data.items() if k not in {"success", "message"}}
    return CommandAck(
        kind=kind,
        success=_flag(data, "success", True),
        message=_text(data, "message", ""),
        data=extra,
    )


def encode_frame(obj: dict[str, Any]) -> bytes:
    return (json.dumps(obj, separators=(",", ":")) + "\n").encode("utf-8")


def decode_frame(line: bytes, *, limit: int = MAX_FRAME_BYTES) -> dict[str, Any]:
    if len(line) > limit:
        raise ProtocolError(f"Trama de {len(line)} bytes supera el límite de {limit}")
    try:
        decoded = json.loads(line.decode("utf-8").strip())
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Trama push ilegible: {exc}") from exc
    return _require_object(decoded, "push")
