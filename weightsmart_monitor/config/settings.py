from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from weightsmart_monitor.models.sensors import WeightUnit
from weightsmart_monitor.security.validators import validate_host, validate_port


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Parámetros de conexión; inmutables durante un intento de conexión."""

    host: str = "192.168.1.1"
    port: int = 80
    push_port: int = 81
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 30.0
    polling_interval_s: float = 0.5
    auto_reconnect: bool = True
    max_retries: int = 3
    reconnect_base_delay_s: float = 2.0
    use_push_channel: bool = True

    def __post_init__(self) -> None:
        if not validate_host(self.host):
            raise ValueError(f"Host inválido: {self.host!r}")
        for name in ("port", "push_port"):
            if not validate_port(getattr(self, name)):
                raise ValueError(f"Puerto inválido en {name}: {getattr(self, name)!r}")
        numeric = ("connect_timeout_s", "read_timeout_s", "polling_interval_s", "max_retries", "reconnect_base_delay_s")
        for name in numeric:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} debe ser numérico: {value!r}")
        if not isinstance(self.max_retries, int):
            raise ValueError(f"max_retries debe ser entero: {self.max_retries!r}")
        if self.connect_timeout_s <= 0 or self.read_timeout_s <= 0:
            raise ValueError("Los timeouts deben ser positivos")
        if self.polling_interval_s <= 0:
            raise ValueError("polling_interval_s debe ser positivo")
        if self.max_retries < 0:
            raise ValueError("max_retries no puede ser negativo")
        if self.reconnect_base_delay_s < 0:
            raise ValueError("reconnect_base_delay_s no puede ser negativo")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(slots=True)
class CalibrationSettings:
    calibration_factor: float = 420.0
    zero_offset: int = 0
    known_weight_g: float = 1000.0
    max_weight_g: float = 5000.0
    min_weight_g: float = 0.0
    stability_threshold: float = 0.5
    average_samples: int = 10


@dataclass(slots=True)
class LightSensorSettings:
    tamper_threshold: float = 100.0
    ambient_calibration: float = 0.0
    sensitivity_level: int = 5
    debounce_s: float = 1.0


@dataclass(slots=True)
class DetectionSettings:
    history_size: int = 100
    z_score_threshold: float = 3.0
    sudden_change_threshold_g: float = 50.0
    light_spike_threshold: float = 200.0
    max_alerts: int = 50
    alert_on_connection_lost: bool = True


@dataclass(slots=True)
class AppSettings:
    app_name: str = "WEIGHTSMART MONITOR"
    log_level: str = "INFO"
    weight_unit: WeightUnit = WeightUnit.GRAMS
    enable_ml_detection: bool = True
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    light_sensor: LightSensorSettings = field(default_factory=LightSensorSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)


# Field annotations are strings under postponed evaluation.
_SCALAR_TYPES: dict[str, tuple[type, ...]] = {
    "int": (int,),
    "float": (int, float),
    "bool": (bool,),
    "str": (str,),
}

_SECTIONS = {
    "connection": ConnectionConfig,
    "calibration": CalibrationSettings,
    "light_sensor": LightSensorSettings,
    "detection": DetectionSettings,
}


def _build_section(cls: type, raw: Any, section: str) -> Any:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Sección '{section}' inválida: se esperaba un mapa")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Claves desconocidas en '{section}': {', '.join(sorted(unknown))}")
    for item in fields(cls):
        expected = _SCALAR_TYPES.get(item.type)
        if expected is None or item.name not in raw:
            continue
        value = raw[item.name]
        if isinstance(value, bool) and bool not in expected or not isinstance(value, expected):
            raise ValueError(f"Tipo inválido en '{section}.{item.name}': {value!r}")
    return cls(**raw)


class SettingsLoader:
    @staticmethod
    def _loads(text: str) -> dict[str, Any]:
        data = yaml.safe_load(text)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("Configuración inválida")
        return data

    @staticmethod
    def from_dict(content: dict[str, Any]) -> AppSettings:
        top_level = {"app_name", "log_level", "weight_unit", "enable_ml_detection", *_SECTIONS}
        unknown = set(content) - top_level
        if unknown:
            raise ValueError(f"Claves desconocidas: {', '.join(sorted(unknown))}")

        defaults = AppSettings()
        sections = {name: _build_section(cls, content.get(name), name) for name, cls in _SECTIONS.items()}
        return AppSettings(
            app_name=content.get("app_name", defaults.app_name),
            log_level=content.get("log_level", defaults.log_level),
            weight_unit=WeightUnit(content.get("weight_unit", defaults.weight_unit.value)),
            enable_ml_detection=bool(content.get("enable_ml_detection", defaults.enable_ml_detection)),
            **sections,
        )

    @staticmethod
    def to_dict(settings: AppSettings) -> dict[str, Any]:
        return {
            "app_name": settings.app_name,
            "log_level": settings.log_level,
            "weight_unit": settings.weight_unit.value,
            "enable_ml_detection": settings.enable_ml_detection,
            **{name: asdict(getattr(settings, name)) for name in _SECTIONS},
        }

    @staticmethod
    def load(path: str | Path) -> AppSettings:
        content = SettingsLoader._loads(Path(path).read_text(encoding="utf-8"))
        return SettingsLoader.from_dict(content)

    @staticmethod
    def dump(settings: AppSettings, path: str | Path) -> None:
        payload = SettingsLoader.to_dict(settings)
        Path(path).write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")

    @staticmethod
    def dump_default(path: str | Path) -> None:
        SettingsLoader.dump(AppSettings(), path)
