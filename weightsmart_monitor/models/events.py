from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from weightsmart_monitor.models.sensors import now_ms


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class TamperType(str, Enum):
    LIGHT_DETECTED = "light_detected"
    WEIGHT_ANOMALY = "weight_anomaly"
    DEVICE_MOVED = "device_moved"
    CONNECTION_LOST = "connection_lost"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_confidence(cls, confidence: float) -> "Severity":
        if confidence > 0.8:
            return cls.CRITICAL
        if confidence > 0.6:
            return cls.HIGH
        if confidence > 0.4:
            return cls.MEDIUM
        return cls.LOW


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True, slots=True)
class Classification:
    is_tampering: bool = False
    tamper_type: TamperType = TamperType.UNKNOWN
    confidence: float = 0.0
    weight_anomaly: bool = False
    light_anomaly: bool = False
    sudden_change: bool = False
    features: tuple[float, ...] = ()
    timestamp_ms: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_unit(self.confidence))


@dataclass(frozen=True, slots=True)
class TamperAlert:
    id: int
    type: TamperType
    severity: Severity
    message: str
    light_level: float = 0.0
    weight_change: float = 0.0
    timestamp_ms: int = field(default_factory=now_ms)
    acknowledged: bool = False


@dataclass(frozen=True, slots=True)
class TamperState:
    """Estado publicado por el detector tras cada muestra."""

    is_tampering_detected: bool = False
    tamper_type: TamperType = TamperType.UNKNOWN
    confidence: float = 0.0
    last_weight: float = 0.0
    weight_anomaly: bool = False
    light_anomaly: bool = False
    message: str = ""
