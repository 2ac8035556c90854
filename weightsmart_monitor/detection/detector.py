from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass, replace

from weightsmart_monitor.config.settings import DetectionSettings
from weightsmart_monitor.core.observable import StateCell
from weightsmart_monitor.detection.stats import RollingWindow
from weightsmart_monitor.models.events import (
    Classification,
    Severity,
    TamperAlert,
    TamperState,
    TamperType,
    clamp_unit,
)
from weightsmart_monitor.models.sensors import LightReading, Sample

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DetectorConfig:
    history_size: int = 100
    z_score_threshold: float = 3.0
    sudden_change_threshold: float = 50.0
    light_spike_threshold: float = 200.0
    min_samples_for_z_score: int = 10
    min_samples_for_sudden_change: int = 2
    max_alerts: int = 50

    @classmethod
    def from_settings(cls, settings: DetectionSettings) -> "DetectorConfig":
        return cls(
            history_size=settings.history_size,
            z_score_threshold=settings.z_score_threshold,
            sudden_change_threshold=settings.sudden_change_threshold_g,
            light_spike_threshold=settings.light_spike_threshold,
            max_alerts=settings.max_alerts,
        )


@dataclass(frozen=True, slots=True)
class _Signal:
    fired: bool = False
    magnitude: float = 0.0
    # Desviación respecto a la media; solo la rellena el z-score evaluado.
    delta: float = 0.0


_MESSAGES = {
    TamperType.LIGHT_DETECTED: "Luz detectada dentro del recinto ({pct}% de confianza)",
    TamperType.WEIGHT_ANOMALY: "Patrón de peso inusual ({pct}% de confianza)",
    TamperType.DEVICE_MOVED: "Cambio brusco de peso, posible manipulación ({pct}% de confianza)",
    TamperType.CONNECTION_LOST: "Conexión perdida, posible manipulación",
}


def describe(tamper_type: TamperType, confidence: float) -> str:
    template = _MESSAGES.get(tamper_type)
    if template is None:
        return ""
    return template.format(pct=int(confidence * 100))


class TamperDetector:
    """Detector heurístico de manipulación sobre estadísticas móviles.

    Tres señales independientes por muestra: z-score del peso, pico de luz
    frente a la mediana de referencia y cambio brusco respecto a la lectura
    anterior. Prioridad al informar el tipo: luz > cambio brusco > peso.
    """

    def __init__(self, config: DetectorConfig | None = None) -> None:
        self.config = config or DetectorConfig()
        self._weights = RollingWindow(self.config.history_size)
        self._lights = RollingWindow(self.config.history_size)
        self._light_override: float | None = None
        self._alert_log: list[TamperAlert] = []
        self._alert_ids = itertools.count(1)

        self.state: StateCell[TamperState] = StateCell(TamperState(), name="tamper_state")
        self.alerts: StateCell[tuple[TamperAlert, ...]] = StateCell((), name="alerts")

    @property
    def light_baseline(self) -> float:
        if self._light_override is not None:
            return self._light_override
        return self._lights.median

    @property
    def weight_history(self) -> list[float]:
        return self._weights.values()

    @property
    def light_history(self) -> list[float]:
        return self._lights.values()

    def weight_statistics(self) -> tuple[float, float, int]:
        return self._weights.mean, self._weights.stddev, len(self._weights)

    def process(self, sample: Sample) -> Classification:
        weight = sample.weight.weight
        light = sample.light
        if not (math.isfinite(weight) and math.isfinite(light.light_level)):
            raise ValueError(f"Muestra no finita: peso={weight!r} luz={light.light_level!r}")

        self._weights.append(weight)
        self._lights.append(light.light_level)

        weight_signal = self._weight_anomaly(weight)
        light_signal = self._light_anomaly(light)
        sudden_signal = self._sudden_change(weight)

        is_tampering = weight_signal.fired or light_signal.fired or sudden_signal.fired
        if light_signal.fired:
            tamper_type = TamperType.LIGHT_DETECTED
        elif sudden_signal.fired:
            tamper_type = TamperType.DEVICE_MOVED
        elif weight_signal.fired:
            tamper_type = TamperType.WEIGHT_ANOMALY
        else:
            tamper_type = TamperType.UNKNOWN

        confidence = self._confidence(weight_signal, light_signal, sudden_signal)
        message = describe(tamper_type, confidence) if is_tampering else ""

        classification = Classification(
            is_tampering=is_tampering,
            tamper_type=tamper_type,
            confidence=confidence,
            weight_anomaly=weight_signal.fired,
            light_anomaly=light_signal.fired,
            sudden_change=sudden_signal.fired,
            features=self._features(sample),
        )
        self.state.set(
            TamperState(
                is_tampering_detected=is_tampering,
                tamper_type=tamper_type,
                confidence=classification.confidence,
                last_weight=weight,
                weight_anomaly=weight_signal.fired,
                light_anomaly=light_signal.fired,
                message=message,
            )
        )
        if is_tampering:
            self._raise_alert(
                tamper_type, classification.confidence, message, light.light_level, weight_signal.delta
            )
        return classification

    def _weight_anomaly(self, weight: float) -> _Signal:
        stddev = self._weights.stddev
        if len(self._weights) < self.config.min_samples_for_z_score or stddev == 0:
            return _Signal()
        delta = weight - self._weights.mean
        z_score = abs(delta) / stddev
        if z_score <= self.config.z_score_threshold:
            return _Signal(delta=delta)
        return _Signal(True, abs(delta) / (self.config.z_score_threshold * stddev), delta)

    def _light_anomaly(self, light: LightReading) -> _Signal:
        spike = self.config.light_spike_threshold
        if light.is_tampered:
            return _Signal(True, light.light_level / spike)
        delta = light.light_level - self.light_baseline
        fired = delta > spike or light.light_level > light.threshold
        return _Signal(fired, delta / spike if fired else 0.0)

    def _sudden_change(self, weight: float) -> _Signal:
        previous = self._weights.previous
        if len(self._weights) < self.config.min_samples_for_sudden_change or previous is None:
            return _Signal()
        change = abs(weight - previous)
        if change <= self.config.sudden_change_threshold:
            return _Signal()
        return _Signal(True, change / self.config.sudden_change_threshold)

    @staticmethod
    def _confidence(*signals: _Signal) -> float:
        fired = [clamp_unit(signal.magnitude) for signal in signals if signal.fired]
        if not fired:
            return 0.0
        return clamp_unit(sum(fired) / len(fired))

    def _features(self, sample: Sample) -> tuple[float, ...]:
        previous = self._weights.previous
        return (
            sample.weight.weight,
            float(sample.weight.raw_value),
            self._weights.mean,
            self._weights.stddev,
            sample.light.light_level,
            self.light_baseline,
            sample.light.threshold,
            previous - sample.weight.weight if previous is not None else 0.0,
        )

    def _raise_alert(
        self,
        tamper_type: TamperType,
        confidence: float,
        message: str,
        light_level: float,
        weight_change: float,
    ) -> TamperAlert:
        alert = TamperAlert(
            id=next(self._alert_ids),
            type=tamper_type,
            severity=Severity.from_confidence(confidence),
            message=message,
            light_level=light_level,
            weight_change=weight_change,
        )
        self._alert_log.insert(0, alert)
        del self._alert_log[self.config.max_alerts :]
        self.alerts.set(tuple(self._alert_log))
        logger.warning(
            message,
            extra={"alert_id": alert.id, "tamper_type": tamper_type, "confidence": round(confidence, 3)},
        )
        return alert

    def record_connection_lost(self) -> TamperAlert:
        message = describe(TamperType.CONNECTION_LOST, 1.0)
        self.state.set(
            replace(
                self.state.value,
                is_tampering_detected=True,
                tamper_type=TamperType.CONNECTION_LOST,
                confidence=1.0,
                message=message,
            )
        )
        return self._raise_alert(TamperType.CONNECTION_LOST, 1.0, message, 0.0, 0.0)

    def acknowledge(self, alert_id: int) -> bool:
        for index, alert in enumerate(self._alert_log):
            if alert.id == alert_id:
                if not alert.acknowledged:
                    self._alert_log[index] = replace(alert, acknowledged=True)
                    self.alerts.set(tuple(self._alert_log))
                return True
        return False

    def clear_alerts(self) -> None:
        self._alert_log.clear()
        self.alerts.set(())

    def set_light_baseline(self, value: float | None) -> None:
        """Fija manualmente la referencia de luz; ``None`` vuelve a la mediana móvil."""
        self._light_override = None if value is None else float(value)
        logger.info("Referencia de luz %s", "automática" if value is None else f"fijada en {value}")

    def configure(self, config: DetectorConfig) -> None:
        if config.history_size != self.config.history_size:
            self._weights.resize(config.history_size)
            self._lights.resize(config.history_size)
        self.config = config
        if len(self._alert_log) > config.max_alerts:
            del self._alert_log[config.max_alerts :]
            self.alerts.set(tuple(self._alert_log))
        logger.info(
            "Umbrales actualizados: z=%.2f, cambio=%.1f g, luz=%.1f",
            config.z_score_threshold,
            config.sudden_change_threshold,
            config.light_spike_threshold,
        )

    def reset(self) -> None:
        self._weights.clear()
        self._lights.clear()
        self._light_override = None
        self.state.set(TamperState())
        self.clear_alerts()
