from __future__ import annotations

import logging
from dataclasses import replace
from typing import Awaitable, Callable, TypeVar

from weightsmart_monitor.config.settings import AppSettings, ConnectionConfig
from weightsmart_monitor.core.observable import EventChannel, StateCell, Subscription
from weightsmart_monitor.detection.detector import DetectorConfig, TamperDetector
from weightsmart_monitor.device.errors import ConnectionCancelledError, DeviceLinkError, TransportError
from weightsmart_monitor.device.link import DeviceLink
from weightsmart_monitor.device.protocol import parse_firmware_info, parse_ota_response
from weightsmart_monitor.models.commands import CommandAck, DeviceCommand
from weightsmart_monitor.models.events import ConnectionState, TamperAlert, TamperState
from weightsmart_monitor.models.sensors import FirmwareInfo, OtaResponse, Sample, WeightHistoryEntry, format_weight

logger = logging.getLogger(__name__)

WEIGHT_HISTORY_SIZE = 100

R = TypeVar("R")

_LIVE_STATES = {ConnectionState.CONNECTED}
_LOST_STATES = {ConnectionState.RECONNECTING, ConnectionState.ERROR}


class LinkFirmwareClient:
    """Operaciones de firmware enviadas directamente al dispositivo."""

    def __init__(self, link: DeviceLink) -> None:
        self.link = link

    async def check_for_updates(self) -> FirmwareInfo:
        ack = await self.link.issue_command(DeviceCommand.firmware_info())
        return parse_firmware_info(ack.data)

    async def start_ota_update(self, url: str, version: str, checksum: str = "", force: bool = False) -> OtaResponse:
        ack = await self.link.issue_command(DeviceCommand.ota_start(url, version, checksum, force))
        return parse_ota_response({"success": ack.success, "message": ack.message, **ack.data})

    async def ota_status(self) -> OtaResponse:
        ack = await self.link.issue_command(DeviceCommand.ota_status())
        return parse_ota_response({"success": ack.success, "message": ack.message, **ack.data})

    async def upload_firmware(self, firmware: bytes) -> OtaResponse:
        ack = await self.link.issue_command(DeviceCommand.ota_upload(firmware))
        return parse_ota_response({"success": ack.success, "message": ack.message, **ack.data})


class SessionCoordinator:
    """Une el enlace del dispositivo con el detector y expone el estado combinado.

    Las muestras se procesan en el orden en que el enlace las publica; el
    coordinador nunca escribe el estado de conexión ni el registro de alertas,
    solo los reexpone a los consumidores.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        link: DeviceLink | None = None,
        detector: TamperDetector | None = None,
        firmware: LinkFirmwareClient | None = None,
    ) -> None:
        settings = settings or AppSettings()
        self.link = link or DeviceLink(settings.connection)
        self.detector = detector or TamperDetector(DetectorConfig.from_settings(settings.detection))
        self.firmware = firmware or LinkFirmwareClient(self.link)

        self.settings: StateCell[AppSettings] = StateCell(settings, name="settings")
        self.weight_history: StateCell[tuple[WeightHistoryEntry, ...]] = StateCell((), name="weight_history")
        self.last_error: StateCell[str | None] = StateCell(None, name="last_error")
        self.last_message: StateCell[str | None] = StateCell(None, name="last_message")
        self.errors: EventChannel[str] = EventChannel(name="session_errors")

        self._previous_state = self.link.state.value
        self._unsubscribers: list[Callable[[], None]] = []
        self._active_feed: Subscription[Sample | None] | None = None

    # Read-only views of the collaborators' cells.
    @property
    def connection_state(self) -> StateCell[ConnectionState]:
        return self.link.state

    @property
    def latest_sample(self) -> StateCell[Sample | None]:
        return self.link.sample

    @property
    def tamper_state(self) -> StateCell[TamperState]:
        return self.detector.state

    @property
    def alerts(self) -> StateCell[tuple[TamperAlert, ...]]:
        return self.detector.alerts

    @property
    def running(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        if self.running:
            return
        self._previous_state = self.link.state.value
        self._unsubscribers = [
            self.link.sample.subscribe(self._on_sample),
            self.link.state.subscribe(self._on_state),
            self.link.errors.subscribe(self._on_link_error),
        ]
        logger.info("Sesión iniciada", extra={"device": self.link.config.host})

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        logger.info("Sesión detenida", extra={"device": self.link.config.host})

    async def run(self, max_samples: int | None = None) -> None:
        """Conecta, procesa muestras hasta ``max_samples`` (o cancelación) y desconecta.

        Con ``auto_reconnect`` un primer intento fallido no termina la sesión:
        se siguen esperando muestras mientras la política de reintentos actúa.
        Si el enlace queda en ERROR terminal se lanza ``TransportError``.
        """
        self.start()
        try:
            with self.link.sample.watch(include_current=False) as samples:
                try:
                    await self.connect()
                except ConnectionCancelledError:
                    raise
                except DeviceLinkError as exc:
                    if not self.link.config.auto_reconnect or self.link.config.max_retries == 0:
                        raise
                    logger.warning("Primer intento fallido, esperando reintentos: %s", exc)
                # Set after connect(): the first attempt's ERROR precedes the retries.
                self._active_feed = samples
                received = 0
                async for sample in samples:
                    if sample is None or sample.is_empty:
                        continue
                    received += 1
                    if max_samples is not None and received >= max_samples:
                        return
                if self.link.state.value is ConnectionState.ERROR:
                    message = self.last_error.value or "Enlace del dispositivo en estado de error"
                    raise TransportError(message)
        finally:
            self._active_feed = None
            await self.disconnect()
            self.stop()

    # -- sample & state wiring -----------------------------------------------

    def _on_sample(self, sample: Sample | None) -> None:
        if sample is None or sample.is_empty:
            return
        history = self.weight_history.value + (WeightHistoryEntry(sample.weight.weight, sample.timestamp_ms),)
        self.weight_history.set(history[-WEIGHT_HISTORY_SIZE:])
        if not self.settings.value.enable_ml_detection:
            return
        classification = self.detector.process(sample)
        if classification.is_tampering:
            logger.debug(
                "Clasificación: %s (%.2f)",
                classification.tamper_type.value,
                classification.confidence,
            )

    def _on_state(self, state: ConnectionState) -> None:
        previous, self._previous_state = self._previous_state, state
        if previous in _LIVE_STATES and state in _LOST_STATES:
            if self.settings.value.detection.alert_on_connection_lost:
                self.detector.record_connection_lost()
        if state is ConnectionState.ERROR and self._active_feed is not None:
            # Terminal until connect() is called again.
            self._active_feed.close()

    def _on_link_error(self, message: str) -> None:
        self._report_error(message)

    def _report_error(self, message: str) -> None:
        self.last_error.set(message)
        self.errors.publish(message)

    def _report_message(self, message: str) -> None:
        logger.info(message)
        self.last_message.set(message)

    async def _forward(self, command: DeviceCommand, success_message: str) -> CommandAck:
        try:
            ack = await self.link.issue_command(command)
        except DeviceLinkError as exc:
            self._report_error(f"{success_message} falló: {exc}")
            raise
        self._report_message(ack.message or success_message)
        return ack

    # -- commands -------------------------------------------------------------

    async def connect(self) -> None:
        await self.link.connect(self.settings.value.connection)
        self._report_message(f"Conectado a {self.link.config.host}")

    async def disconnect(self) -> None:
        await self.link.disconnect()

    async def tare(self) -> CommandAck:
        return await self._forward(DeviceCommand.tare(), "Tara")

    async def calibrate(self, known_weight: float) -> CommandAck:
        return await self._forward(DeviceCommand.calibrate(known_weight), "Calibración")

    async def set_calibration_factor(self, factor: float) -> CommandAck:
        ack = await self._forward(DeviceCommand.set_calibration_factor(factor), "Factor de calibración")
        settings = self.settings.value
        self.settings.set(replace(settings, calibration=replace(settings.calibration, calibration_factor=factor)))
        return ack

    async def set_light_threshold(self, threshold: float) -> CommandAck:
        ack = await self._forward(DeviceCommand.set_light_threshold(threshold), "Umbral de luz")
        settings = self.settings.value
        self.settings.set(replace(settings, light_sensor=replace(settings.light_sensor, tamper_threshold=threshold)))
        return ack

    async def restart(self) -> CommandAck:
        return await self._forward(DeviceCommand.restart(), "Reinicio")

    async def check_for_updates(self) -> FirmwareInfo:
        info = await self._firmware_call(self.firmware.check_for_updates())
        if info.update_available:
            self._report_message(f"Actualización disponible: {info.latest_version}")
        else:
            self._report_message("El firmware está actualizado")
        return info

    async def start_ota_update(self, url: str, version: str, checksum: str = "", force: bool = False) -> OtaResponse:
        response = await self._firmware_call(self.firmware.start_ota_update(url, version, checksum, force))
        self._report_message(response.message or f"Actualización a {version} iniciada")
        return response

    async def ota_status(self) -> OtaResponse:
        return await self._firmware_call(self.firmware.ota_status())

    async def upload_firmware(self, firmware: bytes) -> OtaResponse:
        response = await self._firmware_call(self.firmware.upload_firmware(firmware))
        self._report_message(response.message or "Firmware enviado")
        return response

    async def _firmware_call(self, operation: Awaitable[R]) -> R:
        try:
            return await operation
        except DeviceLinkError as exc:
            self._report_error(f"Operación de firmware falló: {exc}")
            raise

    # -- detector controls ----------------------------------------------------

    def acknowledge_alert(self, alert_id: int) -> bool:
        return self.detector.acknowledge(alert_id)

    def clear_alerts(self) -> None:
        self.detector.clear_alerts()

    def reset_detector(self) -> None:
        self.detector.reset()
        self.weight_history.set(())

    def set_light_baseline(self, value: float | None) -> None:
        self.detector.set_light_baseline(value)

    def set_ml_detection(self, enabled: bool) -> None:
        self.settings.set(replace(self.settings.value, enable_ml_detection=enabled))
        logger.info("Detección %s", "activada" if enabled else "desactivada")

    # -- settings -------------------------------------------------------------

    async def update_settings(self, settings: AppSettings) -> None:
        previous = self.settings.value
        self.settings.set(settings)
        if settings.detection != previous.detection:
            self.detector.configure(DetectorConfig.from_settings(settings.detection))
        if settings.connection != previous.connection:
            await self.link.update_config(settings.connection)

    async def update_connection(self, host: str, port: int = 80) -> None:
        settings = self.settings.value
        connection: ConnectionConfig = replace(settings.connection, host=host, port=port)
        await self.update_settings(replace(settings, connection=connection))

    def format_weight(self, grams: float) -> str:
        return format_weight(grams, self.settings.value.weight_unit)

    async def __aenter__(self) -> "SessionCoordinator":
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()
        self.stop()
