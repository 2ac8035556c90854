"""Enlace con el dispositivo: conexión, ingesta dual (polling + push) y reconexión.

El enlace es el único escritor de ``state`` y del snapshot ``sample``. El
polling y el canal push escriben el mismo snapshot; gana la última muestra
interpretada correctamente.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Callable, Iterable

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.core.observable import EventChannel, StateCell
from weightsmart_monitor.device.api import DeviceApi
from weightsmart_monitor.device.errors import (
    ConnectionCancelledError,
    DeviceLinkError,
    ExhaustedRetriesError,
    ProtocolError,
    TransportError,
)
from weightsmart_monitor.device.protocol import parse_sample
from weightsmart_monitor.device.push import PushChannel
from weightsmart_monitor.models.commands import CommandAck, CommandKind, DeviceCommand
from weightsmart_monitor.models.events import ConnectionState
from weightsmart_monitor.models.sensors import DeviceStatus, LightReading, Sample, WeightReading

logger = logging.getLogger(__name__)

ApiFactory = Callable[[ConnectionConfig], DeviceApi]
PushFactory = Callable[[ConnectionConfig], PushChannel]


class DeviceLink:
    def __init__(
        self,
        config: ConnectionConfig | None = None,
        api_factory: ApiFactory = DeviceApi,
        push_factory: PushFactory = PushChannel,
    ) -> None:
        self.config = config or ConnectionConfig()
        self._api_factory = api_factory
        self._push_factory = push_factory

        self.state: StateCell[ConnectionState] = StateCell(ConnectionState.DISCONNECTED, name="connection_state")
        self.sample: StateCell[Sample | None] = StateCell(None, name="sample")
        self.device_status: StateCell[DeviceStatus | None] = StateCell(None, name="device_status")
        self.errors: EventChannel[str] = EventChannel(name="link_errors")

        self._api: DeviceApi | None = None
        self._push: PushChannel | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._cancelled_attempts: weakref.WeakSet[asyncio.Task[None]] = weakref.WeakSet()

    async def __aenter__(self) -> "DeviceLink":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.state.value is ConnectionState.CONNECTED

    # -- connection lifecycle -------------------------------------------------

    async def connect(self, config: ConnectionConfig | None = None) -> None:
        """Conecta con el dispositivo o lanza ``TransportError``.

        Un fallo deja el estado en ERROR, emite un evento de error y, con
        ``auto_reconnect``, programa la política de reintentos.
        """
        if config is not None and config != self.config:
            await self.disconnect()
            self.config = config

        if self.is_connected:
            return
        pending = self._connect_task
        if pending is not None and not pending.done():
            await self._await_attempt(pending, shielded=True)
            return

        await self._stop_tasks([self._reconnect_task])
        self._reconnect_task = None
        try:
            await self._run_attempt()
        except ConnectionCancelledError:
            raise
        except DeviceLinkError as exc:
            self._fail(f"Error de conexión: {exc}")
            if self.config.auto_reconnect:
                self._schedule_reconnect()
            raise

    async def disconnect(self) -> None:
        """Cancela polling, push, reintentos e intentos en curso. Idempotente."""
        if self._connect_task is not None and not self._connect_task.done():
            self._cancelled_attempts.add(self._connect_task)
        tasks = [self._connect_task, self._reconnect_task, self._poll_task, self._stream_task]
        self._reconnect_task = None
        self._poll_task = None
        self._stream_task = None
        await self._stop_tasks(tasks)
        await self._close_push()
        if self._api is not None:
            self._api.close()
            self._api = None
        if self.state.value is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def update_config(self, config: ConnectionConfig) -> None:
        was_connected = self.is_connected
        await self.disconnect()
        self.config = config
        logger.info("Configuración de conexión actualizada", extra={"device": config.host})
        if was_connected:
            await self.connect()

    async def _run_attempt(self) -> None:
        task = asyncio.create_task(self._attempt())
        self._connect_task = task
        try:
            await self._await_attempt(task)
        finally:
            if self._connect_task is task:
                self._connect_task = None

    async def _await_attempt(self, task: asyncio.Task[None], shielded: bool = False) -> None:
        try:
            await (asyncio.shield(task) if shielded else task)
        except asyncio.CancelledError:
            if task in self._cancelled_attempts:
                raise ConnectionCancelledError("Intento de conexión cancelado por disconnect()") from None
            raise

    async def _attempt(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._ensure_api().ping()
        except asyncio.CancelledError:
            if self.state.value is ConnectionState.CONNECTING:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        self._set_state(ConnectionState.CONNECTED)
        self._start_feeds()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        retries = self.config.max_retries
        try:
            for attempt in range(1, retries + 1):
                self._set_state(ConnectionState.RECONNECTING)
                delay = self.config.reconnect_base_delay_s * attempt
                logger.info(
                    "Reintento de conexión %d/%d en %.1fs",
                    attempt,
                    retries,
                    delay,
                    extra={"device": self.config.host, "attempt": attempt},
                )
                await asyncio.sleep(delay)
                try:
                    await self._run_attempt()
                except ConnectionCancelledError:
                    return
                except DeviceLinkError as exc:
                    logger.warning("Reintento %d/%d fallido: %s", attempt, retries, exc, extra={"attempt": attempt})
                    self.errors.publish(f"Reintento {attempt}/{retries} fallido: {exc}")
                    continue
                logger.info("Reconexión establecida", extra={"device": self.config.host, "attempt": attempt})
                return
            self._fail(str(ExhaustedRetriesError(retries)))
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    # -- data feeds -------------------------------------------------------------

    def _start_feeds(self) -> None:
        api = self._ensure_api()
        self._poll_task = asyncio.create_task(self._poll_loop(api))
        if self.config.use_push_channel:
            self._stream_task = asyncio.create_task(self._stream_loop())

    async def _poll_loop(self, api: DeviceApi) -> None:
        interval = self.config.polling_interval_s
        while True:
            try:
                sample = await api.sensor_data()
            except ProtocolError as exc:
                logger.warning("Lectura de polling descartada: %s", exc)
                self.errors.publish(f"Respuesta inválida del dispositivo: {exc}")
            except TransportError as exc:
                await self._on_poll_failure(exc)
                return
            else:
                self._publish_sample(sample, source="poll")
            await asyncio.sleep(interval)

    async def _on_poll_failure(self, exc: TransportError) -> None:
        logger.warning("Polling interrumpido: %s", exc, extra={"device": self.config.host})
        stream_task, self._stream_task = self._stream_task, None
        await self._stop_tasks([stream_task])
        await self._close_push()
        if self.config.auto_reconnect:
            self.errors.publish(f"Conexión perdida: {exc}")
            self._set_state(ConnectionState.RECONNECTING)
            self._schedule_reconnect()
        else:
            self._fail(f"Conexión perdida: {exc}")

    async def _stream_loop(self) -> None:
        channel = self._push_factory(self.config)
        self._push = channel
        try:
            async for message in channel.messages():
                try:
                    sample = parse_sample(message)
                except ProtocolError as exc:
                    logger.debug("Muestra push descartada: %s", exc)
                    continue
                self._publish_sample(sample, source="push")
            logger.info("Canal push finalizado; se continúa solo con polling")
        except TransportError as exc:
            logger.warning("Canal push no disponible, se continúa solo con polling: %s", exc)
        finally:
            await channel.close()
            if self._push is channel:
                self._push = None

    def _publish_sample(self, sample: Sample, source: str) -> None:
        logger.debug("Muestra recibida vía %s: %.2f g / %.0f lux", source, sample.weight.weight, sample.light.light_level)
        self.sample.set(sample)

    # -- commands & reads -------------------------------------------------------

    async def issue_command(self, command: DeviceCommand) -> CommandAck:
        """Ejecuta un comando puntual. Los fallos no se reintentan ni alteran el estado."""
        try:
            ack = await self._ensure_api().execute(command)
        except DeviceLinkError as exc:
            logger.warning("Comando %s falló: %s", command.kind.value, exc)
            raise
        if command.kind is CommandKind.RESTART:
            logger.info("Reinicio aceptado; cerrando conexión", extra={"device": self.config.host})
            await self.disconnect()
        return ack

    async def read_sensors(self) -> Sample:
        sample = await self._ensure_api().sensor_data()
        self._publish_sample(sample, source="read")
        return sample

    async def read_weight(self) -> WeightReading:
        return await self._ensure_api().weight()

    async def read_light(self) -> LightReading:
        return await self._ensure_api().light()

    async def read_status(self) -> DeviceStatus:
        status = await self._ensure_api().status()
        self.device_status.set(status)
        return status

    async def read_history(self, limit: int = 100) -> list[Sample]:
        return await self._ensure_api().history(limit)

    # -- helpers ----------------------------------------------------------------

    def _ensure_api(self) -> DeviceApi:
        if self._api is None or self._api.config != self.config:
            if self._api is not None:
                self._api.close()
            self._api = self._api_factory(self.config)
        return self._api

    def _set_state(self, new_state: ConnectionState) -> None:
        previous = self.state.value
        if previous is new_state:
            return
        logger.info(
            "Estado de conexión %s -> %s",
            previous.value,
            new_state.value,
            extra={"device": self.config.host, "state": new_state},
        )
        self.state.set(new_state)

    def _fail(self, message: str) -> None:
        logger.warning(message, extra={"device": self.config.host})
        self._set_state(ConnectionState.ERROR)
        self.errors.publish(message)

    async def _close_push(self) -> None:
        channel, self._push = self._push, None
        if channel is not None:
            await channel.close()

    @staticmethod
    async def _stop_tasks(tasks: Iterable[asyncio.Task[None] | None]) -> None:
        current = asyncio.current_task()
        pending = [task for task in tasks if task is not None and task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
