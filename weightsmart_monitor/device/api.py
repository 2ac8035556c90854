from __future__ import annotations

import asyncio
import logging
from typing import Any

import requests

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.device.errors import CommandError, ProtocolError, TransportError
from weightsmart_monitor.device.protocol import (
    COMMAND_ROUTES,
    HISTORY_PATH,
    LIGHT_PATH,
    PING_PATH,
    SENSORS_PATH,
    STATUS_PATH,
    WEIGHT_PATH,
    parse_ack,
    parse_device_status,
    parse_history,
    parse_light,
    parse_sample,
    parse_weight,
)
from weightsmart_monitor.models.commands import CommandAck, CommandKind, DeviceCommand
from weightsmart_monitor.models.sensors import DeviceStatus, LightReading, Sample, WeightReading

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
UPLOAD_HEADERS = {"Accept": "application/json"}


class DeviceApi:
    """Cliente HTTP del dispositivo sobre ``requests``.

    Las llamadas bloqueantes se ejecutan con ``asyncio.to_thread`` para que
    cada operación sea un punto de suspensión cancelable.
    """

    def __init__(self, config: ConnectionConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.config.connect_timeout_s, self.config.read_timeout_s)

    def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        url = f"{self.config.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                params=params,
                files=files,
                headers=UPLOAD_HEADERS if files else JSON_HEADERS,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} falló: {exc}") from exc

        if not response.content:
            return response.status_code, None
        try:
            return response.status_code, response.json()
        except ValueError as exc:
            raise ProtocolError(f"{method} {path}: respuesta no es JSON") from exc

    async def _read(self, path: str, params: dict[str, Any] | None = None) -> Any:
        status, body = await asyncio.to_thread(self._call, "GET", path, params=params)
        if status >= 400:
            raise TransportError(f"GET {path} devolvió HTTP {status}")
        if body is None:
            raise ProtocolError(f"GET {path} devolvió un cuerpo vacío")
        return body

    async def ping(self) -> None:
        status, body = await asyncio.to_thread(self._call, "GET", PING_PATH)
        if status >= 400:
            raise TransportError(f"Ping rechazado: HTTP {status}")
        if isinstance(body, dict) and body.get("success") is False:
            raise TransportError(f"Ping rechazado: {body.get('message', '')}")

    async def sensor_data(self) -> Sample:
        return parse_sample(await self._read(SENSORS_PATH))

    async def weight(self) -> WeightReading:
        return parse_weight(await self._read(WEIGHT_PATH))

    async def light(self) -> LightReading:
        return parse_light(await self._read(LIGHT_PATH))

    async def status(self) -> DeviceStatus:
        return parse_device_status(await self._read(STATUS_PATH))

    async def history(self, limit: int = 100) -> list[Sample]:
        return parse_history(await self._read(HISTORY_PATH, params={"limit": limit}))

    async def execute(self, command: DeviceCommand) -> CommandAck:
        method, path = COMMAND_ROUTES[command.kind]
        files = None
        if command.kind is CommandKind.OTA_UPLOAD:
            files = {"firmware": ("firmware.bin", command.payload, "application/octet-stream")}
        status, body = await asyncio.to_thread(
            self._call,
            method,
            path,
            json_body=command.body or None,
            files=files,
        )
        if status >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise CommandError(message or f"{command.kind.value}: HTTP {status}", status_code=status)

        ack = parse_ack(command.kind, body)
        if not ack.success:
            raise CommandError(ack.message or f"{command.kind.value} rechazado por el dispositivo", status_code=status)
        logger.info("Comando %s aceptado", command.kind.value, extra={"device": self.config.host})
        return ack

    def close(self) -> None:
        self._session.close()
