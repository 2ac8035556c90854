from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, AsyncIterator

from weightsmart_monitor.config.settings import ConnectionConfig
from weightsmart_monitor.device.errors import ProtocolError, TransportError
from weightsmart_monitor.device.protocol import MAX_FRAME_BYTES, decode_frame

logger = logging.getLogger(__name__)


class PushChannel:
    """Conexión persistente por la que el dispositivo empuja lecturas agregadas.

    Cada mensaje es un objeto JSON terminado en salto de línea.
    """

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.push_port, limit=MAX_FRAME_BYTES),
                timeout=self.config.connect_timeout_s,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"No se pudo abrir el canal push {self.config.host}:{self.config.push_port}: {exc!r}"
            ) from exc
        logger.info("Canal push abierto", extra={"device": self.config.host})

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        if self._reader is None:
            await self.open()
        reader = self._reader
        assert reader is not None
        while True:
            try:
                line = await reader.readline()
            except ValueError:
                # Frame beyond the stream limit; readline already discarded it.
                logger.debug("Trama push descartada por tamaño")
                continue
            except (ConnectionError, OSError) as exc:
                raise TransportError(f"Canal push interrumpido: {exc!r}") from exc
            if not line:
                logger.info("Canal push cerrado por el dispositivo", extra={"device": self.config.host})
                return
            try:
                message = decode_frame(line)
            except ProtocolError as exc:
                logger.debug("Mensaje push descartado: %s", exc)
                continue
            yield message

    async def close(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        with suppress(ConnectionError, OSError):
            await writer.wait_closed()
