from __future__ import annotations


class DeviceLinkError(RuntimeError):
    """Base de los fallos observables del enlace con el dispositivo."""


class TransportError(DeviceLinkError):
    """Conexión rechazada, timeout o socket cerrado."""


class ProtocolError(DeviceLinkError):
    """Respuesta o mensaje push con formato inválido."""


class CommandError(DeviceLinkError):
    """El dispositivo rechazó una operación (p. ej. calibración fuera de rango)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExhaustedRetriesError(TransportError):
    """Se agotaron los reintentos de reconexión; requiere un connect() explícito."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"No se pudo reconectar tras {attempts} intentos")
        self.attempts = attempts


class ConnectionCancelledError(TransportError):
    """El intento de conexión fue cancelado por disconnect()."""
