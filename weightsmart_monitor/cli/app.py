from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from weightsmart_monitor.config.settings import AppSettings, SettingsLoader
from weightsmart_monitor.core.coordinator import SessionCoordinator
from weightsmart_monitor.core.logging_setup import configure_logging
from weightsmart_monitor.device.api import DeviceApi
from weightsmart_monitor.device.errors import DeviceLinkError
from weightsmart_monitor.device.link import DeviceLink
from weightsmart_monitor.device.simulated import SimulatedDevice, SimulatedDeviceApi, SimulatedPushChannel

logger = logging.getLogger(__name__)

VALUE_COMMANDS = {"calibrate", "factor", "threshold"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="weightsmart", description="WEIGHTSMART MONITOR")
    parser.add_argument("--config", default="weightsmart.yaml", help="Ruta del archivo YAML")
    parser.add_argument("--log-format", choices=("json", "text"), default="json")

    # Defaults for the implicit monitor command.
    parser.set_defaults(simulate=False, tamper_probability=0.05, max_samples=None, export_alerts=None)
    sub = parser.add_subparsers(dest="command", required=False)

    sub.add_parser("init-config", help="Genera YAML por defecto")

    p_monitor = sub.add_parser("monitor", help="Monitoreo en tiempo real")
    p_monitor.add_argument("--simulate", action="store_true", help="Usa un dispositivo simulado")
    p_monitor.add_argument("--tamper-probability", type=float, default=0.05)
    p_monitor.add_argument("--max-samples", type=int, default=None)
    p_monitor.add_argument("--export-alerts", default=None, help="Exporta alertas a JSON al terminar")

    sub.add_parser("ping", help="Comprueba si el dispositivo responde")

    p_command = sub.add_parser("command", help="Envía un comando al dispositivo")
    p_command.add_argument("action", choices=("tare", "calibrate", "factor", "threshold", "restart", "firmware"))
    p_command.add_argument("--value", type=float, default=None)
    return parser


def _load_settings(config_path: str) -> AppSettings:
    config_file = Path(config_path)
    if not config_file.exists():
        return AppSettings()
    return SettingsLoader.load(config_file)


def build_link(settings: AppSettings, simulate: bool = False, tamper_probability: float = 0.0) -> DeviceLink:
    if not simulate:
        return DeviceLink(settings.connection)
    device = SimulatedDevice(tamper_probability=tamper_probability)
    return DeviceLink(
        settings.connection,
        api_factory=lambda config: SimulatedDeviceApi(config, device),
        push_factory=lambda config: SimulatedPushChannel(config, device),
    )


def export_alerts(coordinator: SessionCoordinator, output: str | Path) -> int:
    data = [asdict(alert) for alert in coordinator.alerts.value]
    Path(output).write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    return len(data)


async def _monitor(settings: AppSettings, args: argparse.Namespace) -> int:
    link = build_link(settings, simulate=args.simulate, tamper_probability=args.tamper_probability)
    coordinator = SessionCoordinator(settings, link=link)
    try:
        await coordinator.run(max_samples=args.max_samples)
    except DeviceLinkError as exc:
        logger.error("Sesión terminada: %s", exc)
        return 1
    finally:
        if args.export_alerts:
            count = export_alerts(coordinator, args.export_alerts)
            print(f"Alertas exportadas ({count}): {args.export_alerts}")
    return 0


async def _ping(settings: AppSettings) -> int:
    api = DeviceApi(settings.connection)
    try:
        await api.ping()
    except DeviceLinkError as exc:
        print(f"Sin respuesta de {settings.connection.host}: {exc}")
        return 1
    finally:
        api.close()
    print(f"{settings.connection.host} responde")
    return 0


async def _command(settings: AppSettings, action: str, value: float | None) -> int:
    coordinator = SessionCoordinator(settings)
    try:
        if action == "tare":
            ack = await coordinator.tare()
        elif action == "calibrate":
            ack = await coordinator.calibrate(value)
        elif action == "factor":
            ack = await coordinator.set_calibration_factor(value)
        elif action == "threshold":
            ack = await coordinator.set_light_threshold(value)
        elif action == "restart":
            ack = await coordinator.restart()
        else:
            info = await coordinator.check_for_updates()
            print(json.dumps(asdict(info), ensure_ascii=False, indent=2))
            return 0
    except (DeviceLinkError, ValueError) as exc:
        print(f"Comando '{action}' falló: {exc}")
        return 1
    finally:
        await coordinator.disconnect()
    print(ack.message or f"Comando '{action}' aceptado")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = args.command or "monitor"

    if command == "init-config":
        SettingsLoader.dump_default(args.config)
        print(f"Configuración creada en {args.config}")
        return 0

    try:
        settings = _load_settings(args.config)
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level, fmt=args.log_format)

    if command == "monitor":
        try:
            return asyncio.run(_monitor(settings, args))
        except KeyboardInterrupt:
            return 130
    if command == "ping":
        return asyncio.run(_ping(settings))
    if args.action in VALUE_COMMANDS and args.value is None:
        parser.error(f"'{args.action}' requiere --value")
    return asyncio.run(_command(settings, args.action, args.value))


if __name__ == "__main__":
    raise SystemExit(main())
