import asyncio

import pytest
from support import FakeDevice, fast_config, make_sample, wait_until

from weightsmart_monitor.device.errors import TransportError
from weightsmart_monitor.device.link import DeviceLink
from weightsmart_monitor.device.protocol import encode_frame, encode_sample, parse_sample
from weightsmart_monitor.device.push import PushChannel


async def _serve(lines: list[bytes], hold_open: bool = False) -> tuple[asyncio.AbstractServer, int]:
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        for line in lines:
            writer.write(line)
        await writer.drain()
        if hold_open:
            await reader.read()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


def test_malformed_frames_are_skipped() -> None:
    sample = make_sample(weight=999.0)
    lines = [b"{broken\n", b"[1,2,3]\n", encode_frame(encode_sample(sample))]

    async def scenario() -> list[dict]:
        server, port = await _serve(lines)
        async with server:
            channel = PushChannel(fast_config(push_port=port))
            received = [message async for message in channel.messages()]
            await channel.close()
        return received

    received = asyncio.run(scenario())

    assert len(received) == 1
    assert parse_sample(received[0]) == sample


def test_unreachable_push_port_raises_transport_error() -> None:
    async def scenario() -> None:
        server, port = await _serve([])
        server.close()
        await server.wait_closed()
        channel = PushChannel(fast_config(push_port=port, connect_timeout_s=1))
        with pytest.raises(TransportError):
            await channel.open()

    asyncio.run(scenario())


def test_link_publishes_pushed_samples() -> None:
    device = FakeDevice()
    device.default_sample = make_sample(weight=1.0)
    pushed = make_sample(weight=555.0)
    lines = [b"not-json\n", encode_frame(encode_sample(pushed))]

    async def scenario() -> list[float]:
        server, port = await _serve(lines, hold_open=True)
        seen: list[float] = []
        async with server:
            link = DeviceLink(
                fast_config(use_push_channel=True, push_port=port, polling_interval_s=5.0),
                api_factory=device.factory(),
            )
            link.sample.subscribe(lambda s: seen.append(s.weight.weight))
            await link.connect()
            await wait_until(lambda: 555.0 in seen)
            await link.disconnect()
        return seen

    seen = asyncio.run(scenario())

    assert seen[-1] == 555.0


def test_push_loss_keeps_polling() -> None:
    device = FakeDevice()
    polled: list[float] = []

    async def scenario() -> bool:
        server, port = await _serve([])
        async with server:
            link = DeviceLink(
                fast_config(use_push_channel=True, push_port=port),
                api_factory=device.factory(),
            )
            link.sample.subscribe(lambda s: polled.append(s.weight.weight))
            await link.connect()
            await asyncio.sleep(0.1)
            connected = link.is_connected
            before = len(polled)
            await wait_until(lambda: len(polled) > before)
            await link.disconnect()
        return connected

    assert asyncio.run(scenario())
    assert len(polled) > 2
