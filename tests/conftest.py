from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest_asyncio

from irohbench.constants import ALPN
from irohbench.memory import MemoryEndpoint, MemoryNetwork
from irohbench.server import BenchServer, DrainHandler, HandlerOutcome, ProtocolHandler


@dataclass
class Loopback:
    network: MemoryNetwork
    server_ep: MemoryEndpoint
    client_ep: MemoryEndpoint
    server: BenchServer
    outcomes: list[HandlerOutcome] = field(default_factory=list)


@pytest_asyncio.fixture
async def start_loopback():
    started: list[tuple[Loopback, asyncio.Task]] = []

    async def start(handler: ProtocolHandler | None = None, alpns: tuple[bytes, ...] = (ALPN,)) -> Loopback:
        network = MemoryNetwork()
        server_ep = network.endpoint(alpns=alpns)
        client_ep = network.endpoint(alpns=())
        outcomes: list[HandlerOutcome] = []
        server = BenchServer(server_ep, handler or DrainHandler(), on_outcome=outcomes.append)
        lb = Loopback(network, server_ep, client_ep, server, outcomes)
        started.append((lb, server.start()))
        return lb

    yield start

    for lb, task in started:
        await lb.server.shutdown(timeout=1.0)
        await task
        await lb.server_ep.close()
        await lb.client_ep.close()


@pytest_asyncio.fixture
async def loopback(start_loopback) -> Loopback:
    return await start_loopback()


class FixedReply:
    """Server handler that drains the stream and answers with arbitrary bytes."""

    def __init__(self, reply: bytes) -> None:
        self.reply = reply

    async def handle(self, conn) -> HandlerOutcome:
        send, recv = await conn.accept_bi()
        data = await recv.read_to_end(1 << 30)
        await send.write_all(self.reply)
        await send.finish()
        await conn.closed()
        return HandlerOutcome(peer_id=conn.remote_node_id(), bytes_received=len(data))


class HangUp:
    """Server handler that closes the connection as soon as a stream shows up."""

    async def handle(self, conn) -> HandlerOutcome:
        await conn.accept_bi()
        conn.close(1, b"nope")
        return HandlerOutcome(peer_id=conn.remote_node_id(), bytes_received=0)
