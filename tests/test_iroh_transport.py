from __future__ import annotations

import pytest

import iroh

from irohbench.constants import ALPN
from irohbench.errors import NegotiationError, TransferError
from irohbench.iroh_transport import (
    MAX_READ_LIMIT,
    IrohConnection,
    IrohEndpoint,
    IrohRecvStream,
    IrohSendStream,
    _Acceptor,
)
from irohbench.peer import PeerAddress


class FakeIrohError(iroh.IrohError):
    def __init__(self, message: str) -> None:
        Exception.__init__(self, message)

    def __str__(self) -> str:
        return self.args[0]


class FakeSend:
    def __init__(self, fail: bool = False) -> None:
        self.written = bytearray()
        self.finished = False
        self.fail = fail

    async def write_all(self, data):
        if self.fail:
            raise FakeIrohError("stream reset")
        self.written += data

    async def finish(self):
        if self.fail:
            raise FakeIrohError("stream reset")
        self.finished = True


class FakeRecv:
    def __init__(self, data: bytes = b"", fail: bool = False) -> None:
        self.data = data
        self.fail = fail
        self.limits: list[int] = []

    async def read(self, size_limit):
        self.limits.append(size_limit)
        if self.fail:
            raise FakeIrohError("stream reset")
        chunk, self.data = self.data[:size_limit], self.data[size_limit:]
        return chunk

    async def read_to_end(self, size_limit):
        self.limits.append(size_limit)
        if self.fail:
            raise FakeIrohError("too long")
        return self.data


class FakeBi:
    def __init__(self, send: FakeSend, recv: FakeRecv) -> None:
        self._send, self._recv = send, recv

    def send(self):
        return self._send

    def recv(self):
        return self._recv


class FakeConn:
    def __init__(self, bi: FakeBi | None = None, node_id: str = "cd" * 32) -> None:
        self.bi = bi
        self.node_id = node_id
        self.closed_with = None

    def get_remote_node_id(self):
        if self.node_id is None:
            raise FakeIrohError("no handshake data")
        return self.node_id

    async def open_bi(self):
        if self.bi is None:
            raise FakeIrohError("connection lost")
        return self.bi

    async def accept_bi(self):
        return await self.open_bi()

    def close(self, code, reason):
        self.closed_with = (code, reason)

    async def closed(self):
        return "closed by peer"


class FakeConnecting:
    def __init__(self, conn: FakeConn | None) -> None:
        self.conn = conn

    async def connect(self):
        if self.conn is None:
            raise FakeIrohError("handshake failed")
        return self.conn


class FakeEndpoint:
    def __init__(self, conn: FakeConn | None) -> None:
        self.conn = conn
        self.calls = []

    async def connect(self, addr, alpn):
        self.calls.append((addr, alpn))
        if self.conn is None:
            raise FakeIrohError("alpn mismatch")
        return self.conn


class FakeNode:
    def __init__(self, conn: FakeConn | None = None) -> None:
        self._endpoint = FakeEndpoint(conn)
        self.shut_down = False

    def node(self):
        return self

    def endpoint(self):
        return self._endpoint

    async def shutdown(self):
        self.shut_down = True


@pytest.fixture
def fake_keys(monkeypatch):
    monkeypatch.setattr(iroh, "PublicKey", type("Key", (), {"from_bytes": staticmethod(lambda raw: ("key", raw))}))
    monkeypatch.setattr(iroh, "NodeAddr", lambda key, relay, addrs: (key, relay, addrs))


PEER = PeerAddress(b"\x07" * 32, relay_url="https://relay.example", direct_addresses=("10.0.0.1:4433",))


@pytest.mark.asyncio
async def test_streams_pass_data_through():
    send, recv = FakeSend(), FakeRecv(b"received")
    s, r = IrohSendStream(send), IrohRecvStream(recv)
    await s.write_all(b"abc")
    await s.finish()
    assert bytes(send.written) == b"abc" and send.finished
    assert await r.read_to_end(8) == b"received"


@pytest.mark.asyncio
async def test_read_limits_are_clamped():
    recv = FakeRecv(b"x" * 10)
    r = IrohRecvStream(recv)
    await r.read(2**40)
    await r.read_to_end(2**40)
    assert recv.limits == [MAX_READ_LIMIT, MAX_READ_LIMIT]


@pytest.mark.asyncio
async def test_stream_failures_become_transfer_errors():
    s, r = IrohSendStream(FakeSend(fail=True)), IrohRecvStream(FakeRecv(fail=True))
    with pytest.raises(TransferError, match="write failed"):
        await s.write_all(b"x")
    with pytest.raises(TransferError, match="finish failed"):
        await s.finish()
    with pytest.raises(TransferError, match="read failed"):
        await r.read(10)
    with pytest.raises(TransferError, match="read failed"):
        await r.read_to_end(8)


@pytest.mark.asyncio
async def test_connection_wraps_stream_pairs():
    send, recv = FakeSend(), FakeRecv(b"hi")
    conn = IrohConnection(FakeConn(FakeBi(send, recv)), ALPN)
    s, r = await conn.open_bi()
    await s.write_all(b"payload")
    assert bytes(send.written) == b"payload"
    assert await r.read_to_end(8) == b"hi"
    assert conn.alpn == ALPN
    assert conn.remote_node_id() == "cd" * 32


@pytest.mark.asyncio
async def test_connection_failures_become_transfer_errors():
    conn = IrohConnection(FakeConn(bi=None, node_id=None), ALPN)
    with pytest.raises(TransferError):
        await conn.open_bi()
    with pytest.raises(TransferError):
        await conn.accept_bi()
    with pytest.raises(TransferError):
        conn.remote_node_id()


@pytest.mark.asyncio
async def test_connect_builds_node_addr(fake_keys):
    fake = FakeConn(FakeBi(FakeSend(), FakeRecv()))
    node = FakeNode(fake)
    ep = IrohEndpoint(node, "ab" * 32)

    conn = await ep.connect(PEER, ALPN)

    assert isinstance(conn, IrohConnection)
    ((addr, alpn),) = node.endpoint().calls
    assert addr == (("key", PEER.public_key), "https://relay.example", ["10.0.0.1:4433"])
    assert alpn == ALPN


@pytest.mark.asyncio
async def test_connect_failure_is_negotiation_error(fake_keys):
    ep = IrohEndpoint(FakeNode(conn=None), "ab" * 32)
    with pytest.raises(NegotiationError, match="alpn mismatch"):
        await ep.connect(PEER, b"other/0")


@pytest.mark.asyncio
async def test_connect_after_close_is_negotiation_error(fake_keys):
    node = FakeNode()
    ep = IrohEndpoint(node, "ab" * 32)
    await ep.close()
    assert node.shut_down
    with pytest.raises(NegotiationError):
        await ep.connect(PEER, ALPN)


@pytest.mark.asyncio
async def test_acceptor_delivers_connections():
    ep = IrohEndpoint(FakeNode(), "ab" * 32, accepting=True)
    acceptor = _Acceptor(ep, ALPN)

    await acceptor.accept(FakeConnecting(FakeConn()))
    await acceptor.accept(FakeConnecting(None))

    conn = await ep.accept()
    assert conn.remote_node_id() == "cd" * 32
    ep.stop_accepting()
    assert await ep.accept() is None


@pytest.mark.asyncio
async def test_refuses_connections_after_stop_accepting():
    ep = IrohEndpoint(FakeNode(), "ab" * 32, accepting=True)
    ep.stop_accepting()
    late = FakeConn()

    await _Acceptor(ep, ALPN).accept(FakeConnecting(late))

    assert late.closed_with == (2, b"shutdown")
    assert await ep.accept() is None
    assert await ep.accept() is None


@pytest.mark.asyncio
async def test_acceptor_shutdown_stops_accepting():
    ep = IrohEndpoint(FakeNode(), "ab" * 32, accepting=True)
    await _Acceptor(ep, ALPN).shutdown()
    assert await ep.accept() is None
