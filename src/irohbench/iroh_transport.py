"""iroh-backed transport: QUIC connections dialed by public key.

Wraps the iroh Python bindings so they satisfy `irohbench.transport`. The
node runs in memory mode and uses the default n0 discovery and relays.
"""
from __future__ import annotations

import asyncio
import logging

import iroh

from .constants import ALPN
from .errors import NegotiationError, TransferError
from .peer import PeerAddress
from .transport import StreamPair

log = logging.getLogger(__name__)

# iroh takes u32 size limits
MAX_READ_LIMIT = 2**32 - 1


class IrohSendStream:
    def __init__(self, stream) -> None:
        self._stream = stream

    async def write_all(self, data: bytes) -> None:
        try:
            await self._stream.write_all(data)
        except iroh.IrohError as exc:
            raise TransferError(f"write failed: {exc}") from exc

    async def finish(self) -> None:
        try:
            await self._stream.finish()
        except iroh.IrohError as exc:
            raise TransferError(f"finish failed: {exc}") from exc


class IrohRecvStream:
    def __init__(self, stream) -> None:
        self._stream = stream

    async def read(self, max_len: int) -> bytes:
        try:
            return bytes(await self._stream.read(min(max_len, MAX_READ_LIMIT)))
        except iroh.IrohError as exc:
            raise TransferError(f"read failed: {exc}") from exc

    async def read_to_end(self, limit: int) -> bytes:
        try:
            return bytes(await self._stream.read_to_end(min(limit, MAX_READ_LIMIT)))
        except iroh.IrohError as exc:
            raise TransferError(f"read failed: {exc}") from exc


def _pair(bi) -> StreamPair:
    return IrohSendStream(bi.send()), IrohRecvStream(bi.recv())


class IrohConnection:
    def __init__(self, conn, alpn: bytes) -> None:
        self._conn = conn
        self._alpn = alpn

    @property
    def alpn(self) -> bytes:
        return self._alpn

    def remote_node_id(self) -> str:
        try:
            return str(self._conn.get_remote_node_id())
        except iroh.IrohError as exc:
            raise TransferError(f"cannot resolve remote node id: {exc}") from exc

    async def open_bi(self) -> StreamPair:
        try:
            return _pair(await self._conn.open_bi())
        except iroh.IrohError as exc:
            raise TransferError(f"open_bi failed: {exc}") from exc

    async def accept_bi(self) -> StreamPair:
        try:
            return _pair(await self._conn.accept_bi())
        except iroh.IrohError as exc:
            raise TransferError(f"accept_bi failed: {exc}") from exc

    def close(self, code: int, reason: bytes) -> None:
        self._conn.close(code, reason)

    async def closed(self) -> None:
        reason = await self._conn.closed()
        log.debug("connection closed: %s", reason)


class _Acceptor:
    """iroh protocol handler that hands each connection to the endpoint."""

    def __init__(self, owner: "IrohEndpoint", alpn: bytes) -> None:
        self._owner = owner
        self._alpn = alpn

    async def accept(self, connecting) -> None:
        try:
            conn = await connecting.connect()
        except iroh.IrohError as exc:
            log.warning("inbound handshake failed: %s", exc)
            return
        self._owner._deliver(IrohConnection(conn, self._alpn))

    async def shutdown(self) -> None:
        self._owner.stop_accepting()


class _AcceptorCreator:
    def __init__(self, owner: "IrohEndpoint", alpn: bytes) -> None:
        self._owner = owner
        self._alpn = alpn

    def create(self, endpoint, client) -> _Acceptor:
        return _Acceptor(self._owner, self._alpn)


class IrohEndpoint:
    def __init__(self, node=None, node_id: str = "", accepting: bool = False) -> None:
        self._node = node
        self._node_id = node_id
        self._incoming: asyncio.Queue[IrohConnection | None] = asyncio.Queue()
        self._accepting = accepting
        self._closed = False

    @classmethod
    async def bind(cls, alpn: bytes | None = ALPN) -> "IrohEndpoint":
        """Start an iroh node; with `alpn` set it also accepts that protocol."""
        iroh.iroh_ffi.uniffi_set_event_loop(asyncio.get_running_loop())
        ep = cls()
        options = iroh.NodeOptions()
        if alpn is not None:
            options.protocols = {alpn: _AcceptorCreator(ep, alpn)}
            ep._accepting = True
        ep._node = await iroh.Iroh.memory_with_options(options)
        ep._node_id = str(await ep._node.net().node_id())
        log.info("iroh node %s up", ep._node_id)
        return ep

    @property
    def node_id(self) -> str:
        return self._node_id

    async def node_addr(self):
        return await self._node.net().node_addr()

    def _deliver(self, conn: IrohConnection) -> None:
        if not self._accepting:
            log.info("refusing inbound connection: no longer accepting")
            conn.close(2, b"shutdown")
            return
        self._incoming.put_nowait(conn)

    async def connect(self, peer: PeerAddress, alpn: bytes) -> IrohConnection:
        if self._closed:
            raise NegotiationError("endpoint is closed")
        try:
            key = iroh.PublicKey.from_bytes(peer.public_key)
            addr = iroh.NodeAddr(key, peer.relay_url, list(peer.direct_addresses))
            conn = await self._node.node().endpoint().connect(addr, alpn)
        except iroh.IrohError as exc:
            raise NegotiationError(f"connect to {peer.node_id} failed: {exc}") from exc
        return IrohConnection(conn, alpn)

    async def accept(self) -> IrohConnection | None:
        if not self._accepting and self._incoming.empty():
            return None
        return await self._incoming.get()

    def stop_accepting(self) -> None:
        if not self._accepting:
            return
        self._accepting = False
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        if self._closed:
            return
        self.stop_accepting()
        self._closed = True
        await self._node.node().shutdown()
