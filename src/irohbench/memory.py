from __future__ import annotations

import asyncio
import logging
import secrets
from collections import deque
from dataclasses import dataclass, field

from .constants import ALPN
from .errors import NegotiationError, TransferError
from .peer import PeerAddress
from .transport import StreamPair

log = logging.getLogger(__name__)


class _Pipe:
    """One direction of a stream: ordered chunks, end-of-stream, or an error."""

    def __init__(self) -> None:
        self._chunks: deque[bytes] = deque()
        self._offset = 0
        self._eof = False
        self._error: TransferError | None = None
        self._ready = asyncio.Event()

    def feed(self, data: bytes) -> None:
        if self._error is not None:
            raise self._error
        if self._eof:
            raise TransferError("write after finish")
        if data:
            self._chunks.append(data)
            self._ready.set()

    def feed_eof(self) -> None:
        if self._error is not None:
            raise self._error
        self._eof = True
        self._ready.set()

    def abort(self, error: TransferError) -> None:
        if self._error is None:
            self._error = error
        self._ready.set()

    async def read(self, max_len: int) -> bytes:
        while not self._chunks:
            if self._error is not None:
                raise self._error
            if self._eof:
                return b""
            self._ready.clear()
            await self._ready.wait()
        head = self._chunks[0]
        end = self._offset + max_len
        if end >= len(head):
            piece = head[self._offset :]
            self._chunks.popleft()
            self._offset = 0
        else:
            piece = head[self._offset : end]
            self._offset = end
        return piece


class MemorySendStream:
    def __init__(self, pipe: _Pipe) -> None:
        self._pipe = pipe

    async def write_all(self, data: bytes) -> None:
        self._pipe.feed(bytes(data))
        await asyncio.sleep(0)

    async def finish(self) -> None:
        self._pipe.feed_eof()
        await asyncio.sleep(0)


class MemoryRecvStream:
    chunk_size = 64 * 1024

    def __init__(self, pipe: _Pipe) -> None:
        self._pipe = pipe

    async def read(self, max_len: int) -> bytes:
        return await self._pipe.read(max_len)

    async def read_to_end(self, limit: int) -> bytes:
        buf = bytearray()
        while True:
            chunk = await self._pipe.read(self.chunk_size)
            if not chunk:
                return bytes(buf)
            buf += chunk
            if len(buf) > limit:
                raise TransferError(f"stream exceeded read limit of {limit} bytes")


@dataclass(slots=True)
class _Link:
    """State shared by both ends of one connection."""

    pipes: list[_Pipe] = field(default_factory=list)
    is_closed: asyncio.Event = field(default_factory=asyncio.Event)
    close_code: int | None = None
    close_reason: bytes = b""

    def close(self, code: int, reason: bytes) -> None:
        if self.is_closed.is_set():
            return
        self.close_code = code
        self.close_reason = reason
        error = TransferError(f"connection closed (code={code}, reason={reason!r})")
        for pipe in self.pipes:
            pipe.abort(error)
        self.is_closed.set()


class MemoryConnection:
    def __init__(self, link: _Link, alpn: bytes, local_id: str, remote_id: str) -> None:
        self._link = link
        self._alpn = alpn
        self._local_id = local_id
        self._remote_id = remote_id
        self._incoming: asyncio.Queue[StreamPair | None] = asyncio.Queue()
        self.peer: MemoryConnection | None = None

    @property
    def alpn(self) -> bytes:
        return self._alpn

    def remote_node_id(self) -> str:
        return self._remote_id

    async def open_bi(self) -> StreamPair:
        if self._link.is_closed.is_set() or self.peer is None:
            raise TransferError("cannot open a stream on a closed connection")
        outbound, inbound = _Pipe(), _Pipe()
        self._link.pipes.extend((outbound, inbound))
        self.peer._incoming.put_nowait((MemorySendStream(inbound), MemoryRecvStream(outbound)))
        return MemorySendStream(outbound), MemoryRecvStream(inbound)

    async def accept_bi(self) -> StreamPair:
        if self._link.is_closed.is_set():
            raise TransferError("connection closed before a stream was opened")
        pair = await self._incoming.get()
        if pair is None:
            raise TransferError("connection closed before a stream was opened")
        return pair

    def close(self, code: int, reason: bytes) -> None:
        self._link.close(code, reason)
        self._incoming.put_nowait(None)
        if self.peer is not None:
            self.peer._incoming.put_nowait(None)

    async def closed(self) -> None:
        await self._link.is_closed.wait()

    @property
    def close_reason(self) -> bytes:
        return self._link.close_reason


class MemoryEndpoint:
    def __init__(self, network: "MemoryNetwork", alpns: frozenset[bytes], node_id: str) -> None:
        self._network = network
        self._alpns = alpns
        self._node_id = node_id
        self._incoming: asyncio.Queue[MemoryConnection | None] = asyncio.Queue()
        self._accepting = True
        self._closed = False

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def address(self) -> PeerAddress:
        return PeerAddress(bytes.fromhex(self._node_id))

    def accepts(self, alpn: bytes) -> bool:
        return self._accepting and alpn in self._alpns

    async def connect(self, peer: PeerAddress, alpn: bytes) -> MemoryConnection:
        if self._closed:
            raise NegotiationError("endpoint is closed")
        remote = self._network.lookup(peer.node_id)
        if remote is None:
            raise NegotiationError(f"no route to peer {peer.node_id}")
        if not remote.accepts(alpn):
            raise NegotiationError(f"peer {peer.node_id} rejected protocol {alpn!r}")

        link = _Link()
        local = MemoryConnection(link, alpn, self._node_id, remote.node_id)
        accepted = MemoryConnection(link, alpn, remote.node_id, self._node_id)
        local.peer, accepted.peer = accepted, local
        remote._incoming.put_nowait(accepted)
        log.debug("loopback connection %s -> %s", self._node_id[:8], remote.node_id[:8])
        await asyncio.sleep(0)
        return local

    async def accept(self) -> MemoryConnection | None:
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
        self._network.unregister(self._node_id)


class MemoryNetwork:
    """In-process switchboard: endpoints find each other by node id."""

    def __init__(self) -> None:
        self._endpoints: dict[str, MemoryEndpoint] = {}

    def endpoint(self, alpns: tuple[bytes, ...] = (ALPN,)) -> MemoryEndpoint:
        node_id = secrets.token_bytes(32).hex()
        ep = MemoryEndpoint(self, frozenset(alpns), node_id)
        self._endpoints[node_id] = ep
        return ep

    def lookup(self, node_id: str) -> MemoryEndpoint | None:
        return self._endpoints.get(node_id)

    def unregister(self, node_id: str) -> None:
        self._endpoints.pop(node_id, None)
