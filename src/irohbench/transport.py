"""Connection and stream contract shared by every transport.

The benchmark only ever talks to these interfaces; the loopback transport in
`irohbench.memory` and the iroh adapter in `irohbench.iroh_transport` both
implement them.
"""
from __future__ import annotations

from typing import Protocol, Tuple

from .peer import PeerAddress


class SendStream(Protocol):
    async def write_all(self, data: bytes) -> None: ...

    async def finish(self) -> None:
        """Half-close: the peer reads end-of-stream, our receive half stays open."""
        ...


class RecvStream(Protocol):
    async def read(self, max_len: int) -> bytes:
        """Return up to `max_len` bytes, or b"" once the peer finished."""
        ...

    async def read_to_end(self, limit: int) -> bytes:
        """Read until end-of-stream; fail with TransferError past `limit` bytes."""
        ...


StreamPair = Tuple[SendStream, RecvStream]


class Connection(Protocol):
    @property
    def alpn(self) -> bytes: ...

    def remote_node_id(self) -> str: ...

    async def open_bi(self) -> StreamPair: ...

    async def accept_bi(self) -> StreamPair: ...

    def close(self, code: int, reason: bytes) -> None: ...

    async def closed(self) -> None:
        """Resolve once both sides have torn the connection down."""
        ...


class Endpoint(Protocol):
    @property
    def node_id(self) -> str: ...

    async def connect(self, peer: PeerAddress, alpn: bytes) -> Connection: ...

    async def accept(self) -> Connection | None:
        """Next inbound connection, or None once accepting has stopped."""
        ...

    def stop_accepting(self) -> None:
        """Refuse new inbound connections; established ones are untouched."""
        ...

    async def close(self) -> None: ...
