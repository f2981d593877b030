from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol

from .config import ServerConfig
from .constants import ACK
from .errors import TransferError
from .transport import Connection, Endpoint, RecvStream

log = logging.getLogger(__name__)

ERROR_CLOSE_CODE = 1
ERROR_CLOSE_REASON = b"error"
SHUTDOWN_CLOSE_CODE = 2
SHUTDOWN_CLOSE_REASON = b"shutdown"


class SessionState(enum.Enum):
    ACCEPTED = "accepted"
    STREAM_OPEN = "stream_open"
    DRAINING = "draining"
    ACKNOWLEDGED = "acknowledged"
    AWAITING_CLOSE = "awaiting_close"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class HandlerOutcome:
    peer_id: str
    bytes_received: int


def _advance(peer_id: str, state: SessionState) -> SessionState:
    log.debug("session %s: %s", peer_id[:8], state.value)
    return state


def _peer_label(conn: Connection) -> str:
    try:
        return conn.remote_node_id()
    except TransferError:
        return "<unknown peer>"


class ProtocolHandler(Protocol):
    async def handle(self, conn: Connection) -> HandlerOutcome: ...


@dataclass(slots=True)
class DrainHandler:
    """Reads the first stream to exhaustion, acks it, then waits for teardown.

    Holds no per-connection state between calls; each `handle` owns its
    connection exclusively.
    """

    config: ServerConfig = field(default_factory=ServerConfig)
    chunk_size: int = 64 * 1024

    async def _drain(self, recv: RecvStream) -> int:
        total = 0
        limit = self.config.max_payload
        while True:
            chunk = await recv.read(self.chunk_size)
            if not chunk:
                return total
            total += len(chunk)
            if limit is not None and total > limit:
                raise TransferError(f"payload exceeds limit of {limit} bytes")

    async def handle(self, conn: Connection) -> HandlerOutcome:
        peer_id = conn.remote_node_id()
        state = _advance(peer_id, SessionState.ACCEPTED)
        log.info("new connection from %s", peer_id)
        try:
            send, recv = await conn.accept_bi()
            state = _advance(peer_id, SessionState.STREAM_OPEN)

            state = _advance(peer_id, SessionState.DRAINING)
            total = await self._drain(recv)
            log.info("total bytes received from %s: %d", peer_id, total)

            await send.write_all(ACK)
            await send.finish()
            state = _advance(peer_id, SessionState.ACKNOWLEDGED)

            state = _advance(peer_id, SessionState.AWAITING_CLOSE)
            await conn.closed()
            state = _advance(peer_id, SessionState.CLOSED)
        except TransferError as exc:
            log.warning("session with %s failed in state %s: %s", peer_id, state.value, exc)
            raise
        return HandlerOutcome(peer_id=peer_id, bytes_received=total)


class BenchServer:
    """Accept loop: one task per connection, no shared state between them.

    The number of concurrent handlers is unbounded.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        handler: ProtocolHandler,
        on_outcome: Callable[[HandlerOutcome], None] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.handler = handler
        self.on_outcome = on_outcome
        self._tasks: dict[asyncio.Task, Connection] = {}
        self._accepting = False
        self._loop_done = asyncio.Event()

    @property
    def active(self) -> int:
        return len(self._tasks)

    def start(self) -> asyncio.Task:
        """Run the accept loop in the background.

        Marks the server as accepting before the task first runs, so a
        `shutdown` issued right away still waits for queued connections.
        """
        self._accepting = True
        return asyncio.create_task(self.serve_forever())

    async def serve_forever(self) -> None:
        self._accepting = True
        try:
            while True:
                conn = await self.endpoint.accept()
                if conn is None:
                    break
                self._spawn(conn)
        finally:
            self._accepting = False
            self._loop_done.set()
        log.info("accept loop stopped")

    def _spawn(self, conn: Connection) -> asyncio.Task:
        task = asyncio.create_task(self._run_handler(conn))
        self._tasks[task] = conn
        task.add_done_callback(lambda t: self._tasks.pop(t, None))
        return task

    async def _run_handler(self, conn: Connection) -> HandlerOutcome | None:
        try:
            outcome = await self.handler.handle(conn)
        except TransferError as exc:
            log.debug("handler for %s ended early: %s", _peer_label(conn), exc)
            conn.close(ERROR_CLOSE_CODE, ERROR_CLOSE_REASON)
            return None
        except Exception:
            log.exception("handler crashed for %s", _peer_label(conn))
            conn.close(ERROR_CLOSE_CODE, ERROR_CLOSE_REASON)
            return None
        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    async def wait_idle(self) -> None:
        """Wait until every handler spawned so far has finished."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting, then wait for in-flight handlers to finish.

        The endpoint itself stays open; its owner closes it afterwards.

        With a `timeout`, handlers still running afterwards get their
        connection closed so they finish early.
        """
        self.endpoint.stop_accepting()
        if self._accepting:
            # connections queued before the stop still get a handler
            await self._loop_done.wait()
        pending = set(self._tasks)
        if not pending:
            return
        log.info("draining %d active session(s)", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            log.warning("closing %d session(s) that outlived the drain timeout", len(still_running))
            for task in still_running:
                conn = self._tasks.get(task)
                if conn is not None:
                    conn.close(SHUTDOWN_CLOSE_CODE, SHUTDOWN_CLOSE_REASON)
            await asyncio.wait(still_running)
