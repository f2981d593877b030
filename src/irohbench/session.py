from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .constants import ACK, ACK_LEN
from .errors import ProtocolViolation, TransferError
from .transport import Connection

log = logging.getLogger(__name__)


def bandwidth_mbps(size_bytes: int, elapsed_s: float) -> float:
    return size_bytes * 8 / elapsed_s / 1_000_000


@dataclass(frozen=True, slots=True)
class TransferResult:
    payload_size: int
    elapsed_s: float
    bandwidth_mbps: float


async def run_transfer(
    conn: Connection,
    size: int,
    *,
    clock: Callable[[], float] = time.perf_counter,
) -> TransferResult:
    """Push `size` zero bytes over a new stream and time it until the ack arrives.

    The clock starts after the stream is open, so connection setup never
    counts towards the measured interval.
    """
    if size <= 0:
        raise ValueError(f"payload size must be positive, got {size}")

    send, recv = await conn.open_bi()
    payload = bytes(size)

    t0 = clock()
    await send.write_all(payload)
    await send.finish()
    ack = await recv.read_to_end(ACK_LEN)
    elapsed = clock() - t0

    if ack != ACK:
        raise ProtocolViolation(f"invalid acknowledgment from server: {ack!r}")
    if elapsed <= 0:
        raise TransferError(f"clock did not advance during transfer ({elapsed!r}s)")

    result = TransferResult(
        payload_size=size,
        elapsed_s=elapsed,
        bandwidth_mbps=bandwidth_mbps(size, elapsed),
    )
    log.debug("sent %d bytes in %.6fs (%.2f Mbit/s)", size, elapsed, result.bandwidth_mbps)
    return result
