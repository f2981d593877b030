from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from .config import ClientConfig
from .constants import CLOSE_CODE, CLOSE_REASON
from .peer import PeerAddress
from .session import TransferResult, run_transfer
from .stats import Summary, summarize
from .transport import Endpoint

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SizeReport:
    size_bytes: int
    results: tuple[TransferResult, ...]
    summary: Summary

    @property
    def samples(self) -> list[float]:
        return [r.bandwidth_mbps for r in self.results]


@dataclass(slots=True)
class BenchmarkDriver:
    """Runs the size x iteration matrix against one peer, one transfer at a time.

    Every iteration negotiates its own connection and closes it afterwards so
    no warm-up carries over. Transfers never overlap: concurrent runs would
    compete for the same path and skew the numbers. The first failing
    iteration aborts the whole run.
    """

    endpoint: Endpoint
    peer: PeerAddress
    config: ClientConfig = field(default_factory=ClientConfig)
    on_iteration: Callable[[int, TransferResult], None] | None = None
    on_size_start: Callable[[int], None] | None = None
    on_size: Callable[[SizeReport], None] | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run_iteration(self, size: int) -> TransferResult:
        conn = await self.endpoint.connect(self.peer, self.config.alpn)
        try:
            return await run_transfer(conn, size)
        finally:
            conn.close(CLOSE_CODE, CLOSE_REASON)

    async def run_size(self, size: int) -> SizeReport:
        log.info("testing with %d bytes (%.2f MiB)", size, size / (1024 * 1024))
        if self.on_size_start is not None:
            self.on_size_start(size)
        results: list[TransferResult] = []
        for i in range(self.config.iterations):
            result = await self.run_iteration(size)
            results.append(result)
            log.info(
                "iteration %d/%d: %.2f Mbit/s in %.4fs",
                i + 1,
                self.config.iterations,
                result.bandwidth_mbps,
                result.elapsed_s,
            )
            if self.on_iteration is not None:
                self.on_iteration(i, result)
            if i < self.config.iterations - 1:
                await self.sleep(self.config.quiescence_s)

        report = SizeReport(
            size_bytes=size,
            results=tuple(results),
            summary=summarize([r.bandwidth_mbps for r in results]),
        )
        if self.on_size is not None:
            self.on_size(report)
        return report

    async def run(self) -> list[SizeReport]:
        log.info("benchmarking peer %s", self.peer.node_id)
        return [await self.run_size(size) for size in self.config.sizes]
