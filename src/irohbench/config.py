from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    ALPN,
    DEFAULT_ITERATIONS,
    DEFAULT_MAX_PAYLOAD,
    DEFAULT_QUIESCENCE_MS,
    DEFAULT_SIZES,
)
from .errors import ArgumentError


@dataclass(frozen=True, slots=True)
class ClientConfig:
    sizes: tuple[int, ...] = DEFAULT_SIZES
    iterations: int = DEFAULT_ITERATIONS
    quiescence_ms: int = DEFAULT_QUIESCENCE_MS
    alpn: bytes = ALPN

    def __post_init__(self) -> None:
        if not self.sizes:
            raise ArgumentError("at least one payload size is required")
        bad = [s for s in self.sizes if s <= 0]
        if bad:
            raise ArgumentError(f"payload sizes must be positive, got {bad}")
        if self.iterations < 1:
            raise ArgumentError(f"iterations must be >= 1, got {self.iterations}")
        if self.quiescence_ms < 0:
            raise ArgumentError(f"quiescence must be >= 0 ms, got {self.quiescence_ms}")
        if not self.alpn:
            raise ArgumentError("protocol identifier must not be empty")

    @property
    def quiescence_s(self) -> float:
        return self.quiescence_ms / 1000.0


@dataclass(frozen=True, slots=True)
class ServerConfig:
    alpn: bytes = ALPN
    max_payload: int | None = DEFAULT_MAX_PAYLOAD

    def __post_init__(self) -> None:
        if not self.alpn:
            raise ArgumentError("protocol identifier must not be empty")
        if self.max_payload is not None and self.max_payload <= 0:
            raise ArgumentError(f"max payload must be positive, got {self.max_payload}")
