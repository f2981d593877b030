"""Peer-to-peer throughput benchmark (irohbench)

A client pushes payloads of increasing size to a server over freshly
negotiated connections and measures bandwidth; the server drains each
stream and answers with a fixed acknowledgment.

Layout:
- wire constants and the stream/connection contract are transport-agnostic
- the session and driver only time what happens after a connection exists
- transports (loopback, iroh) are adapters behind the same interface
"""

from .constants import ACK, ALPN
from .errors import ArgumentError, BenchError, NegotiationError, ProtocolViolation, TransferError

__all__ = [
    "ACK",
    "ALPN",
    "ArgumentError",
    "BenchError",
    "NegotiationError",
    "ProtocolViolation",
    "TransferError",
]
