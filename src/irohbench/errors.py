from __future__ import annotations


class BenchError(Exception):
    """Base class for every failure raised by irohbench."""


class ArgumentError(BenchError, ValueError):
    """User input rejected before any network activity."""


class NegotiationError(BenchError):
    """The connection never became usable (unknown peer, protocol mismatch)."""


class TransferError(BenchError):
    """A read, write or close failed inside a single session."""


class ProtocolViolation(BenchError):
    """The peer answered with something other than the acknowledgment."""
