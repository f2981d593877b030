from __future__ import annotations

# Exchanged during the connection handshake; peers presenting a different
# identifier are rejected by the transport.
ALPN = b"iroh-example/print/0"

ACK = b"received"
ACK_LEN = len(ACK)

PUBLIC_KEY_LEN = 32

CLOSE_CODE = 0
CLOSE_REASON = b"bye!"

MIB = 1024 * 1024
DEFAULT_SIZES = (1 * MIB, 2 * MIB, 5 * MIB, 10 * MIB)
DEFAULT_ITERATIONS = 5
DEFAULT_QUIESCENCE_MS = 100

# None means the server drains streams of any length.
DEFAULT_MAX_PAYLOAD = None
