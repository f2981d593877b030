from __future__ import annotations

import binascii
from dataclasses import dataclass, field

from .constants import PUBLIC_KEY_LEN
from .errors import ArgumentError


@dataclass(frozen=True, slots=True)
class PeerAddress:
    public_key: bytes
    relay_url: str | None = None
    direct_addresses: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if len(self.public_key) != PUBLIC_KEY_LEN:
            raise ArgumentError(
                f"invalid public key length: expected {PUBLIC_KEY_LEN} bytes, got {len(self.public_key)}"
            )

    @property
    def node_id(self) -> str:
        return self.public_key.hex()

    @staticmethod
    def parse(
        text: str,
        relay_url: str | None = None,
        direct_addresses: tuple[str, ...] = (),
    ) -> "PeerAddress":
        """Decode a hex public key as printed by `irohbench serve`."""
        try:
            raw = binascii.unhexlify(text.strip())
        except (binascii.Error, ValueError) as exc:
            raise ArgumentError(f"public key is not valid hex: {exc}") from exc
        return PeerAddress(
            public_key=raw,
            relay_url=relay_url,
            direct_addresses=tuple(direct_addresses),
        )

    def __str__(self) -> str:
        return self.node_id
