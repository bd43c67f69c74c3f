"""
Signer protocol — the secrets boundary.

The submitter never sees private keys. It passes an unsigned Call and
the nonce resolved at send time; the signer returns an encoded, signed
extrinsic ready for submission.

Encoding chain primitives (SCALE, signature payloads, era) belongs to
the signer implementation, not to this package.

The signer also exposes a key_id for the audit trail — a public
identifier (e.g. public key hex) that is safe to log.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from feed_relayer.calls import Call


@dataclass(frozen=True)
class SignResult:
    """Result of signing a call.

    Attributes:
        extrinsic_hex: "0x"-prefixed hex of the signed extrinsic.
        tx_hash: Extrinsic hash computed during signing.
        key_id: Public identifier of the signing key. Never a secret.
    """

    extrinsic_hex: str
    tx_hash: str
    key_id: str


@runtime_checkable
class Signer(Protocol):
    """A signing identity.

    Properties:
        address: Human-readable account address. Used as the registry
            key and in logs.
        key_id: Public identifier of the signing key (safe for logging).
    """

    @property
    def address(self) -> str:
        ...

    @property
    def key_id(self) -> str:
        ...

    def sign(self, call: Call, nonce: int) -> SignResult:
        """Sign a call with the given nonce.

        Raises:
            ValueError: If the call cannot be encoded.
        """
        ...
