"""Scoped ed25519 signing key for Solana swap transactions.

The caller ships the raw secret key with each request. The key lives only
for the duration of one swap: it is decoded into a mutable buffer, used to
sign exactly what the pipeline composed, then wiped.

Note: the base64 string the key arrived in is an immutable Python str and
cannot be wiped; only our own copies are. The keypair object held by solders
is released on destroy() and not reused.
"""

import base64
import binascii
import logging
from typing import Optional

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from solswap.errors import SigningError

logger = logging.getLogger(__name__)

SEED_LENGTH = 32
KEYPAIR_LENGTH = 64


class SigningKey:
    """Single-use holder of a Solana secret key."""

    def __init__(self, secret: bytes):
        """Initialize from raw secret bytes.

        Args:
            secret: 32-byte ed25519 seed or 64-byte seed+pubkey keypair

        Raises:
            SigningError: Secret has the wrong length or is not a valid keypair
        """
        self._secret: Optional[bytearray] = bytearray(secret)
        try:
            if len(self._secret) == SEED_LENGTH:
                self._keypair: Optional[Keypair] = Keypair.from_seed(bytes(self._secret))
            elif len(self._secret) == KEYPAIR_LENGTH:
                self._keypair = Keypair.from_bytes(bytes(self._secret))
            else:
                raise SigningError(
                    f"Secret key must be {SEED_LENGTH} or {KEYPAIR_LENGTH} bytes, "
                    f"got {len(self._secret)}"
                )
        except SigningError:
            self.destroy()
            raise
        except (TypeError, ValueError) as e:
            self.destroy()
            raise SigningError("Secret key is not a valid ed25519 keypair") from e
        self._pubkey = self._keypair.pubkey()

    @classmethod
    def from_base64(cls, encoded: str) -> "SigningKey":
        """Decode a base64 secret key as sent by API clients."""
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SigningError("Secret key is not valid base64") from e
        return cls(raw)

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    @property
    def destroyed(self) -> bool:
        return self._keypair is None

    def sign(self, message: MessageV0) -> VersionedTransaction:
        """Sign a compiled message whose only required signer is this key.

        Raises:
            SigningError: Key already destroyed or not the message's fee payer
        """
        if self._keypair is None:
            raise SigningError("Signing key has already been destroyed")

        payer = message.account_keys[0]
        if payer != self._pubkey:
            raise SigningError(
                "Signing key does not match the transaction payer",
                details={"payer": str(payer), "key": str(self._pubkey)},
            )
        try:
            return VersionedTransaction(message, [self._keypair])
        except (TypeError, ValueError) as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e

    def destroy(self) -> None:
        """Zero the secret buffer and drop the keypair. Safe to call twice."""
        if self._secret is not None:
            for i in range(len(self._secret)):
                self._secret[i] = 0
            self._secret = None
        self._keypair = None

    def __enter__(self) -> "SigningKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    def __repr__(self) -> str:
        state = "destroyed" if self.destroyed else "live"
        return f"SigningKey(pubkey={self._pubkey if hasattr(self, '_pubkey') else None}, {state})"
