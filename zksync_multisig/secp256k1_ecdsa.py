# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
secp256k1 ECDSA keys and recoverable signatures for zkSync accounts.

Owners of a multisig account are ordinary secp256k1 key pairs. The on-chain
account verifies each owner's signature with ``ecrecover`` over the raw
EIP-712 transaction digest, so signing here always works on a 32-byte digest
directly and never applies the ``\\x19Ethereum Signed Message`` prefix.

Signatures use the Ethereum ``r || s || v`` layout (65 bytes) with:

- deterministic nonces (RFC 6979 over SHA-256),
- low-s normalization (``s <= n / 2``), which the account contract requires,
- ``v`` in ``{27, 28}``.

Examples:
    Sign and recover::

        from zksync_multisig.secp256k1_ecdsa import PrivateKey

        private_key = PrivateKey.random()
        digest = bytes(32)
        signature = private_key.sign_digest(digest)
        assert signature.recover(digest) == private_key.public_key()

Note:
    This implementation uses the ecdsa library for the curve arithmetic;
    address hashing lives in account_address.
"""

from __future__ import annotations

import hashlib
import unittest

from ecdsa import (
    SECP256k1,
    BadSignatureError,
    MalformedPointError,
    SigningKey,
    VerifyingKey,
    util,
)
from ecdsa.ecdsa import InvalidPointError
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import MalformedSignature

_ORDER = SECP256k1.generator.order()


class PrivateKey:
    """secp256k1 private key able to sign raw 32-byte digests.

    Attributes:
        LENGTH: Private key length in bytes (32).
        key: The underlying ecdsa signing key.
    """

    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key.to_string() == other.key.to_string()

    def __str__(self):
        return self.hex()

    @staticmethod
    def from_hex(value: str | bytes) -> PrivateKey:
        """Create a private key from a hex string (with or without ``0x``) or raw bytes.

        Raises:
            ValueError: If the key is not exactly 32 bytes.
        """
        if isinstance(value, str):
            value = bytes.fromhex(value[2:] if value.startswith("0x") else value)
        if len(value) != PrivateKey.LENGTH:
            raise ValueError("Length mismatch")
        return PrivateKey(SigningKey.from_string(value, SECP256k1, hashlib.sha256))

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        return PrivateKey.from_hex(value)

    def hex(self) -> str:
        return f"0x{self.key.to_string().hex()}"

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verifying_key)

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate(curve=SECP256k1, hashfunc=hashlib.sha256))

    def sign_digest(self, digest: bytes) -> Signature:
        """Sign a 32-byte digest without any message prefix.

        The nonce is derived deterministically (RFC 6979), so the same key and
        digest always produce the same signature. ``s`` is normalized into the
        lower half of the curve order and ``v`` is chosen so that
        :meth:`Signature.recover` returns this key's public key.

        Args:
            digest: The 32-byte hash to sign, e.g. an EIP-712 transaction digest.

        Returns:
            A 65-byte recoverable signature.

        Raises:
            ValueError: If ``digest`` is not 32 bytes long.
        """
        if len(digest) != 32:
            raise ValueError(f"Expected a 32-byte digest, got {len(digest)} bytes")

        sig = self.key.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256, sigencode=util.sigencode_string
        )
        r, s = util.sigdecode_string(sig, _ORDER)
        # The signature is valid for both s and -s, normalization ensures that only s < n // 2 is valid
        if s > (_ORDER // 2):
            s = _ORDER - s

        rs = util.sigencode_string(r, s, _ORDER)
        own_key = self.key.verifying_key.to_string()
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            rs, digest, SECP256k1, sigdecode=util.sigdecode_string
        )
        for recovery_id, candidate in enumerate(candidates):
            if candidate.to_string() == own_key:
                return Signature(rs + bytes([27 + recovery_id]))
        raise ValueError("Unable to determine the recovery id of the signature")


class PublicKey:
    """secp256k1 public key in uncompressed form.

    Attributes:
        LENGTH: Raw key length without the ``0x04`` prefix (64).
        LENGTH_WITH_PREFIX_LENGTH: Length including the prefix (65).
    """

    LENGTH: int = 64
    LENGTH_WITH_PREFIX_LENGTH: int = 65

    key: VerifyingKey

    def __init__(self, key: VerifyingKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key.to_string() == other.key.to_string()

    def __str__(self) -> str:
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PublicKey:
        """Parse a 64-byte raw or 65-byte ``0x04``-prefixed hex public key."""
        if value[0:2] == "0x":
            value = value[2:]
        # We are measuring hex values which are twice the length of their binary counterpart.
        if (
            len(value) != PublicKey.LENGTH * 2
            and len(value) != PublicKey.LENGTH_WITH_PREFIX_LENGTH * 2
        ):
            raise ValueError("Length mismatch")
        return PublicKey(
            VerifyingKey.from_string(bytes.fromhex(value), SECP256k1, hashlib.sha256)
        )

    def hex(self) -> str:
        return f"0x04{self.key.to_string().hex()}"

    def verify_digest(self, digest: bytes, signature: Signature) -> bool:
        """Check that ``signature`` is this key's signature over ``digest``."""
        try:
            self.key.verify_digest(
                signature.data()[:64], digest, sigdecode=util.sigdecode_string
            )
            return signature.recover(digest) == self
        except (BadSignatureError, ValueError):
            return False

    def to_crypto_bytes(self) -> bytes:
        """Raw 64-byte ``x || y`` encoding, the input to Ethereum address hashing."""
        return self.key.to_string()


class Signature:
    """Recoverable secp256k1 signature in ``r || s || v`` layout.

    Attributes:
        LENGTH: Signature length in bytes (65).
    """

    LENGTH: int = 65

    signature: bytes

    def __init__(self, signature: bytes):
        if len(signature) != Signature.LENGTH:
            raise ValueError(
                f"Expected a {Signature.LENGTH}-byte signature, got {len(signature)} bytes"
            )
        self.signature = signature

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return self.hex()

    @property
    def r(self) -> int:
        return int.from_bytes(self.signature[:32], "big")

    @property
    def s(self) -> int:
        return int.from_bytes(self.signature[32:64], "big")

    @property
    def v(self) -> int:
        return self.signature[64]

    def recovery_id(self) -> int:
        # Accept both the raw {0, 1} and the Ethereum {27, 28} encodings.
        return self.v - 27 if self.v >= 27 else self.v

    def hex(self) -> str:
        return f"0x{self.signature.hex()}"

    @staticmethod
    def from_str(value: str) -> Signature:
        if value[0:2] == "0x":
            value = value[2:]
        return Signature(bytes.fromhex(value))

    def data(self) -> bytes:
        return self.signature

    def recover(self, digest: bytes) -> PublicKey:
        """Recover the public key that produced this signature over ``digest``.

        Raises:
            ValueError: If the recovery id or ``r``/``s`` is out of range, or
                no curve point has ``r`` as its x coordinate.
        """
        recovery_id = self.recovery_id()
        if recovery_id not in (0, 1):
            raise ValueError(f"Invalid recovery id {self.v}")
        if not (0 < self.r < _ORDER and 0 < self.s < _ORDER):
            raise ValueError("Signature r and s must be in [1, n - 1]")
        try:
            candidates = VerifyingKey.from_public_key_recovery_with_digest(
                self.signature[:64], digest, SECP256k1, sigdecode=util.sigdecode_string
            )
        except (
            SquareRootError,
            MalformedSignature,
            MalformedPointError,
            InvalidPointError,
        ) as e:
            raise ValueError(f"Unable to recover public key: {e}") from e
        return PublicKey(candidates[recovery_id])


class Test(unittest.TestCase):
    def test_private_key_from_str(self):
        private_key_hex = PrivateKey.from_str(
            "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        )
        private_key_no_prefix = PrivateKey.from_str(
            "306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        )
        private_key_bytes = PrivateKey.from_hex(
            bytes.fromhex(
                "306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
            )
        )
        self.assertEqual(private_key_hex, private_key_no_prefix)
        self.assertEqual(private_key_hex.hex(), private_key_bytes.hex())

    def test_private_key_length(self):
        with self.assertRaises(ValueError):
            PrivateKey.from_str("0x1234")

    def test_vectors(self):
        private_key = PrivateKey.from_str(
            "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        )
        public_key_hex = "0x04210c9129e35337ff5d6488f90f18d842cf985f06e0baeff8df4bfb2ac4221863e2631b971a237b5db0aa71188e33250732dd461d56ee623cbe0426a5c2db79ef"
        self.assertEqual(private_key.public_key().hex(), public_key_hex)
        self.assertEqual(PublicKey.from_str(public_key_hex), private_key.public_key())

    def test_sign_and_recover(self):
        private_key = PrivateKey.random()
        digest = hashlib.sha256(b"test_message").digest()

        signature = private_key.sign_digest(digest)
        self.assertEqual(len(signature.data()), Signature.LENGTH)
        self.assertIn(signature.v, (27, 28))
        self.assertLessEqual(signature.s, _ORDER // 2)
        self.assertEqual(signature.recover(digest), private_key.public_key())
        self.assertTrue(private_key.public_key().verify_digest(digest, signature))

    def test_deterministic(self):
        private_key = PrivateKey.random()
        digest = hashlib.sha256(b"same digest").digest()
        self.assertEqual(private_key.sign_digest(digest), private_key.sign_digest(digest))

    def test_wrong_digest(self):
        private_key = PrivateKey.random()
        signature = private_key.sign_digest(hashlib.sha256(b"one").digest())
        other_digest = hashlib.sha256(b"two").digest()
        self.assertFalse(private_key.public_key().verify_digest(other_digest, signature))

    def test_digest_length(self):
        with self.assertRaises(ValueError):
            PrivateKey.random().sign_digest(b"not a digest")

    def test_recover_malformed(self):
        digest = hashlib.sha256(b"tampered").digest()
        p = SECP256k1.curve.p()
        # x values where x^3 + 7 is not a square mod p lie on no curve point
        r = next(x for x in range(1, 1000) if pow(x**3 + 7, (p - 1) // 2, p) == p - 1)
        signature = Signature(r.to_bytes(32, "big") + (1).to_bytes(32, "big") + b"\x1b")
        with self.assertRaises(ValueError):
            signature.recover(digest)

        with self.assertRaises(ValueError):
            Signature(bytes(64) + b"\x1b").recover(digest)
        with self.assertRaises(ValueError):
            Signature(b"\xff" * 64 + b"\x1b").recover(digest)
        with self.assertRaises(ValueError):
            Signature(b"\x01" * 64 + b"\x05").recover(digest)

    def test_signature_from_str(self):
        signature = PrivateKey.random().sign_digest(bytes(range(32)))
        self.assertEqual(Signature.from_str(signature.hex()), signature)
        with self.assertRaises(ValueError):
            Signature(signature.data()[:64])
