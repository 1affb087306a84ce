# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Account address management for zkSync Era.

Addresses are 20-byte identifiers shared by externally-owned accounts, smart
contracts and smart-contract accounts. This module parses and formats them
(EIP-55 checksum form) and derives them:

- from a secp256k1 public key (externally-owned accounts),
- from a deployer and its deployment nonce (zkSync ``CREATE``),
- from a deployer, bytecode hash, salt and constructor input (zkSync ``CREATE2``).

zkSync does not use the Ethereum ``CREATE2`` formula. Contracts are addressed
by the hash of their bytecode (see :mod:`zksync_multisig.bytecode`) and every
derivation is domain-separated with a ``zksyncCreate``/``zksyncCreate2``
prefix hash.

Examples:
    Predict a multisig account address before deploying it::

        from eth_abi import encode

        owners = encode(["address", "address"], [str(owner1), str(owner2)])
        multisig = AccountAddress.for_create2(
            factory, bytecode_hash, bytes(32), owners
        )

    Parse and format::

        addr = AccountAddress.from_str("0x7e5f4552091a69125d5dfcb7b8c2659029395bdf")
        print(addr)  # 0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf
"""

from __future__ import annotations

import unittest

from eth_utils import keccak, to_checksum_address

from . import secp256k1_ecdsa

CREATE_PREFIX: bytes = keccak(text="zksyncCreate")
CREATE2_PREFIX: bytes = keccak(text="zksyncCreate2")


class ParseAddressError(Exception):
    """Raised when a string or byte sequence is not a valid 20-byte address."""


class AccountAddress:
    """A 20-byte zkSync account address.

    Instances compare equal by their raw bytes, hash consistently, and print
    in EIP-55 checksum form.
    """

    address: bytes
    LENGTH: int = 20

    def __init__(self, address: bytes):
        if len(address) != AccountAddress.LENGTH:
            raise ParseAddressError("Expected address of length 20")
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self):
        return to_checksum_address("0x" + self.address.hex())

    def __repr__(self):
        return f"AccountAddress({self})"

    def to_int(self) -> int:
        """The address as a ``uint256``, which is how EIP-712 encodes it."""
        return int.from_bytes(self.address, "big")

    def padded(self) -> bytes:
        """The address left-padded with zeroes to 32 bytes."""
        return self.address.rjust(32, b"\x00")

    @staticmethod
    def from_str(address: str) -> AccountAddress:
        """Parse a 40-character hex address, with or without ``0x``.

        Mixed-case input is accepted without verifying the checksum, matching
        what JSON-RPC nodes return.

        Raises:
            ParseAddressError: If the value is not 40 hex characters.
        """
        value = address[2:] if address.startswith(("0x", "0X")) else address
        if len(value) != AccountAddress.LENGTH * 2:
            raise ParseAddressError(
                f"Hex string must be 40 characters long, got {len(value)}: {address}"
            )
        try:
            return AccountAddress(bytes.fromhex(value))
        except ValueError as e:
            raise ParseAddressError(f"Hex string is not valid hex: {address}") from e

    @staticmethod
    def from_key(key: secp256k1_ecdsa.PublicKey) -> AccountAddress:
        """Derive the address of the externally-owned account controlled by ``key``."""
        return AccountAddress(keccak(key.to_crypto_bytes())[12:])

    @staticmethod
    def for_create(sender: AccountAddress, deployment_nonce: int) -> AccountAddress:
        """Address of a contract deployed with ``CREATE`` by ``sender``.

        Args:
            sender: The deploying account or contract.
            deployment_nonce: The sender's deployment nonce at the time of
                deployment. On zkSync this counter is separate from the
                transaction nonce.
        """
        return AccountAddress(
            keccak(
                CREATE_PREFIX
                + sender.padded()
                + deployment_nonce.to_bytes(32, "big")
            )[12:]
        )

    @staticmethod
    def for_create2(
        sender: AccountAddress,
        bytecode_hash: bytes,
        salt: bytes,
        constructor_input: bytes = b"",
    ) -> AccountAddress:
        """Address of a contract deployed with ``CREATE2``.

        The result depends only on the inputs, so the same deployer, bytecode
        hash, salt and constructor arguments always map to the same address.
        This lets callers fund or reference an account before it exists.

        Args:
            sender: The deploying contract, e.g. an account factory.
            bytecode_hash: The zkSync versioned bytecode hash (32 bytes).
            salt: A 32-byte salt.
            constructor_input: ABI-encoded constructor arguments.

        Raises:
            ValueError: If ``bytecode_hash`` or ``salt`` is not 32 bytes.
        """
        if len(bytecode_hash) != 32:
            raise ValueError("Bytecode hash must be 32 bytes")
        if len(salt) != 32:
            raise ValueError("Salt must be 32 bytes")
        return AccountAddress(
            keccak(
                CREATE2_PREFIX
                + sender.padded()
                + salt
                + bytecode_hash
                + keccak(constructor_input)
            )[12:]
        )


class Test(unittest.TestCase):
    def test_from_key(self):
        private_key = secp256k1_ecdsa.PrivateKey.from_hex((1).to_bytes(32, "big"))
        self.assertEqual(
            str(AccountAddress.from_key(private_key.public_key())),
            "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf",
        )

    def test_from_str(self):
        expected = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
        self.assertEqual(str(AccountAddress.from_str(expected.lower())), expected)
        self.assertEqual(str(AccountAddress.from_str(expected[2:].lower())), expected)
        self.assertEqual(
            AccountAddress.from_str(expected), AccountAddress.from_str(expected.upper())
        )
        self.assertRaises(ParseAddressError, AccountAddress.from_str, "0x1")
        self.assertRaises(ParseAddressError, AccountAddress.from_str, "zz" * 20)
        self.assertRaises(ParseAddressError, AccountAddress, bytes(32))

    def test_create2_deterministic(self):
        factory = AccountAddress.from_str("0xa0eD7885B408961430F89d797cD1cc87530D8fBe")
        bytecode_hash = bytes.fromhex("0100") + bytes(30)
        constructor_input = bytes(12) + b"\x11" * 20 + bytes(12) + b"\x22" * 20

        first = AccountAddress.for_create2(
            factory, bytecode_hash, bytes(32), constructor_input
        )
        second = AccountAddress.for_create2(
            factory, bytecode_hash, bytes(32), constructor_input
        )
        self.assertEqual(first, second)

        other_salt = AccountAddress.for_create2(
            factory, bytecode_hash, b"\x01".rjust(32, b"\x00"), constructor_input
        )
        self.assertNotEqual(first, other_salt)

        swapped_owners = bytes(12) + b"\x22" * 20 + bytes(12) + b"\x11" * 20
        self.assertNotEqual(
            first,
            AccountAddress.for_create2(
                factory, bytecode_hash, bytes(32), swapped_owners
            ),
        )

    def test_create2_formula(self):
        sender = AccountAddress(b"\xab" * 20)
        bytecode_hash = b"\x01\x00" + b"\x05" * 30
        salt = b"\x07" * 32
        constructor_input = b"\x09" * 64

        expected = keccak(
            keccak(b"zksyncCreate2")
            + bytes(12)
            + b"\xab" * 20
            + salt
            + bytecode_hash
            + keccak(constructor_input)
        )[12:]
        actual = AccountAddress.for_create2(sender, bytecode_hash, salt, constructor_input)
        self.assertEqual(actual.address, expected)

    def test_create2_invalid_lengths(self):
        sender = AccountAddress(bytes(20))
        with self.assertRaises(ValueError):
            AccountAddress.for_create2(sender, bytes(31), bytes(32))
        with self.assertRaises(ValueError):
            AccountAddress.for_create2(sender, bytes(32), bytes(31))

    def test_create(self):
        sender = AccountAddress(b"\xab" * 20)
        expected = keccak(
            keccak(b"zksyncCreate") + bytes(12) + b"\xab" * 20 + (3).to_bytes(32, "big")
        )[12:]
        self.assertEqual(AccountAddress.for_create(sender, 3).address, expected)
        self.assertNotEqual(
            AccountAddress.for_create(sender, 3), AccountAddress.for_create(sender, 4)
        )

    def test_hashable(self):
        a = AccountAddress(b"\x01" * 20)
        b = AccountAddress(b"\x01" * 20)
        self.assertEqual({a: 1}[b], 1)
