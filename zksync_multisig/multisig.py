# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Two-owner multisig accounts.

A multisig account is a smart contract deployed by an account factory. Its
address is fixed before deployment by the factory address, the hash of the
account bytecode, a salt, and the ABI-encoded owner addresses
(:meth:`MultisigAccount.address`).

A transaction sent *from* the account is authorized by both owners:

1. compute the transaction's EIP-712 digest (:meth:`Transaction.signed_digest`);
2. each owner signs that exact digest with a raw secp256k1 signature. Message
   signing (``personal_sign``) does not work here because the account
   contract calls ``ecrecover`` on the unprefixed digest;
3. the two 65-byte signatures are concatenated, owner 1 first, and attached
   as the transaction's custom signature.

The account contract splits the 130-byte blob in half and checks the first
signature against owner 1 and the second against owner 2. A blob signed over
any other digest, for example a transaction re-encoded with a different
nonce, is only rejected when the node executes validation, so
:func:`verify_co_signature` offers the same check off-chain.

Examples:
    Derive the address, then co-sign a transaction from it::

        multisig = MultisigAccount(factory, owner1.address(), owner2.address(), bytecode_hash)
        tx = await client.create_transaction(
            multisig.address(), factory, calldata, estimate_from=wallet.address()
        )
        signed = authorize(tx, owner1, owner2)
        await client.submit_and_wait_for_transaction(signed)
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from typing import Tuple

from ecdsa import SECP256k1
from eth_abi import encode

from .account import Account
from .account_address import AccountAddress
from .secp256k1_ecdsa import Signature
from .transactions import Transaction

ZERO_SALT: bytes = bytes(32)
CO_SIGNATURE_LENGTH: int = 2 * Signature.LENGTH


@dataclass(frozen=True)
class MultisigAccount:
    """Everything needed to derive the address of a two-owner multisig.

    Attributes:
        factory: The factory contract that deploys the account.
        owner1: First owner; its signature comes first in the blob.
        owner2: Second owner.
        bytecode_hash: The factory's account bytecode hash (``aaBytecodeHash``).
        salt: 32-byte salt, all zeroes by convention.
    """

    factory: AccountAddress
    owner1: AccountAddress
    owner2: AccountAddress
    bytecode_hash: bytes
    salt: bytes = ZERO_SALT

    def constructor_input(self) -> bytes:
        return encode(["address", "address"], [str(self.owner1), str(self.owner2)])

    def address(self) -> AccountAddress:
        return AccountAddress.for_create2(
            self.factory, self.bytecode_hash, self.salt, self.constructor_input()
        )

    def owners(self) -> Tuple[AccountAddress, AccountAddress]:
        return (self.owner1, self.owner2)


def co_sign(transaction: Transaction, owner1: Account, owner2: Account) -> bytes:
    """Both owners' raw signatures over the transaction digest, owner 1 first."""
    digest = transaction.signed_digest()
    return owner1.sign(digest).data() + owner2.sign(digest).data()


def authorize(transaction: Transaction, owner1: Account, owner2: Account) -> Transaction:
    """Return ``transaction`` with the owners' co-signature attached."""
    return transaction.with_custom_signature(co_sign(transaction, owner1, owner2))


def split_co_signature(blob: bytes) -> Tuple[Signature, Signature]:
    """Split a co-signature into the owner 1 and owner 2 signatures.

    Raises:
        ValueError: If the blob is not exactly two signatures long.
    """
    if len(blob) != CO_SIGNATURE_LENGTH:
        raise ValueError(
            f"Expected a {CO_SIGNATURE_LENGTH}-byte co-signature, got {len(blob)} bytes"
        )
    return (Signature(blob[: Signature.LENGTH]), Signature(blob[Signature.LENGTH :]))


def verify_co_signature(
    digest: bytes, blob: bytes, owner1: AccountAddress, owner2: AccountAddress
) -> bool:
    """Check a co-signature the way the account contract does.

    The first signature must recover to ``owner1`` and the second to ``owner2``;
    swapping them fails. Malformed blobs return False rather than raising.
    """
    if len(blob) != CO_SIGNATURE_LENGTH:
        return False
    for signature, owner in zip(split_co_signature(blob), (owner1, owner2)):
        try:
            signer = signature.recover(digest)
        except ValueError:
            return False
        if AccountAddress.from_key(signer) != owner:
            return False
    return True


class Test(unittest.TestCase):
    def setUp(self):
        self.owner1 = Account.generate()
        self.owner2 = Account.generate()
        self.multisig = MultisigAccount(
            factory=AccountAddress.from_str("0xa0eD7885B408961430F89d797cD1cc87530D8fBe"),
            owner1=self.owner1.address(),
            owner2=self.owner2.address(),
            bytecode_hash=bytes.fromhex("0100") + b"\x03" * 30,
        )
        self.transaction = Transaction(
            sender=self.multisig.address(),
            to=self.multisig.factory,
            data=b"\x01\x02",
            nonce=0,
            gas_limit=2_000_000,
            max_fee_per_gas=250_000_000,
            chain_id=270,
        )

    def test_address_is_deterministic(self):
        again = MultisigAccount(
            factory=self.multisig.factory,
            owner1=self.owner1.address(),
            owner2=self.owner2.address(),
            bytecode_hash=self.multisig.bytecode_hash,
        )
        self.assertEqual(self.multisig.address(), again.address())

    def test_address_depends_on_owner_order(self):
        swapped = MultisigAccount(
            factory=self.multisig.factory,
            owner1=self.owner2.address(),
            owner2=self.owner1.address(),
            bytecode_hash=self.multisig.bytecode_hash,
        )
        self.assertNotEqual(self.multisig.address(), swapped.address())

    def test_constructor_input(self):
        encoded = self.multisig.constructor_input()
        self.assertEqual(len(encoded), 64)
        self.assertEqual(encoded[12:32], self.owner1.address().address)
        self.assertEqual(encoded[44:64], self.owner2.address().address)

    def test_co_sign(self):
        blob = co_sign(self.transaction, self.owner1, self.owner2)
        digest = self.transaction.signed_digest()
        self.assertEqual(len(blob), CO_SIGNATURE_LENGTH)
        self.assertEqual(blob[:65], self.owner1.sign(digest).data())
        self.assertEqual(blob[65:], self.owner2.sign(digest).data())
        self.assertTrue(
            verify_co_signature(digest, blob, *self.multisig.owners())
        )

    def test_authorize(self):
        signed = authorize(self.transaction, self.owner1, self.owner2)
        self.assertIsNone(self.transaction.custom_data.custom_signature)
        self.assertTrue(
            verify_co_signature(
                signed.signed_digest(),
                signed.custom_data.custom_signature,
                *self.multisig.owners(),
            )
        )

    def test_swapped_order_is_rejected(self):
        blob = co_sign(self.transaction, self.owner2, self.owner1)
        self.assertFalse(
            verify_co_signature(
                self.transaction.signed_digest(), blob, *self.multisig.owners()
            )
        )

    def test_wrong_digest_is_rejected(self):
        blob = co_sign(self.transaction, self.owner1, self.owner2)
        other = self.transaction.with_nonce(1)
        self.assertFalse(
            verify_co_signature(other.signed_digest(), blob, *self.multisig.owners())
        )

    def test_single_signature_is_rejected(self):
        digest = self.transaction.signed_digest()
        self.assertFalse(
            verify_co_signature(
                digest, self.owner1.sign(digest).data(), *self.multisig.owners()
            )
        )
        with self.assertRaises(ValueError):
            split_co_signature(self.owner1.sign(digest).data())

    def test_malformed_signature_is_rejected(self):
        digest = self.transaction.signed_digest()
        valid = self.owner1.sign(digest).data()
        p = SECP256k1.curve.p()
        r = next(x for x in range(1, 1000) if pow(x**3 + 7, (p - 1) // 2, p) == p - 1)
        no_point = r.to_bytes(32, "big") + (1).to_bytes(32, "big") + b"\x1b"

        for blob in (
            valid + no_point,
            no_point + valid,
            valid + bytes(64) + b"\x1b",
            valid + valid[:64] + b"\x05",
            b"\xff" * CO_SIGNATURE_LENGTH,
        ):
            self.assertFalse(verify_co_signature(digest, blob, *self.multisig.owners()))
