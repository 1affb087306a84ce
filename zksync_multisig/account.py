# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
import os
import tempfile
import unittest

from . import secp256k1_ecdsa
from .account_address import AccountAddress
from .transactions import Transaction


class Account:
    """An externally-owned account: a secp256k1 key and the address it controls.

    Accounts play two roles here. A funded account (the "rich wallet") pays for
    deployments and sends ordinary transactions, signing each EIP-712 digest with
    its single key. The two owners of a multisig are also plain accounts; they
    never send transactions themselves but sign digests of transactions that
    are sent *from* the multisig (see :mod:`zksync_multisig.multisig`).

    Examples:
        Create and persist::

            owner = Account.generate()
            owner.store("./owner1.json")
            assert Account.load("./owner1.json") == owner

        Send a transaction from this account::

            tx = await client.create_transaction(wallet.address(), to, data)
            tx_hash = await client.submit_transaction(wallet.sign_transaction(tx))
    """

    account_address: AccountAddress
    private_key: secp256k1_ecdsa.PrivateKey

    def __init__(
        self, account_address: AccountAddress, private_key: secp256k1_ecdsa.PrivateKey
    ):
        self.account_address = account_address
        self.private_key = private_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return (
            self.account_address == other.account_address
            and self.private_key == other.private_key
        )

    @staticmethod
    def generate() -> Account:
        """Generate a new account with a random secp256k1 key."""
        private_key = secp256k1_ecdsa.PrivateKey.random()
        account_address = AccountAddress.from_key(private_key.public_key())
        return Account(account_address, private_key)

    @staticmethod
    def load_key(key: str) -> Account:
        """Create an account from a hex-encoded private key, with or without ``0x``."""
        private_key = secp256k1_ecdsa.PrivateKey.from_str(key)
        account_address = AccountAddress.from_key(private_key.public_key())
        return Account(account_address, private_key)

    @staticmethod
    def load(path: str) -> Account:
        """Load an account stored by :meth:`store`."""
        with open(path) as file:
            data = json.load(file)
        return Account(
            AccountAddress.from_str(data["account_address"]),
            secp256k1_ecdsa.PrivateKey.from_str(data["private_key"]),
        )

    def store(self, path: str):
        """Write the address and private key to ``path`` as JSON."""
        data = {
            "account_address": str(self.account_address),
            "private_key": self.private_key.hex(),
        }
        with open(path, "w") as file:
            json.dump(data, file)

    def address(self) -> AccountAddress:
        return self.account_address

    def sign(self, digest: bytes) -> secp256k1_ecdsa.Signature:
        """Sign a raw 32-byte digest; no message prefix is applied."""
        return self.private_key.sign_digest(digest)

    def sign_transaction(self, transaction: Transaction) -> Transaction:
        """Return ``transaction`` carrying this account's signature over its digest.

        Raises:
            ValueError: If the transaction is not sent from this account.
        """
        if transaction.sender != self.account_address:
            raise ValueError(
                f"Transaction sender {transaction.sender} is not {self.account_address}"
            )
        signature = self.sign(transaction.signed_digest())
        return transaction.with_custom_signature(signature.data())

    def public_key(self) -> secp256k1_ecdsa.PublicKey:
        return self.private_key.public_key()


class Test(unittest.TestCase):
    def test_load_and_store(self):
        (file, path) = tempfile.mkstemp()
        os.close(file)
        try:
            start = Account.generate()
            start.store(path)
            load = Account.load(path)
        finally:
            os.remove(path)

        self.assertEqual(start, load)

    def test_load_key(self):
        account = Account.load_key(
            "0x0000000000000000000000000000000000000000000000000000000000000001"
        )
        self.assertEqual(
            str(account.address()), "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
        )

    def test_sign(self):
        digest = bytes(range(32))
        account = Account.generate()
        signature = account.sign(digest)
        self.assertTrue(account.public_key().verify_digest(digest, signature))

    def test_sign_transaction(self):
        account = Account.generate()
        transaction = Transaction(
            sender=account.address(),
            to=AccountAddress(b"\x01" * 20),
            value=1,
            chain_id=270,
        )
        signed = account.sign_transaction(transaction)
        signature = secp256k1_ecdsa.Signature(signed.custom_data.custom_signature)
        self.assertEqual(
            AccountAddress.from_key(signature.recover(transaction.signed_digest())),
            account.address(),
        )

        with self.assertRaises(ValueError):
            Account.generate().sign_transaction(transaction)
