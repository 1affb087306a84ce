# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Typed client for the AAFactory contract.

The factory stores the bytecode hash of the two-owner account and deploys new
accounts at ``CREATE2`` addresses derived from its own address, that hash, a
salt and the owners. Because the address is a pure function of those inputs,
:meth:`AAFactory.deploy_account` returns it without reading any event.
"""

import logging
import unittest
from typing import Optional

from eth_utils import to_int

from .account import Account
from .account_address import AccountAddress
from .artifacts import Artifact
from .async_client import ClientConfig, RpcClient, TransactionFailed
from .bytecode import hash_bytecode
from .contract import AA_BYTECODE_HASH, DeployAccount
from .deployer import Deployer
from .multisig import ZERO_SALT, MultisigAccount, authorize
from .transactions import Transaction


class AAFactory:
    client: RpcClient
    address: AccountAddress
    _aa_bytecode_hash: Optional[bytes]

    def __init__(self, client: RpcClient, address: AccountAddress):
        self.client = client
        self.address = address
        self._aa_bytecode_hash = None

    @staticmethod
    async def deploy(
        deployer: Deployer, factory_artifact: Artifact, account_artifact: Artifact
    ) -> "AAFactory":
        """Deploy a factory for ``account_artifact`` and return a client for it."""
        bytecode_hash = hash_bytecode(account_artifact.bytecode)
        address = await deployer.deploy(
            factory_artifact,
            ["bytes32"],
            [bytecode_hash],
            [account_artifact.bytecode],
        )
        return AAFactory(deployer.client, address)

    async def aa_bytecode_hash(self) -> bytes:
        """The account bytecode hash, read once from the contract."""
        if self._aa_bytecode_hash is None:
            data = await self.client.call(self.address, AA_BYTECODE_HASH.encode_call())
            (self._aa_bytecode_hash,) = AA_BYTECODE_HASH.decode_output(data)
        return self._aa_bytecode_hash

    async def multisig(
        self,
        owner1: AccountAddress,
        owner2: AccountAddress,
        salt: bytes = ZERO_SALT,
    ) -> MultisigAccount:
        """Describe the account this factory deploys for ``owner1`` and ``owner2``."""
        return MultisigAccount(
            self.address, owner1, owner2, await self.aa_bytecode_hash(), salt
        )

    def populate_deploy_account(
        self,
        sender: AccountAddress,
        owner1: AccountAddress,
        owner2: AccountAddress,
        salt: bytes = ZERO_SALT,
    ) -> Transaction:
        """The bare ``deployAccount`` call, without fees, nonce or chain id."""
        return Transaction(
            sender=sender,
            to=self.address,
            data=DeployAccount(salt, owner1, owner2).encode(),
        )

    async def deploy_account(
        self,
        wallet: Account,
        salt: bytes,
        owner1: AccountAddress,
        owner2: AccountAddress,
    ) -> AccountAddress:
        """
        Deploy a two-owner account paid for by ``wallet``.

        :return: The account address, derived locally.
        :raises TransactionFailed: If the factory reverts, e.g. the account exists.
        """
        call = self.populate_deploy_account(wallet.address(), owner1, owner2, salt)
        tx_hash = await self.client.send_transaction(wallet, call.to, call.data)
        await self.client.wait_for_transaction(tx_hash)
        address = (await self.multisig(owner1, owner2, salt)).address()
        logging.info(f"deployed multisig {address} owned by {owner1} and {owner2}")
        return address


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        from .local_node import LocalNode

        self.node = LocalNode()
        self.client = self.node.client(ClientConfig(poll_interval=0))
        self.wallet = Account.generate()
        self.node.fund(self.wallet.address(), 10**18)
        self.account_artifact = Artifact("TwoUserMultisig", [], b"\x01" * 32 * 3)
        self.factory = await AAFactory.deploy(
            Deployer(self.client, self.wallet),
            Artifact("AAFactory", [], b"\x02" * 32 * 5),
            self.account_artifact,
        )
        self.owner1 = Account.generate()
        self.owner2 = Account.generate()

    async def asyncTearDown(self):
        await self.client.close()

    async def test_aa_bytecode_hash(self):
        self.assertEqual(
            await self.factory.aa_bytecode_hash(),
            hash_bytecode(self.account_artifact.bytecode),
        )

    async def test_deploy_account(self):
        address = await self.factory.deploy_account(
            self.wallet, ZERO_SALT, self.owner1.address(), self.owner2.address()
        )
        # Deriving again gives the same address.
        multisig = await self.factory.multisig(self.owner1.address(), self.owner2.address())
        self.assertEqual(address, multisig.address())
        self.assertEqual(await self.client.code(address), self.account_artifact.bytecode)

        with self.assertRaises(TransactionFailed):
            await self.factory.deploy_account(
                self.wallet, ZERO_SALT, self.owner1.address(), self.owner2.address()
            )

    async def test_funds_sent_before_deployment(self):
        multisig = await self.factory.multisig(self.owner1.address(), self.owner2.address())
        await self.client.wait_for_transaction(
            await self.client.transfer(self.wallet, multisig.address(), 1_000)
        )
        address = await self.factory.deploy_account(
            self.wallet, ZERO_SALT, self.owner1.address(), self.owner2.address()
        )
        self.assertEqual(await self.client.balance(address), 1_000)

    async def test_multisig_calls_factory(self):
        address = await self.factory.deploy_account(
            self.wallet, ZERO_SALT, self.owner1.address(), self.owner2.address()
        )
        amount = 8 * 10**15
        await self.client.wait_for_transaction(
            await self.client.transfer(self.wallet, address, amount)
        )
        self.assertEqual(await self.client.balance(address), amount)

        call = self.factory.populate_deploy_account(
            self.wallet.address(),
            Account.generate().address(),
            Account.generate().address(),
        )
        transaction = await self.client.create_transaction(
            address, call.to, call.data, estimate_from=self.wallet.address()
        )
        self.assertEqual(transaction.nonce, 0)

        receipt = await self.client.submit_and_wait_for_transaction(
            authorize(transaction, self.owner1, self.owner2)
        )
        self.assertEqual(receipt["status"], "0x1")
        self.assertEqual(await self.client.transaction_count(address), 1)
        fee = to_int(hexstr=receipt["gasUsed"]) * self.node.gas_price
        self.assertEqual(
            await self.client.balance(address), amount - transaction.value - fee
        )
