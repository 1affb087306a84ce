# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Runs the full multisig flow against a live node.

Needs a running local-setup node and compiled ``AAFactory`` and
``TwoUserMultisig`` artifacts; skipped unless ``ZKSYNC_INTEGRATION`` is set::

    ZKSYNC_INTEGRATION=1 python -m unittest examples.integration_test
"""

import os
import unittest

from zksync_multisig.account import Account
from zksync_multisig.artifacts import ArtifactStore
from zksync_multisig.async_client import RpcClient
from zksync_multisig.deployer import Deployer
from zksync_multisig.factory import AAFactory
from zksync_multisig.multisig import ZERO_SALT, authorize, verify_co_signature

from .common import ARTIFACTS_PATH, NODE_URL, RICH_WALLET_PK, log_cyan

# 0.008 ETH
SEND_AMOUNT = 8 * 10**15


@unittest.skipUnless(os.getenv("ZKSYNC_INTEGRATION"), "needs a running zkSync node")
class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RpcClient(NODE_URL)
        self.wallet = Account.load_key(RICH_WALLET_PK)
        self.store = ArtifactStore(ARTIFACTS_PATH)
        self.owner1 = Account.generate()
        self.owner2 = Account.generate()

    async def asyncTearDown(self):
        await self.client.close()

    async def test_factory_multisig(self):
        log_cyan("Deploying AA factory")
        factory = await AAFactory.deploy(
            Deployer(self.client, self.wallet, self.store),
            self.store.load("AAFactory"),
            self.store.load("TwoUserMultisig"),
        )
        log_cyan(f"AA factory address: {factory.address}")

        # deploy account owned by owner1 & owner2
        multisig_address = await factory.deploy_account(
            self.wallet, ZERO_SALT, self.owner1.address(), self.owner2.address()
        )
        multisig = await factory.multisig(self.owner1.address(), self.owner2.address())
        self.assertEqual(multisig_address, multisig.address())
        log_cyan(f"Multisig account address {multisig_address}")

        log_cyan("Sending funds to multisig account")
        await self.client.wait_for_transaction(
            await self.client.transfer(self.wallet, multisig_address, SEND_AMOUNT)
        )
        balance = await self.client.balance(multisig_address)
        self.assertEqual(balance, SEND_AMOUNT)
        log_cyan(f"Multisig account balance is {balance}")

        # Transaction to deploy a new account to the multisig we just deployed
        call = factory.populate_deploy_account(
            self.wallet.address(),
            Account.generate().address(),
            Account.generate().address(),
        )
        transaction = await self.client.create_transaction(
            multisig_address, call.to, call.data, estimate_from=self.wallet.address()
        )
        signed = authorize(transaction, self.owner1, self.owner2)
        self.assertTrue(
            verify_co_signature(
                signed.signed_digest(),
                signed.custom_data.custom_signature,
                *multisig.owners(),
            )
        )

        nonce = await self.client.transaction_count(multisig_address)
        log_cyan(f"The multisig's nonce before the first tx is {nonce}")
        self.assertEqual(nonce, 0)
        await self.client.submit_and_wait_for_transaction(signed)

        nonce = await self.client.transaction_count(multisig_address)
        log_cyan(f"The multisig's nonce after the first tx is {nonce}")
        self.assertEqual(nonce, 1)

        balance = await self.client.balance(multisig_address)
        log_cyan(f"Multisig account balance is now {balance}")
        self.assertLess(balance, SEND_AMOUNT)


if __name__ == "__main__":
    unittest.main()
