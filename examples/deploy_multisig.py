# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Deploy a two-owner multisig account and send its first transaction.

Workflow:
    1. Deploy a multisig through the AAFactory at ``ZKSYNC_AA_FACTORY_ADDRESS``,
       owned by two freshly generated keys
    2. Derive the account address locally and fund it from the rich wallet
    3. Build a transaction *from* the multisig that asks the factory to deploy
       yet another account
    4. Have both owners sign its EIP-712 digest, attach the signatures and
       submit
    5. Check that the multisig's nonce went from 0 to 1

Usage::

    python -m examples.deploy_multisig
"""

import asyncio

from zksync_multisig.account import Account
from zksync_multisig.account_address import AccountAddress
from zksync_multisig.async_client import RpcClient
from zksync_multisig.factory import AAFactory
from zksync_multisig.multisig import ZERO_SALT, co_sign

from .common import AA_FACTORY_ADDRESS, NODE_URL, RICH_WALLET_PK

# 0.0001 ETH
FUNDING_AMOUNT = 10**14


async def main():
    client = RpcClient(NODE_URL)
    wallet = Account.load_key(RICH_WALLET_PK)
    factory = AAFactory(client, AccountAddress.from_str(AA_FACTORY_ADDRESS))

    # The two owners of the multisig
    owner1 = Account.generate()
    owner2 = Account.generate()

    # For the simplicity of the tutorial, we will use zero hash as salt
    multisig_address = await factory.deploy_account(
        wallet, ZERO_SALT, owner1.address(), owner2.address()
    )
    print(f"Multisig deployed on address {multisig_address}")

    await client.wait_for_transaction(
        await client.transfer(wallet, multisig_address, FUNDING_AMOUNT)
    )

    call = factory.populate_deploy_account(
        wallet.address(), Account.generate().address(), Account.generate().address()
    )
    transaction = await client.create_transaction(
        multisig_address, call.to, call.data, estimate_from=wallet.address()
    )

    # Each owner signs the raw digest; message signing would prefix it and the
    # account contract would recover a different address.
    signature = co_sign(transaction, owner1, owner2)
    transaction = transaction.with_custom_signature(signature)

    nonce = await client.transaction_count(multisig_address)
    print(f"The multisig's nonce before the first tx is {nonce}")
    await client.submit_and_wait_for_transaction(transaction)

    # Checking that the nonce for the account has increased
    nonce = await client.transaction_count(multisig_address)
    print(f"The multisig's nonce after the first tx is {nonce}")

    await client.close()


if __name__ == "__main__":
    asyncio.run(main())
