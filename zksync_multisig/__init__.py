# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
zksync-multisig: two-owner multisig smart-contract accounts on zkSync Era.

zkSync Era has native account abstraction: an account can be a contract that
decides for itself whether a transaction is authorized. This package deploys
and drives one such account, owned by two secp256k1 keys that must both sign
every transaction it sends.

Modules:
- **account_address**, **bytecode**: address derivation (``CREATE``,
  ``CREATE2``) and versioned bytecode hashes
- **secp256k1_ecdsa**, **account**: owner keys and single-key accounts
- **transactions**: immutable EIP-712 transactions, their digest and envelope
- **multisig**: account descriptor and the two-owner co-signature
- **contract**, **factory**, **deployer**, **artifacts**: contract interfaces,
  the AAFactory client and contract deployment
- **async_client**: JSON-RPC client for assembling, submitting and confirming
  transactions
- **local_node**: in-memory node used by the tests
- **cli**: command-line deployment

Quick Start:
    Deploy a multisig and send its first co-signed transaction::

        import asyncio
        from zksync_multisig.account import Account
        from zksync_multisig.async_client import RpcClient
        from zksync_multisig.factory import AAFactory
        from zksync_multisig.multisig import ZERO_SALT, authorize

        async def run(factory_address, wallet):
            client = RpcClient("http://localhost:3050")
            factory = AAFactory(client, factory_address)
            owner1, owner2 = Account.generate(), Account.generate()

            multisig = await factory.deploy_account(
                wallet, ZERO_SALT, owner1.address(), owner2.address()
            )
            await client.wait_for_transaction(
                await client.transfer(wallet, multisig, 8 * 10**15)
            )

            call = factory.populate_deploy_account(
                wallet.address(), Account.generate().address(), Account.generate().address()
            )
            tx = await client.create_transaction(
                multisig, call.to, call.data, estimate_from=wallet.address()
            )
            await client.submit_and_wait_for_transaction(authorize(tx, owner1, owner2))
            await client.close()
"""
