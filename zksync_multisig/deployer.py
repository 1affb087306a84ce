# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Deploys compiled contracts through the ContractDeployer system contract.

On zkSync a contract is not deployed by sending its bytecode as calldata.
The bytecode is published as a factory dependency of the transaction and the
ContractDeployer at ``0x…8006`` is asked to ``create`` a contract from its
hash. The new address is announced by a ``ContractDeployed`` event.
"""

import logging
import unittest
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode
from eth_utils import decode_hex

from .account import Account
from .account_address import AccountAddress
from .artifacts import Artifact, ArtifactStore
from .async_client import RpcClient, TransactionFailed
from .bytecode import hash_bytecode
from .contract import (
    CONTRACT_DEPLOYED,
    CONTRACT_DEPLOYER_ADDRESS,
    Create,
    encode_arguments,
)

ZERO_SALT: bytes = bytes(32)


def deployed_address(receipt: Dict[str, Any], bytecode_hash: bytes) -> AccountAddress:
    """Address of the contract with ``bytecode_hash`` deployed by the transaction.

    Raises:
        ValueError: If the receipt has no matching ``ContractDeployed`` event.
    """
    for log in receipt.get("logs", []):
        topics = [decode_hex(topic) for topic in log["topics"]]
        if AccountAddress.from_str(log["address"]) != CONTRACT_DEPLOYER_ADDRESS:
            continue
        if not topics or topics[0] != CONTRACT_DEPLOYED.topic():
            continue
        (_, deployed_hash, address) = CONTRACT_DEPLOYED.decode_topics(topics)
        if deployed_hash == bytecode_hash:
            return address
    raise ValueError(f"No ContractDeployed event in {receipt.get('transactionHash')}")


class Deployer:
    """Deploys artifacts, paying from ``wallet``."""

    client: RpcClient
    wallet: Account
    store: Optional[ArtifactStore]

    def __init__(
        self, client: RpcClient, wallet: Account, store: Optional[ArtifactStore] = None
    ):
        self.client = client
        self.wallet = wallet
        self.store = store

    def factory_deps(
        self, artifact: Artifact, extra_factory_deps: Optional[Sequence[bytes]] = None
    ) -> List[bytes]:
        """Extra dependencies, the artifact's own dependencies, then its bytecode."""
        deps = list(extra_factory_deps or [])
        if self.store is not None:
            deps.extend(self.store.factory_deps(artifact))
        deps.append(artifact.bytecode)
        # Every bytecode is published once.
        unique: Dict[bytes, bytes] = {}
        for dep in deps:
            unique.setdefault(hash_bytecode(dep), dep)
        return list(unique.values())

    async def deploy(
        self,
        artifact: Artifact,
        constructor_types: Sequence[str] = (),
        constructor_args: Sequence[Any] = (),
        extra_factory_deps: Optional[Sequence[bytes]] = None,
        salt: bytes = ZERO_SALT,
    ) -> AccountAddress:
        """
        Deploy ``artifact`` and return its address once the deployment is mined.

        :param artifact: The compiled contract.
        :param constructor_types: ABI types of the constructor arguments.
        :param constructor_args: Constructor arguments.
        :param extra_factory_deps: Bytecodes the contract deploys later, e.g. the
            account bytecode of a factory.
        :param salt: Passed to ``create``; ignored by the ``CREATE`` rule.
        :raises TransactionFailed: If the deployment reverts.
        """
        request = Create(
            salt,
            artifact.bytecode_hash(),
            encode_arguments(constructor_types, constructor_args),
        )
        tx_hash = await self.client.send_transaction(
            self.wallet,
            CONTRACT_DEPLOYER_ADDRESS,
            request.encode(),
            factory_deps=self.factory_deps(artifact, extra_factory_deps),
        )
        receipt = await self.client.wait_for_transaction(tx_hash)
        address = deployed_address(receipt, request.bytecode_hash)
        logging.info(f"deployed {artifact.contract_name} at {address}")
        return address


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        from .local_node import LocalNode

        self.node = LocalNode()
        self.client = self.node.client()
        self.wallet = Account.generate()
        self.node.fund(self.wallet.address(), 10**18)
        self.account_bytecode = b"\x01" * 32 * 3
        self.factory = Artifact("AAFactory", [], b"\x02" * 32 * 5)

    async def asyncTearDown(self):
        await self.client.close()

    def test_factory_deps(self):
        deployer = Deployer(self.client, self.wallet)
        self.assertEqual(
            deployer.factory_deps(
                self.factory, [self.account_bytecode, self.factory.bytecode]
            ),
            [self.account_bytecode, self.factory.bytecode],
        )

    async def test_deploy(self):
        deployer = Deployer(self.client, self.wallet)
        account_hash = hash_bytecode(self.account_bytecode)
        address = await deployer.deploy(
            self.factory, ["bytes32"], [account_hash], [self.account_bytecode]
        )
        self.assertEqual(address, AccountAddress.for_create(self.wallet.address(), 0))
        self.assertEqual(await self.client.code(address), self.factory.bytecode)
        self.assertEqual(
            self.node.contracts[address].constructor_input,
            encode(["bytes32"], [account_hash]),
        )

        second = await deployer.deploy(self.factory, ["bytes32"], [account_hash])
        self.assertEqual(second, AccountAddress.for_create(self.wallet.address(), 1))

    async def test_deploy_reverted(self):
        from .local_node import Contract

        occupied = AccountAddress.for_create(self.wallet.address(), 0)
        self.node.contracts[occupied] = Contract(bytes(32), b"")
        with self.assertRaises(TransactionFailed):
            await Deployer(self.client, self.wallet).deploy(self.factory)

    def test_deployed_address_missing(self):
        with self.assertRaises(ValueError):
            deployed_address({"transactionHash": "0x00", "logs": []}, bytes(32))
