# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line deployment of the AAFactory and of two-owner multisig accounts.

Supported Commands:
- deploy-factory: Deploy an AAFactory for the compiled two-owner account
- deploy-multisig: Deploy a multisig account through an existing factory

Examples:
    Deploy the factory from hardhat-zksync artifacts::

        python -m zksync_multisig.cli deploy-factory \
            --node-url http://localhost:3050 \
            --private-key-path ./wallet_key.txt \
            --artifacts ./artifacts-zk

    Deploy a multisig; without ``--owner`` two owners are generated and their
    keys written to ``--output-dir``::

        python -m zksync_multisig.cli deploy-multisig \
            --node-url http://localhost:3050 \
            --private-key-path ./wallet_key.txt \
            --factory 0xa0eD7885B408961430F89d797cD1cc87530D8fBe \
            --owner 0x... --owner 0x...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import shutil
import sys
import tempfile
import unittest
from typing import List, Optional, Tuple

from eth_utils import decode_hex

from .account import Account
from .account_address import AccountAddress
from .artifacts import ArtifactStore
from .async_client import RpcClient
from .deployer import Deployer
from .factory import AAFactory
from .multisig import ZERO_SALT


async def deploy_factory(
    client: RpcClient,
    signer: Account,
    store: ArtifactStore,
    factory_name: str = "AAFactory",
    account_name: str = "TwoUserMultisig",
) -> AccountAddress:
    """Deploy an AAFactory that deploys ``account_name`` accounts."""
    deployer = Deployer(client, signer, store)
    factory = await AAFactory.deploy(
        deployer, store.load(factory_name), store.load(account_name)
    )
    return factory.address


async def deploy_multisig(
    client: RpcClient,
    signer: Account,
    factory_address: AccountAddress,
    owners: Tuple[AccountAddress, AccountAddress],
    salt: bytes = ZERO_SALT,
) -> AccountAddress:
    """Deploy a multisig owned by ``owners`` through the factory at ``factory_address``."""
    factory = AAFactory(client, factory_address)
    return await factory.deploy_account(signer, salt, owners[0], owners[1])


def salt(indata: str) -> bytes:
    """Parse a 32-byte hex salt."""
    value = decode_hex(indata)
    if len(value) != 32:
        raise argparse.ArgumentTypeError("Salt must be 32 bytes of hex")
    return value


def generate_owners(output_dir: str) -> Tuple[AccountAddress, AccountAddress]:
    """Generate two owners and store their keys as owner1.json and owner2.json."""
    owners = []
    for index in (1, 2):
        owner = Account.generate()
        owner.store(os.path.join(output_dir, f"owner{index}.json"))
        owners.append(owner.address())
    return (owners[0], owners[1])


async def main(args: List[str], client: Optional[RpcClient] = None):
    parser = argparse.ArgumentParser(description="zkSync multisig deployment CLI")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["deploy-factory", "deploy-multisig"],
    )
    parser.add_argument("--node-url", help="zkSync JSON-RPC endpoint", type=str)
    parser.add_argument(
        "--private-key-path",
        help="Path to file containing the paying wallet's private key",
        type=str,
    )
    parser.add_argument(
        "--artifacts",
        help="hardhat-zksync artifacts directory",
        type=str,
        default=os.getenv("ZKSYNC_ARTIFACTS_PATH", "./artifacts-zk"),
    )
    parser.add_argument("--factory-artifact", type=str, default="AAFactory")
    parser.add_argument("--account-artifact", type=str, default="TwoUserMultisig")
    parser.add_argument(
        "--factory", help="Address of a deployed AAFactory", type=AccountAddress.from_str
    )
    parser.add_argument(
        "--owner",
        help="Owner address, given twice in signing order",
        type=AccountAddress.from_str,
        action="append",
        default=[],
    )
    parser.add_argument("--salt", type=salt, default=ZERO_SALT)
    parser.add_argument(
        "--output-dir", help="Where generated owner keys are written", default="."
    )
    parsed_args = parser.parse_args(args)

    if client is None and parsed_args.node_url is None:
        parser.error("Missing required argument '--node-url'")
    if parsed_args.private_key_path is None:
        parser.error("Missing required argument '--private-key-path'")
    if parsed_args.command == "deploy-multisig":
        if parsed_args.factory is None:
            parser.error("Missing required argument '--factory'")
        if len(parsed_args.owner) not in (0, 2):
            parser.error("Expected '--owner' exactly twice or not at all")

    try:
        with open(parsed_args.private_key_path) as f:
            signer = Account.load_key(f.read().strip())
    except FileNotFoundError:
        parser.error(f"Private key file not found: {parsed_args.private_key_path}")

    if client is None:
        client = RpcClient(parsed_args.node_url)
    try:
        if parsed_args.command == "deploy-factory":
            address = await deploy_factory(
                client,
                signer,
                ArtifactStore(parsed_args.artifacts),
                parsed_args.factory_artifact,
                parsed_args.account_artifact,
            )
            print(f"AA factory address: {address}")
        else:
            if parsed_args.owner:
                owners = (parsed_args.owner[0], parsed_args.owner[1])
            else:
                owners = generate_owners(parsed_args.output_dir)
            address = await deploy_multisig(
                client, signer, parsed_args.factory, owners, parsed_args.salt
            )
            print(f"Multisig deployed on address {address}")
    finally:
        await client.close()
    return address


def run():
    asyncio.run(main(sys.argv[1:]))


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.root = tempfile.mkdtemp()
        from .local_node import LocalNode

        self.node = LocalNode()
        self.wallet = Account.generate()
        self.node.fund(self.wallet.address(), 10**18)
        self.key_path = os.path.join(self.root, "key.txt")
        with open(self.key_path, "w") as f:
            f.write(self.wallet.private_key.hex())

        artifacts = os.path.join(self.root, "artifacts-zk")
        for name, bytecode in (("AAFactory", "02" * 160), ("TwoUserMultisig", "01" * 96)):
            directory = os.path.join(artifacts, "contracts", f"{name}.sol")
            os.makedirs(directory)
            with open(os.path.join(directory, f"{name}.json"), "w") as f:
                json.dump({"contractName": name, "abi": [], "bytecode": "0x" + bytecode}, f)
        self.artifacts = artifacts

    def tearDown(self):
        shutil.rmtree(self.root)

    async def run_cli(self, args: List[str]) -> AccountAddress:
        client = self.node.client()
        try:
            return await main(args + ["--private-key-path", self.key_path], client=client)
        finally:
            await client.close()

    async def test_deploy_factory_and_multisig(self):
        factory = await self.run_cli(["deploy-factory", "--artifacts", self.artifacts])
        self.assertEqual(factory, AccountAddress.for_create(self.wallet.address(), 0))

        owner1 = AccountAddress(b"\x01" * 20)
        owner2 = AccountAddress(b"\x02" * 20)
        multisig = await self.run_cli(
            [
                "deploy-multisig",
                "--factory",
                str(factory),
                "--owner",
                str(owner1),
                "--owner",
                str(owner2),
            ]
        )
        self.assertEqual(self.node.contracts[multisig].owners, (owner1, owner2))

    async def test_generated_owners(self):
        factory = await self.run_cli(["deploy-factory", "--artifacts", self.artifacts])
        multisig = await self.run_cli(
            ["deploy-multisig", "--factory", str(factory), "--output-dir", self.root]
        )
        owner1 = Account.load(os.path.join(self.root, "owner1.json"))
        owner2 = Account.load(os.path.join(self.root, "owner2.json"))
        self.assertEqual(
            self.node.contracts[multisig].owners, (owner1.address(), owner2.address())
        )

    async def test_missing_arguments(self):
        with self.assertRaises(SystemExit):
            await self.run_cli(["deploy-multisig"])
        with self.assertRaises(SystemExit):
            await self.run_cli(
                [
                    "deploy-multisig",
                    "--factory",
                    str(AccountAddress(b"\x01" * 20)),
                    "--owner",
                    str(AccountAddress(b"\x02" * 20)),
                ]
            )

    def test_salt(self):
        self.assertEqual(salt("0x" + "00" * 32), ZERO_SALT)
        with self.assertRaises(argparse.ArgumentTypeError):
            salt("0x00")


if __name__ == "__main__":
    run()
