# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Loader for contracts compiled by hardhat-zksync (``zksolc``).

The compiler writes one JSON file per contract under the artifacts directory,
``artifacts-zk/contracts/<Source>.sol/<Name>.json`` by default. Each holds the
ABI, the bytecode and a ``factoryDeps`` map from bytecode hash to the
fully-qualified name (``path:Name``) of every contract the bytecode deploys.
A contract that deploys others can only be deployed together with their
bytecode, so :meth:`ArtifactStore.factory_deps` resolves that map recursively.
"""

import glob
import json
import os
import shutil
import tempfile
import unittest
from dataclasses import dataclass, field
from typing import Any, Dict, List

from eth_utils import decode_hex

from .bytecode import hash_bytecode
from .contract import ContractFunction


@dataclass(frozen=True)
class Artifact:
    contract_name: str
    abi: List[Dict[str, Any]]
    bytecode: bytes
    factory_deps: Dict[str, str] = field(default_factory=dict)
    source_name: str = ""

    def bytecode_hash(self) -> bytes:
        return hash_bytecode(self.bytecode)

    def function(self, name: str) -> ContractFunction:
        """The ABI entry named ``name`` as a :class:`ContractFunction`.

        Raises:
            KeyError: If the contract has no such function.
        """
        for entry in self.abi:
            if entry.get("type") == "function" and entry.get("name") == name:
                return ContractFunction.from_abi(entry)
        raise KeyError(f"{self.contract_name} has no function {name}")

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Artifact":
        return Artifact(
            contract_name=data["contractName"],
            abi=data["abi"],
            bytecode=decode_hex(data["bytecode"]),
            factory_deps=data.get("factoryDeps", {}),
            source_name=data.get("sourceName", ""),
        )


class ArtifactStore:
    """Finds compiled contracts by name below a root directory."""

    root: str

    def __init__(self, root: str):
        self.root = root

    def path(self, name: str) -> str:
        """Locate the artifact of ``name`` (``Name`` or ``path/Source.sol:Name``).

        Raises:
            FileNotFoundError: If no artifact matches.
            ValueError: If the bare name matches more than one artifact.
        """
        if ":" in name:
            (source, contract_name) = name.rsplit(":", 1)
            pattern = os.path.join(self.root, "**", source, f"{contract_name}.json")
        else:
            pattern = os.path.join(self.root, "**", f"{name}.json")

        matches = sorted(glob.glob(pattern, recursive=True))
        if not matches:
            raise FileNotFoundError(f"No artifact for {name} under {self.root}")
        if len(matches) > 1:
            raise ValueError(
                f"{name} is ambiguous, use the fully-qualified name: {matches}"
            )
        return matches[0]

    def load(self, name: str) -> Artifact:
        with open(self.path(name)) as file:
            return Artifact.from_json(json.load(file))

    def factory_deps(self, artifact: Artifact) -> List[bytes]:
        """Bytecodes of every contract ``artifact`` deploys, transitively."""
        deps: Dict[bytes, bytes] = {}
        pending = list(artifact.factory_deps.values())
        while pending:
            dependency = self.load(pending.pop())
            dependency_hash = dependency.bytecode_hash()
            if dependency_hash in deps:
                continue
            deps[dependency_hash] = dependency.bytecode
            pending.extend(dependency.factory_deps.values())
        return list(deps.values())


class Test(unittest.TestCase):
    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.account = {
            "contractName": "TwoUserMultisig",
            "sourceName": "contracts/TwoUserMultisig.sol",
            "abi": [],
            "bytecode": "0x" + "01" * 96,
            "factoryDeps": {},
        }
        self.factory = {
            "contractName": "AAFactory",
            "sourceName": "contracts/AAFactory.sol",
            "abi": [
                {
                    "type": "function",
                    "name": "aaBytecodeHash",
                    "inputs": [],
                    "outputs": [{"name": "", "type": "bytes32"}],
                },
                {"type": "constructor", "inputs": [{"name": "_aaBytecodeHash", "type": "bytes32"}]},
            ],
            "bytecode": "0x" + "02" * 160,
            "factoryDeps": {
                "0x" + hash_bytecode(b"\x01" * 96).hex(): "contracts/TwoUserMultisig.sol:TwoUserMultisig"
            },
        }
        for artifact in (self.account, self.factory):
            directory = os.path.join(self.root, artifact["sourceName"])
            os.makedirs(directory)
            with open(os.path.join(directory, f"{artifact['contractName']}.json"), "w") as file:
                json.dump(artifact, file)

    def tearDown(self):
        shutil.rmtree(self.root)

    def test_load(self):
        store = ArtifactStore(self.root)
        factory = store.load("AAFactory")
        self.assertEqual(factory.contract_name, "AAFactory")
        self.assertEqual(factory.bytecode, b"\x02" * 160)
        self.assertEqual(factory.function("aaBytecodeHash").output_types, ("bytes32",))
        with self.assertRaises(KeyError):
            factory.function("deployAccount")

        qualified = store.load("contracts/AAFactory.sol:AAFactory")
        self.assertEqual(qualified, factory)

    def test_missing(self):
        with self.assertRaises(FileNotFoundError):
            ArtifactStore(self.root).load("Greeter")

    def test_factory_deps(self):
        store = ArtifactStore(self.root)
        self.assertEqual(store.factory_deps(store.load("AAFactory")), [b"\x01" * 96])
        self.assertEqual(store.factory_deps(store.load("TwoUserMultisig")), [])
