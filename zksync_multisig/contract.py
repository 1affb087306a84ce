# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Statically described contract interfaces.

Instead of binding an ABI at runtime and calling methods by name, each
contract function the SDK uses is declared once as a :class:`ContractFunction`
with fixed argument and return types. Requests are typed dataclasses that know
how to encode themselves with the function's selector, so an unknown method or
a wrong argument count fails at the call site rather than on the node.

Addresses cross the boundary as :class:`AccountAddress` in both directions.

Examples:
    Declare and use a function::

        BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))

        calldata = BALANCE_OF.encode_call(owner)
        (balance,) = BALANCE_OF.decode_output(await client.call(token, calldata))
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import keccak

from .account_address import AccountAddress

CONTRACT_DEPLOYER_ADDRESS = AccountAddress.from_str(
    "0x0000000000000000000000000000000000008006"
)


def _to_abi(value: Any) -> Any:
    if isinstance(value, AccountAddress):
        return str(value)
    return value


def _from_abi(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return AccountAddress.from_str(value)
    return value


def encode_arguments(types: Sequence[str], args: Sequence[Any]) -> bytes:
    """ABI-encode ``args`` as ``types``, accepting :class:`AccountAddress` for addresses."""
    return encode(list(types), [_to_abi(arg) for arg in args])


@dataclass(frozen=True)
class ContractFunction:
    """A contract function with a fixed signature."""

    name: str
    input_types: Tuple[str, ...]
    output_types: Tuple[str, ...] = ()

    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    def selector(self) -> bytes:
        return keccak(text=self.signature())[:4]

    def encode_call(self, *args: Any) -> bytes:
        """Selector followed by the ABI-encoded arguments.

        Raises:
            ValueError: If the number of arguments does not match the signature.
        """
        if len(args) != len(self.input_types):
            raise ValueError(
                f"{self.signature()} takes {len(self.input_types)} arguments, got {len(args)}"
            )
        return self.selector() + encode_arguments(self.input_types, args)

    def decode_output(self, data: bytes) -> Tuple[Any, ...]:
        values = decode(list(self.output_types), data)
        return tuple(
            _from_abi(abi_type, value)
            for abi_type, value in zip(self.output_types, values)
        )

    def decode_input(self, calldata: bytes) -> Tuple[Any, ...]:
        """Decode calldata produced by :meth:`encode_call`.

        Raises:
            ValueError: If the selector does not belong to this function.
        """
        if calldata[:4] != self.selector():
            raise ValueError(f"Calldata is not a call to {self.signature()}")
        values = decode(list(self.input_types), calldata[4:])
        return tuple(
            _from_abi(abi_type, value)
            for abi_type, value in zip(self.input_types, values)
        )

    @staticmethod
    def from_abi(entry: Dict[str, Any]) -> ContractFunction:
        """Build a function from a JSON ABI entry of type ``function``."""
        return ContractFunction(
            entry["name"],
            tuple(param["type"] for param in entry.get("inputs", [])),
            tuple(param["type"] for param in entry.get("outputs", [])),
        )


@dataclass(frozen=True)
class ContractEvent:
    """An event with a fixed signature; every parameter is assumed indexed."""

    name: str
    input_types: Tuple[str, ...]

    def topic(self) -> bytes:
        return keccak(text=f"{self.name}({','.join(self.input_types)})")

    def decode_topics(self, topics: List[bytes]) -> Tuple[Any, ...]:
        """Decode the indexed parameters of a log.

        Raises:
            ValueError: If the log was emitted by a different event.
        """
        if len(topics) != len(self.input_types) + 1 or topics[0] != self.topic():
            raise ValueError(f"Log is not a {self.name} event")
        return tuple(
            _from_abi(abi_type, decode([abi_type], topic)[0])
            for abi_type, topic in zip(self.input_types, topics[1:])
        )


#
# ContractDeployer system contract
#

CREATE = ContractFunction("create", ("bytes32", "bytes32", "bytes"), ("address",))
CONTRACT_DEPLOYED = ContractEvent("ContractDeployed", ("address", "bytes32", "address"))


@dataclass(frozen=True)
class Create:
    """Request to deploy a contract whose bytecode is known by hash."""

    FUNCTION: ClassVar[ContractFunction] = CREATE

    salt: bytes
    bytecode_hash: bytes
    constructor_input: bytes

    def encode(self) -> bytes:
        return self.FUNCTION.encode_call(
            self.salt, self.bytecode_hash, self.constructor_input
        )


#
# AAFactory
#

DEPLOY_ACCOUNT = ContractFunction(
    "deployAccount", ("bytes32", "address", "address"), ("address",)
)
AA_BYTECODE_HASH = ContractFunction("aaBytecodeHash", (), ("bytes32",))


@dataclass(frozen=True)
class DeployAccount:
    """Request to deploy a two-owner account through an AAFactory."""

    FUNCTION: ClassVar[ContractFunction] = DEPLOY_ACCOUNT

    salt: bytes
    owner1: AccountAddress
    owner2: AccountAddress

    def encode(self) -> bytes:
        return self.FUNCTION.encode_call(self.salt, self.owner1, self.owner2)

    @staticmethod
    def decode(calldata: bytes) -> DeployAccount:
        (salt, owner1, owner2) = DEPLOY_ACCOUNT.decode_input(calldata)
        return DeployAccount(salt, owner1, owner2)


class Test(unittest.TestCase):
    def test_selector(self):
        transfer = ContractFunction("transfer", ("address", "uint256"), ("bool",))
        self.assertEqual(transfer.signature(), "transfer(address,uint256)")
        self.assertEqual(transfer.selector().hex(), "a9059cbb")

    def test_encode_and_decode_call(self):
        transfer = ContractFunction("transfer", ("address", "uint256"), ("bool",))
        recipient = AccountAddress(b"\x42" * 20)
        calldata = transfer.encode_call(recipient, 7)
        self.assertEqual(len(calldata), 4 + 64)
        self.assertEqual(transfer.decode_input(calldata), (recipient, 7))

        with self.assertRaises(ValueError):
            transfer.encode_call(recipient)
        with self.assertRaises(ValueError):
            CREATE.decode_input(calldata)

    def test_decode_output(self):
        function = ContractFunction("owner", (), ("address",))
        owner = AccountAddress(b"\x42" * 20)
        self.assertEqual(function.decode_output(encode(["address"], [str(owner)])), (owner,))

    def test_from_abi(self):
        entry = {
            "type": "function",
            "name": "deployAccount",
            "inputs": [
                {"name": "salt", "type": "bytes32"},
                {"name": "owner1", "type": "address"},
                {"name": "owner2", "type": "address"},
            ],
            "outputs": [{"name": "accountAddress", "type": "address"}],
        }
        function = ContractFunction.from_abi(entry)
        self.assertEqual(function.signature(), "deployAccount(bytes32,address,address)")
        self.assertEqual(function.output_types, ("address",))

    def test_create_request(self):
        request = Create(bytes(32), b"\x01" * 32, b"\xaa")
        self.assertEqual(CREATE.decode_input(request.encode()), (bytes(32), b"\x01" * 32, b"\xaa"))

    def test_contract_deployed_topics(self):
        deployer = AccountAddress(b"\x01" * 20)
        deployed = AccountAddress(b"\x02" * 20)
        topics = [
            CONTRACT_DEPLOYED.topic(),
            deployer.padded(),
            b"\x03" * 32,
            deployed.padded(),
        ]
        self.assertEqual(
            CONTRACT_DEPLOYED.decode_topics(topics), (deployer, b"\x03" * 32, deployed)
        )
        with self.assertRaises(ValueError):
            CONTRACT_DEPLOYED.decode_topics(topics[:2])

    def test_deploy_account_request(self):
        request = DeployAccount(
            bytes(32), AccountAddress(b"\x01" * 20), AccountAddress(b"\x02" * 20)
        )
        calldata = request.encode()
        self.assertEqual(calldata[:4], DEPLOY_ACCOUNT.selector())
        self.assertEqual(DeployAccount.decode(calldata), request)
        self.assertEqual(AA_BYTECODE_HASH.encode_call(), AA_BYTECODE_HASH.selector())
