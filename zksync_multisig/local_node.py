# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
An in-memory zkSync node for tests.

:class:`LocalNode` answers the JSON-RPC methods :class:`RpcClient` uses and is
plugged into the client through ``httpx.MockTransport``, so the whole
assemble / co-sign / submit flow runs without a network. It keeps balances,
nonces and deployed contracts and enforces the rules the real node and the
account contracts enforce:

* the envelope must decode and carry the node's chain id and the sender's
  current nonce;
* a transaction from an ordinary account needs a 65-byte signature by that
  account over the EIP-712 digest;
* a transaction from a two-owner account needs both owners' signatures, in
  owner order, over the same digest;
* the gas limit must cover the node's estimate and the sender must afford the
  fee plus the value.

Two contracts are simulated. Calls to the ContractDeployer system contract
deploy a contract whose bytecode was published as a factory dependency, at the
``CREATE`` address of the caller. A deployed contract answers
``aaBytecodeHash`` with the first word of its constructor input and handles
``deployAccount`` by creating a two-owner account at its ``CREATE2`` address,
which is how the AAFactory behaves.
"""

import json
import unittest
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from ecdsa import SECP256k1
from eth_abi import encode
from eth_utils import decode_hex, encode_hex, keccak, to_int

from .account import Account
from .account_address import AccountAddress
from .async_client import ClientConfig, RpcClient, RpcError, TransactionFailed
from .bytecode import hash_bytecode
from .contract import (
    AA_BYTECODE_HASH,
    CONTRACT_DEPLOYED,
    CONTRACT_DEPLOYER_ADDRESS,
    CREATE,
    DEPLOY_ACCOUNT,
    Create,
    DeployAccount,
)
from .multisig import MultisigAccount, authorize, verify_co_signature
from .secp256k1_ecdsa import Signature
from .transactions import Transaction

INVALID_PARAMS = -32602
EXECUTION_ERROR = -32000
METHOD_NOT_FOUND = -32601


class NodeError(Exception):
    """A request the node refuses; answered as a JSON-RPC error."""

    code: int

    def __init__(self, message: str, code: int = EXECUTION_ERROR):
        super().__init__(message)
        self.code = code


class Reverted(Exception):
    """Execution failed after the transaction was accepted."""


@dataclass
class Contract:
    bytecode_hash: bytes
    constructor_input: bytes
    owners: Optional[Tuple[AccountAddress, AccountAddress]] = None


@dataclass
class LocalNode:
    chain_id: int = 270
    gas_price: int = 100_000_000
    base_gas: int = 200_000
    balances: Dict[AccountAddress, int] = field(default_factory=dict)
    nonces: Dict[AccountAddress, int] = field(default_factory=dict)
    deployment_nonces: Dict[AccountAddress, int] = field(default_factory=dict)
    contracts: Dict[AccountAddress, Contract] = field(default_factory=dict)
    bytecodes: Dict[bytes, bytes] = field(default_factory=dict)
    receipts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    block_number: int = 0

    def fund(self, address: AccountAddress, amount: int):
        self.balances[address] = self.balances.get(address, 0) + amount

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self, client_config: ClientConfig = ClientConfig()) -> RpcClient:
        return RpcClient("http://localnode", client_config, transport=self.transport())

    def required_gas(self, data: bytes, factory_deps: List[bytes]) -> int:
        return self.base_gas + 16 * len(data) + 4 * sum(len(dep) for dep in factory_deps)

    #
    # JSON-RPC
    #

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        handlers: Dict[str, Callable[..., Any]] = {
            "eth_chainId": lambda: hex(self.chain_id),
            "eth_gasPrice": lambda: hex(self.gas_price),
            "eth_estimateGas": self.estimate_gas,
            "eth_getTransactionCount": self.transaction_count,
            "eth_getBalance": self.balance,
            "eth_getCode": self.code,
            "eth_call": self.call,
            "eth_sendRawTransaction": self.send_raw_transaction,
            "eth_getTransactionReceipt": self.receipts.get,
        }
        response: Dict[str, Any] = {"jsonrpc": "2.0", "id": body["id"]}
        try:
            handler = handlers.get(body["method"])
            if handler is None:
                raise NodeError(f"Method {body['method']} not found", METHOD_NOT_FOUND)
            response["result"] = handler(*body["params"])
        except NodeError as e:
            response["error"] = {"code": e.code, "message": str(e)}
        return httpx.Response(200, json=response)

    def estimate_gas(self, request: Dict[str, Any]) -> str:
        sender = AccountAddress.from_str(request["from"])
        value = to_int(hexstr=request.get("value", "0x0"))
        if self.balances.get(sender, 0) < value:
            raise NodeError("insufficient balance for transfer")
        factory_deps = [
            bytes(dep) for dep in request.get("eip712Meta", {}).get("factoryDeps", [])
        ]
        data = decode_hex(request.get("data", "0x"))
        return hex(self.required_gas(data, factory_deps))

    def transaction_count(self, address: str, block: str = "latest") -> str:
        return hex(self.nonces.get(AccountAddress.from_str(address), 0))

    def balance(self, address: str, block: str = "latest") -> str:
        return hex(self.balances.get(AccountAddress.from_str(address), 0))

    def code(self, address: str, block: str = "latest") -> str:
        contract = self.contracts.get(AccountAddress.from_str(address))
        if contract is None:
            return "0x"
        return encode_hex(self.bytecodes[contract.bytecode_hash])

    def call(self, request: Dict[str, Any], block: str = "latest") -> str:
        contract = self.contracts.get(AccountAddress.from_str(request["to"]))
        data = decode_hex(request.get("data", "0x"))
        if contract is not None and data[:4] == AA_BYTECODE_HASH.selector():
            return encode_hex(encode(["bytes32"], [contract.constructor_input[:32]]))
        raise NodeError("execution reverted")

    def send_raw_transaction(self, raw: str) -> str:
        try:
            transaction = Transaction.deserialize(decode_hex(raw))
        except ValueError as e:
            raise NodeError(f"failed to decode transaction: {e}", INVALID_PARAMS)

        sender = transaction.sender
        if transaction.chain_id != self.chain_id:
            raise NodeError(f"invalid chain id {transaction.chain_id}")
        if transaction.nonce != self.nonces.get(sender, 0):
            raise NodeError(
                f"nonce mismatch: expected {self.nonces.get(sender, 0)}, got {transaction.nonce}"
            )
        self._validate(transaction)

        factory_deps = list(transaction.custom_data.factory_deps)
        gas_used = self.required_gas(transaction.data, factory_deps)
        if transaction.gas_limit < gas_used:
            raise NodeError(f"gas limit {transaction.gas_limit} below {gas_used}")
        fee = gas_used * self.gas_price
        if self.balances.get(sender, 0) < fee + transaction.value:
            raise NodeError("insufficient funds for gas and value")

        for dep in factory_deps:
            self.bytecodes[hash_bytecode(dep)] = dep
        self.nonces[sender] = transaction.nonce + 1
        self.balances[sender] -= fee

        logs: List[Dict[str, Any]] = []
        status = 1
        try:
            logs = self._execute(transaction)
        except Reverted:
            status = 0

        self.block_number += 1
        tx_hash = encode_hex(keccak(decode_hex(raw)))
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": hex(self.block_number),
            "status": hex(status),
            "from": str(sender),
            "to": str(transaction.to),
            "gasUsed": hex(gas_used),
            "logs": logs,
        }
        return tx_hash

    #
    # Execution
    #

    def _validate(self, transaction: Transaction):
        signature = transaction.custom_data.custom_signature or b""
        digest = transaction.signed_digest()
        account = self.contracts.get(transaction.sender)

        if account is not None:
            if account.owners is None:
                raise NodeError(f"{transaction.sender} is not an account contract")
            if not verify_co_signature(digest, signature, *account.owners):
                raise NodeError("account validation returned invalid magic value")
            return

        if len(signature) != Signature.LENGTH:
            raise NodeError("invalid signature length")
        parsed = Signature(signature)
        if parsed.recovery_id() not in (0, 1):
            raise NodeError("invalid signature v value")
        try:
            signer = parsed.recover(digest)
        except ValueError as e:
            raise NodeError(f"invalid signature: {e}")
        if AccountAddress.from_key(signer) != transaction.sender:
            raise NodeError("signature does not match sender")

    def _execute(self, transaction: Transaction) -> List[Dict[str, Any]]:
        selector = transaction.data[:4]
        if transaction.to == CONTRACT_DEPLOYER_ADDRESS and selector == CREATE.selector():
            (salt, bytecode_hash, constructor_input) = CREATE.decode_input(
                transaction.data
            )
            deployer = transaction.sender
            deployment_nonce = self.deployment_nonces.get(deployer, 0)
            self.deployment_nonces[deployer] = deployment_nonce + 1
            address = AccountAddress.for_create(deployer, deployment_nonce)
            return [self._deploy(deployer, address, Contract(bytecode_hash, constructor_input))]

        target = self.contracts.get(transaction.to)
        if target is not None and selector == DEPLOY_ACCOUNT.selector():
            request = DeployAccount.decode(transaction.data)
            account = MultisigAccount(
                transaction.to,
                request.owner1,
                request.owner2,
                target.constructor_input[:32],
                request.salt,
            )
            contract = Contract(
                account.bytecode_hash, account.constructor_input(), account.owners()
            )
            return [self._deploy(transaction.to, account.address(), contract)]

        if transaction.data and target is None:
            raise Reverted()
        self.balances[transaction.to] = (
            self.balances.get(transaction.to, 0) + transaction.value
        )
        self.balances[transaction.sender] -= transaction.value
        return []

    def _deploy(
        self, deployer: AccountAddress, address: AccountAddress, contract: Contract
    ) -> Dict[str, Any]:
        if contract.bytecode_hash not in self.bytecodes or address in self.contracts:
            raise Reverted()
        self.contracts[address] = contract
        topics = [
            CONTRACT_DEPLOYED.topic(),
            deployer.padded(),
            contract.bytecode_hash,
            address.padded(),
        ]
        return {
            "address": str(CONTRACT_DEPLOYER_ADDRESS),
            "topics": [encode_hex(topic) for topic in topics],
            "data": "0x",
        }


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.node = LocalNode()
        self.client = self.node.client()
        self.wallet = Account.generate()
        self.node.fund(self.wallet.address(), 10**18)
        self.account_bytecode = b"\x01" * 32 * 3
        self.factory_bytecode = b"\x02" * 32 * 5

    async def asyncTearDown(self):
        await self.client.close()

    async def deploy_factory(self) -> AccountAddress:
        account_hash = hash_bytecode(self.account_bytecode)
        tx_hash = await self.client.send_transaction(
            self.wallet,
            CONTRACT_DEPLOYER_ADDRESS,
            Create(
                bytes(32),
                hash_bytecode(self.factory_bytecode),
                encode(["bytes32"], [account_hash]),
            ).encode(),
            factory_deps=[self.account_bytecode, self.factory_bytecode],
        )
        receipt = await self.client.wait_for_transaction(tx_hash)
        topics = [decode_hex(topic) for topic in receipt["logs"][0]["topics"]]
        return CONTRACT_DEPLOYED.decode_topics(topics)[2]

    async def deploy_multisig(
        self, factory: AccountAddress, owner1: Account, owner2: Account
    ) -> AccountAddress:
        account_hash = AA_BYTECODE_HASH.decode_output(
            await self.client.call(factory, AA_BYTECODE_HASH.encode_call())
        )[0]
        multisig = MultisigAccount(factory, owner1.address(), owner2.address(), account_hash)
        tx_hash = await self.client.send_transaction(
            self.wallet,
            factory,
            DeployAccount(multisig.salt, multisig.owner1, multisig.owner2).encode(),
        )
        await self.client.wait_for_transaction(tx_hash)
        return multisig.address()

    async def test_transfer(self):
        recipient = AccountAddress(b"\x42" * 20)
        tx_hash = await self.client.transfer(self.wallet, recipient, 1_000)
        receipt = await self.client.wait_for_transaction(tx_hash)
        self.assertEqual(receipt["status"], "0x1")
        self.assertEqual(await self.client.balance(recipient), 1_000)
        self.assertEqual(await self.client.transaction_count(self.wallet.address()), 1)
        fee = to_int(hexstr=receipt["gasUsed"]) * self.node.gas_price
        self.assertEqual(
            await self.client.balance(self.wallet.address()), 10**18 - 1_000 - fee
        )

    async def test_deployments(self):
        factory = await self.deploy_factory()
        self.assertEqual(factory, AccountAddress.for_create(self.wallet.address(), 0))
        self.assertEqual(await self.client.code(factory), self.factory_bytecode)

        owner1 = Account.generate()
        owner2 = Account.generate()
        multisig = await self.deploy_multisig(factory, owner1, owner2)
        self.assertEqual(await self.client.code(multisig), self.account_bytecode)
        self.assertEqual(
            self.node.contracts[multisig].owners, (owner1.address(), owner2.address())
        )

    async def test_redeploying_an_account_reverts(self):
        factory = await self.deploy_factory()
        owner1 = Account.generate()
        owner2 = Account.generate()
        await self.deploy_multisig(factory, owner1, owner2)
        with self.assertRaises(TransactionFailed):
            await self.deploy_multisig(factory, owner1, owner2)

    async def test_co_signed_transaction(self):
        factory = await self.deploy_factory()
        owner1 = Account.generate()
        owner2 = Account.generate()
        multisig = await self.deploy_multisig(factory, owner1, owner2)
        await self.client.wait_for_transaction(
            await self.client.transfer(self.wallet, multisig, 8 * 10**15)
        )

        transaction = await self.client.create_transaction(
            multisig,
            factory,
            DeployAccount(
                bytes(32), Account.generate().address(), Account.generate().address()
            ).encode(),
            estimate_from=self.wallet.address(),
        )
        self.assertEqual(transaction.nonce, 0)

        with self.assertRaises(RpcError):
            await self.client.submit_transaction(authorize(transaction, owner2, owner1))
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                self.wallet.sign_transaction(transaction.with_sender(self.wallet.address()))
                .with_sender(multisig)
            )

        receipt = await self.client.submit_and_wait_for_transaction(
            authorize(transaction, owner1, owner2)
        )
        self.assertEqual(receipt["status"], "0x1")
        self.assertEqual(await self.client.transaction_count(multisig), 1)
        fee = to_int(hexstr=receipt["gasUsed"]) * self.node.gas_price
        self.assertEqual(
            await self.client.balance(multisig), 8 * 10**15 - transaction.value - fee
        )

    async def test_malformed_signatures(self):
        factory = await self.deploy_factory()
        owner1 = Account.generate()
        owner2 = Account.generate()
        multisig = await self.deploy_multisig(factory, owner1, owner2)
        await self.client.wait_for_transaction(
            await self.client.transfer(self.wallet, multisig, 10**16)
        )

        p = SECP256k1.curve.p()
        r = next(x for x in range(1, 1000) if pow(x**3 + 7, (p - 1) // 2, p) == p - 1)
        no_point = r.to_bytes(32, "big") + (1).to_bytes(32, "big") + b"\x1b"

        transaction = await self.client.create_transaction(
            multisig,
            AccountAddress(b"\x42" * 20),
            value=1,
            estimate_from=self.wallet.address(),
        )
        digest = transaction.signed_digest()
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                transaction.with_custom_signature(owner1.sign(digest).data() + no_point)
            )

        transaction = await self.client.create_transaction(
            self.wallet.address(), AccountAddress(b"\x42" * 20), value=1
        )
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(transaction.with_custom_signature(no_point))
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                transaction.with_custom_signature(bytes(64) + b"\x1b")
            )
        self.assertEqual(await self.client.transaction_count(multisig), 0)
        self.assertEqual(await self.client.transaction_count(self.wallet.address()), 3)

    async def test_corrupt_raw_transaction(self):
        for raw in (b"\x71\xff", b"\x71", b"\x02\xc0"):
            with self.assertRaises(RpcError) as cm:
                await self.client.send_raw_transaction(raw)
            self.assertEqual(cm.exception.code, INVALID_PARAMS)

    async def test_rejected_transactions(self):
        recipient = AccountAddress(b"\x42" * 20)
        transaction = await self.client.create_transaction(
            self.wallet.address(), recipient, value=1
        )

        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                self.wallet.sign_transaction(transaction.with_nonce(5))
            )
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                self.wallet.sign_transaction(transaction.with_chain_id(1))
            )
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                transaction.with_custom_signature(
                    Account.generate().sign(transaction.signed_digest()).data()
                )
            )
        with self.assertRaises(RpcError):
            await self.client.submit_transaction(
                self.wallet.sign_transaction(
                    transaction.with_fees(1, transaction.max_fee_per_gas)
                )
            )
        self.assertEqual(await self.client.transaction_count(self.wallet.address()), 0)

    async def test_unfunded_sender(self):
        sender = Account.generate()
        with self.assertRaises(RpcError):
            await self.client.transfer(sender, self.wallet.address(), 1)

    async def test_call_without_contract(self):
        with self.assertRaises(RpcError):
            await self.client.call(self.wallet.address(), AA_BYTECODE_HASH.encode_call())
        self.assertIsNone(await self.client.transaction_receipt("0x" + "00" * 32))
