# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous JSON-RPC client for zkSync Era nodes.

:class:`RpcClient` wraps the handful of ``eth_*`` methods needed to assemble,
submit and confirm EIP-712 transactions:

* **Assembly**: :meth:`RpcClient.create_transaction` fills an unsigned
  :class:`~zksync_multisig.transactions.Transaction` from live network state
  (gas estimate, gas price, chain id and nonce).
* **Submission**: :meth:`RpcClient.submit_transaction` serializes a signed
  transaction and sends it with ``eth_sendRawTransaction``.
* **Confirmation**: :meth:`RpcClient.wait_for_transaction` polls
  ``eth_getTransactionReceipt`` until the transaction is mined.

Nothing is retried. HTTP failures raise :class:`ApiError`, JSON-RPC error
objects raise :class:`RpcError`, and transport errors from ``httpx`` propagate
unchanged.

Examples:
    Co-signed call from a multisig account::

        client = RpcClient("http://localhost:3050")
        tx = await client.create_transaction(
            multisig_address,
            factory_address,
            DeployAccount(salt, new_owner1, new_owner2).encode(),
            estimate_from=wallet.address(),
        )
        receipt = await client.submit_and_wait_for_transaction(
            authorize(tx, owner1, owner2)
        )
        await client.close()

Note:
    All client operations are async and must be awaited. The client uses httpx
    for HTTP/2 support and connection pooling.
"""

import asyncio
import json
import logging
import time
import unittest
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from eth_utils import decode_hex, encode_hex, to_int

from .account import Account
from .account_address import AccountAddress
from .metadata import Metadata
from .transactions import DEFAULT_GAS_PER_PUBDATA_LIMIT, Eip712Meta, Transaction


@dataclass
class ClientConfig:
    """Common configuration for clients, particularly for submitting transactions.

    Attributes:
        gas_per_pubdata: Gas-per-pubdata limit put on assembled transactions.
        transaction_wait_in_seconds: How long :meth:`RpcClient.wait_for_transaction`
            waits for a receipt before raising :class:`TransactionTimeout`.
        poll_interval: Seconds between receipt polls.
        http2: Enable HTTP/2.
        api_key: Optional bearer token sent with every request.
    """

    gas_per_pubdata: int = DEFAULT_GAS_PER_PUBDATA_LIMIT
    transaction_wait_in_seconds: int = 20
    poll_interval: float = 0.5
    http2: bool = True
    api_key: Optional[str] = None


class RpcClient:
    """Async client for a zkSync Era JSON-RPC endpoint."""

    _chain_id: Optional[int]
    _request_id: int
    client: httpx.AsyncClient
    client_config: ClientConfig
    node_url: str

    def __init__(
        self,
        node_url: str,
        client_config: ClientConfig = ClientConfig(),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        :param node_url: JSON-RPC endpoint, e.g. ``http://localhost:3050``.
        :param client_config: Fee and polling settings.
        :param transport: Replaces the network transport; tests pass an
            ``httpx.MockTransport`` here.
        """
        self.node_url = node_url
        # Default limits
        limits = httpx.Limits()
        # Default timeouts but do not set a pool timeout, since the idea is that jobs will wait as
        # long as progress is being made.
        timeout = httpx.Timeout(60.0, pool=None)
        # Default headers
        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        self.client = httpx.AsyncClient(
            http2=client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.client_config = client_config
        self._chain_id = None
        self._request_id = 0
        if client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {client_config.api_key}"

    async def close(self):
        await self.client.aclose()

    async def chain_id(self) -> int:
        """The chain id, fetched once and cached."""
        if not self._chain_id:
            self._chain_id = to_int(hexstr=await self._rpc("eth_chainId", []))
        return self._chain_id

    #
    # Network state
    #

    async def gas_price(self) -> int:
        return to_int(hexstr=await self._rpc("eth_gasPrice", []))

    async def estimate_gas(self, transaction: Transaction) -> int:
        """Gas the node expects ``transaction`` to use, signature excluded."""
        result = await self._rpc("eth_estimateGas", [transaction.to_rpc_request()])
        return to_int(hexstr=result)

    async def transaction_count(
        self, address: AccountAddress, block: str = "latest"
    ) -> int:
        """The account nonce; for a multisig this is the number of executed transactions."""
        result = await self._rpc("eth_getTransactionCount", [str(address), block])
        return to_int(hexstr=result)

    async def balance(self, address: AccountAddress, block: str = "latest") -> int:
        """Balance in wei."""
        result = await self._rpc("eth_getBalance", [str(address), block])
        return to_int(hexstr=result)

    async def code(self, address: AccountAddress, block: str = "latest") -> bytes:
        return decode_hex(await self._rpc("eth_getCode", [str(address), block]))

    async def call(
        self,
        to: AccountAddress,
        data: bytes,
        sender: Optional[AccountAddress] = None,
        block: str = "latest",
    ) -> bytes:
        """Execute a read-only call and return the raw return data."""
        request: Dict[str, Any] = {"to": str(to), "data": encode_hex(data)}
        if sender is not None:
            request["from"] = str(sender)
        return decode_hex(await self._rpc("eth_call", [request, block]))

    #
    # Transactions
    #

    async def create_transaction(
        self,
        sender: AccountAddress,
        to: AccountAddress,
        data: bytes = b"",
        value: int = 0,
        factory_deps: Optional[Sequence[bytes]] = None,
        nonce: Optional[int] = None,
        estimate_from: Optional[AccountAddress] = None,
    ) -> Transaction:
        """
        Build an unsigned EIP-712 transaction from live network state.

        This is a coroutine that estimates gas, reads the gas price, the chain id
        and, unless given, the sender's nonce.

        :param sender: The account the transaction is sent from.
        :param to: Target contract or recipient.
        :param data: Calldata.
        :param value: Wei to transfer.
        :param factory_deps: Bytecodes to publish with the transaction.
        :param nonce: Specific nonce, or None to fetch it from the node.
        :param estimate_from: Address to estimate gas as. A multisig that has no
            signature yet cannot pass validation during estimation, so the
            estimate is taken as an ordinary account and the sender switched
            afterwards.
        :return: A fully populated transaction without a signature.
        """
        transaction = Transaction(
            sender=estimate_from if estimate_from is not None else sender,
            to=to,
            data=data,
            value=value,
            custom_data=Eip712Meta(
                gas_per_pubdata=self.client_config.gas_per_pubdata,
                factory_deps=tuple(factory_deps or ()),
            ),
        )
        gas_limit = await self.estimate_gas(transaction)
        gas_price = await self.gas_price()
        nonce = nonce if nonce is not None else await self.transaction_count(sender)
        return (
            transaction.with_sender(sender)
            .with_fees(gas_limit, gas_price)
            .with_chain_id(await self.chain_id())
            .with_nonce(nonce)
        )

    async def send_raw_transaction(self, raw: bytes) -> str:
        return await self._rpc("eth_sendRawTransaction", [encode_hex(raw)])

    async def submit_transaction(self, transaction: Transaction) -> str:
        """
        Serialize a signed transaction and send it to the node.

        :return: The transaction hash as a hex string.
        :raises ValueError: If the transaction carries no signature.
        """
        if transaction.custom_data.custom_signature is None:
            raise ValueError("Transaction is not signed")
        tx_hash = await self.send_raw_transaction(transaction.serialize())
        logging.info(
            f"submitted {tx_hash} from {transaction.sender} nonce {transaction.nonce}"
        )
        return tx_hash

    async def submit_and_wait_for_transaction(
        self, transaction: Transaction
    ) -> Dict[str, Any]:
        """Submit a signed transaction and return its receipt once mined."""
        tx_hash = await self.submit_transaction(transaction)
        return await self.wait_for_transaction(tx_hash)

    async def send_transaction(
        self,
        sender: Account,
        to: AccountAddress,
        data: bytes = b"",
        value: int = 0,
        factory_deps: Optional[Sequence[bytes]] = None,
    ) -> str:
        """Create, sign with the sender's own key and submit a transaction."""
        transaction = await self.create_transaction(
            sender.address(), to, data, value, factory_deps
        )
        return await self.submit_transaction(sender.sign_transaction(transaction))

    async def transfer(
        self, sender: Account, recipient: AccountAddress, amount: int
    ) -> str:
        """Send ``amount`` wei from ``sender`` to ``recipient``."""
        return await self.send_transaction(sender, recipient, value=amount)

    async def transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """The receipt, or None while the transaction is pending."""
        return await self._rpc("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """
        Waits up to the duration specified in client_config for a transaction to be mined.

        :return: The receipt.
        :raises TransactionTimeout: If no receipt appears in time.
        :raises TransactionFailed: If the transaction was mined but reverted.
        """
        deadline = time.monotonic() + self.client_config.transaction_wait_in_seconds
        while True:
            receipt = await self.transaction_receipt(tx_hash)
            if receipt is not None and receipt.get("blockNumber") is not None:
                break
            if time.monotonic() >= deadline:
                raise TransactionTimeout(f"transaction {tx_hash} timed out", tx_hash)
            await asyncio.sleep(self.client_config.poll_interval)

        if to_int(hexstr=receipt["status"]) != 1:
            raise TransactionFailed(f"transaction {tx_hash} failed", receipt)
        logging.info(f"{tx_hash} mined in block {to_int(hexstr=receipt['blockNumber'])}")
        return receipt

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        logging.debug(f"{method} {params}")
        response = await self.client.post(
            self.node_url,
            json={
                "jsonrpc": "2.0",
                "id": self._request_id,
                "method": method,
                "params": params,
            },
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        body = response.json()
        if "error" in body:
            error = body["error"]
            raise RpcError(
                error.get("message", response.text), error.get("code"), error.get("data")
            )
        return body["result"]


class ApiError(Exception):
    """The API returned a non-success status code, e.g., >= 400"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class RpcError(Exception):
    """The node answered with a JSON-RPC error object"""

    code: Optional[int]
    data: Any

    def __init__(self, message: str, code: Optional[int], data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class TransactionFailed(Exception):
    """The transaction was mined but reverted"""

    receipt: Dict[str, Any]

    def __init__(self, message: str, receipt: Dict[str, Any]):
        super().__init__(message)
        self.receipt = receipt


class TransactionTimeout(Exception):
    """No receipt appeared within the configured wait"""

    tx_hash: str

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.requests: List[Dict[str, Any]] = []
        self.headers: List[httpx.Headers] = []
        self.results: Dict[str, Any] = {
            "eth_chainId": "0x10e",
            "eth_gasPrice": "0xee6b280",
            "eth_estimateGas": "0x1e8480",
            "eth_getTransactionCount": "0x3",
            "eth_getBalance": "0xde0b6b3a7640000",
            "eth_sendRawTransaction": "0x" + "ab" * 32,
            "eth_getTransactionReceipt": {"status": "0x1", "blockNumber": "0x5"},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.requests.append(body)
            self.headers.append(request.headers)
            result = self.results[body["method"]]
            if isinstance(result, httpx.Response):
                return result
            if isinstance(result, Exception):
                return httpx.Response(
                    200,
                    json={
                        "jsonrpc": "2.0",
                        "id": body["id"],
                        "error": {"code": -32000, "message": str(result)},
                    },
                )
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": body["id"], "result": result}
            )

        self.client = RpcClient(
            "http://localhost:3050",
            ClientConfig(transaction_wait_in_seconds=0, poll_interval=0),
            transport=httpx.MockTransport(handler),
        )
        self.sender = AccountAddress(b"\x11" * 20)
        self.target = AccountAddress(b"\x22" * 20)

    async def asyncTearDown(self):
        await self.client.close()

    def methods(self) -> List[str]:
        return [request["method"] for request in self.requests]

    async def test_headers(self):
        await self.client.gas_price()
        self.assertEqual(
            self.headers[0][Metadata.CLIENT_HEADER], Metadata.get_client_header_val()
        )
        self.assertEqual(self.requests[0]["jsonrpc"], "2.0")

    async def test_chain_id_is_cached(self):
        self.assertEqual(await self.client.chain_id(), 270)
        self.assertEqual(await self.client.chain_id(), 270)
        self.assertEqual(self.methods(), ["eth_chainId"])

    async def test_balance_and_nonce(self):
        self.assertEqual(await self.client.balance(self.sender), 10**18)
        self.assertEqual(await self.client.transaction_count(self.sender), 3)
        self.assertEqual(self.requests[1]["params"], [str(self.sender), "latest"])

    async def test_create_transaction(self):
        transaction = await self.client.create_transaction(
            self.sender,
            self.target,
            b"\x01",
            factory_deps=[b"\x00" * 32],
            estimate_from=self.target,
        )
        self.assertEqual(transaction.sender, self.sender)
        self.assertEqual(transaction.gas_limit, 2_000_000)
        self.assertEqual(transaction.max_fee_per_gas, 250_000_000)
        self.assertEqual(transaction.priority_fee(), 250_000_000)
        self.assertEqual(transaction.chain_id, 270)
        self.assertEqual(transaction.nonce, 3)
        self.assertIsNone(transaction.custom_data.custom_signature)
        self.assertEqual(transaction.custom_data.factory_deps, (b"\x00" * 32,))

        estimate = self.requests[self.methods().index("eth_estimateGas")]
        self.assertEqual(estimate["params"][0]["from"], str(self.target))
        self.assertEqual(estimate["params"][0]["type"], "0x71")
        count = self.requests[self.methods().index("eth_getTransactionCount")]
        self.assertEqual(count["params"][0], str(self.sender))

    async def test_create_transaction_with_nonce(self):
        transaction = await self.client.create_transaction(
            self.sender, self.target, nonce=9
        )
        self.assertEqual(transaction.nonce, 9)
        self.assertNotIn("eth_getTransactionCount", self.methods())

    async def test_submit_unsigned(self):
        with self.assertRaises(ValueError):
            await self.client.submit_transaction(Transaction(self.sender, self.target))
        self.assertEqual(self.requests, [])

    async def test_submit_and_wait(self):
        transaction = Transaction(self.sender, self.target).with_custom_signature(
            b"\x01" * 130
        )
        receipt = await self.client.submit_and_wait_for_transaction(transaction)
        self.assertEqual(receipt["blockNumber"], "0x5")
        raw = decode_hex(self.requests[0]["params"][0])
        self.assertEqual(raw, transaction.serialize())

    async def test_wait_timeout(self):
        self.results["eth_getTransactionReceipt"] = None
        with self.assertRaises(TransactionTimeout):
            await self.client.wait_for_transaction("0x" + "ab" * 32)

    async def test_wait_failed(self):
        self.results["eth_getTransactionReceipt"] = {
            "status": "0x0",
            "blockNumber": "0x5",
        }
        with self.assertRaises(TransactionFailed) as context:
            await self.client.wait_for_transaction("0x" + "ab" * 32)
        self.assertEqual(context.exception.receipt["status"], "0x0")

    async def test_rpc_error(self):
        self.results["eth_sendRawTransaction"] = Exception("nonce too low")
        transaction = Transaction(self.sender, self.target).with_custom_signature(
            b"\x01" * 65
        )
        with self.assertRaises(RpcError) as context:
            await self.client.submit_transaction(transaction)
        self.assertEqual(context.exception.code, -32000)
        self.assertEqual(str(context.exception), "nonce too low")

    async def test_api_error(self):
        self.results["eth_gasPrice"] = httpx.Response(503, text="unavailable")
        with self.assertRaises(ApiError) as context:
            await self.client.gas_price()
        self.assertEqual(context.exception.status_code, 503)
