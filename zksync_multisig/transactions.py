# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
zkSync EIP-712 transactions (type ``0x71``).

Transactions sent from smart-contract accounts use zkSync's EIP-712 envelope.
Besides the usual Ethereum fields it carries an :class:`Eip712Meta` block with
the gas-per-pubdata limit, factory dependencies, an optional paymaster and a
*custom signature*: an opaque byte string handed to the sending account's
``validateTransaction`` instead of a fixed ECDSA signature.

A :class:`Transaction` is an immutable value. Each enrichment step (fees,
nonce, sender, signature) returns a new instance, so a transaction that was
signed can never be changed afterwards without producing a different object
and, therefore, a different digest.

Signing digest
    ``keccak256(0x1901 || domainSeparator || structHash)`` where the domain is
    ``EIP712Domain(string name,string version,uint256 chainId)`` with name
    ``zkSync`` and version ``2``, and the struct is::

        Transaction(uint256 txType,uint256 from,uint256 to,uint256 gasLimit,
                    uint256 gasPerPubdataByteLimit,uint256 maxFeePerGas,
                    uint256 maxPriorityFeePerGas,uint256 paymaster,
                    uint256 nonce,uint256 value,bytes data,
                    bytes32[] factoryDeps,bytes paymasterInput)

Envelope
    ``0x71 || rlp([nonce, maxPriorityFeePerGas, maxFeePerGas, gasLimit, to,
    value, data, chainId, "", "", chainId, from, gasPerPubdata, factoryDeps,
    customSignature, paymasterParams])``

Examples:
    Build, enrich and sign::

        tx = Transaction(sender=account, to=factory, data=calldata)
        tx = tx.with_fees(gas_limit, gas_price).with_chain_id(270).with_nonce(0)
        digest = tx.signed_digest()
        tx = tx.with_custom_signature(owner1_sig + owner2_sig)
        raw = tx.serialize()
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

import rlp
from eth_abi import encode
from eth_utils import big_endian_to_int, keccak

from .account_address import AccountAddress, ParseAddressError
from .bytecode import hash_bytecode

EIP712_TX_TYPE: int = 0x71
DEFAULT_GAS_PER_PUBDATA_LIMIT: int = 50_000

EIP712_DOMAIN_TYPEHASH: bytes = keccak(
    text="EIP712Domain(string name,string version,uint256 chainId)"
)
TRANSACTION_TYPEHASH: bytes = keccak(
    text=(
        "Transaction(uint256 txType,uint256 from,uint256 to,uint256 gasLimit,"
        "uint256 gasPerPubdataByteLimit,uint256 maxFeePerGas,"
        "uint256 maxPriorityFeePerGas,uint256 paymaster,uint256 nonce,"
        "uint256 value,bytes data,bytes32[] factoryDeps,bytes paymasterInput)"
    )
)
DOMAIN_NAME: str = "zkSync"
DOMAIN_VERSION: str = "2"


@dataclass(frozen=True)
class PaymasterParams:
    """A paymaster contract and the input it is called with."""

    paymaster: AccountAddress
    paymaster_input: bytes


@dataclass(frozen=True)
class Eip712Meta:
    """zkSync-specific fields of an EIP-712 transaction.

    Attributes:
        gas_per_pubdata: Maximum gas the sender pays per byte of published data.
        factory_deps: Bytecodes published with the transaction.
        custom_signature: The authorization blob passed to the sending
            account. ``None`` until the transaction is signed.
        paymaster_params: Optional paymaster sponsoring the fee.
    """

    gas_per_pubdata: int = DEFAULT_GAS_PER_PUBDATA_LIMIT
    factory_deps: Tuple[bytes, ...] = ()
    custom_signature: Optional[bytes] = None
    paymaster_params: Optional[PaymasterParams] = None


@dataclass(frozen=True)
class Transaction:
    """An immutable zkSync EIP-712 transaction.

    ``max_fee_per_gas`` plays the role of the legacy gas price. When
    ``max_priority_fee_per_gas`` is left unset it defaults to the max fee, the
    same way the node interprets it.
    """

    sender: AccountAddress
    to: AccountAddress
    data: bytes = b""
    value: int = 0
    nonce: int = 0
    gas_limit: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: Optional[int] = None
    chain_id: int = 0
    custom_data: Eip712Meta = field(default_factory=Eip712Meta)
    tx_type: int = EIP712_TX_TYPE

    #
    # Enrichment
    #

    def with_sender(self, sender: AccountAddress) -> Transaction:
        return replace(self, sender=sender)

    def with_nonce(self, nonce: int) -> Transaction:
        return replace(self, nonce=nonce)

    def with_chain_id(self, chain_id: int) -> Transaction:
        return replace(self, chain_id=chain_id)

    def with_fees(
        self,
        gas_limit: int,
        max_fee_per_gas: int,
        max_priority_fee_per_gas: Optional[int] = None,
    ) -> Transaction:
        return replace(
            self,
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
        )

    def with_custom_signature(self, signature: bytes) -> Transaction:
        return replace(
            self, custom_data=replace(self.custom_data, custom_signature=signature)
        )

    def priority_fee(self) -> int:
        if self.max_priority_fee_per_gas is None:
            return self.max_fee_per_gas
        return self.max_priority_fee_per_gas

    #
    # EIP-712 hashing
    #

    @staticmethod
    def domain_separator(chain_id: int) -> bytes:
        return keccak(
            encode(
                ["bytes32", "bytes32", "bytes32", "uint256"],
                [
                    EIP712_DOMAIN_TYPEHASH,
                    keccak(text=DOMAIN_NAME),
                    keccak(text=DOMAIN_VERSION),
                    chain_id,
                ],
            )
        )

    def struct_hash(self) -> bytes:
        meta = self.custom_data
        paymaster = 0
        paymaster_input = b""
        if meta.paymaster_params is not None:
            paymaster = meta.paymaster_params.paymaster.to_int()
            paymaster_input = meta.paymaster_params.paymaster_input
        factory_dep_hashes = b"".join(hash_bytecode(dep) for dep in meta.factory_deps)

        return keccak(
            encode(
                ["bytes32"] + ["uint256"] * 10 + ["bytes32"] * 3,
                [
                    TRANSACTION_TYPEHASH,
                    self.tx_type,
                    self.sender.to_int(),
                    self.to.to_int(),
                    self.gas_limit,
                    meta.gas_per_pubdata,
                    self.max_fee_per_gas,
                    self.priority_fee(),
                    paymaster,
                    self.nonce,
                    self.value,
                    keccak(self.data),
                    keccak(factory_dep_hashes),
                    keccak(paymaster_input),
                ],
            )
        )

    def signed_digest(self) -> bytes:
        """The 32-byte digest every signer of this transaction must sign.

        The custom signature is not part of the digest, so owners can sign in
        any order and the result can be attached afterwards.
        """
        return keccak(
            b"\x19\x01" + Transaction.domain_separator(self.chain_id) + self.struct_hash()
        )

    #
    # Envelope
    #

    def serialize(self) -> bytes:
        """Encode the transaction for ``eth_sendRawTransaction``.

        Raises:
            ValueError: If the custom signature is present but empty.
        """
        meta = self.custom_data
        if meta.custom_signature is not None and len(meta.custom_signature) == 0:
            raise ValueError("Empty signatures are not supported")

        paymaster_params: List[Any] = []
        if meta.paymaster_params is not None:
            paymaster_params = [
                meta.paymaster_params.paymaster.address,
                meta.paymaster_params.paymaster_input,
            ]

        fields = [
            self.nonce,
            self.priority_fee(),
            self.max_fee_per_gas,
            self.gas_limit,
            self.to.address,
            self.value,
            self.data,
            # Unused r, s and v slots of an ECDSA-signed envelope.
            self.chain_id,
            b"",
            b"",
            self.chain_id,
            self.sender.address,
            meta.gas_per_pubdata,
            list(meta.factory_deps),
            meta.custom_signature or b"",
            paymaster_params,
        ]
        return bytes([EIP712_TX_TYPE]) + rlp.encode(fields)

    @staticmethod
    def deserialize(raw: bytes) -> Transaction:
        """Decode an envelope produced by :meth:`serialize`.

        Raises:
            ValueError: If the envelope is not a well-formed EIP-712
                transaction: wrong type byte, bad RLP, wrong field count or
                shape, or a malformed address.
        """
        if len(raw) < 2 or raw[0] != EIP712_TX_TYPE:
            raise ValueError("Not an EIP-712 transaction")
        try:
            fields = rlp.decode(raw[1:])
        except rlp.exceptions.DecodingError as e:
            raise ValueError(f"Malformed RLP: {e}") from e
        if not isinstance(fields, list) or len(fields) != 16:
            raise ValueError("Expected a list of 16 fields")
        for index, value in enumerate(fields):
            # factory deps and paymaster params are lists, everything else a string
            if isinstance(value, list) != (index in (13, 15)):
                raise ValueError(f"Field {index} has the wrong shape")
        if not all(isinstance(item, bytes) for item in fields[13] + fields[15]):
            raise ValueError("Factory deps and paymaster params must be byte strings")
        if len(fields[15]) not in (0, 2):
            raise ValueError("Paymaster params must be empty or (paymaster, input)")

        try:
            paymaster_params = None
            if len(fields[15]) == 2:
                paymaster_params = PaymasterParams(
                    AccountAddress(fields[15][0]), fields[15][1]
                )

            return Transaction(
                sender=AccountAddress(fields[11]),
                to=AccountAddress(fields[4]),
                data=fields[6],
                value=big_endian_to_int(fields[5]),
                nonce=big_endian_to_int(fields[0]),
                gas_limit=big_endian_to_int(fields[3]),
                max_fee_per_gas=big_endian_to_int(fields[2]),
                max_priority_fee_per_gas=big_endian_to_int(fields[1]),
                chain_id=big_endian_to_int(fields[10]),
                custom_data=Eip712Meta(
                    gas_per_pubdata=big_endian_to_int(fields[12]),
                    factory_deps=tuple(fields[13]),
                    custom_signature=fields[14] or None,
                    paymaster_params=paymaster_params,
                ),
            )
        except ParseAddressError as e:
            raise ValueError(f"Invalid address: {e}") from e

    def to_rpc_request(self) -> Dict[str, Any]:
        """JSON-RPC call object, as used by ``eth_estimateGas`` and ``eth_call``."""
        meta = self.custom_data
        eip712_meta: Dict[str, Any] = {"gasPerPubdata": hex(meta.gas_per_pubdata)}
        if meta.factory_deps:
            eip712_meta["factoryDeps"] = [list(dep) for dep in meta.factory_deps]
        if meta.custom_signature:
            eip712_meta["customSignature"] = list(meta.custom_signature)
        if meta.paymaster_params is not None:
            eip712_meta["paymasterParams"] = {
                "paymaster": str(meta.paymaster_params.paymaster),
                "paymasterInput": list(meta.paymaster_params.paymaster_input),
            }

        return {
            "from": str(self.sender),
            "to": str(self.to),
            "data": "0x" + self.data.hex(),
            "value": hex(self.value),
            "type": hex(self.tx_type),
            "eip712Meta": eip712_meta,
        }


class Test(unittest.TestCase):
    def setUp(self):
        self.transaction = Transaction(
            sender=AccountAddress(b"\x11" * 20),
            to=AccountAddress(b"\x22" * 20),
            data=bytes.fromhex("deadbeef"),
            value=5,
            nonce=3,
            gas_limit=1_000_000,
            max_fee_per_gas=250_000_000,
            chain_id=270,
            custom_data=Eip712Meta(factory_deps=(b"\x00" * 32,)),
        )

    def test_immutable_enrichment(self):
        enriched = self.transaction.with_nonce(4)
        self.assertEqual(self.transaction.nonce, 3)
        self.assertEqual(enriched.nonce, 4)

        signed = self.transaction.with_custom_signature(b"\x01" * 130)
        self.assertIsNone(self.transaction.custom_data.custom_signature)
        self.assertEqual(signed.custom_data.custom_signature, b"\x01" * 130)
        self.assertEqual(signed.custom_data.factory_deps, (b"\x00" * 32,))

    def test_priority_fee_defaults_to_max_fee(self):
        self.assertEqual(self.transaction.priority_fee(), 250_000_000)
        self.assertEqual(
            self.transaction.with_fees(1, 10, 0).priority_fee(),
            0,
        )

    def test_signed_digest(self):
        digest = self.transaction.signed_digest()
        self.assertEqual(len(digest), 32)
        self.assertEqual(digest, self.transaction.signed_digest())
        # The signature itself is not covered by the digest.
        self.assertEqual(
            digest, self.transaction.with_custom_signature(b"\x01" * 65).signed_digest()
        )
        self.assertNotEqual(digest, self.transaction.with_nonce(4).signed_digest())
        self.assertNotEqual(digest, self.transaction.with_chain_id(300).signed_digest())
        self.assertNotEqual(
            digest,
            self.transaction.with_sender(AccountAddress(b"\x33" * 20)).signed_digest(),
        )

    def test_signed_digest_layout(self):
        expected = keccak(
            b"\x19\x01"
            + Transaction.domain_separator(270)
            + self.transaction.struct_hash()
        )
        self.assertEqual(self.transaction.signed_digest(), expected)

    def test_serialize(self):
        signed = self.transaction.with_custom_signature(b"\x01" * 130)
        raw = signed.serialize()
        self.assertEqual(raw[0], EIP712_TX_TYPE)

        fields = rlp.decode(raw[1:])
        self.assertEqual(len(fields), 16)
        self.assertEqual(big_endian_to_int(fields[0]), 3)
        self.assertEqual(fields[4], b"\x22" * 20)
        self.assertEqual(fields[6], bytes.fromhex("deadbeef"))
        self.assertEqual(big_endian_to_int(fields[7]), 270)
        self.assertEqual(fields[8], b"")
        self.assertEqual(fields[11], b"\x11" * 20)
        self.assertEqual(big_endian_to_int(fields[12]), DEFAULT_GAS_PER_PUBDATA_LIMIT)
        self.assertEqual(fields[13], [b"\x00" * 32])
        self.assertEqual(fields[14], b"\x01" * 130)
        self.assertEqual(fields[15], [])

    def test_deserialize(self):
        signed = self.transaction.with_custom_signature(b"\x01" * 130)
        decoded = Transaction.deserialize(signed.serialize())
        self.assertEqual(decoded.signed_digest(), signed.signed_digest())
        self.assertEqual(decoded.custom_data.custom_signature, b"\x01" * 130)
        self.assertEqual(decoded.sender, signed.sender)

    def test_paymaster(self):
        params = PaymasterParams(AccountAddress(b"\x44" * 20), b"\x99")
        with_paymaster = replace(
            self.transaction,
            custom_data=replace(self.transaction.custom_data, paymaster_params=params),
        )
        self.assertNotEqual(
            with_paymaster.signed_digest(), self.transaction.signed_digest()
        )
        decoded = Transaction.deserialize(
            with_paymaster.with_custom_signature(b"\x01").serialize()
        )
        self.assertEqual(decoded.custom_data.paymaster_params, params)

    def test_empty_signature(self):
        with self.assertRaises(ValueError):
            self.transaction.with_custom_signature(b"").serialize()

    def test_deserialize_wrong_type(self):
        with self.assertRaises(ValueError):
            Transaction.deserialize(b"\x02" + rlp.encode([]))

    def test_deserialize_malformed(self):
        raw = self.transaction.with_custom_signature(b"\x01" * 65).serialize()
        fields = rlp.decode(raw[1:])

        def envelope(index: int, value: Any) -> bytes:
            changed = list(fields)
            changed[index] = value
            return b"\x71" + rlp.encode(changed)

        for malformed in (
            b"\x71",
            b"\x71\xff",
            raw[:-5],
            b"\x71" + rlp.encode(b"\x00" * 16),
            envelope(11, b"\x11" * 19),
            envelope(4, b""),
            envelope(0, [b"\x01"]),
            envelope(13, b"\x01"),
            envelope(15, [b"\x22" * 20]),
        ):
            with self.assertRaises(ValueError):
                Transaction.deserialize(malformed)

    def test_rpc_request(self):
        request = self.transaction.to_rpc_request()
        self.assertEqual(request["type"], "0x71")
        self.assertEqual(request["data"], "0xdeadbeef")
        self.assertEqual(request["value"], "0x5")
        self.assertEqual(request["eip712Meta"]["gasPerPubdata"], hex(50_000))
        self.assertEqual(request["eip712Meta"]["factoryDeps"], [[0] * 32])
