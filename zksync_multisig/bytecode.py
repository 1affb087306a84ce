# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
zkSync versioned bytecode hashes.

zkSync identifies contract code by a 32-byte hash rather than by the code
itself. Factory contracts store the hash of the account code they deploy, the
``CREATE2`` rule mixes it into derived addresses, and transactions list the
bytecodes they publish (``factory_deps``) so the node can map hashes back to
code.

Layout of the hash::

    byte 0      version, always 0x01
    byte 1      0x00
    bytes 2..3  bytecode length in 32-byte words, big-endian
    bytes 4..31 the tail of sha256(bytecode)
"""

import hashlib
import unittest

BYTECODE_HASH_VERSION: bytes = b"\x01\x00"
WORD_SIZE: int = 32
MAX_BYTECODE_LENGTH_IN_WORDS: int = (1 << 16) - 1


def hash_bytecode(bytecode: bytes) -> bytes:
    """Compute the versioned hash zkSync uses to identify ``bytecode``.

    Raises:
        ValueError: If the length is not a whole number of 32-byte words, the
            number of words is even, or the bytecode is too long to encode.
    """
    if len(bytecode) % WORD_SIZE != 0:
        raise ValueError("The bytecode length in bytes must be divisible by 32")

    length_in_words = len(bytecode) // WORD_SIZE
    if length_in_words > MAX_BYTECODE_LENGTH_IN_WORDS:
        raise ValueError(
            f"Bytecode can not be longer than {MAX_BYTECODE_LENGTH_IN_WORDS * WORD_SIZE} bytes"
        )
    if length_in_words % 2 == 0:
        raise ValueError("Bytecode length in 32-byte words must be odd")

    digest = hashlib.sha256(bytecode).digest()
    return BYTECODE_HASH_VERSION + length_in_words.to_bytes(2, "big") + digest[4:]


class Test(unittest.TestCase):
    def test_layout(self):
        bytecode = b"\x00" * 32 * 3
        result = hash_bytecode(bytecode)
        self.assertEqual(len(result), 32)
        self.assertEqual(result[:4], bytes.fromhex("01000003"))
        self.assertEqual(result[4:], hashlib.sha256(bytecode).digest()[4:])

    def test_deterministic(self):
        bytecode = bytes(range(32))
        self.assertEqual(hash_bytecode(bytecode), hash_bytecode(bytecode))
        self.assertNotEqual(hash_bytecode(bytecode), hash_bytecode(bytes(32)))

    def test_not_word_aligned(self):
        with self.assertRaises(ValueError):
            hash_bytecode(b"\x00" * 33)

    def test_even_word_count(self):
        with self.assertRaises(ValueError):
            hash_bytecode(b"\x00" * 64)

    def test_too_long(self):
        with self.assertRaises(ValueError):
            hash_bytecode(b"\x00" * 32 * (MAX_BYTECODE_LENGTH_IN_WORDS + 2))
