# Copyright (C) 2018-2025 The python-bitcoin-utils developers
#
# This file is part of python-bitcoin-utils
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of python-bitcoin-utils, including this file, may be copied,
# modified, propagated, or distributed except according to the terms contained
# in the LICENSE file.


import itertools
import unittest

from multisigpsbt.setup import setup
from multisigpsbt.errors import InvalidKeyEncoding, InvalidThreshold
from multisigpsbt.hdwallet import KeyOrigin
from multisigpsbt.keys import P2wshAddress, PrivateKey
from multisigpsbt.multisig import MultisigPolicy, build_policy, sort_signatures
from multisigpsbt.script import Script
from multisigpsbt.utils import h_to_b


class TestBuildPolicy(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.keys = [PrivateKey(secret_exponent=i).get_public_key() for i in (11, 22, 33)]
        self.origins = [
            KeyOrigin(h_to_b(fp), "m/48'/1'/0'/2'/0/0")
            for fp in ("aaaaaaaa", "bbbbbbbb", "cccccccc")
        ]

    def test_script_layout(self):
        policy = build_policy(2, self.keys)
        tokens = policy.witness_script.get_script()
        self.assertEqual(tokens[0], 2)
        self.assertEqual(tokens[-2], 3)
        self.assertEqual(tokens[-1], "OP_CHECKMULTISIG")
        pushed = [h_to_b(t) for t in tokens[1:-2]]
        self.assertEqual(pushed, sorted(k.to_bytes() for k in self.keys))
        self.assertEqual(policy.threshold, 2)
        self.assertEqual(policy.n, 3)

    def test_order_independent(self):
        reference = build_policy(2, list(zip(self.keys, self.origins)))
        for perm in itertools.permutations(zip(self.keys, self.origins)):
            policy = build_policy(2, list(perm))
            self.assertEqual(policy.witness_script.to_bytes(), reference.witness_script.to_bytes())
            self.assertEqual(policy.address(), reference.address())
            self.assertEqual(policy.origins, reference.origins)

    def test_accepts_bytes_and_hex(self):
        from_objects = build_policy(2, self.keys)
        from_bytes = build_policy(2, [k.to_bytes() for k in self.keys])
        from_hex = build_policy(2, [k.to_hex() for k in self.keys])
        self.assertEqual(from_objects, from_bytes)
        self.assertEqual(from_objects, from_hex)

    def test_address(self):
        policy = build_policy(2, self.keys)
        addr = policy.get_address()
        self.assertIsInstance(addr, P2wshAddress)
        self.assertTrue(policy.address().startswith("tb1q"))
        self.assertTrue(policy.address("mainnet").startswith("bc1q"))
        self.assertEqual(addr.to_script_pub_key(), policy.script_pubkey)
        self.assertTrue(policy.script_pubkey.is_p2wsh())

    def test_invalid_threshold(self):
        with self.assertRaises(InvalidThreshold):
            build_policy(0, self.keys)
        with self.assertRaises(InvalidThreshold):
            build_policy(4, self.keys)
        many = [PrivateKey(secret_exponent=i).get_public_key() for i in range(1, 18)]
        with self.assertRaises(InvalidThreshold):
            build_policy(2, many)

    def test_uncompressed_key_rejected(self):
        uncompressed = self.keys[0].to_hex(compressed=False)
        with self.assertRaises(InvalidKeyEncoding):
            build_policy(2, [uncompressed] + self.keys[1:])
        with self.assertRaises(InvalidKeyEncoding):
            build_policy(2, ["02" + "00" * 31] + self.keys[1:])

    def test_duplicate_key(self):
        with self.assertRaises(ValueError):
            build_policy(2, [self.keys[0], self.keys[0], self.keys[1]])

    def test_key_position(self):
        policy = build_policy(2, self.keys)
        ordered = sorted(self.keys, key=lambda k: k.to_bytes())
        for position, key in enumerate(ordered):
            self.assertEqual(policy.key_position(key), position)
        outsider = PrivateKey(secret_exponent=44).get_public_key()
        self.assertFalse(policy.contains(outsider))
        with self.assertRaises(ValueError):
            policy.key_position(outsider)

    def test_from_witness_script(self):
        policy = build_policy(2, self.keys)
        parsed = MultisigPolicy.from_witness_script(Script.from_raw(policy.witness_script.to_bytes()))
        self.assertEqual(parsed, policy)
        self.assertEqual(parsed.threshold, 2)
        with self.assertRaises(ValueError):
            MultisigPolicy.from_witness_script(Script(["OP_1"]))

    def test_sort_signatures(self):
        policy = build_policy(2, self.keys)
        ordered = sorted(k.to_bytes() for k in self.keys)
        sigs = {ordered[2]: b"sig-c", ordered[0]: b"sig-a", b"\x02" + b"\x00" * 32: b"x"}
        self.assertEqual(
            sort_signatures(policy.witness_script, sigs),
            [(ordered[0], b"sig-a"), (ordered[2], b"sig-c")],
        )


if __name__ == "__main__":
    unittest.main()
