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


import unittest

from multisigpsbt.setup import setup
from multisigpsbt.constants import SIGHASH_ALL
from multisigpsbt.keys import to_script_pub_key
from multisigpsbt.script import Script
from multisigpsbt.transactions import Transaction, TxInput, TxOutput, TxWitnessInput
from multisigpsbt.utils import b_to_h


class TestTransaction(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        # BIP143 native P2WPKH example
        self.bip143_unsigned = (
            "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f"
            "0000000000eeffffffef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57"
            "b90ec68a0100000000ffffffff02202cb206000000001976a9148280b37df378db99f66f85"
            "c95a783a76ac7a6d5988ac9093510d000000001976a9143bde42dbee7e4dbe6a21b2d50ce2"
            "f0167faa815988ac11000000"
        )
        self.script_code = Script.from_raw(
            "76a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac"
        )

        self.txin = TxInput("aa" * 32, 1)
        self.txout = TxOutput(
            50_000, to_script_pub_key("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
        )
        self.tx = Transaction([self.txin], [self.txout])

    def test_parse_and_serialize(self):
        tx = Transaction.from_raw(self.bip143_unsigned)
        self.assertEqual(len(tx.inputs), 2)
        self.assertEqual(len(tx.outputs), 2)
        self.assertEqual(tx.inputs[0].sequence, bytes.fromhex("eeffffff"))
        self.assertEqual(tx.outputs[0].amount, 112340000)
        self.assertEqual(tx.to_hex(), self.bip143_unsigned)

    def test_bip143_segwit_digest(self):
        tx = Transaction.from_raw(self.bip143_unsigned)
        digest = tx.get_transaction_segwit_digest(1, self.script_code, 600000000, SIGHASH_ALL)
        self.assertEqual(
            b_to_h(digest), "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"
        )

    def test_digest_input_out_of_range(self):
        with self.assertRaises(IndexError):
            self.tx.get_transaction_segwit_digest(1, self.script_code, 1)

    def test_segwit_serialization(self):
        unsigned = self.tx.to_bytes()
        signed = Transaction.copy(self.tx)
        signed.has_segwit = True
        signed.witnesses = [TxWitnessInput(["", "abcd"])]
        raw = signed.to_bytes()
        self.assertEqual(raw[4:6], b"\x00\x01")
        self.assertEqual(signed.get_txid(), self.tx.get_txid())
        self.assertNotEqual(signed.get_wtxid(), signed.get_txid())
        self.assertLess(signed.get_vsize(), signed.get_size())

        parsed = Transaction.from_bytes(raw)
        self.assertTrue(parsed.has_segwit)
        self.assertEqual(parsed.witnesses[0].stack, ["", "abcd"])
        self.assertEqual(parsed.to_bytes(include_witness=False), unsigned)

    def test_copy_is_independent(self):
        copied = Transaction.copy(self.tx)
        copied.outputs[0].amount = 1
        self.assertEqual(self.tx.outputs[0].amount, 50_000)

    def test_truncated_and_trailing(self):
        raw = self.tx.to_bytes()
        with self.assertRaises(ValueError):
            Transaction.from_bytes(raw[:-1])
        with self.assertRaises(ValueError):
            Transaction.from_bytes(raw + b"\x00")

    def test_invalid_fields(self):
        with self.assertRaises(ValueError):
            TxInput("aa" * 31, 0)
        with self.assertRaises(ValueError):
            TxOutput(-1, self.txout.script_pubkey)
        with self.assertRaises(TypeError):
            TxOutput(0.5, self.txout.script_pubkey)

    def test_outpoint_is_little_endian(self):
        txin = TxInput("00" * 31 + "01", 2)
        self.assertEqual(txin.outpoint_bytes(), b"\x01" + b"\x00" * 31 + b"\x02\x00\x00\x00")


if __name__ == "__main__":
    unittest.main()
