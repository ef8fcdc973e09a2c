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


import base64
import unittest
from io import BytesIO

from multisigpsbt.setup import setup
from multisigpsbt.constants import PSBT_GLOBAL_UNSIGNED_TX, PSBT_GLOBAL_VERSION, PSBT_MAGIC
from multisigpsbt.errors import MalformedContainer, MissingWitnessData
from multisigpsbt.multisig import build_policy
from multisigpsbt.psbt import PSBT, create_psbt, read_psbt
from multisigpsbt.psbt_utils import write_key_value_pair
from multisigpsbt.script import Script
from multisigpsbt.transactions import Transaction, TxOutput

from psbt_test_helpers import (
    FEE,
    FUNDED_AMOUNT,
    make_records,
    make_unsigned,
    make_wallet,
)


# single-sig P2WPKH spend produced by an external wallet: one input with both
# UTXO forms and key origins, a change output with its key origin
EXTERNAL_PSBT = (
    "cHNidP8BAH0CAAAAAZvg4s1Yxz9DddwBeI+qqU7hcldqGSgWPXuZZReEFYvKAAAAAAD+////AqdT"
    "iQAAAAAAFgAUK5M/aeXrJEofBL7Uno7J5OyTvJ9AQg8AAAAAACJgIAAAAAAAAAAAAAAAAAAAAAAA"
    "AAAAAAAAAAAAAAAAAAAAAAAAAAABAHECAAAAAYWOSCXXmA0ztidPI5A6FskW99o7nWNVeFP7rXND"
    "5B9aAAAAAAD+////AoCWmAAAAAAAFgAUE0foKgN7Xbs4z4xHWfJCsfXH4JrzWm0pAQAAABYAFF7X"
    "SHCIZoptcIrXIWce1tKqp11EaQAAAAEBH4CWmAAAAAAAFgAUE0foKgN7Xbs4z4xHWfJCsfXH4Joi"
    "BgJ8t100sAXE659iu/LEV9djjoE+dX787I+mhnfZULY2Yhj1rML9VAAAgAEAAIAAAACAAAAAAAAA"
    "AAAAIgIDGZuJ2DVvV+HOOAoSBc8oYG2+qJhVsRw9/s+4oaUzVokY9azC/VQAAIABAACAAAAAgAEA"
    "AAABAAAAAAA="
)


class TestCreatePsbt(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.records = make_records()
        self.wallet = make_wallet(self.records)
        self.psbt = make_unsigned(self.wallet)

    def test_input_fields(self):
        policy = self.wallet.policy(0)
        psbt_input = self.psbt.inputs[0]
        self.assertEqual(psbt_input.witness_utxo.amount, FUNDED_AMOUNT)
        self.assertEqual(
            psbt_input.witness_utxo.script_pubkey.to_bytes(), policy.script_pubkey.to_bytes()
        )
        self.assertEqual(psbt_input.witness_script.to_bytes(), policy.witness_script.to_bytes())
        self.assertEqual(psbt_input.bip32_derivs, policy.origins)
        self.assertEqual(len(psbt_input.bip32_derivs), 3)
        self.assertEqual(psbt_input.partial_sigs, {})
        self.assertFalse(psbt_input.is_finalized())
        fingerprints = {origin.fingerprint.hex() for origin in psbt_input.bip32_derivs.values()}
        self.assertEqual(fingerprints, {record.fingerprint for record in self.records})

    def test_global_xpubs(self):
        self.assertEqual(len(self.psbt.xpubs), 3)
        for origin in self.psbt.xpubs.values():
            self.assertEqual(origin.path.to_string(), "m/48'/1'/0'/2'")

    def test_change_output(self):
        self.assertEqual(len(self.psbt.outputs), 2)
        self.assertIsNone(self.psbt.outputs[0].witness_script)
        change = self.psbt.outputs[1]
        self.assertEqual(
            change.witness_script.to_bytes(), self.wallet.witness_script(1).to_bytes()
        )
        self.assertEqual(len(change.bip32_derivs), 3)

    def test_fee(self):
        self.assertEqual(self.psbt.get_fee(), FEE)
        self.psbt.inputs[0].witness_utxo = None
        with self.assertRaises(MissingWitnessData):
            self.psbt.get_fee()

    def test_unsigned_tx_untouched(self):
        tx = self.psbt.tx
        self.assertFalse(tx.has_segwit)
        self.assertEqual(tx.inputs[0].script_sig.to_bytes(), b"")

    def test_rejects_signed_transaction(self):
        tx = Transaction.copy(self.psbt.tx)
        tx.inputs[0].script_sig = Script(["OP_1"])
        with self.assertRaises(ValueError):
            PSBT(tx)
        tx = Transaction.copy(self.psbt.tx)
        tx.has_segwit = True
        with self.assertRaises(ValueError):
            PSBT(tx)

    def test_create_errors(self):
        policy = self.wallet.policy(0)
        utxo = TxOutput(FUNDED_AMOUNT, policy.script_pubkey)
        tx = self.psbt.tx
        with self.assertRaises(ValueError):
            create_psbt(tx, [], policy)
        with self.assertRaises(ValueError):
            create_psbt(tx, [utxo], [policy, policy])
        with self.assertRaises(ValueError):
            create_psbt(tx, [TxOutput(FUNDED_AMOUNT, self.wallet.policy(5).script_pubkey)], policy)
        # policy without key origins
        bare = build_policy(2, policy.public_keys)
        with self.assertRaises(ValueError):
            create_psbt(tx, [utxo], bare)

    def test_create_does_not_alias_inputs(self):
        policy = self.wallet.policy(0)
        utxo = TxOutput(FUNDED_AMOUNT, policy.script_pubkey)
        psbt = create_psbt(self.psbt.tx, [utxo], policy)
        utxo.amount = 1
        self.assertEqual(psbt.inputs[0].witness_utxo.amount, FUNDED_AMOUNT)


class TestPsbtCodec(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.wallet = make_wallet()
        self.psbt = make_unsigned(self.wallet)

    def test_roundtrip_bytes(self):
        raw = self.psbt.to_bytes()
        self.assertTrue(raw.startswith(PSBT_MAGIC))
        decoded = PSBT.from_bytes(raw)
        self.assertEqual(decoded.to_bytes(), raw)
        self.assertEqual(decoded.tx.get_txid(), self.psbt.tx.get_txid())
        self.assertEqual(decoded.inputs[0].bip32_derivs, self.psbt.inputs[0].bip32_derivs)
        self.assertEqual(decoded.xpubs, self.psbt.xpubs)

    def test_roundtrip_base64(self):
        text = self.psbt.to_base64()
        self.assertTrue(text.startswith("cHNidP8"))
        self.assertEqual(PSBT.from_base64(text), self.psbt)
        self.assertEqual(str(self.psbt), text)

    def test_read_psbt(self):
        self.assertEqual(read_psbt(self.psbt.to_bytes()), self.psbt)
        self.assertEqual(read_psbt(self.psbt.to_base64()), self.psbt)
        self.assertEqual(read_psbt(self.psbt.to_base64().encode("ascii")), self.psbt)

    def test_canonical_entry_order(self):
        reordered = self.psbt.copy()
        derivs = reordered.inputs[0].bip32_derivs
        reordered.inputs[0].bip32_derivs = dict(reversed(list(derivs.items())))
        reordered.xpubs = dict(reversed(list(reordered.xpubs.items())))
        self.assertEqual(reordered.to_bytes(), self.psbt.to_bytes())

    def test_unknown_entries_preserved(self):
        self.psbt.unknown[b"\xfc\x05hello"] = b"world"
        self.psbt.inputs[0].unknown[b"\xfc\x01abc"] = b"xyz"
        self.psbt.outputs[1].unknown[b"\x99"] = b"\x01\x02"
        decoded = PSBT.from_bytes(self.psbt.to_bytes())
        self.assertEqual(decoded.unknown, {b"\xfc\x05hello": b"world"})
        self.assertEqual(decoded.inputs[0].unknown, {b"\xfc\x01abc": b"xyz"})
        self.assertEqual(decoded.outputs[1].unknown, {b"\x99": b"\x01\x02"})
        self.assertEqual(decoded.to_bytes(), self.psbt.to_bytes())

    def test_sighash_type_and_version(self):
        self.psbt.inputs[0].sighash_type = 0x81
        self.psbt.version = 0
        decoded = PSBT.from_bytes(self.psbt.to_bytes())
        self.assertEqual(decoded.inputs[0].sighash_type, 0x81)
        self.assertEqual(decoded.version, 0)

    def test_final_witness_roundtrip(self):
        self.psbt.inputs[0].final_scriptwitness = [b"", b"\x30" * 3, b"\x52\xae"]
        decoded = PSBT.from_bytes(self.psbt.to_bytes())
        self.assertTrue(decoded.is_finalized(0))
        self.assertEqual(decoded.inputs[0].final_scriptwitness, [b"", b"\x30" * 3, b"\x52\xae"])

    def test_copy_is_deep(self):
        copied = self.psbt.copy()
        copied.inputs[0].partial_sigs[b"\x02" * 33] = b"sig"
        self.assertEqual(self.psbt.inputs[0].partial_sigs, {})

    def test_bad_magic(self):
        raw = self.psbt.to_bytes()
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(b"pbst\xff" + raw[5:])
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(b"")

    def test_truncated(self):
        raw = self.psbt.to_bytes()
        for cut in (6, 40, len(raw) // 2, len(raw) - 1):
            with self.assertRaises(MalformedContainer):
                PSBT.from_bytes(raw[:cut])

    def test_trailing_data(self):
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(self.psbt.to_bytes() + b"\x00")

    def test_invalid_base64(self):
        with self.assertRaises(MalformedContainer):
            PSBT.from_base64("not base64!")

    def _global_map(self, *entries):
        result = BytesIO()
        result.write(PSBT_MAGIC)
        for key_type, key_data, value in entries:
            write_key_value_pair(result, key_type, key_data, value)
        result.write(b"\x00")
        return result

    def test_duplicate_key(self):
        tx_bytes = self.psbt.tx.to_bytes(include_witness=False)
        stream = self._global_map(
            (PSBT_GLOBAL_UNSIGNED_TX, b"", tx_bytes),
            (PSBT_GLOBAL_UNSIGNED_TX, b"", tx_bytes),
        )
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(stream.getvalue())

    def test_missing_unsigned_tx(self):
        stream = self._global_map()
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(stream.getvalue())

    def test_unsupported_version(self):
        tx_bytes = self.psbt.tx.to_bytes(include_witness=False)
        stream = self._global_map(
            (PSBT_GLOBAL_UNSIGNED_TX, b"", tx_bytes),
            (PSBT_GLOBAL_VERSION, b"", (2).to_bytes(4, "little")),
        )
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(stream.getvalue())

    def test_unsigned_tx_with_key_data(self):
        tx_bytes = self.psbt.tx.to_bytes(include_witness=False)
        stream = self._global_map((PSBT_GLOBAL_UNSIGNED_TX, b"\x01", tx_bytes))
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(stream.getvalue())

    def test_invalid_field_values(self):
        bad_sig = self.psbt.copy()
        pubkey = next(iter(bad_sig.inputs[0].bip32_derivs))
        bad_sig.inputs[0].partial_sigs[pubkey] = b"\x30\x01"
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(bad_sig.to_bytes())

        bad_key = self.psbt.copy()
        origin = next(iter(bad_key.inputs[0].bip32_derivs.values()))
        bad_key.inputs[0].bip32_derivs[b"\x05" + b"\x00" * 32] = origin
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(bad_key.to_bytes())

    def test_bytes_are_stable(self):
        self.assertEqual(
            base64.b64decode(self.psbt.to_base64()), make_unsigned(self.wallet).to_bytes()
        )

    def test_huge_declared_length(self):
        # value length 2^64 - 1 after a one-byte key
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(PSBT_MAGIC + b"\x01\x00" + b"\xff" + b"\xff" * 8)
        # key length 2^64 - 1
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(PSBT_MAGIC + b"\xff" + b"\xff" * 8)
        raw = bytearray(self.psbt.to_bytes())
        raw[7] = 0xFF
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(bytes(raw))

    def test_sighash_type_must_fit_a_byte(self):
        self.psbt.inputs[0].sighash_type = 0x101
        with self.assertRaises(MalformedContainer):
            PSBT.from_bytes(self.psbt.to_bytes())
        self.psbt.inputs[0].sighash_type = 0xFF
        self.assertEqual(PSBT.from_bytes(self.psbt.to_bytes()).inputs[0].sighash_type, 0xFF)


class TestExternalDocument(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.psbt = PSBT.from_base64(EXTERNAL_PSBT)

    def test_reencodes_byte_for_byte(self):
        self.assertEqual(self.psbt.to_base64(), EXTERNAL_PSBT)
        self.assertEqual(PSBT.from_bytes(self.psbt.to_bytes()), self.psbt)

    def test_fields(self):
        self.assertEqual(len(self.psbt.inputs), 1)
        self.assertEqual(len(self.psbt.outputs), 2)
        psbt_input = self.psbt.inputs[0]
        self.assertEqual(psbt_input.witness_utxo.amount, 10_000_000)
        self.assertTrue(psbt_input.witness_utxo.script_pubkey.is_p2wpkh())
        # the non-witness UTXO is carried as an uninterpreted entry
        self.assertEqual(list(psbt_input.unknown), [b"\x00"])
        (origin,) = psbt_input.bip32_derivs.values()
        self.assertEqual(origin.fingerprint.hex(), "f5acc2fd")
        self.assertEqual(origin.path.to_string(), "m/84'/1'/0'/0/0")
        (change,) = self.psbt.outputs[0].bip32_derivs.values()
        self.assertEqual(change.path.to_string(), "m/84'/1'/0'/1/1")
        self.assertEqual(self.psbt.outputs[1].bip32_derivs, {})
        self.assertIsNone(self.psbt.version)
        self.assertFalse(self.psbt.is_finalized())

    def test_every_truncation_is_rejected(self):
        raw = base64.b64decode(EXTERNAL_PSBT)
        for cut in range(len(raw)):
            with self.assertRaises(MalformedContainer):
                PSBT.from_bytes(raw[:cut])


if __name__ == "__main__":
    unittest.main()
