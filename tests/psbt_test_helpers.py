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

"""Shared fixtures for the PSBT tests: three fixed key owners, their 2-of-3
wallet and a funded spend."""

from multisigpsbt.wallet import MultisigWallet, Utxo, generate_key_record

SEEDS = [bytes([1]) * 32, bytes([2]) * 32, bytes([3]) * 32]
NAMES = ["key_a", "key_b", "key_c"]

DESTINATION = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
FUNDING_TXID = "00" * 31 + "01"
SECOND_FUNDING_TXID = "00" * 31 + "02"

FUNDED_AMOUNT = 100_000_000
SEND_AMOUNT = 50_000_000
FEE = 1000


def make_records():
    return [generate_key_record(name, seed) for name, seed in zip(NAMES, SEEDS)]


def make_wallet(records=None):
    if records is None:
        records = make_records()
    return MultisigWallet.from_key_records(records, 2)


def make_unsigned(wallet, amount=SEND_AMOUNT, utxos=None):
    if utxos is None:
        utxos = [Utxo(FUNDING_TXID, 0, FUNDED_AMOUNT, index=0)]
    return wallet.create_spend(utxos, DESTINATION, amount, FEE)


def make_two_input_unsigned(wallet):
    utxos = [
        Utxo(FUNDING_TXID, 0, 60_000_000, index=0),
        Utxo(SECOND_FUNDING_TXID, 1, 50_000_000, index=2),
    ]
    return wallet.create_spend(utxos, DESTINATION, 100_000_000, FEE)
