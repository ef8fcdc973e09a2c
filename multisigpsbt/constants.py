# Copyright (C) 2018-2025 The python-bitcoin-utils developers
#
# This file is part of python-bitcoin-utils
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of python-bitcoin-utils, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

NETWORKS = ("mainnet", "testnet", "signet", "regtest")

NETWORK_SEGWIT_PREFIXES = {
    "mainnet": "bc",
    "signet": "tb",
    "testnet": "tb",
    "regtest": "bcrt",
}

# BIP32 extended key version bytes
NETWORK_XPRV_VERSIONS = {
    "mainnet": b"\x04\x88\xad\xe4",
    "signet": b"\x04\x35\x83\x94",
    "testnet": b"\x04\x35\x83\x94",
    "regtest": b"\x04\x35\x83\x94",
}

NETWORK_XPUB_VERSIONS = {
    "mainnet": b"\x04\x88\xb2\x1e",
    "signet": b"\x04\x35\x87\xcf",
    "testnet": b"\x04\x35\x87\xcf",
    "regtest": b"\x04\x35\x87\xcf",
}

# version bytes -> (is_private, is_mainnet)
EXTENDED_KEY_VERSIONS = {
    b"\x04\x88\xad\xe4": (True, True),
    b"\x04\x88\xb2\x1e": (False, True),
    b"\x04\x35\x83\x94": (True, False),
    b"\x04\x35\x87\xcf": (False, False),
}

EXTENDED_KEY_PAYLOAD_SIZE = 78

BIP32_HARDENED_OFFSET = 0x80000000
BIP32_MAX_DEPTH = 255

# entropy bounds for root generation, in bytes
MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64
DEFAULT_SEED_BYTES = 32

# BIP48 account path for P2WSH multisig on test networks
DEFAULT_ACCOUNT_PATH = "m/48'/1'/0'/2'"


# Constants for address types
P2WPKH_ADDRESS_V0 = "p2wpkhv0"
P2WSH_ADDRESS_V0 = "p2wshv0"


# Constants related to transaction signature types
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80


DEFAULT_TX_LOCKTIME = b"\x00\x00\x00\x00"

DEFAULT_TX_SEQUENCE = b"\xff\xff\xff\xff"
# opts in to replace-by-fee (BIP125) without enabling a relative locktime
RBF_TX_SEQUENCE = b"\xfd\xff\xff\xff"


# TX version 2 was introduced in BIP-68 with relative locktime -- tx v1
# does not support relative locktime
DEFAULT_TX_VERSION = b"\x02\x00\x00\x00"


# outputs below this many satoshis are not relayed
DUST_LIMIT = 546

# multisig scripts are limited to 16 keys with small-integer pushes
MAX_MULTISIG_KEYS = 16

# secp256k1 group order and field prime
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_FIELD = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F


# PSBT (BIP174)
PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_GLOBAL_XPUB = 0x01
PSBT_GLOBAL_VERSION = 0xFB
PSBT_GLOBAL_PROPRIETARY = 0xFC

PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_BIP32_DERIVATION = 0x06
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08

PSBT_OUT_REDEEM_SCRIPT = 0x00
PSBT_OUT_WITNESS_SCRIPT = 0x01
PSBT_OUT_BIP32_DERIVATION = 0x02
