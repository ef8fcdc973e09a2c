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

__version__ = "0.1.0"

from multisigpsbt.setup import setup, get_network

from multisigpsbt.errors import (
    MultisigPsbtError,
    InsufficientEntropy,
    InvalidDerivation,
    InvalidThreshold,
    InvalidKeyEncoding,
    InvalidDescriptor,
    MalformedContainer,
    KeyNotFound,
    MissingWitnessData,
    MismatchedTransaction,
    MergeConflict,
    InsufficientSignatures,
    NotFinalized,
)

from multisigpsbt.keys import PrivateKey, PublicKey, P2wpkhAddress, P2wshAddress

from multisigpsbt.script import Script

from multisigpsbt.transactions import Transaction, TxInput, TxOutput, TxWitnessInput

from multisigpsbt.hdwallet import (
    DerivationPath,
    ExtendedKey,
    KeyKind,
    KeyOrigin,
    derive,
    derive_path,
    fingerprint,
    generate_root,
)

from multisigpsbt.multisig import MultisigPolicy, build_policy

from multisigpsbt.descriptor import SortedMultiDescriptor

from multisigpsbt.psbt import PSBT, PSBTInput, PSBTOutput, create_psbt

from multisigpsbt.signer import sign_psbt

from multisigpsbt.combiner import combine_psbts

from multisigpsbt.finalizer import extract, finalize, validate

from multisigpsbt.wallet import (
    KeyRecord,
    MultisigWallet,
    Utxo,
    XpubOrigin,
    generate_key_record,
)

from multisigpsbt.logs import logs

__all__ = [
    'setup',
    'get_network',
    'MultisigPsbtError',
    'InsufficientEntropy',
    'InvalidDerivation',
    'InvalidThreshold',
    'InvalidKeyEncoding',
    'InvalidDescriptor',
    'MalformedContainer',
    'KeyNotFound',
    'MissingWitnessData',
    'MismatchedTransaction',
    'MergeConflict',
    'InsufficientSignatures',
    'NotFinalized',
    'PrivateKey',
    'PublicKey',
    'P2wpkhAddress',
    'P2wshAddress',
    'Script',
    'Transaction',
    'TxInput',
    'TxOutput',
    'TxWitnessInput',
    'DerivationPath',
    'ExtendedKey',
    'KeyKind',
    'KeyOrigin',
    'derive',
    'derive_path',
    'fingerprint',
    'generate_root',
    'MultisigPolicy',
    'build_policy',
    'SortedMultiDescriptor',
    'PSBT',
    'PSBTInput',
    'PSBTOutput',
    'create_psbt',
    'sign_psbt',
    'combine_psbts',
    'validate',
    'finalize',
    'extract',
    'KeyRecord',
    'MultisigWallet',
    'Utxo',
    'XpubOrigin',
    'generate_key_record',
    'logs',
]
