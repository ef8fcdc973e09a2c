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

"""Partially Signed Bitcoin Transactions (BIP174, version 0).

A ``PSBT`` holds the unsigned transaction plus one ``PSBTInput`` and one
``PSBTOutput`` per transaction input and output. Encoding is canonical:
entries of every map are written sorted by their serialized key, so two
documents with the same content always encode to the same bytes.
"""

from __future__ import annotations

import base64
import binascii
import copy
import struct
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from multisigpsbt.constants import (
    EXTENDED_KEY_PAYLOAD_SIZE,
    PSBT_GLOBAL_UNSIGNED_TX,
    PSBT_GLOBAL_VERSION,
    PSBT_GLOBAL_XPUB,
    PSBT_IN_BIP32_DERIVATION,
    PSBT_IN_FINAL_SCRIPTWITNESS,
    PSBT_IN_PARTIAL_SIG,
    PSBT_IN_SIGHASH_TYPE,
    PSBT_IN_WITNESS_SCRIPT,
    PSBT_IN_WITNESS_UTXO,
    PSBT_MAGIC,
    PSBT_OUT_BIP32_DERIVATION,
    PSBT_OUT_WITNESS_SCRIPT,
)
from multisigpsbt.errors import MalformedContainer, MissingWitnessData
from multisigpsbt.hdwallet import ExtendedKey, KeyOrigin
from multisigpsbt.logs import logs
from multisigpsbt.multisig import MultisigPolicy
from multisigpsbt.psbt_utils import (
    decode_witness_stack,
    decode_witness_utxo,
    encode_witness_stack,
    encode_witness_utxo,
    is_valid_pubkey,
    is_valid_signature,
    read_compact_size,
    read_key_value_pair,
    write_key_value_pair,
)
from multisigpsbt.script import Script
from multisigpsbt.transactions import Transaction, TxOutput
from multisigpsbt.utils import encode_varint

logger = logs.get_logger(__name__)

PSBT_VERSION = 0

Entries = List[Tuple[bytes, bytes]]


def _key(key_type: int, key_data: bytes = b"") -> bytes:
    return encode_varint(key_type) + key_data


def _encode_map(result: BytesIO, entries: Entries) -> None:
    for key, value in sorted(entries):
        key_stream = BytesIO(key)
        key_type = read_compact_size(key_stream)
        write_key_value_pair(result, key_type, key_stream.read(), value)
    # map separator
    result.write(b"\x00")


def _read_map(stream: BytesIO, section: str) -> List[Tuple[int, bytes, bytes]]:
    """Reads entries up to the separator, rejecting duplicate keys"""
    entries = []
    seen = set()
    while True:
        pair = read_key_value_pair(stream)
        if pair is None:
            break
        key_type, key_data, value = pair
        key = _key(key_type, key_data)
        if key in seen:
            raise MalformedContainer(f"Duplicate key {key.hex()} in {section} map")
        seen.add(key)
        entries.append(pair)
    logger.debug("Decoded %d entries from %s map", len(entries), section)
    return entries


def _expect_no_key_data(key_data: bytes, what: str) -> None:
    if key_data:
        raise MalformedContainer(f"Unexpected key data for {what}")


def _decode_origin(value: bytes) -> KeyOrigin:
    try:
        return KeyOrigin.from_bytes(value)
    except ValueError as e:
        raise MalformedContainer(f"Invalid key origin: {e}") from e


def _check_pubkey(key_data: bytes, what: str) -> None:
    if not is_valid_pubkey(key_data):
        raise MalformedContainer(f"Invalid public key in {what}")


class PSBTInput:
    """Signing data of one input

    Attributes
    ----------
    witness_utxo : TxOutput
        the output being spent (amount and P2WSH locking script)
    witness_script : Script
        the multisig witness script committed to by the locking script
    partial_sigs : dict
        compressed pubkey bytes -> DER signature plus sighash byte
    bip32_derivs : dict
        compressed pubkey bytes -> KeyOrigin
    sighash_type : int or None
    final_scriptwitness : list (bytes) or None
        the complete witness stack once finalized
    unknown : dict
        serialized key -> value for entries this module does not interpret
    """

    def __init__(self) -> None:
        self.witness_utxo: Optional[TxOutput] = None
        self.witness_script: Optional[Script] = None
        self.partial_sigs: Dict[bytes, bytes] = {}
        self.bip32_derivs: Dict[bytes, KeyOrigin] = {}
        self.sighash_type: Optional[int] = None
        self.final_scriptwitness: Optional[List[bytes]] = None
        self.unknown: Dict[bytes, bytes] = {}

    def is_finalized(self) -> bool:
        return self.final_scriptwitness is not None

    def clear_scaffolding(self) -> None:
        """Drops the fields only needed to produce the final witness"""
        self.partial_sigs = {}
        self.bip32_derivs = {}
        self.witness_script = None
        self.witness_utxo = None
        self.sighash_type = None

    def entries(self) -> Entries:
        entries: Entries = []
        if self.witness_utxo is not None:
            entries.append(
                (_key(PSBT_IN_WITNESS_UTXO), encode_witness_utxo(self.witness_utxo))
            )
        for pubkey, signature in self.partial_sigs.items():
            entries.append((_key(PSBT_IN_PARTIAL_SIG, pubkey), signature))
        if self.sighash_type is not None:
            entries.append(
                (_key(PSBT_IN_SIGHASH_TYPE), struct.pack("<I", self.sighash_type))
            )
        if self.witness_script is not None:
            entries.append((_key(PSBT_IN_WITNESS_SCRIPT), self.witness_script.to_bytes()))
        for pubkey, origin in self.bip32_derivs.items():
            entries.append((_key(PSBT_IN_BIP32_DERIVATION, pubkey), origin.to_bytes()))
        if self.final_scriptwitness is not None:
            entries.append(
                (
                    _key(PSBT_IN_FINAL_SCRIPTWITNESS),
                    encode_witness_stack(self.final_scriptwitness),
                )
            )
        entries.extend(self.unknown.items())
        return entries

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[int, bytes, bytes]]) -> "PSBTInput":
        psbt_input = cls()
        for key_type, key_data, value in entries:
            if key_type == PSBT_IN_WITNESS_UTXO:
                _expect_no_key_data(key_data, "witness UTXO")
                psbt_input.witness_utxo = decode_witness_utxo(value)
            elif key_type == PSBT_IN_PARTIAL_SIG:
                _check_pubkey(key_data, "partial signature")
                if not is_valid_signature(value):
                    raise MalformedContainer("Invalid partial signature encoding")
                psbt_input.partial_sigs[key_data] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE:
                _expect_no_key_data(key_data, "sighash type")
                if len(value) != 4:
                    raise MalformedContainer("Sighash type must be 4 bytes")
                sighash_type = struct.unpack("<I", value)[0]
                # signatures carry the sighash type in a single byte
                if sighash_type > 0xFF:
                    raise MalformedContainer(f"Sighash type out of range: {sighash_type:#x}")
                psbt_input.sighash_type = sighash_type
            elif key_type == PSBT_IN_WITNESS_SCRIPT:
                _expect_no_key_data(key_data, "witness script")
                psbt_input.witness_script = Script.from_raw(value)
            elif key_type == PSBT_IN_BIP32_DERIVATION:
                _check_pubkey(key_data, "BIP32 derivation")
                psbt_input.bip32_derivs[key_data] = _decode_origin(value)
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS:
                _expect_no_key_data(key_data, "final script witness")
                psbt_input.final_scriptwitness = decode_witness_stack(value)
            else:
                psbt_input.unknown[_key(key_type, key_data)] = value
        return psbt_input


class PSBTOutput:
    """Ownership data of one output (used for change detection)"""

    def __init__(self) -> None:
        self.witness_script: Optional[Script] = None
        self.bip32_derivs: Dict[bytes, KeyOrigin] = {}
        self.unknown: Dict[bytes, bytes] = {}

    def entries(self) -> Entries:
        entries: Entries = []
        if self.witness_script is not None:
            entries.append((_key(PSBT_OUT_WITNESS_SCRIPT), self.witness_script.to_bytes()))
        for pubkey, origin in self.bip32_derivs.items():
            entries.append((_key(PSBT_OUT_BIP32_DERIVATION, pubkey), origin.to_bytes()))
        entries.extend(self.unknown.items())
        return entries

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[int, bytes, bytes]]) -> "PSBTOutput":
        psbt_output = cls()
        for key_type, key_data, value in entries:
            if key_type == PSBT_OUT_WITNESS_SCRIPT:
                _expect_no_key_data(key_data, "output witness script")
                psbt_output.witness_script = Script.from_raw(value)
            elif key_type == PSBT_OUT_BIP32_DERIVATION:
                _check_pubkey(key_data, "output BIP32 derivation")
                psbt_output.bip32_derivs[key_data] = _decode_origin(value)
            else:
                psbt_output.unknown[_key(key_type, key_data)] = value
        return psbt_output


class PSBT:
    """A Partially Signed Bitcoin Transaction

    Attributes
    ----------
    tx : Transaction
        the unsigned transaction; never modified after creation
    inputs : list (PSBTInput)
        one per transaction input
    outputs : list (PSBTOutput)
        one per transaction output
    xpubs : dict
        78-byte serialized extended public key -> KeyOrigin
    version : int or None
        explicit PSBT version entry, if present
    unknown : dict
        serialized key -> value for unknown global entries

    Methods
    -------
    from_bytes(), from_base64()
        decode a document (classmethods)
    to_bytes(), to_base64()
        canonical encoding
    copy()
        deep copy
    is_finalized(index=None)
        True when the input (or every input) has a final witness
    signature_count(index)
        number of partial signatures on an input
    get_fee()
        sum of spent amounts minus sum of outputs
    """

    def __init__(self, unsigned_tx: Transaction) -> None:
        for txin in unsigned_tx.inputs:
            if txin.script_sig.to_bytes():
                raise ValueError("Unsigned transaction must have empty scriptSigs")
        if unsigned_tx.has_segwit or any(w.stack for w in unsigned_tx.witnesses):
            raise ValueError("Unsigned transaction must not carry witnesses")

        self.tx = unsigned_tx
        self.inputs: List[PSBTInput] = [PSBTInput() for _ in unsigned_tx.inputs]
        self.outputs: List[PSBTOutput] = [PSBTOutput() for _ in unsigned_tx.outputs]
        self.xpubs: Dict[bytes, KeyOrigin] = {}
        self.version: Optional[int] = None
        self.unknown: Dict[bytes, bytes] = {}

    @classmethod
    def from_base64(cls, psbt_str: str) -> "PSBT":
        try:
            psbt_bytes = base64.b64decode(psbt_str.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedContainer("PSBT is not valid base64") from e
        return cls.from_bytes(psbt_bytes)

    @classmethod
    def from_bytes(cls, psbt_bytes: bytes) -> "PSBT":
        """Decodes a binary PSBT

        Raises
        ------
        MalformedContainer
            bad magic, truncated data, duplicate keys, unexpected key data,
            invalid field values, missing or signed unsigned transaction,
            or trailing bytes
        """

        stream = BytesIO(psbt_bytes)
        if stream.read(len(PSBT_MAGIC)) != PSBT_MAGIC:
            raise MalformedContainer("Invalid PSBT magic")

        tx = None
        xpubs: Dict[bytes, KeyOrigin] = {}
        version = None
        unknown: Dict[bytes, bytes] = {}
        for key_type, key_data, value in _read_map(stream, "global"):
            if key_type == PSBT_GLOBAL_UNSIGNED_TX:
                _expect_no_key_data(key_data, "unsigned transaction")
                try:
                    tx = Transaction.from_bytes(value)
                except ValueError as e:
                    raise MalformedContainer(f"Invalid unsigned transaction: {e}") from e
            elif key_type == PSBT_GLOBAL_XPUB:
                if len(key_data) != EXTENDED_KEY_PAYLOAD_SIZE:
                    raise MalformedContainer("Global xpub key must be 78 bytes")
                xpubs[key_data] = _decode_origin(value)
            elif key_type == PSBT_GLOBAL_VERSION:
                _expect_no_key_data(key_data, "version")
                if len(value) != 4:
                    raise MalformedContainer("Version must be 4 bytes")
                version = struct.unpack("<I", value)[0]
                if version > PSBT_VERSION:
                    raise MalformedContainer(f"Unsupported PSBT version {version}")
            else:
                unknown[_key(key_type, key_data)] = value

        if tx is None:
            raise MalformedContainer("PSBT has no unsigned transaction")
        try:
            psbt = cls(tx)
        except ValueError as e:
            raise MalformedContainer(str(e)) from e
        psbt.xpubs = xpubs
        psbt.version = version
        psbt.unknown = unknown

        psbt.inputs = [
            PSBTInput.from_entries(_read_map(stream, f"input {i}"))
            for i in range(len(tx.inputs))
        ]
        psbt.outputs = [
            PSBTOutput.from_entries(_read_map(stream, f"output {i}"))
            for i in range(len(tx.outputs))
        ]

        if stream.read(1):
            raise MalformedContainer("Trailing data after the last output map")
        return psbt

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    def to_bytes(self) -> bytes:
        result = BytesIO()
        result.write(PSBT_MAGIC)

        entries: Entries = [
            (_key(PSBT_GLOBAL_UNSIGNED_TX), self.tx.to_bytes(include_witness=False))
        ]
        for xpub, origin in self.xpubs.items():
            entries.append((_key(PSBT_GLOBAL_XPUB, xpub), origin.to_bytes()))
        if self.version is not None:
            entries.append((_key(PSBT_GLOBAL_VERSION), struct.pack("<I", self.version)))
        entries.extend(self.unknown.items())
        _encode_map(result, entries)

        for psbt_input in self.inputs:
            _encode_map(result, psbt_input.entries())
        for psbt_output in self.outputs:
            _encode_map(result, psbt_output.entries())
        return result.getvalue()

    def copy(self) -> "PSBT":
        return copy.deepcopy(self)

    def add_xpub(self, xpub: ExtendedKey, origin: KeyOrigin) -> None:
        self.xpubs[xpub.neuter().to_bytes()] = origin

    def is_finalized(self, index: Optional[int] = None) -> bool:
        if index is not None:
            return self.inputs[index].is_finalized()
        return all(psbt_input.is_finalized() for psbt_input in self.inputs)

    def signature_count(self, index: int) -> int:
        return len(self.inputs[index].partial_sigs)

    def get_fee(self) -> int:
        total_in = 0
        for i, psbt_input in enumerate(self.inputs):
            if psbt_input.witness_utxo is None:
                raise MissingWitnessData(f"Input {i} has no witness UTXO")
            total_in += psbt_input.witness_utxo.amount
        return total_in - sum(txout.amount for txout in self.tx.outputs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PSBT):
            return False
        return self.to_bytes() == other.to_bytes()

    def __str__(self) -> str:
        return self.to_base64()

    def __repr__(self) -> str:
        return f"PSBT(txid={self.tx.get_txid()}, inputs={len(self.inputs)}, outputs={len(self.outputs)})"


def create_psbt(
    unsigned_tx: Transaction,
    witness_utxos: Sequence[TxOutput],
    policies: Union[MultisigPolicy, Sequence[MultisigPolicy]],
    xpubs: Optional[Dict[ExtendedKey, KeyOrigin]] = None,
) -> PSBT:
    """Creates the PSBT that every signer receives

    Parameters
    ----------
    unsigned_tx : Transaction
        the spend, without scriptSigs or witnesses
    witness_utxos : list (TxOutput)
        the output spent by each input, in input order
    policies : MultisigPolicy or list (MultisigPolicy)
        one policy for all inputs, or one per input; each policy must know
        the origin of every one of its keys
    xpubs : dict, optional
        account extended public keys to record globally

    Raises
    ------
    ValueError
        If the counts do not match, a policy lacks a key origin, or a
        UTXO is not locked by its policy's script
    """

    n_inputs = len(unsigned_tx.inputs)
    if len(witness_utxos) != n_inputs:
        raise ValueError(f"Expected {n_inputs} witness UTXOs, got {len(witness_utxos)}")
    if isinstance(policies, MultisigPolicy):
        policies = [policies] * n_inputs
    if len(policies) != n_inputs:
        raise ValueError(f"Expected {n_inputs} policies, got {len(policies)}")

    psbt = PSBT(Transaction.copy(unsigned_tx))
    for i, (utxo, policy) in enumerate(zip(witness_utxos, policies)):
        if utxo.script_pubkey.to_bytes() != policy.script_pubkey.to_bytes():
            raise ValueError(f"UTXO of input {i} is not locked by its witness script")
        psbt_input = psbt.inputs[i]
        psbt_input.witness_utxo = TxOutput.copy(utxo)
        psbt_input.witness_script = Script.copy(policy.witness_script)
        for public_key in policy.public_keys:
            key = public_key.to_bytes()
            if key not in policy.origins:
                raise ValueError(f"No key origin for {public_key.to_hex()}")
            psbt_input.bip32_derivs[key] = policy.origins[key]

    for xpub, origin in (xpubs or {}).items():
        psbt.add_xpub(xpub, origin)

    logger.debug("Created PSBT with %d inputs and %d outputs", n_inputs, len(psbt.outputs))
    return psbt


def read_psbt(data: Union[str, bytes]) -> PSBT:
    """Decodes a PSBT given as raw bytes or as base64 text"""
    if isinstance(data, bytes) and not data.startswith(PSBT_MAGIC):
        data = data.decode("ascii", errors="replace")
    if isinstance(data, str):
        return PSBT.from_base64(data)
    return PSBT.from_bytes(data)
