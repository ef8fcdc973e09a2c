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

"""
psbt_utils.py
=============
Helpers for reading and writing the key/value maps of a Partially Signed
Bitcoin Transaction (BIP174).

Functions provided:
  - read_compact_size / read_exact: stream readers that fail on truncation.
  - read_key_value_pair / write_key_value_pair: one map entry.
  - encode_witness_stack / decode_witness_stack: final script witness field.
  - encode_witness_utxo / decode_witness_utxo: witness UTXO field.
  - is_valid_pubkey / is_valid_signature: field validators.
"""

import struct
from io import SEEK_END, BytesIO
from typing import List, Optional, Tuple

from multisigpsbt.errors import MalformedContainer
from multisigpsbt.script import Script
from multisigpsbt.transactions import TxOutput
from multisigpsbt.utils import encode_varint


def read_exact(stream: BytesIO, size: int) -> bytes:
    """Reads exactly size bytes or raises MalformedContainer

    The declared size is checked against the bytes left in the stream
    before reading, so a length prefix near 2^64 fails the same way as a
    short one.
    """
    position = stream.tell()
    available = stream.seek(0, SEEK_END) - position
    stream.seek(position)
    if size > available:
        raise MalformedContainer(
            f"Unexpected end of data: need {size} bytes, {available} left"
        )
    return stream.read(size)


def read_compact_size(stream: BytesIO) -> int:
    first = read_exact(stream, 1)[0]
    if first < 0xFD:
        return first
    fmt, width = {0xFD: ("<H", 2), 0xFE: ("<I", 4), 0xFF: ("<Q", 8)}[first]
    return struct.unpack(fmt, read_exact(stream, width))[0]


def read_key_value_pair(stream: BytesIO) -> Optional[Tuple[int, bytes, bytes]]:
    """
    Read a key-value pair from the stream.

    Returns:
        Tuple of (key_type, key_data, value_data) or None if the map
        separator (a zero-length key) was found

    Raises:
        MalformedContainer if the stream ends inside the entry or before
        the separator.
    """
    key_len = read_compact_size(stream)
    if key_len == 0:
        return None

    key = BytesIO(read_exact(stream, key_len))
    key_type = read_compact_size(key)
    key_data = key.read()

    value_len = read_compact_size(stream)
    value = read_exact(stream, value_len)
    return key_type, key_data, value


def write_key_value_pair(
    result: BytesIO, key_type: int, key_data: bytes, value_data: bytes
) -> None:
    """Write a key-value pair to the stream."""
    key = encode_varint(key_type) + key_data
    result.write(encode_varint(len(key)))
    result.write(key)
    result.write(encode_varint(len(value_data)))
    result.write(value_data)


def encode_witness_stack(witness_stack: List[bytes]) -> bytes:
    """
    Encode a witness stack as <count> followed by <length><item> pairs.
    """
    result = encode_varint(len(witness_stack))
    for item in witness_stack:
        result += encode_varint(len(item)) + item
    return result


def decode_witness_stack(data: bytes) -> List[bytes]:
    """Decode an encoded witness stack into its items; trailing data is an error"""
    stream = BytesIO(data)
    count = read_compact_size(stream)
    items = [read_exact(stream, read_compact_size(stream)) for _ in range(count)]
    if stream.read(1):
        raise MalformedContainer("Trailing data in witness stack")
    return items


def encode_witness_utxo(txout: TxOutput) -> bytes:
    return txout.to_bytes()


def decode_witness_utxo(data: bytes) -> TxOutput:
    stream = BytesIO(data)
    amount = struct.unpack("<q", read_exact(stream, 8))[0]
    script = read_exact(stream, read_compact_size(stream))
    if stream.read(1):
        raise MalformedContainer("Trailing data in witness UTXO")
    if amount < 0:
        raise MalformedContainer("Negative witness UTXO amount")
    return TxOutput(amount, Script.from_raw(script))


def is_valid_pubkey(pubkey: bytes) -> bool:
    """
    Compressed keys are 33 bytes starting with 02/03, uncompressed keys are
    65 bytes starting with 04.
    """
    if len(pubkey) == 33:
        return pubkey[0] in (2, 3)
    if len(pubkey) == 65:
        return pubkey[0] == 4
    return False


def is_valid_signature(signature: bytes) -> bool:
    """Loose DER shape check: 0x30 <len> ... followed by one sighash byte"""
    return (
        9 <= len(signature) <= 73
        and signature[0] == 0x30
        and signature[1] == len(signature) - 3
    )
