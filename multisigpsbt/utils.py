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

from typing import Tuple

import hashlib
import struct

from multisigpsbt.ripemd160 import ripemd160


def prepend_compact_size(data: bytes) -> bytes:
    """
    Counts bytes and returns them with their varint (or compact size) prepended.
    """
    varint_bytes = encode_varint(len(data))
    return varint_bytes + data


def encode_varint(i: int) -> bytes:
    """
    Encode a potentially very large integer into varint bytes. The length should be
    specified in little-endian.

    https://bitcoin.org/en/developer-reference#compactsize-unsigned-integers
    """
    if i < 0:
        raise ValueError("Integer cannot be negative: %d" % i)
    if i < 253:
        return bytes([i])
    elif i < 0x10000:
        return b"\xfd" + i.to_bytes(2, "little")
    elif i < 0x100000000:
        return b"\xfe" + i.to_bytes(4, "little")
    elif i < 0x10000000000000000:
        return b"\xff" + i.to_bytes(8, "little")
    else:
        raise ValueError("Integer is too large: %d" % i)


def parse_compact_size(data: bytes) -> Tuple[int, int]:
    """
    Parse variable integer. Returns (count, size)

    Raises ValueError if data is too short for the announced width.
    """
    if not data:
        raise ValueError("Cannot parse compact size from empty data")
    first_byte = data[0]
    if first_byte < 0xFD:
        return (first_byte, 1)
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first_byte]
    if len(data) < 1 + width:
        raise ValueError("Truncated compact size")
    fmt = {2: "<H", 4: "<I", 8: "<Q"}[width]
    return (struct.unpack(fmt, data[1 : 1 + width])[0], 1 + width)


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    return ripemd160(hashlib.sha256(data).digest())


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


#
# Basic conversions between bytes (b) and hexadecimal (h)
#
def b_to_h(b: bytes) -> str:
    """Converts bytes to hexadecimal string"""
    return b.hex()


def h_to_b(h: str) -> bytes:
    """Converts hexadecimal string to bytes"""
    return bytes.fromhex(h)


