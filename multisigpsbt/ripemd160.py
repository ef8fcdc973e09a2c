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

"""RIPEMD-160 used by hash160 (key fingerprints and P2WPKH programs).

OpenSSL 3 moved RIPEMD-160 into its legacy provider so ``hashlib`` may not
offer it. The digest is taken from ``hashlib`` when available and computed
here otherwise.
"""

import hashlib


# message word selection, left and right lines
_WORDS_LEFT = (
    0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15,
    7, 4, 13, 1, 10, 6, 15, 3, 12, 0, 9, 5, 2, 14, 11, 8,
    3, 10, 14, 4, 9, 15, 8, 1, 2, 7, 0, 6, 13, 11, 5, 12,
    1, 9, 11, 10, 0, 8, 12, 4, 13, 3, 7, 15, 14, 5, 6, 2,
    4, 0, 5, 9, 7, 12, 2, 10, 14, 1, 3, 8, 11, 6, 15, 13,
)
_WORDS_RIGHT = (
    5, 14, 7, 0, 9, 2, 11, 4, 13, 6, 15, 8, 1, 10, 3, 12,
    6, 11, 3, 7, 0, 13, 5, 10, 14, 15, 8, 12, 4, 9, 1, 2,
    15, 5, 1, 3, 7, 14, 6, 9, 11, 8, 12, 2, 10, 0, 4, 13,
    8, 6, 4, 1, 3, 11, 15, 0, 5, 12, 2, 13, 9, 7, 10, 14,
    12, 15, 10, 4, 1, 5, 8, 7, 6, 2, 13, 14, 0, 3, 9, 11,
)

# left rotation amounts
_SHIFTS_LEFT = (
    11, 14, 15, 12, 5, 8, 7, 9, 11, 13, 14, 15, 6, 7, 9, 8,
    7, 6, 8, 13, 11, 9, 7, 15, 7, 12, 15, 9, 11, 7, 13, 12,
    11, 13, 6, 7, 14, 9, 13, 15, 14, 8, 13, 6, 5, 12, 7, 5,
    11, 12, 14, 15, 14, 15, 9, 8, 9, 14, 5, 6, 8, 6, 5, 12,
    9, 15, 5, 11, 6, 8, 13, 12, 5, 12, 13, 14, 11, 8, 5, 6,
)
_SHIFTS_RIGHT = (
    8, 9, 9, 11, 13, 15, 15, 5, 7, 7, 8, 11, 14, 14, 12, 6,
    9, 13, 15, 7, 12, 8, 9, 11, 7, 7, 12, 7, 6, 15, 13, 11,
    9, 7, 15, 11, 8, 6, 6, 14, 12, 13, 5, 14, 13, 13, 7, 5,
    15, 5, 8, 11, 14, 14, 6, 14, 6, 9, 12, 9, 12, 5, 15, 8,
    8, 5, 12, 9, 12, 5, 14, 6, 8, 13, 6, 5, 15, 13, 11, 11,
)

_ROUND_CONSTANTS_LEFT = (0, 0x5A827999, 0x6ED9EBA1, 0x8F1BBCDC, 0xA953FD4E)
_ROUND_CONSTANTS_RIGHT = (0x50A28BE6, 0x5C4DD124, 0x6D703EF3, 0x7A6D76E9, 0)

_INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)


def _boolean(x: int, y: int, z: int, round_index: int) -> int:
    if round_index == 0:
        return x ^ y ^ z
    if round_index == 1:
        return (x & y) | (~x & z)
    if round_index == 2:
        return (x | ~y) ^ z
    if round_index == 3:
        return (x & z) | (y & ~z)
    return x ^ (y | ~z)


def _rotl32(x: int, n: int) -> int:
    x &= 0xFFFFFFFF
    return ((x << n) | (x >> (32 - n))) & 0xFFFFFFFF


def _compress(state: tuple, block: bytes) -> tuple:
    words = [int.from_bytes(block[4 * i : 4 * i + 4], "little") for i in range(16)]

    al, bl, cl, dl, el = state
    ar, br, cr, dr, er = state

    for j in range(80):
        rnd = j >> 4
        t = _rotl32(
            al + _boolean(bl, cl, dl, rnd) + words[_WORDS_LEFT[j]]
            + _ROUND_CONSTANTS_LEFT[rnd],
            _SHIFTS_LEFT[j],
        ) + el
        al, bl, cl, dl, el = el, t & 0xFFFFFFFF, bl, _rotl32(cl, 10), dl

        t = _rotl32(
            ar + _boolean(br, cr, dr, 4 - rnd) + words[_WORDS_RIGHT[j]]
            + _ROUND_CONSTANTS_RIGHT[rnd],
            _SHIFTS_RIGHT[j],
        ) + er
        ar, br, cr, dr, er = er, t & 0xFFFFFFFF, br, _rotl32(cr, 10), dr

    h0, h1, h2, h3, h4 = state
    return (
        (h1 + cl + dr) & 0xFFFFFFFF,
        (h2 + dl + er) & 0xFFFFFFFF,
        (h3 + el + ar) & 0xFFFFFFFF,
        (h4 + al + br) & 0xFFFFFFFF,
        (h0 + bl + cr) & 0xFFFFFFFF,
    )


def _ripemd160_pure(data: bytes) -> bytes:
    state = _INITIAL_STATE
    # MD-style padding: 0x80, zeros, 64-bit little-endian bit length
    padded = (
        data
        + b"\x80"
        + b"\x00" * ((55 - len(data)) % 64)
        + (8 * len(data)).to_bytes(8, "little")
    )
    for offset in range(0, len(padded), 64):
        state = _compress(state, padded[offset : offset + 64])
    return b"".join(h.to_bytes(4, "little") for h in state)


def ripemd160(data: bytes) -> bytes:
    """Returns the 20-byte RIPEMD-160 digest of data"""
    try:
        return hashlib.new("ripemd160", data).digest()
    except ValueError:
        # unsupported digest type in this OpenSSL build
        return _ripemd160_pure(data)
