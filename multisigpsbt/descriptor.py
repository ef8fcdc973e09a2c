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

"""Output descriptors for sorted multisig wallets.

Only the ``wsh(sortedmulti(M,KEY,...))`` form is supported. Each KEY is an
extended public key with its origin and a ranged derivation suffix, e.g.
``[3442193e/48'/1'/0'/2']tpubD.../0/*``.
See https://github.com/bitcoin/bitcoin/blob/master/doc/descriptors.md
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from multisigpsbt.errors import InvalidDerivation, InvalidDescriptor, InvalidKeyEncoding
from multisigpsbt.hdwallet import DerivationPath, ExtendedKey, KeyOrigin, derive_path
from multisigpsbt.multisig import MultisigPolicy, build_policy


INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}"
    "IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~"
    "ijklmnopqrstuvwxyzABCDEFGH`#\"\\ "
)
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


def _polymod(c: int, val: int) -> int:
    c0 = c >> 35
    c = ((c & 0x7FFFFFFFF) << 5) ^ val
    if c0 & 1:
        c ^= 0xF5DEE51989
    if c0 & 2:
        c ^= 0xA9FDCA3312
    if c0 & 4:
        c ^= 0x1BAB10E32D
    if c0 & 8:
        c ^= 0x3706B1677A
    if c0 & 16:
        c ^= 0x644D626FFD
    return c


def descriptor_checksum(desc: str) -> str:
    """Computes the 8 character checksum of a descriptor

    Raises InvalidDescriptor for characters outside the descriptor charset.
    """

    c = 1
    cls = 0
    clscount = 0
    for ch in desc:
        pos = INPUT_CHARSET.find(ch)
        if pos == -1:
            raise InvalidDescriptor(f"Invalid character in descriptor: {ch!r}")
        c = _polymod(c, pos & 31)
        cls = cls * 3 + (pos >> 5)
        clscount += 1
        if clscount == 3:
            c = _polymod(c, cls)
            cls = 0
            clscount = 0
    if clscount > 0:
        c = _polymod(c, cls)
    for _ in range(8):
        c = _polymod(c, 0)
    c ^= 1

    return "".join(CHECKSUM_CHARSET[(c >> (5 * (7 - j))) & 31] for j in range(8))


def add_checksum(desc: str) -> str:
    return desc + "#" + descriptor_checksum(desc)


class DescriptorKey:
    """A ranged extended public key expression inside a descriptor

    Attributes
    ----------
    origin : KeyOrigin
        master fingerprint and the path from the master to ``xpub``
    xpub : ExtendedKey
        the account-level extended public key
    suffix : DerivationPath
        unhardened steps applied below ``xpub`` before the wildcard
    """

    def __init__(
        self,
        origin: KeyOrigin,
        xpub: ExtendedKey,
        suffix: Optional[DerivationPath] = None,
    ) -> None:
        if xpub.is_private:
            xpub = xpub.neuter()
        self.origin = origin
        self.xpub = xpub
        self.suffix = suffix if suffix is not None else DerivationPath()

    @classmethod
    def parse(cls, expression: str) -> "DescriptorKey":
        s = expression.strip()
        if not s.startswith("["):
            raise InvalidDescriptor(f"Key has no origin: {expression}")
        end = s.find("]")
        if end == -1:
            raise InvalidDescriptor(f"Unterminated key origin: {expression}")
        try:
            origin = KeyOrigin.from_string(s[1:end])
        except ValueError as e:
            raise InvalidDescriptor(f"Invalid key origin in {expression}") from e

        parts = s[end + 1 :].split("/")
        if len(parts) < 2 or parts[-1] != "*":
            raise InvalidDescriptor(f"Key must be ranged (end in /*): {expression}")
        try:
            xpub = ExtendedKey.from_string(parts[0])
            suffix = DerivationPath.parse("/".join(parts[1:-1]))
        except (InvalidKeyEncoding, InvalidDerivation) as e:
            raise InvalidDescriptor(f"Invalid key expression {expression}: {e}") from e
        if any(step >= 0x80000000 for step in suffix):
            raise InvalidDescriptor("Hardened steps after an xpub cannot be derived")
        return cls(origin, xpub, suffix)

    def to_string(self) -> str:
        suffix = self.suffix.to_string(prefix="")
        steps = [self.xpub.to_string()] + ([suffix] if suffix else []) + ["*"]
        return f"[{self.origin.to_string()}]" + "/".join(steps)

    def child_steps(self, index: int) -> Tuple[int, ...]:
        return tuple(self.suffix) + (index,)

    def derive(self, index: int) -> Tuple[ExtendedKey, KeyOrigin]:
        """Returns the child public key at index with its full origin"""
        steps = self.child_steps(index)
        child = derive_path(self.xpub, DerivationPath(steps))
        return child, self.origin.child(*steps)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DescriptorKey):
            return False
        return (
            self.origin == other.origin
            and self.xpub == other.xpub
            and self.suffix == other.suffix
        )

    def __repr__(self) -> str:
        return f"DescriptorKey({self.to_string()})"


class SortedMultiDescriptor:
    """``wsh(sortedmulti(M,KEY1,...,KEYN))``

    Keys are printed in the order they were given; the derived scripts are
    sorted regardless, so the order never changes an address.
    """

    def __init__(self, threshold: int, keys: Sequence[DescriptorKey]) -> None:
        self.threshold = threshold
        self.keys: List[DescriptorKey] = list(keys)

    @classmethod
    def parse(cls, descriptor: str) -> "SortedMultiDescriptor":
        """Parses a descriptor string, verifying its checksum when present

        Raises
        ------
        InvalidDescriptor
            If the checksum is wrong or the descriptor is not a ranged
            wsh(sortedmulti(...)) of extended keys
        """

        desc = descriptor.strip()
        if "#" in desc:
            desc, _, checksum = desc.partition("#")
            if descriptor_checksum(desc) != checksum:
                raise InvalidDescriptor("Descriptor checksum mismatch")

        prefix, suffix = "wsh(sortedmulti(", "))"
        if not (desc.startswith(prefix) and desc.endswith(suffix)):
            raise InvalidDescriptor("Only wsh(sortedmulti(...)) descriptors are supported")

        args = desc[len(prefix) : -len(suffix)].split(",")
        if len(args) < 2 or not args[0].isdigit():
            raise InvalidDescriptor(f"Invalid sortedmulti arguments: {desc}")

        threshold = int(args[0])
        keys = [DescriptorKey.parse(arg) for arg in args[1:]]
        return cls(threshold, keys)

    def to_string(self, checksum: bool = True) -> str:
        body = "wsh(sortedmulti({},{}))".format(
            self.threshold, ",".join(key.to_string() for key in self.keys)
        )
        return add_checksum(body) if checksum else body

    def policy_at(self, index: int) -> MultisigPolicy:
        """Derives the sorted multisig policy at a child index"""
        pairs = []
        for key in self.keys:
            child, origin = key.derive(index)
            pairs.append((child.public_key, origin))
        return build_policy(self.threshold, pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SortedMultiDescriptor):
            return False
        return self.threshold == other.threshold and self.keys == other.keys

    def __str__(self) -> str:
        return self.to_string()
