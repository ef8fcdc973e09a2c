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

"""Hierarchical deterministic keys (BIP32).

Child derivation and key validation are delegated to the hdwallet library.
An ``ExtendedKey`` wraps its output as a tagged variant: ``KeyKind.PRIVATE``
nodes carry the secret scalar, ``KeyKind.PUBLIC`` nodes never do. Failures
reported by the library surface as ``InvalidDerivation`` or
``InvalidKeyEncoding``.
"""

from __future__ import annotations

import secrets
import struct
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Sequence, Union

from base58check import b58encode, b58decode  # type: ignore
from hdwallet import HDWallet as ext_HDWallet  # type: ignore
from hdwallet.cryptocurrencies import Bitcoin  # type: ignore
from hdwallet.derivations import CustomDerivation  # type: ignore
from hdwallet.exceptions import Error as ext_Error  # type: ignore
from hdwallet.hds import BIP32HD  # type: ignore
from hdwallet.seeds import BIP39Seed  # type: ignore

from multisigpsbt.constants import (
    BIP32_HARDENED_OFFSET,
    BIP32_MAX_DEPTH,
    DEFAULT_SEED_BYTES,
    EXTENDED_KEY_PAYLOAD_SIZE,
    EXTENDED_KEY_VERSIONS,
    MAX_SEED_BYTES,
    MIN_SEED_BYTES,
    NETWORK_XPRV_VERSIONS,
    NETWORK_XPUB_VERSIONS,
)
from multisigpsbt.errors import (
    InsufficientEntropy,
    InvalidDerivation,
    InvalidKeyEncoding,
)
from multisigpsbt.keys import PrivateKey, PublicKey
from multisigpsbt.setup import get_network, is_mainnet
from multisigpsbt.utils import b_to_h, hash160, hash256, h_to_b


@contextmanager
def scrubbed(secret: Union[bytes, bytearray]) -> Iterator[bytearray]:
    """Yields a mutable copy of secret that is zeroed on every exit path

    Python cannot wipe immutable ``bytes``; callers should keep raw key
    material in the yielded buffer only.
    """
    buffer = bytearray(secret)
    try:
        yield buffer
    finally:
        for i in range(len(buffer)):
            buffer[i] = 0




def _check_index(index: int) -> None:
    if not isinstance(index, int) or index < 0 or index > 0xFFFFFFFF:
        raise InvalidDerivation(f"Invalid child index: {index!r}")


def fingerprint(public_key: PublicKey) -> bytes:
    """Returns the 4-byte key fingerprint: first bytes of hash160(pubkey)"""

    return hash160(public_key.to_bytes())[:4]


class DerivationPath:
    """An ordered sequence of BIP32 child indexes

    Hardened steps are stored with the 2^31 offset applied. The textual form
    is ``m/48'/1'/0'/2'`` (``h`` and ``H`` are accepted as hardened markers
    when parsing). An empty path denotes the root.
    """

    def __init__(self, steps: Sequence[int] = ()) -> None:
        for step in steps:
            _check_index(step)
        self.steps = tuple(steps)

    @classmethod
    def parse(cls, path: Union[str, "DerivationPath"]) -> "DerivationPath":
        if isinstance(path, DerivationPath):
            return path

        parts = [p for p in path.strip().split("/")]
        if parts and parts[0] in ("m", "M"):
            parts = parts[1:]
        if parts == [""]:
            parts = []

        steps = []
        for part in parts:
            hardened = part[-1:] in ("'", "h", "H")
            number = part[:-1] if hardened else part
            if not number.isdigit():
                raise InvalidDerivation(f"Invalid derivation path: {path}")
            index = int(number)
            if index >= BIP32_HARDENED_OFFSET:
                raise InvalidDerivation(f"Index out of range in path: {path}")
            steps.append(index + BIP32_HARDENED_OFFSET if hardened else index)
        return cls(steps)

    def to_string(self, prefix: str = "m", marker: str = "'") -> str:
        parts = [prefix] if prefix else []
        for step in self.steps:
            if step >= BIP32_HARDENED_OFFSET:
                parts.append(f"{step - BIP32_HARDENED_OFFSET}{marker}")
            else:
                parts.append(str(step))
        return "/".join(parts)

    def is_prefix_of(self, other: "DerivationPath") -> bool:
        return other.steps[: len(self.steps)] == self.steps

    def relative_to(self, prefix: "DerivationPath") -> "DerivationPath":
        """Returns the steps remaining after prefix

        Raises InvalidDerivation if prefix does not start this path.
        """
        if not prefix.is_prefix_of(self):
            raise InvalidDerivation(
                f"{self.to_string()} is not below {prefix.to_string()}"
            )
        return DerivationPath(self.steps[len(prefix.steps) :])

    def __add__(self, other: Union["DerivationPath", Sequence[int]]) -> "DerivationPath":
        other_steps = other.steps if isinstance(other, DerivationPath) else tuple(other)
        return DerivationPath(self.steps + other_steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[int]:
        return iter(self.steps)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivationPath):
            return False
        return self.steps == other.steps

    def __hash__(self) -> int:
        return hash(self.steps)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"DerivationPath('{self.to_string()}')"


class KeyOrigin:
    """Provenance of a public key: root fingerprint and full derivation path

    Serialized (BIP174) as the fingerprint followed by each path step as a
    little-endian uint32.
    """

    def __init__(self, fingerprint: bytes, path: Union[DerivationPath, str]) -> None:
        if len(fingerprint) != 4:
            raise ValueError("Fingerprint must be 4 bytes")
        self.fingerprint = bytes(fingerprint)
        self.path = DerivationPath.parse(path)

    def to_bytes(self) -> bytes:
        return self.fingerprint + b"".join(struct.pack("<I", s) for s in self.path)

    @classmethod
    def from_bytes(cls, data: bytes) -> "KeyOrigin":
        if len(data) < 4 or len(data) % 4:
            raise ValueError("Key origin must be a fingerprint plus 4-byte steps")
        steps = [
            struct.unpack("<I", data[i : i + 4])[0] for i in range(4, len(data), 4)
        ]
        return cls(data[:4], DerivationPath(steps))

    def to_string(self) -> str:
        """Descriptor form without brackets: fingerprint/path"""
        return self.path.to_string(prefix=b_to_h(self.fingerprint))

    @classmethod
    def from_string(cls, origin: str) -> "KeyOrigin":
        fp_hex, _, path = origin.partition("/")
        if len(fp_hex) != 8:
            raise ValueError(f"Invalid fingerprint in key origin: {origin}")
        return cls(h_to_b(fp_hex), DerivationPath.parse(path))

    def child(self, *steps: int) -> "KeyOrigin":
        return KeyOrigin(self.fingerprint, self.path + steps)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyOrigin):
            return False
        return self.fingerprint == other.fingerprint and self.path == other.path

    def __hash__(self) -> int:
        return hash((self.fingerprint, self.path))

    def __repr__(self) -> str:
        return f"KeyOrigin([{self.to_string()}])"


class KeyKind(Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class ExtendedKey:
    """A node of the BIP32 key tree

    Attributes
    ----------
    kind : KeyKind
        PRIVATE or PUBLIC; a PUBLIC key never holds a private key
    private_key : PrivateKey or None
    public_key : PublicKey
    chain_code : bytes
        32 bytes
    depth : int
        0 for the root
    parent_fingerprint : bytes
        4 bytes, zero for the root
    child_number : int
        index this node was derived with (2^31 offset when hardened)
    mainnet : bool or None
        version family when parsed from a string, None to follow the
        configured network
    """

    def __init__(
        self,
        kind: KeyKind,
        chain_code: bytes,
        private_key: Optional[PrivateKey] = None,
        public_key: Optional[PublicKey] = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00" * 4,
        child_number: int = 0,
        mainnet: Optional[bool] = None,
    ) -> None:
        if kind is KeyKind.PRIVATE:
            if private_key is None:
                raise ValueError("A private extended key needs its private key")
            public_key = private_key.get_public_key()
        else:
            if private_key is not None:
                raise ValueError("A public extended key cannot hold a private key")
            if public_key is None:
                raise ValueError("A public extended key needs its public key")
        if len(chain_code) != 32:
            raise ValueError("Chain code must be 32 bytes")
        if not 0 <= depth <= BIP32_MAX_DEPTH:
            raise InvalidDerivation(f"Depth out of range: {depth}")

        self.kind = kind
        self.chain_code = bytes(chain_code)
        self.private_key = private_key
        self.public_key: PublicKey = public_key
        self.depth = depth
        self.parent_fingerprint = bytes(parent_fingerprint)
        self.child_number = child_number
        self.mainnet = mainnet

    @property
    def is_private(self) -> bool:
        return self.kind is KeyKind.PRIVATE

    @property
    def hardened(self) -> bool:
        return self.child_number >= BIP32_HARDENED_OFFSET

    @property
    def identifier(self) -> bytes:
        return hash160(self.public_key.to_bytes())

    @property
    def fingerprint(self) -> bytes:
        return self.identifier[:4]

    def neuter(self) -> "ExtendedKey":
        """Returns the public variant of this node"""
        return ExtendedKey(
            KeyKind.PUBLIC,
            self.chain_code,
            public_key=self.public_key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
            mainnet=self.mainnet,
        )

    def _versions(self, network: Optional[str]) -> bytes:
        if network is None:
            if self.mainnet is None:
                network = get_network()
            else:
                network = "mainnet" if self.mainnet else "testnet"
        table = NETWORK_XPRV_VERSIONS if self.is_private else NETWORK_XPUB_VERSIONS
        return table[network]

    def to_bytes(self, network: Optional[str] = None) -> bytes:
        """Returns the 78-byte BIP32 serialization"""
        if self.is_private:
            assert self.private_key is not None
            key_data = b"\x00" + self.private_key.to_bytes()
        else:
            key_data = self.public_key.to_bytes()
        return (
            self._versions(network)
            + bytes([self.depth])
            + self.parent_fingerprint
            + struct.pack(">I", self.child_number)
            + self.chain_code
            + key_data
        )

    def to_string(self, network: Optional[str] = None) -> str:
        """Returns the base58check encoding (xprv/xpub/tprv/tpub)"""
        payload = self.to_bytes(network)
        return b58encode(payload + hash256(payload)[:4]).decode("utf-8")


    @classmethod
    def _from_payload(
        cls, payload: bytes, is_private: bool, mainnet: Optional[bool]
    ) -> "ExtendedKey":
        depth = payload[4]
        parent_fingerprint = payload[5:9]
        child_number = struct.unpack(">I", payload[9:13])[0]
        chain_code = payload[13:45]
        key_data = payload[45:78]

        if is_private:
            if key_data[0] != 0:
                raise InvalidKeyEncoding("Private key data must start with 0x00")
            try:
                private_key = PrivateKey.from_bytes(key_data[1:])
            except ValueError as e:
                raise InvalidKeyEncoding(str(e)) from e
            return cls(
                KeyKind.PRIVATE,
                chain_code,
                private_key=private_key,
                depth=depth,
                parent_fingerprint=parent_fingerprint,
                child_number=child_number,
                mainnet=mainnet,
            )

        return cls(
            KeyKind.PUBLIC,
            chain_code,
            public_key=PublicKey.from_bytes(key_data),
            depth=depth,
            parent_fingerprint=parent_fingerprint,
            child_number=child_number,
            mainnet=mainnet,
        )

    @classmethod
    def from_bytes(cls, payload: bytes) -> "ExtendedKey":
        """Parses the 78-byte BIP32 serialization

        The key data is checked by the hdwallet library before it is
        accepted.
        """
        if len(payload) != EXTENDED_KEY_PAYLOAD_SIZE:
            raise InvalidKeyEncoding("Extended key must be 78 bytes")

        version = payload[:4]
        if version not in EXTENDED_KEY_VERSIONS:
            raise InvalidKeyEncoding(f"Unknown extended key version {b_to_h(version)}")
        is_private, mainnet = EXTENDED_KEY_VERSIONS[version]

        if payload[4] == 0 and (payload[5:9] != b"\x00" * 4 or payload[9:13] != b"\x00" * 4):
            raise InvalidKeyEncoding("Root key with parent fingerprint or index")

        key = cls._from_payload(payload, is_private, mainnet)
        encoded = b58encode(payload + hash256(payload)[:4]).decode("utf-8")
        try:
            _load_encoded(encoded, is_private, mainnet)
        except (ext_Error, ValueError) as e:
            raise InvalidKeyEncoding(f"Invalid extended key data: {e}") from e
        return key

    @classmethod
    def from_string(cls, encoded: str) -> "ExtendedKey":
        """Parses an xprv/xpub/tprv/tpub string

        Raises InvalidKeyEncoding for bad base58, checksum, length, version
        or key data.
        """
        try:
            data = b58decode(encoded.strip().encode("utf-8"))
        except ValueError as e:
            raise InvalidKeyEncoding("Extended key is not valid base58") from e

        payload, checksum = data[:-4], data[-4:]
        if len(payload) != EXTENDED_KEY_PAYLOAD_SIZE:
            raise InvalidKeyEncoding("Extended key must be 78 bytes")
        if hash256(payload)[:4] != checksum:
            raise InvalidKeyEncoding("Checksum is wrong. Possible mistype?")
        return cls.from_bytes(payload)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtendedKey):
            return False
        return self.kind is other.kind and self.to_bytes("mainnet") == other.to_bytes(
            "mainnet"
        )

    def __hash__(self) -> int:
        return hash(self.to_bytes("mainnet"))

    def __repr__(self) -> str:
        # never include private material
        return (
            f"ExtendedKey({self.kind.value}, depth={self.depth}, "
            f"fingerprint={b_to_h(self.fingerprint)}, "
            f"pubkey={self.public_key.to_hex()})"
        )


def _ext_wallet(mainnet: bool):
    """Returns an empty hdwallet object for the Bitcoin mainnet or test versions"""

    network = Bitcoin.NETWORKS.MAINNET if mainnet else Bitcoin.NETWORKS.TESTNET
    return ext_HDWallet(cryptocurrency=Bitcoin, hd=BIP32HD, network=network)


def _load_encoded(encoded: str, is_private: bool, mainnet: bool):
    hdw = _ext_wallet(mainnet)
    if is_private:
        hdw.from_xprivate_key(xprivate_key=encoded)
    else:
        hdw.from_xpublic_key(xpublic_key=encoded)
    return hdw


def _family(key: ExtendedKey) -> bool:
    return is_mainnet() if key.mainnet is None else key.mainnet


def _export(hdw, kind: KeyKind, mainnet: Optional[bool]) -> ExtendedKey:
    """Reads the node an hdwallet object is positioned at back into an ExtendedKey

    The version bytes of the library's encoding are ignored; the
    version family is carried by ``mainnet`` instead.
    """

    encoded = hdw.xprivate_key() if kind is KeyKind.PRIVATE else hdw.xpublic_key()
    if encoded is None:
        raise InvalidDerivation(f"hdwallet returned no {kind.value} extended key")
    data = b58decode(encoded.encode("utf-8"))
    return ExtendedKey._from_payload(data[:-4], kind is KeyKind.PRIVATE, mainnet)


def generate_root(entropy: Optional[bytes] = None) -> ExtendedKey:
    """Builds a root private key and chain code from secret entropy

    With no entropy 32 bytes are drawn from the operating system. The root
    follows the configured network when serialized.

    Raises
    ------
    InsufficientEntropy
        If entropy is empty or shorter than 128 bits, or the system source
        cannot provide randomness
    ValueError
        If entropy is longer than 512 bits
    InvalidDerivation
        If the seed yields an invalid master key (probability < 2^-127)
    """

    if entropy is None:
        try:
            entropy = secrets.token_bytes(DEFAULT_SEED_BYTES)
        except (OSError, NotImplementedError) as e:
            raise InsufficientEntropy("System randomness source unavailable") from e

    if len(entropy) < MIN_SEED_BYTES:
        raise InsufficientEntropy(
            f"Need at least {MIN_SEED_BYTES} bytes of entropy, got {len(entropy)}"
        )
    if len(entropy) > MAX_SEED_BYTES:
        raise ValueError(f"Entropy longer than {MAX_SEED_BYTES} bytes")

    hdw = _ext_wallet(is_mainnet())
    try:
        with scrubbed(entropy) as seed:
            hdw.from_seed(seed=BIP39Seed(b_to_h(bytes(seed))))
        return _export(hdw, KeyKind.PRIVATE, None)
    except (ext_Error, ValueError) as e:
        raise InvalidDerivation(f"Seed produces an invalid master key: {e}") from e


def derive_path(parent: ExtendedKey, path: Union[DerivationPath, str]) -> ExtendedKey:
    """Derives the node at path below parent; an empty path returns parent

    Raises
    ------
    InvalidDerivation
        hardened step requested from a public parent, depth above 255, or
        an invalid child key (IL >= n, zero key, point at infinity)
    """

    path = DerivationPath.parse(path)
    if not path:
        return parent
    if parent.depth + len(path) > BIP32_MAX_DEPTH:
        raise InvalidDerivation("Maximum derivation depth reached")
    if not parent.is_private and any(step >= BIP32_HARDENED_OFFSET for step in path):
        raise InvalidDerivation("Hardened derivation requires a private parent")

    mainnet = _family(parent)
    try:
        hdw = _load_encoded(
            parent.to_string("mainnet" if mainnet else "testnet"),
            parent.is_private,
            mainnet,
        )
        hdw.from_derivation(derivation=CustomDerivation(path=path.to_string()))
        return _export(hdw, parent.kind, parent.mainnet)
    except (ext_Error, ValueError) as e:
        raise InvalidDerivation(f"Cannot derive {path.to_string()}: {e}") from e


def derive(parent: ExtendedKey, index: int, hardened: bool = False) -> ExtendedKey:
    """Derives one child of parent

    An index >= 2^31 denotes a hardened child; ``hardened=True`` adds the
    offset to a smaller index.
    """

    _check_index(index)
    if hardened and index < BIP32_HARDENED_OFFSET:
        index += BIP32_HARDENED_OFFSET
    return derive_path(parent, DerivationPath([index]))


class HDWallet:
    """Convenience holder of a root key positioned at a derivation path

    Attributes
    ----------
    root : ExtendedKey
        the root (or account) extended key
    path : DerivationPath
        the current path relative to root
    """

    def __init__(
        self,
        root: ExtendedKey,
        path: Optional[Union[DerivationPath, str]] = None,
    ) -> None:
        self.root = root
        self.path = DerivationPath.parse(path or "m")

    @classmethod
    def from_seed(cls, seed: Optional[bytes] = None, path: Optional[str] = None) -> "HDWallet":
        """Class method to instantiate from seed entropy"""
        return cls(generate_root(seed), path)

    @classmethod
    def from_xprivate_key(cls, xprivate_key: str, path: Optional[str] = None) -> "HDWallet":
        """Class method to instantiate from an extended private key and optionally the path"""
        root = ExtendedKey.from_string(xprivate_key)
        if not root.is_private:
            raise InvalidKeyEncoding("An extended private key is required")
        return cls(root, path)

    def from_path(self, path: Union[DerivationPath, str]) -> "HDWallet":
        """Set/update the path"""
        self.path = DerivationPath.parse(path)
        return self

    def get_extended_key(self) -> ExtendedKey:
        return derive_path(self.root, self.path)

    def get_private_key(self) -> PrivateKey:
        """Return the PrivateKey at the current path"""
        node = self.get_extended_key()
        assert node.private_key is not None
        return node.private_key

    def get_public_key(self) -> PublicKey:
        return self.get_extended_key().public_key

    def get_master_fingerprint(self) -> bytes:
        return self.root.fingerprint
