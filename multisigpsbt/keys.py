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

from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from multisigpsbt.transactions import Transaction

import hashlib
import struct
from abc import ABC, abstractmethod
from typing import Optional, Union

import bech32  # type: ignore
from ecdsa import SigningKey, VerifyingKey, SECP256k1  # type: ignore
from ecdsa.der import UnexpectedDER  # type: ignore
from ecdsa.keys import BadSignatureError, MalformedPointError  # type: ignore
from ecdsa.util import sigencode_der, sigdecode_der  # type: ignore
from sympy.ntheory import sqrt_mod  # type: ignore

from multisigpsbt.constants import (
    NETWORK_SEGWIT_PREFIXES,
    P2WPKH_ADDRESS_V0,
    P2WSH_ADDRESS_V0,
    SECP256K1_FIELD,
    SECP256K1_ORDER,
    SIGHASH_ALL,
)
from multisigpsbt.errors import InvalidKeyEncoding
from multisigpsbt.script import Script
from multisigpsbt.setup import get_network
from multisigpsbt.utils import b_to_h, h_to_b, hash160


class PrivateKey:
    """Represents an ECDSA private key.

    Attributes
    ----------
    key : SigningKey
        the ecdsa signing key

    Methods
    -------
    from_bytes()
        creates an object from raw 32 bytes
    to_bytes()
        returns the key's raw bytes
    sign_segwit_input(tx, txin_index, script, amount, sighash=SIGHASH_ALL)
        creates the transaction's BIP143 digest and signs it for a particular
        index and amount and returns the signature.
    get_public_key()
        returns the corresponding PublicKey object
    """

    def __init__(
        self,
        secret_exponent: Optional[int] = None,
        b: Optional[bytes] = None,
    ) -> None:
        """With no parameters a random key is created

        Parameters
        ----------
        secret_exponent : int, optional
            used to create a specific key deterministically (default None)
        b : bytes, optional
            used to create a key from raw bytes

        Raises
        ------
        ValueError
            If the key is not in the range [1, n-1]
        """

        if b is not None:
            self._from_bytes(b)
        elif secret_exponent is not None:
            if not 0 < secret_exponent < SECP256K1_ORDER:
                raise ValueError("Secret exponent out of range")
            self.key = SigningKey.from_secret_exponent(
                secret_exponent, curve=SECP256k1
            )
        else:
            self.key = SigningKey.generate(curve=SECP256k1)

    def to_bytes(self) -> bytes:
        """Returns key's bytes"""

        return self.key.to_string()

    @classmethod
    def from_bytes(cls, b: bytes) -> "PrivateKey":
        """Creates a key directly from 32 raw bytes"""

        return cls(b=b)

    def _from_bytes(self, b: bytes) -> None:
        if len(b) != 32:
            raise ValueError("Invalid key length: must be exactly 32 bytes.")
        if not 0 < int.from_bytes(b, "big") < SECP256K1_ORDER:
            raise ValueError("Secret exponent out of range")
        self.key = SigningKey.from_string(bytes(b), curve=SECP256k1)

    def sign_segwit_input(
        self,
        tx: "Transaction",
        txin_index: int,
        script: Script,
        amount: int,
        sighash: int = SIGHASH_ALL,
    ) -> str:
        # get the digest from the transaction object and sign
        tx_digest = tx.get_transaction_segwit_digest(
            txin_index, script, amount, sighash
        )
        return b_to_h(self._sign_input(tx_digest, sighash))

    def _sign_input(self, tx_digest: bytes, sighash: int = SIGHASH_ALL) -> bytes:
        """Signs a transaction digest and returns DER signature + sighash byte

        Signing is deterministic (RFC6979) so the same key and digest always
        give the same signature.
        """

        # From Bitcoin core v0.17 a Low R value is required. This way
        # signatures are always 71 bytes. Because R is not mutable in the same
        # way that S is, a low R value can only be found by trying different
        # nonces: extra entropy is a 32-byte little-endian counter, the way
        # Bitcoin Core grinds it.
        signature = self.key.sign_digest_deterministic(
            tx_digest, sigencode=sigencode_der, hashfunc=hashlib.sha256
        )

        # if high R then its size will be 33 bytes to include the sign
        attempt = 1
        while signature[3] == 33:
            signature = self.key.sign_digest_deterministic(
                tx_digest,
                extra_entropy=attempt.to_bytes(32, "little"),
                sigencode=sigencode_der,
                hashfunc=hashlib.sha256,
            )
            attempt += 1

        # Low S standardness rule of BIP62: S and (order - S) are both valid,
        # only the lower one is standard.
        r, s = sigdecode_der(signature, SECP256K1_ORDER)
        if s > SECP256K1_ORDER // 2:
            s = SECP256K1_ORDER - s
        signature = sigencode_der(r, s, SECP256K1_ORDER)

        # add sighash in the signature -- as one byte!
        return signature + struct.pack("B", sighash)

    def get_public_key(self) -> "PublicKey":
        """Returns the corresponding PublicKey"""

        return PublicKey.from_point(self.key.get_verifying_key().pubkey.point)


class PublicKey:
    """Represents an ECDSA public key.

    Attributes
    ----------
    key : VerifyingKey
        the ecdsa verifying key
    compressed : bool
        whether the key was supplied in compressed SEC form

    Methods
    -------
    from_hex(hex_str)
        creates an object from a hex string in SEC format (classmethod)
    from_bytes(b)
        creates an object from SEC bytes (classmethod)
    from_point(point)
        creates an object from a curve point (classmethod)
    to_bytes()
        returns the key in compressed SEC format (33 bytes)
    to_hex(compressed=True)
        returns the key as hex string (in SEC format - compressed by default)
    to_hash160()
        returns the hash160 hex string of the public key
    get_segwit_address()
        returns the corresponding P2wpkhAddress object
    verify_signature(signature, digest)
        checks a DER signature (optionally with sighash byte) over a digest

    Raises
    ------
    InvalidKeyEncoding
        If the SEC prefix, the length or the point itself is invalid
    """

    def __init__(self, hex_str: Optional[str] = None, b: Optional[bytes] = None) -> None:
        if hex_str is not None:
            try:
                b = h_to_b(hex_str.strip())
            except ValueError as e:
                raise InvalidKeyEncoding("Public key is not valid hex") from e
        if b is None:
            raise TypeError("Either 'hex_str' or 'b' must be provided.")

        b = bytes(b)
        if len(b) == 33 and b[0] in (2, 3):
            self.compressed = True
            x_coord = int.from_bytes(b[1:], "big")
            if x_coord >= SECP256K1_FIELD:
                raise InvalidKeyEncoding("Public key x coordinate out of range")

            # y = modulo_square_root( (x**3 + 7) mod p ) -- there will be 2 y values
            y_values = sqrt_mod(
                (x_coord**3 + 7) % SECP256K1_FIELD, SECP256K1_FIELD, True
            )
            if not y_values:
                raise InvalidKeyEncoding("Public key is not on the curve")

            # check SEC format's first byte to determine which of the 2 values to use
            want_odd = b[0] == 3
            y_coord = None
            for candidate in y_values:  # type: ignore
                if (int(candidate) % 2 == 1) == want_odd:
                    y_coord = int(candidate)
                    break
            if y_coord is None:
                raise InvalidKeyEncoding("Public key is not on the curve")

            raw = x_coord.to_bytes(32, "big") + y_coord.to_bytes(32, "big")
        elif len(b) == 65 and b[0] == 4:
            self.compressed = False
            raw = b[1:]
        else:
            raise InvalidKeyEncoding(
                f"Invalid SEC public key encoding ({len(b)} bytes)"
            )

        try:
            self.key = VerifyingKey.from_string(raw, curve=SECP256k1)
        except MalformedPointError as e:
            raise InvalidKeyEncoding("Public key is not on the curve") from e

    @classmethod
    def from_hex(cls, hex_str: str) -> "PublicKey":
        """Creates a public key from a hex string (SEC format)"""

        return cls(hex_str=hex_str)

    @classmethod
    def from_bytes(cls, b: bytes) -> "PublicKey":
        """Creates a public key from SEC bytes"""

        return cls(b=b)

    @classmethod
    def from_point(cls, point) -> "PublicKey":
        """Creates a public key from an ecdsa curve point"""

        x = int(point.x())
        y = int(point.y())
        prefix = b"\x03" if y % 2 else b"\x02"
        return cls(b=prefix + x.to_bytes(32, "big"))

    @property
    def point(self):
        return self.key.pubkey.point

    def to_bytes(self) -> bytes:
        """Returns the compressed SEC serialization (33 bytes)"""

        return h_to_b(self.to_hex(compressed=True))

    def to_hex(self, compressed: bool = True) -> str:
        """Returns public key as a hex string (SEC format - compressed by
        default)"""

        key_bytes = self.key.to_string()

        if compressed:
            # check if y is even or odd (02 even, 03 odd)
            prefix = b"\x03" if key_bytes[-1] % 2 else b"\x02"
            return b_to_h(prefix + key_bytes[:32])

        # uncompressed starts with 04
        return b_to_h(b"\x04" + key_bytes)

    def _to_hash160(self) -> bytes:
        """Returns the RIPEMD( SHA256( ) ) of the compressed public key"""

        return hash160(self.to_bytes())

    def to_hash160(self) -> str:
        """Returns the RIPEMD( SHA256( ) ) of the public key in hex"""

        return b_to_h(self._to_hash160())

    def get_segwit_address(self) -> "P2wpkhAddress":
        """Returns the corresponding P2WPKH address"""

        return P2wpkhAddress(witness_program=self.to_hash160())

    def verify_signature(self, signature: bytes, digest: bytes, has_sighash: bool = True) -> bool:
        """Returns True if signature is a valid DER signature of digest"""

        der = signature[:-1] if has_sighash else signature
        try:
            return self.key.verify_digest(der, digest, sigdecode=sigdecode_der)
        except (BadSignatureError, UnexpectedDER, ValueError):
            return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublicKey):
            return False
        return self.key.to_string() == other.key.to_string()

    def __hash__(self) -> int:
        return hash(self.key.to_string())

    def __lt__(self, other: "PublicKey") -> bool:
        return self.to_bytes() < other.to_bytes()

    def __repr__(self) -> str:
        return f"PublicKey({self.to_hex()})"


class SegwitAddress(ABC):
    """Represents a Bitcoin segwit v0 address

    Bech32 encoding is provided by the reference implementation packaged as
    ``bech32``.

    Attributes
    ----------
    witness_program : str
        the hash string representation of either the public key hash (P2WPKH)
        or the hash of the script (P2WSH)

    Methods
    -------
    from_address(address)
        instantiates an object from address string encoding
    from_witness_program(hash_str)
        instantiates an object from a witness program hex string
    to_string(network=None)
        returns the address's string encoding (Bech32)
    to_witness_program()
        returns the address's hash hex string representation
    to_script_pub_key()
        returns the locking script

    Raises
    ------
    TypeError
        No parameters passed
    ValueError
        If an invalid address or hash is provided.
    """

    PROGRAM_SIZE = 0

    @abstractmethod
    def __init__(
        self,
        address: Optional[str] = None,
        witness_program: Optional[str] = None,
        script: Optional[Script] = None,
        version: str = P2WPKH_ADDRESS_V0,
    ) -> None:
        self.version = version
        self.segwit_num_version = 0

        if witness_program:
            self.witness_program = witness_program
        elif address:
            self.witness_program = self._address_to_hash(address)
        elif script is not None:
            if not isinstance(script, Script):
                raise TypeError("A Script class is required.")
            self.witness_program = self._script_to_hash(script)
        else:
            raise TypeError("A valid address or witness program is required.")

        if len(h_to_b(self.witness_program)) != self.PROGRAM_SIZE:
            raise ValueError("Invalid witness program length.")

    @classmethod
    def from_address(cls, address: str) -> "SegwitAddress":
        """Creates an address object from an address string"""

        return cls(address=address)

    @classmethod
    def from_witness_program(cls, witness_program: str) -> "SegwitAddress":
        """Creates an address object from a hash string"""

        return cls(witness_program=witness_program)

    def _address_to_hash(self, address: str) -> str:
        """Bech32 decodes the address removing network prefix, checksum and
        witness version."""

        hrp = NETWORK_SEGWIT_PREFIXES[get_network()]
        witness_version, witness_int_array = bech32.decode(hrp, address)
        if witness_version is None:
            raise ValueError("Invalid value for parameter address.")
        if witness_version != self.segwit_num_version:
            raise TypeError("Invalid segwit version.")

        return b_to_h(bytes(witness_int_array))

    def _script_to_hash(self, script: Script) -> str:
        """Converts a script to it's hash equivalent"""

        return b_to_h(hashlib.sha256(script.to_bytes()).digest())

    def to_witness_program(self) -> str:
        """Returns witness program as hex string"""

        return self.witness_program

    def to_string(self, network: Optional[str] = None) -> str:
        """Returns as address string"""

        hrp = NETWORK_SEGWIT_PREFIXES[network or get_network()]
        witness_int_array = list(h_to_b(self.witness_program))
        return bech32.encode(hrp, self.segwit_num_version, witness_int_array)

    def to_script_pub_key(self) -> Script:
        """Returns the scriptPubKey: OP_0 <witness program>"""
        return Script(["OP_0", self.to_witness_program()])

    def get_type(self) -> str:
        """Returns the type of address"""
        return self.version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SegwitAddress):
            return False
        return (
            self.version == other.version
            and self.witness_program == other.witness_program
        )

    def __str__(self) -> str:
        return self.to_string()


class P2wpkhAddress(SegwitAddress):
    """Encapsulates a P2WPKH address."""

    PROGRAM_SIZE = 20

    def __init__(
        self,
        address: Optional[str] = None,
        witness_program: Optional[str] = None,
    ) -> None:
        super().__init__(
            address=address,
            witness_program=witness_program,
            version=P2WPKH_ADDRESS_V0,
        )


class P2wshAddress(SegwitAddress):
    """Encapsulates a P2WSH address.

    Methods
    -------
    from_script(witness_script)
        instantiates an object from a witness_script
    """

    PROGRAM_SIZE = 32

    def __init__(
        self,
        address: Optional[str] = None,
        witness_program: Optional[str] = None,
        script: Optional[Script] = None,
    ) -> None:
        super().__init__(
            address=address,
            witness_program=witness_program,
            script=script,
            version=P2WSH_ADDRESS_V0,
        )

    @classmethod
    def from_script(cls, script: Script) -> "P2wshAddress":
        """Creates an address object from a witness script"""

        return cls(script=script)


def get_segwit_address(address: str) -> SegwitAddress:
    """Parses a segwit v0 address string into P2wpkhAddress or P2wshAddress

    Raises ValueError if the address is not a v0 address of the active network.
    """

    hrp = NETWORK_SEGWIT_PREFIXES[get_network()]
    witness_version, witness_int_array = bech32.decode(hrp, address)
    if witness_version is None:
        raise ValueError(f"Invalid address for network {get_network()}: {address}")
    if witness_version != 0:
        raise ValueError("Only segwit v0 addresses are supported.")

    program = b_to_h(bytes(witness_int_array))
    if len(witness_int_array) == P2wpkhAddress.PROGRAM_SIZE:
        return P2wpkhAddress(witness_program=program)
    return P2wshAddress(witness_program=program)


def to_script_pub_key(destination: Union[str, SegwitAddress, Script]) -> Script:
    """Returns the locking script for an address string, address or script"""

    if isinstance(destination, Script):
        return destination
    if isinstance(destination, SegwitAddress):
        return destination.to_script_pub_key()
    return get_segwit_address(destination).to_script_pub_key()
