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

from typing import Dict, Iterable, List, Optional, Tuple, Union

from multisigpsbt.constants import MAX_MULTISIG_KEYS
from multisigpsbt.errors import InvalidKeyEncoding, InvalidThreshold
from multisigpsbt.hdwallet import KeyOrigin
from multisigpsbt.keys import P2wshAddress, PublicKey
from multisigpsbt.script import Script

KeyInput = Union[PublicKey, bytes, str]


def _to_public_key(key: KeyInput) -> PublicKey:
    if isinstance(key, PublicKey):
        public_key = key
    elif isinstance(key, (bytes, bytearray)):
        public_key = PublicKey.from_bytes(bytes(key))
    elif isinstance(key, str):
        public_key = PublicKey.from_hex(key)
    else:
        raise TypeError(f"Unsupported public key type: {type(key).__name__}")

    if not public_key.compressed:
        raise InvalidKeyEncoding("Multisig keys must be compressed (33 bytes)")
    return public_key


class MultisigPolicy:
    """An M-of-N sorted multisig locking condition

    The witness script is ``OP_M <pubkeys sorted by SEC bytes> OP_N
    OP_CHECKMULTISIG``; it depends only on M and the set of keys.

    Attributes
    ----------
    threshold : int
        M
    public_keys : list (PublicKey)
        keys in script (sorted) order
    origins : dict
        compressed pubkey bytes -> KeyOrigin, for keys supplied with one
    witness_script : Script
    script_pubkey : Script
        OP_0 <sha256(witness_script)>
    """

    def __init__(
        self,
        threshold: int,
        public_keys: List[PublicKey],
        origins: Optional[Dict[bytes, KeyOrigin]] = None,
    ) -> None:
        self.threshold = threshold
        self.public_keys = public_keys
        self.origins = origins if origins is not None else {}
        self.witness_script = Script(
            [threshold] + [key.to_hex() for key in public_keys] + [len(public_keys), "OP_CHECKMULTISIG"]
        )
        self.script_pubkey = self.witness_script.to_p2wsh_script_pub_key()

    @property
    def n(self) -> int:
        return len(self.public_keys)

    def get_address(self) -> P2wshAddress:
        return P2wshAddress.from_script(self.witness_script)

    def address(self, network: Optional[str] = None) -> str:
        return self.get_address().to_string(network)

    def key_position(self, public_key: Union[PublicKey, bytes]) -> int:
        """Returns the index of public_key in script order

        Raises ValueError if the key is not part of the policy.
        """
        key_bytes = public_key.to_bytes() if isinstance(public_key, PublicKey) else public_key
        for position, key in enumerate(self.public_keys):
            if key.to_bytes() == key_bytes:
                return position
        raise ValueError("Public key is not part of the policy")

    def contains(self, public_key: Union[PublicKey, bytes]) -> bool:
        try:
            self.key_position(public_key)
        except ValueError:
            return False
        return True

    @classmethod
    def from_witness_script(cls, script: Script) -> "MultisigPolicy":
        """Reads the policy back from a multisig witness script

        The script's own key order is kept, so scripts that were not built
        sorted still report their real positions.
        """
        is_multisig, m_n = script.is_multisig()
        if not is_multisig:
            raise ValueError("Witness script is not a multisig script")
        assert m_n is not None
        threshold, _ = m_n
        keys = [_to_public_key(key) for key in script.get_multisig_pubkeys()]
        policy = cls(threshold, keys)
        # keep the exact bytes even if the pushes were non-minimal
        policy.witness_script = script
        policy.script_pubkey = script.to_p2wsh_script_pub_key()
        return policy

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultisigPolicy):
            return False
        return self.witness_script == other.witness_script

    def __repr__(self) -> str:
        return f"MultisigPolicy({self.threshold}-of-{self.n}, {self.witness_script.to_hex()})"


def build_policy(
    threshold: int,
    keys: Iterable[Union[KeyInput, Tuple[KeyInput, KeyOrigin]]],
) -> MultisigPolicy:
    """Builds the canonical sorted-multisig policy

    Parameters
    ----------
    threshold : int
        M, the number of required signatures
    keys : iterable
        public keys (PublicKey, SEC bytes or hex), optionally paired with
        their KeyOrigin as (key, origin) tuples; order does not matter

    Raises
    ------
    InvalidThreshold
        If M < 1, M > N or N > 16
    InvalidKeyEncoding
        If a key is not a valid compressed public key
    ValueError
        If the same key appears twice
    """

    public_keys: List[PublicKey] = []
    origins: Dict[bytes, KeyOrigin] = {}
    for item in keys:
        origin = None
        if isinstance(item, tuple):
            item, origin = item
        public_key = _to_public_key(item)
        public_keys.append(public_key)
        if origin is not None:
            origins[public_key.to_bytes()] = origin

    n = len(public_keys)
    if not isinstance(threshold, int) or threshold < 1 or threshold > n:
        raise InvalidThreshold(f"Threshold {threshold} invalid for {n} keys")
    if n > MAX_MULTISIG_KEYS:
        raise InvalidThreshold(f"At most {MAX_MULTISIG_KEYS} keys are supported")

    # sorted multisig: order by the compressed SEC serialization
    public_keys.sort(key=lambda k: k.to_bytes())
    for first, second in zip(public_keys, public_keys[1:]):
        if first.to_bytes() == second.to_bytes():
            raise ValueError(f"Duplicate public key {first.to_hex()}")

    return MultisigPolicy(threshold, public_keys, origins)


def sort_signatures(
    witness_script: Script, signatures: Dict[bytes, bytes]
) -> List[Tuple[bytes, bytes]]:
    """Returns (pubkey, signature) pairs in the script's key order

    Signatures for keys that are not in the script are dropped.
    """
    order = witness_script.get_multisig_pubkeys()
    return [(key, signatures[key]) for key in order if key in signatures]
