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

from typing import Optional


class MultisigPsbtError(ValueError):
    """Base class of all errors raised by multisigpsbt"""


class InsufficientEntropy(MultisigPsbtError):
    """Entropy source is empty, exhausted or too short for a root key"""


class InvalidDerivation(MultisigPsbtError):
    """A child key cannot be derived (hardened from public, bad index, ...)"""


class InvalidThreshold(MultisigPsbtError):
    """Multisig threshold outside 1..N or not matching the script"""


class InvalidKeyEncoding(MultisigPsbtError):
    """A public or extended key is not in the expected serialization"""


class InvalidDescriptor(MultisigPsbtError):
    """An output descriptor could not be parsed"""


class MalformedContainer(MultisigPsbtError):
    """The binary PSBT structure is invalid"""


class KeyNotFound(MultisigPsbtError):
    """The signer's fingerprint does not appear in any input"""


class MissingWitnessData(MultisigPsbtError):
    """An input lacks its witness UTXO or witness script"""


class MismatchedTransaction(MultisigPsbtError):
    """PSBTs to be combined carry different unsigned transactions"""


class MergeConflict(MultisigPsbtError):
    """PSBTs to be combined disagree on a non-signature field"""


class NotFinalized(MultisigPsbtError):
    """A transaction was extracted before all inputs were finalized"""


class InsufficientSignatures(MultisigPsbtError):
    """Fewer valid partial signatures than the threshold

    Attributes
    ----------
    have : int
        the number of usable signatures found
    need : int
        the threshold
    input_index : int, optional
        the input that failed
    """

    def __init__(self, have: int, need: int, input_index: Optional[int] = None) -> None:
        self.have = have
        self.need = need
        self.input_index = input_index
        where = "" if input_index is None else f" for input {input_index}"
        super().__init__(f"Insufficient signatures{where}: have {have}, need {need}")
