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

"""Finalization and extraction of P2WSH multisig PSBTs (BIP174 Finalizer
and Extractor roles).

The witness of an M-of-N multisig input is, bottom to top::

    <empty> <sig_1> ... <sig_M> <witness script>

The empty element is consumed by the extra stack pop of OP_CHECKMULTISIG.
Signatures must appear in the same order as their keys in the script.
"""

from typing import Collection, Dict, List, Optional, Tuple, Union

from multisigpsbt.errors import (
    InsufficientSignatures,
    InvalidThreshold,
    MissingWitnessData,
    NotFinalized,
)
from multisigpsbt.keys import PublicKey
from multisigpsbt.logs import logs
from multisigpsbt.multisig import MultisigPolicy, sort_signatures
from multisigpsbt.psbt import PSBT
from multisigpsbt.transactions import Transaction, TxWitnessInput
from multisigpsbt.utils import b_to_h

logger = logs.get_logger(__name__)


def _input_policy(psbt: PSBT, index: int) -> MultisigPolicy:
    witness_script = psbt.inputs[index].witness_script
    if witness_script is None:
        raise MissingWitnessData(f"Input {index} has no witness script")
    return MultisigPolicy.from_witness_script(witness_script)


def _required(policy: MultisigPolicy, threshold: Optional[int], index: int) -> int:
    """Returns the signature count a finalized witness must carry"""
    if threshold is None:
        return policy.threshold
    if threshold != policy.threshold:
        raise InvalidThreshold(
            f"Input {index} script requires {policy.threshold} signatures, not {threshold}"
        )
    return threshold


def _counted(policy: MultisigPolicy, threshold: Optional[int]) -> int:
    if threshold is None:
        return policy.threshold
    if threshold < 1:
        raise InvalidThreshold(f"Threshold must be positive, got {threshold}")
    return threshold


def _signature_is_valid(psbt: PSBT, index: int, pubkey: bytes, signature: bytes) -> bool:
    psbt_input = psbt.inputs[index]
    if psbt_input.witness_utxo is None or psbt_input.witness_script is None:
        raise MissingWitnessData(f"Input {index} lacks its witness UTXO or witness script")
    if not signature:
        return False
    sighash = signature[-1]
    if psbt_input.sighash_type is not None and sighash != psbt_input.sighash_type:
        return False
    digest = psbt.tx.get_transaction_segwit_digest(
        index, psbt_input.witness_script, psbt_input.witness_utxo.amount, sighash
    )
    return PublicKey.from_bytes(pubkey).verify_signature(signature, digest)


def verify_signatures(psbt: PSBT) -> List[Dict[bytes, bool]]:
    """Checks every partial signature against its input's BIP143 digest

    Returns, per input, a map of pubkey bytes to validity. Finalized inputs
    have no partial signatures and map to an empty dict.
    """

    results = []
    for index, psbt_input in enumerate(psbt.inputs):
        results.append(
            {
                pubkey: _signature_is_valid(psbt, index, pubkey, signature)
                for pubkey, signature in sorted(psbt_input.partial_sigs.items())
            }
        )
    return results


def _usable_signatures(
    psbt: PSBT,
    index: int,
    policy: MultisigPolicy,
    verify: bool,
    exclude: Collection[bytes],
) -> List[Tuple[bytes, bytes]]:
    """Returns the (pubkey, signature) pairs that may go in the witness,
    in script order"""

    pairs = sort_signatures(policy.witness_script, psbt.inputs[index].partial_sigs)
    usable = []
    for pubkey, signature in pairs:
        if pubkey in exclude:
            continue
        if verify and not _signature_is_valid(psbt, index, pubkey, signature):
            logger.warning("Input %d: invalid signature for %s ignored", index, b_to_h(pubkey))
            continue
        usable.append((pubkey, signature))
    return usable


def _exclude_set(exclude: Collection[Union[PublicKey, bytes]]) -> Collection[bytes]:
    return {key.to_bytes() if isinstance(key, PublicKey) else bytes(key) for key in exclude}


def validate(
    psbt: PSBT,
    threshold: Optional[int] = None,
    verify: bool = True,
    exclude: Collection[Union[PublicKey, bytes]] = (),
) -> bool:
    """Checks that every unfinalized input carries enough usable signatures

    Parameters
    ----------
    threshold : int, optional
        required signatures per input; defaults to M of each input's script
    verify : bool
        count only signatures that verify against the input's digest
    exclude : collection of PublicKey or bytes
        signers whose signatures must not be counted

    Raises
    ------
    MissingWitnessData
        If an input has no witness script (or no witness UTXO when verifying)
    InvalidThreshold
        If threshold is below 1
    InsufficientSignatures
        With ``have`` and ``need`` for the first input that falls short
    """

    excluded = _exclude_set(exclude)
    for index, psbt_input in enumerate(psbt.inputs):
        if psbt_input.is_finalized():
            continue
        policy = _input_policy(psbt, index)
        need = _counted(policy, threshold)
        have = len(_usable_signatures(psbt, index, policy, verify, excluded))
        if have < need:
            raise InsufficientSignatures(have, need, index)
    return True


def finalize(
    psbt: PSBT,
    threshold: Optional[int] = None,
    verify: bool = True,
    exclude: Collection[Union[PublicKey, bytes]] = (),
) -> PSBT:
    """Builds the final witness of every input and returns the new PSBT

    When more than ``threshold`` signatures are available the ones whose
    keys come first in the script are used. The signing scaffolding
    (partial signatures, key origins, witness script, witness UTXO and
    sighash type) is removed from finalized inputs. The given document is
    not modified, so it stays usable if finalization fails.

    Raises the same errors as validate, plus InvalidThreshold when threshold
    differs from the M of an input's script.
    """

    excluded = _exclude_set(exclude)
    final = psbt.copy()
    count = 0
    for index, psbt_input in enumerate(final.inputs):
        if psbt_input.is_finalized():
            continue
        policy = _input_policy(final, index)
        need = _required(policy, threshold, index)
        usable = _usable_signatures(final, index, policy, verify, excluded)
        if len(usable) < need:
            raise InsufficientSignatures(len(usable), need, index)

        selected = usable[:need]
        psbt_input.final_scriptwitness = (
            [b""] + [signature for _, signature in selected] + [policy.witness_script.to_bytes()]
        )
        psbt_input.clear_scaffolding()
        count += 1
        logger.debug(
            "Finalized input %d with keys %s",
            index,
            ", ".join(b_to_h(pubkey) for pubkey, _ in selected),
        )

    logger.info("Finalized %d input(s)", count)
    return final


def extract(psbt: PSBT) -> Transaction:
    """Returns the signed transaction of a fully finalized PSBT

    Raises NotFinalized if any input lacks its final witness.
    """

    witnesses = []
    for index, psbt_input in enumerate(psbt.inputs):
        if psbt_input.final_scriptwitness is None:
            raise NotFinalized(f"Input {index} is not finalized")
        witnesses.append(
            TxWitnessInput([b_to_h(item) for item in psbt_input.final_scriptwitness])
        )

    tx = Transaction.copy(psbt.tx)
    tx.has_segwit = True
    tx.witnesses = witnesses
    return tx
