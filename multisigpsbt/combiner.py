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

"""Merging of PSBTs that were signed independently (BIP174 Combiner).

The merge is a per-field set union, so ``combine_psbts`` gives the same
document for any order or repetition of its arguments.
"""

from typing import Callable, Dict, Optional, Sequence, TypeVar

from multisigpsbt.errors import MergeConflict, MismatchedTransaction
from multisigpsbt.logs import logs
from multisigpsbt.psbt import PSBT, PSBTInput, PSBTOutput
from multisigpsbt.psbt_utils import encode_witness_stack
from multisigpsbt.utils import b_to_h

logger = logs.get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


def _union(
    base: Dict[K, V],
    other: Dict[K, V],
    what: str,
    encode: Callable[[V], bytes],
) -> None:
    for key, value in other.items():
        if key not in base:
            base[key] = value
        elif encode(base[key]) != encode(value):
            raise MergeConflict(f"Conflicting {what} values")


def _backfill(
    base: Optional[V], other: Optional[V], what: str, encode: Callable[[V], bytes]
) -> Optional[V]:
    if base is None:
        return other
    if other is not None and encode(base) != encode(other):
        raise MergeConflict(f"Conflicting {what}")
    return base


def _merge_signatures(base: Dict[bytes, bytes], other: Dict[bytes, bytes], index: int) -> None:
    for pubkey, signature in other.items():
        current = base.get(pubkey)
        if current is None:
            base[pubkey] = signature
        elif current != signature:
            # deterministic signing makes this impossible for honest signers;
            # keep the smaller one so the result does not depend on order
            logger.warning(
                "Input %d: two different signatures for %s, keeping the smaller",
                index,
                b_to_h(pubkey),
            )
            base[pubkey] = min(current, signature)


def _merge_input(base: PSBTInput, other: PSBTInput, index: int) -> None:
    if base.is_finalized() or other.is_finalized():
        # finalized inputs keep only the witness and unknown entries
        base.final_scriptwitness = _backfill(
            base.final_scriptwitness,
            other.final_scriptwitness,
            "final witness",
            encode_witness_stack,
        )
        _union(base.unknown, other.unknown, "unknown input entry", bytes)
        base.clear_scaffolding()
        logger.debug("Input %d is finalized, signing data not merged", index)
        return

    _merge_signatures(base.partial_sigs, other.partial_sigs, index)
    _union(base.bip32_derivs, other.bip32_derivs, "key origin", lambda o: o.to_bytes())
    _union(base.unknown, other.unknown, "unknown input entry", bytes)
    base.witness_utxo = _backfill(
        base.witness_utxo, other.witness_utxo, "witness UTXO", lambda o: o.to_bytes()
    )
    base.witness_script = _backfill(
        base.witness_script, other.witness_script, "witness script", lambda s: s.to_bytes()
    )
    base.sighash_type = _backfill(
        base.sighash_type, other.sighash_type, "sighash type", lambda t: t.to_bytes(4, "little")
    )


def _merge_output(base: PSBTOutput, other: PSBTOutput) -> None:
    base.witness_script = _backfill(
        base.witness_script, other.witness_script, "output witness script", lambda s: s.to_bytes()
    )
    _union(base.bip32_derivs, other.bip32_derivs, "output key origin", lambda o: o.to_bytes())
    _union(base.unknown, other.unknown, "unknown output entry", bytes)


def combine_psbts(psbts: Sequence[PSBT]) -> PSBT:
    """Merges PSBTs that carry the same unsigned transaction

    Partial signatures, key origins, global xpubs and unknown entries are
    united; a witness UTXO, witness script, sighash type or final witness
    missing from one document is taken from another. An input finalized in
    any document comes out finalized, without partial signatures, key
    origins, witness UTXO, witness script or sighash type.

    Raises
    ------
    ValueError
        If psbts is empty
    MismatchedTransaction
        If the unsigned transactions are not byte-identical
    MergeConflict
        If two documents hold different values for a non-signature field
    """

    if not psbts:
        raise ValueError("At least one PSBT is required")

    combined = psbts[0].copy()
    unsigned = combined.tx.to_bytes(include_witness=False)
    for other in psbts[1:]:
        if other.tx.to_bytes(include_witness=False) != unsigned:
            raise MismatchedTransaction(
                f"Cannot combine PSBTs of transactions {combined.tx.get_txid()} "
                f"and {other.tx.get_txid()}"
            )

    for other in psbts[1:]:
        for index, (base_input, other_input) in enumerate(zip(combined.inputs, other.inputs)):
            _merge_input(base_input, other_input, index)
        for base_output, other_output in zip(combined.outputs, other.outputs):
            _merge_output(base_output, other_output)
        _union(combined.xpubs, other.xpubs, "global xpub", lambda o: o.to_bytes())
        _union(combined.unknown, other.unknown, "unknown global entry", bytes)
        combined.version = _backfill(
            combined.version, other.version, "PSBT version", lambda v: v.to_bytes(4, "little")
        )

    logger.info("Combined %d PSBT(s) for transaction %s", len(psbts), combined.tx.get_txid())
    return combined
