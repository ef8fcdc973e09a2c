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

from typing import Optional, Union

from multisigpsbt.constants import SIGHASH_ALL
from multisigpsbt.errors import InvalidDerivation, KeyNotFound, MissingWitnessData
from multisigpsbt.hdwallet import DerivationPath, ExtendedKey, KeyOrigin, derive_path
from multisigpsbt.logs import logs
from multisigpsbt.psbt import PSBT
from multisigpsbt.utils import b_to_h, h_to_b

logger = logs.get_logger(__name__)


def _relative_path(
    origin: KeyOrigin, owned_key: ExtendedKey, key_path: Optional[DerivationPath]
) -> DerivationPath:
    if key_path is not None:
        return origin.path.relative_to(key_path)
    # without an explicit path the owned key is assumed to sit on the
    # recorded path at its own depth; the pubkey comparison catches mismatches
    if len(origin.path) < owned_key.depth:
        raise InvalidDerivation(
            f"{origin.path.to_string()} is shorter than the key depth {owned_key.depth}"
        )
    return DerivationPath(origin.path.steps[owned_key.depth :])


def sign_psbt(
    psbt: PSBT,
    owned_key: ExtendedKey,
    own_fingerprint: Union[bytes, str],
    key_path: Optional[Union[DerivationPath, str]] = None,
    sighash: int = SIGHASH_ALL,
) -> PSBT:
    """Adds this key owner's partial signatures and returns the new PSBT

    Every input whose key origins carry ``own_fingerprint`` is signed with
    the child of ``owned_key`` at the recorded path. The input document is
    left untouched.

    Parameters
    ----------
    psbt : PSBT
        the document to sign
    owned_key : ExtendedKey
        a private extended key: the root, or an account key together with
        ``key_path``
    own_fingerprint : bytes or str
        master fingerprint of the owner (4 bytes or 8 hex characters)
    key_path : DerivationPath or str, optional
        path from the master to ``owned_key``; when omitted the key is taken
        to sit at its own depth on every recorded path
    sighash : int
        used when an input does not request a sighash type itself

    Raises
    ------
    KeyNotFound
        If no input references the fingerprint, or no recorded key could be
        derived from ``owned_key``
    MissingWitnessData
        If a matching input lacks its witness UTXO or witness script
    ValueError
        If the sighash type to sign with does not fit in one byte
    """

    if not owned_key.is_private:
        raise ValueError("Signing requires a private extended key")
    fingerprint = (
        h_to_b(own_fingerprint) if isinstance(own_fingerprint, str) else bytes(own_fingerprint)
    )
    path = DerivationPath.parse(key_path) if key_path is not None else None

    signed = psbt.copy()
    matched = 0
    added = 0
    for index, psbt_input in enumerate(signed.inputs):
        if psbt_input.is_finalized():
            logger.debug("Input %d is finalized, skipping", index)
            continue

        mine = sorted(
            (pubkey, origin)
            for pubkey, origin in psbt_input.bip32_derivs.items()
            if origin.fingerprint == fingerprint
        )
        if not mine:
            continue
        matched += 1

        if psbt_input.witness_utxo is None or psbt_input.witness_script is None:
            raise MissingWitnessData(
                f"Input {index} lacks its witness UTXO or witness script"
            )
        witness_script = psbt_input.witness_script
        try:
            script_keys = witness_script.get_multisig_pubkeys()
        except ValueError:
            logger.warning("Input %d witness script is not multisig, skipping", index)
            continue

        input_sighash = (
            psbt_input.sighash_type if psbt_input.sighash_type is not None else sighash
        )
        if not 0 <= input_sighash <= 0xFF:
            raise ValueError(f"Input {index}: sighash type {input_sighash:#x} is out of range")
        amount = psbt_input.witness_utxo.amount

        for pubkey, origin in mine:
            try:
                child = derive_path(owned_key, _relative_path(origin, owned_key, path))
            except InvalidDerivation as e:
                logger.warning("Input %d: cannot derive %s: %s", index, origin.to_string(), e)
                continue
            if child.public_key.to_bytes() != pubkey:
                logger.warning(
                    "Input %d: key at %s does not match %s, skipping",
                    index,
                    origin.to_string(),
                    b_to_h(pubkey),
                )
                continue
            if pubkey not in script_keys:
                logger.warning(
                    "Input %d: %s is not in the witness script, skipping", index, b_to_h(pubkey)
                )
                continue

            assert child.private_key is not None
            signature = child.private_key.sign_segwit_input(
                signed.tx, index, witness_script, amount, input_sighash
            )
            # one signature per (input, pubkey): re-signing overwrites
            psbt_input.partial_sigs[pubkey] = h_to_b(signature)
            added += 1
            logger.debug("Signed input %d with %s", index, b_to_h(pubkey))

    if not matched:
        raise KeyNotFound(f"Fingerprint {b_to_h(fingerprint)} not found in any input")
    if not added:
        raise KeyNotFound(
            f"No key of fingerprint {b_to_h(fingerprint)} could be derived for any input"
        )

    logger.info("Added %d signature(s) for fingerprint %s", added, b_to_h(fingerprint))
    return signed
