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

"""Coordinator helpers for a BIP48 P2WSH multisig wallet.

Key owners keep a ``KeyRecord`` (account xprv plus public data); the
coordinator only needs each owner's ``XpubOrigin`` to build the wallet,
derive addresses and create spends.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from multisigpsbt.constants import (
    DEFAULT_ACCOUNT_PATH,
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
    DUST_LIMIT,
    RBF_TX_SEQUENCE,
)
from multisigpsbt.descriptor import DescriptorKey, SortedMultiDescriptor
from multisigpsbt.errors import InvalidKeyEncoding
from multisigpsbt.hdwallet import (
    DerivationPath,
    ExtendedKey,
    KeyOrigin,
    derive_path,
    generate_root,
)
from multisigpsbt.keys import PublicKey, SegwitAddress, to_script_pub_key
from multisigpsbt.logs import logs
from multisigpsbt.multisig import MultisigPolicy
from multisigpsbt.psbt import PSBT, create_psbt
from multisigpsbt.script import Script
from multisigpsbt.signer import sign_psbt
from multisigpsbt.transactions import Transaction, TxInput, TxOutput
from multisigpsbt.utils import b_to_h, h_to_b

logger = logs.get_logger(__name__)


class KeyRecord:
    """What a key owner stores: account keys, master fingerprint and path

    Attributes
    ----------
    name : str
    xprv : str
        account-level extended private key
    xpub : str
        account-level extended public key
    fingerprint : str
        master fingerprint, 8 lowercase hex characters
    derivation_path : str
        path from the master to the account key
    """

    def __init__(
        self, name: str, xprv: str, xpub: str, fingerprint: str, derivation_path: str
    ) -> None:
        self.name = name
        self.xprv = xprv
        self.xpub = xpub
        self.fingerprint = fingerprint.lower()
        self.derivation_path = derivation_path

    def account_key(self) -> ExtendedKey:
        key = ExtendedKey.from_string(self.xprv)
        if not key.is_private:
            raise InvalidKeyEncoding(f"Key record {self.name} has no private key")
        return key

    def xpub_origin(self) -> "XpubOrigin":
        return XpubOrigin(self.xpub, self.fingerprint, self.derivation_path)

    def sign(self, psbt: PSBT) -> PSBT:
        """Signs psbt with this record's account key"""
        return sign_psbt(
            psbt, self.account_key(), self.fingerprint, key_path=self.derivation_path
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "xprv": self.xprv,
            "xpub": self.xpub,
            "fingerprint": self.fingerprint,
            "derivation_path": self.derivation_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        try:
            return cls(
                data["name"],
                data["xprv"],
                data["xpub"],
                data["fingerprint"],
                data["derivation_path"],
            )
        except KeyError as e:
            raise ValueError(f"Key record is missing {e.args[0]}") from e

    def __repr__(self) -> str:
        # the xprv stays out of reprs and logs
        return f"KeyRecord({self.name}, {self.fingerprint}, {self.derivation_path})"


def generate_key_record(
    name: str,
    entropy: Optional[bytes] = None,
    account_path: str = DEFAULT_ACCOUNT_PATH,
    network: Optional[str] = None,
) -> KeyRecord:
    """Creates a new root key and returns its account-level record"""

    root = generate_root(entropy)
    account = derive_path(root, account_path)
    record = KeyRecord(
        name,
        account.to_string(network),
        account.neuter().to_string(network),
        b_to_h(root.fingerprint),
        DerivationPath.parse(account_path).to_string(),
    )
    logger.info("Generated key %s with fingerprint %s", name, record.fingerprint)
    return record


class XpubOrigin:
    """An owner's account xpub with its master fingerprint and path"""

    def __init__(
        self,
        xpub: Union[ExtendedKey, str],
        fingerprint: Union[bytes, str],
        derivation_path: Union[DerivationPath, str],
    ) -> None:
        if isinstance(xpub, str):
            xpub = ExtendedKey.from_string(xpub)
        self.xpub = xpub.neuter() if xpub.is_private else xpub
        self.fingerprint = h_to_b(fingerprint) if isinstance(fingerprint, str) else bytes(fingerprint)
        self.derivation_path = DerivationPath.parse(derivation_path)

    @property
    def origin(self) -> KeyOrigin:
        return KeyOrigin(self.fingerprint, self.derivation_path)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, XpubOrigin):
            return False
        return self.xpub == other.xpub and self.origin == other.origin

    def __repr__(self) -> str:
        return f"XpubOrigin([{self.origin.to_string()}]{self.xpub.to_string()})"


class Utxo:
    """An unspent output of the wallet

    Attributes
    ----------
    txid : str
    vout : int
    amount : int
        in satoshis
    index : int
        wallet address index that locks the output
    """

    def __init__(self, txid: str, vout: int, amount: int, index: int = 0) -> None:
        self.txid = txid
        self.vout = vout
        self.amount = amount
        self.index = index

    def __repr__(self) -> str:
        return f"Utxo({self.txid}:{self.vout}, {self.amount}, index={self.index})"


class MultisigWallet:
    """A sorted multisig wallet over BIP48 account keys

    Addresses are derived from ``wsh(sortedmulti(M,[fp/path]xpub/*,...))``.
    """

    def __init__(self, threshold: int, xpub_origins: Sequence[XpubOrigin]) -> None:
        self.threshold = threshold
        self.xpub_origins: List[XpubOrigin] = list(xpub_origins)
        self._descriptor = SortedMultiDescriptor(
            threshold, [DescriptorKey(o.origin, o.xpub) for o in self.xpub_origins]
        )
        # fail early on a bad threshold or duplicate keys
        self.policy(0)

    @classmethod
    def from_key_records(cls, records: Sequence[KeyRecord], threshold: int = 2) -> "MultisigWallet":
        return cls(threshold, [record.xpub_origin() for record in records])

    @classmethod
    def from_descriptor(cls, descriptor: str) -> "MultisigWallet":
        parsed = SortedMultiDescriptor.parse(descriptor)
        wallet = cls(
            parsed.threshold,
            [XpubOrigin(key.xpub, key.origin.fingerprint, key.origin.path) for key in parsed.keys],
        )
        # keep any derivation suffix of the parsed keys
        wallet._descriptor = parsed
        return wallet

    @property
    def descriptor(self) -> str:
        return self._descriptor.to_string()

    def policy(self, index: int) -> MultisigPolicy:
        return self._descriptor.policy_at(index)

    def witness_script(self, index: int) -> Script:
        return self.policy(index).witness_script

    def derive_address(self, index: int, network: Optional[str] = None) -> str:
        return self.policy(index).address(network)

    def derive_child_pubkey(self, origin: XpubOrigin, index: int) -> PublicKey:
        for key in self._descriptor.keys:
            if key.xpub == origin.xpub:
                child, _ = key.derive(index)
                return child.public_key
        raise ValueError("Extended key is not part of this wallet")

    def create_spend(
        self,
        utxos: Sequence[Utxo],
        destination: Union[str, SegwitAddress, Script],
        amount: int,
        fee: int,
        change_index: int = 1,
    ) -> PSBT:
        """Creates the unsigned PSBT for a payment

        The transaction is version 2 with locktime 0 and signals
        replace-by-fee. Change goes to the wallet address at change_index
        unless it is below the dust limit, in which case it is left to the
        fee.

        Raises
        ------
        ValueError
            If there are no UTXOs, amount or fee is invalid, or the UTXOs do
            not cover amount plus fee
        """

        if not utxos:
            raise ValueError("No UTXOs to spend")
        if amount <= 0:
            raise ValueError("Amount must be positive")
        if fee < 0:
            raise ValueError("Fee cannot be negative")

        total = sum(utxo.amount for utxo in utxos)
        change = total - amount - fee
        if change < 0:
            raise ValueError(f"Insufficient funds: have {total}, need {amount + fee}")

        inputs = [TxInput(utxo.txid, utxo.vout, sequence=RBF_TX_SEQUENCE) for utxo in utxos]
        outputs = [TxOutput(amount, to_script_pub_key(destination))]
        change_policy = None
        if change >= DUST_LIMIT:
            change_policy = self.policy(change_index)
            outputs.append(TxOutput(change, change_policy.script_pubkey))
        else:
            logger.info("Change of %d sat is below dust, added to the fee", change)

        tx = Transaction(inputs, outputs, DEFAULT_TX_LOCKTIME, DEFAULT_TX_VERSION)
        policies = [self.policy(utxo.index) for utxo in utxos]
        witness_utxos = [
            TxOutput(utxo.amount, policy.script_pubkey) for utxo, policy in zip(utxos, policies)
        ]
        psbt = create_psbt(
            tx,
            witness_utxos,
            policies,
            xpubs={o.xpub: o.origin for o in self.xpub_origins},
        )

        if change_policy is not None:
            change_output = psbt.outputs[1]
            change_output.witness_script = Script.copy(change_policy.witness_script)
            change_output.bip32_derivs = dict(change_policy.origins)

        logger.info(
            "Created spend of %d sat with fee %d sat and change %d sat",
            amount,
            psbt.get_fee(),
            change if change_policy is not None else 0,
        )
        return psbt
