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

import struct
from typing import Optional, Tuple

from multisigpsbt.constants import (
    DEFAULT_TX_SEQUENCE,
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
    SIGHASH_ALL,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    SIGHASH_ANYONECANPAY,
)
from multisigpsbt.script import Script
from multisigpsbt.utils import (
    encode_varint,
    hash256,
    prepend_compact_size,
    h_to_b,
    b_to_h,
    parse_compact_size,
)


def _read(data: bytes, cursor: int, size: int) -> Tuple[bytes, int]:
    if size < 0 or cursor + size > len(data):
        raise ValueError("Unexpected end of transaction data")
    return data[cursor : cursor + size], cursor + size


def _read_compact_size(data: bytes, cursor: int) -> Tuple[int, int]:
    value, size = parse_compact_size(data[cursor : cursor + 9])
    return value, cursor + size


class TxInput:
    """Represents a transaction input.

    A transaction input requires a transaction id of a UTXO and the index of
    that UTXO.

    Attributes
    ----------
    txid : str
        the transaction id as a hex string (little-endian as displayed by
        tools)
    txout_index : int
        the index of the UTXO that we want to spend
    script_sig : Script
        the script that satisfies the locking conditions (aka unlocking script)
    sequence : bytes
        the input sequence (for timelocks, RBF, etc.)

    Methods
    -------
    to_bytes()
        serializes TxInput to bytes
    outpoint_bytes()
        serializes the outpoint (txid + index) only
    copy()
        creates a copy of the object (classmethod)
    from_bytes()
        instantiates object from raw transaction bytes at a cursor (staticmethod)
    """

    def __init__(
        self,
        txid: str,
        txout_index: int,
        script_sig: Optional[Script] = None,
        sequence: str | bytes = DEFAULT_TX_SEQUENCE,
    ) -> None:
        """See TxInput description"""

        if len(h_to_b(txid)) != 32:
            raise ValueError("txid must be 32 bytes")

        # expected in the format used for displaying Bitcoin hashes
        self.txid = txid
        self.txout_index = txout_index
        self.script_sig = script_sig if script_sig is not None else Script([])

        # if user provided a sequence it would be as string (for now...)
        if isinstance(sequence, str):
            self.sequence = h_to_b(sequence)
        else:
            self.sequence = sequence

    def outpoint_bytes(self) -> bytes:
        # the txid string is displayed in little-endian, reverse it back
        return h_to_b(self.txid)[::-1] + struct.pack("<I", self.txout_index)

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        script_sig_bytes = self.script_sig.to_bytes()
        return (
            self.outpoint_bytes()
            + encode_varint(len(script_sig_bytes))
            + script_sig_bytes
            + self.sequence
        )

    def __str__(self) -> str:
        return str(
            {
                "txid": self.txid,
                "txout_index": self.txout_index,
                "script_sig": self.script_sig,
                "sequence": self.sequence.hex(),
            }
        )

    def __repr__(self) -> str:
        return self.__str__()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxInput):
            return False
        return self.to_bytes() == other.to_bytes()

    @staticmethod
    def from_bytes(data: bytes, cursor: int = 0) -> Tuple["TxInput", int]:
        """Parses a TxInput at cursor and returns it with the new cursor"""

        txid, cursor = _read(data, cursor, 32)
        vout_bytes, cursor = _read(data, cursor, 4)
        script_size, cursor = _read_compact_size(data, cursor)
        script_sig, cursor = _read(data, cursor, script_size)
        sequence, cursor = _read(data, cursor, 4)

        tx_input = TxInput(
            txid=b_to_h(txid[::-1]),
            txout_index=struct.unpack("<I", vout_bytes)[0],
            script_sig=Script.from_raw(script_sig),
            sequence=sequence,
        )
        return tx_input, cursor

    @classmethod
    def copy(cls, txin: "TxInput") -> "TxInput":
        """Deep copy of TxInput"""

        return cls(
            txin.txid, txin.txout_index, Script.copy(txin.script_sig), txin.sequence
        )


class TxWitnessInput:
    """A list of the witness items required to satisfy the locking conditions
       of a segwit input (aka witness stack).

    Attributes
    ----------
    stack : list
        the witness items (hex str) list

    Methods
    -------
    to_bytes()
        returns a serialized byte version of the witness items list
    copy()
        creates a copy of the object (classmethod)
    """

    def __init__(self, stack: list[str]) -> None:
        """See description"""

        self.stack = stack

    def to_bytes(self) -> bytes:
        """Converts to bytes: item count followed by length-prefixed items"""

        stack_bytes = encode_varint(len(self.stack))
        for item in self.stack:
            # witness items can only be data items (hex str)
            stack_bytes += prepend_compact_size(h_to_b(item))
        return stack_bytes

    @classmethod
    def copy(cls, txwin: "TxWitnessInput") -> "TxWitnessInput":
        """Deep copy of TxWitnessInput"""

        return cls(list(txwin.stack))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxWitnessInput):
            return False
        return self.stack == other.stack

    def __str__(self) -> str:
        return str(
            {
                "witness_items": self.stack,
            }
        )

    def __repr__(self) -> str:
        return self.__str__()


class TxOutput:
    """Represents a transaction output

    Attributes
    ----------
    amount : int
        the value we want to send to this output in satoshis
    script_pubkey : Script
        the script that will lock this amount

    Methods
    -------
    to_bytes()
        serializes TxOutput to bytes
    copy()
        creates a copy of the object (classmethod)
    from_bytes()
        instantiates object from raw bytes at a cursor (staticmethod)
    """

    def __init__(self, amount: int, script_pubkey: Script) -> None:
        """See TxOutput description"""

        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError("Amount needs to be in satoshis as an integer")
        if amount < 0:
            raise ValueError("Amount cannot be negative")

        self.amount = amount
        self.script_pubkey = script_pubkey

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        # internally all little-endian except hashes
        amount_bytes = struct.pack("<q", self.amount)
        script_bytes = self.script_pubkey.to_bytes()
        return amount_bytes + encode_varint(len(script_bytes)) + script_bytes

    @staticmethod
    def from_bytes(data: bytes, cursor: int = 0) -> Tuple["TxOutput", int]:
        """Parses a TxOutput at cursor and returns it with the new cursor"""

        amount_bytes, cursor = _read(data, cursor, 8)
        script_size, cursor = _read_compact_size(data, cursor)
        script_bytes, cursor = _read(data, cursor, script_size)

        amount = struct.unpack("<q", amount_bytes)[0]
        return TxOutput(amount, Script.from_raw(script_bytes)), cursor

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxOutput):
            return False
        return self.to_bytes() == other.to_bytes()

    def __str__(self) -> str:
        return str({"amount": self.amount, "script_pubkey": self.script_pubkey})

    def __repr__(self) -> str:
        return self.__str__()

    @classmethod
    def copy(cls, txout: "TxOutput") -> "TxOutput":
        """Deep copy of TxOutput"""

        return cls(txout.amount, Script.copy(txout.script_pubkey))


class Transaction:
    """Represents a transaction

    Attributes
    ----------
    inputs : list (TxInput)
        A list of all the transaction inputs
    outputs : list (TxOutput)
        A list of all the transaction outputs
    locktime : bytes
        The transaction's locktime parameter
    version : bytes
        The transaction version
    has_segwit : bool
        Specifies a tx that includes segwit inputs
    witnesses : list (TxWitnessInput)
        The witness structure that corresponds to the inputs

    Methods
    -------
    to_bytes(include_witness=True)
        Serializes Transaction to bytes
    to_hex()
        converts result of to_bytes to hexadecimal string
    from_bytes(), from_raw()
        Instantiates a Transaction from serialized bytes / hex (staticmethod)
    get_txid()
        Calculates txid and returns it
    get_wtxid()
        Calculates tx hash (wtxid) and returns it
    get_size()
        Calculates the tx size
    get_vsize()
        Calculates the tx segwit size
    copy()
        creates a copy of the object (classmethod)
    get_transaction_segwit_digest(txin_index, script, amount, sighash)
        returns the transaction input's segwit digest that is to be signed
        according to sighash
    """

    def __init__(
        self,
        inputs: Optional[list[TxInput]] = None,
        outputs: Optional[list[TxOutput]] = None,
        locktime: str | bytes = DEFAULT_TX_LOCKTIME,
        version: bytes = DEFAULT_TX_VERSION,
        has_segwit: bool = False,
        witnesses: Optional[list[TxWitnessInput]] = None,
    ) -> None:
        """See Transaction description"""

        # make sure default argument for inputs, outputs and witnesses is an empty list
        self.inputs = inputs if inputs is not None else []
        self.outputs = outputs if outputs is not None else []
        self.has_segwit = has_segwit
        self.witnesses = witnesses if witnesses is not None else []

        # if user provided a locktime it would be as string (for now...)
        if isinstance(locktime, str):
            self.locktime = h_to_b(locktime)
        else:
            self.locktime = locktime

        self.version = version

    def to_bytes(self, include_witness: bool = True) -> bytes:
        """Serializes transaction to bytes following the Bitcoin protocol serialization

        Parameters
        ----------
        include_witness : bool
            Whether to include witness data in serialization
        """

        inputs_ser = b"".join(txin.to_bytes() for txin in self.inputs)
        outputs_ser = b"".join(txout.to_bytes() for txout in self.outputs)

        # non-segwit format (include_witness=False) or non-segwit transaction
        if not include_witness or not self.has_segwit:
            return (
                self.version
                + encode_varint(len(self.inputs))
                + inputs_ser
                + encode_varint(len(self.outputs))
                + outputs_ser
                + self.locktime
            )

        # segwit format: marker and flag, then one witness per input
        witness_ser = b""
        for index in range(len(self.inputs)):
            if index < len(self.witnesses):
                witness_ser += self.witnesses[index].to_bytes()
            else:
                witness_ser += b"\x00"  # empty witness

        return (
            self.version
            + b"\x00\x01"
            + encode_varint(len(self.inputs))
            + inputs_ser
            + encode_varint(len(self.outputs))
            + outputs_ser
            + witness_ser
            + self.locktime
        )

    def to_hex(self) -> str:
        """Serializes transaction to hex string"""

        return b_to_h(self.to_bytes(include_witness=self.has_segwit))

    def get_txid(self) -> str:
        """Calculates the transaction id (txid) and returns it"""
        # note that tx serialization for txid/hash does not include segwit data
        # (it's the pre-segwit serialization - no marker, flag and no witness data)
        return b_to_h(hash256(self.to_bytes(include_witness=False))[::-1])

    def get_wtxid(self) -> str:
        """Calculates the witness transaction id (wtxid) and returns it"""
        if not self.has_segwit:
            return self.get_txid()
        return b_to_h(hash256(self.to_bytes(include_witness=True))[::-1])

    def get_size(self) -> int:
        """Calculates the transaction size in bytes (including witness data if present)"""
        return len(self.to_bytes(include_witness=self.has_segwit))

    def get_vsize(self) -> int:
        """Calculates the virtual transaction size (for fee calculations in segwit)

        vsize = (weight + 3) // 4 where weight = 3 * non_witness_size + full_size
        """
        if not self.has_segwit:
            return self.get_size()

        non_witness_size = len(self.to_bytes(include_witness=False))
        full_size = len(self.to_bytes(include_witness=True))
        weight = 3 * non_witness_size + full_size
        return (weight + 3) // 4

    @staticmethod
    def from_bytes(rawtx: bytes) -> "Transaction":
        """Imports a Transaction from its serialization

        Raises
        ------
        ValueError
            If data is truncated or has trailing bytes
        """

        version, cursor = _read(rawtx, 0, 4)

        # Detect and handle SegWit
        has_segwit = False
        if rawtx[cursor : cursor + 2] == b"\x00\x01":
            has_segwit = True
            cursor += 2

        n_inputs, cursor = _read_compact_size(rawtx, cursor)
        inputs = []
        for _ in range(n_inputs):
            txin, cursor = TxInput.from_bytes(rawtx, cursor)
            inputs.append(txin)

        n_outputs, cursor = _read_compact_size(rawtx, cursor)
        outputs = []
        for _ in range(n_outputs):
            txout, cursor = TxOutput.from_bytes(rawtx, cursor)
            outputs.append(txout)

        witnesses = []
        if has_segwit:
            for _ in range(n_inputs):
                n_items, cursor = _read_compact_size(rawtx, cursor)
                stack = []
                for _ in range(n_items):
                    item_size, cursor = _read_compact_size(rawtx, cursor)
                    item, cursor = _read(rawtx, cursor, item_size)
                    stack.append(b_to_h(item))
                witnesses.append(TxWitnessInput(stack))

        locktime, cursor = _read(rawtx, cursor, 4)
        if cursor != len(rawtx):
            raise ValueError("Trailing data after transaction")

        return Transaction(
            inputs=inputs,
            outputs=outputs,
            version=version,
            locktime=locktime,
            has_segwit=has_segwit,
            witnesses=witnesses,
        )

    @staticmethod
    def from_raw(rawtxhex: str) -> "Transaction":
        """Imports a Transaction from hexadecimal data"""

        return Transaction.from_bytes(h_to_b(rawtxhex))

    def __str__(self) -> str:
        return str(
            {
                "inputs": self.inputs,
                "outputs": self.outputs,
                "has_segwit": self.has_segwit,
                "witnesses": self.witnesses,
                "locktime": self.locktime.hex(),
                "version": self.version.hex(),
            }
        )

    def __repr__(self) -> str:
        return self.__str__()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return False
        return self.to_bytes() == other.to_bytes()

    @classmethod
    def copy(cls, tx: "Transaction") -> "Transaction":
        """Deep copy of Transaction"""

        ins = [TxInput.copy(txin) for txin in tx.inputs]
        outs = [TxOutput.copy(txout) for txout in tx.outputs]
        wits = [TxWitnessInput.copy(witness) for witness in tx.witnesses]
        return cls(ins, outs, tx.locktime, tx.version, tx.has_segwit, wits)

    def get_transaction_segwit_digest(
        self, txin_index: int, script: Script, amount: int, sighash: int = SIGHASH_ALL
    ) -> bytes:
        """Returns the segwit v0 transaction's digest for signing.
        https://github.com/bitcoin/bips/blob/master/bip-0143.mediawiki

             |  SIGHASH types (see constants.py):
             |      SIGHASH_ALL - signs all inputs and outputs (default)
             |      SIGHASH_NONE - signs all of the inputs
             |      SIGHASH_SINGLE - signs all inputs but only txin_index output
             |      SIGHASH_ANYONECANPAY (only combined with one of the above)
             |      - with ALL - signs all outputs but only txin_index input
             |      - with NONE - signs only the txin_index input
             |      - with SINGLE - signs txin_index input and output

             Attributes
             ----------
             txin_index : int
                 The index of the input that we wish to sign
             script : Script
                 The scriptCode; for P2WSH the witness script itself
             amount : int
                 The amount of the UTXO to spend is included in the
                 signature for segwit (in satoshis)
             sighash : int
                 The type of the signature hash to be created
        """

        if not 0 <= txin_index < len(self.inputs):
            raise IndexError(f"Input index {txin_index} out of range")

        # defaults for BIP143
        hash_prevouts = b"\x00" * 32
        hash_sequence = b"\x00" * 32
        hash_outputs = b"\x00" * 32

        # acquiring the signature type
        basic_sig_hash_type = sighash & 0x1F
        anyone_can_pay = sighash & 0xF0 == SIGHASH_ANYONECANPAY
        sign_all = (basic_sig_hash_type != SIGHASH_SINGLE) and (
            basic_sig_hash_type != SIGHASH_NONE
        )

        if not anyone_can_pay:
            hash_prevouts = hash256(
                b"".join(txin.outpoint_bytes() for txin in self.inputs)
            )

        if not anyone_can_pay and sign_all:
            hash_sequence = hash256(b"".join(txin.sequence for txin in self.inputs))

        if sign_all:
            hash_outputs = hash256(b"".join(txout.to_bytes() for txout in self.outputs))
        elif basic_sig_hash_type == SIGHASH_SINGLE and txin_index < len(self.outputs):
            hash_outputs = hash256(self.outputs[txin_index].to_bytes())

        txin = self.inputs[txin_index]
        tx_for_signing = (
            self.version
            + hash_prevouts
            + hash_sequence
            + txin.outpoint_bytes()
            + prepend_compact_size(script.to_bytes())
            + struct.pack("<q", amount)
            + txin.sequence
            + hash_outputs
            + self.locktime
            + struct.pack("<I", sighash)
        )

        return hash256(tx_for_signing)
