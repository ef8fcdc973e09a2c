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


import copy
import hashlib
import struct
from typing import Any, Optional, Union

from multisigpsbt.utils import b_to_h, h_to_b


# Op codes used by witness v0 multisig and the standard output templates.
# Complete list at: https://en.bitcoin.it/wiki/Script
OP_CODES = {
   # constants
   "OP_0": b"\x00",
   "OP_PUSHDATA1": b"\x4c",
   "OP_PUSHDATA2": b"\x4d",
   "OP_PUSHDATA4": b"\x4e",
   "OP_1NEGATE": b"\x4f",
   "OP_1": b"\x51",
   "OP_2": b"\x52",
   "OP_3": b"\x53",
   "OP_4": b"\x54",
   "OP_5": b"\x55",
   "OP_6": b"\x56",
   "OP_7": b"\x57",
   "OP_8": b"\x58",
   "OP_9": b"\x59",
   "OP_10": b"\x5a",
   "OP_11": b"\x5b",
   "OP_12": b"\x5c",
   "OP_13": b"\x5d",
   "OP_14": b"\x5e",
   "OP_15": b"\x5f",
   "OP_16": b"\x60",
   # flow control
   "OP_VERIFY": b"\x69",
   "OP_RETURN": b"\x6a",
   # stack
   "OP_DUP": b"\x76",
   # bitwise logic
   "OP_EQUAL": b"\x87",
   "OP_EQUALVERIFY": b"\x88",
   # crypto
   "OP_SHA256": b"\xa8",
   "OP_HASH160": b"\xa9",
   "OP_CHECKSIG": b"\xac",
   "OP_CHECKSIGVERIFY": b"\xad",
   "OP_CHECKMULTISIG": b"\xae",
   "OP_CHECKMULTISIGVERIFY": b"\xaf",
}

CODE_OPS = {code: name for name, code in OP_CODES.items()}


def _small_int_opcode(value: int) -> str:
   if value < 0 or value > 16:
      raise ValueError("Only integers 0..16 have a single opcode")
   return "OP_" + str(value)


def _token_to_small_int(token: Any) -> Optional[int]:
   """Returns the small integer represented by a token (int or OP_n) or None"""
   if isinstance(token, int) and not isinstance(token, bool):
      return token if 0 <= token <= 16 else None
   if isinstance(token, str) and token.startswith("OP_") and token[3:].isdigit():
      value = int(token[3:])
      return value if 0 <= value <= 16 else None
   return None


class Script:
   """Represents a Bitcoin script

   A Script contains a list of OP_CODES and data pushes and knows how to
   serialize into bytes. Scripts parsed from raw bytes keep those bytes so
   that re-serialization is exact, even for non-minimal pushes.

   Attributes
   ----------
   script : list
       the list with all the script OP_CODES (str), small integers (int)
       and data pushes (hex str)

   Methods
   -------
   to_bytes()
       returns a serialized byte version of the script
   to_hex()
       returns a serialized version of the script in hex
   get_script()
       returns the list of tokens that makes up this script
   copy()
       creates a copy of the object (classmethod)
   from_raw()
       parses a script from bytes or hex (staticmethod)
   to_p2wsh_script_pub_key()
       converts script to p2wsh scriptPubKey (locking script)
   is_p2wsh(), is_p2wpkh()
       checks for witness v0 output templates
   is_multisig()
       checks if script is a bare multisig script
   get_multisig_pubkeys()
       returns the public keys of a multisig script in script order

   Raises
   ------
   ValueError
       If data is too large to push
   """

   def __init__(self, script: list[Any], raw: Optional[bytes] = None):
      """See Script description"""
      self.script: list[Any] = script
      self._raw = raw

   @classmethod
   def copy(cls, script: "Script") -> "Script":
      """Deep copy of Script"""
      return cls(copy.deepcopy(script.script), script._raw)

   def _op_push_data(self, data: str) -> bytes:
      """Converts data to appropriate OP_PUSHDATA OP code including length"""
      data_bytes = h_to_b(data)

      if len(data_bytes) < 0x4C:
         return bytes([len(data_bytes)]) + data_bytes
      elif len(data_bytes) <= 0xFF:
         return b"\x4c" + bytes([len(data_bytes)]) + data_bytes
      elif len(data_bytes) <= 0xFFFF:
         return b"\x4d" + struct.pack("<H", len(data_bytes)) + data_bytes
      elif len(data_bytes) <= 0xFFFFFFFF:
         return b"\x4e" + struct.pack("<I", len(data_bytes)) + data_bytes
      else:
         raise ValueError("Data too large. Cannot push into script")

   def to_bytes(self) -> bytes:
      """Converts the script to bytes"""
      if self._raw is not None:
         return self._raw

      script_bytes = b""
      for token in self.script:
         if isinstance(token, str) and token in OP_CODES:
            script_bytes += OP_CODES[token]
         elif isinstance(token, int):
            script_bytes += OP_CODES[_small_int_opcode(token)]
         else:
            script_bytes += self._op_push_data(token)
      return script_bytes

   def to_hex(self) -> str:
      """Converts the script to hexadecimal"""
      return b_to_h(self.to_bytes())

   @staticmethod
   def from_raw(scriptraw: Union[str, bytes]) -> "Script":
      """Imports a Script from raw bytes or hexadecimal data

      Opcodes without a name here are kept as "OP_UNKNOWN_xx" tokens; a push
      running past the end of the script is kept as a "[truncated]" token.
      """
      if isinstance(scriptraw, str):
         raw = h_to_b(scriptraw)
      elif isinstance(scriptraw, (bytes, bytearray)):
         raw = bytes(scriptraw)
      else:
         raise TypeError("Input must be a hexadecimal string or bytes")

      commands: list[Any] = []
      index = 0
      while index < len(raw):
         opcode = raw[index]
         index += 1
         if 0x01 <= opcode <= 0x4E:
            if opcode < 0x4C:
               size = opcode
            else:
               width = {0x4C: 1, 0x4D: 2, 0x4E: 4}[opcode]
               if index + width > len(raw):
                  commands.append("[truncated]")
                  break
               size = int.from_bytes(raw[index : index + width], "little")
               index += width
            if index + size > len(raw):
               commands.append("[truncated]")
               break
            commands.append(b_to_h(raw[index : index + size]))
            index += size
         elif bytes([opcode]) in CODE_OPS:
            commands.append(CODE_OPS[bytes([opcode])])
         else:
            commands.append(f"OP_UNKNOWN_{opcode:02x}")

      return Script(commands, raw)

   def get_script(self) -> list[Any]:
      """Returns script as array of strings"""
      return self.script

   def to_p2wsh_script_pub_key(self) -> "Script":
      """Converts script to p2wsh scriptPubKey (locking script)"""
      sha256 = hashlib.sha256(self.to_bytes()).digest()
      return Script(["OP_0", b_to_h(sha256)])

   def _is_witness_v0(self, program_size: int) -> bool:
      raw = self.to_bytes()
      return len(raw) == program_size + 2 and raw[0] == 0x00 and raw[1] == program_size

   def is_p2wpkh(self) -> bool:
      """P2WPKH format: OP_0 <20-byte-key-hash>"""
      return self._is_witness_v0(20)

   def is_p2wsh(self) -> bool:
      """P2WSH format: OP_0 <32-byte-script-hash>"""
      return self._is_witness_v0(32)

   def is_multisig(self) -> tuple[bool, Union[tuple[int, int], None]]:
      """
      Check if script is a multisig script.

      Multisig format: OP_M <pubkey1> ... <pubkeyN> OP_N OP_CHECKMULTISIG

      Returns:
          tuple: (bool, (M, N) if multisig, None otherwise)
      """
      ops = self.script

      if len(ops) < 4 or ops[-1] != "OP_CHECKMULTISIG":
         return False, None

      m = _token_to_small_int(ops[0])
      n = _token_to_small_int(ops[-2])
      if m is None or n is None or m < 1 or n < m:
         return False, None

      # M + N pubkeys + N + OP_CHECKMULTISIG
      if len(ops) != n + 3:
         return False, None
      for token in ops[1:-2]:
         if not isinstance(token, str) or token.startswith("OP_") or token.startswith("["):
            return False, None

      return True, (m, n)

   def get_multisig_pubkeys(self) -> list[bytes]:
      """Returns the pushed public keys in script order

      Raises ValueError if the script is not a multisig script.
      """
      is_multisig, _ = self.is_multisig()
      if not is_multisig:
         raise ValueError("Script is not a multisig script")
      return [h_to_b(token) for token in self.script[1:-2]]

   def __str__(self) -> str:
      return str(self.script)

   def __repr__(self) -> str:
      return self.__str__()

   def __eq__(self, _other: object) -> bool:
      if not isinstance(_other, Script):
         return False
      return self.to_bytes() == _other.to_bytes()

   def __hash__(self) -> int:
      return hash(self.to_bytes())
