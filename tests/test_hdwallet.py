# Copyright (C) 2018-2025 The python-bitcoin-utils developers
#
# This file is part of python-bitcoin-utils
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of python-bitcoin-utils, including this file, may be copied,
# modified, propagated, or distributed except according to the terms contained
# in the LICENSE file.


import unittest
from unittest import mock

from multisigpsbt import hdwallet as hdwallet_module
from multisigpsbt.setup import setup
from multisigpsbt.errors import InsufficientEntropy, InvalidDerivation, InvalidKeyEncoding
from multisigpsbt.hdwallet import (
    DerivationPath,
    ExtendedKey,
    HDWallet,
    KeyKind,
    KeyOrigin,
    derive,
    derive_path,
    fingerprint,
    generate_root,
    scrubbed,
)
from multisigpsbt.utils import h_to_b

# BIP32 test vector 1
SEED = h_to_b("000102030405060708090a0b0c0d0e0f")
M_XPRV = "xprv9s21ZrQH143K3QTDL4LXw2F7HEK3wJUD2nW2nRk4stbPy6cq3jPPqjiChkVvvNKmPGJxWUtg6LnF5kejMRNNU3TGtRBeJgk33yuGBxrMPHi"
M_XPUB = "xpub661MyMwAqRbcFtXgS5sYJABqqG9YLmC4Q1Rdap9gSE8NqtwybGhePY2gZ29ESFjqJoCu1Rupje8YtGqsefD265TMg7usUDFdp6W1EGMcet8"
M_0H_XPRV = "xprv9uHRZZhk6KAJC1avXpDAp4MDc3sQKNxDiPvvkX8Br5ngLNv1TxvUxt4cV1rGL5hj6KCesnDYUhd7oWgT11eZG7XnxHrnYeSvkzY7d2bhkJ7"
M_0H_XPUB = "xpub68Gmy5EdvgibQVfPdqkBBCHxA5htiqg55crXYuXoQRKfDBFA1WEjWgP6LHhwBZeNK1VTsfTFUHCdrfp1bgwQ9xv5ski8PX9rL2dZXvgGDnw"
M_0H_1_XPRV = "xprv9wTYmMFdV23N2TdNG573QoEsfRrWKQgWeibmLntzniatZvR9BmLnvSxqu53Kw1UmYPxLgboyZQaXwTCg8MSY3H2EU4pWcQDnRnrVA1xe8fs"
M_0H_1_XPUB = "xpub6ASuArnXKPbfEwhqN6e3mwBcDTgzisQN1wXN9BJcM47sSikHjJf3UFHKkNAWbWMiGj7Wf5uMash7SyYq527Hqck2AxYysAA7xmALppuCkwQ"
M_0H_1_2H_XPRV = "xprv9z4pot5VBttmtdRTWfWQmoH1taj2axGVzFqSb8C9xaxKymcFzXBDptWmT7FwuEzG3ryjH4ktypQSAewRiNMjANTtpgP4mLTj34bhnZX7UiM"


class TestKeyHierarchy(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.root = generate_root(SEED)

    def test_root_from_seed(self):
        self.assertTrue(self.root.is_private)
        self.assertEqual(self.root.depth, 0)
        self.assertEqual(self.root.to_string("mainnet"), M_XPRV)
        self.assertEqual(self.root.neuter().to_string("mainnet"), M_XPUB)

    def test_hardened_child(self):
        child = derive(self.root, 0, hardened=True)
        self.assertTrue(child.hardened)
        self.assertEqual(child.depth, 1)
        self.assertEqual(child.to_string("mainnet"), M_0H_XPRV)
        self.assertEqual(child.neuter().to_string("mainnet"), M_0H_XPUB)
        # the offset index and the hardened flag are equivalent
        self.assertEqual(derive(self.root, 0x80000000), child)

    def test_derive_path(self):
        node = derive_path(self.root, "m/0'/1")
        self.assertEqual(node.to_string("mainnet"), M_0H_1_XPRV)
        self.assertEqual(node.neuter().to_string("mainnet"), M_0H_1_XPUB)
        node = derive_path(self.root, "m/0h/1/2H")
        self.assertEqual(node.to_string("mainnet"), M_0H_1_2H_XPRV)

    def test_public_derivation_matches_private(self):
        parent = derive_path(self.root, "m/0'")
        from_public = derive(parent.neuter(), 1)
        self.assertFalse(from_public.is_private)
        self.assertIsNone(from_public.private_key)
        self.assertEqual(from_public.to_string("mainnet"), M_0H_1_XPUB)
        self.assertEqual(from_public, derive(parent, 1).neuter())

    def test_derive_path_is_associative(self):
        first = derive_path(self.root, "m/48'/1'")
        stepwise = derive_path(first, "m/0'/2'/0/5")
        self.assertEqual(stepwise, derive_path(self.root, "m/48'/1'/0'/2'/0/5"))

        account = derive_path(self.root, "m/48'/1'/0'/2'")
        public = derive_path(account.neuter(), "m/0/5")
        self.assertEqual(public, derive_path(self.root, "m/48'/1'/0'/2'/0/5").neuter())

    def test_empty_path_returns_parent(self):
        self.assertIs(derive_path(self.root, "m"), self.root)

    def test_hardened_from_public_fails(self):
        with self.assertRaises(InvalidDerivation):
            derive(self.root.neuter(), 0, hardened=True)
        with self.assertRaises(InvalidDerivation):
            derive_path(self.root.neuter(), "m/1/2'")

    def test_invalid_index(self):
        with self.assertRaises(InvalidDerivation):
            derive(self.root, 2**32)
        with self.assertRaises(InvalidDerivation):
            derive(self.root, -1)

    def test_library_failures_are_typed(self):
        with mock.patch.object(
            hdwallet_module, "CustomDerivation", side_effect=ValueError("bad path")
        ):
            with self.assertRaises(InvalidDerivation):
                derive(self.root, 1)
        with mock.patch.object(
            hdwallet_module.ext_HDWallet, "from_seed", side_effect=ValueError("bad seed")
        ):
            with self.assertRaises(InvalidDerivation):
                generate_root(SEED)

    def test_depth_limit(self):
        deep = ExtendedKey(
            KeyKind.PRIVATE, self.root.chain_code, private_key=self.root.private_key, depth=255
        )
        with self.assertRaises(InvalidDerivation):
            derive(deep, 0)

    def test_fingerprint(self):
        self.assertEqual(self.root.fingerprint.hex(), "3442193e")
        self.assertEqual(fingerprint(self.root.public_key), self.root.fingerprint)
        child = derive_path(self.root, "m/0'/1")
        self.assertEqual(len(child.fingerprint), 4)
        self.assertEqual(derive(self.root, 0, True).parent_fingerprint, self.root.fingerprint)
        # fingerprint depends only on the public key
        self.assertEqual(child.fingerprint, child.neuter().fingerprint)


class TestGenerateRoot(unittest.TestCase):
    def setUp(self):
        setup("testnet")

    def test_random_root(self):
        root = generate_root()
        self.assertEqual(root.kind, KeyKind.PRIVATE)
        self.assertEqual(root.depth, 0)
        self.assertNotEqual(root, generate_root())

    def test_empty_entropy(self):
        with self.assertRaises(InsufficientEntropy):
            generate_root(b"")

    def test_short_entropy(self):
        with self.assertRaises(InsufficientEntropy):
            generate_root(b"\x01" * 15)

    def test_long_entropy(self):
        with self.assertRaises(ValueError):
            generate_root(b"\x01" * 65)

    def test_deterministic(self):
        self.assertEqual(generate_root(b"\x07" * 32), generate_root(b"\x07" * 32))


class TestExtendedKeySerialization(unittest.TestCase):
    def setUp(self):
        setup("testnet")

    def test_parse_roundtrip(self):
        key = ExtendedKey.from_string(M_0H_1_XPRV)
        self.assertTrue(key.is_private)
        self.assertTrue(key.mainnet)
        self.assertEqual(key.depth, 2)
        self.assertEqual(key.to_string(), M_0H_1_XPRV)
        xpub = ExtendedKey.from_string(M_0H_1_XPUB)
        self.assertFalse(xpub.is_private)
        self.assertEqual(xpub, key.neuter())

    def test_network_versions(self):
        root = generate_root(SEED)
        self.assertTrue(root.to_string().startswith("tprv"))
        self.assertTrue(root.neuter().to_string().startswith("tpub"))
        setup("mainnet")
        self.assertEqual(root.to_string(), M_XPRV)
        setup("testnet")
        parsed = ExtendedKey.from_string(root.neuter().to_string())
        self.assertFalse(parsed.mainnet)
        self.assertEqual(parsed.public_key, root.public_key)

    def test_bad_checksum(self):
        corrupted = M_XPUB[:-1] + ("9" if M_XPUB[-1] != "9" else "8")
        with self.assertRaises(InvalidKeyEncoding):
            ExtendedKey.from_string(corrupted)

    def test_bad_base58(self):
        with self.assertRaises(InvalidKeyEncoding):
            ExtendedKey.from_string("xpub0OIl")

    def test_bad_length(self):
        with self.assertRaises(InvalidKeyEncoding):
            ExtendedKey.from_bytes(b"\x04\x88\xb2\x1e" + b"\x00" * 10)

    def test_root_with_parent_rejected(self):
        payload = bytearray(ExtendedKey.from_string(M_XPUB).to_bytes("mainnet"))
        payload[5] = 1  # parent fingerprint of a depth 0 key
        with self.assertRaises(InvalidKeyEncoding):
            ExtendedKey.from_bytes(bytes(payload))

    def test_invalid_point_rejected(self):
        payload = bytearray(ExtendedKey.from_string(M_XPUB).to_bytes("mainnet"))
        payload[45] = 0x05
        with self.assertRaises(InvalidKeyEncoding):
            ExtendedKey.from_bytes(bytes(payload))

    def test_library_failure_is_typed(self):
        with mock.patch.object(
            hdwallet_module.ext_HDWallet, "from_xpublic_key", side_effect=ValueError("bad key")
        ):
            with self.assertRaises(InvalidKeyEncoding):
                ExtendedKey.from_string(M_XPUB)

    def test_repr_hides_secret(self):
        root = generate_root(SEED)
        secret_hex = root.private_key.to_bytes().hex()
        self.assertNotIn(secret_hex, repr(root))


class TestDerivationPath(unittest.TestCase):
    def test_parse_markers(self):
        self.assertEqual(
            DerivationPath.parse("m/48h/1H/0'/2'"), DerivationPath.parse("m/48'/1'/0'/2'")
        )
        self.assertEqual(DerivationPath.parse("48'/1'").steps, (0x80000030, 0x80000001))
        self.assertEqual(len(DerivationPath.parse("m")), 0)

    def test_to_string(self):
        path = DerivationPath([0x80000030, 0x80000001, 0x80000000, 0x80000002, 0, 7])
        self.assertEqual(path.to_string(), "m/48'/1'/0'/2'/0/7")
        self.assertEqual(path.to_string(prefix="", marker="h"), "48h/1h/0h/2h/0/7")

    def test_relative_to(self):
        account = DerivationPath.parse("m/48'/1'/0'/2'")
        full = account + [0, 3]
        self.assertTrue(account.is_prefix_of(full))
        self.assertEqual(full.relative_to(account), DerivationPath([0, 3]))
        with self.assertRaises(InvalidDerivation):
            account.relative_to(DerivationPath.parse("m/44'"))

    def test_invalid_paths(self):
        for bad in ("m/x", "m/1/", "m/2147483648", "m/-1"):
            with self.assertRaises(InvalidDerivation):
                DerivationPath.parse(bad)


class TestKeyOrigin(unittest.TestCase):
    def test_bytes_roundtrip(self):
        origin = KeyOrigin(h_to_b("3442193e"), "m/48'/1'/0'/2'/0/1")
        data = origin.to_bytes()
        self.assertEqual(len(data), 4 + 6 * 4)
        self.assertEqual(data[4:8], h_to_b("30000080"))
        self.assertEqual(KeyOrigin.from_bytes(data), origin)

    def test_string_form(self):
        origin = KeyOrigin.from_string("3442193e/48'/1'/0'/2'")
        self.assertEqual(origin.to_string(), "3442193e/48'/1'/0'/2'")
        self.assertEqual(origin.child(0, 4).path.to_string(), "m/48'/1'/0'/2'/0/4")

    def test_invalid(self):
        with self.assertRaises(ValueError):
            KeyOrigin.from_bytes(b"\x00\x01")
        with self.assertRaises(ValueError):
            KeyOrigin(b"\x00", "m/0")


class TestHDWallet(unittest.TestCase):
    def setUp(self):
        setup("testnet")

    def test_from_xprivate_key(self):
        wallet = HDWallet.from_xprivate_key(M_XPRV, "m/0'/1")
        self.assertEqual(wallet.get_extended_key().to_string("mainnet"), M_0H_1_XPRV)
        self.assertEqual(wallet.get_master_fingerprint().hex(), "3442193e")
        wallet.from_path("m/0'")
        self.assertEqual(wallet.get_public_key(), ExtendedKey.from_string(M_0H_XPUB).public_key)

    def test_rejects_xpub(self):
        with self.assertRaises(InvalidKeyEncoding):
            HDWallet.from_xprivate_key(M_XPUB)


class TestScrubbed(unittest.TestCase):
    def test_zeroed_after_use(self):
        with scrubbed(b"\x01\x02\x03") as buffer:
            self.assertEqual(bytes(buffer), b"\x01\x02\x03")
        self.assertEqual(buffer, bytearray(3))

    def test_zeroed_on_error(self):
        with self.assertRaises(RuntimeError):
            with scrubbed(b"\xff" * 4) as buffer:
                raise RuntimeError("boom")
        self.assertEqual(buffer, bytearray(4))


if __name__ == "__main__":
    unittest.main()
