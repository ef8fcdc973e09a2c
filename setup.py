import re

from setuptools import setup

with open("README.rst") as readme:
    long_description = readme.read()

# read the version without importing the package (its dependencies may not
# be installed yet)
with open("multisigpsbt/__init__.py") as init:
    __version__ = re.search(r'^__version__ = "([^"]+)"', init.read(), re.M).group(1)

setup(
    name="multisig-psbt",
    version=__version__,
    description="Sorted multisig P2WSH key derivation, PSBT signing, combining and finalization",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    author="Konstantinos Karasavvas",
    author_email="kkarasavvas@gmail.com",
    url="https://github.com/karask/python-bitcoin-utils",
    license="MIT",
    keywords="bitcoin multisig psbt bip32 bip174 p2wsh",
    python_requires=">=3.9",
    install_requires=[
        "base58check>=1.0.2,<2.0",
        "ecdsa>=0.18,<1.0",
        "sympy>=1.2,<2.0",
        "bech32>=1.2,<2.0",
        "hdwallet~=3.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    packages=["multisigpsbt"],
    zip_safe=False,
)
