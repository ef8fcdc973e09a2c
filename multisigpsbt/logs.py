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

"""Logging facilities.

The package logs below the ``multisigpsbt`` logger and never configures the
root logger; applications opt in with ``logs.add_handler``.
"""

import logging
from typing import Union


class Logs(object):
    """Manages the package's loggers."""

    def __init__(self, name: str = "multisigpsbt") -> None:
        self.root = logging.getLogger(name)
        self.root.addHandler(logging.NullHandler())

    def add_handler(self, handler: logging.Handler) -> None:
        formatter = logging.Formatter("%(asctime)s:" + logging.BASIC_FORMAT)
        handler.setFormatter(formatter)
        self.root.addHandler(handler)

    def remove_handler(self, handler: logging.Handler) -> None:
        self.root.removeHandler(handler)

    def get_logger(self, name: str) -> logging.Logger:
        if name == self.root.name or name.startswith(self.root.name + "."):
            return logging.getLogger(name)
        return self.root.getChild(name)

    def set_level(self, level: Union[str, int]) -> None:
        """Level can be a string, such as "info", or a constant from logging module."""
        if isinstance(level, str):
            level = level.upper()
        self.root.setLevel(level)

    def level(self) -> int:
        return self.root.level

    def is_debug_level(self) -> bool:
        return self.level() == logging.DEBUG


logs = Logs()
