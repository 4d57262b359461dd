"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Serial Device Locator Module
"""

import os
import glob
import logging
from typing import Optional, List

import serial.tools.list_ports

from stcflash.constants import *

logger = logging.getLogger("Locator")


class DeviceLocator:
    """
    Finds the serial device a USB-to-serial adapter exposes.
    Device paths are matched against ordered classes of glob patterns: the
    lexicographically first match of the first non-empty class wins, so the
    result is stable while the set of plugged adapters does not change.
    Queries have no side effects and never raise, an unreadable /dev is
    reported the same way as an empty one.
    """

    def __init__(self, pattern_classes=DEVICE_PATTERN_CLASSES):
        self.pattern_classes = tuple(tuple(patterns) for patterns in pattern_classes)

    @staticmethod
    def _matches(patterns) -> List[str]:
        found = set()
        for pattern in patterns:
            try:
                found.update(glob.glob(pattern))
            except OSError as e:
                logger.debug(f"Scanning {pattern} failed: {e}")
        return sorted(found)

    def locate(self) -> Optional[str]:
        """Returns the preferred device path, or None if no adapter is present."""
        for patterns in self.pattern_classes:
            matches = self._matches(patterns)
            if matches:
                return matches[0]
        return None

    def scan(self) -> List[str]:
        """All detected device paths, in preference order."""
        devices = []
        for patterns in self.pattern_classes:
            devices += [d for d in self._matches(patterns) if d not in devices]
        return devices

    def patterns(self) -> List[str]:
        return [pattern for patterns in self.pattern_classes for pattern in patterns]

    @staticmethod
    def exists(path) -> bool:
        try:
            return os.path.exists(path)
        except (OSError, ValueError):
            return False

    @staticmethod
    def accessible(path) -> bool:
        """True if the current user may open path for reading and writing."""
        try:
            return os.access(path, os.R_OK | os.W_OK)
        except (OSError, ValueError):
            return False

    @staticmethod
    def describe(path) -> str:
        """
        Looks the device up in pyserial's port list and returns its
        description, e.g. "USB Serial (CH340)". Empty if unknown.
        """
        try:
            real_path = os.path.realpath(path)
            for port in serial.tools.list_ports.comports():
                if port.device in (path, real_path):
                    parts = [port.description, port.manufacturer]
                    return " - ".join(
                        p for p in parts if p and p.lower() != "n/a"
                    )
        except Exception as e:
            logger.debug(f"Could not describe {path}: {e}")
        return ""
