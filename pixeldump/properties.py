"""Access to Android system properties, with a real and a fake backend."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

TRUTH_STRING = "true"
FALSE_STRING = "false"

MODEM_LOGGING_ENABLED_PROPERTY = "vendor.sys.modem.logging.enable"
MODEM_LOGGING_STATUS_PROPERTY = "vendor.sys.modem.logging.status"

_TRUE_WORDS = frozenset({"1", "y", "yes", "on", "true"})
_FALSE_WORDS = frozenset({"0", "n", "no", "off", "false"})

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


def parse_bool(value: str, default: bool) -> bool:
    """Interpret a property value as a boolean, falling back to ``default``."""
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    return default


def parse_int(value: str, default: int) -> int:
    """Parse a 32-bit integer in decimal, octal (0...) or hex (0x...).

    The whole string must be a number; anything else yields ``default``.
    """
    text = value.lstrip(" \t\n\r\f\v")
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text[:2].lower() == "0x":
        base, digits, allowed = 16, text[2:], "0123456789abcdefABCDEF"
    elif text.startswith("0") and len(text) > 1:
        base, digits, allowed = 8, text[1:], "01234567"
    else:
        base, digits, allowed = 10, text, "0123456789"

    if not digits or any(ch not in allowed for ch in digits):
        return default
    number = sign * int(digits, base)
    if not _INT_MIN <= number <= _INT_MAX:
        return default
    return number


class PropertyManager(ABC):
    """Reads and writes system properties."""

    @abstractmethod
    def get_bool(self, key: str, default: bool) -> bool:
        """Return the property as a boolean, or ``default``."""

    @abstractmethod
    def get(self, key: str, default: str) -> str:
        """Return the property value, or ``default``."""

    @abstractmethod
    def get_int(self, key: str, default: int) -> int:
        """Return the property as an integer, or ``default``."""

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        """Set the property; return True on success."""


class SystemPropertyManager(PropertyManager):
    """Property manager backed by the device's ``getprop``/``setprop`` tools."""

    def __init__(
        self,
        getprop: Sequence[str] = ("getprop",),
        setprop: Sequence[str] = ("setprop",),
    ) -> None:
        self._getprop = tuple(getprop)
        self._setprop = tuple(setprop)

    def _read(self, key: str) -> str:
        try:
            result = subprocess.run(
                [*self._getprop, key], capture_output=True, text=True, check=False
            )
        except OSError:
            return ""
        if result.returncode != 0:
            return ""
        return result.stdout.rstrip("\n")

    def get_bool(self, key: str, default: bool) -> bool:
        return parse_bool(self._read(key), default)

    def get(self, key: str, default: str) -> str:
        return self._read(key) or default

    def get_int(self, key: str, default: int) -> int:
        return parse_int(self._read(key), default)

    def set(self, key: str, value: str) -> bool:
        try:
            result = subprocess.run(
                [*self._setprop, key, value], capture_output=True, check=False
            )
        except OSError:
            return False
        return result.returncode == 0


class FakePropertyManager(PropertyManager):
    """In-memory property store that mimics the modem logging controller.

    Setting the modem logging enable property also sets the status
    property, and the manager records whether logging was switched off
    and then back on.
    """

    def __init__(self, properties: Mapping[str, str] | None = None) -> None:
        self._properties: dict[str, str] = dict(properties or {})
        self._logging_has_been_off = False
        self._logging_has_restarted = False

    def get_bool(self, key: str, default: bool) -> bool:
        if key not in self._properties:
            return default
        return self._properties[key] == TRUTH_STRING

    def get(self, key: str, default: str) -> str:
        return self._properties.get(key, default)

    def get_int(self, key: str, default: int) -> int:
        if key not in self._properties:
            return default
        return parse_int(self._properties[key], default)

    def set(self, key: str, value: str) -> bool:
        if key == MODEM_LOGGING_ENABLED_PROPERTY:
            self._properties[MODEM_LOGGING_STATUS_PROPERTY] = value
            if value == FALSE_STRING:
                self._logging_has_been_off = True
            if self._logging_has_been_off and value == TRUTH_STRING:
                self._logging_has_restarted = True
        self._properties[key] = value
        return True

    def modem_logging_has_restarted(self) -> bool:
        """Whether modem logging was turned off and later back on."""
        return self._logging_has_restarted