"""The bootloader's 128-byte devinfo record and its A/B slot data."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

DEVINFO_MAGIC = 0x49564544
DEVINFO_AB_SLOT_COUNT = 2
DEVINFO_SIZE = 128
SLOT_DATA_SIZE = 4
MAX_RETRY_COUNT = 3

_SLOT = struct.Struct("<BB2s")
_DEVINFO = struct.Struct(f"<IHH40s{SLOT_DATA_SIZE * DEVINFO_AB_SLOT_COUNT}s72s")

_UNBOOTABLE = 0x01
_SUCCESSFUL = 0x02
_ACTIVE = 0x04
_FASTBOOT_OK = 0x08
_RESERVED_SHIFT = 4


@dataclass
class SlotData:
    """Per-slot boot state: retry count plus four flag bits."""

    retry_count: int = 0
    unbootable: bool = False
    successful: bool = False
    active: bool = False
    fastboot_ok: bool = False
    reserved: int = 0
    unused: bytes = bytes(2)

    @classmethod
    def from_bytes(cls, data: bytes) -> SlotData:
        if len(data) != SLOT_DATA_SIZE:
            raise ValueError(f"slot data needs {SLOT_DATA_SIZE} bytes, got {len(data)}")
        retry_count, flags, unused = _SLOT.unpack(data)
        return cls(
            retry_count=retry_count,
            unbootable=bool(flags & _UNBOOTABLE),
            successful=bool(flags & _SUCCESSFUL),
            active=bool(flags & _ACTIVE),
            fastboot_ok=bool(flags & _FASTBOOT_OK),
            reserved=flags >> _RESERVED_SHIFT,
            unused=unused,
        )

    def to_bytes(self) -> bytes:
        flags = (
            (_UNBOOTABLE if self.unbootable else 0)
            | (_SUCCESSFUL if self.successful else 0)
            | (_ACTIVE if self.active else 0)
            | (_FASTBOOT_OK if self.fastboot_ok else 0)
            | ((self.reserved & 0x0F) << _RESERVED_SHIFT)
        )
        return _SLOT.pack(self.retry_count, flags, self.unused)

    def reset_active(self) -> None:
        """Mark the slot active with full retries and no outcome yet."""
        self.retry_count = MAX_RETRY_COUNT
        self.unbootable = False
        self.successful = False
        self.active = True
        self.fastboot_ok = False


def _default_slots() -> list[SlotData]:
    return [SlotData() for _ in range(DEVINFO_AB_SLOT_COUNT)]


@dataclass
class DevInfo:
    """The devinfo partition record."""

    magic: int = DEVINFO_MAGIC
    ver_major: int = 0
    ver_minor: int = 0
    slots: list[SlotData] = field(default_factory=_default_slots)
    unused: bytes = bytes(40)
    unused1: bytes = bytes(72)

    @classmethod
    def from_bytes(cls, data: bytes) -> DevInfo:
        if len(data) != DEVINFO_SIZE:
            raise ValueError(f"devinfo needs {DEVINFO_SIZE} bytes, got {len(data)}")
        magic, major, minor, unused, slot_blob, unused1 = _DEVINFO.unpack(data)
        slots = [
            SlotData.from_bytes(slot_blob[offset : offset + SLOT_DATA_SIZE])
            for offset in range(0, len(slot_blob), SLOT_DATA_SIZE)
        ]
        return cls(magic, major, minor, slots, unused, unused1)

    def to_bytes(self) -> bytes:
        if len(self.slots) != DEVINFO_AB_SLOT_COUNT:
            raise ValueError(
                f"devinfo holds {DEVINFO_AB_SLOT_COUNT} slots, got {len(self.slots)}"
            )
        slot_blob = b"".join(slot.to_bytes() for slot in self.slots)
        return _DEVINFO.pack(
            self.magic, self.ver_major, self.ver_minor, self.unused, slot_blob, self.unused1
        )

    def supports_ab(self) -> bool:
        """True for a valid record of version 3.3 or later, which carries A/B data."""
        if self.magic != DEVINFO_MAGIC:
            return False
        version = (self.ver_major << 16) | self.ver_minor
        return version >= 0x0003_0003