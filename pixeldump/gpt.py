"""GUID partition table reading and in-place attribute updates."""

from __future__ import annotations

import fcntl
import logging
import os
import struct
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO

GPT_SIGNATURE = 0x5452415020494645
BLKSSZGET = 0x1268

_ENTRY = struct.Struct("<16s16sQQQ72s")
_HEADER = struct.Struct("<QIIIIQQQQ16sQIII")
_NAME_UNITS = 36
_NAME = struct.Struct(f"<{_NAME_UNITS}H")

GPT_ENTRY_SIZE = _ENTRY.size
GPT_HEADER_SIZE = _HEADER.size

log = logging.getLogger("bootcontrolhal")


class GptError(Exception):
    """The partition table could not be read, validated or written."""


def _decode_name(raw: bytes) -> str:
    chars = []
    for unit in _NAME.unpack(raw):
        if unit == 0:
            break
        chars.append(chr(unit & 0xFF))
    return "".join(chars).split("\0", 1)[0]


def _encode_name(name: str) -> bytes:
    if len(name) > _NAME_UNITS:
        raise GptError(f"partition name longer than {_NAME_UNITS} characters: {name!r}")
    units = [ord(ch) for ch in name]
    if any(unit == 0 or unit > 0xFFFF for unit in units):
        raise GptError(f"partition name cannot be encoded: {name!r}")
    return _NAME.pack(*units, *([0] * (_NAME_UNITS - len(units))))


@dataclass
class GptEntry:
    """One 128-byte partition entry."""

    name: str = ""
    type_guid: bytes = bytes(16)
    guid: bytes = bytes(16)
    first_lba: int = 0
    last_lba: int = 0
    attr: int = 0
    _raw_name: bytes | None = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def from_bytes(cls, data: bytes) -> GptEntry:
        if len(data) < GPT_ENTRY_SIZE:
            raise GptError(f"partition entry needs {GPT_ENTRY_SIZE} bytes, got {len(data)}")
        type_guid, guid, first_lba, last_lba, attr, raw = _ENTRY.unpack(
            data[:GPT_ENTRY_SIZE]
        )
        entry = cls(_decode_name(raw), type_guid, guid, first_lba, last_lba, attr)
        entry._raw_name = raw
        return entry

    def to_bytes(self) -> bytes:
        if self._raw_name is not None and _decode_name(self._raw_name) == self.name:
            raw = self._raw_name
        else:
            raw = _encode_name(self.name)
        return _ENTRY.pack(
            self.type_guid, self.guid, self.first_lba, self.last_lba, self.attr, raw
        )

    @property
    def has_name(self) -> bool:
        """Whether the first name unit is non-zero."""
        raw = self._raw_name if self._raw_name is not None else _encode_name(self.name)
        return _NAME.unpack(raw)[0] != 0


@dataclass
class GptHeader:
    """The 92-byte GPT header."""

    signature: int = GPT_SIGNATURE
    revision: int = 0x00010000
    header_size: int = GPT_HEADER_SIZE
    crc32: int = 0
    reserved: int = 0
    current_lba: int = 1
    backup_lba: int = 0
    first_usable_lba: int = 0
    last_usable_lba: int = 0
    disk_guid: bytes = bytes(16)
    start_lba: int = 2
    entry_count: int = 0
    entry_size: int = GPT_ENTRY_SIZE
    entries_crc32: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> GptHeader:
        if len(data) < GPT_HEADER_SIZE:
            raise GptError(f"gpt header needs {GPT_HEADER_SIZE} bytes, got {len(data)}")
        return cls(*_HEADER.unpack(data[:GPT_HEADER_SIZE]))

    def to_bytes(self) -> bytes:
        return _HEADER.pack(
            self.signature,
            self.revision,
            self.header_size,
            self.crc32,
            self.reserved,
            self.current_lba,
            self.backup_lba,
            self.first_usable_lba,
            self.last_usable_lba,
            self.disk_guid,
            self.start_lba,
            self.entry_count,
            self.entry_size,
            self.entries_crc32,
        )

    def compute_crc(self) -> int:
        """CRC-32 of the header with its own crc32 field zeroed."""
        saved = self.crc32
        self.crc32 = 0
        try:
            return zlib.crc32(self.to_bytes())
        finally:
            self.crc32 = saved


def validate_header(header: GptHeader) -> None:
    """Raise GptError unless signature, header size and entry size are right."""
    if header.signature != GPT_SIGNATURE:
        raise GptError(f"invalid gpt signature 0x{header.signature:x}")
    if header.header_size != GPT_HEADER_SIZE:
        raise GptError(f"invalid gpt header size {header.header_size}")
    if header.entry_size != GPT_ENTRY_SIZE:
        raise GptError(f"invalid gpt entry size {header.entry_size}")


class GptTable:
    """A block device's partition table, opened for reading and writing.

    Entries returned by ``get_partition_entry`` may be modified in place;
    ``sync`` (or ``close``) writes changes back to both table copies.
    """

    def __init__(self, dev_path: str, block_size: int | None = None) -> None:
        self.dev_path = dev_path
        self.block_size = block_size
        self.primary: GptHeader | None = None
        self.backup: GptHeader | None = None
        self.entries: list[GptEntry] = []
        self._by_name: dict[str, GptEntry] = {}
        self._file: BinaryIO | None = None

    def _read(self, lba: int, size: int) -> bytes:
        assert self._file is not None and self.block_size is not None
        self._file.seek(self.block_size * lba)
        data = self._file.read(size)
        return data.ljust(size, b"\0")

    def _write(self, lba: int, data: bytes) -> None:
        assert self._file is not None and self.block_size is not None
        self._file.seek(self.block_size * lba)
        self._file.write(data)

    def _discard(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def load(self) -> None:
        """Open the device and read headers and partition entries."""
        self._discard()
        try:
            self._file = open(self.dev_path, "r+b")
        except OSError as err:
            raise GptError(f"failed to open block dev {self.dev_path}: {err}") from err

        try:
            if self.block_size is None:
                try:
                    result = fcntl.ioctl(
                        self._file.fileno(), BLKSSZGET, struct.pack("I", 0)
                    )
                except OSError as err:
                    raise GptError(f"failed to get block size: {err}") from err
                (self.block_size,) = struct.unpack("I", result)

            raw_primary = self._read(1, GPT_HEADER_SIZE)
            primary = GptHeader.from_bytes(raw_primary)
            validate_header(primary)

            blob = self._read(primary.start_lba, primary.entry_size * primary.entry_count)
            entries = [
                GptEntry.from_bytes(blob[offset : offset + GPT_ENTRY_SIZE])
                for offset in range(0, len(blob), GPT_ENTRY_SIZE)
            ]

            backup = GptHeader.from_bytes(self._read(primary.backup_lba, GPT_HEADER_SIZE))
            try:
                validate_header(backup)
            except GptError as err:
                log.warning("error validating gpt backup: %s", err)
        except (GptError, OSError) as err:
            self._discard()
            if isinstance(err, GptError):
                raise
            raise GptError(f"failed to read gpt data: {err}") from err

        self.primary, self.backup, self.entries = primary, backup, entries
        self._by_name = {}
        for entry in entries:
            if not entry.has_name:
                break  # stop at the first partition with no name
            self._by_name[entry.name] = entry

    def get_partition_entry(self, name: str) -> GptEntry | None:
        """The entry called ``name``, or None."""
        return self._by_name.get(name)

    def sync(self) -> bool:
        """Write the table back if it changed; return whether it was written."""
        if self._file is None or self.primary is None or self.backup is None:
            raise GptError("partition table is not loaded")

        primary = self.primary
        blob = b"".join(entry.to_bytes() for entry in self.entries)
        primary.entries_crc32 = zlib.crc32(blob)
        old_crc = primary.crc32
        primary.crc32 = primary.compute_crc()
        if old_crc == primary.crc32:
            return False

        log.info("updating GPT")
        try:
            self._write(primary.current_lba, primary.to_bytes())
            self._write(primary.start_lba, blob)
            self._write(self.backup.start_lba, blob)
            self.backup.entries_crc32 = primary.entries_crc32
            self.backup.crc32 = self.backup.compute_crc()
            self._write(primary.backup_lba, self.backup.to_bytes())
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError as err:
            raise GptError(f"failed to write gpt data: {err}") from err
        return True

    def close(self) -> None:
        """Write pending changes and release the device."""
        if self._file is None:
            return
        try:
            self.sync()
        finally:
            self._discard()

    def __enter__(self) -> GptTable:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()