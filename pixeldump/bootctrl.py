"""A/B boot slot control backed by the devinfo partition or the GPT."""

from __future__ import annotations

import logging
import os
import struct
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple

from pixeldump.devinfo import DEVINFO_SIZE, DevInfo
from pixeldump.gpt import GptEntry, GptError, GptTable
from pixeldump.properties import PropertyManager, SystemPropertyManager

log = logging.getLogger("bootcontrolhal")

AB_ATTR_PRIORITY_SHIFT = 52
AB_ATTR_PRIORITY_MASK = 3 << AB_ATTR_PRIORITY_SHIFT
AB_ATTR_ACTIVE_SHIFT = 54
AB_ATTR_ACTIVE = 1 << AB_ATTR_ACTIVE_SHIFT
AB_ATTR_RETRY_COUNT_SHIFT = 55
AB_ATTR_RETRY_COUNT_MASK = 7 << AB_ATTR_RETRY_COUNT_SHIFT
AB_ATTR_SUCCESSFUL = 1 << 58
AB_ATTR_UNBOOTABLE = 1 << 59

AB_ATTR_MAX_PRIORITY = 3
AB_ATTR_MAX_RETRY_COUNT = 3

OTP_REQ_SHIFT = 1
OTP_RESP_BIT = 1

_OTP_REQUEST = struct.Struct("<IIB")
_OTP_RESPONSE = struct.Struct("<IIi")

_O_DSYNC = getattr(os, "O_DSYNC", 0)

OtpWriter = Callable[[bytes], bytes]


class ErrorCode(IntEnum):
    """Service-specific error codes of the boot control interface."""

    INVALID_SLOT = -1
    COMMAND_FAILED = -2


class BootControlError(Exception):
    """A boot control operation failed."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class OtpCommand(IntEnum):
    """Commands understood by the OTP manager trusted application."""

    WRITE_ANTIRBK_NON_SECURE_AP = 7 << OTP_REQ_SHIFT
    WRITE_ANTIRBK_SECURE_AP = 8 << OTP_REQ_SHIFT


class OtpResponse(NamedTuple):
    command: int
    resp_payload_size: int
    result: int


def encode_otp_request(command: int) -> bytes:
    """Packed request: command, zero payload size and zero handle."""
    return _OTP_REQUEST.pack(int(command), 0, 0)


def decode_otp_response(data: bytes) -> OtpResponse:
    """Unpack a response; raise ValueError when ``data`` is too short."""
    if len(data) < _OTP_RESPONSE.size:
        raise ValueError(
            f"otp response needs {_OTP_RESPONSE.size} bytes, got {len(data)}"
        )
    return OtpResponse(*_OTP_RESPONSE.unpack(data[: _OTP_RESPONSE.size]))


@dataclass
class BootPaths:
    """Where the boot devices, devinfo and control attributes live."""

    boot_a: str = "/dev/block/by-name/boot_a"
    boot_b: str = "/dev/block/by-name/boot_b"
    devinfo: str = "/dev/block/by-name/devinfo"
    blow_ar: str = "/sys/kernel/boot_control/blow_ar"
    platform_dir: str = "/sys/devices/platform"
    gpt_block_size: int | None = None
    disk_prefix_length: int = len("/dev/block/sdX")

    def boot_path(self, slot: int) -> str:
        return self.boot_a if slot == 0 else self.boot_b


def _write_all(path: str, data: bytes, flags: int) -> bool:
    try:
        fd = os.open(path, flags)
    except OSError:
        return False
    try:
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]
    except OSError:
        return False
    finally:
        os.close(fd)
    return True


def _partition_name(slot: int) -> str:
    return "boot_b" if slot else "boot_a"


class BootControl:
    """Reads and changes the state of the two boot slots."""

    def __init__(
        self,
        properties: PropertyManager | None = None,
        paths: BootPaths | None = None,
        otp_writer: OtpWriter | None = None,
    ) -> None:
        self._properties = properties or SystemPropertyManager()
        self._paths = paths or BootPaths()
        self._otp_writer = otp_writer
        self._lock = threading.Lock()
        self._devinfo_checked = False
        self._devinfo: DevInfo | None = None

    # --- devinfo -----------------------------------------------------------

    def _devinfo_valid(self) -> bool:
        with self._lock:
            if self._devinfo_checked:
                return self._devinfo is not None
            self._devinfo_checked = True
            try:
                with open(self._paths.devinfo, "rb") as handle:
                    data = handle.read(DEVINFO_SIZE)
            except OSError:
                return False
            try:
                info = DevInfo.from_bytes(data)
            except ValueError:
                return False
            if info.supports_ab():
                self._devinfo = info
            return self._devinfo is not None

    def _sync_devinfo(self) -> bool:
        if not self._devinfo_valid() or self._devinfo is None:
            return False
        return _write_all(
            self._paths.devinfo, self._devinfo.to_bytes(), os.O_WRONLY | _O_DSYNC
        )

    # --- GPT ---------------------------------------------------------------

    def _dev_path(self, slot: int) -> str | None:
        try:
            real_path = os.readlink(self._paths.boot_path(slot))
        except OSError as err:
            log.error("readlink failed for boot device %s", err)
            return None
        return real_path[: self._paths.disk_prefix_length]

    def _load_gpt(self, dev_path: str) -> GptTable | None:
        table = GptTable(dev_path, self._paths.gpt_block_size)
        try:
            table.load()
        except GptError as err:
            log.info("failed to load gpt data: %s", err)
            return None
        return table

    @staticmethod
    def _finish(table: GptTable) -> None:
        try:
            table.close()
        except GptError as err:
            log.error("%s", err)

    def _slot_entry_update(self, slot: int, update: Callable[[GptEntry], bool]) -> bool:
        dev_path = self._dev_path(slot)
        if not dev_path:
            log.info("Could not get device path for slot %d", slot)
            return False
        table = self._load_gpt(dev_path)
        if table is None:
            return False
        try:
            entry = table.get_partition_entry(_partition_name(slot))
            if entry is None:
                log.info("failed to get gpt entry")
                return False
            return update(entry)
        finally:
            self._finish(table)

    def _is_slot_flag_set(self, slot: int, flag: int) -> bool:
        return self._slot_entry_update(slot, lambda entry: bool(entry.attr & flag))

    def _set_slot_flag(self, slot: int, flag: int) -> bool:
        def apply(entry: GptEntry) -> bool:
            entry.attr |= flag
            return True

        return self._slot_entry_update(slot, apply)

    # --- anti-rollback -------------------------------------------------------

    def _blow_otp(self, secure: bool) -> bool:
        command = (
            OtpCommand.WRITE_ANTIRBK_SECURE_AP
            if secure
            else OtpCommand.WRITE_ANTIRBK_NON_SECURE_AP
        )
        if self._otp_writer is None:
            log.info("Failed to connect to OTP_MGR ns TA - is it missing?")
            return False
        try:
            raw = self._otp_writer(encode_otp_request(command))
        except OSError as err:
            log.info("OTP exchange failed: %s", err)
            return False
        try:
            response = decode_otp_response(raw)
        except ValueError:
            log.info("Not enough data! %x", len(raw))
            return False
        if response.command != (command | OTP_RESP_BIT):
            log.info("Wrong command! %x", response.command)
            return False
        if response.result != 0:
            log.error("AR writing error! %x", response.result)
            return False
        return True

    def _blow_ar(self) -> bool:
        platform = self._properties.get("ro.boot.hardware.platform", "")
        if platform == "gs101":
            return _write_all(self._paths.blow_ar, b"1", os.O_WRONLY | _O_DSYNC)
        if platform in ("gs201", "zuma"):
            if not self._blow_otp(True):
                log.info("Blow secure anti-rollback OTP failed")
                return False
            if not self._blow_otp(False):
                log.info("Blow non-secure anti-rollback OTP failed")
                return False
        return True

    # --- public interface --------------------------------------------------

    def _check_slot(self, slot: int, slots: int) -> None:
        if slot < 0 or slot >= slots:
            raise BootControlError(ErrorCode.INVALID_SLOT, f"Invalid slot {slot}")

    def get_number_slots(self) -> int:
        """Number of boot partitions present (0, 1 or 2)."""
        return sum(
            os.access(path, os.F_OK) for path in (self._paths.boot_a, self._paths.boot_b)
        )

    def get_current_slot(self) -> int:
        """Slot the device booted from, taken from the slot suffix property."""
        return 1 if self._properties.get("ro.boot.slot_suffix", "_a") == "_b" else 0

    def get_active_boot_slot(self) -> int:
        """Slot that will be booted next."""
        if self.get_number_slots() == 0:
            return 0
        if self._devinfo_valid() and self._devinfo is not None:
            return 1 if self._devinfo.slots[1].active else 0
        return 1 if self._is_slot_flag_set(1, AB_ATTR_ACTIVE) else 0

    def get_suffix(self, slot: int) -> str:
        return "_a" if slot == 0 else "_b" if slot == 1 else ""

    def is_slot_bootable(self, slot: int) -> bool:
        slots = self.get_number_slots()
        if slots == 0:
            return False
        self._check_slot(slot, slots)
        if self._devinfo_valid() and self._devinfo is not None:
            unbootable = self._devinfo.slots[slot].unbootable
        else:
            unbootable = self._is_slot_flag_set(slot, AB_ATTR_UNBOOTABLE)
        return not unbootable

    def is_slot_marked_successful(self, slot: int) -> bool:
        slots = self.get_number_slots()
        if slots == 0:
            # No slots: report success so nobody keeps trying to mark it.
            return True
        self._check_slot(slot, slots)
        if self._devinfo_valid() and self._devinfo is not None:
            return self._devinfo.slots[slot].successful
        return self._is_slot_flag_set(slot, AB_ATTR_SUCCESSFUL)

    def mark_boot_successful(self) -> None:
        """Mark the current slot successful and blow the anti-rollback fuses."""
        if self.get_number_slots() == 0:
            return
        current = self.get_current_slot()
        if self._devinfo_valid() and self._devinfo is not None:
            self._devinfo.slots[current].successful = True
            ok = self._sync_devinfo()
        else:
            ok = self._set_slot_flag(current, AB_ATTR_SUCCESSFUL)
        if not ok:
            raise BootControlError(
                ErrorCode.COMMAND_FAILED, "Failed to set successful flag"
            )
        if not self._blow_ar():
            # The bootloader retries on the next boot.
            log.error("Failed to blow anti-rollback counter")

    def _activate_in_gpt(self, slot: int) -> None:
        dev_path = self._dev_path(slot)
        if not dev_path:
            raise BootControlError(
                ErrorCode.COMMAND_FAILED, "Could not get device path for slot"
            )
        table = self._load_gpt(dev_path)
        if table is None:
            raise BootControlError(ErrorCode.COMMAND_FAILED, "failed to load gpt data")
        try:
            active = table.get_partition_entry(_partition_name(slot))
            inactive = table.get_partition_entry(_partition_name(1 - slot))
            if active is None or inactive is None:
                raise BootControlError(
                    ErrorCode.COMMAND_FAILED,
                    "failed to get entries for boot partitions",
                )
            log.debug("slot active attributes %x", active.attr)
            log.debug("slot inactive attributes %x", inactive.attr)
            inactive.attr &= ~AB_ATTR_ACTIVE
            active.attr = (
                AB_ATTR_ACTIVE
                | (AB_ATTR_MAX_PRIORITY << AB_ATTR_PRIORITY_SHIFT)
                | (AB_ATTR_MAX_RETRY_COUNT << AB_ATTR_RETRY_COUNT_SHIFT)
            )
        finally:
            self._finish(table)

    def _boot_device(self) -> str:
        boot_dev = self._properties.get("ro.boot.bootdevice", "")
        if not boot_dev:
            log.info("failed to get ro.boot.bootdevice. try ro.boot.boot_devices")
            boot_dev = self._properties.get("ro.boot.boot_devices", "")
            if not boot_dev:
                raise BootControlError(
                    ErrorCode.COMMAND_FAILED,
                    "invalid ro.boot.bootdevice and ro.boot.boot_devices prop",
                )
        return boot_dev

    def set_active_boot_slot(self, slot: int) -> None:
        """Make ``slot`` the one booted next and enable its boot LUN."""
        self._check_slot(slot, 2)

        if self._devinfo_valid() and self._devinfo is not None:
            self._devinfo.slots[1 - slot].active = False
            self._devinfo.slots[slot].reset_active()
            if not self._sync_devinfo():
                raise BootControlError(
                    ErrorCode.COMMAND_FAILED, "Could not update DevInfo data"
                )
        else:
            self._activate_in_gpt(slot)

        boot_dev = self._boot_device()
        base = os.path.join(self._paths.platform_dir, boot_dev)
        flags = os.O_RDWR | _O_DSYNC
        candidates = (
            os.path.join(base, "pixel", "boot_lun_enabled"),
            # Older kernels expose the attribute here.
            os.path.join(base, "attributes", "boot_lun_enabled"),
        )
        for path in candidates:
            try:
                fd = os.open(path, flags)
                break
            except OSError:
                continue
        else:
            raise BootControlError(
                ErrorCode.COMMAND_FAILED, "failed to open ufs attr boot_lun_enabled"
            )

        # bBootLunEn: 1 enables boot LU A, 2 enables boot LU B.
        try:
            os.write(fd, b"1" if slot == 0 else b"2")
        except OSError as err:
            raise BootControlError(
                ErrorCode.COMMAND_FAILED, "faied to write boot_lun_enabled attribute"
            ) from err
        finally:
            os.close(fd)

    def set_slot_as_unbootable(self, slot: int) -> None:
        self._check_slot(slot, 2)

        if self._devinfo_valid() and self._devinfo is not None:
            self._devinfo.slots[slot].unbootable = True
            if not self._sync_devinfo():
                raise BootControlError(
                    ErrorCode.COMMAND_FAILED, "Could not update DevInfo data"
                )
            return

        dev_path = self._dev_path(slot)
        if not dev_path:
            raise BootControlError(
                ErrorCode.COMMAND_FAILED, "Could not get device path for slot"
            )
        table = self._load_gpt(dev_path)
        if table is None:
            raise BootControlError(ErrorCode.COMMAND_FAILED, "failed to load gpt data")
        try:
            entry = table.get_partition_entry(_partition_name(slot))
            if entry is None:
                raise BootControlError(
                    ErrorCode.COMMAND_FAILED, "failed to get gpt entry"
                )
            entry.attr |= AB_ATTR_UNBOOTABLE
        finally:
            self._finish(table)