"""Boot control with result values instead of exceptions.

Operations that change state report a ``CommandResult``; queries about a
slot report a three-way ``BoolResult``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum

from pixeldump.bootctrl import BootControl, BootControlError, ErrorCode

_SLOT_COUNT = 2


class BoolResult(IntEnum):
    """Answer to a per-slot question."""

    FALSE = 0
    TRUE = 1
    INVALID_SLOT = -1


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a state-changing operation."""

    success: bool
    err_msg: str = ""


_OK = CommandResult(True, "")
_INVALID_SLOT = CommandResult(False, "Invalid slot")


def _run(action: Callable[[], None]) -> CommandResult:
    try:
        action()
    except BootControlError as err:
        return CommandResult(False, err.message)
    return _OK


class HidlBootControl:
    """Result-returning front end over ``BootControl``."""

    def __init__(self, control: BootControl | None = None) -> None:
        self._control = control or BootControl()

    def get_number_slots(self) -> int:
        return self._control.get_number_slots()

    def get_current_slot(self) -> int:
        return self._control.get_current_slot()

    def get_active_boot_slot(self) -> int:
        return self._control.get_active_boot_slot()

    def get_suffix(self, slot: int) -> str:
        return self._control.get_suffix(slot)

    def _slot_query(self, slot: int, query: Callable[[int], bool]) -> BoolResult:
        try:
            answer = query(slot)
        except BootControlError as err:
            if err.code == ErrorCode.INVALID_SLOT:
                return BoolResult.INVALID_SLOT
            raise
        return BoolResult.TRUE if answer else BoolResult.FALSE

    def is_slot_bootable(self, slot: int) -> BoolResult:
        return self._slot_query(slot, self._control.is_slot_bootable)

    def is_slot_marked_successful(self, slot: int) -> BoolResult:
        return self._slot_query(slot, self._control.is_slot_marked_successful)

    def mark_boot_successful(self) -> CommandResult:
        return _run(self._control.mark_boot_successful)

    def set_active_boot_slot(self, slot: int) -> CommandResult:
        if not 0 <= slot < _SLOT_COUNT:
            return _INVALID_SLOT
        return _run(lambda: self._control.set_active_boot_slot(slot))

    def set_slot_as_unbootable(self, slot: int) -> CommandResult:
        if not 0 <= slot < _SLOT_COUNT:
            return _INVALID_SLOT
        return _run(lambda: self._control.set_slot_as_unbootable(slot))