"""Dumpstate device service: runs the vendor dump programs into a bug report."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tarfile
import time
from collections.abc import Sequence
from enum import IntEnum
from typing import BinaryIO

from pixeldump.dump import MODEM_LOG_DIRECTORY
from pixeldump.properties import PropertyManager, SystemPropertyManager

log = logging.getLogger("dumpstate_device")

VERBOSE_LOGGING_PROPERTY = "persist.vendor.verbose_logging_enabled"
ALL_SECTIONS = "all"
DUMP_DIR = "/vendor/bin/dump"
GETPROP = "/vendor/bin/getprop"
SECTION_TIMEOUT = 15


class DumpstateMode(IntEnum):
    """Kind of bug report being taken."""

    FULL = 0
    INTERACTIVE = 1
    REMOTE = 2
    WEAR = 3
    CONNECTIVITY = 4
    WIFI = 5
    DEFAULT = 6
    PROTO = 7


def _write(out: BinaryIO, text: str) -> None:
    out.write(text.encode("utf-8"))


def start_section(out: BinaryIO, name: str) -> float:
    """Write a section opening banner; return the start time."""
    _write(out, f"\n------ Section start: {name} ------\n\n")
    return time.monotonic()


def end_section(out: BinaryIO, name: str, start_time: float) -> int:
    """Write a section closing banner with the elapsed milliseconds; return them."""
    elapsed_msec = int((time.monotonic() - start_time) * 1000)
    _write(
        out,
        f"\n------ Section end: {name} ------\nElapsed msec: {elapsed_msec}\n\n",
    )
    return elapsed_msec


def _run_command(
    out: BinaryIO, title: str, argv: Sequence[str], timeout: float | None = None
) -> int | None:
    """Run ``argv`` and write a titled copy of its output; return its status."""
    command = " ".join(argv)
    _write(out, f"------ {title} ({command}) ------\n")
    try:
        result = subprocess.run(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as err:
        out.write(err.output or b"")
        _write(out, f"*** command '{command}' timed out after {timeout} seconds\n")
        return None
    except OSError as err:
        _write(out, f"*** command '{command}' failed: {err.strerror}\n")
        return None
    out.write(result.stdout)
    return result.returncode


class Dumpstate:
    """Writes the board-specific part of a bug report."""

    def __init__(
        self,
        dump_dir: str = DUMP_DIR,
        properties: PropertyManager | None = None,
        log_dir: str = MODEM_LOG_DIRECTORY,
    ) -> None:
        self._dump_dir = dump_dir
        self._properties = properties or SystemPropertyManager()
        self._log_dir = log_dir

    def dump_text_section(self, out: BinaryIO, section_name: str) -> list[str]:
        """Run every dump program, or the one named, writing to ``out``.

        An unknown name writes a help text listing the known sections.
        Returns the names of the programs that were run.
        """
        dump_all = section_name == ALL_SECTIONS
        try:
            names = sorted(os.listdir(self._dump_dir))
        except OSError:
            log.error("Unable to scan dir: %s", self._dump_dir)
            return []

        known = ""
        ran: list[str] = []
        for name in names:
            if name.startswith("."):
                continue
            known += " " + name
            if dump_all or section_name == name:
                started = start_section(out, name)
                program = os.path.join(self._dump_dir, name)
                _run_command(out, program, [program], SECTION_TIMEOUT)
                end_section(out, name, started)
                ran.append(name)
                if not dump_all:
                    return ran

        if dump_all:
            _run_command(out, "VENDOR PROPERTIES", [GETPROP])
            return ran

        _write(out, f"Unrecognized text section: {section_name}\n")
        _write(out, f'Try "{ALL_SECTIONS}" or one of the following:')
        _write(out, known)
        _write(
            out,
            "\nNote: sections with attachments (e.g. dump_soc) are"
            "not available from the command line.\n",
        )
        return ran

    def dump_log_section(self, out: BinaryIO, out_bin: BinaryIO) -> None:
        """Dump all sections, then stream the collected logs as a tar to ``out_bin``."""
        combined = f"{self._log_dir}/combined_logs.tar"
        all_logs = f"{self._log_dir}/all_logs"

        _write(out, f"------ MKDIR LOG ({all_logs}) ------\n")
        try:
            os.makedirs(all_logs, exist_ok=True)
        except OSError as err:
            _write(out, f"*** mkdir failed: {err.strerror}\n")

        self.dump_text_section(out, ALL_SECTIONS)

        _write(out, f"------ TAR LOG ({combined}) ------\n")

        def _list(info: tarfile.TarInfo) -> tarfile.TarInfo:
            _write(out, info.name + "\n")
            return info

        try:
            with tarfile.open(combined, "w") as archive:
                archive.add(all_logs, arcname=".", filter=_list)
        except (OSError, tarfile.TarError) as err:
            _write(out, f"*** tar failed: {err}\n")

        _write(out, f"------ CHG PERM ({combined}) ------\n")
        try:
            os.chmod(combined, os.stat(combined).st_mode | 0o222)
        except OSError as err:
            _write(out, f"*** chmod failed: {err.strerror}\n")

        try:
            with open(combined, "rb") as source:
                shutil.copyfileobj(source, out_bin)
        except OSError as err:
            log.debug("read(%s): %s", combined, err)

        _write(out, f"------ RM LOG DIR ({all_logs}) ------\n")
        shutil.rmtree(all_logs, ignore_errors=True)
        _write(out, f"------ RM LOG ({combined}) ------\n")
        try:
            os.remove(combined)
        except OSError as err:
            _write(out, f"*** rm failed: {err.strerror}\n")

    def dumpstate_board(
        self,
        outputs: Sequence[BinaryIO | None],
        mode: int = DumpstateMode.DEFAULT,
        timeout_millis: int = 0,
    ) -> None:
        """Write the board report to ``outputs[0]`` and logs to ``outputs[1]``.

        Raises ValueError for an invalid mode or missing output.
        """
        del timeout_millis  # not used
        try:
            DumpstateMode(mode)
        except ValueError:
            log.error("Invalid mode: %s", mode)
            raise ValueError("Invalid mode") from None

        if not outputs:
            log.error("no FDs")
            raise ValueError("No file descriptor")

        out = outputs[0]
        if out is None:
            log.error("invalid FD")
            raise ValueError("Invalid file descriptor")

        if len(outputs) < 2 or outputs[1] is None:
            log.error("no FD for dumpstate_board binary")
            self.dump_text_section(out, "")
        else:
            self.dump_log_section(out, outputs[1])

    def set_verbose_logging_enabled(self, enable: bool) -> None:
        self._properties.set(VERBOSE_LOGGING_PROPERTY, "true" if enable else "false")

    def get_verbose_logging_enabled(self) -> bool:
        return self._properties.get_bool(VERBOSE_LOGGING_PROPERTY, False)

    def dump(self, out: BinaryIO, args: Sequence[str]) -> None:
        """Dump one text section when exactly one argument names it."""
        if len(args) != 1:
            return
        self.dump_text_section(out, args[0])
        out.flush()