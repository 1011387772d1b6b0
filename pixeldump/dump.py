"""Helpers that write bug-report sections and collect log files."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys

BUGREPORT_PACKING_DIR = "/data/vendor/radio/logs/always-on/all_logs"
MODEM_LOG_DIRECTORY = "/data/vendor/radio/logs/always-on"


def dump_file_content(title: str, file_path: str) -> bool:
    """Print a titled section holding the content of ``file_path``.

    Returns True when the file could be read.
    """
    print(f"------ {title} ({file_path}) ------")
    try:
        with open(file_path, "rb") as handle:
            content = handle.read()
    except OSError:
        print(f"Unable to read {file_path}")
        return False
    print(content.decode("utf-8", errors="replace"))
    return True


def run_command(title: str, cmd: str) -> int:
    """Print a titled section and run ``cmd`` through the shell.

    The command writes straight to the process's standard output.
    Returns the command's exit status.
    """
    print(f"------ {title} ({cmd})------")
    sys.stdout.flush()
    return subprocess.run(cmd, shell=True, check=False).returncode


def concatenate_path(folder: str, file: str) -> str:
    """Join ``folder`` and ``file`` with exactly one separating slash."""
    path = folder + file if folder.endswith("/") else f"{folder}/{file}"
    print(f"folder:{folder}, result:{path}")
    return path


def dump_logs(src_dir: str, dest_dir: str, limit: int, prefix: str) -> list[str]:
    """Copy the newest files named ``prefix*`` from ``src_dir`` to ``dest_dir``.

    Files are taken in reverse alphabetical order; at most ``limit`` are
    copied, or all of them when ``limit`` is -1. Returns the copied names.
    """
    try:
        names = sorted(os.listdir(src_dir))
    except OSError:
        print(f"Unable to scan dir: {src_dir}.")
        return []

    if not os.access(dest_dir, os.R_OK):
        print(f"Unable to find folder: {dest_dir}")
        return []

    copied: list[str] = []
    for name in reversed(names):
        if not name.startswith(prefix):
            continue
        if limit != -1 and len(copied) >= limit:
            print(f"Skipped {name}")
            continue
        copied.append(name)
        copy_file(concatenate_path(src_dir, name), concatenate_path(dest_dir, name))
    return copied


def copy_file(src: str, dest: str) -> bool:
    """Copy ``src`` to ``dest`` byte for byte.

    ``dest`` is always created (left empty when ``src`` cannot be read).
    Returns True when the content was copied.
    """
    with open(dest, "wb") as out:
        try:
            with open(src, "rb") as source:
                shutil.copyfileobj(source, out)
        except OSError:
            return False
    return True