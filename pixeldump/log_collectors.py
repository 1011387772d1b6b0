"""Copy subsystem log files into the bug-report packing directory."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Sequence

from pixeldump.dump import BUGREPORT_PACKING_DIR, concatenate_path, copy_file, dump_logs
from pixeldump.properties import PropertyManager, SystemPropertyManager

CAMERA_ATTACH_PROPERTY = (
    "vendor.camera.debug.camera_performance_analyzer.attach_to_bugreport"
)
CAMERA_LOG_DIR = "/data/vendor/camera/profiler"
GRAPH_STATE_DUMP_DIR = "/data/vendor/camera"

# Several recent sessions are kept in case sessions ran concurrently.
CAMERA_LOGS: tuple[tuple[str, int, str], ...] = (
    (CAMERA_LOG_DIR, 10, "session-ended-"),
    (CAMERA_LOG_DIR, 10, "multicam-"),
    (CAMERA_LOG_DIR, 5, "high-drop-rate-"),
    (CAMERA_LOG_DIR, 5, "watchdog-"),
    (CAMERA_LOG_DIR, 5, "camera-ended-"),
    (CAMERA_LOG_DIR, 5, "fatal-error-"),
    (GRAPH_STATE_DUMP_DIR, 5, "hal_graph_state_"),
    (CAMERA_LOG_DIR, 10, "fd_state_tracker-"),
)

MAX_GXP_DEBUG_DUMPS = 3
GXP_LOGS: tuple[tuple[str, int, str], ...] = (
    ("/data/vendor/ssrdump/coredump", MAX_GXP_DEBUG_DUMPS, "coredump_gxp_"),
    ("/data/vendor/ssrdump", MAX_GXP_DEBUG_DUMPS, "crashinfo_gxp_"),
)

BCMBT_ACTIVITY_LOG_DIRECTORY = "/data/vendor/bluetooth"
BCMBT_SNOOP_LOG_DIRECTORY = "/data/vendor/bluetooth"
BCMBT_FW_LOG_DIRECTORY = "/data/vendor/ssrdump/coredump"
BCMBT_LOGS: tuple[tuple[str, int, str], ...] = (
    (BCMBT_SNOOP_LOG_DIRECTORY, 2, "btsnoop_hci_vnd"),
    (BCMBT_SNOOP_LOG_DIRECTORY, 2, "backup_btsnoop_hci_vnd"),
    (BCMBT_FW_LOG_DIRECTORY, 10, "coredump_bt_socdump_"),
    (BCMBT_FW_LOG_DIRECTORY, 10, "coredump_bt_chredump_"),
    (BCMBT_FW_LOG_DIRECTORY, 10, "coredump_bt_"),
    (BCMBT_ACTIVITY_LOG_DIRECTORY, 10, "bt_activity_"),
)

GPS_ENABLED_PROPERTY = "vendor.gps.aol.enabled"
GPS_LOG_NUMBER_PROPERTY = "persist.vendor.gps.aol.log_num"
GPS_DEFAULT_LOG_NUMBER = 20
GPS_LOG_DIRECTORY = "/data/vendor/gps/logs"
GPS_TMP_LOG_DIRECTORY = "/data/vendor/gps/logs/.tmp"
GPS_LOG_PREFIX = "gl-"
GPS_MCU_LOG_PREFIX = "esw-"
GPS_MALLOC_LOG_DIRECTORY = "/data/vendor/gps"
GPS_MALLOC_LOG_PREFIX = "malloc_"
GPS_VENDOR_CHIP_INFO = "/data/vendor/gps/chip.info"
GPS_RAWLOG_PREFIX = "rawbin"
GPS_MEMDUMP_LOG_PREFIX = "memdump_"

GYOTAKU_DIRECTORY = "/data/vendor/gyotaku/andlog"
GYOTAKU_ANDROID_LOG_PREFIX = "android_"
MAX_GYOTAKU_LOGS = 30


def _create_dir(path: str, mode: int) -> bool:
    try:
        os.mkdir(path, mode)
    except OSError:
        print(f"Unable to create folder: {path}")
        return False
    return True


def _output_dir(packing_dir: str, name: str, mode: int = 0o777) -> str | None:
    path = concatenate_path(packing_dir, name)
    return path if _create_dir(path, mode) else None


def _collect(logs: Sequence[tuple[str, int, str]], dest: str) -> None:
    for src, limit, prefix in logs:
        dump_logs(src, dest, limit, prefix)


def dump_camera(
    properties: PropertyManager | None = None,
    packing_dir: str = BUGREPORT_PACKING_DIR,
) -> bool:
    """Collect camera profiler logs; return False when skipped or failed."""
    properties = properties or SystemPropertyManager()
    if not properties.get_bool(CAMERA_ATTACH_PROPERTY, True):
        return False
    dest = _output_dir(packing_dir, "camera")
    if dest is None:
        return False
    _collect(CAMERA_LOGS, dest)
    return True


def dump_gxp(packing_dir: str = BUGREPORT_PACKING_DIR) -> bool:
    """Collect GXP core dumps and crash info."""
    dest = concatenate_path(packing_dir, "gxp_ssrdump")
    print(f"Creating {dest}", end="")
    if not _create_dir(dest, 0o777):
        return False
    _collect(GXP_LOGS, dest)
    return True


def dump_bcmbt(packing_dir: str = BUGREPORT_PACKING_DIR) -> bool:
    """Collect Bluetooth snoop, firmware and activity logs."""
    dest = _output_dir(packing_dir, "bcmbt")
    if dest is None:
        return False
    _collect(BCMBT_LOGS, dest)
    return True


def dump_gps(
    properties: PropertyManager | None = None,
    packing_dir: str = BUGREPORT_PACKING_DIR,
) -> bool:
    """Collect GPS logs when always-on GPS logging is enabled."""
    properties = properties or SystemPropertyManager()
    if not properties.get_bool(GPS_ENABLED_PROPERTY, False):
        print("vendor.gps.aol.enabled is false. gps logging is not running.")
        return False
    max_file_num = properties.get_int(GPS_LOG_NUMBER_PROPERTY, GPS_DEFAULT_LOG_NUMBER)
    dest = _output_dir(packing_dir, "gps")
    if dest is None:
        return False

    dump_logs(GPS_TMP_LOG_DIRECTORY, dest, 1, GPS_LOG_PREFIX)
    dump_logs(GPS_LOG_DIRECTORY, dest, 3, GPS_MCU_LOG_PREFIX)
    dump_logs(GPS_LOG_DIRECTORY, dest, max_file_num, GPS_LOG_PREFIX)
    dump_logs(GPS_MALLOC_LOG_DIRECTORY, dest, 1, GPS_MALLOC_LOG_PREFIX)
    if os.path.exists(GPS_VENDOR_CHIP_INFO):
        copy_file(GPS_VENDOR_CHIP_INFO, concatenate_path(dest, "chip.info"))
    dump_logs(GPS_LOG_DIRECTORY, dest, max_file_num, GPS_RAWLOG_PREFIX)
    dump_logs(GPS_LOG_DIRECTORY, dest, 18, GPS_MEMDUMP_LOG_PREFIX)
    return True


def dump_gyotaku(packing_dir: str = BUGREPORT_PACKING_DIR) -> bool:
    """Collect Gyotaku Android logs into a private folder."""
    dest = _output_dir(packing_dir, "gyotaku", 0o700)
    if dest is None:
        return False
    dump_logs(GYOTAKU_DIRECTORY, dest, MAX_GYOTAKU_LOGS, GYOTAKU_ANDROID_LOG_PREFIX)
    return True


COLLECTORS: dict[str, Callable[[], bool]] = {
    "dump_camera": dump_camera,
    "dump_gxp": dump_gxp,
    "dump_bcmbt": dump_bcmbt,
    "dump_gps": dump_gps,
    "dump_gyotaku": dump_gyotaku,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the collector named by the first argument; return 2 on bad usage."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args or args[0] not in COLLECTORS:
        names = ", ".join(COLLECTORS)
        print(f"usage: log_collectors <{names}>", file=sys.stderr)
        return 2
    COLLECTORS[args[0]]()
    return 0