# pixeldump

Tools for collecting diagnostics from a device into a bug report and for
reading and changing its A/B boot slot state.

The package has these modules:

- **`pixeldump.dump`** – bug-report helpers: `dump_file_content` prints a
  titled section with a file's content, `run_command` prints a title and runs
  a shell command, `concatenate_path` joins a folder and a file name, and
  `dump_logs` copies the newest files sharing a prefix (reverse alphabetical
  order, at most `limit`, or all with `-1`) into a destination folder using
  `copy_file`.
- **`pixeldump.properties`** – a `PropertyManager` interface for system
  properties, with `SystemPropertyManager` (runs `getprop`/`setprop`) and
  `FakePropertyManager` (in memory; setting the modem logging enable property
  also sets the status property, and `modem_logging_has_restarted()` reports
  whether logging went off and back on). `parse_bool` and `parse_int` turn
  property strings into values.
- **`pixeldump.gpt`** – `GptHeader` and `GptEntry` read and write the on-disk
  structures; `GptTable` opens a device or image, loads both headers and the
  entries, finds entries by name, and `sync()` writes changes back to the
  primary and backup copies with fresh CRC32s. It is a context manager.
- **`pixeldump.devinfo`** – `DevInfo` and `SlotData` for the bootloader's
  128-byte devinfo record; `DevInfo.supports_ab()` is true for version 3.3
  and later.
- **`pixeldump.bootctrl`** – `BootControl` queries and changes slot state
  (number of slots, current and active slot, suffix, bootable and successful
  flags, set active, mark unbootable, mark boot successful). It uses devinfo
  when that supports A/B data and otherwise the GPT attributes of the boot
  partitions. Failures raise `BootControlError` carrying an `ErrorCode`. All
  device paths are set through `BootPaths`; the anti-rollback OTP exchange
  goes through an `otp_writer` callable you pass in.
- **`pixeldump.hidl_bootctrl`** – `HidlBootControl` wraps `BootControl` and
  returns `CommandResult` and `BoolResult` values instead of raising.
- **`pixeldump.dumpstate`** – `Dumpstate` runs every program in a dump
  directory (default `/vendor/bin/dump`), each in its own timed section, or
  just the one named; `dumpstate_board` can also tar up the collected logs and
  stream the archive to a second output.
- **`pixeldump.log_collectors`** – `dump_camera`, `dump_gxp`, `dump_bcmbt`,
  `dump_gps` and `dump_gyotaku` copy each subsystem's logs into a new folder
  under the bug-report packing directory.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command

```
pixeldump-collect <dump_camera|dump_gxp|dump_bcmbt|dump_gps|dump_gyotaku>
```

Runs one log collector against the default packing directory
(`/data/vendor/radio/logs/always-on/all_logs`). Without a known collector name
it prints a usage line and exits with status 2.

## Using it from Python

```python
from pixeldump.dump import dump_logs

# Copy the three newest files starting with "crash_" into /tmp/report.
dump_logs("/data/logs", "/tmp/report", 3, "crash_")
```

```python
from pixeldump.properties import FakePropertyManager
from pixeldump.log_collectors import dump_gps

properties = FakePropertyManager({"vendor.gps.aol.enabled": "true"})
dump_gps(properties, packing_dir="/tmp/report")
```

```python
from pixeldump.gpt import GptTable

with GptTable("disk.img", block_size=512) as table:
    table.load()
    entry = table.get_partition_entry("boot_a")
    if entry is not None:
        entry.attr |= 1 << 58   # written back when the table is closed
```

```python
import io
from pixeldump.dumpstate import Dumpstate

out = io.BytesIO()
Dumpstate(dump_dir="/path/to/dump/programs").dump(out, ["all"])
print(out.getvalue().decode())
```

Most functions touch real device paths by default, so run them on the device
itself or point them at test directories and image files.

## What it does not do

- It does not keep a hardware watchdog fed; there is no watchdog daemon.
- It has no modem log dumper and no command that prints the AoC, display,
  LED, performance or metrics sysfs readouts; `dump_file_content` and
  `run_command` are the building blocks for such output.
- `BootControl`, `HidlBootControl` and `Dumpstate` are plain Python classes;
  the package does not register them as system services, and it does not read
  or write the virtual A/B snapshot merge status.