import struct

import pytest

from pixeldump.bootctrl import (
    AB_ATTR_ACTIVE,
    AB_ATTR_SUCCESSFUL,
    AB_ATTR_UNBOOTABLE,
    OTP_RESP_BIT,
    BootControl,
    BootControlError,
    BootPaths,
    ErrorCode,
    OtpCommand,
    decode_otp_response,
    encode_otp_request,
)
from pixeldump.devinfo import DevInfo
from pixeldump.gpt import GptEntry, GptHeader, GptTable
from pixeldump.properties import FakePropertyManager

BLOCK = 512


def make_paths(tmp_path, version=(3, 3), boot_files=True):
    if boot_files:
        (tmp_path / "boot_a").write_bytes(b"")
        (tmp_path / "boot_b").write_bytes(b"")
    (tmp_path / "devinfo").write_bytes(
        DevInfo(ver_major=version[0], ver_minor=version[1]).to_bytes()
    )
    lun = tmp_path / "platform" / "ufs" / "pixel"
    lun.mkdir(parents=True)
    (lun / "boot_lun_enabled").write_text("0")
    (tmp_path / "blow_ar").write_text("0")
    return BootPaths(
        boot_a=str(tmp_path / "boot_a"),
        boot_b=str(tmp_path / "boot_b"),
        devinfo=str(tmp_path / "devinfo"),
        blow_ar=str(tmp_path / "blow_ar"),
        platform_dir=str(tmp_path / "platform"),
        gpt_block_size=BLOCK,
    )


def read_devinfo(paths):
    with open(paths.devinfo, "rb") as handle:
        return DevInfo.from_bytes(handle.read())


def lun_value(tmp_path):
    return (tmp_path / "platform" / "ufs" / "pixel" / "boot_lun_enabled").read_text()


@pytest.fixture
def props():
    return FakePropertyManager({"ro.boot.bootdevice": "ufs"})


def test_number_slots(tmp_path, props):
    paths = make_paths(tmp_path)
    assert BootControl(props, paths).get_number_slots() == 2
    (tmp_path / "boot_b").unlink()
    assert BootControl(props, paths).get_number_slots() == 1


def test_current_slot_from_suffix(tmp_path):
    paths = make_paths(tmp_path)
    assert BootControl(FakePropertyManager(), paths).get_current_slot() == 0
    props = FakePropertyManager({"ro.boot.slot_suffix": "_b"})
    assert BootControl(props, paths).get_current_slot() == 1


def test_suffix(tmp_path, props):
    control = BootControl(props, make_paths(tmp_path))
    assert [control.get_suffix(s) for s in (0, 1, 2)] == ["_a", "_b", ""]


def test_set_active_slot_with_devinfo(tmp_path, props):
    paths = make_paths(tmp_path)
    control = BootControl(props, paths)
    control.set_active_boot_slot(1)
    info = read_devinfo(paths)
    assert info.slots[1].active
    assert info.slots[1].retry_count == 3
    assert not info.slots[0].active
    assert lun_value(tmp_path) == "2"
    assert control.get_active_boot_slot() == 1


def test_set_active_slot_zero_writes_one(tmp_path, props):
    paths = make_paths(tmp_path)
    BootControl(props, paths).set_active_boot_slot(0)
    assert lun_value(tmp_path) == "1"
    assert read_devinfo(paths).slots[0].active


def test_set_active_invalid_slot(tmp_path, props):
    control = BootControl(props, make_paths(tmp_path))
    with pytest.raises(BootControlError) as info:
        control.set_active_boot_slot(2)
    assert info.value.code == ErrorCode.INVALID_SLOT
    assert info.value.message == "Invalid slot 2"


def test_set_active_without_boot_device(tmp_path):
    control = BootControl(FakePropertyManager(), make_paths(tmp_path))
    with pytest.raises(BootControlError) as info:
        control.set_active_boot_slot(0)
    assert info.value.code == ErrorCode.COMMAND_FAILED
    assert "ro.boot.boot_devices" in info.value.message


def test_set_active_falls_back_to_boot_devices_and_old_path(tmp_path):
    paths = make_paths(tmp_path)
    old = tmp_path / "platform" / "old" / "attributes"
    old.mkdir(parents=True)
    (old / "boot_lun_enabled").write_text("0")
    props = FakePropertyManager({"ro.boot.boot_devices": "old"})
    BootControl(props, paths).set_active_boot_slot(1)
    assert (old / "boot_lun_enabled").read_text() == "2"


def test_set_active_missing_lun_attribute(tmp_path):
    props = FakePropertyManager({"ro.boot.bootdevice": "nothing"})
    control = BootControl(props, make_paths(tmp_path))
    with pytest.raises(BootControlError) as info:
        control.set_active_boot_slot(0)
    assert info.value.message == "failed to open ufs attr boot_lun_enabled"


def test_unbootable_with_devinfo(tmp_path, props):
    paths = make_paths(tmp_path)
    control = BootControl(props, paths)
    assert control.is_slot_bootable(0) is True
    control.set_slot_as_unbootable(0)
    assert control.is_slot_bootable(0) is False
    assert read_devinfo(paths).slots[0].unbootable


def test_mark_successful_with_devinfo(tmp_path, props):
    paths = make_paths(tmp_path)
    control = BootControl(props, paths)
    assert control.is_slot_marked_successful(0) is False
    control.mark_boot_successful()
    assert control.is_slot_marked_successful(0) is True
    assert read_devinfo(paths).slots[0].successful


def test_slot_queries_without_slots(tmp_path, props):
    control = BootControl(props, make_paths(tmp_path, boot_files=False))
    assert control.is_slot_bootable(0) is False
    assert control.is_slot_marked_successful(0) is True
    assert control.get_active_boot_slot() == 0


def test_slot_query_out_of_range(tmp_path, props):
    paths = make_paths(tmp_path)
    (tmp_path / "boot_b").unlink()
    control = BootControl(props, paths)
    with pytest.raises(BootControlError) as info:
        control.is_slot_bootable(1)
    assert info.value.code == ErrorCode.INVALID_SLOT
    with pytest.raises(BootControlError):
        control.is_slot_marked_successful(1)


def test_otp_request_encoding():
    request = encode_otp_request(OtpCommand.WRITE_ANTIRBK_SECURE_AP)
    assert request == struct.pack("<IIB", OtpCommand.WRITE_ANTIRBK_SECURE_AP, 0, 0)
    assert OtpCommand.WRITE_ANTIRBK_SECURE_AP == 8 << 1
    assert OtpCommand.WRITE_ANTIRBK_NON_SECURE_AP == 7 << 1


def test_otp_response_decoding():
    data = struct.pack("<IIi", 17, 0, -3)
    response = decode_otp_response(data)
    assert response.command == 17
    assert response.result == -3
    with pytest.raises(ValueError):
        decode_otp_response(data[:5])


def test_zuma_blows_both_fuses(tmp_path):
    sent = []

    def writer(request):
        sent.append(request)
        command = struct.unpack("<IIB", request)[0]
        return struct.pack("<IIi", command | OTP_RESP_BIT, 0, 0)

    props = FakePropertyManager({"ro.boot.hardware.platform": "zuma"})
    paths = make_paths(tmp_path)
    BootControl(props, paths, writer).mark_boot_successful()
    assert sent == [
        encode_otp_request(OtpCommand.WRITE_ANTIRBK_SECURE_AP),
        encode_otp_request(OtpCommand.WRITE_ANTIRBK_NON_SECURE_AP),
    ]


def test_zuma_otp_failure_is_ignored(tmp_path):
    props = FakePropertyManager({"ro.boot.hardware.platform": "zuma"})
    paths = make_paths(tmp_path)
    control = BootControl(props, paths, None)
    control.mark_boot_successful()
    assert read_devinfo(paths).slots[0].successful


def test_gs101_writes_blow_ar(tmp_path):
    props = FakePropertyManager({"ro.boot.hardware.platform": "gs101"})
    paths = make_paths(tmp_path)
    BootControl(props, paths).mark_boot_successful()
    assert (tmp_path / "blow_ar").read_text() == "1"


# --- GPT-backed slots ------------------------------------------------------


def make_disk(tmp_path):
    disk = tmp_path / "disk"
    entries = [GptEntry(name="boot_a"), GptEntry(name="boot_b"), GptEntry(), GptEntry()]
    primary = GptHeader(current_lba=1, backup_lba=10, start_lba=2, entry_count=4)
    backup = GptHeader(current_lba=10, backup_lba=1, start_lba=6, entry_count=4)
    image = bytearray(11 * BLOCK)
    image[BLOCK : BLOCK + len(primary.to_bytes())] = primary.to_bytes()
    blob = b"".join(e.to_bytes() for e in entries)
    image[2 * BLOCK : 2 * BLOCK + len(blob)] = blob
    image[10 * BLOCK : 10 * BLOCK + len(backup.to_bytes())] = backup.to_bytes()
    disk.write_bytes(bytes(image))
    return disk


def gpt_paths(tmp_path):
    paths = make_paths(tmp_path, version=(3, 2), boot_files=False)
    disk = make_disk(tmp_path)
    (tmp_path / "boot_a").symlink_to(str(disk) + "12")
    (tmp_path / "boot_b").symlink_to(str(disk) + "13")
    paths.disk_prefix_length = len(str(disk))
    return paths, disk


def read_attr(disk, name):
    table = GptTable(str(disk), BLOCK)
    table.load()
    try:
        return table.get_partition_entry(name).attr
    finally:
        table.close()


def test_gpt_without_device_link(tmp_path, props):
    paths = make_paths(tmp_path, version=(3, 2))
    control = BootControl(props, paths)
    with pytest.raises(BootControlError) as info:
        control.set_active_boot_slot(0)
    assert info.value.message == "Could not get device path for slot"
    with pytest.raises(BootControlError) as info:
        control.mark_boot_successful()
    assert info.value.message == "Failed to set successful flag"