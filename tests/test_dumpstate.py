import io
import tarfile

import pytest

from pixeldump.dumpstate import (
    ALL_SECTIONS,
    VERBOSE_LOGGING_PROPERTY,
    Dumpstate,
    DumpstateMode,
    end_section,
    start_section,
)
from pixeldump.properties import FakePropertyManager


def _script(directory, name, body):
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def dump_dir(tmp_path):
    directory = tmp_path / "dump"
    directory.mkdir()
    _script(directory, "a_dump", "echo alpha")
    _script(directory, "b_dump", "echo beta")
    _script(directory, ".hidden", "echo hidden")
    return directory


def _dumpstate(dump_dir, tmp_path, props=None):
    return Dumpstate(str(dump_dir), props or FakePropertyManager(), str(tmp_path / "logs"))


def test_single_section(dump_dir, tmp_path):
    out = io.BytesIO()
    ran = _dumpstate(dump_dir, tmp_path).dump_text_section(out, "b_dump")
    text = out.getvalue().decode()
    assert ran == ["b_dump"]
    assert "beta" in text
    assert "alpha" not in text
    assert "------ Section start: b_dump ------" in text
    assert "------ Section end: b_dump ------" in text


def test_all_sections_in_order(dump_dir, tmp_path):
    out = io.BytesIO()
    ran = _dumpstate(dump_dir, tmp_path).dump_text_section(out, ALL_SECTIONS)
    text = out.getvalue().decode()
    assert ran == ["a_dump", "b_dump"]
    assert text.index("alpha") < text.index("beta")
    assert "hidden" not in text
    assert "VENDOR PROPERTIES" in text


def test_unrecognized_section(dump_dir, tmp_path):
    out = io.BytesIO()
    ran = _dumpstate(dump_dir, tmp_path).dump_text_section(out, "nope")
    text = out.getvalue().decode()
    assert ran == []
    assert text.startswith("Unrecognized text section: nope\n")
    assert 'Try "all" or one of the following: a_dump b_dump' in text


def test_missing_dump_dir(tmp_path):
    out = io.BytesIO()
    ran = Dumpstate(str(tmp_path / "absent"), FakePropertyManager()).dump_text_section(
        out, ALL_SECTIONS
    )
    assert ran == []
    assert out.getvalue() == b""


def test_section_banners():
    out = io.BytesIO()
    started = start_section(out, "x")
    elapsed = end_section(out, "x", started)
    text = out.getvalue().decode()
    assert elapsed >= 0
    assert text.startswith("\n------ Section start: x ------\n\n")
    assert f"Elapsed msec: {elapsed}\n" in text


def test_dumpstate_board_invalid_mode(dump_dir, tmp_path):
    with pytest.raises(ValueError, match="Invalid mode"):
        _dumpstate(dump_dir, tmp_path).dumpstate_board([io.BytesIO()], 99, 0)


def test_dumpstate_board_no_outputs(dump_dir, tmp_path):
    with pytest.raises(ValueError, match="No file descriptor"):
        _dumpstate(dump_dir, tmp_path).dumpstate_board([], DumpstateMode.FULL, 0)


def test_dumpstate_board_invalid_output(dump_dir, tmp_path):
    with pytest.raises(ValueError, match="Invalid file descriptor"):
        _dumpstate(dump_dir, tmp_path).dumpstate_board([None], DumpstateMode.FULL, 0)


def test_dumpstate_board_text_only(dump_dir, tmp_path):
    out = io.BytesIO()
    _dumpstate(dump_dir, tmp_path).dumpstate_board([out], DumpstateMode.FULL, 0)
    assert out.getvalue().decode().startswith("Unrecognized text section: \n")


def test_dumpstate_board_with_log_section(tmp_path):
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    dump_dir = tmp_path / "dump"
    dump_dir.mkdir()
    _script(dump_dir, "collect", f"echo collected > {log_dir}/all_logs/collected.txt\necho ran")
    out, out_bin = io.BytesIO(), io.BytesIO()
    Dumpstate(str(dump_dir), FakePropertyManager(), str(log_dir)).dumpstate_board(
        [out, out_bin], DumpstateMode.FULL, 0
    )
    with tarfile.open(fileobj=io.BytesIO(out_bin.getvalue())) as archive:
        member = archive.extractfile("./collected.txt")
        assert member.read() == b"collected\n"
    assert "ran" in out.getvalue().decode()
    assert not (log_dir / "all_logs").exists()
    assert not (log_dir / "combined_logs.tar").exists()


def test_verbose_logging_round_trip(dump_dir, tmp_path):
    props = FakePropertyManager()
    dumpstate = _dumpstate(dump_dir, tmp_path, props)
    assert dumpstate.get_verbose_logging_enabled() is False
    dumpstate.set_verbose_logging_enabled(True)
    assert props.get(VERBOSE_LOGGING_PROPERTY, "") == "true"
    assert dumpstate.get_verbose_logging_enabled() is True
    dumpstate.set_verbose_logging_enabled(False)
    assert dumpstate.get_verbose_logging_enabled() is False


def test_dump_needs_exactly_one_argument(dump_dir, tmp_path):
    out = io.BytesIO()
    dumpstate = _dumpstate(dump_dir, tmp_path)
    dumpstate.dump(out, ["a_dump", "b_dump"])
    assert out.getvalue() == b""
    dumpstate.dump(out, ["a_dump"])
    assert "alpha" in out.getvalue().decode()