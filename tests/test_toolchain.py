"""Runs the real subprocess wrappers against small shell scripts."""

import stat
import sys
import time

import pytest

from stcflash.build import STAGE_COMPILE, BuildError, BuildPipeline
from stcflash.constants import *
from stcflash.toolchain import (
    Packihx,
    Sdcc,
    StageResult,
    Stcgal,
    Toolchain,
    ToolNotFoundError,
    execute,
)

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


def write_script(directory, name, body):
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def bin_dir(tmp_path):
    path = tmp_path / "bin"
    path.mkdir()
    return path


def test_execute_success():
    result = execute(["sh", "-c", "echo hello"])

    assert result.ok
    assert result.returncode == 0
    assert result.stdout == b"hello\n"
    assert "hello" in result.output


def test_execute_nonzero_exit():
    result = execute(["sh", "-c", "echo oops >&2; exit 3"])

    assert not result.ok
    assert result.returncode == 3
    assert result.exit_info == "exit code 3"
    assert result.tail() == ["oops"]


def test_execute_timeout_kills_process():
    result = execute(["sleep", "10"], timeout=0.2)

    assert result.timed_out
    assert result.returncode is None
    assert not result.ok
    assert result.exit_info == "timed out"


def test_stage_result_tail_limits_lines():
    result = StageResult(1, "\n".join(str(i) for i in range(30)))
    assert result.tail(3) == ["27", "28", "29"]


def test_find_path_in_override_directory(bin_dir):
    script = write_script(bin_dir, "sdcc", "exit 0\n")

    assert Sdcc(str(bin_dir)).find_path() == str(script)
    assert Sdcc(str(script)).find_path() == str(script)


def test_missing_tool(bin_dir, monkeypatch):
    monkeypatch.setenv("PATH", str(bin_dir))
    tool = Stcgal(str(bin_dir / "nowhere"))

    with pytest.raises(ToolNotFoundError) as exc_info:
        tool.find_path()

    assert exc_info.value.tool == STCGAL
    assert not tool.is_available()


def test_sdcc_compile_runs_in_source_directory(bin_dir, source):
    write_script(
        bin_dir,
        "sdcc",
        'for a; do last="$a"; done\n'
        'echo "args: $*"\n'
        ': > "${last%.c}.ihx"\n',
    )

    result = Sdcc(str(bin_dir)).compile(source, code_size=4096, timeout=10)

    assert result.ok
    assert "args: -mmcs51 --code-size 4096 --verbose blink.c" in result.output
    assert source.with_suffix(".ihx").exists()


def test_packihx_returns_hex_on_stdout(bin_dir, source):
    ihx = source.with_suffix(".ihx")
    ihx.write_text(":00000001FF\n")
    write_script(bin_dir, "packihx", 'cat "$1"\necho "packihx: OK." >&2\n')

    result = Packihx(str(bin_dir)).package(ihx, timeout=10)

    assert result.ok
    assert result.stdout == b":00000001FF\n"
    assert "packihx: OK." in result.output


def test_stcgal_arguments(bin_dir, tmp_path):
    write_script(bin_dir, "stcgal", 'echo "$*"\nexit 2\n')

    result = Stcgal(str(bin_dir)).flash(
        "/dev/ttyUSB0", 57600, tmp_path / "blink.hex", protocol="stc89", timeout=10
    )

    assert result.returncode == 2
    assert f"-P stc89 -p /dev/ttyUSB0 -b 57600 {tmp_path / 'blink.hex'}" in result.output


def test_toolchain_reports_missing_tools(bin_dir, monkeypatch):
    monkeypatch.setenv("PATH", str(bin_dir))
    write_script(bin_dir, "sdcc", "exit 0\n")
    toolchain = Toolchain()

    assert toolchain.missing(SDCC, PACKIHX, STCGAL) == [PACKIHX, STCGAL]
    assert toolchain.locate(SDCC) == str(bin_dir / "sdcc")
    assert toolchain.locate(STCGAL) is None


def test_toolchain_from_config_uses_overrides(bin_dir, config_manager, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path / "empty"))
    stcgal = write_script(bin_dir, "stcgal", "exit 0\n")
    config_manager.set_value(CONFIG_STCGAL_PATH, str(stcgal))

    toolchain = Toolchain.from_config(config_manager)

    assert toolchain.locate(STCGAL) == str(stcgal)
    assert toolchain.missing(SDCC, STCGAL) == [SDCC]


def test_timeout_kills_processes_started_by_the_tool(bin_dir):
    # sleep runs as a child of the shell and keeps the output pipes open
    script = write_script(bin_dir, "slow", "sleep 10\necho done\n")

    started = time.monotonic()
    result = execute([script], timeout=0.5)

    assert result.timed_out
    assert time.monotonic() - started < 3
    assert "done" not in result.output


def test_execute_reports_unstartable_command(tmp_path):
    result = execute([tmp_path / "missing-tool"])

    assert not result.ok
    assert not result.timed_out
    assert result.exit_info == "could not be started"
    assert "missing-tool" in result.output


def test_unstartable_compiler_is_a_compile_failure(bin_dir, source):
    # executable bit set but no interpreter line, exec fails with ENOEXEC
    write_script(bin_dir, "packihx", "exit 0\n")
    compiler = bin_dir / "sdcc"
    compiler.write_bytes(b"\x00\x01not a program\n")
    compiler.chmod(0o755)
    toolchain = Toolchain(compiler=Sdcc(str(bin_dir)), packager=Packihx(str(bin_dir)))

    with pytest.raises(BuildError) as exc_info:
        BuildPipeline(toolchain).build(source)

    assert exc_info.value.stage == STAGE_COMPILE
    assert "could not be started" in str(exc_info.value)
