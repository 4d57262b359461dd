"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

External Toolchain Wrapper Module

Wraps the three command line tools the build and upload stages consume:
sdcc (compile), packihx (package) and stcgal (flash). Each invocation is
bounded by a timeout and reported as a StageResult, never as a hang.
"""
import os
import signal
import logging
from dataclasses import dataclass
from pathlib import Path
from shutil import which
from subprocess import Popen, PIPE, DEVNULL, TimeoutExpired
from typing import Optional

from stcflash.constants import *

logger = logging.getLogger("Toolchain")

# Seconds to collect output once a timed-out process group has been killed
DRAIN_TIMEOUT = 5


class ToolNotFoundError(FileNotFoundError):
    def __init__(self, tool):
        super().__init__(f"{tool} not found")
        self.tool = tool


@dataclass
class StageResult:
    """Outcome of one external tool invocation."""

    returncode: Optional[int]
    output: str = ""
    stdout: bytes = b""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def exit_info(self) -> str:
        if self.timed_out:
            return "timed out"
        if self.returncode is None:
            return "could not be started"
        return f"exit code {self.returncode}"

    def tail(self, lines: int = 10) -> list:
        return self.output.splitlines()[-lines:]


def _decode(data):
    return data.decode("ISO-8859-1") if data else ""


def _kill_group(process):
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except OSError:
        # The group is already gone, fall back to the direct child
        process.kill()


def execute(cmd, cwd=None, timeout=None) -> StageResult:
    """
    Runs cmd, capturing its output. A process still running after timeout
    seconds is killed together with every process it started, and reported
    with timed_out set.
    """
    logger.debug(f"Executing command: {' '.join(str(c) for c in cmd)}")
    try:
        process = Popen(
            [str(c) for c in cmd],
            stdout=PIPE,
            stderr=PIPE,
            stdin=DEVNULL,
            cwd=str(cwd) if cwd else None,
            start_new_session=True,
        )
    except OSError as e:
        logger.debug(f"Unable to start {cmd[0]}: {e}")
        return StageResult(returncode=None, output=f"Unable to run {cmd[0]}: {e}")

    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except TimeoutExpired:
        _kill_group(process)
        try:
            stdout, stderr = process.communicate(timeout=DRAIN_TIMEOUT)
        except TimeoutExpired:
            stdout, stderr = b"", b""
        logger.debug(f"Command timed out after {timeout}s: {cmd[0]}")
        return StageResult(
            returncode=None,
            output=_decode(stdout) + _decode(stderr),
            stdout=stdout or b"",
            timed_out=True,
        )
    logger.debug(f"{Path(str(cmd[0])).name} exited with {process.returncode}")
    return StageResult(
        returncode=process.returncode,
        output=_decode(stdout) + _decode(stderr),
        stdout=stdout or b"",
    )


class ExternalTool:
    """
    Base class for a command line tool found on PATH or at a configured location.
    The override may name the executable itself or the directory holding it.
    """

    executable = None

    def __init__(self, tool_path=None):
        self.tool_path = tool_path

    def find_path(self):
        """Find the executable path, raising ToolNotFoundError if it is missing."""
        paths_to_check = [
            self.tool_path,
            Path(self.tool_path) / self.executable if self.tool_path else None,
            which(self.executable),
        ]
        for path in paths_to_check:
            if path and which(str(path)):
                return which(str(path))
        raise ToolNotFoundError(self.executable)

    def is_available(self) -> bool:
        try:
            self.find_path()
            return True
        except ToolNotFoundError:
            return False

    def _run(self, options, cwd=None, timeout=None) -> StageResult:
        return execute([self.find_path()] + options, cwd=cwd, timeout=timeout)


class Sdcc(ExternalTool):
    executable = SDCC

    def compile(self, source: Path, code_size=CODE_SIZE, timeout=COMPILE_TIMEOUT):
        """Compiles source for the MCS-51 target, sdcc writes <stem>.ihx next to it."""
        options = ["-mmcs51", "--code-size", str(code_size), "--verbose", source.name]
        return self._run(options, cwd=source.parent, timeout=timeout)


class Packihx(ExternalTool):
    executable = PACKIHX

    def package(self, ihx_file: Path, timeout=PACKAGE_TIMEOUT):
        """Packs an .ihx image, the Intel HEX result is returned on stdout."""
        return self._run([ihx_file.name], cwd=ihx_file.parent, timeout=timeout)


class Stcgal(ExternalTool):
    executable = STCGAL

    def flash(self, port, baud_rate, hex_file, protocol=PROTOCOL, timeout=UPLOAD_TIMEOUT):
        options = [
            "-P",
            protocol,
            "-p",
            port,
            "-b",
            str(baud_rate),
            str(hex_file),
        ]
        return self._run(options, timeout=timeout)


class Toolchain:
    """
    The compile/package/flash capability used by the build pipeline and the
    flash session. Tests substitute an object with the same methods.
    """

    def __init__(self, compiler=None, packager=None, flasher=None):
        self.compiler = compiler or Sdcc()
        self.packager = packager or Packihx()
        self.flasher = flasher or Stcgal()
        self._tools = {
            SDCC: self.compiler,
            PACKIHX: self.packager,
            STCGAL: self.flasher,
        }

    @classmethod
    def from_config(cls, config_manager):
        """Builds a toolchain honouring the tool path overrides in the config."""
        return cls(
            compiler=Sdcc(config_manager.get_value(CONFIG_SDCC_PATH)),
            packager=Packihx(config_manager.get_value(CONFIG_PACKIHX_PATH)),
            flasher=Stcgal(config_manager.get_value(CONFIG_STCGAL_PATH)),
        )

    def locate(self, tool) -> Optional[str]:
        """Returns the resolved path of tool, or None when it cannot be found."""
        try:
            return self._tools[tool].find_path()
        except ToolNotFoundError:
            return None

    def missing(self, *tools) -> list:
        """Returns the subset of tools that cannot be found, in the order given."""
        return [tool for tool in tools if not self._tools[tool].is_available()]

    def compile(self, source, code_size=CODE_SIZE, timeout=COMPILE_TIMEOUT):
        return self.compiler.compile(source, code_size=code_size, timeout=timeout)

    def package(self, ihx_file, timeout=PACKAGE_TIMEOUT):
        return self.packager.package(ihx_file, timeout=timeout)

    def flash(self, port, baud_rate, hex_file, protocol=PROTOCOL, timeout=UPLOAD_TIMEOUT):
        return self.flasher.flash(
            port, baud_rate, hex_file, protocol=protocol, timeout=timeout
        )
