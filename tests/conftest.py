"""Shared fixtures: fake toolchain, temporary device nodes, isolated config."""

import logging
import signal
from pathlib import Path

import pytest

from stcflash.config import ConfigManager
from stcflash.constants import *
from stcflash.device_locator import DeviceLocator
from stcflash.toolchain import StageResult


class FakeToolchain:
    """Stands in for sdcc/packihx/stcgal. Output is derived only from the input files."""

    def __init__(
        self,
        compile_rc=0,
        package_rc=0,
        flash_rc=0,
        missing_tools=(),
        compile_timeout=False,
        package_timeout=False,
        flash_timeout=False,
    ):
        self.compile_rc = compile_rc
        self.package_rc = package_rc
        self.flash_rc = flash_rc
        self.missing_tools = set(missing_tools)
        self.compile_timeout = compile_timeout
        self.package_timeout = package_timeout
        self.flash_timeout = flash_timeout
        self.calls = []

    def locate(self, tool):
        return None if tool in self.missing_tools else f"/usr/bin/{tool}"

    def missing(self, *tools):
        return [tool for tool in tools if tool in self.missing_tools]

    def compile(self, source, code_size=CODE_SIZE, timeout=COMPILE_TIMEOUT):
        self.calls.append(("compile", Path(source)))
        if self.compile_timeout:
            return StageResult(None, "sdcc: still thinking", timed_out=True)
        if self.compile_rc != 0:
            return StageResult(
                self.compile_rc, f"{source.name}:3: syntax error: token -> '}}'"
            )
        text = source.read_text()
        source.with_suffix(".ihx").write_text(f":IHX{len(text):04X}\n{text}")
        source.with_suffix(".asm").write_text(
            "".join(f"; line {i}\n" for i in range(40))
        )
        source.with_suffix(".lst").write_text("listing\n")
        return StageResult(0, "sdcc: Calling preprocessor...\n")

    def package(self, ihx_file, timeout=PACKAGE_TIMEOUT):
        self.calls.append(("package", Path(ihx_file)))
        if self.package_timeout:
            return StageResult(None, "", stdout=b":1000", timed_out=True)
        if self.package_rc != 0:
            return StageResult(self.package_rc, "packihx: bad record")
        data = b":HEX\n" + ihx_file.read_bytes() + b":00000001FF\n"
        return StageResult(0, "packihx: read 2 lines, wrote 3: OK.", stdout=data)

    def flash(self, port, baud_rate, hex_file, protocol=PROTOCOL, timeout=UPLOAD_TIMEOUT):
        self.calls.append(("flash", port, baud_rate, Path(hex_file), protocol))
        if self.flash_timeout:
            return StageResult(None, "Waiting for MCU, please cycle power: ", timed_out=True)
        if self.flash_rc != 0:
            return StageResult(self.flash_rc, "Serial port error: [Errno 16] Device busy")
        return StageResult(0, "Writing flash: 1024 Bytes [00:00, 1.2kB/s]\nFinishing write: done.")

    def stages(self):
        return [call[0] for call in self.calls]


class AppearingDeviceLocator(DeviceLocator):
    """A DeviceLocator whose device node is created after a number of scans."""

    def __init__(self, device_path: Path, appear_after: int, pattern_classes):
        super().__init__(pattern_classes)
        self.device_path = device_path
        self.appear_after = appear_after
        self.locate_calls = 0

    def locate(self):
        if self.locate_calls == self.appear_after:
            self.device_path.touch()
        self.locate_calls += 1
        return super().locate()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("STCFLASH_HOME", str(home))
    ConfigManager.reset_instances()
    yield home
    ConfigManager.reset_instances()


@pytest.fixture(autouse=True)
def restore_process_state():
    """main() installs a SIGINT handler and replaces the root log handlers."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    sigint_handler = signal.getsignal(signal.SIGINT)
    yield
    root_logger.handlers = handlers
    root_logger.setLevel(level)
    signal.signal(signal.SIGINT, sigint_handler)


@pytest.fixture
def config_manager(isolated_home):
    return ConfigManager()


@pytest.fixture
def fake_toolchain():
    return FakeToolchain()


@pytest.fixture
def dev_dir(tmp_path):
    path = tmp_path / "dev"
    path.mkdir()
    return path


@pytest.fixture
def pattern_classes(dev_dir):
    return ((str(dev_dir / "ttyUSB*"),), (str(dev_dir / "ttyACM*"),))


@pytest.fixture
def locator(pattern_classes):
    return DeviceLocator(pattern_classes)


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    (path / "blink.c").write_text(
        "#include <8051.h>\n\nvoid main(void) {\n    while (1) { P1 ^= 0x01; }\n}\n"
    )
    return path


@pytest.fixture
def source(project_dir):
    return project_dir / "blink.c"
