"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Build and Upload Orchestration Module
"""

import os
import sys
import signal
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from stcflash.constants import *
from stcflash.config import ConfigManager
from stcflash.build import (
    BuildPipeline,
    BuildError,
    ToolMissingError,
    assembly_preview,
    generated_files,
    image_path,
)
from stcflash.device_locator import DeviceLocator
from stcflash.flash_session import (
    FlashConfig,
    FlashSession,
    FlashError,
    DeviceNotFoundError,
    CancelledError,
    UploadFailedError,
    StaleArtifactError,
)
from stcflash.logging_utils import STATUS_START, STATUS_END
from stcflash.toolchain import Toolchain
from stcflash.utils import target_stem

logger = logging.getLogger("Stcflash")

OUTPUT_TAIL_LINES = 15


@contextmanager
def interrupt_cancels(session: FlashSession):
    """Routes SIGINT to session.cancel() for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGINT, lambda signum, frame: session.cancel())
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


class Orchestrator:
    """
    Composes the build pipeline, device locator and flash session into the
    named stcflash operations. Every operation returns True on success;
    failures are logged with one message per failure kind and return False.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        toolchain=None,
        locator: Optional[DeviceLocator] = None,
        directory=None,
        show_progress: Optional[bool] = None,
    ):
        self.config = config_manager
        self.toolchain = toolchain or Toolchain.from_config(config_manager)
        self.locator = locator or DeviceLocator()
        self.directory = Path(directory) if directory else Path(os.getcwd())
        if show_progress is None:
            show_progress = sys.stdout.isatty()
        self.show_progress = show_progress

    def source_path(self, target=TARGET) -> Path:
        return self.directory / f"{target_stem(target)}{SOURCE_SUFFIX}"

    def _pipeline(self) -> BuildPipeline:
        return BuildPipeline(self.toolchain)

    def _report_build_error(self, error: BuildError):
        if isinstance(error, ToolMissingError):
            logger.error(f"{error}")
            return
        logger.error(f"Build failed at {error.stage} stage: {error}")
        lines = error.output.splitlines()[-OUTPUT_TAIL_LINES:]
        for line in lines:
            logger.error(f"  {line}")

    def _report_flash_error(self, error: FlashError, flash_config: FlashConfig):
        if isinstance(error, DeviceNotFoundError):
            logger.error(f"Serial device {error.port} not found.")
            logger.error(
                "Check the adapter is plugged in, or run 'stcflash list-devices'."
            )
        elif isinstance(error, CancelledError):
            logger.warning(f"Upload cancelled while {error.state.value}.")
        elif isinstance(error, StaleArtifactError):
            logger.error(
                f"{error.artifact.source_path.name} changed after the build, "
                "upload aborted. Run the upload again to rebuild."
            )
        elif isinstance(error, UploadFailedError):
            logger.error(
                f"Upload via {error.port} at {flash_config.baud_rate} baud failed "
                f"({error.exit_info})."
            )
            for line in error.output.splitlines()[-OUTPUT_TAIL_LINES:]:
                logger.error(f"  {line}")
            logger.error("Make sure the board was power-cycled after the prompt.")
        else:
            logger.error(f"Upload failed: {error}")

    def _log_asm_preview(self, source: Path, lines=ASM_PREVIEW_LINES) -> bool:
        preview = assembly_preview(source, lines)
        if preview is None:
            logger.error(
                f"No assembly file found for {source.name}. Run 'stcflash build' first."
            )
            return False
        asm_name = source.with_suffix(ASM_SUFFIX).name
        logger.info("")
        logger.info(f"=== First {lines} lines of {asm_name} ===")
        logger.info("")
        for line in preview:
            logger.info(f"    {line}")
        logger.info("")
        logger.info(f"[...] (Full assembly in {asm_name} and {source.stem}.lst)")
        return True

    def build(self, target=TARGET, show_asm=False) -> bool:
        source = self.source_path(target)
        try:
            self._pipeline().build(source)
        except BuildError as e:
            self._report_build_error(e)
            return False
        if show_asm:
            self._log_asm_preview(source)
        return True

    def make_flash_config(
        self,
        artifact,
        port=None,
        baud=None,
        settle_delay=None,
        poll_interval=None,
        protocol=None,
    ) -> FlashConfig:
        """Resolves each setting from the argument, then the config file, then the default."""
        if baud is None:
            baud = int(self.config.get_float(CONFIG_BAUD, BAUD_RATE))
        if settle_delay is None:
            settle_delay = self.config.get_float(CONFIG_SETTLE_DELAY, RESET_SETTLE_DELAY)
            if settle_delay < 0:
                logger.warning(
                    f"Ignoring negative {CONFIG_SETTLE_DELAY} {settle_delay}, "
                    f"using {RESET_SETTLE_DELAY}s."
                )
                settle_delay = RESET_SETTLE_DELAY
        if poll_interval is None:
            poll_interval = self.config.get_float(CONFIG_POLL_INTERVAL, POLL_INTERVAL)
            if poll_interval <= 0:
                logger.warning(
                    f"Ignoring non-positive {CONFIG_POLL_INTERVAL} {poll_interval}, "
                    f"using {POLL_INTERVAL}s."
                )
                poll_interval = POLL_INTERVAL
        if protocol is None:
            protocol = self.config.get_value(CONFIG_PROTOCOL, PROTOCOL)
        return FlashConfig(
            artifact=artifact,
            baud_rate=int(baud),
            port=port,
            protocol=protocol,
            poll_interval=float(poll_interval),
            settle_delay=float(settle_delay),
        )

    def upload(
        self,
        target=TARGET,
        port=None,
        baud=None,
        settle_delay=None,
        poll_interval=None,
        protocol=None,
    ) -> bool:
        """
        Builds target and flashes it. With port None the device is auto-detected,
        waiting for one to be plugged in if necessary.
        """
        missing = self.toolchain.missing(STCGAL)
        if missing:
            logger.error(f"{STCGAL} not found. {INSTALL_HINTS[STCGAL]}")
            return False

        source = self.source_path(target)
        try:
            artifact = self._pipeline().build(source)
        except BuildError as e:
            self._report_build_error(e)
            return False

        flash_config = self.make_flash_config(
            artifact,
            port=port,
            baud=baud,
            settle_delay=settle_delay,
            poll_interval=poll_interval,
            protocol=protocol,
        )
        session = FlashSession(
            flash_config,
            self.toolchain,
            locator=self.locator,
            show_progress=self.show_progress,
        )
        try:
            with interrupt_cancels(session):
                session.run()
        except FlashError as e:
            self._report_flash_error(e, flash_config)
            return False

        self.config.set_value(CONFIG_PORT, session.last_port)
        return True

    def list_devices(self) -> bool:
        devices = self.locator.scan()
        logger.info("Detected serial ports:")
        if not devices:
            logger.info("   (none found)")
            return True
        for device in devices:
            description = self.locator.describe(device)
            logger.info(f"   {device}  {description}".rstrip())
        return True

    def clean(self, target=TARGET) -> bool:
        """Removes the files a build of target generates and nothing else."""
        source = self.source_path(target)
        removed = 0
        for path in generated_files(source):
            try:
                path.unlink()
                removed += 1
                logger.debug(f"Removed {path.name}")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Unable to remove {path}: {e}")
                return False
        logger.info(f"Clean complete, {removed} file(s) removed.")
        return True

    def info(self, target=TARGET) -> bool:
        source = self.source_path(target)
        port = self.locator.locate()
        baud = int(self.config.get_float(CONFIG_BAUD, BAUD_RATE))
        settle_delay = self.config.get_float(CONFIG_SETTLE_DELAY, RESET_SETTLE_DELAY)
        last_port = self.config.get_value(CONFIG_PORT)

        logger.info("")
        logger.info("Build Configuration")
        logger.info("===================")
        logger.info(f"Target:        {source.stem}")
        logger.info(f"Source:        {source}")
        logger.info(f"Output:        {image_path(source).name}")
        logger.info(f"Compiler:      {self.toolchain.locate(SDCC) or SDCC + ' (not found)'}")
        logger.info(f"Packager:      {self.toolchain.locate(PACKIHX) or PACKIHX + ' (not found)'}")
        logger.info(f"Upload tool:   {self.toolchain.locate(STCGAL) or STCGAL + ' (not found)'}")
        logger.info(f"Protocol:      {self.config.get_value(CONFIG_PROTOCOL, PROTOCOL)}")
        logger.info(f"Baud rate:     {baud}")
        logger.info(f"Settle delay:  {settle_delay}s")
        logger.info(f"Serial port:   {port or '(none detected)'}")
        if last_port:
            logger.info(f"Last upload:   {last_port}")
        logger.info("")
        return True

    def check_tools(self) -> bool:
        logger.info("Checking tools...", extra={"status": STATUS_START})
        found = {tool: self.toolchain.locate(tool) for tool in (SDCC, PACKIHX, STCGAL)}
        missing = [tool for tool, path in found.items() if not path]
        logger.info(
            f"Checking tools... {'OK' if not missing else 'Failed'}",
            extra={"status": STATUS_END},
        )

        for tool, path in found.items():
            if path:
                logger.info(f"  ✓ {tool}: {path}")
            else:
                logger.error(f"  ✗ {tool} not found. {INSTALL_HINTS[tool]}")

        for device in self.locator.scan():
            if not self.locator.accessible(device):
                logger.warning(
                    f"No read/write access to {device}, "
                    "your user may need to be in the 'dialout' group."
                )
        return not missing

    def show_asm(self, target=TARGET, lines=ASM_PREVIEW_LINES) -> bool:
        return self._log_asm_preview(self.source_path(target), lines)

    def configure(self, values: dict, unset=(), show=False) -> bool:
        """Stores every non-None entry of values, removes the keys in unset, and optionally logs the result."""
        for key, value in values.items():
            if value is not None:
                self.config.set_value(key, value)
                logger.info(f"Set {key} = {value}")
        for key in unset:
            self.config.remove_key(key)
            logger.info(f"Removed {key}")
        if show:
            settings = self.config.list_all()
            if not settings:
                logger.info("No configuration values set.")
            for key, value in settings.items():
                logger.info(f"{key}: {value}")
        return True
