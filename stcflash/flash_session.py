"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Flash Session Module
"""

import enum
import time
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from stcflash.constants import *
from stcflash.build import BuildArtifact
from stcflash.device_locator import DeviceLocator
from stcflash.logging_utils import STATUS_START, STATUS_UPDATE, STATUS_END
from stcflash.utils import time_formatter

logger = logging.getLogger("Flash")

SETTLE_TICK = 0.1
bar_format = "{l_bar}{bar}| {remaining}"


class SessionState(enum.Enum):
    IDLE = "idle"
    LOCATING = "locating"
    POLLING = "polling"
    WAITING_FOR_RESET = "waiting for reset"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"


class SessionError(Exception):
    """The session was used in a way its lifecycle does not allow."""

    pass


class FlashError(Exception):
    """Base class for the ways an upload can end in FAILED."""

    pass


class DeviceNotFoundError(FlashError):
    def __init__(self, port):
        super().__init__(f"Serial device {port} not found.")
        self.port = port


class CancelledError(FlashError):
    def __init__(self, state: SessionState):
        super().__init__(f"Cancelled while {state.value}.")
        self.state = state


class UploadFailedError(FlashError):
    def __init__(self, port, result):
        super().__init__(f"Upload via {port} failed ({result.exit_info}).")
        self.port = port
        self.returncode = result.returncode
        self.timed_out = result.timed_out
        self.exit_info = result.exit_info
        self.output = result.output


class StaleArtifactError(FlashError):
    def __init__(self, artifact: BuildArtifact):
        super().__init__(
            f"{artifact.hex_path.name} is out of date with {artifact.source_path.name}."
        )
        self.artifact = artifact


@dataclass(frozen=True)
class FlashConfig:
    """Settings for one upload attempt. A port of None selects auto-detection."""

    artifact: BuildArtifact
    baud_rate: int = BAUD_RATE
    port: Optional[str] = None
    protocol: str = PROTOCOL
    poll_interval: float = POLL_INTERVAL
    settle_delay: float = RESET_SETTLE_DELAY
    upload_timeout: float = UPLOAD_TIMEOUT

    def __post_init__(self):
        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )
        if self.settle_delay < 0:
            raise ValueError(
                f"settle_delay must not be negative, got {self.settle_delay}"
            )

    @property
    def manual(self) -> bool:
        return self.port is not None


class FlashSession:
    """
    Runs one upload as an explicit state machine:

        IDLE -> LOCATING -> WAITING_FOR_RESET -> UPLOADING -> DONE

    In auto-detect mode an empty scan moves to POLLING, which rescans every
    poll_interval until an adapter shows up. A manual port that does not exist
    fails immediately. Every wait is on a cancellation event, so cancel() (or
    a KeyboardInterrupt) ends the session as FAILED within one interval.
    """

    def __init__(
        self,
        config: FlashConfig,
        flasher,
        locator: Optional[DeviceLocator] = None,
        show_progress: bool = False,
    ):
        self.config = config
        self.flasher = flasher
        self.locator = locator or DeviceLocator()
        self.show_progress = show_progress

        self.state = SessionState.IDLE
        self.history = [SessionState.IDLE]
        self.elapsed_wait = 0.0
        self.poll_count = 0
        self.last_port: Optional[str] = None
        self.error: Optional[FlashError] = None
        self._cancel_event = threading.Event()

    def cancel(self):
        """Requests cancellation, safe to call from a signal handler or another thread."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def finished(self) -> bool:
        return self.state in (SessionState.DONE, SessionState.FAILED)

    def _enter(self, state: SessionState):
        logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _sleep(self, seconds):
        if self._cancel_event.wait(max(seconds, 0)):
            raise CancelledError(self.state)

    def run(self) -> SessionState:
        """
        Drives the session to a terminal state.
        Returns SessionState.DONE, or raises the FlashError that ended it in FAILED.
        """
        if self.state is not SessionState.IDLE:
            raise SessionError("A flash session can only be run once.")

        try:
            port = self._locate()
            self._wait_for_reset(port)
            self._upload(port)
        except KeyboardInterrupt:
            error = CancelledError(self.state)
        except FlashError as e:
            error = e
        else:
            self._enter(SessionState.DONE)
            return self.state

        self.error = error
        self._enter(SessionState.FAILED)
        raise error

    def _locate(self) -> str:
        self._enter(SessionState.LOCATING)
        if self.config.manual:
            port = self.config.port
            if not self.locator.exists(port):
                raise DeviceNotFoundError(port)
            self.last_port = port
            logger.info(f"Using serial device: {port}")
            return port

        port = self.locator.locate()
        if port is not None:
            self.last_port = port
            logger.info(f"Detected serial device: {port}")
            return port

        logger.info("No USB serial device found.")
        logger.info(f"Looking for: {' or '.join(self.locator.patterns())}")
        logger.info(
            "Waiting for device, plug in your USB-to-serial adapter...",
            extra={"status": STATUS_START},
        )
        started = time.monotonic()
        while port is None:
            if self.cancelled:
                raise CancelledError(self.state)
            self._enter(SessionState.POLLING)
            self._sleep(self.config.poll_interval)
            self.poll_count += 1
            self.elapsed_wait = time.monotonic() - started
            logger.info(
                f"Waiting for device, plug in your USB-to-serial adapter... "
                f"{time_formatter(self.elapsed_wait)}",
                extra={"status": STATUS_UPDATE},
            )
            self._enter(SessionState.LOCATING)
            port = self.locator.locate()

        self.last_port = port
        logger.info(f"Detected device: {port}", extra={"status": STATUS_END})
        return port

    def _wait_for_reset(self, port: str):
        self._enter(SessionState.WAITING_FOR_RESET)
        logger.info("")
        logger.info("=================================================")
        logger.info(f" Ready to upload {self.config.artifact.hex_path.name} via {port}")
        logger.info(" Please RESET the board (cycle its power)")
        logger.info("=================================================")
        logger.info("")
        self._settle(self.config.settle_delay)

    def _settle(self, delay: float):
        """Waits delay seconds. The chip gives no ready signal, so this is unconditional."""
        if delay <= 0 or not self.show_progress:
            self._sleep(delay)
            return

        steps = max(1, int(round(delay / SETTLE_TICK)))
        with logging_redirect_tqdm():
            with tqdm.tqdm(total=steps, bar_format=bar_format, leave=False) as pbar:
                for _ in range(steps):
                    self._sleep(delay / steps)
                    pbar.update(1)

    def _upload(self, port: str):
        self._enter(SessionState.UPLOADING)
        artifact = self.config.artifact
        if not artifact.is_current():
            raise StaleArtifactError(artifact)

        logger.info(
            f"Uploading {artifact.hex_path.name} via {port} at {self.config.baud_rate} baud ..."
        )
        start_time = time.time()
        result = self.flasher.flash(
            port,
            self.config.baud_rate,
            artifact.hex_path,
            protocol=self.config.protocol,
            timeout=self.config.upload_timeout,
        )
        for line in result.output.splitlines():
            logger.debug(f"  {line}")

        if not result.ok:
            if self.cancelled:
                raise CancelledError(self.state)
            raise UploadFailedError(port, result)
        logger.info(f"Upload complete ({time.time() - start_time:.2f}s)")
