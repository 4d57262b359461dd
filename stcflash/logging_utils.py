"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Custom Logging Utilities
"""

import logging
import sys

STATUS_START = "start"
STATUS_UPDATE = "update"
STATUS_END = "end"


class SingleLineStatusHandler(logging.StreamHandler):
    """
    A logging handler that can rewrite a single console line, used for
    "waiting for device" and tool check progress.
    It looks for a 'status' attribute in the log record's 'extra' dict.

    - status='start': prints the message without a newline.
    - status='update': rewrites the active line (using \\r), still without a newline.
    - status='end': rewrites the active line and terminates it.

    Normal log records first terminate any active status line.
    """

    def __init__(self, stream=None):
        super().__init__(stream or sys.stdout)
        self._status_line_active = False
        self._status_width = 0

    def emit(self, record):
        status = getattr(record, "status", None)
        if self._status_line_active and status is None:
            self.stream.write(self.terminator)
            self._status_line_active = False

        try:
            msg = self.format(record)

            if status == STATUS_START:
                if self._status_line_active:
                    self.stream.write(self.terminator)
                self.stream.write(msg)
                self._status_line_active = True
            elif status == STATUS_UPDATE:
                self.stream.write("\r" + self._pad(msg))
                self._status_line_active = True
            elif status == STATUS_END:
                self.stream.write("\r" + self._pad(msg) + self.terminator)
                self._status_line_active = False
            else:
                self.stream.write(msg + self.terminator)

            self._status_width = len(msg) if self._status_line_active else 0
            self.flush()
        except Exception:
            self.handleError(record)

    def _pad(self, msg):
        # Shorter updates must blank out the tail of the previous one
        return msg.ljust(self._status_width)


def setup_logging(verbose=False, stream=None):
    """Replaces the root logger handlers with a single status-aware console handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    handler = SingleLineStatusHandler(stream)
    if verbose:
        formatter = logging.Formatter(
            "%(levelname)-7s:%(name)-10s:%(lineno)4d: %(message)s"
        )
    else:
        formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)

    root_logger.handlers = [handler]
    return handler
