#!/usr/bin/env python
"""
Project Name: stcflash
Copyright (c) 2024 Henrik Olsson

Permission is hereby granted under MIT license.

Main CLI Handler for stcflash
"""

import sys
import argparse

import signal
import logging
import platform
import argcomplete
from argcomplete.completers import BaseCompleter

from stcflash.config import ConfigManager
from stcflash.constants import *
from stcflash import __version__ as version
from stcflash.device_locator import DeviceLocator
from stcflash.logging_utils import setup_logging
from stcflash.orchestrator import Orchestrator

logger = logging.getLogger("Stcflash")

CONFIG_KEYS = {
    "baud": CONFIG_BAUD,
    "settle_delay": CONFIG_SETTLE_DELAY,
    "poll_interval": CONFIG_POLL_INTERVAL,
    "protocol": CONFIG_PROTOCOL,
    "sdcc_path": CONFIG_SDCC_PATH,
    "packihx_path": CONFIG_PACKIHX_PATH,
    "stcgal_path": CONFIG_STCGAL_PATH,
}


def positive_float(value):
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def non_negative_float(value):
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {value}")
    return number


class DeviceCompleter(BaseCompleter):
    def __call__(self, prefix, **kwargs):
        return [d for d in DeviceLocator().scan() if d.startswith(prefix)]


def add_port_arg(parser, required=False):
    port = parser.add_argument(
        "-p",
        "--port",
        type=str,
        required=required,
        help="Serial port, e.g. /dev/ttyUSB0"
        + ("" if required else " (optional), auto-detected if omitted."),
    )
    port.completer = DeviceCompleter()


def add_upload_tuning_args(parser):
    parser.add_argument(
        "-b",
        "--baud",
        type=int,
        help=f"Upload baud rate (optional), defaults to {BAUD_RATE}.",
    )
    parser.add_argument(
        "--settle-delay",
        type=non_negative_float,
        help=f"Seconds to wait after the reset prompt, defaults to {RESET_SETTLE_DELAY}.",
    )
    parser.add_argument(
        "--protocol",
        type=str,
        help=f"stcgal protocol (optional), defaults to '{PROTOCOL}'.",
    )


def create_build_args(parser):
    build_parser = parser.add_parser(
        "build", help="Compiles the target and packs it into a HEX image."
    )
    build_parser.add_argument(
        "--show-asm",
        action="store_true",
        help=f"Print the first {ASM_PREVIEW_LINES} lines of the generated assembly.",
    )


def create_upload_args(parser):
    upload_parser = parser.add_parser(
        "upload",
        help="Builds and uploads, waiting for a serial device if none is plugged in.",
    )
    add_port_arg(upload_parser)
    add_upload_tuning_args(upload_parser)
    upload_parser.add_argument(
        "--poll-interval",
        type=positive_float,
        help=f"Seconds between device scans while waiting, defaults to {POLL_INTERVAL}.",
    )

    manual_parser = parser.add_parser(
        "upload-manual", help="Builds and uploads to the given serial port."
    )
    add_port_arg(manual_parser, required=True)
    add_upload_tuning_args(manual_parser)


def create_asm_args(parser):
    asm_parser = parser.add_parser(
        "asm", help="Prints the beginning of the generated assembly."
    )
    asm_parser.add_argument(
        "-n",
        "--lines",
        type=int,
        default=ASM_PREVIEW_LINES,
        help=f"Number of lines to print, defaults to {ASM_PREVIEW_LINES}.",
    )


def create_config_args(parser):
    config_parser = parser.add_parser("config", help="Handles CONFIGURATION values.")
    config_parser.add_argument("--baud", type=int, help="Default upload baud rate.")
    config_parser.add_argument(
        "--settle-delay",
        type=non_negative_float,
        help="Seconds to wait after the reset prompt.",
    )
    config_parser.add_argument(
        "--poll-interval", type=positive_float, help="Seconds between device scans."
    )
    config_parser.add_argument("--protocol", type=str, help="stcgal protocol.")
    config_parser.add_argument("--sdcc-path", type=str, help="Path to sdcc.")
    config_parser.add_argument("--packihx-path", type=str, help="Path to packihx.")
    config_parser.add_argument("--stcgal-path", type=str, help="Path to stcgal.")
    config_parser.add_argument(
        "--unset",
        action="append",
        default=[],
        choices=sorted(CONFIG_KEYS.values()) + [CONFIG_PORT],
        help="Remove a stored value.",
    )
    config_parser.add_argument(
        "-l", "--list", action="store_true", help="Show all stored values."
    )


def create_parser():
    parser = argparse.ArgumentParser(
        prog="stcflash",
        description="Build and upload firmware for STC89C52 microcontrollers with sdcc and stcgal.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose mode"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"stcflash version: {version}",
        help="Show the stcflash version and exit.",
    )
    parser.add_argument(
        "-t",
        "--target",
        type=str,
        default=TARGET,
        help=f"Target name, the source is TARGET.c (optional), defaults to '{TARGET}'.",
    )
    parser.add_argument(
        "-d",
        "--directory",
        type=str,
        help="Project directory (optional), defaults to the current directory.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_build_args(subparsers)
    create_upload_args(subparsers)
    subparsers.add_parser("list-devices", help="Shows all detected serial devices.")
    subparsers.add_parser("clean", help="Removes all build outputs of the target.")
    subparsers.add_parser("info", help="Displays the build configuration.")
    subparsers.add_parser(
        "check-tools", help="Verifies all required tools are installed."
    )
    create_asm_args(subparsers)
    create_config_args(subparsers)
    subparsers.add_parser("help", help="Shows this help message.")
    return parser


def main(argv=None):
    signal.signal(signal.SIGINT, exit_gracefully)

    parser = create_parser()
    argcomplete.autocomplete(parser)

    if argv is None:
        argv = sys.argv[1:]
    if len(argv) == 0:
        parser.print_help()
        return 1

    args = parser.parse_args(argv)

    if args.command == "help":
        parser.print_help()
        return 0

    setup_logging(args.verbose)
    config_manager = ConfigManager()
    orchestrator = Orchestrator(config_manager, directory=args.directory)

    logger.debug(f"stcflash version: {version}")
    logger.debug(f"Running on Python: {platform.python_version()}")
    logger.debug(f"Platform: {platform.system()} {platform.release()}")

    return dispatch(orchestrator, args)


def dispatch(orchestrator, args):
    if args.command == "build":
        result = orchestrator.build(args.target, show_asm=args.show_asm)
    elif args.command in ("upload", "upload-manual"):
        result = orchestrator.upload(
            args.target,
            port=args.port,
            baud=args.baud,
            settle_delay=args.settle_delay,
            poll_interval=getattr(args, "poll_interval", None),
            protocol=args.protocol,
        )
    elif args.command == "list-devices":
        result = orchestrator.list_devices()
    elif args.command == "clean":
        result = orchestrator.clean(args.target)
    elif args.command == "info":
        result = orchestrator.info(args.target)
    elif args.command == "check-tools":
        result = orchestrator.check_tools()
    elif args.command == "asm":
        result = orchestrator.show_asm(args.target, lines=args.lines)
    elif args.command == "config":
        values = {key: getattr(args, attr) for attr, key in CONFIG_KEYS.items()}
        result = orchestrator.configure(values, unset=args.unset, show=args.list)
    else:
        return 1
    return 0 if result else 1


def exit_gracefully(signum, frame):
    logger.warning("\nProcess interrupted.")
    sys.exit(1)


if __name__ == "__main__":
    if sys.version_info < (3, 9):
        sys.exit(
            "Error: stcflash requires Python 3.9 or higher. Please update your Python version."
        )

    sys.exit(main())
