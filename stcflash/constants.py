"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.
"""

# Build defaults
TARGET = "blink"
SOURCE_SUFFIX = ".c"
CODE_SIZE = 8192
ASM_PREVIEW_LINES = 25

# Upload defaults
BAUD_RATE = 115200
PROTOCOL = "stc89"

# Device scan pattern classes, earlier classes win.
# Class A: USB-serial bridges (CH340, PL2303, FTDI), class B: CDC-ACM adapters.
DEVICE_PATTERN_CLASSES = (
    ("/dev/ttyUSB*",),
    ("/dev/ttyACM*",),
)

# Seconds
POLL_INTERVAL = 1.0
RESET_SETTLE_DELAY = 1.0
COMPILE_TIMEOUT = 120
PACKAGE_TIMEOUT = 30
UPLOAD_TIMEOUT = 120

# Tools
SDCC = "sdcc"
PACKIHX = "packihx"
STCGAL = "stcgal"

INSTALL_HINTS = {
    SDCC: "Install with: sudo apt install sdcc",
    PACKIHX: "Install with: sudo apt install sdcc",
    STCGAL: "Install with: pip3 install stcgal",
}

# Files produced by a build, named <target><suffix> next to the source
INTERMEDIATE_SUFFIX = ".ihx"
IMAGE_SUFFIX = ".hex"
ASM_SUFFIX = ".asm"
GENERATED_SUFFIXES = (
    ".asm",
    ".lst",
    ".rel",
    ".rst",
    ".sym",
    ".ihx",
    ".hex",
    ".map",
    ".lk",
    ".mem",
)
PARTIAL_IMAGE_SUFFIX = ".hex.part"

# Config keys
CONFIG_BAUD = "baud"
CONFIG_PORT = "port"
CONFIG_PROTOCOL = "protocol"
CONFIG_SETTLE_DELAY = "settle-delay"
CONFIG_POLL_INTERVAL = "poll-interval"
CONFIG_SDCC_PATH = "sdcc-path"
CONFIG_PACKIHX_PATH = "packihx-path"
CONFIG_STCGAL_PATH = "stcgal-path"
