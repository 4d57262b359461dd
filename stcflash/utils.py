"""
Project Name: stcflash
Copyright (c) 2024 Henrik Olsson

Permission is hereby granted under MIT license.

Utility Functions Module
"""

from pathlib import Path


def format_size(size_in_bytes):
    """
    Formats a file size in bytes into a human-readable string.

    Args:
        size_in_bytes (int): File size in bytes.

    Returns:
        str: Human-readable file size.
    """
    for unit in ["B", "KB", "MB", "GB"]:
        if size_in_bytes < 1024:
            return f"{size_in_bytes:.2f} {unit}"
        size_in_bytes /= 1024
    return f"{size_in_bytes:.2f} TB"


def time_formatter(seconds):
    """
    Formats a duration in seconds into a human-readable format.

    Args:
        seconds (float): Time in seconds.

    Returns:
        str: Formatted time string (e.g., "1m 20s").
    """
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    return f"{h}h {m}m {s}s" if h else f"{m}m {s}s" if m else f"{s}s"


def target_stem(target):
    """
    Returns the bare target name, accepting "blink", "blink.c" or a path.

    Args:
        target (str): Target name or source file name.

    Returns:
        str: The name the build artifacts are derived from.
    """
    name = Path(target).name
    return name[:-2] if name.endswith(".c") else name
