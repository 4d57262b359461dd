"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Build Pipeline Module
"""

import os
import time
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from stcflash.constants import *
from stcflash.utils import format_size

logger = logging.getLogger("Build")

STAGE_PRECHECK = "precheck"
STAGE_COMPILE = "compile"
STAGE_PACKAGE = "package"


class BuildError(Exception):
    """A build stage failed. Carries the stage and the external tool's exit info."""

    def __init__(self, stage, message, returncode=None, timed_out=False, output=""):
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode
        self.timed_out = timed_out
        self.output = output

    @classmethod
    def from_result(cls, stage, message, result):
        return cls(
            stage,
            f"{message} ({result.exit_info})",
            returncode=result.returncode,
            timed_out=result.timed_out,
            output=result.output,
        )

    @property
    def exit_info(self) -> str:
        if self.timed_out:
            return "timed out"
        if self.returncode is None:
            return "not run"
        return f"exit code {self.returncode}"


class ToolMissingError(BuildError):
    """A required external tool could not be found. Nothing has been run."""

    def __init__(self, tool, hint=""):
        message = f"{tool} not found."
        if hint:
            message += f" {hint}"
        super().__init__(STAGE_PRECHECK, message)
        self.tool = tool
        self.hint = hint


def intermediate_path(source: Path) -> Path:
    return source.with_suffix(INTERMEDIATE_SUFFIX)


def image_path(source: Path) -> Path:
    return source.with_suffix(IMAGE_SUFFIX)


def partial_image_path(source: Path) -> Path:
    return source.parent / f"{source.stem}{PARTIAL_IMAGE_SUFFIX}"


def generated_files(source: Path) -> list:
    """Every file a build of source may leave behind."""
    files = [source.with_suffix(suffix) for suffix in GENERATED_SUFFIXES]
    files.append(partial_image_path(source))
    return files


@dataclass(frozen=True)
class BuildArtifact:
    """A flashable image produced by a successful build."""

    source_path: Path
    ihx_path: Path
    hex_path: Path
    source_mtime_ns: int
    built_at: float
    size: int

    def is_current(self) -> bool:
        """
        True while the image still exists and the source has not been
        modified since the build started.
        """
        try:
            return (
                self.hex_path.is_file()
                and self.source_path.stat().st_mtime_ns == self.source_mtime_ns
            )
        except OSError:
            return False


def _remove(*paths):
    for path in paths:
        try:
            path.unlink()
            logger.debug(f"Removed {path}")
        except FileNotFoundError:
            pass


class BuildPipeline:
    """
    Compiles a C source with sdcc and packs the result into an Intel HEX
    image with packihx. The previous image is removed before compiling, and
    the new one is moved into place only once it is complete, so a failed or
    interrupted build never leaves a flashable image behind.
    """

    def __init__(
        self,
        toolchain,
        code_size: int = CODE_SIZE,
        compile_timeout: float = COMPILE_TIMEOUT,
        package_timeout: float = PACKAGE_TIMEOUT,
    ):
        self.toolchain = toolchain
        self.code_size = code_size
        self.compile_timeout = compile_timeout
        self.package_timeout = package_timeout

    def precheck(self, source: Path):
        missing = self.toolchain.missing(SDCC, PACKIHX)
        if missing:
            tool = missing[0]
            raise ToolMissingError(tool, INSTALL_HINTS.get(tool, ""))
        if not source.is_file():
            raise BuildError(STAGE_PRECHECK, f"Source file {source} not found.")

    def compile(self, source: Path) -> Path:
        """Runs the compile stage and returns the intermediate image path."""
        ihx_file = intermediate_path(source)
        _remove(ihx_file, image_path(source), partial_image_path(source))

        logger.info(f"Compiling {source.name} ...")
        result = self.toolchain.compile(
            source, code_size=self.code_size, timeout=self.compile_timeout
        )
        if not result.ok:
            raise BuildError.from_result(
                STAGE_COMPILE, f"Compiling {source.name} failed", result
            )
        for line in result.output.splitlines():
            logger.debug(f"  {line}")
        if not ihx_file.is_file():
            raise BuildError(
                STAGE_COMPILE,
                f"Compiler finished but {ihx_file.name} was not produced.",
                returncode=result.returncode,
                output=result.output,
            )
        return ihx_file

    def package(self, source: Path) -> Path:
        """Runs the package stage on the intermediate image of source."""
        ihx_file = intermediate_path(source)
        hex_file = image_path(source)
        part_file = partial_image_path(source)

        if not ihx_file.is_file():
            raise BuildError(
                STAGE_PACKAGE,
                f"Intermediate image {ihx_file.name} is missing, compile first.",
            )
        try:
            if ihx_file.stat().st_mtime_ns < source.stat().st_mtime_ns:
                raise BuildError(
                    STAGE_PACKAGE,
                    f"Intermediate image {ihx_file.name} is older than {source.name}, compile first.",
                )
        except FileNotFoundError:
            raise BuildError(STAGE_PACKAGE, f"Source file {source} not found.")

        logger.info(f"Packing to {hex_file.name} ...")
        result = self.toolchain.package(ihx_file, timeout=self.package_timeout)
        if not result.ok:
            raise BuildError.from_result(
                STAGE_PACKAGE, f"Packing {ihx_file.name} failed", result
            )

        try:
            part_file.write_bytes(result.stdout)
            os.replace(part_file, hex_file)
        except OSError as e:
            _remove(part_file)
            raise BuildError(STAGE_PACKAGE, f"Unable to write {hex_file}: {e}")
        return hex_file

    def build(self, source) -> BuildArtifact:
        """
        Runs precheck, compile and package for source.
        Returns the artifact, or raises BuildError naming the failed stage.
        """
        source = Path(source)
        start_time = time.time()
        self.precheck(source)
        source_mtime_ns = source.stat().st_mtime_ns

        ihx_file = self.compile(source)
        hex_file = self.package(source)

        artifact = BuildArtifact(
            source_path=source,
            ihx_path=ihx_file,
            hex_path=hex_file,
            source_mtime_ns=source_mtime_ns,
            built_at=time.time(),
            size=hex_file.stat().st_size,
        )
        logger.info(
            f"Build complete → {hex_file.name} ({format_size(artifact.size)}, "
            f"{time.time() - start_time:.2f}s)"
        )
        return artifact


def assembly_preview(source: Path, lines: int = ASM_PREVIEW_LINES) -> Optional[list]:
    """Returns the first lines of the generated assembly listing, None if there is none."""
    asm_file = source.with_suffix(ASM_SUFFIX)
    try:
        with open(asm_file, "r", errors="replace") as f:
            preview = []
            for line in f:
                if len(preview) >= lines:
                    break
                preview.append(line.rstrip("\n"))
            return preview
    except FileNotFoundError:
        return None
