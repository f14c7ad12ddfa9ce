"""External tool runner and hdiutil command composition.

This module handles:
- Running external tools (hdiutil, osascript, lipo) with subprocess
- Capturing exit status plus stdout/stderr text
- Composing hdiutil create/attach/detach/convert commands

Every external call in the build pipeline goes through run_tool().
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Exit code reported when a tool could not be started or timed out
LAUNCH_FAILED_EXIT_CODE = -1


@dataclass
class ToolResult:
    """Result of an external tool invocation.

    Attributes:
        exit_code: Process exit code (-1 if the tool never ran to completion).
        stdout: Captured standard output.
        stderr: Captured standard error.
        command: The command that was executed, shell-quoted.
    """

    exit_code: int
    stdout: str
    stderr: str
    command: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        """Concatenation of stdout and stderr."""
        return self.stdout + self.stderr

    def output_lines(self) -> list[str]:
        """Non-empty trimmed stream texts, stdout first."""
        return [s.strip() for s in (self.stdout, self.stderr) if s.strip()]


ToolRunner = Callable[..., ToolResult]


def run_tool(
    cmd: list[str],
    timeout: int | None = None,
    input_text: str | None = None,
) -> ToolResult:
    """Run an external command and collect exit status and output.

    Never raises for tool failures: launch errors and timeouts are reported
    as exit code -1 with a descriptive stderr so callers classify them the
    same way as a nonzero exit.

    Args:
        cmd: Command as list of strings.
        timeout: Timeout in seconds (None = no timeout).
        input_text: Optional text passed on stdin.

    Returns:
        ToolResult with exit code and captured streams.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            input=input_text,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        message = f"{Path(cmd[0]).name} timed out after {timeout} seconds"
        logger.error(message)
        return ToolResult(LAUNCH_FAILED_EXIT_CODE, "", message, cmd_str)
    except OSError as e:
        message = f"Failed to launch {Path(cmd[0]).name}: {e}"
        logger.error(message)
        return ToolResult(LAUNCH_FAILED_EXIT_CODE, "", message, cmd_str)

    if result.returncode != 0:
        logger.error("%s exited with code %d", cmd_str, result.returncode)

    return ToolResult(
        exit_code=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        command=cmd_str,
    )


def compose_create_command(
    hdiutil: str,
    source_dir: Path,
    volume_name: str,
    output: Path,
    image_format: str,
    filesystem: str | None = None,
    size_mb: int | None = None,
) -> list[str]:
    """Compose `hdiutil create` for a source folder.

    Args:
        hdiutil: Path to hdiutil.
        source_dir: Folder whose contents become the volume.
        volume_name: Volume display name.
        output: Image path to write (overwritten if present).
        image_format: hdiutil format, e.g. UDZO or UDRW.
        filesystem: Optional filesystem type (read-write images).
        size_mb: Optional explicit image size in megabytes.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        hdiutil,
        "create",
        "-volname",
        volume_name,
        "-srcfolder",
        str(source_dir),
        "-ov",
        "-format",
        image_format,
    ]
    if filesystem:
        cmd.extend(["-fs", filesystem])
    if size_mb is not None:
        cmd.extend(["-size", f"{size_mb}m"])
    cmd.append(str(output))
    return cmd


def compose_attach_command(hdiutil: str, image: Path, mount_point: Path) -> list[str]:
    """Compose `hdiutil attach` for a read-write image at a fixed mount point."""
    return [
        hdiutil,
        "attach",
        str(image),
        "-readwrite",
        "-noverify",
        "-noautoopen",
        "-mountpoint",
        str(mount_point),
    ]


def compose_detach_command(
    hdiutil: str, mount_point: Path, force: bool = False
) -> list[str]:
    cmd = [hdiutil, "detach", str(mount_point)]
    if force:
        cmd.append("-force")
    return cmd


def compose_convert_command(
    hdiutil: str,
    image: Path,
    output: Path,
    image_format: str,
    zlib_level: int | None = None,
) -> list[str]:
    """Compose `hdiutil convert` from an intermediate to the final format."""
    cmd = [hdiutil, "convert", str(image), "-format", image_format]
    if zlib_level is not None:
        cmd.extend(["-imagekey", f"zlib-level={zlib_level}"])
    cmd.extend(["-ov", "-o", str(output)])
    return cmd


__all__ = [
    "LAUNCH_FAILED_EXIT_CODE",
    "ToolResult",
    "ToolRunner",
    "compose_attach_command",
    "compose_convert_command",
    "compose_create_command",
    "compose_detach_command",
    "run_tool",
]
