"""Bundle metadata extraction.

This module handles:
- Reading Contents/Info.plist with plistlib
- Detecting executable architectures by parsing `lipo -info` output
- Rendering the system requirements document shipped in the image
"""

from __future__ import annotations

import logging
import plistlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apptodmg.builds.runner import ToolRunner, run_tool

logger = logging.getLogger(__name__)

ARM64 = "arm64"
X86_64 = "x86_64"

# Markers in `lipo -info` output
_FAT_MARKER = "are:"
_THIN_MARKER = "is architecture:"


@dataclass
class AppMetadata:
    """Metadata read from an application bundle.

    Attributes:
        app_name: Bundle name without extension.
        bundle_identifier: CFBundleIdentifier.
        bundle_version: CFBundleShortVersionString.
        build_number: CFBundleVersion.
        minimum_system_version: LSMinimumSystemVersion.
        executable_name: CFBundleExecutable.
        architectures: Instruction set names, e.g. ["x86_64", "arm64"].
    """

    app_name: str
    bundle_identifier: str | None = None
    bundle_version: str | None = None
    build_number: str | None = None
    minimum_system_version: str | None = None
    executable_name: str | None = None
    architectures: list[str] = field(default_factory=list)

    @property
    def architecture_description(self) -> str:
        if not self.architectures:
            return "Unknown"
        if ARM64 in self.architectures and X86_64 in self.architectures:
            return "Universal (Apple Silicon & Intel)"
        if ARM64 in self.architectures:
            return "Apple Silicon"
        if X86_64 in self.architectures:
            return "Intel"
        return ", ".join(self.architectures)

    @property
    def short_architecture_description(self) -> str:
        if ARM64 in self.architectures and X86_64 in self.architectures:
            return "Universal"
        if ARM64 in self.architectures:
            return "Apple Silicon"
        if X86_64 in self.architectures:
            return "Intel"
        return self.architectures[0] if self.architectures else "Unknown"

    def generate_system_requirements_text(self) -> str:
        """Render the system requirements document."""
        lines = ["System Requirements", "==================", ""]

        if self.minimum_system_version is not None:
            lines.append(f"Minimum macOS Version: {self.minimum_system_version}")

        lines.append(f"Architecture: {self.architecture_description}")

        if self.bundle_version is not None:
            lines.append("")
            lines.append(f"App Version: {self.bundle_version}")

        if self.build_number is not None and self.build_number != self.bundle_version:
            lines.append(f"Build: {self.build_number}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_name": self.app_name,
            "bundle_identifier": self.bundle_identifier,
            "bundle_version": self.bundle_version,
            "build_number": self.build_number,
            "minimum_system_version": self.minimum_system_version,
            "executable_name": self.executable_name,
            "architectures": list(self.architectures),
            "architecture_description": self.architecture_description,
        }


def parse_architectures(output: str) -> list[str]:
    """Parse `lipo -info` output into architecture names.

    Handles both report shapes:
        Architectures in the fat file: /path are: x86_64 arm64
        Non-fat file: /path is architecture: arm64

    Args:
        output: lipo stdout.

    Returns:
        Architecture names, empty if the output is not recognised.
    """
    if _FAT_MARKER in output:
        return output.rsplit(_FAT_MARKER, 1)[1].split()
    if _THIN_MARKER in output:
        arch = output.rsplit(_THIN_MARKER, 1)[1].strip()
        return [arch] if arch else []
    return []


def detect_architectures(
    executable: Path,
    lipo: str = "/usr/bin/lipo",
    runner: ToolRunner = run_tool,
    timeout: int | None = 60,
) -> list[str]:
    """Detect the architectures an executable was built for.

    Whatever stdout lipo produced is parsed even when it exits nonzero; a
    launch failure yields an empty list. Architecture detection is
    informational and never fails a build.
    """
    result = runner([lipo, "-info", str(executable)], timeout=timeout)
    if not result.success:
        logger.warning(
            "lipo exited with code %d for %s: %s",
            result.exit_code,
            executable,
            result.stderr.strip(),
        )
    return parse_architectures(result.stdout)


def read_info_plist(app_path: Path) -> dict[str, Any] | None:
    """Load Contents/Info.plist, or None if missing or malformed."""
    plist_path = app_path / "Contents" / "Info.plist"
    try:
        with plist_path.open("rb") as f:
            data = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ValueError) as e:
        logger.debug("Cannot read %s: %s", plist_path, e)
        return None
    if not isinstance(data, dict):
        return None
    return data


def _string_value(plist: dict[str, Any], key: str) -> str | None:
    value = plist.get(key)
    return value if isinstance(value, str) else None


def extract_metadata(
    app_path: Path,
    lipo: str = "/usr/bin/lipo",
    runner: ToolRunner = run_tool,
) -> AppMetadata | None:
    """Extract metadata from an application bundle.

    Args:
        app_path: Bundle directory.
        lipo: Path to lipo.
        runner: Tool runner used for lipo.

    Returns:
        AppMetadata, or None if the bundle has no readable Info.plist.
    """
    plist = read_info_plist(app_path)
    if plist is None:
        return None

    executable_name = _string_value(plist, "CFBundleExecutable")
    architectures: list[str] = []
    if executable_name:
        executable = app_path / "Contents" / "MacOS" / executable_name
        architectures = detect_architectures(executable, lipo=lipo, runner=runner)

    return AppMetadata(
        app_name=app_path.stem,
        bundle_identifier=_string_value(plist, "CFBundleIdentifier"),
        bundle_version=_string_value(plist, "CFBundleShortVersionString"),
        build_number=_string_value(plist, "CFBundleVersion"),
        minimum_system_version=_string_value(plist, "LSMinimumSystemVersion"),
        executable_name=executable_name,
        architectures=architectures,
    )


__all__ = [
    "AppMetadata",
    "detect_architectures",
    "extract_metadata",
    "parse_architectures",
    "read_info_plist",
]
