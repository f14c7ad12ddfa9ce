"""Staging area management for disk image builds.

This module handles:
- Creating an exclusively owned temporary staging directory
- Copying the application bundle into the image source tree
- Creating the install location shortcut
- Writing auxiliary text documents atomically
- Removing the staging directory on every exit path

The staging content/ directory is passed to hdiutil via -srcfolder.
"""

from __future__ import annotations

import codecs
import logging
import math
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from apptodmg.builds.models import ReadmeSource
from apptodmg.errors import (
    CopyFailedError,
    FileWriteFailedError,
    ShortcutFailedError,
    StagingError,
)
from apptodmg.types import ReadmeMode

logger = logging.getLogger(__name__)

STAGING_PREFIX = "AppToDmg-"
README_FILENAME = "README.txt"
SYSTEM_REQUIREMENTS_FILENAME = "System Requirements.txt"
# Allocation unit of HFS+ and APFS volumes
ALLOCATION_BLOCK_SIZE = 4096

_BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


@dataclass(frozen=True)
class StagingArea:
    """A temporary directory owned by a single build.

    Attributes:
        root: The AppToDmg-<uuid> directory itself.
    """

    root: Path

    @property
    def content_dir(self) -> Path:
        """Tree that becomes the volume contents."""
        return self.root / "content"

    @property
    def work_dir(self) -> Path:
        """Intermediate images and rendered artwork."""
        return self.root / "work"

    @property
    def mount_dir(self) -> Path:
        """Parent of mount points for this build."""
        return self.root / "mnt"

    def mount_point(self, volume_name: str) -> Path:
        """Mount point for a volume, always a direct child of mount_dir."""
        if volume_name in ("", ".", "..") or Path(volume_name).name != volume_name:
            raise ValueError(f"invalid volume name for a mount point: {volume_name!r}")
        return self.mount_dir / volume_name


def create_staging_area(tmp_dir: Path | None = None) -> StagingArea:
    """Allocate a fresh, uniquely named staging directory.

    Args:
        tmp_dir: Parent directory (system temp dir if None).

    Returns:
        StagingArea with its subdirectories created.

    Raises:
        StagingError: If the directory cannot be created.
    """
    parent = Path(tmp_dir) if tmp_dir is not None else Path(tempfile.gettempdir())
    root = parent / f"{STAGING_PREFIX}{uuid.uuid4()}"
    area = StagingArea(root=root)

    try:
        root.mkdir(parents=True, exist_ok=False)
        area.content_dir.mkdir()
        area.work_dir.mkdir()
        area.mount_dir.mkdir()
    except OSError as e:
        shutil.rmtree(root, ignore_errors=True)
        raise StagingError(e) from e

    logger.debug("Created staging area %s", root)
    return area


def remove_staging_area(area: StagingArea) -> None:
    """Remove the staging directory and everything under it."""
    if area.root.exists():
        shutil.rmtree(area.root, ignore_errors=True)
    if area.root.exists():
        logger.warning("Staging area %s could not be fully removed", area.root)
    else:
        logger.debug("Removed staging area %s", area.root)


@contextmanager
def staging_area(tmp_dir: Path | None = None) -> Iterator[StagingArea]:
    """Provide a staging area that is removed however the block exits."""
    area = create_staging_area(tmp_dir)
    try:
        yield area
    finally:
        remove_staging_area(area)


def copy_bundle(source: Path, area: StagingArea) -> Path:
    """Copy an application bundle into the staging content tree.

    Internal symlinks (framework Versions/Current etc.) are copied as links
    and file modes are preserved.

    Args:
        source: Bundle directory.
        area: Staging area to copy into.

    Returns:
        Path of the staged bundle.

    Raises:
        CopyFailedError: If copying fails.
    """
    dest = area.content_dir / source.name
    logger.debug("Copying bundle %s -> %s", source, dest)
    try:
        shutil.copytree(source, dest, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise CopyFailedError(e) from e
    return dest


def create_shortcut(
    area: StagingArea,
    target: Path = Path("/Applications"),
    name: str = "Applications",
) -> Path:
    """Create the install location symlink in the staging content tree.

    Raises:
        ShortcutFailedError: If the link cannot be created.
    """
    link = area.content_dir / name
    logger.debug("Linking %s -> %s", link, target)
    try:
        link.symlink_to(target, target_is_directory=True)
    except OSError as e:
        raise ShortcutFailedError(e) from e
    return link


def write_auxiliary_text(area: StagingArea, filename: str, content: str) -> Path:
    """Write a UTF-8 text document into the staging content tree atomically.

    The text goes to a hidden temporary file in the same directory, is
    flushed to disk, then renamed over the final name.

    Args:
        area: Staging area.
        filename: Plain file name (no directories).
        content: Text to write.

    Returns:
        Path of the written file.

    Raises:
        FileWriteFailedError: If the file cannot be written.
    """
    if not filename or Path(filename).name != filename:
        raise FileWriteFailedError(
            filename, ValueError(f"invalid document name: {filename!r}")
        )

    dest = area.content_dir / filename
    fd = -1
    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{filename}.", dir=area.content_dir)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            fd = -1
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, dest)
        tmp_name = None
    except OSError as e:
        raise FileWriteFailedError(filename, e) from e
    finally:
        if fd != -1:
            os.close(fd)
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)

    logger.debug("Wrote %s (%d chars)", dest, len(content))
    return dest


def decode_text(data: bytes) -> str:
    """Decode document bytes, honouring a byte order mark when present."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return data.decode(encoding)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def read_readme_source(path: Path) -> str:
    """Read a user-supplied README file as text.

    Raises:
        FileWriteFailedError: If the file cannot be read or decoded.
    """
    try:
        return decode_text(path.read_bytes())
    except (OSError, UnicodeDecodeError) as e:
        raise FileWriteFailedError(README_FILENAME, e) from e


def stage_readme(area: StagingArea, readme: ReadmeSource | None) -> Path | None:
    """Stage the README document if one was requested.

    Text mode with empty text writes nothing. File mode always writes the
    source file's text, re-encoded as UTF-8.

    Returns:
        Path of the README, or None when nothing was written.
    """
    if readme is None:
        return None

    if readme.mode == ReadmeMode.FILE and readme.path is not None:
        content = read_readme_source(readme.path)
    elif readme.text:
        content = readme.text
    else:
        return None

    return write_auxiliary_text(area, README_FILENAME, content)


def tree_allocated_bytes(directory: Path, block_size: int = ALLOCATION_BLOCK_SIZE) -> int:
    """Disk space a tree occupies, counted in whole filesystem blocks.

    Every file is rounded up to at least one block, and every directory and
    symlink costs one block of metadata. Symlinks are not followed.
    """
    total = 0
    for dirpath, dirnames, filenames in os.walk(directory):
        total += block_size
        for name in dirnames:
            if (Path(dirpath) / name).is_symlink():
                total += block_size
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_symlink():
                total += block_size
                continue
            st = path.stat()
            rounded = max(1, math.ceil(st.st_size / block_size)) * block_size
            total += max(rounded, getattr(st, "st_blocks", 0) * 512)
    return total


__all__ = [
    "README_FILENAME",
    "STAGING_PREFIX",
    "SYSTEM_REQUIREMENTS_FILENAME",
    "StagingArea",
    "copy_bundle",
    "create_shortcut",
    "create_staging_area",
    "decode_text",
    "read_readme_source",
    "remove_staging_area",
    "stage_readme",
    "staging_area",
    "tree_allocated_bytes",
]
