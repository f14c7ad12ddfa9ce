"""Disk image builder state machine.

Drives hdiutil through the stages of a build:

    unstyled:  IDLE -> CREATED (compressed, read-only) -> DONE
    styled:    IDLE -> CREATED (read-write) -> MOUNTED -> STYLED
               -> UNMOUNTED -> COMPRESSED -> DONE

Each transition runs one tool command through the shared runner. Tool
output is forwarded to the progress reporter before any failure is raised,
so the diagnostic reaches the caller either way.
"""

from __future__ import annotations

import logging
import math
import shutil
from pathlib import Path

from apptodmg.builds.background import render_background
from apptodmg.builds.finder import BACKGROUND_DIR, BACKGROUND_FILENAME, configure_window
from apptodmg.builds.models import LayoutSpec
from apptodmg.builds.progress import ProgressReporter
from apptodmg.builds.runner import (
    ToolResult,
    ToolRunner,
    compose_attach_command,
    compose_convert_command,
    compose_create_command,
    compose_detach_command,
    run_tool,
)
from apptodmg.builds.staging import tree_allocated_bytes
from apptodmg.config import Settings, get_settings
from apptodmg.errors import ImageToolError, StylingFailedError
from apptodmg.types import ImageState

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
# Filesystem overhead on top of allocated blocks for read-write images
SIZE_OVERHEAD_FACTOR = 1.25


class ImageStateError(RuntimeError):
    """Raised when a builder step is called out of order."""

    def __init__(self, action: str, state: ImageState) -> None:
        super().__init__(f"Cannot {action} while image is {state.value}")
        self.action = action
        self.state = state


def compute_image_size_mb(source_dir: Path, headroom_mb: int) -> int:
    """Size for a read-write image holding source_dir plus styling files."""
    size = tree_allocated_bytes(source_dir)
    return math.ceil(size * SIZE_OVERHEAD_FACTOR / MIB) + headroom_mb


class DiskImageBuilder:
    """Builds one disk image.

    A builder instance is single-use: it walks the state machine once.

    Attributes:
        state: Current ImageState.
        image: Image written by create() (final for unstyled builds,
            intermediate read-write image for styled builds).
        mount_point: Where the read-write image is attached, if mounted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        reporter: ProgressReporter | None = None,
        runner: ToolRunner = run_tool,
    ) -> None:
        self.settings = settings or get_settings()
        self.reporter = reporter or ProgressReporter()
        self.runner = runner
        self.state = ImageState.IDLE
        self.styled = False
        self.image: Path | None = None
        self.mount_point: Path | None = None
        self.volume_name: str | None = None

    @property
    def is_mounted(self) -> bool:
        return self.mount_point is not None

    def _require(self, action: str, *states: ImageState) -> None:
        if self.state not in states:
            raise ImageStateError(action, self.state)

    def _run(self, cmd: list[str], timeout: int | None = None) -> ToolResult:
        result = self.runner(cmd, timeout=timeout or self.settings.tool_timeout)
        for text in result.output_lines():
            self.reporter.tool_output(text)
        if not result.success:
            raise ImageToolError(
                result.exit_code, result.combined_output, command=result.command
            )
        return result

    def create(
        self,
        source_dir: Path,
        volume_name: str,
        output: Path,
        styled: bool = False,
    ) -> Path:
        """Create an image from the staged source tree.

        Unstyled builds write the compressed read-only image straight to
        output. Styled builds write an uncompressed read-write intermediate.

        Raises:
            ImageToolError: If hdiutil create fails.
        """
        self._require("create", ImageState.IDLE)
        if styled:
            size_mb = compute_image_size_mb(source_dir, self.settings.size_headroom_mb)
            cmd = compose_create_command(
                self.settings.hdiutil_path,
                source_dir,
                volume_name,
                output,
                self.settings.rw_format,
                filesystem=self.settings.filesystem,
                size_mb=size_mb,
            )
        else:
            cmd = compose_create_command(
                self.settings.hdiutil_path,
                source_dir,
                volume_name,
                output,
                self.settings.compressed_format,
            )

        self._run(cmd)
        self.styled = styled
        self.image = output
        self.volume_name = volume_name
        self.state = ImageState.CREATED
        return output

    def mount(self, mount_point: Path) -> Path:
        """Attach the read-write image at mount_point.

        Raises:
            ImageToolError: If hdiutil attach fails.
        """
        self._require("mount", ImageState.CREATED)
        if not self.styled or self.image is None:
            raise ImageStateError("mount a read-only image", self.state)

        mount_point.mkdir(parents=True, exist_ok=True)
        self._run(
            compose_attach_command(self.settings.hdiutil_path, self.image, mount_point)
        )
        self.mount_point = mount_point
        self.state = ImageState.MOUNTED
        return mount_point

    def style(
        self,
        layout: LayoutSpec,
        bundle_name: str,
        background_path: Path,
        shortcut_name: str | None,
    ) -> None:
        """Install the background and lay out the Finder window.

        Args:
            layout: Geometry shared by the background and the window.
            bundle_name: Staged bundle item name.
            background_path: Where the rendered background is (or will be)
                stored outside the volume.
            shortcut_name: Install location link to position, None if absent.

        Raises:
            RenderFailedError: If the background cannot be rendered.
            StylingFailedError: If copying the background or running the
                Finder script fails.
        """
        self._require("style", ImageState.MOUNTED)
        if self.mount_point is None or self.volume_name is None:
            raise ImageStateError("style", self.state)

        if not background_path.exists():
            render_background(layout, background_path)

        target_dir = self.mount_point / BACKGROUND_DIR
        try:
            target_dir.mkdir(exist_ok=True)
            shutil.copyfile(background_path, target_dir / BACKGROUND_FILENAME)
        except OSError as e:
            raise StylingFailedError(e) from e

        configure_window(
            self.volume_name,
            bundle_name,
            layout,
            shortcut_name=shortcut_name,
            osascript=self.settings.osascript_path,
            settle_seconds=self.settings.finder_settle_seconds,
            timeout=self.settings.styling_timeout,
            runner=self.runner,
        )
        self.state = ImageState.STYLED

    def unmount(self) -> None:
        """Detach the mounted volume.

        If the plain detach fails a forced detach is attempted, then the
        original error is raised regardless of whether forcing worked.

        Raises:
            ImageToolError: If the first detach fails.
        """
        self._require("unmount", ImageState.MOUNTED, ImageState.STYLED)
        if self.mount_point is None:
            raise ImageStateError("unmount", self.state)
        hdiutil = self.settings.hdiutil_path

        try:
            self._run(compose_detach_command(hdiutil, self.mount_point))
        except ImageToolError:
            logger.warning("Detach of %s failed, forcing", self.mount_point)
            forced = self.runner(
                compose_detach_command(hdiutil, self.mount_point, force=True),
                timeout=self.settings.tool_timeout,
            )
            if forced.success:
                self.mount_point = None
                self.state = ImageState.UNMOUNTED
            else:
                logger.error(
                    "Forced detach of %s failed: %s",
                    self.mount_point,
                    forced.combined_output.strip(),
                )
            raise

        self.mount_point = None
        self.state = ImageState.UNMOUNTED

    def compress(self, destination: Path) -> Path:
        """Convert the read-write image into the final compressed image.

        Raises:
            ImageToolError: If hdiutil convert fails.
        """
        self._require("compress", ImageState.UNMOUNTED)
        if self.image is None:
            raise ImageStateError("compress", self.state)
        self._run(
            compose_convert_command(
                self.settings.hdiutil_path,
                self.image,
                destination,
                self.settings.compressed_format,
                zlib_level=self.settings.zlib_level,
            )
        )
        self.image = destination
        self.state = ImageState.COMPRESSED
        return destination

    def finish(self) -> Path:
        """Mark the build done and return the final image path."""
        if self.styled:
            self._require("finish", ImageState.COMPRESSED)
        else:
            self._require("finish", ImageState.CREATED)
        if self.image is None:
            raise ImageStateError("finish", self.state)
        self.state = ImageState.DONE
        return self.image


__all__ = [
    "DiskImageBuilder",
    "ImageStateError",
    "compute_image_size_mb",
]
