"""Build service module.

This module provides the high-level build API:
- build(): main entry point, an async straight-line pipeline
- build_sync(): convenience wrapper for synchronous callers

Pipeline: validate -> stage (copy, shortcut, documents) -> image
(create, or create/mount/style/unmount/compress) -> result.

Filesystem steps and tool calls run in worker threads so the caller's event
loop stays responsive. The staging directory and any mounted volume are
released by async context managers on every exit path.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from apptodmg.builds.background import render_background
from apptodmg.builds.image import DiskImageBuilder
from apptodmg.builds.models import BuildRequest, BuildResult
from apptodmg.builds.progress import ProgressReporter, ProgressSink
from apptodmg.builds.runner import ToolRunner, run_tool
from apptodmg.builds.staging import (
    SYSTEM_REQUIREMENTS_FILENAME,
    StagingArea,
    copy_bundle,
    create_shortcut,
    create_staging_area,
    remove_staging_area,
    stage_readme,
    write_auxiliary_text,
)
from apptodmg.bundles.metadata import AppMetadata, extract_metadata
from apptodmg.bundles.validator import validate_bundle
from apptodmg.config import Settings, get_settings
from apptodmg.errors import (
    BuildError,
    FileWriteFailedError,
    ImageToolError,
    StylingFailedError,
)
from apptodmg.types import BuildStage

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024
RW_IMAGE_NAME = "intermediate.dmg"
BACKGROUND_IMAGE_NAME = "background.png"

T = TypeVar("T")


async def _in_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await asyncio.to_thread(func, *args, **kwargs)


async def _shielded(func: Callable[..., Any], *args: Any) -> None:
    """Run a cleanup step to completion even if the build task is cancelled."""
    await asyncio.shield(asyncio.to_thread(func, *args))


@asynccontextmanager
async def _staging(settings: Settings) -> AsyncIterator[StagingArea]:
    area = await _in_thread(create_staging_area, settings.tmp_dir)
    try:
        yield area
    finally:
        await _shielded(remove_staging_area, area)


@asynccontextmanager
async def _mounted(
    builder: DiskImageBuilder,
    mount_point: Path,
    reporter: ProgressReporter,
) -> AsyncIterator[Path]:
    """Mount the read-write image and detach it however the block exits.

    A detach failure is raised when the block succeeded; when the block is
    already raising, the detach failure is logged and the block's error wins.
    """
    reporter.advance(BuildStage.MOUNTING, "Mounting disk image...")
    await _in_thread(builder.mount, mount_point)
    try:
        yield mount_point
    except BaseException:
        if builder.is_mounted:
            reporter.advance(BuildStage.UNMOUNTING, "Unmounting disk image...")
            try:
                await _shielded(builder.unmount)
            except ImageToolError as e:
                logger.error("Detach during cleanup failed: %s", e)
        raise
    reporter.advance(BuildStage.UNMOUNTING, "Unmounting disk image...")
    await _shielded(builder.unmount)


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def _remove_destination(destination: Path) -> None:
    try:
        destination.unlink(missing_ok=True)
    except OSError as e:
        raise FileWriteFailedError(destination.name, e) from e


def _system_requirements_text(
    request: BuildRequest,
    settings: Settings,
    runner: ToolRunner,
) -> str:
    if request.system_requirements_text is not None:
        return request.system_requirements_text
    metadata = extract_metadata(request.source, lipo=settings.lipo_path, runner=runner)
    if metadata is None:
        logger.warning("No readable Info.plist in %s", request.source)
        metadata = AppMetadata(app_name=request.source.stem)
    return metadata.generate_system_requirements_text()


async def _stage(
    request: BuildRequest,
    area: StagingArea,
    settings: Settings,
    reporter: ProgressReporter,
    runner: ToolRunner,
) -> None:
    reporter.advance(
        BuildStage.COPYING_BUNDLE,
        f"Copying {request.bundle_name} to staging area...",
    )
    await _in_thread(copy_bundle, request.source, area)

    if request.include_shortcut:
        reporter.advance(BuildStage.CREATING_SHORTCUT, "Creating Applications shortcut...")
        await _in_thread(
            create_shortcut, area, settings.install_dir, settings.shortcut_name
        )

    if request.include_system_requirements or request.readme is not None:
        reporter.advance(BuildStage.WRITING_DOCUMENTS, "Writing documents...")

    if request.include_system_requirements:
        text = await _in_thread(_system_requirements_text, request, settings, runner)
        await _in_thread(write_auxiliary_text, area, SYSTEM_REQUIREMENTS_FILENAME, text)

    readme_path = await _in_thread(stage_readme, area, request.readme)
    if readme_path is not None:
        reporter.info(f"Added {readme_path.name}")


async def _build_unstyled(
    request: BuildRequest,
    area: StagingArea,
    builder: DiskImageBuilder,
    reporter: ProgressReporter,
) -> Path:
    reporter.advance(BuildStage.CREATING_IMAGE, "Creating DMG image...")
    await _in_thread(
        builder.create, area.content_dir, request.volume_name, request.destination
    )
    return builder.finish()


async def _build_styled(
    request: BuildRequest,
    area: StagingArea,
    settings: Settings,
    builder: DiskImageBuilder,
    reporter: ProgressReporter,
) -> Path:
    rw_image = area.work_dir / RW_IMAGE_NAME
    background_path = area.work_dir / BACKGROUND_IMAGE_NAME
    shortcut_name = settings.shortcut_name if request.include_shortcut else None

    await _in_thread(render_background, request.layout, background_path)

    reporter.advance(BuildStage.CREATING_IMAGE, "Creating read-write DMG image...")
    await _in_thread(
        builder.create,
        area.content_dir,
        request.volume_name,
        rw_image,
        styled=True,
    )

    styling_error: StylingFailedError | None = None
    try:
        async with _mounted(
            builder, area.mount_point(request.volume_name), reporter
        ):
            reporter.advance(BuildStage.STYLING, "Styling disk image window...")
            await _in_thread(
                builder.style,
                request.layout,
                request.bundle_name,
                background_path,
                shortcut_name,
            )
    except StylingFailedError as e:
        if builder.is_mounted:
            raise
        styling_error = e

    reporter.advance(BuildStage.COMPRESSING, "Compressing disk image...")
    if styling_error is None:
        await _in_thread(builder.compress, request.destination)
        return builder.finish()

    # Styling is recoverable: keep an unstyled image, but still fail the build
    try:
        await _in_thread(builder.compress, request.destination)
    except ImageToolError as e:
        logger.error("Fallback compression after styling failure failed: %s", e)
        await _shielded(_remove_destination, request.destination)
    else:
        styling_error.fallback_artifact = request.destination
        reporter.info(f"Unstyled image left at {request.destination}")
    raise styling_error


async def _run_pipeline(
    request: BuildRequest,
    settings: Settings,
    reporter: ProgressReporter,
    runner: ToolRunner,
) -> Path:
    reporter.advance(BuildStage.VALIDATING, f"Validating {request.source}...")
    await _in_thread(validate_bundle, request.source)

    reporter.advance(BuildStage.STAGING, "Creating staging directory...")
    async with _staging(settings) as area:
        await _stage(request, area, settings, reporter, runner)

        await _in_thread(_remove_destination, request.destination)
        builder = DiskImageBuilder(settings=settings, reporter=reporter, runner=runner)
        try:
            if request.styled:
                return await _build_styled(request, area, settings, builder, reporter)
            return await _build_unstyled(request, area, builder, reporter)
        except ImageToolError:
            await _shielded(_remove_destination, request.destination)
            raise


async def build(
    request: BuildRequest,
    on_progress: ProgressSink | None = None,
    *,
    settings: Settings | None = None,
    tool_runner: ToolRunner | None = None,
) -> BuildResult:
    """Build a disk image from an application bundle.

    Progress events are delivered on the event loop running this coroutine.
    Build failures are returned in the result, not raised.

    Args:
        request: What to build.
        on_progress: Optional sink for ProgressEvent values.
        settings: Application settings.
        tool_runner: Runner for external tools (defaults to run_tool).

    Returns:
        BuildResult with either the artifact path or the typed error.
    """
    if settings is None:
        settings = get_settings()
    runner = tool_runner or run_tool
    reporter = ProgressReporter(on_progress, loop=asyncio.get_running_loop())

    started_at = datetime.now(timezone.utc)
    try:
        artifact = await _run_pipeline(request, settings, reporter, runner)
    except BuildError as e:
        logger.error("Build of %s failed [%s]: %s", request.source, e.code, e)
        reporter.advance(BuildStage.FAILED, str(e))
        return BuildResult(
            success=False,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            error=e,
            styled=request.styled,
        )

    size_bytes = artifact.stat().st_size
    sha256 = await _in_thread(compute_file_hash, artifact)
    reporter.advance(BuildStage.COMPLETE, "DMG created successfully!")
    logger.info("Built %s (%d bytes)", artifact, size_bytes)

    return BuildResult(
        success=True,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        artifact_path=artifact,
        size_bytes=size_bytes,
        sha256=sha256,
        styled=request.styled,
    )


def build_sync(
    request: BuildRequest,
    on_progress: ProgressSink | None = None,
    *,
    settings: Settings | None = None,
    tool_runner: ToolRunner | None = None,
) -> BuildResult:
    """Run build() to completion on a fresh event loop."""
    return asyncio.run(
        build(request, on_progress, settings=settings, tool_runner=tool_runner)
    )


__all__ = [
    "build",
    "build_sync",
    "compute_file_hash",
]
