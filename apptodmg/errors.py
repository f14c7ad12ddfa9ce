"""Error taxonomy for disk image builds.

Every failure that ends a build is a BuildError subclass carrying a stable
code for programmatic handling and, where one exists, the underlying cause.
None of these are retried; the caller decides how to present them.
"""

from __future__ import annotations

from pathlib import Path

# Error code constants
INVALID_BUNDLE = "invalid_bundle"
STAGING_FAILED = "staging_failed"
COPY_FAILED = "copy_failed"
SHORTCUT_FAILED = "shortcut_failed"
FILE_WRITE_FAILED = "file_write_failed"
IMAGE_TOOL_FAILED = "image_tool_failed"
STYLING_FAILED = "styling_failed"
RENDER_FAILED = "render_failed"


class BuildError(Exception):
    """Base error for build pipeline failures."""

    code = "build_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON output."""
        return {"code": self.code, "message": self.message}


class InvalidBundleError(BuildError):
    """Source path is not an existing application bundle directory."""

    code = INVALID_BUNDLE

    def __init__(self, path: str | Path) -> None:
        super().__init__(
            f"The selected item is not a valid application bundle: {path}"
        )
        self.path = str(path)


class StagingError(BuildError):
    """The temporary staging area could not be created."""

    code = STAGING_FAILED

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Could not create staging directory: {cause}", cause=cause)


class CopyFailedError(BuildError):
    """Copying the bundle into the staging area failed."""

    code = COPY_FAILED

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Could not copy the application. {cause}", cause=cause)


class ShortcutFailedError(BuildError):
    """Creating the install location shortcut failed."""

    code = SHORTCUT_FAILED

    def __init__(self, cause: BaseException) -> None:
        super().__init__(
            f"Could not create the Applications shortcut. {cause}", cause=cause
        )


class FileWriteFailedError(BuildError):
    """Writing an auxiliary document failed."""

    code = FILE_WRITE_FAILED

    def __init__(self, filename: str, cause: BaseException) -> None:
        super().__init__(f"Could not write {filename}. {cause}", cause=cause)
        self.filename = filename


class ImageToolError(BuildError):
    """The disk image utility exited with a nonzero status."""

    code = IMAGE_TOOL_FAILED

    def __init__(
        self,
        exit_code: int,
        output: str,
        command: str | None = None,
    ) -> None:
        super().__init__(f"DMG creation failed (exit code {exit_code}): {output}")
        self.exit_code = exit_code
        self.output = output
        self.command = command

    def to_dict(self) -> dict[str, object]:
        result = super().to_dict()
        result["exit_code"] = self.exit_code
        result["output"] = self.output
        return result


class StylingFailedError(BuildError):
    """Styling the mounted volume failed.

    When the unstyled image could still be compressed, fallback_artifact
    points at it; the build is reported as failed either way.
    """

    code = STYLING_FAILED

    def __init__(self, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            super().__init__(f"Could not style the disk image window. {cause}", cause=cause)
        else:
            super().__init__(f"Could not style the disk image window. {cause}")
        self.fallback_artifact: Path | None = None


class RenderFailedError(BuildError):
    """The background image could not be rendered or encoded."""

    code = RENDER_FAILED

    def __init__(self, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Could not render the background image. {reason}", cause=cause)


__all__ = [
    "COPY_FAILED",
    "FILE_WRITE_FAILED",
    "IMAGE_TOOL_FAILED",
    "INVALID_BUNDLE",
    "RENDER_FAILED",
    "SHORTCUT_FAILED",
    "STAGING_FAILED",
    "STYLING_FAILED",
    "BuildError",
    "CopyFailedError",
    "FileWriteFailedError",
    "ImageToolError",
    "InvalidBundleError",
    "RenderFailedError",
    "ShortcutFailedError",
    "StagingError",
    "StylingFailedError",
]
