"""Models for disk image build requests and results.

BuildRequest and LayoutSpec are frozen pydantic models: a request is
validated once and cannot change while the pipeline runs. BuildResult is a
plain dataclass returned by the build service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from apptodmg.errors import BuildError
from apptodmg.types import ReadmeMode

DMG_SUFFIX = ".dmg"

Point = tuple[int, int]


class LayoutSpec(BaseModel):
    """Window and icon geometry shared by the renderer and the Finder script.

    Icon positions are icon centres in window coordinates with a top-left
    origin, which is what Finder's `position of item` expects.

    Attributes:
        window_origin: Screen position of the window's top-left corner.
        window_size: Window content size (width, height).
        icon_size: Icon edge length in points.
        text_size: Icon label text size.
        source_position: Centre of the bundle icon.
        target_position: Centre of the shortcut icon.
        arrow_margin: Gap kept between each icon edge and the arrow.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    window_origin: Point = (100, 100)
    window_size: Point = (540, 380)
    icon_size: int = Field(default=128, gt=0, le=512)
    text_size: int = Field(default=12, ge=10, le=16)
    source_position: Point = (130, 190)
    target_position: Point = (410, 190)
    arrow_margin: int = Field(default=20, ge=0)

    @field_validator("window_size")
    @classmethod
    def validate_window_size(cls, v: Point) -> Point:
        """Validate both window dimensions are positive."""
        if v[0] <= 0 or v[1] <= 0:
            raise ValueError(f"window_size must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def validate_positions(self) -> LayoutSpec:
        """Validate icon centres fall inside the window."""
        width, height = self.window_size
        for name, (x, y) in (
            ("source_position", self.source_position),
            ("target_position", self.target_position),
        ):
            if not (0 <= x < width and 0 <= y < height):
                raise ValueError(
                    f"{name} {(x, y)} lies outside window {width}x{height}"
                )
        return self

    @property
    def window_bounds(self) -> tuple[int, int, int, int]:
        """Finder bounds {left, top, right, bottom} for the window."""
        left, top = self.window_origin
        width, height = self.window_size
        return (left, top, left + width, top + height)


DEFAULT_LAYOUT = LayoutSpec()


class ReadmeSource(BaseModel):
    """Where README content comes from.

    Attributes:
        mode: TEXT for literal content, FILE to copy a text file.
        text: Literal README text (TEXT mode). Empty text means no README.
        path: Source text file (FILE mode), re-encoded as UTF-8.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ReadmeMode
    text: str | None = None
    path: Path | None = None

    @model_validator(mode="after")
    def validate_mode_fields(self) -> ReadmeSource:
        """Validate the field matching the mode is present."""
        if self.mode == ReadmeMode.FILE and self.path is None:
            raise ValueError("file mode README requires a path")
        if self.mode == ReadmeMode.TEXT and self.text is None:
            raise ValueError("text mode README requires text")
        return self

    @classmethod
    def from_text(cls, text: str) -> ReadmeSource:
        return cls(mode=ReadmeMode.TEXT, text=text)

    @classmethod
    def from_file(cls, path: str | Path) -> ReadmeSource:
        return cls(mode=ReadmeMode.FILE, path=Path(path))


class BuildRequest(BaseModel):
    """Everything needed to build one disk image.

    Attributes:
        source: Application bundle to package.
        destination: Disk image path to write (a .dmg suffix is enforced).
        volume_name: Volume display name (defaults to the bundle name).
        include_shortcut: Add a link to the install location.
        include_system_requirements: Add a system requirements document.
        system_requirements_text: Pre-generated requirements text; generated
            from bundle metadata when omitted.
        readme: Optional README source.
        styled: Apply background, window layout and icon placement.
        layout: Geometry used when styled.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Path
    destination: Path
    volume_name: str = Field(min_length=1)
    include_shortcut: bool = True
    include_system_requirements: bool = False
    system_requirements_text: str | None = None
    readme: ReadmeSource | None = None
    styled: bool = False
    layout: LayoutSpec = DEFAULT_LAYOUT

    @model_validator(mode="before")
    @classmethod
    def default_volume_name(cls, data: Any) -> Any:
        """Use the bundle name without extension when no volume name is given."""
        if isinstance(data, dict) and not data.get("volume_name") and data.get("source"):
            data = dict(data)
            data["volume_name"] = Path(data["source"]).stem
        return data

    @field_validator("destination")
    @classmethod
    def ensure_dmg_suffix(cls, v: Path) -> Path:
        """Append .dmg when missing; hdiutil would append it anyway."""
        if v.suffix.lower() != DMG_SUFFIX:
            return v.with_name(v.name + DMG_SUFFIX)
        return v

    @field_validator("volume_name")
    @classmethod
    def validate_volume_name(cls, v: str) -> str:
        """Validate the name can be used as a mount point component."""
        if "/" in v or ":" in v:
            raise ValueError(f"volume_name must not contain '/' or ':', got '{v}'")
        if not v.strip() or v in (".", ".."):
            raise ValueError(f"volume_name must name a directory, got '{v}'")
        return v

    @property
    def bundle_name(self) -> str:
        """File name of the bundle as it appears inside the image."""
        return self.source.name


@dataclass
class BuildResult:
    """Result of a disk image build.

    Exactly one of artifact_path and error is set.

    Attributes:
        success: Whether the build succeeded.
        artifact_path: Path of the produced disk image.
        error: Typed failure if the build failed.
        started_at: Build start time.
        finished_at: Build finish time.
        size_bytes: Artifact size.
        sha256: Artifact SHA-256 digest.
        styled: Whether the styled path was used.
    """

    success: bool
    started_at: datetime
    finished_at: datetime
    artifact_path: Path | None = None
    error: BuildError | None = None
    size_bytes: int | None = None
    sha256: str | None = None
    styled: bool = False

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "success": self.success,
            "styled": self.styled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if self.artifact_path is not None:
            result["artifact_path"] = str(self.artifact_path)
            result["size_bytes"] = self.size_bytes
            result["sha256"] = self.sha256
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


__all__ = [
    "DEFAULT_LAYOUT",
    "DMG_SUFFIX",
    "BuildRequest",
    "BuildResult",
    "LayoutSpec",
    "ReadmeSource",
]
