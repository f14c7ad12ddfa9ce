"""Shared type definitions for apptodmg.

This module contains enums and type aliases shared across subpackages to
avoid circular imports.
"""

from enum import Enum


class BuildStage(str, Enum):
    """Stage of the disk image build pipeline.

    Progress consumers key off these tags rather than message text.
    """

    VALIDATING = "validating"
    STAGING = "staging"
    COPYING_BUNDLE = "copying_bundle"
    CREATING_SHORTCUT = "creating_shortcut"
    WRITING_DOCUMENTS = "writing_documents"
    CREATING_IMAGE = "creating_image"
    MOUNTING = "mounting"
    STYLING = "styling"
    UNMOUNTING = "unmounting"
    COMPRESSING = "compressing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def fraction(self) -> float:
        """Approximate completion fraction once this stage has started."""
        return _STAGE_FRACTIONS[self]


_STAGE_FRACTIONS: dict[BuildStage, float] = {
    BuildStage.VALIDATING: 0.0,
    BuildStage.STAGING: 0.05,
    BuildStage.COPYING_BUNDLE: 0.1,
    BuildStage.CREATING_SHORTCUT: 0.3,
    BuildStage.WRITING_DOCUMENTS: 0.35,
    BuildStage.CREATING_IMAGE: 0.4,
    BuildStage.MOUNTING: 0.6,
    BuildStage.STYLING: 0.65,
    BuildStage.UNMOUNTING: 0.8,
    BuildStage.COMPRESSING: 0.85,
    BuildStage.COMPLETE: 1.0,
    BuildStage.FAILED: 1.0,
}


class ImageState(str, Enum):
    """State of a disk image moving through the builder."""

    IDLE = "idle"
    CREATED = "created"
    MOUNTED = "mounted"
    STYLED = "styled"
    UNMOUNTED = "unmounted"
    COMPRESSED = "compressed"
    DONE = "done"


class ReadmeMode(str, Enum):
    """How README content is supplied."""

    TEXT = "text"
    FILE = "file"


__all__ = [
    "BuildStage",
    "ImageState",
    "ReadmeMode",
]
