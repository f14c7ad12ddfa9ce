"""Application bundle validation."""

from pathlib import Path

from apptodmg.errors import InvalidBundleError

BUNDLE_SUFFIX = ".app"


def looks_like_bundle(path: Path) -> bool:
    """Check the path has the bundle extension and is an existing directory."""
    return path.suffix.lower() == BUNDLE_SUFFIX and path.is_dir()


def validate_bundle(path: Path) -> Path:
    """Validate an application bundle path.

    Args:
        path: Candidate bundle.

    Returns:
        The path, unchanged.

    Raises:
        InvalidBundleError: If the path is not an existing .app directory.
    """
    if not looks_like_bundle(path):
        raise InvalidBundleError(path)
    return path


__all__ = ["BUNDLE_SUFFIX", "looks_like_bundle", "validate_bundle"]
