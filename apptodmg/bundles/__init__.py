"""Application bundle inspection.

This module handles:
- Validating that a path is an application bundle
- Reading bundle metadata (Info.plist, executable architectures)
- Generating the system requirements document
"""

from apptodmg.bundles.metadata import AppMetadata
from apptodmg.bundles.validator import looks_like_bundle, validate_bundle

__all__ = ["AppMetadata", "looks_like_bundle", "validate_bundle"]
