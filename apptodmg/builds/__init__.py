"""Disk image build pipeline.

This module handles:
- Build request and layout models
- Staging the bundle, shortcut and documents
- Driving hdiutil through create/attach/style/detach/convert
- Rendering the window background and running the Finder layout script
- Progress reporting
"""

from apptodmg.builds.models import BuildRequest, BuildResult, LayoutSpec, ReadmeSource

__all__ = ["BuildRequest", "BuildResult", "LayoutSpec", "ReadmeSource"]

# Lazy imports for submodules to avoid circular imports
# Access via apptodmg.builds.service, etc.
