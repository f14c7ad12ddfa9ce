"""AppToDmg - Package macOS application bundles into disk image installers.

This package provides a staged build pipeline around hdiutil for turning an
.app bundle into a compressed, optionally styled .dmg installer.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
