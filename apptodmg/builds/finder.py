"""Finder window configuration for styled disk images.

Composes the AppleScript that lays out the mounted volume's window (icon
view, bounds, icon size, background, icon positions) and runs it through
osascript. Finder writes the result to the volume's .DS_Store, which is
what makes the layout survive into the compressed image.
"""

from __future__ import annotations

import logging

from apptodmg.builds.models import LayoutSpec
from apptodmg.builds.runner import ToolRunner, run_tool
from apptodmg.errors import StylingFailedError

logger = logging.getLogger(__name__)

BACKGROUND_DIR = ".background"
BACKGROUND_FILENAME = "background.png"


def applescript_quote(value: str) -> str:
    """Quote a string literal for AppleScript."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def compose_finder_script(
    volume_name: str,
    bundle_name: str,
    layout: LayoutSpec,
    shortcut_name: str | None = "Applications",
    background_name: str = BACKGROUND_FILENAME,
    settle_seconds: int = 2,
) -> str:
    """Compose the Finder layout script for a mounted volume.

    Args:
        volume_name: Name of the mounted disk.
        bundle_name: Top-level bundle item (e.g. "Foo.app").
        layout: Window and icon geometry.
        shortcut_name: Install location link to position, None if absent.
        background_name: File name inside the hidden background folder.
        settle_seconds: Delay before closing so Finder flushes .DS_Store.

    Returns:
        AppleScript source.
    """
    left, top, right, bottom = layout.window_bounds
    source_x, source_y = layout.source_position
    target_x, target_y = layout.target_position
    background_ref = applescript_quote(f"{BACKGROUND_DIR}:{background_name}")

    lines = [
        'tell application "Finder"',
        f"    tell disk {applescript_quote(volume_name)}",
        "        open",
        "        set current view of container window to icon view",
        "        set toolbar visible of container window to false",
        "        set statusbar visible of container window to false",
        f"        set the bounds of container window to {{{left}, {top}, {right}, {bottom}}}",
        "        set viewOptions to the icon view options of container window",
        "        set arrangement of viewOptions to not arranged",
        f"        set icon size of viewOptions to {layout.icon_size}",
        f"        set text size of viewOptions to {layout.text_size}",
        f"        set background picture of viewOptions to file {background_ref}",
        f"        set position of item {applescript_quote(bundle_name)} of container window"
        f" to {{{source_x}, {source_y}}}",
    ]
    if shortcut_name:
        lines.append(
            f"        set position of item {applescript_quote(shortcut_name)} of container window"
            f" to {{{target_x}, {target_y}}}"
        )
    lines.extend(
        [
            "        close",
            "        open",
            "        update without registering applications",
            f"        delay {settle_seconds}",
            "        close",
            "    end tell",
            "end tell",
        ]
    )
    return "\n".join(lines) + "\n"


def configure_window(
    volume_name: str,
    bundle_name: str,
    layout: LayoutSpec,
    shortcut_name: str | None = "Applications",
    osascript: str = "/usr/bin/osascript",
    settle_seconds: int = 2,
    timeout: int | None = None,
    runner: ToolRunner = run_tool,
) -> None:
    """Apply the window layout to a mounted volume.

    Raises:
        StylingFailedError: If osascript cannot run or exits nonzero, for
            example when there is no GUI session to talk to Finder.
    """
    script = compose_finder_script(
        volume_name,
        bundle_name,
        layout,
        shortcut_name=shortcut_name,
        settle_seconds=settle_seconds,
    )
    logger.debug("Finder script:\n%s", script)

    result = runner([osascript, "-"], timeout=timeout, input_text=script)
    if not result.success:
        detail = result.stderr.strip() or result.stdout.strip()
        raise StylingFailedError(
            f"osascript exited with code {result.exit_code}: {detail}"
        )


__all__ = [
    "BACKGROUND_DIR",
    "BACKGROUND_FILENAME",
    "applescript_quote",
    "compose_finder_script",
    "configure_window",
]
