"""Background artwork for styled disk images.

Renders a flat canvas the size of the Finder window with an arrow running
from the bundle icon towards the install location shortcut. The geometry is
taken from the same LayoutSpec the Finder script uses, so the arrow always
sits in the gap between the two icons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageDraw

from apptodmg.builds.models import LayoutSpec
from apptodmg.errors import RenderFailedError

logger = logging.getLogger(__name__)

BACKGROUND_COLOR = (245, 246, 248)
ARROW_COLOR = (120, 128, 140)

# Shaft thickness is 2 * SHAFT_HALF_WIDTH + 1 so it centres on a pixel row
SHAFT_HALF_WIDTH = 3
HEAD_LENGTH = 22
HEAD_HALF_HEIGHT = 14


@dataclass(frozen=True)
class IndicatorSpan:
    """Open horizontal interval the arrow must stay inside.

    Attributes:
        left: Right edge of the source icon plus margin (exclusive).
        right: Left edge of the target icon minus margin (exclusive).
        y: Row the arrow is centred on.
    """

    left: int
    right: int
    y: int

    @property
    def width(self) -> int:
        return self.right - self.left


def indicator_span(layout: LayoutSpec) -> IndicatorSpan:
    """Compute where the arrow goes for a layout."""
    half_icon = layout.icon_size // 2
    source_x, source_y = layout.source_position
    target_x, _ = layout.target_position
    return IndicatorSpan(
        left=source_x + half_icon + layout.arrow_margin,
        right=target_x - half_icon - layout.arrow_margin,
        y=source_y,
    )


def render_background(
    layout: LayoutSpec,
    output_path: Path | None = None,
    background_color: tuple[int, int, int] = BACKGROUND_COLOR,
    arrow_color: tuple[int, int, int] = ARROW_COLOR,
) -> Image.Image:
    """Render the window background.

    Args:
        layout: Window and icon geometry.
        output_path: If given, the image is also saved there as PNG.
        background_color: Canvas fill.
        arrow_color: Arrow shaft and head fill.

    Returns:
        The rendered RGB image.

    Raises:
        RenderFailedError: If the canvas cannot be allocated, the icons leave
            no room for an arrow, or the PNG cannot be written.
    """
    span = indicator_span(layout)
    # Drawn pixels occupy [start, tip], strictly inside (left, right)
    start = span.left + 1
    tip = span.right - 1
    head_base = tip - HEAD_LENGTH
    if head_base <= start:
        raise RenderFailedError(
            f"icons leave {span.width}px between them, too narrow for an arrow"
        )

    try:
        image = Image.new("RGB", layout.window_size, background_color)
    except (ValueError, MemoryError) as e:
        raise RenderFailedError(f"cannot allocate {layout.window_size} canvas", e) from e

    draw = ImageDraw.Draw(image)
    y = span.y
    draw.rectangle(
        [start, y - SHAFT_HALF_WIDTH, head_base, y + SHAFT_HALF_WIDTH],
        fill=arrow_color,
    )
    draw.polygon(
        [
            (head_base, y - HEAD_HALF_HEIGHT),
            (tip, y),
            (head_base, y + HEAD_HALF_HEIGHT),
        ],
        fill=arrow_color,
    )

    if output_path is not None:
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            image.save(output_path, format="PNG")
        except (OSError, ValueError) as e:
            raise RenderFailedError(f"cannot encode {output_path}", e) from e
        logger.debug("Rendered background %s", output_path)

    return image


__all__ = [
    "ARROW_COLOR",
    "BACKGROUND_COLOR",
    "IndicatorSpan",
    "indicator_span",
    "render_background",
]
