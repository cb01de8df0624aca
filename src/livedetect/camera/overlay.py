"""
Overlay Rendering

Draws detection boxes and labels onto a raster surface sized to the
current video frame. Uses PIL ImageDraw.

Color policy (deterministic per class):
- animal classes: green
- person: blue
- everything else: red
"""

import logging
from collections.abc import Iterable
from io import BytesIO

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from livedetect.inference.detection import DEFAULT_ANIMAL_CLASSES, Detection

logger = logging.getLogger(__name__)

ANIMAL_COLOR = (46, 204, 113)  # #2ecc71
PERSON_COLOR = (52, 152, 219)  # #3498db
OBJECT_COLOR = (231, 76, 60)  # #e74c3c
TEXT_COLOR = (255, 255, 255)
BACKGROUND_COLOR = (0, 0, 0)

LINE_WIDTH = 3
LABEL_PADDING = 10  # Total horizontal padding around label text
LABEL_HEIGHT = 25
TEXT_OFFSET = (5, 3)

# Cached font instances by size
_font_cache: dict[int, "ImageFont.FreeTypeFont | ImageFont.ImageFont"] = {}


def _get_font(size: int = 18) -> "ImageFont.FreeTypeFont | ImageFont.ImageFont":
    """Get font for label rendering, with caching and fallback."""
    if size in _font_cache:
        return _font_cache[size]

    try:
        font = ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", size)
    except OSError:
        logger.debug("DejaVuSans not found, using PIL default font")
        font = ImageFont.load_default()

    _font_cache[size] = font
    return font


class FrameSurface:
    """
    Mutable RGB raster the overlay is composed on.

    Always sized to the native resolution of the frame last drawn.
    """

    def __init__(self, width: int = 640, height: int = 480):
        self._image = Image.new("RGB", (width, height), BACKGROUND_COLOR)
        self._draw = ImageDraw.Draw(self._image)
        self.generation = 0  # Bumped on every mutation

    @property
    def size(self) -> tuple[int, int]:
        return self._image.size

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @property
    def draw(self) -> ImageDraw.ImageDraw:
        return self._draw

    def resize(self, width: int, height: int) -> None:
        """Reallocate the raster if the dimensions changed."""
        if (width, height) == self.size:
            return
        logger.debug(f"Surface resized: {self.size} -> {(width, height)}")
        self._image = Image.new("RGB", (width, height), BACKGROUND_COLOR)
        self._draw = ImageDraw.Draw(self._image)
        self.generation += 1

    def clear(self) -> None:
        """Fill the surface with the background color."""
        self._draw.rectangle([0, 0, self.width, self.height], fill=BACKGROUND_COLOR)
        self.generation += 1

    def draw_frame(self, frame: np.ndarray) -> None:
        """Resize to the frame if needed and paste it at the origin."""
        height, width = frame.shape[:2]
        self.resize(width, height)
        self._image.paste(Image.fromarray(frame))
        self.generation += 1

    def copy_image(self) -> Image.Image:
        """Detached copy of the current raster."""
        return self._image.copy()

    def to_array(self) -> np.ndarray:
        return np.array(self._image)


def _clip_box(det: Detection, width: int, height: int) -> tuple[int, int, int, int] | None:
    """Ordered pixel corners clipped to the surface, or None if nothing is visible."""
    x1, x2 = sorted((int(det.bbox.x), int(det.bbox.right)))
    y1, y2 = sorted((int(det.bbox.y), int(det.bbox.bottom)))
    if x2 < 0 or y2 < 0 or x1 >= width or y1 >= height:
        return None
    return max(x1, 0), max(y1, 0), min(x2, width - 1), min(y2, height - 1)


def encode_image(image: Image.Image, image_format: str = "PNG", quality: int = 85) -> bytes:
    """Encode a PIL image to bytes."""
    buf = BytesIO()
    if image_format.upper() == "JPEG":
        image.save(buf, "JPEG", quality=quality)
    else:
        image.save(buf, image_format)
    return buf.getvalue()


class OverlayRenderer:
    """Draws filtered detections over the raw frame."""

    def __init__(
        self,
        animal_classes: Iterable[str] = DEFAULT_ANIMAL_CLASSES,
        font_size: int = 18,
    ):
        self.animal_classes = frozenset(c.lower() for c in animal_classes)
        self.font = _get_font(font_size)

    def color_for(self, label: str) -> tuple[int, int, int]:
        """Box color for a class label."""
        name = label.lower()
        if name in self.animal_classes:
            return ANIMAL_COLOR
        if name == "person":
            return PERSON_COLOR
        return OBJECT_COLOR

    def draw(
        self,
        surface: FrameSurface,
        frame: np.ndarray,
        detections: list[Detection],
    ) -> None:
        """
        Compose one overlay frame.

        Clears the surface, draws the raw frame, then each detection in
        order so later entries sit on top of earlier ones.
        """
        height, width = frame.shape[:2]
        surface.resize(width, height)
        surface.clear()
        surface.draw_frame(frame)
        self.draw_detections(surface, detections)

    def draw_detections(self, surface: FrameSurface, detections: list[Detection]) -> None:
        """Draw boxes and labels onto the surface, clipped to its bounds."""
        draw = surface.draw
        for det in detections:
            corners = _clip_box(det, surface.width, surface.height)
            if corners is None:
                logger.debug(f"Skipping box outside the frame: {det}")
                continue
            x1, y1, x2, y2 = corners
            color = self.color_for(det.label)

            draw.rectangle([x1, y1, x2, y2], outline=color, width=LINE_WIDTH)

            text = det.display_text
            text_width = draw.textlength(text, font=self.font)
            draw.rectangle(
                [x1, y1, x1 + int(text_width) + LABEL_PADDING, y1 + LABEL_HEIGHT],
                fill=color,
            )
            draw.text(
                (x1 + TEXT_OFFSET[0], y1 + TEXT_OFFSET[1]),
                text,
                fill=TEXT_COLOR,
                font=self.font,
            )
        if detections:
            surface.generation += 1
