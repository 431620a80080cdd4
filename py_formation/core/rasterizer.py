"""
Rasterization of text strings and images into target point sets.

Text is drawn offscreen with Pillow onto an 8-bit alpha surface, images are
decoded to RGBA; both are then sampled on a regular grid whose spacing is the
request's resolution. A grid sample becomes a target when its alpha value is
strictly greater than the threshold.
"""

import io
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, NamedTuple, Optional, Tuple, Union

import numpy as np
import structlog
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError
from pydantic import Field, field_validator

from ..config import settings
from .errors import AssetError, ConfigurationError
from .geometry import RGBA, Point, TargetSet
from .validation import ConfigModel

logger = structlog.get_logger()


class TextRaster(ConfigModel):
    """Request to rasterize a text string."""

    kind: Literal["text"] = "text"
    text: str = Field(..., min_length=1, description="Text to render")
    font_family: Optional[str] = Field(None, description="Font file path or font name")
    font_size: int = Field(96, gt=0, le=2048, description="Font size in pixels")
    resolution: int = Field(
        default_factory=lambda: settings.default_resolution, gt=0,
        description="Pixels between samples",
    )
    threshold: int = Field(
        default_factory=lambda: settings.default_threshold, ge=0, le=255,
        description="Alpha cut-off",
    )
    letter_spacing: int = Field(0, ge=0, description="Extra pixels between glyphs")
    line_spacing: int = Field(0, ge=0, description="Extra pixels between lines")
    padding: int = Field(0, ge=0, description="Empty border around the rendered text")
    color: Optional[RGBA] = Field(None, description="Colour attached to every point")

    @field_validator("color")
    @classmethod
    def _check_color(cls, value):
        if value is not None and any(not 0 <= c <= 255 for c in value):
            raise ValueError("color channels must be within [0, 255]")
        return value


class ImageRaster(ConfigModel):
    """Request to rasterize an image supplied as bytes or a file path."""

    kind: Literal["image"] = "image"
    source: Union[Path, bytes] = Field(..., description="Encoded image bytes or a path")
    resolution: int = Field(
        default_factory=lambda: settings.default_resolution, gt=0,
        description="Pixels between samples",
    )
    threshold: int = Field(
        default_factory=lambda: settings.default_threshold, ge=0, le=255,
        description="Mask cut-off",
    )
    color_sampling: bool = Field(False, description="Attach sampled RGBA to each point")
    mask: Literal["alpha", "luminance"] = Field(
        "alpha", description="Channel deciding which pixels are ink"
    )
    invert: bool = Field(False, description="Invert the mask before thresholding")
    scale: float = Field(1.0, gt=0, le=16, description="Resize factor applied before sampling")


RasterRequest = Union[TextRaster, ImageRaster]


def parse_request(data) -> RasterRequest:
    """
    Validate a raw mapping into a raster request.

    Raises:
        ConfigurationError: if the data does not describe a valid request
    """
    if isinstance(data, (TextRaster, ImageRaster)):
        return data
    if not isinstance(data, dict):
        raise ConfigurationError(f"raster request must be a mapping, got {type(data).__name__}")
    kind = data.get("kind", "text")
    model = {"text": TextRaster, "image": ImageRaster}.get(kind)
    if model is None:
        raise ConfigurationError(f"unknown raster kind {kind!r}")
    return model.parse(data)


@lru_cache(maxsize=32)
def load_font(font_family: Optional[str], font_size: int):
    """
    Load a font, falling back to Pillow's bundled font when it is unavailable.

    Args:
        font_family: Font file path or name understood by FreeType, or None
        font_size: Size in pixels

    Returns:
        Pillow font object
    """
    family = font_family or settings.default_font_family
    if family:
        try:
            return ImageFont.truetype(family, font_size)
        except OSError:
            logger.warning("Font not found, using default font", font_family=family)
    return ImageFont.load_default(size=font_size)


def _line_width(font, line: str, letter_spacing: int) -> float:
    if not line:
        return 0.0
    return sum(font.getlength(ch) for ch in line) + letter_spacing * (len(line) - 1)


class TextLayout(NamedTuple):
    """Offscreen surface geometry for a text request."""
    font: object
    lines: List[str]
    line_height: float
    width: int
    height: int


def _check_grid(width: int, height: int, resolution: int, what: str) -> None:
    if width * height > settings.max_target_points * resolution ** 2:
        raise ConfigurationError(
            f"{what} {width}x{height} at resolution {resolution} "
            f"exceeds {settings.max_target_points} samples"
        )


def layout_text(request: TextRaster) -> TextLayout:
    """
    Measure the surface a text request needs, without drawing it.

    Raises:
        ConfigurationError: if sampling the surface would exceed
            settings.max_target_points
    """
    font = load_font(request.font_family, request.font_size)
    lines = request.text.split("\n")

    # Line box covers ascenders and descenders
    line_height = font.getbbox("Ag")[3] + request.line_spacing
    width = max(_line_width(font, line, request.letter_spacing) for line in lines)
    canvas_w = int(np.ceil(width)) + 2 * request.padding + 1
    canvas_h = int(np.ceil(line_height * len(lines))) + 2 * request.padding + 1

    _check_grid(canvas_w, canvas_h, request.resolution, "text surface")
    return TextLayout(font, lines, line_height, canvas_w, canvas_h)


def check_request(request: RasterRequest) -> None:
    """
    Reject requests whose sample grid is known to be unbounded up front.

    Text surfaces are measured from font metrics. Image sizes are only known
    after decoding, so images are checked during rasterization.

    Raises:
        ConfigurationError: if the text surface is too large
    """
    if isinstance(request, TextRaster):
        layout_text(request)


def render_text_mask(request: TextRaster) -> np.ndarray:
    """
    Draw the request's text glyph by glyph onto an offscreen alpha surface.

    Returns:
        uint8 array of shape (height, width); 255 is fully covered
    """
    font, lines, line_height, canvas_w, canvas_h = layout_text(request)

    surface = Image.new("L", (canvas_w, canvas_h), color=0)
    draw = ImageDraw.Draw(surface)
    for row, line in enumerate(lines):
        x = float(request.padding)
        y = request.padding + row * line_height
        for ch in line:
            draw.text((x, y), ch, fill=255, font=font)
            x += font.getlength(ch) + request.letter_spacing

    return np.array(surface, dtype=np.uint8)


def _open_image(source: Union[bytes, Path]) -> Image.Image:
    try:
        if isinstance(source, (bytes, bytearray)):
            image = Image.open(io.BytesIO(source))
        else:
            image = Image.open(Path(source))
        image.load()
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        raise AssetError(f"cannot read image: {exc}") from exc
    return image


def load_image(request: ImageRaster) -> Tuple[np.ndarray, np.ndarray]:
    """
    Decode the request's image.

    Returns:
        Tuple of (mask uint8 array (H, W), rgba uint8 array (H, W, 4))
    """
    image = _open_image(request.source).convert("RGBA")
    if request.scale != 1.0:
        new_size = (
            max(1, int(round(image.width * request.scale))),
            max(1, int(round(image.height * request.scale))),
        )
        image = image.resize(new_size, Image.BICUBIC)

    _check_grid(image.width, image.height, request.resolution, "image")

    rgba = np.array(image, dtype=np.uint8)
    if request.mask == "alpha":
        mask = rgba[..., 3].copy()
    else:
        r, g, b = rgba[..., 0], rgba[..., 1], rgba[..., 2]
        luminance = 0.2126 * r + 0.7152 * g + 0.0722 * b
        # Dark pixels are ink; transparent pixels never are
        mask = ((255.0 - luminance) * (rgba[..., 3] / 255.0)).astype(np.uint8)
    if request.invert:
        mask = 255 - mask
    return mask, rgba


def sample_mask(mask: np.ndarray, resolution: int, threshold: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample a mask on a regular grid.

    Samples sit at resolution // 2 + k * resolution on both axes.

    Args:
        mask: uint8 array (H, W)
        resolution: Pixels between samples
        threshold: Samples strictly above this value are kept

    Returns:
        Tuple of (xs, ys) integer pixel coordinates in row-major order
    """
    if resolution <= 0:
        raise ConfigurationError(f"resolution must be > 0, got {resolution}")
    offset = resolution // 2
    grid = mask[offset::resolution, offset::resolution]
    rows, cols = np.nonzero(grid > threshold)
    return offset + cols * resolution, offset + rows * resolution


def _build_points(xs: np.ndarray, ys: np.ndarray, colors: Optional[List[RGBA]]) -> Tuple[Point, ...]:
    if colors is None:
        return tuple(Point(float(x), float(y)) for x, y in zip(xs, ys))
    return tuple(Point(float(x), float(y), c) for x, y, c in zip(xs, ys, colors))


def rasterize_text(request: TextRaster, generation: int = 0) -> TargetSet:
    mask = render_text_mask(request)
    xs, ys = sample_mask(mask, request.resolution, request.threshold)
    colors = [request.color] * len(xs) if request.color is not None else None
    return TargetSet(
        points=_build_points(xs, ys, colors),
        generation=generation,
        width=float(mask.shape[1]),
        height=float(mask.shape[0]),
        resolution=request.resolution,
    )


def rasterize_image(request: ImageRaster, generation: int = 0) -> TargetSet:
    mask, rgba = load_image(request)
    xs, ys = sample_mask(mask, request.resolution, request.threshold)
    colors = None
    if request.color_sampling:
        colors = [tuple(int(c) for c in rgba[y, x]) for x, y in zip(xs, ys)]
    return TargetSet(
        points=_build_points(xs, ys, colors),
        generation=generation,
        width=float(mask.shape[1]),
        height=float(mask.shape[0]),
        resolution=request.resolution,
    )


def rasterize(request: RasterRequest, generation: int = 0) -> TargetSet:
    """
    Turn a text or image request into a target point set.

    Deterministic: identical requests yield point-for-point identical sets.

    Args:
        request: TextRaster, ImageRaster or an equivalent mapping
        generation: Generation id stamped on the result

    Returns:
        TargetSet in the coordinate space of the offscreen surface

    Raises:
        ConfigurationError: invalid parameters or an unbounded sample grid
        AssetError: the image source cannot be read
    """
    request = parse_request(request)
    if isinstance(request, TextRaster):
        target_set = rasterize_text(request, generation)
    else:
        target_set = rasterize_image(request, generation)

    logger.debug(
        "Rasterized formation",
        kind=request.kind,
        points=len(target_set),
        resolution=request.resolution,
        generation=generation,
    )
    return target_set
