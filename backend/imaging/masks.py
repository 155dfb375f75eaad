"""
Alpha masks. Every mask here is an explicit 8-bit ``L`` image (255 = keep,
0 = remove) multiplied into the buffer's alpha channel.
"""
from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw

from config import logger
from imaging.colors import Color
from imaging.params import MaskSpec

SUPERSAMPLE = 2


def _downsample(mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
    return mask.resize(size, Image.Resampling.LANCZOS)


def _star_points(cx: float, cy: float, radius: float, points: int, rotation: int, split: float = 1.0) -> List[Tuple[float, float]]:
    """Vertices of a regular polygon, or of a star when ``split`` < 1 (inner radius ratio)."""
    vertices = []
    steps = points * 2 if split < 1.0 else points
    for i in range(steps):
        r = radius if (split >= 1.0 or i % 2 == 0) else radius * split
        angle = math.radians(rotation - 90 + i * 360 / steps)
        vertices.append((cx + r * math.cos(angle), cy + r * math.sin(angle)))
    return vertices


def shape_mask(size: Tuple[int, int], spec: MaskSpec) -> Image.Image:
    w, h = size
    s = SUPERSAMPLE
    cx = (spec.x.resolve(w) or 0) * s
    cy = (spec.y.resolve(h) or 0) * s
    width = (spec.width.resolve(min(w, h)) or min(w, h)) * s
    height = spec.height.resolve(h) * s if spec.height is not None else width

    mask = Image.new("L", (w * s, h * s), 0)
    draw = ImageDraw.Draw(mask)
    if spec.shape == "circle":
        r = width / 2
        draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=255)
    elif spec.shape == "ellipse":
        draw.ellipse((cx - width / 2, cy - height / 2, cx + width / 2, cy + height / 2), fill=255)
    elif spec.shape == "square":
        draw.rectangle((cx - width / 2, cy - width / 2, cx + width / 2, cy + width / 2), fill=255)
    elif spec.shape == "rectangle":
        draw.rectangle((cx - width / 2, cy - height / 2, cx + width / 2, cy + height / 2), fill=255)
    elif spec.shape == "polygon":
        draw.polygon(_star_points(cx, cy, width / 2, spec.points, spec.rotation), fill=255)
    elif spec.shape == "star":
        draw.polygon(_star_points(cx, cy, width / 2, spec.points, spec.rotation, spec.split), fill=255)
    return _downsample(mask, size)


def corner_mask(size: Tuple[int, int], radii: Sequence[Optional[int]]) -> Image.Image:
    """
    Rounded-corner mask. ``radii`` is (top_left, top_right, bottom_left, bottom_right)
    in pixels; each radius is capped at half the shorter side.
    """
    w, h = size
    s = SUPERSAMPLE
    limit = min(w, h) / 2
    mask = Image.new("L", (w * s, h * s), 255)
    draw = ImageDraw.Draw(mask)
    origins = (
        (0, 0),
        (w * s, 0),
        (0, h * s),
        (w * s, h * s),
    )
    for radius, (ox, oy) in zip(radii, origins):
        if not radius:
            continue
        r = min(radius, limit) * s
        x0 = ox if ox == 0 else ox - r
        y0 = oy if oy == 0 else oy - r
        draw.rectangle((x0, y0, x0 + r - 1, y0 + r - 1), fill=0)
        cx = x0 + r if ox == 0 else x0
        cy = y0 + r if oy == 0 else y0
        draw.ellipse((cx - r, cy - r, cx + r - 1, cy + r - 1), fill=255)
    return _downsample(mask, size)


def apply_mask(image: Image.Image, mask: Image.Image) -> Image.Image:
    rgba = image.convert("RGBA")
    alpha = np.asarray(rgba.getchannel("A"), dtype=np.uint16)
    keep = np.asarray(mask.convert("L"), dtype=np.uint16)
    rgba.putalpha(Image.fromarray((alpha * keep // 255).astype(np.uint8), "L"))
    return rgba


def masked_border(image: Image.Image, width: int, color: Color) -> Image.Image:
    """
    Border that follows the opaque outline of ``image``: the alpha channel is dilated
    by a disc of ``width`` px and filled with ``color`` underneath the image.
    """
    if width <= 0:
        return image
    rgba = image.convert("RGBA")
    w, h = rgba.size
    canvas_size = (w + 2 * width, h + 2 * width)

    alpha = np.zeros((canvas_size[1], canvas_size[0]), dtype=np.uint8)
    alpha[width:width + h, width:width + w] = np.where(np.asarray(rgba.getchannel("A")) >= 128, 255, 0)
    disc = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (2 * width + 1, 2 * width + 1))
    grown = cv2.dilate(alpha, disc)

    border = Image.new("RGBA", canvas_size, color.rgb + (0,))
    scaled = (grown.astype(np.uint16) * color.rgba[3] // 255).astype(np.uint8)
    border.putalpha(Image.fromarray(scaled, "L"))

    layer = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
    layer.paste(rgba, (width, width))
    logger.debug("Drew %spx masked border", width)
    return Image.alpha_composite(border, layer)
