from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from config import logger
from imaging.colors import Color
from imaging.params import FlipSpec, Length, ReflectionSpec, TextSpec, WatermarkSpec, round_half_up


def _px(length: Optional[Length], base: int, default: int = 0) -> int:
    if length is None:
        return default
    value = length.resolve(base)
    return default if value is None else value


def _origin(position: Tuple[str, str], canvas: Tuple[int, int], item: Tuple[int, int]) -> Tuple[int, int]:
    (cw, ch), (iw, ih) = canvas, item
    x = {"left": 0, "right": cw - iw}.get(position[0], (cw - iw) // 2)
    y = {"top": 0, "bottom": ch - ih}.get(position[1], (ch - ih) // 2)
    return x, y


def _too_small(image: Image.Image, min_width: Optional[Length], min_height: Optional[Length], what: str) -> bool:
    w, h = image.size
    need_w = _px(min_width, w)
    need_h = _px(min_height, h)
    if w < need_w or h < need_h:
        logger.info("Skipping %s: image %sx%s below minimum %sx%s", what, w, h, need_w, need_h)
        return True
    return False


# --------------------------------------------------------------------------- #
# geometry                                                                    #
# --------------------------------------------------------------------------- #
def flip(image: Image.Image, spec: FlipSpec) -> Image.Image:
    if spec.horizontal:
        image = image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    if spec.vertical:
        image = image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    return image


def rotate(image: Image.Image, degrees: int) -> Image.Image:
    """Clockwise rotation on an expanded, transparent canvas."""
    return image.convert("RGBA").rotate(
        -degrees,
        resample=Image.Resampling.BICUBIC,
        expand=True,
        fillcolor=(0, 0, 0, 0),
    )


# --------------------------------------------------------------------------- #
# frames                                                                      #
# --------------------------------------------------------------------------- #
def box_border(image: Image.Image, width: int, color: Color) -> Image.Image:
    if width <= 0:
        return image
    w, h = image.size
    canvas = Image.new("RGBA", (w + 2 * width, h + 2 * width), color.rgba)
    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    layer.paste(image.convert("RGBA"), (width, width))
    return Image.alpha_composite(canvas, layer)


def reflection(image: Image.Image, spec: ReflectionSpec) -> Image.Image:
    """Mirror the bottom of the image underneath it, fading from start to end opacity."""
    rgba = image.convert("RGBA")
    w, h = rgba.size
    gap = max(0, _px(spec.gap, h))
    depth = max(1, min(h, _px(spec.height, h, h // 2)))

    mirrored = rgba.crop((0, h - depth, w, h)).transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    fade = np.linspace(spec.start_opacity, spec.end_opacity, depth) / 100.0
    alpha = np.asarray(mirrored.getchannel("A"), dtype=np.float64) * fade[:, None]
    mirrored.putalpha(Image.fromarray(np.floor(alpha + 0.5).astype(np.uint8), "L"))

    canvas = Image.new("RGBA", (w, h + gap + depth), (0, 0, 0, 0))
    canvas.paste(rgba, (0, 0))
    canvas.paste(mirrored, (0, h + gap))
    return canvas


# --------------------------------------------------------------------------- #
# text                                                                        #
# --------------------------------------------------------------------------- #
def load_font(path: Optional[str], size: int):
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as e:
            logger.warning("Could not load font %s (%s); using the default font", path, e)
    return ImageFont.load_default(size=size)


def wrap_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> List[str]:
    lines: List[str] = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}".strip()
            if current and draw.textlength(candidate, font=font) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def text_overlay(image: Image.Image, spec: TextSpec) -> Image.Image:
    rgba = image.convert("RGBA")
    if _too_small(rgba, spec.min_width, spec.min_height, "text overlay"):
        return rgba
    w, h = rgba.size
    font = load_font(spec.font_path, spec.font_size)
    layer = Image.new("RGBA", rgba.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    box_width = max(1, min(w, _px(spec.box_width, w, w)))
    lines = wrap_text(draw, spec.content, font, box_width)
    line_height = max(1, _px(spec.line_height, spec.font_size, round_half_up(spec.font_size * 1.2)))
    widths = [int(draw.textlength(line, font=font)) for line in lines]
    block = (max(widths + [0]), line_height * len(lines))

    x, y = _origin(spec.position, (w, h), (box_width, block[1]))
    x += _px(spec.offset[0], w)
    y += _px(spec.offset[1], h)
    if spec.box_color.alpha > 0:
        draw.rectangle((x, y, x + box_width, y + block[1]), fill=spec.box_color.rgba)

    shadow_dx = _px(spec.shadow_offset[0], w, 1)
    shadow_dy = _px(spec.shadow_offset[1], h, 1)
    for i, (line, line_w) in enumerate(zip(lines, widths)):
        lx = x + {"left": 0, "right": box_width - line_w}.get(spec.align, (box_width - line_w) // 2)
        ly = y + i * line_height
        if spec.shadow_color is not None:
            draw.text((lx + shadow_dx, ly + shadow_dy), line, font=font, fill=spec.shadow_color.rgba)
        draw.text((lx, ly), line, font=font, fill=spec.color.rgba)
    logger.debug("Drew %d line(s) of text at %s,%s", len(lines), x, y)
    return Image.alpha_composite(rgba, layer)


# --------------------------------------------------------------------------- #
# watermark                                                                   #
# --------------------------------------------------------------------------- #
def watermark(image: Image.Image, mark: Image.Image, spec: WatermarkSpec) -> Image.Image:
    rgba = image.convert("RGBA")
    if _too_small(rgba, spec.min_width, spec.min_height, "watermark"):
        return rgba
    mark = mark.convert("RGBA")
    if spec.rotation % 360:
        mark = rotate(mark, spec.rotation)
    if spec.opacity < 100:
        alpha = np.asarray(mark.getchannel("A"), dtype=np.uint16) * spec.opacity // 100
        mark.putalpha(Image.fromarray(alpha.astype(np.uint8), "L"))

    w, h = rgba.size
    mw, mh = mark.size
    layer = Image.new("RGBA", rgba.size, (0, 0, 0, 0))
    dx = _px(spec.offset[0], w)
    dy = _px(spec.offset[1], h)
    if spec.tiled:
        step_x = mw + max(0, _px(spec.repeat[0], mw))
        step_y = mh + max(0, _px(spec.repeat[1], mh, step_x - mw))
        for ty in range(dy, h, step_y):
            for tx in range(dx, w, step_x):
                layer.paste(mark, (tx, ty))
    else:
        x, y = _origin(spec.position, (w, h), (mw, mh))
        layer.paste(mark, (x + dx, y + dy))
    return Image.alpha_composite(rgba, layer)
