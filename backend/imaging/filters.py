"""
Filter library.

Each filter takes an RGBA ``PIL.Image`` plus the already-normalised argument tuple
from ``params.normalize_filters`` and returns a new image. Arithmetic is done with
numpy on ``uint8`` RGBA arrays. Convolutions use 3x3 kernels with edge pixels
replicated; results are truncated and clamped to 0..255.
"""
from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw

from config import logger
from imaging.colors import Color, hsl_to_rgb, rgb_to_hsl
from imaging.geometry import FaceBox
from imaging.masks import apply_mask, shape_mask
from imaging.params import FilterName, FilterSpec, round_half_up
from imaging.services import ColorExtractionService, FaceDetectionService


@dataclass
class FilterContext:
    """Per-render state shared by the filters of one request."""
    orig_width:       int
    new_width:        int
    bg_color:         Color = Color(255, 255, 255)
    face_sensitivity: int = 3
    face_detector:    Optional[FaceDetectionService] = None
    color_extractor:  Optional[ColorExtractionService] = None
    rng:              np.random.Generator = field(default_factory=np.random.default_rng)
    faces:            Optional[List[FaceBox]] = None
    masked:           bool = False
    extension:        str = "jpg"

    def detect_faces(self, image: Image.Image) -> List[FaceBox]:
        if self.faces is None:
            if self.face_detector is None:
                logger.warning("Face detection requested but no detector is configured")
                self.faces = []
            else:
                self.faces = list(self.face_detector.detect(image, self.face_sensitivity))
        return self.faces


FilterFn = Callable[[Image.Image, tuple, FilterContext], Image.Image]


# --------------------------------------------------------------------------- #
# array helpers                                                               #
# --------------------------------------------------------------------------- #
def _rgba(image: Image.Image) -> np.ndarray:
    return np.array(image.convert("RGBA"))


def _image(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(arr, dtype=np.uint8), "RGBA")


def _with_rgb(arr: np.ndarray, rgb: np.ndarray) -> np.ndarray:
    out = arr.copy()
    out[..., :3] = np.clip(rgb, 0, 255).astype(np.uint8)
    return out


def convolve(arr: np.ndarray, kernel: Sequence[Sequence[float]], divisor: float = 1.0, offset: float = 0.0) -> np.ndarray:
    k = np.asarray(kernel, dtype=np.float64)
    rgb = arr[..., :3].astype(np.float64)
    h, w = rgb.shape[:2]
    padded = np.pad(rgb, ((1, 1), (1, 1), (0, 0)), mode="edge")
    acc = np.zeros_like(rgb)
    for dy in range(3):
        for dx in range(3):
            if k[dy, dx]:
                acc += k[dy, dx] * padded[dy:dy + h, dx:dx + w]
    return _with_rgb(arr, np.trunc(np.clip(acc / (divisor or 1.0) + offset, 0, 255)))


GAUSSIAN = ((1, 2, 1), (2, 4, 2), (1, 2, 1))


def gaussian(arr: np.ndarray, passes: int = 1) -> np.ndarray:
    for _ in range(passes):
        arr = convolve(arr, GAUSSIAN, 16)
    return arr


def luminance(arr: np.ndarray) -> np.ndarray:
    rgb = arr[..., :3].astype(np.float64)
    return rgb[..., 0] * 0.299 + rgb[..., 1] * 0.587 + rgb[..., 2] * 0.114


# --------------------------------------------------------------------------- #
# colour adjustments                                                          #
# --------------------------------------------------------------------------- #
def brightness(image, args, ctx):
    delta = round_half_up(args[0] * 255 / 100)
    arr = _rgba(image)
    return _image(_with_rgb(arr, arr[..., :3].astype(np.int16) + delta))


def contrast(image, args, ctx):
    # args[0] is already sign-inverted: positive reduces contrast
    factor = ((100.0 - args[0]) / 100.0) ** 2
    arr = _rgba(image)
    norm = arr[..., :3].astype(np.float64) / 255.0
    return _image(_with_rgb(arr, np.trunc(((norm - 0.5) * factor + 0.5) * 255.0)))


def colorize(image, args, ctx):
    arr = _rgba(image)
    return _image(_with_rgb(arr, arr[..., :3].astype(np.int16) + np.array(args[:3], dtype=np.int16)))


def grayscale(image, args, ctx):
    arr = _rgba(image)
    gray = np.trunc(luminance(arr))
    return _image(_with_rgb(arr, np.repeat(gray[..., None], 3, axis=2)))


def negate(image, args, ctx):
    arr = _rgba(image)
    return _image(_with_rgb(arr, 255 - arr[..., :3].astype(np.int16)))


def sepia(image, args, ctx):
    if args and args[0] == "slow":
        arr = _rgba(image)
        rgb = arr[..., :3].astype(np.float64)
        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
        toned = np.stack([
            0.393 * r + 0.769 * g + 0.189 * b,
            0.349 * r + 0.686 * g + 0.168 * b,
            0.272 * r + 0.534 * g + 0.131 * b,
        ], axis=-1)
        return _image(_with_rgb(arr, np.floor(np.clip(toned, 0, 255) + 0.5)))
    image = contrast(image, (-15,), ctx)
    image = grayscale(image, (), ctx)
    return colorize(image, (35, 10, -17), ctx)


def opacity(image, args, ctx):
    """
    Rescale alpha relative to the most opaque pixel, so an image that is already
    partly transparent keeps its relative transparency.
    """
    arr = _rgba(image)
    alpha = arr[..., 3].astype(np.float64)
    peak = alpha.max()
    if peak <= 0:
        return image
    fraction = args[0] / 100.0
    out = arr.copy()
    out[..., 3] = np.clip(np.floor(255.0 * fraction * alpha / peak + 0.5), 0, 255).astype(np.uint8)
    return _image(out)


def replace_colors(image, args, ctx):
    source, target, tolerance = args
    if source.rgb == target.rgb:
        return image
    window = tolerance * 1.8
    arr = _rgba(image)
    hsl = rgb_to_hsl(arr[..., :3])
    from_hsl = rgb_to_hsl(np.array(source.rgb))
    to_hsl = rgb_to_hsl(np.array(target.rgb))
    hit = (hsl[..., 0] >= from_hsl[0] - window) & (hsl[..., 0] <= from_hsl[0] + window)
    replaced = hsl.copy()
    replaced[..., 0] = to_hsl[0]
    replaced[..., 1] = to_hsl[1]
    rgb = np.where(hit[..., None], hsl_to_rgb(replaced), arr[..., :3])
    logger.debug("replace_colors changed %d pixel(s)", int(hit.sum()))
    return _image(_with_rgb(arr, rgb))


def dominant_color(image, args, ctx):
    if ctx.color_extractor is None:
        logger.warning("dominant_color requested but no colour extractor is configured")
        return image
    rgb = ctx.color_extractor.extract(image, args[0])
    arr = _rgba(image)
    return _image(_with_rgb(arr, np.broadcast_to(np.array(rgb, dtype=np.int16), arr[..., :3].shape)))


# --------------------------------------------------------------------------- #
# convolutions                                                                #
# --------------------------------------------------------------------------- #
def edgedetect(image, args, ctx):
    return _image(convolve(_rgba(image), ((-1, 0, -1), (0, 4, 0), (-1, 0, -1)), 1, 127))


def emboss_color(image, args, ctx):
    return _image(convolve(_rgba(image), ((1.5, 0, 0), (0, 0, 0), (0, 0, -1.5)), 1, 127))


def emboss(image, args, ctx):
    return grayscale(emboss_color(image, args, ctx), (), ctx)


def mean_removal(image, args, ctx):
    return _image(convolve(_rgba(image), ((-1, -1, -1), (-1, 9, -1), (-1, -1, -1))))


def smooth(image, args, ctx):
    weight = args[0]
    return _image(convolve(_rgba(image), ((1, 1, 1), (1, weight, 1), (1, 1, 1)), weight + 8))


def blur(image, args, ctx):
    return _image(gaussian(_rgba(image), args[0]))


def selective_blur(image, args, ctx):
    """Neighbours are weighted per channel by how close they are to the centre pixel."""
    arr = _rgba(image)
    for _ in range(args[0]):
        rgb = arr[..., :3].astype(np.float64)
        h, w = rgb.shape[:2]
        padded = np.pad(rgb, ((1, 1), (1, 1), (0, 0)), mode="edge")
        total = np.zeros_like(rgb)
        weights = np.zeros_like(rgb)
        for dy in range(3):
            for dx in range(3):
                neighbour = padded[dy:dy + h, dx:dx + w]
                weight = 1.0 - np.abs(neighbour - rgb) / 255.0
                total += weight * neighbour
                weights += weight
        arr = _with_rgb(arr, np.trunc(total / weights))
    return _image(arr)


def sharpen(image, args, ctx):
    """Unsharp mask: amount, radius, threshold."""
    amount, radius, threshold = args
    amount = min(amount, 500) * 0.016
    radius = abs(round_half_up(min(50, radius) * 2))
    threshold = min(255, threshold)
    if radius == 0 or amount == 0:
        return image
    arr = _rgba(image)
    original = arr[..., :3].astype(np.float64)
    blurred = gaussian(arr)[..., :3].astype(np.float64)
    diff = original - blurred
    boosted = np.clip(original + np.sign(diff) * np.floor(np.abs(amount * diff) + 0.5), 0, 255)
    rgb = np.where(np.abs(diff) >= threshold, boosted, original)
    return _image(_with_rgb(arr, rgb))


SHARPEN_TABLE = ((0.04, 9), (0.06, 8), (0.12, 7), (0.16, 6), (0.25, 5), (0.50, 4), (0.75, 3), (0.85, 3), (0.95, 2), (1.00, 1))


def auto_sharpen_strength(orig_width: int, new_width: int) -> int:
    """Sharpening needed after a resize; the smaller the result, the stronger."""
    if orig_width <= 0:
        return 1
    ratio = new_width / orig_width
    keys = [k for k, _ in SHARPEN_TABLE]
    index = bisect.bisect_left(keys, ratio)
    return SHARPEN_TABLE[min(index, len(SHARPEN_TABLE) - 1)][1]


def auto_sharpen(image, args, ctx):
    amount = auto_sharpen_strength(ctx.orig_width, ctx.new_width) * 10
    low = amount * -0.01 if amount >= 10 else 0.0
    edge = amount * -0.025
    centre = -(4 * low + 4 * edge) + 1
    kernel = ((low, edge, low), (edge, centre, edge), (low, edge, low))
    return _image(convolve(_rgba(image), kernel))


def sobel_edgify(image, args, ctx):
    arr = _rgba(image)
    gray = np.pad(luminance(arr), 1, mode="edge")
    h, w = arr.shape[:2]

    def window(dy, dx):
        return gray[dy:dy + h, dx:dx + w]

    gx = (window(0, 2) + 2 * window(1, 2) + window(2, 2)) - (window(0, 0) + 2 * window(1, 0) + window(2, 0))
    gy = (window(2, 0) + 2 * window(2, 1) + window(2, 2)) - (window(0, 0) + 2 * window(0, 1) + window(0, 2))
    edges = np.where(np.hypot(gx, gy) >= args[0], 0, 255)
    return _image(_with_rgb(arr, np.repeat(edges[..., None], 3, axis=2)))


# --------------------------------------------------------------------------- #
# stochastic                                                                  #
# --------------------------------------------------------------------------- #
def noise(image, args, ctx):
    level = args[0]
    if level == 0:
        return image
    arr = _rgba(image)
    h, w = arr.shape[:2]
    chosen = ctx.rng.integers(0, 2, size=(h, w)).astype(bool)
    sign = np.where(ctx.rng.integers(0, 2, size=(h, w)) == 1, 1, -1)
    step = ctx.rng.integers(0, 2 ** 31 - 1, size=(h, w)) & level
    shift = np.where(chosen, sign * step, 0)
    return _image(_with_rgb(arr, arr[..., :3].astype(np.int32) + shift[..., None]))


def scatter(image, args, ctx):
    """Each pixel takes the colour of a random neighbour offset by -sub..add on both axes."""
    sub, add = args
    arr = _rgba(image)
    h, w = arr.shape[:2]
    ys, xs = np.mgrid[0:h, 0:w]
    dy = ys + ctx.rng.integers(-sub, add + 1, size=(h, w))
    dx = xs + ctx.rng.integers(-sub, add + 1, size=(h, w))
    inside = (dy >= 0) & (dy < h) & (dx >= 0) & (dx < w)
    dy = np.where(inside, dy, ys)
    dx = np.where(inside, dx, xs)
    return _image(arr[dy, dx])


# --------------------------------------------------------------------------- #
# block effects                                                               #
# --------------------------------------------------------------------------- #
def pixelate(image, args, ctx):
    block, advanced = args
    if block <= 1:
        return image
    arr = _rgba(image)
    h, w = arr.shape[:2]
    ys = np.arange(0, h, block)
    xs = np.arange(0, w, block)
    heights = np.diff(np.append(ys, h))
    widths = np.diff(np.append(xs, w))
    if advanced:
        sums = np.add.reduceat(np.add.reduceat(arr.astype(np.int64), ys, axis=0), xs, axis=1)
        cells = sums // (heights[:, None, None] * widths[None, :, None])
    else:
        cells = arr[ys][:, xs]
    out = np.repeat(np.repeat(cells, heights, axis=0), widths, axis=1)
    return _image(out)


def dot(image, args, ctx):
    """Halftone: one circle or square per ``block`` px, sized by the darkness of that cell."""
    block, color, shape, multiplier = args
    w, h = image.size
    reduced_w = max(1, round_half_up(w / block))
    reduced_h = max(1, round_half_up(h * reduced_w / w))
    reduced = _rgba(image.resize((reduced_w, reduced_h), Image.Resampling.LANCZOS))
    intensity = (255 - np.trunc(luminance(reduced))) / 255 * multiplier * 1.2

    canvas = Image.new("RGBA", (w, h), (255, 255, 255, 255))
    draw = ImageDraw.Draw(canvas)
    nudge = round_half_up(block / 2)
    for y in range(reduced_h):
        for x in range(reduced_w):
            fill = color.rgba if color is not None else tuple(int(c) for c in reduced[y, x])
            nx, ny = min(x * block, w), min(y * block, h)
            if shape == "square":
                r = round_half_up(nudge * intensity[y, x])
                if r:
                    draw.rectangle((nx + r + nudge, ny + r + nudge, nx + 2 * r + nudge, ny + 2 * r + nudge), fill=fill)
            else:
                r = round_half_up(block / 2 * intensity[y, x] * 1.2)
                if r:
                    cx, cy = nx + r + nudge, ny + r + nudge
                    draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=fill)
    return canvas


def lqip(image, args, ctx):
    return blur(pixelate(image, (6, False), ctx), (12,), ctx)


# --------------------------------------------------------------------------- #
# faces / masks                                                               #
# --------------------------------------------------------------------------- #
FACE_PRIMARY = "#01bf42"
FACE_OTHER = "#eded03"


def face_detect(image, args, ctx):
    faces = ctx.detect_faces(image)
    if not args[0] or not faces:
        return image
    out = image.convert("RGBA")
    draw = ImageDraw.Draw(out)
    for i, face in enumerate(faces):
        if face.width < 20 or face.height < 20:
            continue
        draw.rectangle(
            (face.x, face.y, face.x + face.width, face.y + face.height),
            outline=FACE_PRIMARY if i == 0 else FACE_OTHER,
            width=2,
        )
    return out


TRANSPARENT_FORMATS = ("png", "webp")


def mask(image, args, ctx):
    # flattened formats keep the plain box border
    if ctx.extension in TRANSPARENT_FORMATS:
        ctx.masked = True
    return apply_mask(image, shape_mask(image.size, args[0]))


FILTERS: Dict[FilterName, FilterFn] = {
    FilterName.AUTO_SHARPEN:   auto_sharpen,
    FilterName.BLUR:           blur,
    FilterName.BRIGHTNESS:     brightness,
    FilterName.COLORIZE:       colorize,
    FilterName.CONTRAST:       contrast,
    FilterName.DOMINANT_COLOR: dominant_color,
    FilterName.DOT:            dot,
    FilterName.EDGEDETECT:     edgedetect,
    FilterName.EMBOSS:         emboss,
    FilterName.EMBOSS_COLOR:   emboss_color,
    FilterName.FACE_DETECT:    face_detect,
    FilterName.GRAYSCALE:      grayscale,
    FilterName.LQIP:           lqip,
    FilterName.MASK:           mask,
    FilterName.MEAN_REMOVAL:   mean_removal,
    FilterName.NEGATE:         negate,
    FilterName.NOISE:          noise,
    FilterName.OPACITY:        opacity,
    FilterName.PIXELATE:       pixelate,
    FilterName.REPLACE_COLORS: replace_colors,
    FilterName.SCATTER:        scatter,
    FilterName.SELECTIVE_BLUR: selective_blur,
    FilterName.SEPIA:          sepia,
    FilterName.SHARPEN:        sharpen,
    FilterName.SMOOTH:         smooth,
    FilterName.SOBEL_EDGIFY:   sobel_edgify,
}

_unhandled = set(FilterName) - set(FILTERS)
if _unhandled:
    raise RuntimeError(f"No implementation for filter(s): {sorted(f.value for f in _unhandled)}")


def apply_filter(image: Image.Image, spec: FilterSpec, ctx: FilterContext) -> Image.Image:
    logger.debug("Applying filter %s%s", spec.name.value, spec.args)
    return FILTERS[spec.name](image, spec.args, ctx)
