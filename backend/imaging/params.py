"""
Parameter normalisation.

Every string-encoded option of an ``ImageRequest`` is parsed here, once, into an
immutable tagged structure. Malformed values never fail the request: the parser
logs the problem and substitutes the documented default.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from config import Settings, logger
from imaging.colors import TRANSPARENT, Color, parse_color
from imaging.errors import InvalidParameter


def round_half_up(value: float) -> int:
    """Round halves away from zero (``round`` in Python rounds halves to even)."""
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


def is_yes(value: Optional[str], default: bool = False) -> bool:
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower()[:1] in ("y", "t", "1")


# --------------------------------------------------------------------------- #
# dimensions                                                                  #
# --------------------------------------------------------------------------- #
class Length(NamedTuple):
    value: float
    unit:  str = "px"   # "px" | "%"

    def resolve(self, base: Optional[int] = None) -> Optional[int]:
        if self.unit == "%":
            if not base:
                logger.warning("Percentage dimension %s%% has no base to resolve against", self.value)
                return None
            return round_half_up(base * self.value / 100)
        return int(self.value)


_LENGTH_RE = re.compile(r"^(-?\d+(?:\.\d+)?)\s*(px|%)?$", re.IGNORECASE)


def parse_length(value) -> Optional[Length]:
    """``N``, ``Npx`` or ``N%``; ``None``/empty -> ``None``; anything else raises."""
    if value is None:
        return None
    text = str(value).strip()
    if text == "":
        return None
    match = _LENGTH_RE.match(text)
    if not match:
        raise InvalidParameter(f"invalid dimension {value!r}")
    number = float(match.group(1))
    if (match.group(2) or "px").lower() == "%":
        return Length(number, "%")
    return Length(round_half_up(number), "px")


def length_or_none(value, name: str = "dimension") -> Optional[Length]:
    try:
        return parse_length(value)
    except InvalidParameter:
        logger.warning("Ignoring invalid %s value %r", name, value)
        return None


def validate_dimension(value, base: Optional[int] = None) -> Optional[int]:
    """Parse and resolve in one go; invalid input resolves to ``None``."""
    length = length_or_none(value)
    return length.resolve(base) if length is not None else None


def parse_aspect_ratio(value) -> Optional[float]:
    """``W_H``, ``W/H``, ``W:H`` or a bare decimal; returned as height / width."""
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    parts = re.split(r"[_/:]", text)
    try:
        if len(parts) == 2:
            w, h = float(parts[0]), float(parts[1])
            if w > 0 and h > 0:
                return h / w
        elif len(parts) == 1 and float(text) > 0:
            return float(text)
    except ValueError:
        pass
    logger.warning("Ignoring invalid aspect_ratio %r", value)
    return None


def split_args(text: str, sep: str = ",") -> List[str]:
    """Split on ``sep`` except inside parentheses, so ``rgba(0,0,0,.5)`` stays whole."""
    out: List[str] = []
    depth, current = 0, []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        if ch == sep and depth == 0:
            out.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    out.append("".join(current).strip())
    return out


def _int(value, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(round_half_up(float(str(value).strip())))
    except ValueError:
        logger.warning("Expected an integer, got %r; using %s", value, default)
        return default


def _float(value, default: float) -> float:
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        logger.warning("Expected a number, got %r; using %s", value, default)
        return default


def _clamp(value, low, high):
    return max(low, min(high, value))


def _positive(value, default):
    return value if value > 0 else default


def _arg(args: List[str], index: int) -> Optional[str]:
    if index < len(args) and args[index] != "":
        return args[index]
    return None


# --------------------------------------------------------------------------- #
# filters                                                                     #
# --------------------------------------------------------------------------- #
class FilterName(str, Enum):
    AUTO_SHARPEN   = "auto_sharpen"
    BLUR           = "blur"
    BRIGHTNESS     = "brightness"
    COLORIZE       = "colorize"
    CONTRAST       = "contrast"
    DOMINANT_COLOR = "dominant_color"
    DOT            = "dot"
    EDGEDETECT     = "edgedetect"
    EMBOSS         = "emboss"
    EMBOSS_COLOR   = "emboss_color"
    FACE_DETECT    = "face_detect"
    GRAYSCALE      = "grayscale"
    LQIP           = "lqip"
    MASK           = "mask"
    MEAN_REMOVAL   = "mean_removal"
    NEGATE         = "negate"
    NOISE          = "noise"
    OPACITY        = "opacity"
    PIXELATE       = "pixelate"
    REPLACE_COLORS = "replace_colors"
    SCATTER        = "scatter"
    SELECTIVE_BLUR = "selective_blur"
    SEPIA          = "sepia"
    SHARPEN        = "sharpen"
    SMOOTH         = "smooth"
    SOBEL_EDGIFY   = "sobel_edgify"


FILTER_ALIASES = {
    "gaussian_blur": FilterName.BLUR,
    "greyscale":     FilterName.GRAYSCALE,
    "invert":        FilterName.NEGATE,
    "negation":      FilterName.NEGATE,
}


class FilterSpec(NamedTuple):
    name: FilterName
    args: tuple = ()


class MaskSpec(NamedTuple):
    shape:    str               # circle | ellipse | rectangle | square | polygon | star
    points:   int
    x:        Length
    y:        Length
    width:    Length
    height:   Optional[Length]
    rotation: int
    split:    float


MASK_SHAPES = ("circle", "ellipse", "rectangle", "square", "polygon", "star")


def _parse_mask(args: List[str]) -> Optional[tuple]:
    if not args or not args[0]:
        logger.warning("mask filter needs a shape")
        return None
    shape = args[0].strip().lower()
    points = 0
    if shape.startswith(("star-", "polygon-")):
        shape, _, count = shape.partition("-")
        points = _int(count, 0)
        if points < 3:
            logger.warning("mask %s needs at least 3 points, got %r", shape, count)
            return None
    elif shape in ("star", "polygon"):
        points = 5
    if shape not in MASK_SHAPES:
        logger.warning("Unknown mask shape %r", args[0])
        return None

    x = length_or_none(_arg(args, 1)) or Length(50, "%")
    y = length_or_none(_arg(args, 2)) or Length(50, "%")
    width = length_or_none(_arg(args, 3)) or Length(100, "%")
    height, rotation, split = None, 0, 0.5
    if shape in ("ellipse", "rectangle"):
        height = length_or_none(_arg(args, 4))
    elif shape in ("polygon", "star"):
        rotation = _int(_arg(args, 4), 0)
        if shape == "star":
            split = _clamp(_float(_arg(args, 5), 0.5), 0.05, 0.95)
    return (MaskSpec(shape, points, x, y, width, height, rotation, split),)


def _parse_scatter(args: List[str]) -> tuple:
    sub = max(0, _int(_arg(args, 0), 3))
    add = max(0, _int(_arg(args, 1), sub * 2))
    if sub >= add:
        corrected = round_half_up(add / 2)
        logger.warning("scatter: sub %s must be below add %s, using %s", sub, add, corrected)
        sub = corrected
    return (sub, add)


def _parse_sharpen(args: List[str]) -> tuple:
    amount = _int(_arg(args, 0), 80)
    radius = _float(_arg(args, 1), 0.5)
    threshold = _int(_arg(args, 2), 3)
    return (_clamp(_positive(amount, 80), 0, 500), _positive(radius, 0.5), _positive(threshold, 3))


def _parse_replace_colors(args: List[str]) -> Optional[tuple]:
    source = parse_color(_arg(args, 0))
    target = parse_color(_arg(args, 1))
    if source is None or target is None:
        logger.warning("replace_colors needs a from and a to colour, got %r", args)
        return None
    return (source, target, _clamp(_int(_arg(args, 2), 0), 0, 100))


def _parse_dot(args: List[str]) -> tuple:
    shape = (_arg(args, 2) or "circle").lower()
    return (
        max(2, _int(_arg(args, 0), 6)),
        parse_color(_arg(args, 1)),
        "square" if shape.startswith("s") else "circle",
        max(0.0, _float(_arg(args, 3), 1.0)),
    )


def _parse_sepia(args: List[str]) -> tuple:
    method = (_arg(args, 0) or "fast").lower()
    if method not in ("fast", "slow"):
        logger.warning("sepia method %r unknown, using fast", method)
        method = "fast"
    return (method,)


_NO_ARGS: Callable[[List[str]], tuple] = lambda args: ()

_NORMALISERS: Dict[FilterName, Callable[[List[str]], Optional[tuple]]] = {
    FilterName.AUTO_SHARPEN:   _NO_ARGS,
    FilterName.BLUR:           lambda a: (_clamp(_int(_arg(a, 0), 1), 0, 100),),
    FilterName.BRIGHTNESS:     lambda a: (round_half_up(_clamp(_int(_arg(a, 0), 0), -255, 255) / 255 * 100),),
    FilterName.COLORIZE:       lambda a: tuple(_clamp(_int(_arg(a, i), 0), -255, 255) for i in range(3)),
    FilterName.CONTRAST:       lambda a: (-_clamp(_int(_arg(a, 0), 0), -100, 100),),
    FilterName.DOMINANT_COLOR: lambda a: (max(1, _int(_arg(a, 0), 10)),),
    FilterName.DOT:            _parse_dot,
    FilterName.EDGEDETECT:     _NO_ARGS,
    FilterName.EMBOSS:         _NO_ARGS,
    FilterName.EMBOSS_COLOR:   _NO_ARGS,
    FilterName.FACE_DETECT:    lambda a: (is_yes(_arg(a, 0), True),),
    FilterName.GRAYSCALE:      _NO_ARGS,
    FilterName.LQIP:           _NO_ARGS,
    FilterName.MASK:           _parse_mask,
    FilterName.MEAN_REMOVAL:   _NO_ARGS,
    FilterName.NEGATE:         _NO_ARGS,
    FilterName.NOISE:          lambda a: (_clamp(_int(_arg(a, 0), 30), 0, 255),),
    FilterName.OPACITY:        lambda a: (_clamp(abs(_int(_arg(a, 0), 100)), 0, 100),),
    FilterName.PIXELATE:       lambda a: (max(0, _int(_arg(a, 0), 0)), is_yes(_arg(a, 1))),
    FilterName.REPLACE_COLORS: _parse_replace_colors,
    FilterName.SCATTER:        _parse_scatter,
    FilterName.SELECTIVE_BLUR: lambda a: (_clamp(_int(_arg(a, 0), 1), 0, 100),),
    FilterName.SEPIA:          _parse_sepia,
    FilterName.SHARPEN:        _parse_sharpen,
    FilterName.SMOOTH:         lambda a: (_float(_arg(a, 0), 1.0),),
    FilterName.SOBEL_EDGIFY:   lambda a: (_positive(_int(_arg(a, 0), 125), 125),),
}


def lookup_filter(name: str) -> Optional[FilterName]:
    key = name.strip().lower()
    if key in FILTER_ALIASES:
        return FILTER_ALIASES[key]
    try:
        return FilterName(key)
    except ValueError:
        return None


def normalize_filters(raw: Optional[str]) -> List[FilterSpec]:
    """
    Parse ``"name,arg,arg|name,..."`` into ordered, clamped ``FilterSpec`` values.
    Unknown filters and filters with unusable arguments are skipped.
    """
    specs: List[FilterSpec] = []
    if not raw:
        return specs
    for chunk in split_args(raw, "|"):
        if not chunk:
            continue
        parts = split_args(chunk, ",")
        name = lookup_filter(parts[0])
        if name is None:
            logger.warning("Skipping unknown filter %r", parts[0])
            continue
        args = _NORMALISERS[name](parts[1:])
        if args is None:
            logger.warning("Skipping filter %s: unusable arguments %r", name.value, parts[1:])
            continue
        specs.append(FilterSpec(name, args))
    return specs


# --------------------------------------------------------------------------- #
# crop                                                                        #
# --------------------------------------------------------------------------- #
X_POSITIONS = ("left", "center", "right", "face_detect")
Y_POSITIONS = ("top", "center", "bottom", "face_detect")


class CropSpec(NamedTuple):
    mode:        str = "n"                          # n | y | f (face crop)
    position:    Tuple[str, str] = ("center", "center")
    offset:      Tuple[Optional[Length], Optional[Length]] = (None, None)
    smart_scale: bool = True
    sensitivity: int = 3

    @property
    def enabled(self) -> bool:
        return self.mode in ("y", "f")


def parse_crop(raw: Optional[str], default_sensitivity: int = 3) -> CropSpec:
    """``enabled|x_pos,y_pos|x_off,y_off|smart_scale|sensitivity``"""
    if not raw:
        return CropSpec(sensitivity=default_sensitivity)
    parts = [p.strip() for p in str(raw).split("|")]
    flag = (parts[0][:1] or "n").lower()
    mode = flag if flag in ("y", "f") else "n"

    position = ["center", "center"]
    if _arg(parts, 1):
        given = [p.strip().lower() for p in parts[1].split(",")]
        if given[0] in X_POSITIONS:
            position[0] = given[0]
        else:
            logger.warning("Invalid horizontal crop position %r, using center", given[0])
        if len(given) > 1:
            if given[1] in Y_POSITIONS:
                position[1] = given[1]
            else:
                logger.warning("Invalid vertical crop position %r, using center", given[1])

    offset: List[Optional[Length]] = [None, None]
    if _arg(parts, 2):
        for i, value in enumerate(parts[2].split(",")[:2]):
            offset[i] = length_or_none(value, "crop offset")

    smart_scale = is_yes(_arg(parts, 3), True)
    sensitivity = _clamp(_int(_arg(parts, 4), default_sensitivity), 1, 9)
    return CropSpec(mode, (position[0], position[1]), (offset[0], offset[1]), smart_scale, sensitivity)


# --------------------------------------------------------------------------- #
# overlays                                                                    #
# --------------------------------------------------------------------------- #
class FlipSpec(NamedTuple):
    horizontal: bool
    vertical:   bool


class BorderSpec(NamedTuple):
    width: Length
    color: Optional[Color]


class CornerSpec(NamedTuple):
    top_left:     Optional[Length]
    top_right:    Optional[Length]
    bottom_left:  Optional[Length]
    bottom_right: Optional[Length]


class ReflectionSpec(NamedTuple):
    gap:           Length
    start_opacity: int
    end_opacity:   int
    height:        Length


class TextSpec(NamedTuple):
    content:        str
    min_width:      Optional[Length]
    min_height:     Optional[Length]
    font_size:      int
    line_height:    Optional[Length]
    color:          Color
    font_path:      Optional[str]
    align:          str
    box_width:      Optional[Length]
    position:       Tuple[str, str]
    offset:         Tuple[Optional[Length], Optional[Length]]
    opacity:        float
    shadow_color:   Optional[Color]
    shadow_offset:  Tuple[Optional[Length], Optional[Length]]
    shadow_opacity: float
    box_color:      Color


class WatermarkSpec(NamedTuple):
    src:        str
    min_width:  Optional[Length]
    min_height: Optional[Length]
    opacity:    int
    position:   Tuple[str, str]
    repeat:     Tuple[Optional[Length], Optional[Length]]
    offset:     Tuple[Optional[Length], Optional[Length]]
    rotation:   int

    @property
    def tiled(self) -> bool:
        return self.position[0] == "repeat"


def parse_flip(raw: Optional[str]) -> Optional[FlipSpec]:
    if not raw:
        return None
    axes = {p.strip().lower()[:1] for p in re.split(r"[|,]", str(raw))}
    spec = FlipSpec("h" in axes, "v" in axes)
    if not (spec.horizontal or spec.vertical):
        logger.warning("Ignoring invalid flip %r", raw)
        return None
    return spec


def parse_rotate(raw: Optional[str]) -> Optional[int]:
    if raw is None or str(raw).strip() == "":
        return None
    angle = _int(raw, 0) % 360
    return angle or None


def parse_border(raw: Optional[str]) -> Optional[BorderSpec]:
    if not raw:
        return None
    parts = split_args(str(raw), "|")
    width = length_or_none(parts[0], "border width")
    if width is None or width.value <= 0:
        logger.warning("Ignoring border %r: width must be positive", raw)
        return None
    return BorderSpec(width, parse_color(_arg(parts, 1)))


def parse_rounded_corners(raw: Optional[str]) -> Optional[CornerSpec]:
    if not raw:
        return None
    corners: Dict[str, Optional[Length]] = {"tl": None, "tr": None, "bl": None, "br": None}
    for chunk in str(raw).split("|"):
        parts = [p.strip().lower() for p in chunk.split(",")]
        if not parts[0]:
            continue
        if len(parts) == 1:
            which, radius = "all", parts[0]
        else:
            which, radius = parts[0], parts[1]
        length = length_or_none(radius, "corner radius")
        if length is None or length.value <= 0:
            continue
        if which == "all":
            for key in corners:
                corners[key] = length
        elif which in corners:
            corners[which] = length
        else:
            logger.warning("Unknown corner %r in rounded_corners", which)
    if not any(corners.values()):
        logger.warning("Ignoring rounded_corners %r: no usable radius", raw)
        return None
    return CornerSpec(corners["tl"], corners["tr"], corners["bl"], corners["br"])


def parse_reflection(raw: Optional[str]) -> Optional[ReflectionSpec]:
    if raw is None or str(raw).strip() == "" or str(raw).strip().lower()[:1] == "n":
        return None
    parts = split_args(str(raw), ",")
    gap = length_or_none(_arg(parts, 0), "reflection gap") or Length(0)
    start = _clamp(_int(_arg(parts, 1), 80), 0, 100)
    end = _clamp(_int(_arg(parts, 2), 0), 0, 100)
    height = length_or_none(_arg(parts, 3), "reflection height") or Length(50, "%")
    return ReflectionSpec(gap, start, end, height)


def _pair(raw: Optional[str], name: str) -> Tuple[Optional[Length], Optional[Length]]:
    if not raw:
        return (None, None)
    parts = raw.split(",")
    first = length_or_none(parts[0], name)
    second = length_or_none(parts[1], name) if len(parts) > 1 else None
    return (first, second)


def _position(raw: Optional[str]) -> Tuple[str, str]:
    if not raw:
        return ("center", "center")
    parts = [p.strip().lower() for p in raw.split(",")]
    x = parts[0] if parts[0] in ("left", "center", "right") else "center"
    y = parts[1] if len(parts) > 1 and parts[1] in ("top", "center", "bottom") else "center"
    return (x, y)


def parse_text(raw: Optional[str]) -> Optional[TextSpec]:
    if not raw:
        return None
    parts = str(raw).split("|")
    content = parts[0]
    for token in ("\\n", "<br />", "<br>", "</p>"):
        content = content.replace(token, "\n")
    content = re.sub(r"<[^>]+>", "", content).replace("&nbsp;", " ")
    content = "\n".join(line.strip() for line in content.splitlines()).strip()
    if not content:
        logger.warning("Ignoring text overlay: no content")
        return None

    min_width, min_height = _pair(_arg(parts, 1), "text minimum size")
    font_size = max(1, _int(_arg(parts, 2), 12))
    opacity = _clamp(abs(_int(_arg(parts, 10), 100)) / 100, 0.0, 1.0)
    color = parse_color(_arg(parts, 4), Color(0, 0, 0)).with_alpha(opacity)
    shadow = parse_color(_arg(parts, 11))
    shadow_opacity = _clamp(abs(_int(_arg(parts, 13), 100)) / 100, 0.0, 1.0)
    return TextSpec(
        content        = content,
        min_width      = min_width,
        min_height     = min_height,
        font_size      = font_size,
        line_height    = length_or_none(_arg(parts, 3), "line height"),
        color          = color,
        font_path      = _arg(parts, 5),
        align          = (_arg(parts, 6) or "center").lower(),
        box_width      = length_or_none(_arg(parts, 7), "text box width"),
        position       = _position(_arg(parts, 8)),
        offset         = _pair(_arg(parts, 9), "text offset"),
        opacity        = opacity,
        shadow_color   = shadow.with_alpha(shadow_opacity) if shadow else None,
        shadow_offset  = _pair(_arg(parts, 12), "shadow offset") if shadow else (None, None),
        shadow_opacity = shadow_opacity,
        box_color      = parse_color(_arg(parts, 14), TRANSPARENT),
    )


def parse_watermark(raw: Optional[str]) -> Optional[WatermarkSpec]:
    if not raw:
        return None
    parts = str(raw).split("|")
    src = parts[0].strip()
    if not src:
        logger.warning("Ignoring watermark: no source")
        return None
    min_width, min_height = _pair(_arg(parts, 1), "watermark minimum size")

    position: Tuple[str, str] = ("center", "center")
    repeat: Tuple[Optional[Length], Optional[Length]] = (None, None)
    pos_raw = _arg(parts, 3)
    if pos_raw and pos_raw.strip().lower().startswith("repeat"):
        bits = [b.strip() for b in pos_raw.split(",")]
        gap_x = bits[1] if len(bits) > 1 else "50%"
        if gap_x and not gap_x.endswith(("%", "px")) and len(bits) < 3:
            gap_x += "%"
        repeat = (length_or_none(gap_x, "watermark repeat"), length_or_none(_arg(bits, 2), "watermark repeat"))
        position = ("repeat", "repeat")
    elif pos_raw:
        position = _position(pos_raw)

    return WatermarkSpec(
        src        = src,
        min_width  = min_width,
        min_height = min_height,
        opacity    = _clamp(abs(_int(_arg(parts, 2), 100)), 0, 100),
        position   = position,
        repeat     = repeat,
        offset     = _pair(_arg(parts, 4), "watermark offset"),
        rotation   = _int(_arg(parts, 5), 0),
    )


# --------------------------------------------------------------------------- #
# request                                                                     #
# --------------------------------------------------------------------------- #
SAVE_TYPES   = ("jpg", "png", "webp", "gif")
LAZY_MODES   = ("lqip", "dominant_color", "js_lqip", "js_dominant_color", "html5")
FIT_MODES    = ("contain", "cover", "distort")


def normalize_save_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    ext = str(value).strip().lower().lstrip(".")
    ext = "jpg" if ext == "jpeg" else ext
    if ext == "source":
        return None
    if ext not in SAVE_TYPES:
        logger.warning("Unsupported save_type %r, keeping the source format", value)
        return None
    return ext


def parse_srcset(raw: Optional[str]) -> Tuple[int, ...]:
    widths: List[int] = []
    if not raw:
        return ()
    for part in str(raw).split("|"):
        value = validate_dimension(part.strip().rstrip("wW"))
        if value and value > 0:
            widths.append(value)
        elif part.strip():
            logger.warning("Ignoring srcset width %r", part)
    return tuple(widths)


def _lazy_mode(raw: Optional[str], settings: Settings) -> Optional[str]:
    if raw is None or str(raw).strip() == "":
        return settings.lazy_loading_mode if settings.enable_lazy_loading else None
    mode = str(raw).strip().lower()
    if mode in LAZY_MODES:
        return mode
    if mode[:1] in ("n", "0", "f"):
        return None
    if mode[:1] == "y":
        return settings.lazy_loading_mode
    logger.warning("Unknown lazy mode %r, lazy loading disabled", raw)
    return None


@dataclass(frozen=True)
class NormalizedRequest:
    src:                 Optional[str]
    fallback_src:        Optional[str]
    width:               Optional[Length]
    height:              Optional[Length]
    min_width:           Optional[Length]
    min_height:          Optional[Length]
    max_width:           Optional[Length]
    max_height:          Optional[Length]
    aspect_ratio:        Optional[float]
    crop:                CropSpec
    fit:                 str
    filters:             Tuple[FilterSpec, ...]
    flip:                Optional[FlipSpec]
    rotate:              Optional[int]
    border:              Optional[BorderSpec]
    rounded_corners:     Optional[CornerSpec]
    reflection:          Optional[ReflectionSpec]
    text:                Optional[TextSpec]
    watermark:           Optional[WatermarkSpec]
    bg_color:            Color
    quality:             int
    png_quality:         int
    save_type:           Optional[str]
    interlace:           bool
    face_crop_margin:    Optional[Length]
    allow_scale_larger:  bool
    cache_duration:      int
    cache_dir:           str
    filename:            Optional[str]
    filename_prefix:     str
    filename_suffix:     str
    hash_filename:       bool
    srcset:              Tuple[int, ...]
    sizes:               str
    lazy:                Optional[str]
    url_only:            bool
    create_tag:          Optional[bool]
    output:              str
    attributes:          str
    add_dims:            bool
    preload:             bool
    base64:              bool


def normalize(request, settings: Settings) -> NormalizedRequest:
    """Validate an ``ImageRequest`` once; the result is never re-parsed or mutated."""
    default_bg = parse_color(settings.default_bg_color, Color(255, 255, 255))
    fit = (request.fit or "contain").strip().lower()
    if fit not in FIT_MODES:
        logger.warning("Unknown fit %r, using contain", request.fit)
        fit = "contain"

    filters = normalize_filters(request.filter)
    if is_yes(request.auto_sharpen, settings.auto_sharpen) and not any(
        f.name is FilterName.AUTO_SHARPEN for f in filters
    ):
        filters.append(FilterSpec(FilterName.AUTO_SHARPEN))

    create_tag = None if not request.create_tag else is_yes(request.create_tag)

    return NormalizedRequest(
        src                = (request.src or "").strip() or None,
        fallback_src       = (request.fallback_src or "").strip() or None,
        width              = length_or_none(request.width, "width"),
        height             = length_or_none(request.height, "height"),
        min_width          = length_or_none(request.min_width or request.min, "min_width"),
        min_height         = length_or_none(request.min_height or request.min, "min_height"),
        max_width          = length_or_none(request.max_width or request.max, "max_width"),
        max_height         = length_or_none(request.max_height or request.max, "max_height"),
        aspect_ratio       = parse_aspect_ratio(request.aspect_ratio),
        crop               = parse_crop(request.crop, _int(request.face_detect_sensitivity, settings.face_sensitivity)),
        fit                = fit,
        filters            = tuple(filters),
        flip               = parse_flip(request.flip),
        rotate             = parse_rotate(request.rotate),
        border             = parse_border(request.border),
        rounded_corners    = parse_rounded_corners(request.rounded_corners),
        reflection         = parse_reflection(request.reflection),
        text               = parse_text(request.text),
        watermark          = parse_watermark(request.watermark),
        bg_color           = parse_color(request.bg_color, default_bg),
        quality            = _clamp(_int(request.quality, settings.jpg_quality), 1, 100),
        png_quality        = _clamp(_int(request.png_quality, settings.png_quality), 0, 9),
        save_type          = normalize_save_type(request.save_type or settings.default_image_format),
        interlace          = is_yes(request.interlace),
        face_crop_margin   = length_or_none(request.face_crop_margin, "face_crop_margin"),
        allow_scale_larger = is_yes(request.allow_scale_larger, settings.allow_scale_larger),
        cache_duration     = _int(request.cache, settings.cache_duration),
        cache_dir          = (request.cache_dir or settings.cache_dir).strip("/"),
        filename           = request.filename or None,
        filename_prefix    = request.filename_prefix or "",
        filename_suffix    = request.filename_suffix or "",
        hash_filename      = is_yes(request.hash_filename),
        srcset             = parse_srcset(request.srcset),
        sizes              = (request.sizes or "").strip(),
        lazy               = _lazy_mode(request.lazy, settings),
        url_only           = is_yes(request.url_only),
        create_tag         = create_tag,
        output             = request.output or "",
        attributes         = (request.attributes or "").strip(),
        add_dims           = is_yes(request.add_dims),
        preload            = is_yes(request.preload),
        base64             = is_yes(request.base64),
    )
