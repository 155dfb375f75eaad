from __future__ import annotations

import re
from typing import NamedTuple, Optional, Tuple

import numpy as np
from PIL import ImageColor

from config import logger

_RGBA_RE = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([0-9]*\.?[0-9]+)\s*)?\)$",
    re.IGNORECASE,
)


class Color(NamedTuple):
    red:   int
    green: int
    blue:  int
    alpha: float = 1.0  # 0 = transparent, 1 = opaque

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.red, self.green, self.blue)

    @property
    def rgba(self) -> Tuple[int, int, int, int]:
        return (self.red, self.green, self.blue, int(round(self.alpha * 255)))

    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.rgb)

    def with_alpha(self, alpha: float) -> "Color":
        return self._replace(alpha=max(0.0, min(1.0, float(alpha))))

    def serialise(self) -> str:
        """Raw channel values concatenated, used when hashing request parameters."""
        return f"{self.red}{self.green}{self.blue}{int(round(self.alpha * 100))}"


TRANSPARENT = Color(0, 0, 0, 0.0)


def parse_color(value: Optional[str], default: Optional[Color] = None) -> Optional[Color]:
    """
    Parse ``#rgb``, ``#rgba``, ``#rrggbb``, ``#rrggbbaa``, ``rgb()``, ``rgba()`` (alpha 0..1)
    or any colour name Pillow knows. Unparseable input logs and yields ``default``.
    """
    if value is None:
        return default
    text = str(value).strip()
    if not text:
        return default

    match = _RGBA_RE.match(text)
    if match:
        r, g, b = (min(255, int(match.group(i))) for i in (1, 2, 3))
        alpha = float(match.group(4)) if match.group(4) is not None else 1.0
        return Color(r, g, b, max(0.0, min(1.0, alpha)))

    if re.fullmatch(r"[0-9a-fA-F]{3,8}", text):
        text = "#" + text
    try:
        parsed = ImageColor.getrgb(text)
    except ValueError:
        logger.warning("Invalid colour %r, using default %s", value, default)
        return default
    if len(parsed) == 4:
        return Color(parsed[0], parsed[1], parsed[2], round(parsed[3] / 255, 3))
    return Color(parsed[0], parsed[1], parsed[2], 1.0)


# --------------------------------------------------------------------------- #
# HSL helpers (vectorised; hue in degrees, saturation / lightness in 0..1)    #
# --------------------------------------------------------------------------- #
def rgb_to_hsl(rgb: np.ndarray) -> np.ndarray:
    rgb = np.asarray(rgb, dtype=np.float64) / 255.0
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    mx = rgb.max(axis=-1)
    mn = rgb.min(axis=-1)
    delta = mx - mn
    light = (mx + mn) / 2.0

    chroma = delta > 0
    safe = np.where(chroma, delta, 1.0)
    sat = np.where(chroma, delta / np.maximum(1.0 - np.abs(2.0 * light - 1.0), 1e-12), 0.0)

    # later assignments win ties, so red takes precedence over green over blue
    hue = np.where(mx == b, 60.0 * (((r - g) / safe) + 4.0), 0.0)
    hue = np.where(mx == g, 60.0 * (((b - r) / safe) + 2.0), hue)
    hue = np.where(mx == r, 60.0 * (((g - b) / safe) % 6.0), hue)
    hue = np.where(chroma, hue, 0.0)
    return np.stack([np.round(hue, 3), sat, light], axis=-1)


def hsl_to_rgb(hsl: np.ndarray) -> np.ndarray:
    hsl = np.asarray(hsl, dtype=np.float64)
    h = np.clip(hsl[..., 0], 0.0, 360.0)
    s = np.clip(hsl[..., 1], 0.0, 1.0)
    l = np.clip(hsl[..., 2], 0.0, 1.0)

    c = (1.0 - np.abs(2.0 * l - 1.0)) * s
    x = c * (1.0 - np.abs((h / 60.0) % 2.0 - 1.0))
    m = l - c / 2.0
    zero = np.zeros_like(c)
    sector = np.minimum((h // 60).astype(int), 5)

    r = np.choose(sector, [c, x, zero, zero, x, c])
    g = np.choose(sector, [x, c, c, x, zero, zero])
    b = np.choose(sector, [zero, zero, x, c, c, x])
    rgb = np.stack([r + m, g + m, b + m], axis=-1) * 255.0
    return np.clip(np.floor(rgb + 1e-9), 0, 255).astype(np.uint8)
