"""
Source loading: fetch bytes (remote over HTTP or from the local source root), decode
with Pillow, straighten by EXIF orientation and walk the fallback chain when the
requested source cannot be used.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from config import Settings, logger
from imaging.colors import Color, parse_color
from imaging.errors import SourceUnavailable
from imaging.params import NormalizedRequest
from utils.exif import apply_orientation, read_orientation

FORMAT_EXTENSIONS = {"JPEG": "jpg", "MPO": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif"}

_SCRIPT_RE  = re.compile(r"<script\b.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_HANDLER_RE = re.compile(r"""\s+on[a-z]+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
_SVG_TAG_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE | re.DOTALL)


@dataclass
class SourceImage:
    src:            str
    data:           bytes
    image:          Optional[Image.Image]   # None for SVG passthrough
    width:          int
    height:         int
    extension:      str
    using_fallback: bool = False

    @property
    def is_svg(self) -> bool:
        return self.extension == "svg"

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)


def is_remote(src: str) -> bool:
    return src.lower().startswith(("http://", "https://"))


def looks_like_svg(src: str, data: bytes) -> bool:
    if src.lower().split("?", 1)[0].endswith(".svg"):
        return True
    head = data[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:2048].lower())


def sanitise_svg(data: bytes) -> bytes:
    text = data.decode("utf-8", errors="replace")
    text = _SCRIPT_RE.sub("", text)
    text = _HANDLER_RE.sub("", text)
    return text.encode("utf-8")


def _svg_number(tag: str, name: str) -> Optional[float]:
    match = re.search(rf"""\b{name}\s*=\s*["']\s*([0-9.]+)\s*(?:px)?\s*["']""", tag, re.IGNORECASE)
    return float(match.group(1)) if match else None


def svg_dimensions(data: bytes, default: Tuple[int, int]) -> Tuple[int, int]:
    match = _SVG_TAG_RE.search(data.decode("utf-8", errors="replace"))
    if not match:
        return default
    tag = match.group(0)
    width, height = _svg_number(tag, "width"), _svg_number(tag, "height")
    if width and height:
        return (int(round(width)), int(round(height)))
    box = re.search(r"""viewBox\s*=\s*["']([^"']+)["']""", tag, re.IGNORECASE)
    if box:
        parts = re.split(r"[\s,]+", box.group(1).strip())
        if len(parts) == 4:
            try:
                return (int(round(float(parts[2]))), int(round(float(parts[3]))))
            except ValueError:
                pass
    return default


class SourceLoader:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session  = session or requests.Session()
        self.root     = Path(settings.source_root).resolve()

    # ---- bytes ----------------------------------------------------------- #
    def fetch(self, src: str) -> bytes:
        if is_remote(src):
            try:
                resp = self.session.get(
                    src,
                    timeout=self.settings.remote_timeout,
                    headers={"User-Agent": self.settings.user_agent},
                )
                resp.raise_for_status()
            except requests.RequestException as e:
                raise SourceUnavailable(f"could not fetch {src}: {e}") from e
            return resp.content

        path = (self.root / src.lstrip("/")).resolve()
        if self.root not in path.parents and path != self.root:
            raise SourceUnavailable(f"{src} is outside the source root")
        if not path.is_file():
            raise SourceUnavailable(f"{src} not found")
        return path.read_bytes()

    # ---- decode ---------------------------------------------------------- #
    def decode(self, src: str, data: bytes) -> SourceImage:
        default_size = (self.settings.default_img_width, self.settings.default_img_height)
        if looks_like_svg(src, data):
            clean = sanitise_svg(data)
            width, height = svg_dimensions(clean, default_size)
            return SourceImage(src, clean, None, width, height, "svg")

        limit = self.settings.max_image_size_mb * 1024 * 1024
        if len(data) > limit and not self.settings.auto_adjust:
            raise SourceUnavailable(f"{src} is {len(data)} bytes, over the {limit:.0f} byte limit")

        try:
            img = Image.open(BytesIO(data))
            img.seek(0)  # animated sources use their first frame
            img.load()
        except (UnidentifiedImageError, OSError, EOFError) as e:
            raise SourceUnavailable(f"could not decode {src}: {e}") from e

        extension = FORMAT_EXTENSIONS.get(img.format or "", "jpg")
        img = apply_orientation(img, read_orientation(data))
        img = self._limit_dimensions(src, img.convert("RGBA"))
        return SourceImage(src, data, img, img.width, img.height, extension)

    def _limit_dimensions(self, src: str, img: Image.Image) -> Image.Image:
        longest = max(img.size)
        cap = self.settings.max_image_dimension
        if cap <= 0 or longest <= cap:
            return img
        if not self.settings.auto_adjust:
            raise SourceUnavailable(f"{src} is {img.width}x{img.height}, larger than {cap}px")
        img = img.copy()
        img.thumbnail((cap, cap), Image.Resampling.LANCZOS)
        logger.info("Auto-adjusted %s down to %sx%s", src, img.width, img.height)
        return img

    def load(self, src: str) -> SourceImage:
        return self.decode(src, self.fetch(src))

    def load_overlay(self, src: str) -> Optional[Image.Image]:
        """Raster image for a watermark; SVG and unusable sources yield ``None``."""
        try:
            source = self.load(src)
        except SourceUnavailable as e:
            logger.warning("Watermark source unavailable: %s", e)
            return None
        if source.is_svg:
            logger.warning("SVG watermarks are not supported: %s", src)
            return None
        return source.image

    # ---- fallback chain -------------------------------------------------- #
    def _solid_fill(self) -> SourceImage:
        color = parse_color(self.settings.fallback_color, Color(48, 99, 146))
        size = (self.settings.default_img_width, self.settings.default_img_height)
        img = Image.new("RGBA", size, color.rgba)
        return SourceImage("fallback:color", b"", img, size[0], size[1], "jpg", using_fallback=True)

    def _configured_fallback(self) -> Optional[str]:
        mode = self.settings.fallback_image
        if mode == "yr":
            return self.settings.fallback_remote or None
        if mode == "yl":
            return self.settings.fallback_local or None
        return None

    def load_request(self, request: NormalizedRequest) -> SourceImage:
        """``src`` -> ``fallback_src`` -> configured fallback image or colour."""
        candidates = [(request.src, False), (request.fallback_src, True), (self._configured_fallback(), True)]
        errors = []
        for src, is_fallback in candidates:
            if not src:
                continue
            try:
                source = self.load(src)
            except SourceUnavailable as e:
                logger.warning("Source %s unavailable: %s", src, e)
                errors.append(str(e))
                continue
            source.using_fallback = is_fallback
            if is_fallback:
                logger.info("Using fallback source %s", src)
            return source
        if self.settings.fallback_image == "yc":
            logger.info("Using fallback colour fill")
            return self._solid_fill()
        logger.error("No usable source for %s", request.src)
        raise SourceUnavailable("; ".join(errors) or "no source given")
