from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, replace
from typing import Optional
from urllib.parse import quote, unquote, urlparse

from config import Settings, logger
from imaging.colors import Color, parse_color
from imaging.params import length_or_none
from utils.hashing import short_tag, text_sha1

# Request fields that change the rendered bytes. Order is fixed so the hash input
# never depends on how the caller happened to order its parameters.
PIXEL_AFFECTING = (
    "allow_scale_larger",
    "aspect_ratio",
    "auto_sharpen",
    "border",
    "crop",
    "face_crop_margin",
    "face_detect_sensitivity",
    "fallback_src",
    "filter",
    "fit",
    "flip",
    "height",
    "interlace",
    "max",
    "max_height",
    "max_width",
    "min",
    "min_height",
    "min_width",
    "png_quality",
    "quality",
    "reflection",
    "rotate",
    "rounded_corners",
    "save_type",
    "text",
    "watermark",
    "width",
)

# Hashed by parsed value, so "400", "400px" and "400.0" share one file.
LENGTH_FIELDS = (
    "face_crop_margin",
    "height",
    "max",
    "max_height",
    "max_width",
    "min",
    "min_height",
    "min_width",
    "width",
)

FOREVER_TAG = "abcdef"

_RESERVED = re.compile(r"""['<>&/\\?%*:|"!@#$^()\[\]{};,.`~+= \u00a0]""")


@dataclass(frozen=True)
class ImageIdentity:
    basename:  str
    cache_tag: str
    digest:    str
    extension: str
    directory: str
    separator: str = "_-_"

    @property
    def stem(self) -> str:
        return f"{self.basename}{self.separator}{self.cache_tag}{self.separator}{self.digest}"

    @property
    def filename(self) -> str:
        return f"{self.stem}.{self.extension}"

    @property
    def path(self) -> str:
        return posixpath.join(self.directory, self.filename) if self.directory else self.filename

    def with_extension(self, extension: str) -> "ImageIdentity":
        return replace(self, extension=extension)

    def variant_path(self, suffix: str, extension: Optional[str] = None) -> str:
        """Path of a derived file such as ``<stem>_lqip.jpg`` or ``<stem>_480w.webp``."""
        name = f"{self.stem}_{suffix}.{extension or self.extension}"
        return posixpath.join(self.directory, name) if self.directory else name


def _canonical(name: str, value) -> str:
    text = str(value).strip()
    if name in LENGTH_FIELDS:
        length = length_or_none(text, name)
        if length is not None:
            return f"{length.value:g}{length.unit}"
    return text


def cache_tag(duration: Optional[int]) -> str:
    if duration is None or duration < 0:
        return FOREVER_TAG
    return format(duration, "x")


def duration_from_filename(filename: str, separator: str, default: int) -> int:
    """Inverse of ``cache_tag`` for a cached file name; ``-1`` means forever."""
    stem = posixpath.basename(filename).rsplit(".", 1)[0]
    parts = stem.split(separator)
    if len(parts) >= 3:
        tag = parts[-2]
        if tag == FOREVER_TAG:
            return -1
        if re.fullmatch(r"[0-9a-f]+", tag):
            return int(tag, 16)
    return default


def sanitise_basename(name: str, max_length: int) -> str:
    name = unquote(name)
    name = _RESERVED.sub("_", name).lower()
    if len(name) >= max_length:
        name = f"{name[:max_length]}{short_tag(name)}".strip()
    return name


def source_basename(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    path = urlparse(src).path if "://" in src else src
    base = posixpath.basename(path.rstrip("/"))
    stem = base.rsplit(".", 1)[0] if "." in base else base
    return stem or None


def source_extension(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    path = urlparse(src).path if "://" in src else src
    base = posixpath.basename(path)
    if "." not in base:
        return None
    ext = base.rsplit(".", 1)[1].lower()
    return "jpg" if ext == "jpeg" else ext


class IdentityBuilder:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.default_bg = parse_color(settings.default_bg_color, Color(255, 255, 255))

    def hash_input(self, request, using_fallback: bool = False, src: Optional[str] = None) -> str:
        """
        Canonical serialisation of everything that changes the rendered pixels.
        ``src`` is the source actually used when it differs from ``request.src``.
        """
        parts = []
        for name in PIXEL_AFFECTING:
            value = getattr(request, name, None)
            if value is None or str(value).strip() == "":
                continue
            parts.append(f"{name}={_canonical(name, value)}")
        parts.append(f"bg_color={parse_color(request.bg_color, self.default_bg).serialise()}")
        if self.settings.include_source_in_hash:
            parts.append(f"src={src or request.src or ''}")
        parts.append(f"license_mode={self.settings.license_mode}")
        if using_fallback:
            parts.append("fallback=true")
        return "&".join(parts)

    def build(self, request, extension: str, using_fallback: bool = False, src: Optional[str] = None) -> ImageIdentity:
        source = src or request.src
        if request.filename:
            name = request.filename
        else:
            name = source_basename(source) or text_sha1(quote(source or "", safe="").replace("%", "pct"))
        name = f"{request.filename_prefix or ''}{name}{request.filename_suffix or ''}"
        name = sanitise_basename(name, self.settings.max_filename_length)
        if request.hash_filename and str(request.hash_filename).strip().lower()[:1] == "y":
            name = text_sha1(name)

        duration = self.settings.cache_duration
        if request.cache not in (None, ""):
            try:
                duration = int(float(request.cache))
            except ValueError:
                logger.warning("Invalid cache duration %r, using %s", request.cache, duration)

        directory = (request.cache_dir or self.settings.cache_dir).strip("/")
        identity = ImageIdentity(
            basename  = name,
            cache_tag = cache_tag(duration),
            digest    = text_sha1(self.hash_input(request, using_fallback, src)),
            extension = extension,
            directory = directory,
            separator = self.settings.filename_separator,
        )
        logger.debug("Identity for %s: %s", source, identity.path)
        return identity
