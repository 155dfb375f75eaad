from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config import logger
from imaging.geometry import GeometryResult, resolve
from imaging.params import FilterName, FilterSpec, round_half_up

LQIP_QUALITY     = 20
LQIP_PNG_QUALITY = 9


@dataclass(frozen=True)
class PlaceholderSpec:
    """A reduced-fidelity copy of the render, cached as ``<stem>_<mode>.<ext>``."""
    mode:        str
    filters:     Tuple[FilterSpec, ...]
    quality:     int = LQIP_QUALITY
    png_quality: int = LQIP_PNG_QUALITY

    @property
    def suffix(self) -> str:
        return self.mode


def placeholder_spec(lazy_mode: Optional[str]) -> Optional[PlaceholderSpec]:
    if not lazy_mode:
        return None
    if lazy_mode.endswith("dominant_color"):
        return PlaceholderSpec(lazy_mode, (FilterSpec(FilterName.DOMINANT_COLOR, (10,)),))
    if lazy_mode.endswith("lqip"):
        return PlaceholderSpec(lazy_mode, (FilterSpec(FilterName.LQIP),))
    return None


def accepted_widths(widths: Sequence[int], primary_width: int, allow_scale_larger: bool = False) -> List[int]:
    """Keep widths that strictly increase and, unless upscaling is allowed, fit the primary."""
    accepted: List[int] = []
    for width in widths:
        if accepted and width <= accepted[-1]:
            logger.warning("srcset width %s skipped: not larger than %s", width, accepted[-1])
            continue
        if width > primary_width and not allow_scale_larger:
            logger.info("srcset width %s skipped: larger than the image (%s)", width, primary_width)
            continue
        accepted.append(width)
    return accepted


def variant_geometry(orig_w: int, orig_h: int, primary: GeometryResult, width: int) -> GeometryResult:
    """Geometry for a srcset width with the primary render's aspect ratio."""
    return resolve(
        orig_w,
        orig_h,
        width,
        max(1, round_half_up(width * primary.aspect_ratio)),
        fit                = primary.fit,
        crop               = primary.crop,
        allow_scale_larger = True,
    )


def srcset_attribute(variants: Sequence[Tuple[str, int]], primary_url: str, primary_width: int) -> str:
    entries = [f"{url} {width}w" for url, width in variants]
    entries.append(f"{primary_url} {primary_width}w")
    return ", ".join(entries)


def sizes_attribute(widths: Sequence[int], primary_width: int, sizes: str = "") -> str:
    parts = [f"(max-width: {w}px) {w}px" for w in widths]
    parts.append(f"{primary_width}px")
    if sizes:
        parts.insert(0, sizes)
    return ", ".join(parts)
