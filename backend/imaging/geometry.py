"""
Geometry resolution: the pure arithmetic that turns a request plus the original
image size into output dimensions, the region of the source they are drawn from,
and (for crops) the box to cut.

Aspect ratios are height / width throughout.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from config import logger
from imaging.errors import GeometryViolation
from imaging.params import CropSpec, Length, NormalizedRequest, round_half_up


@dataclass(frozen=True)
class GeometryResult:
    width:              int
    height:             int
    source_crop_width:  int
    source_crop_height: int
    aspect_ratio:       float
    fit:                str
    crop:               bool = False

    @property
    def needs_source_crop(self) -> bool:
        return not self.crop and self.fit == "cover"


@dataclass(frozen=True)
class FaceBox:
    x:      int
    y:      int
    width:  int
    height: int

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class CropPlan:
    scale_to: Optional[Tuple[int, int]]  # resize the source to this first, if set
    left:     int
    top:      int
    width:    int
    height:   int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def _floor_1px(value: int, label: str) -> int:
    if value < 1:
        logger.warning("Computed %s of %s px corrected to 1 px", label, value)
        return 1
    return value


def cover_dimensions(orig_w: int, orig_h: int, box_w: int, box_h: int) -> Tuple[int, int]:
    """Smallest size with the source's aspect ratio that fully covers ``box_w`` x ``box_h``."""
    ar_orig = orig_h / orig_w
    if box_w * ar_orig > box_h:
        return box_w, max(1, round_half_up(box_w * ar_orig))
    return max(1, round_half_up(box_h / ar_orig)), box_h


def contain_dimensions(orig_w: int, orig_h: int, box_w: int, box_h: int) -> Tuple[int, int]:
    """Largest size with the source's aspect ratio that fits inside ``box_w`` x ``box_h``."""
    ar_orig = orig_h / orig_w
    if box_w * ar_orig > box_h:
        return max(1, round_half_up(box_h / ar_orig)), box_h
    return box_w, max(1, round_half_up(box_w * ar_orig))


def resolve(
    orig_w: int,
    orig_h: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
    *,
    aspect_ratio: Optional[float] = None,
    min_width: Optional[int] = None,
    min_height: Optional[int] = None,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    fit: str = "contain",
    crop: bool = False,
    allow_scale_larger: bool = False,
    default_size: Tuple[int, int] = (350, 150),
) -> GeometryResult:
    """
    Resolve the output size.

    Order: aspect ratio -> max bounds -> min bounds -> no-upscale reset ->
    derive the missing side -> 1px floor -> fit correction (skipped for crops).
    """
    has_orig = orig_w > 0 and orig_h > 0
    ar_orig = orig_h / orig_w if has_orig else None

    if aspect_ratio:
        ar = aspect_ratio
    elif width and height:
        ar = height / width
    elif ar_orig:
        ar = ar_orig
    else:
        ar = default_size[1] / default_size[0]

    base_w = orig_w if has_orig else default_size[0]
    base_h = orig_h if has_orig else default_size[1]

    # max first, then min, so an oversized min still wins
    if max_width:
        width = min(width or base_w, max_width)
    if max_height:
        height = min(height or base_h, max_height)
    if min_width:
        width = max(width or base_w, min_width)
    if min_height:
        height = max(height or base_h, min_height)

    if has_orig and not allow_scale_larger and (
        (width and width > orig_w) or (height and height > orig_h)
    ):
        logger.info("Target %sx%s exceeds original %sx%s; keeping original size", width, height, orig_w, orig_h)
        width, height = orig_w, orig_h

    if width and not height:
        height = round_half_up(width * ar)
    elif height and not width:
        width = round_half_up(height / ar)
    elif not width and not height:
        if has_orig:
            width = orig_w
            height = round_half_up(width * ar)
        else:
            width, height = default_size

    width = _floor_1px(int(width), "width")
    height = _floor_1px(int(height), "height")

    source_w, source_h = (orig_w, orig_h) if has_orig else (width, height)
    if crop or not has_orig or fit == "distort":
        if crop:
            source_w, source_h = width, height
        return GeometryResult(width, height, source_w, source_h, height / width, fit, crop)

    if abs(height / width - ar_orig) > 1e-9:
        if fit == "cover":
            scaled_w, scaled_h = cover_dimensions(orig_w, orig_h, width, height)
            source_w = min(orig_w, round_half_up(width * orig_w / scaled_w))
            source_h = min(orig_h, round_half_up(height * orig_h / scaled_h))
        else:
            width, height = contain_dimensions(orig_w, orig_h, width, height)

    return GeometryResult(width, height, source_w, source_h, height / width, fit, crop)


def resolve_request(request: NormalizedRequest, orig_w: int, orig_h: int, default_size: Tuple[int, int]) -> GeometryResult:
    """Resolve the request's ``Length`` values against the original size, then ``resolve``."""

    def px(length: Optional[Length], base: int) -> Optional[int]:
        return length.resolve(base) if length is not None else None

    return resolve(
        orig_w,
        orig_h,
        px(request.width, orig_w),
        px(request.height, orig_h),
        aspect_ratio       = request.aspect_ratio,
        min_width          = px(request.min_width, orig_w),
        min_height         = px(request.min_height, orig_h),
        max_width          = px(request.max_width, orig_w),
        max_height         = px(request.max_height, orig_h),
        fit                = request.fit,
        crop               = request.crop.enabled,
        allow_scale_larger = request.allow_scale_larger,
        default_size       = default_size,
    )


def union_box(faces: Sequence[FaceBox]) -> Optional[FaceBox]:
    if not faces:
        return None
    left = min(f.x for f in faces)
    top = min(f.y for f in faces)
    right = max(f.x + f.width for f in faces)
    bottom = max(f.y + f.height for f in faces)
    return FaceBox(left, top, right - left, bottom - top)


def _axis_origin(position: str, source: int, size: int, face_center: Optional[float]) -> int:
    if position in ("left", "top"):
        return 0
    if position in ("right", "bottom"):
        return source - size
    if position == "face_detect" and face_center is not None:
        return round_half_up(face_center - size / 2)
    return round_half_up((source - size) / 2)


def plan_crop(
    src_w: int,
    src_h: int,
    target_w: int,
    target_h: int,
    spec: CropSpec,
    faces: Sequence[FaceBox] = (),
    face_margin: int = 0,
) -> CropPlan:
    """
    Work out where to cut a ``target_w`` x ``target_h`` box from the source.

    Smart-scale first resizes the source to the cover size of the target so the box
    always fits; a face crop (mode ``f``) with detected faces instead cuts the faces'
    bounding box plus ``face_margin`` on every side at the original scale.
    """
    group = union_box(faces)
    scale_to = None
    scaled_w, scaled_h = src_w, src_h
    factor = 1.0

    if spec.mode == "f" and group is not None:
        target_w = min(src_w, group.width + 2 * face_margin)
        target_h = min(src_h, group.height + 2 * face_margin)
    elif spec.smart_scale:
        scaled_w, scaled_h = cover_dimensions(src_w, src_h, target_w, target_h)
        if (scaled_w, scaled_h) != (src_w, src_h):
            scale_to = (scaled_w, scaled_h)
            factor = scaled_w / src_w

    if target_w > scaled_w or target_h > scaled_h:
        raise GeometryViolation(
            f"crop {target_w}x{target_h} does not fit in source {scaled_w}x{scaled_h}"
        )

    center = group.center if group is not None else (None, None)
    face_x = center[0] * factor if center[0] is not None else None
    face_y = center[1] * factor if center[1] is not None else None
    if spec.mode == "f" and group is not None:
        position = ("face_detect", "face_detect")
    else:
        position = spec.position

    left = _axis_origin(position[0], scaled_w, target_w, face_x)
    top = _axis_origin(position[1], scaled_h, target_h, face_y)
    offset_x = spec.offset[0].resolve(scaled_w) if spec.offset[0] is not None else 0
    offset_y = spec.offset[1].resolve(scaled_h) if spec.offset[1] is not None else 0
    left = max(0, min(scaled_w - target_w, left + (offset_x or 0)))
    top = max(0, min(scaled_h - target_h, top + (offset_y or 0)))
    return CropPlan(scale_to, left, top, target_w, target_h)
