"""
Transformation pipeline.

``build_queue`` turns a ``NormalizedRequest`` into an ordered ``TransformationQueue``;
the queue is then executed once against a fresh RGBA copy of the source. Steps
are only enqueued when their parameter is present, so every queued step does work.
"""
from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Any, Callable, Iterator, List, Optional, Sequence

from PIL import Image

from config import logger
from imaging.colors import Color
from imaging.errors import ImageServiceError, PipelineStepFailure
from imaging.filters import FilterContext, apply_filter
from imaging.geometry import GeometryResult, plan_crop
from imaging.masks import apply_mask, corner_mask, masked_border
from imaging.overlays import box_border, flip, reflection, rotate, text_overlay, watermark
from imaging.params import FilterSpec, NormalizedRequest

MIME_TYPES = {
    "jpg":  "image/jpeg",
    "png":  "image/png",
    "webp": "image/webp",
    "gif":  "image/gif",
    "svg":  "image/svg+xml",
}


@dataclass
class PipelineState(FilterContext):
    border_drawn: bool = False


StepFn = Callable[[Image.Image, PipelineState], Image.Image]


@dataclass(frozen=True)
class Step:
    index: int
    name:  str
    run:   StepFn


class TransformationQueue:
    def __init__(self):
        self._steps: List[Step] = []

    def append(self, name: str, run: StepFn) -> None:
        self._steps.append(Step(len(self._steps) + 1, name, run))

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._steps]

    def execute(self, image: Image.Image, state: PipelineState) -> Image.Image:
        buffer = image.convert("RGBA")
        for step in self._steps:
            logger.debug("Pipeline step %d: %s", step.index, step.name)
            try:
                buffer = step.run(buffer, state)
            except ImageServiceError:
                raise
            except Exception as e:
                logger.error("Pipeline step %d (%s) failed: %s", step.index, step.name, e)
                raise PipelineStepFailure(step.name, step.index, str(e)) from e
        return buffer


# --------------------------------------------------------------------------- #
# steps                                                                       #
# --------------------------------------------------------------------------- #
def _crop_step(request: NormalizedRequest, geometry: GeometryResult) -> StepFn:
    def run(image: Image.Image, state: PipelineState) -> Image.Image:
        spec = request.crop
        faces = ()
        if spec.mode == "f" or "face_detect" in spec.position:
            faces = state.detect_faces(image)
        margin = request.face_crop_margin.resolve(image.width) if request.face_crop_margin else 0
        plan = plan_crop(image.width, image.height, geometry.width, geometry.height, spec, faces, margin or 0)
        if plan.scale_to:
            image = image.resize(plan.scale_to, Image.Resampling.LANCZOS)
        image = image.crop(plan.box)
        if image.size != (geometry.width, geometry.height):
            image = _cover(image, geometry.width, geometry.height)
        # detections were in pre-crop coordinates
        state.faces = None
        return image
    return run


def _cover(image: Image.Image, width: int, height: int) -> Image.Image:
    ratio = max(width / image.width, height / image.height)
    crop_w = min(image.width, round(width / ratio))
    crop_h = min(image.height, round(height / ratio))
    left = (image.width - crop_w) // 2
    top = (image.height - crop_h) // 2
    image = image.crop((left, top, left + crop_w, top + crop_h))
    return image.resize((width, height), Image.Resampling.LANCZOS)


def _resize_step(geometry: GeometryResult) -> StepFn:
    def run(image: Image.Image, state: PipelineState) -> Image.Image:
        if geometry.needs_source_crop:
            sw = min(image.width, geometry.source_crop_width)
            sh = min(image.height, geometry.source_crop_height)
            left = (image.width - sw) // 2
            top = (image.height - sh) // 2
            image = image.crop((left, top, left + sw, top + sh))
        if image.size != (geometry.width, geometry.height):
            image = image.resize((geometry.width, geometry.height), Image.Resampling.LANCZOS)
        return image
    return run


def _filter_step(spec: FilterSpec) -> StepFn:
    return lambda image, state: apply_filter(image, spec, state)


def _corners_step(request: NormalizedRequest) -> StepFn:
    def run(image: Image.Image, state: PipelineState) -> Image.Image:
        radii = [c.resolve(image.width) if c is not None else None for c in request.rounded_corners]
        image = apply_mask(image, corner_mask(image.size, radii))
        state.masked = True
        if request.border is not None:
            width = request.border.width.resolve(image.width) or 0
            image = masked_border(image, width, request.border.color or request.bg_color)
            state.border_drawn = True
        return image
    return run


def _border_step(request: NormalizedRequest) -> StepFn:
    def run(image: Image.Image, state: PipelineState) -> Image.Image:
        if state.border_drawn:
            return image
        width = request.border.width.resolve(image.width) or 0
        color = request.border.color or request.bg_color
        if state.masked:
            return masked_border(image, width, color)
        return box_border(image, width, color)
    return run


def build_queue(
    request: NormalizedRequest,
    geometry: GeometryResult,
    watermark_image: Optional[Image.Image] = None,
) -> TransformationQueue:
    """
    Fixed order: crop or resize, flip, filters, text, watermark, rounded corners
    (with masked border), border, reflection, rotation.
    """
    queue = TransformationQueue()
    if request.crop.enabled:
        queue.append("crop", _crop_step(request, geometry))
    else:
        queue.append("resize", _resize_step(geometry))
    if request.flip is not None:
        queue.append("flip", lambda image, state: flip(image, request.flip))
    for spec in request.filters:
        queue.append(f"filter:{spec.name.value}", _filter_step(spec))
    if request.text is not None:
        queue.append("text", lambda image, state: text_overlay(image, request.text))
    if request.watermark is not None and watermark_image is not None:
        queue.append("watermark", lambda image, state: watermark(image, watermark_image, request.watermark))
    if request.rounded_corners is not None:
        queue.append("rounded_corners", _corners_step(request))
    if request.border is not None:
        queue.append("border", _border_step(request))
    if request.reflection is not None:
        queue.append("reflection", lambda image, state: reflection(image, request.reflection))
    if request.rotate:
        queue.append("rotate", lambda image, state: rotate(image, request.rotate))
    return queue


def filter_queue(filters: Sequence[FilterSpec]) -> TransformationQueue:
    """Filters alone, run over an already rendered image (placeholders)."""
    queue = TransformationQueue()
    for spec in filters:
        queue.append(f"filter:{spec.name.value}", _filter_step(spec))
    return queue


# --------------------------------------------------------------------------- #
# codec                                                                       #
# --------------------------------------------------------------------------- #
def flatten(image: Image.Image, background: Color) -> Image.Image:
    base = Image.new("RGBA", image.size, background.rgb + (255,))
    return Image.alpha_composite(base, image.convert("RGBA")).convert("RGB")


def encode(
    image: Image.Image,
    extension: str,
    quality: int = 90,
    png_quality: int = 6,
    interlace: bool = False,
    background: Color = Color(255, 255, 255),
) -> bytes:
    save_kwargs: dict[str, Any] = {}
    if extension == "png":
        fmt = "PNG"
        save_kwargs.update({"compress_level": png_quality})
    elif extension == "webp":
        fmt = "WEBP"
        save_kwargs.update({"quality": quality})
    elif extension == "gif":
        fmt = "GIF"
        image = flatten(image, background).convert("P", palette=Image.Palette.ADAPTIVE)
        save_kwargs.update({"interlace": interlace})
    else:
        fmt = "JPEG"
        image = flatten(image, background)
        save_kwargs.update({"quality": quality, "optimize": True, "progressive": interlace})

    out = BytesIO()
    image.save(out, format=fmt, **save_kwargs)
    return out.getvalue()
