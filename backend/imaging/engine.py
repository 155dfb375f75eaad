"""
Request orchestration.

normalize -> identity -> cache hit? -> load source (fallback chain) -> geometry ->
pipeline -> encode -> cache write -> placeholders / srcset -> vars + markup.
"""
from __future__ import annotations

import time
from io import BytesIO
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from PIL import Image

from config import Settings, logger
from imaging.cache import CacheStore
from imaging.geometry import GeometryResult, resolve_request
from imaging.identity import IdentityBuilder, ImageIdentity, source_extension
from imaging.output import JS_MODES, build_vars, render_markup, request_vars
from imaging.params import SAVE_TYPES, NormalizedRequest, normalize
from imaging.pipeline import MIME_TYPES, PipelineState, build_queue, encode, filter_queue
from imaging.placeholders import (
    accepted_widths,
    placeholder_spec,
    sizes_attribute,
    srcset_attribute,
    variant_geometry,
)
from imaging.services import ColorExtractionService, FaceDetectionService, PaletteColorExtractor
from imaging.sources import SourceImage, SourceLoader

# Formats that never get a lazy-loading placeholder.
NO_PLACEHOLDER_FORMATS = ("gif", "svg")


@dataclass
class RenderResult:
    vars:   Dict[str, object]
    markup: str
    path:   str
    cached: bool


class _Job:
    """Lazily loaded source, geometry and finished render for one request."""

    def __init__(self, engine: "ImageEngine", request: NormalizedRequest, source: Optional[SourceImage] = None):
        self.engine    = engine
        self.request   = request
        self._source   = source
        self._geometry: Optional[GeometryResult] = None
        self.image:     Optional[Image.Image] = None

    @property
    def source(self) -> SourceImage:
        if self._source is None:
            self._source = self.engine.loader.load_request(self.request)
        return self._source

    @property
    def geometry(self) -> GeometryResult:
        if self._geometry is None:
            source = self.source
            self._geometry = resolve_request(self.request, source.width, source.height, self.engine.default_size)
        return self._geometry

    @property
    def source_path(self) -> Optional[str]:
        return self._source.src if self._source is not None else self.request.src


class ImageEngine:
    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        loader: Optional[SourceLoader] = None,
        face_detector: Optional[FaceDetectionService] = None,
        color_extractor: Optional[ColorExtractionService] = None,
        rng_factory: Callable[[], np.random.Generator] = np.random.default_rng,
    ):
        self.settings        = settings
        self.store           = store
        self.loader          = loader or SourceLoader(settings)
        self.face_detector   = face_detector
        self.color_extractor = color_extractor or PaletteColorExtractor()
        self.rng_factory     = rng_factory
        self.identities      = IdentityBuilder(settings)
        self.default_size    = (settings.default_img_width, settings.default_img_height)

    # ---- public ---------------------------------------------------------- #
    def process(self, request) -> RenderResult:
        normalized = normalize(request, self.settings)
        identity = self.identities.build(request, self._guess_extension(normalized))
        job = _Job(self, normalized)

        vars, cached = self._cached_vars(identity), True
        if vars is None:
            identity = self._final_identity(request, job, identity)
            with self.store.lock(identity.path):
                vars = self._cached_vars(identity)
                if vars is None:
                    vars, cached = self._render_primary(job, identity), False

        url = str(vars["made_url"])
        srcset, sizes, lazy_image, noscript_image = "", "", "", ""
        if identity.extension != "svg":
            srcset, sizes = self._srcset(job, identity, vars)
        if identity.extension not in NO_PLACEHOLDER_FORMATS:
            lazy_image = self._placeholder(job, identity)
            if lazy_image and normalized.lazy in JS_MODES and identity.extension != "jpg":
                noscript_image = self._jpeg_copy(job, identity)
        data = self.store.storage.read(identity.path) if normalized.base64 else None
        out = dict(vars)
        out.update(request_vars(
            normalized, url, srcset, sizes, lazy_image, data, str(vars.get("mime_type", "")), noscript_image,
        ))
        return RenderResult(out, render_markup(out, normalized, self.settings), identity.path, cached)

    # ---- cache ----------------------------------------------------------- #
    def _guess_extension(self, request: NormalizedRequest) -> str:
        if request.save_type:
            return request.save_type
        ext = source_extension(request.src)
        return ext if ext in SAVE_TYPES + ("svg",) else "jpg"

    def _final_identity(self, request, job: _Job, identity: ImageIdentity) -> ImageIdentity:
        """Rebuild the identity once the source (or its fallback) is known."""
        source = job.source
        actual = "svg" if source.is_svg else (job.request.save_type or source.extension)
        if not source.using_fallback and actual == identity.extension:
            return identity
        return self.identities.build(
            request,
            actual,
            using_fallback=source.using_fallback,
            src=source.src if source.using_fallback else None,
        )

    def _cached_vars(self, identity: ImageIdentity) -> Optional[dict]:
        if not self.store.is_fresh(identity.path):
            return None
        vars = self.store.log.get_vars(identity.path)
        if not vars:
            return None
        self.store.log.record_hit(identity.path)
        logger.info("Cache hit for %s", identity.path)
        return vars

    # ---- rendering ------------------------------------------------------- #
    def _state(
        self,
        job: _Job,
        new_width: int,
        extension: str,
        orig_width: Optional[int] = None,
    ) -> PipelineState:
        return PipelineState(
            orig_width       = orig_width if orig_width is not None else job.source.width,
            new_width        = new_width,
            bg_color         = job.request.bg_color,
            face_sensitivity = job.request.crop.sensitivity,
            face_detector    = self.face_detector,
            color_extractor  = self.color_extractor,
            rng              = self.rng_factory(),
            extension        = extension,
        )

    def _render_image(self, job: _Job, geometry: GeometryResult, extension: str) -> Image.Image:
        request = job.request
        mark = self.loader.load_overlay(request.watermark.src) if request.watermark is not None else None
        queue = build_queue(request, geometry, mark)
        logger.debug("Pipeline for %s: %s", job.source.src, ", ".join(queue.names))
        return queue.execute(job.source.image, self._state(job, geometry.width, extension))

    def _encode(self, job: _Job, image: Image.Image, extension: str, quality=None, png_quality=None) -> bytes:
        request = job.request
        return encode(
            image,
            extension,
            quality if quality is not None else request.quality,
            png_quality if png_quality is not None else request.png_quality,
            request.interlace,
            request.bg_color,
        )

    def _write(self, job: _Job, path: str, data: bytes, width: int, height: int, extension: str,
               started: float, vars: Optional[dict] = None) -> None:
        self.store.write(path, data, {
            "cache_dir":       job.request.cache_dir,
            "source_path":     job.source_path,
            "width":           width,
            "height":          height,
            "mime_type":       MIME_TYPES.get(extension),
            "size":            len(data),
            "processing_time": round(time.perf_counter() - started, 4),
            "vars":            vars or {},
        })

    def _render_primary(self, job: _Job, identity: ImageIdentity) -> dict:
        started = time.perf_counter()
        source = job.source
        average = dominant = None
        if source.is_svg:
            data, (width, height) = source.data, source.size
        else:
            image = self._render_image(job, job.geometry, identity.extension)
            job.image = image
            data = self._encode(job, image, identity.extension)
            width, height = image.size
            average = "#{:02x}{:02x}{:02x}".format(*self.color_extractor.average(image))
            dominant = "#{:02x}{:02x}{:02x}".format(*self.color_extractor.extract(image, 10))

        vars = build_vars(
            identity,
            source,
            width,
            height,
            self.store.storage.public_url(identity.path),
            self.settings,
            average_color=average,
            dominant_color=dominant,
        )
        self._write(job, identity.path, data, width, height, identity.extension, started, vars)
        logger.info("Rendered %s (%sx%s) in %.3fs", identity.path, width, height, time.perf_counter() - started)
        return vars

    def _primary_image(self, job: _Job, identity: ImageIdentity) -> Image.Image:
        """The finished render: kept from this request, else decoded from the cache."""
        if job.image is None:
            data = self.store.storage.read(identity.path)
            if data is None:
                job.image = self._render_image(job, job.geometry, identity.extension)
            else:
                with Image.open(BytesIO(data)) as decoded:
                    job.image = decoded.convert("RGBA")
        return job.image

    # ---- variants -------------------------------------------------------- #
    def _srcset(self, job: _Job, identity: ImageIdentity, vars: dict) -> Tuple[str, str]:
        request = job.request
        if not request.srcset:
            return "", ""
        primary_width = int(vars["width"])
        widths = accepted_widths(request.srcset, primary_width, request.allow_scale_larger)
        entries = []
        for width in widths:
            path = identity.variant_path(f"{width}w")
            with self.store.lock(path):
                if not self.store.is_fresh(path):
                    started = time.perf_counter()
                    source = job.source
                    geometry = variant_geometry(source.width, source.height, job.geometry, width)
                    image = self._render_image(job, geometry, identity.extension)
                    data = self._encode(job, image, identity.extension)
                    self._write(job, path, data, image.width, image.height, identity.extension, started)
            entries.append((self.store.storage.public_url(path), width))
        return (
            srcset_attribute(entries, str(vars["made_url"]), primary_width),
            sizes_attribute(widths, primary_width, request.sizes),
        )

    def _placeholder(self, job: _Job, identity: ImageIdentity) -> str:
        spec = placeholder_spec(job.request.lazy)
        if spec is None:
            return ""
        path = identity.variant_path(spec.suffix)
        with self.store.lock(path):
            if not self.store.is_fresh(path):
                started = time.perf_counter()
                primary = self._primary_image(job, identity)
                state = self._state(job, primary.width, identity.extension, orig_width=primary.width)
                image = filter_queue(spec.filters).execute(primary, state)
                data = self._encode(job, image, identity.extension, spec.quality, spec.png_quality)
                self._write(job, path, data, image.width, image.height, identity.extension, started)
        return self.store.storage.public_url(path)

    def _jpeg_copy(self, job: _Job, identity: ImageIdentity) -> str:
        """JPEG rendition of the primary for the ``<noscript>`` fallback of js_ lazy modes."""
        path = identity.variant_path("noscript", "jpg")
        with self.store.lock(path):
            if not self.store.is_fresh(path):
                started = time.perf_counter()
                image = self._primary_image(job, identity)
                data = self._encode(job, image, "jpg")
                self._write(job, path, data, image.width, image.height, "jpg", started)
        return self.store.storage.public_url(path)
