"""
Output variables and markup.

``build_vars`` describes one cached render; the result is stored in the cache log
so a cache hit can answer without touching the image. ``request_vars`` adds the
per-request values (attributes, preload, srcset, placeholders) on every call.
"""
from __future__ import annotations

import base64 as b64
import html
import posixpath
import re
from typing import Dict, Optional

from config import Settings
from imaging.identity import ImageIdentity, source_basename, source_extension
from imaging.params import NormalizedRequest
from imaging.pipeline import MIME_TYPES
from imaging.sources import SourceImage, is_remote

PLACEHOLDER_MODES = ("lqip", "dominant_color")
JS_MODES          = ("js_lqip", "js_dominant_color")

_TEMPLATE_VAR = re.compile(r"\{([a-z_]+)\}")


def _ratio(width, height) -> str:
    return f"{height / width:.4f}" if width else ""


def build_vars(
    identity: ImageIdentity,
    source: SourceImage,
    width: int,
    height: int,
    public_url: str,
    settings: Settings,
    average_color: Optional[str] = None,
    dominant_color: Optional[str] = None,
) -> Dict[str, object]:
    src = source.src
    made = "/" + identity.path
    prefix = settings.path_prefix.rstrip("/")
    return {
        "aspect_ratio":      _ratio(width, height),
        "aspect_ratio_orig": _ratio(source.width, source.height),
        "average_color":     average_color or "",
        "dominant_color":    dominant_color or "",
        "extension":         identity.extension,
        "extension_orig":    source.extension or source_extension(src) or "",
        "height":            height,
        "height_orig":       source.height,
        "made":              made,
        "made_url":          public_url,
        "made_with_prefix":  f"{prefix}{made}",
        "mime_type":         MIME_TYPES.get(identity.extension, "application/octet-stream"),
        "name":              identity.stem,
        "name_orig":         source_basename(src) or "",
        "orig":              src,
        "orig_url":          src if is_remote(src) else "/" + src.lstrip("/"),
        "path":              posixpath.dirname(made),
        "path_orig":         posixpath.dirname(src),
        "type":              MIME_TYPES.get(identity.extension, "").split("/")[-1],
        "type_orig":         MIME_TYPES.get(source.extension, "").split("/")[-1],
        "width":             width,
        "width_orig":        source.width,
    }


def request_vars(
    request: NormalizedRequest,
    made_url: str,
    srcset: str = "",
    sizes: str = "",
    lazy_image: str = "",
    data: Optional[bytes] = None,
    mime_type: str = "",
    noscript_image: str = "",
) -> Dict[str, object]:
    encoded = ""
    if request.base64 and data is not None:
        encoded = f"data:{mime_type};base64,{b64.b64encode(data).decode('ascii')}"
    preload = f'<link rel="preload" as="image" href="{html.escape(made_url)}">' if request.preload else ""
    return {
        "attributes":     request.attributes,
        "base64":         encoded,
        "lazy_image":     lazy_image,
        "lqip":           lazy_image if request.lazy and request.lazy.endswith("lqip") else "",
        "noscript_image": noscript_image or made_url,
        "preload":        preload,
        "sizes_param":    sizes,
        "srcset_param":   srcset,
    }


def _attr(name: str, value) -> str:
    return f'{name}="{html.escape(str(value), quote=True)}"'


def render_markup(vars: Dict[str, object], request: NormalizedRequest, settings: Settings) -> str:
    """
    ``url_only`` wins, then an ``output`` template, then ``create_tag=n`` (no markup),
    else an ``<img>`` tag shaped by the lazy-loading mode.
    """
    url = str(vars.get("made_url", ""))
    if request.url_only:
        return url
    if request.output:
        return _TEMPLATE_VAR.sub(lambda m: str(vars.get(m.group(1), m.group(0))), request.output)
    if request.create_tag is False:
        return ""

    lazy = request.lazy
    lazy_image = str(vars.get("lazy_image") or "")
    srcset = str(vars.get("srcset_param") or "")
    sizes = str(vars.get("sizes_param") or "")
    attrs = []
    if vars.get("extension") == "svg":
        attrs.append(_attr("role", "img"))
    if settings.html_decoding:
        attrs.append(_attr("decoding", "async"))

    if lazy in PLACEHOLDER_MODES and lazy_image:
        attrs += [_attr("loading", "lazy"), _attr("src", url), _attr("data-bglzy", lazy_image)]
    elif lazy in JS_MODES and lazy_image:
        attrs += [_attr("src", lazy_image), _attr("data-ji-src", url)]
    elif lazy == "html5":
        attrs += [_attr("loading", "lazy"), _attr("src", url)]
    else:
        attrs.append(_attr("src", url))

    if srcset:
        attrs.append(_attr("data-ji-srcset" if lazy in JS_MODES else "srcset", srcset))
        attrs.append(_attr("sizes", sizes))

    if request.add_dims or (lazy in PLACEHOLDER_MODES + JS_MODES and lazy_image):
        if not srcset:
            attrs.append(_attr("width", vars.get("width")))
        attrs.append(_attr("height", vars.get("height")))
    if request.preload:
        attrs.append("data-ji-preload")
    if request.attributes:
        attrs.append(request.attributes)

    tag = f"<img {' '.join(attrs)}>"
    if lazy in JS_MODES and lazy_image and settings.progressive_enhance:
        fallback = [_attr("src", vars.get("noscript_image") or url)]
        if srcset:
            fallback += [_attr("srcset", srcset), _attr("sizes", sizes)]
        if request.attributes:
            fallback.append(request.attributes)
        tag += f'<noscript class="ji__progenhlazyns"><img {" ".join(fallback)}></noscript>'
    return tag
