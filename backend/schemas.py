from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class ImageRequest(BaseModel):
    """
    Every option a template can pass, as the raw strings it passes them.
    Parsing happens once, in ``imaging.params.normalize``.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    # pixel-affecting
    src:                     Optional[str] = None
    fallback_src:            Optional[str] = None
    width:                   Optional[str] = None
    height:                  Optional[str] = None
    min:                     Optional[str] = None
    max:                     Optional[str] = None
    min_width:               Optional[str] = None
    min_height:              Optional[str] = None
    max_width:               Optional[str] = None
    max_height:              Optional[str] = None
    aspect_ratio:            Optional[str] = None
    crop:                    Optional[str] = None
    fit:                     Optional[str] = None
    filter:                  Optional[str] = None
    flip:                    Optional[str] = None
    rotate:                  Optional[str] = None
    border:                  Optional[str] = None
    rounded_corners:         Optional[str] = None
    reflection:              Optional[str] = None
    text:                    Optional[str] = None
    watermark:               Optional[str] = None
    bg_color:                Optional[str] = None
    quality:                 Optional[str] = None
    png_quality:             Optional[str] = None
    save_type:               Optional[str] = None
    interlace:               Optional[str] = None
    face_crop_margin:        Optional[str] = None
    face_detect_sensitivity: Optional[str] = None
    allow_scale_larger:      Optional[str] = None
    auto_sharpen:            Optional[str] = None
    # control
    cache:                   Optional[str] = None
    cache_dir:               Optional[str] = None
    filename:                Optional[str] = None
    filename_prefix:         Optional[str] = None
    filename_suffix:         Optional[str] = None
    hash_filename:           Optional[str] = None
    srcset:                  Optional[str] = None
    sizes:                   Optional[str] = None
    lazy:                    Optional[str] = None
    url_only:                Optional[str] = None
    create_tag:              Optional[str] = None
    output:                  Optional[str] = None
    attributes:              Optional[str] = None
    add_dims:                Optional[str] = None
    preload:                 Optional[str] = None
    base64:                  Optional[str] = None
    debug:                   Optional[str] = None


class RenderOut(BaseModel):
    vars:   Dict[str, object]
    markup: str
    path:   str
    cached: bool


class CacheEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    path:                       str
    cache_dir:                  str
    source_path:                str
    width:                      Optional[int] = None
    height:                     Optional[int] = None
    mime_type:                  Optional[str] = None
    size:                       int
    processing_time:            float
    count:                      int
    cumulative_size:            int
    cumulative_processing_time: float
    inception_date:             datetime
    last_access:                datetime


class RemovedOut(BaseModel):
    removed: int
