import logging
import os
from dataclasses import dataclass

import boto3
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "n") -> bool:
    return os.getenv(name, default).strip().lower()[:1] == "y"


# ── Service ─────────────────────────────────────────────────────────────────
DB_URL          = os.getenv("DATABASE_URL", "sqlite:///image_cache.db")
LOG_LEVEL       = os.getenv("LOG_LEVEL", "INFO").upper()
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").lower()
AWS_REGION      = os.getenv("AWS_DEFAULT_REGION", "us-west-1")
S3_BUCKET       = os.getenv("S3_BUCKET")

# ── Cache ───────────────────────────────────────────────────────────────────
CACHE_DIR              = os.getenv("CACHE_DIR", "images/cache")
PATH_PREFIX            = os.getenv("PATH_PREFIX", "")
SOURCE_ROOT            = os.getenv("SOURCE_ROOT", ".")
CACHE_DURATION         = int(os.getenv("CACHE_DURATION", "2678400"))
FILENAME_SEPARATOR     = os.getenv("FILENAME_SEPARATOR", "_-_")
MAX_FILENAME_LENGTH    = int(os.getenv("MAX_FILENAME_LENGTH", "175"))
INCLUDE_SOURCE_IN_HASH = _flag("INCLUDE_SOURCE_IN_HASH")
LICENSE_MODE           = os.getenv("LICENSE_MODE", "standard")

# ── Rendering defaults ──────────────────────────────────────────────────────
DEFAULT_IMAGE_FORMAT = os.getenv("DEFAULT_IMAGE_FORMAT", "source")
JPG_QUALITY          = int(os.getenv("JPG_QUALITY", "90"))
PNG_QUALITY          = int(os.getenv("PNG_QUALITY", "6"))
DEFAULT_BG_COLOR     = os.getenv("DEFAULT_BG_COLOR", "#FFFFFF")
DEFAULT_IMG_WIDTH    = int(os.getenv("DEFAULT_IMG_WIDTH", "350"))
DEFAULT_IMG_HEIGHT   = int(os.getenv("DEFAULT_IMG_HEIGHT", "150"))
ALLOW_SCALE_LARGER   = _flag("ALLOW_SCALE_LARGER")
AUTO_SHARPEN         = _flag("AUTO_SHARPEN")
FACE_SENSITIVITY     = int(os.getenv("FACE_DETECT_SENSITIVITY", "3"))

# ── Lazy loading / markup ───────────────────────────────────────────────────
ENABLE_LAZY_LOADING  = _flag("ENABLE_LAZY_LOADING")
LAZY_LOADING_MODE    = os.getenv("LAZY_LOADING_MODE", "lqip")
PROGRESSIVE_ENHANCE  = _flag("LAZY_PROGRESSIVE_ENHANCEMENT", "y")
HTML_DECODING        = _flag("HTML_DECODING", "y")

# ── Sources ─────────────────────────────────────────────────────────────────
FALLBACK_IMAGE      = os.getenv("FALLBACK_IMAGE", "n").lower()
FALLBACK_COLOR      = os.getenv("FALLBACK_COLOR", "#306392")
FALLBACK_LOCAL      = os.getenv("FALLBACK_LOCAL", "")
FALLBACK_REMOTE     = os.getenv("FALLBACK_REMOTE", "")
AUTO_ADJUST         = _flag("AUTO_ADJUST")
MAX_IMAGE_DIMENSION = int(os.getenv("MAX_IMAGE_DIMENSION", "2500"))
MAX_IMAGE_SIZE_MB   = float(os.getenv("MAX_IMAGE_SIZE_MB", "4"))
REMOTE_TIMEOUT      = float(os.getenv("REMOTE_TIMEOUT", "10"))
USER_AGENT          = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.5; rv:127.0) Gecko/20100101 Firefox/127.0",
)

if STORAGE_BACKEND == "s3" and not S3_BUCKET:
    raise RuntimeError("S3_BUCKET must be set when STORAGE_BACKEND=s3")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("image_service")

# Use default AWS credential resolution (env, instance profile, etc.)
s3_client = boto3.client("s3", region_name=AWS_REGION) if STORAGE_BACKEND == "s3" else None


@dataclass(frozen=True)
class Settings:
    """Engine-wide options. One instance is handed to the engine and never mutated."""

    cache_dir:              str   = CACHE_DIR
    path_prefix:            str   = PATH_PREFIX
    source_root:            str   = SOURCE_ROOT
    cache_duration:         int   = CACHE_DURATION
    filename_separator:     str   = FILENAME_SEPARATOR
    max_filename_length:    int   = MAX_FILENAME_LENGTH
    include_source_in_hash: bool  = INCLUDE_SOURCE_IN_HASH
    license_mode:           str   = LICENSE_MODE
    default_image_format:   str   = DEFAULT_IMAGE_FORMAT
    jpg_quality:            int   = JPG_QUALITY
    png_quality:            int   = PNG_QUALITY
    default_bg_color:       str   = DEFAULT_BG_COLOR
    default_img_width:      int   = DEFAULT_IMG_WIDTH
    default_img_height:     int   = DEFAULT_IMG_HEIGHT
    allow_scale_larger:     bool  = ALLOW_SCALE_LARGER
    auto_sharpen:           bool  = AUTO_SHARPEN
    face_sensitivity:       int   = FACE_SENSITIVITY
    enable_lazy_loading:    bool  = ENABLE_LAZY_LOADING
    lazy_loading_mode:      str   = LAZY_LOADING_MODE
    progressive_enhance:    bool  = PROGRESSIVE_ENHANCE
    html_decoding:          bool  = HTML_DECODING
    fallback_image:         str   = FALLBACK_IMAGE
    fallback_color:         str   = FALLBACK_COLOR
    fallback_local:         str   = FALLBACK_LOCAL
    fallback_remote:        str   = FALLBACK_REMOTE
    auto_adjust:            bool  = AUTO_ADJUST
    max_image_dimension:    int   = MAX_IMAGE_DIMENSION
    max_image_size_mb:      float = MAX_IMAGE_SIZE_MB
    remote_timeout:         float = REMOTE_TIMEOUT
    user_agent:             str   = USER_AGENT
    storage_backend:        str   = STORAGE_BACKEND
