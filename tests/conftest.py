"""
Shared fixtures. Environment defaults are set before any backend module is
imported, so importing ``config`` / ``database`` never touches real resources.
"""
import os
import tempfile
from pathlib import Path

os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp(prefix='image_service_')) / 'cache.db'}")
os.environ.setdefault("STORAGE_BACKEND", "local")

import numpy as np
import pytest
from PIL import Image

from config import Settings
from database import make_session_factory
from imaging.cache import CacheLog, CacheStore
from imaging.engine import ImageEngine
from imaging.services import PaletteColorExtractor
from utils.storage import LocalStorage


class StubFaceDetector:
    """Returns a fixed set of faces and counts how often it was asked."""

    def __init__(self, faces=()):
        self.faces = list(faces)
        self.calls = 0

    def detect(self, image, sensitivity=3):
        self.calls += 1
        return list(self.faces)


class StubColorExtractor:
    def __init__(self, rgb=(10, 20, 30)):
        self.rgb = rgb

    def extract(self, image, sample_count=10):
        return self.rgb

    def average(self, image):
        return self.rgb


def gradient(width=800, height=600) -> Image.Image:
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[..., 0] = xs[None, :].astype(np.uint8)
    arr[..., 1] = ys[:, None].astype(np.uint8)
    arr[..., 2] = 128
    return Image.fromarray(arr, "RGB")


@pytest.fixture
def source_dir(tmp_path) -> Path:
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def photo(source_dir) -> str:
    gradient().save(source_dir / "photo.jpg", "JPEG", quality=95)
    return "photo.jpg"


@pytest.fixture
def settings(tmp_path, source_dir) -> Settings:
    return Settings(
        cache_dir              = "images/cache",
        path_prefix            = "",
        source_root            = str(source_dir),
        cache_duration         = 2678400,
        include_source_in_hash = False,
        default_image_format   = "source",
        allow_scale_larger     = False,
        auto_sharpen           = False,
        enable_lazy_loading    = False,
        fallback_image         = "n",
        auto_adjust            = False,
        max_image_dimension    = 2500,
        html_decoding          = True,
        progressive_enhance    = True,
        storage_backend        = "local",
    )


@pytest.fixture
def session_factory(tmp_path):
    return make_session_factory(f"sqlite:///{tmp_path / 'log.db'}")


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(str(tmp_path / "public"))


@pytest.fixture
def store(storage, session_factory, settings) -> CacheStore:
    return CacheStore(storage, CacheLog(session_factory), settings)


@pytest.fixture
def faces() -> StubFaceDetector:
    return StubFaceDetector()


@pytest.fixture
def engine(settings, store, faces) -> ImageEngine:
    return ImageEngine(
        settings,
        store,
        face_detector   = faces,
        color_extractor = PaletteColorExtractor(),
        rng_factory     = lambda: np.random.default_rng(7),
    )
