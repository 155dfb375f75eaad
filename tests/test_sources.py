from dataclasses import replace
from io import BytesIO

import pytest
import requests
from PIL import Image

from config import Settings
from imaging.errors import SourceUnavailable
from imaging.params import normalize
from imaging.sources import SourceLoader, looks_like_svg, sanitise_svg, svg_dimensions
from schemas import ImageRequest

SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 120 60" onload="alert(1)">'
    b"<script>alert(2)</script><rect width=\"10\" height=\"10\"/></svg>"
)


def jpeg_bytes(size=(80, 40), **save_kwargs) -> bytes:
    out = BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(out, "JPEG", **save_kwargs)
    return out.getvalue()


class FakeResponse:
    def __init__(self, content=b"", status=200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append((url, timeout, headers))
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"cannot reach {url}")
        return response


# ---- local sources ------------------------------------------------------ #
def test_load_local_jpeg(settings, photo):
    source = SourceLoader(settings).load(photo)
    assert source.size == (800, 600)
    assert source.extension == "jpg"
    assert source.image.mode == "RGBA"
    assert not source.using_fallback


def test_paths_outside_root_are_rejected(settings, tmp_path):
    (tmp_path / "secret.jpg").write_bytes(jpeg_bytes())
    with pytest.raises(SourceUnavailable):
        SourceLoader(settings).load("../secret.jpg")


def test_missing_and_undecodable_sources(settings, source_dir):
    (source_dir / "broken.jpg").write_bytes(b"not an image")
    loader = SourceLoader(settings)
    with pytest.raises(SourceUnavailable):
        loader.load("missing.jpg")
    with pytest.raises(SourceUnavailable):
        loader.load("broken.jpg")


def test_exif_orientation_is_applied(settings, source_dir):
    exif = Image.Exif()
    exif[0x0112] = 6
    (source_dir / "rotated.jpg").write_bytes(jpeg_bytes((80, 40), exif=exif))
    source = SourceLoader(settings).load("rotated.jpg")
    assert source.size == (40, 80)


def test_oversized_sources(settings, photo):
    with pytest.raises(SourceUnavailable):
        SourceLoader(replace(settings, max_image_dimension=500)).load(photo)
    adjusted = SourceLoader(replace(settings, max_image_dimension=500, auto_adjust=True)).load(photo)
    assert adjusted.size == (500, 375)
    with pytest.raises(SourceUnavailable):
        SourceLoader(replace(settings, max_image_size_mb=0.0001)).load(photo)


# ---- svg ---------------------------------------------------------------- #
def test_svg_is_sanitised_and_sized(settings, source_dir):
    (source_dir / "logo.svg").write_bytes(SVG)
    source = SourceLoader(settings).load("logo.svg")
    assert source.is_svg
    assert source.image is None
    assert source.size == (120, 60)
    assert b"<script" not in source.data
    assert b"onload" not in source.data


def test_svg_helpers():
    assert looks_like_svg("x", b"  <?xml version='1.0'?><svg></svg>")
    assert not looks_like_svg("x.png", b"\x89PNG")
    assert svg_dimensions(b'<svg width="30px" height="20">', (1, 1)) == (30, 20)
    assert svg_dimensions(b"<svg>", (350, 150)) == (350, 150)
    assert sanitise_svg(b"<svg onclick='x()'></svg>") == b"<svg></svg>"


# ---- remote ------------------------------------------------------------- #
def test_remote_fetch_sends_user_agent(settings):
    url = "https://cdn.example.com/a.jpg"
    session = FakeSession({url: FakeResponse(jpeg_bytes())})
    source = SourceLoader(settings, session=session).load(url)
    assert source.size == (80, 40)
    assert session.calls[0][1] == settings.remote_timeout
    assert session.calls[0][2] == {"User-Agent": settings.user_agent}


@pytest.mark.parametrize("responses", [{}, {"https://cdn.example.com/a.jpg": FakeResponse(status=404)}])
def test_remote_failures(settings, responses):
    loader = SourceLoader(settings, session=FakeSession(responses))
    with pytest.raises(SourceUnavailable):
        loader.load("https://cdn.example.com/a.jpg")


# ---- fallback chain ----------------------------------------------------- #
def request_for(settings, **params):
    return normalize(ImageRequest(**params), settings)


def test_fallback_src_is_used_when_src_fails(settings, photo):
    source = SourceLoader(settings).load_request(request_for(settings, src="missing.jpg", fallback_src=photo))
    assert source.src == photo
    assert source.using_fallback


def test_configured_local_fallback(settings, photo):
    settings = replace(settings, fallback_image="yl", fallback_local=photo)
    source = SourceLoader(settings).load_request(request_for(settings, src="missing.jpg"))
    assert source.src == photo
    assert source.using_fallback


def test_colour_fill_fallback(settings):
    settings = replace(settings, fallback_image="yc", fallback_color="#306392")
    source = SourceLoader(settings).load_request(request_for(settings, src="missing.jpg"))
    assert source.src == "fallback:color"
    assert source.size == (350, 150)
    assert source.image.getpixel((0, 0)) == (48, 99, 146, 255)
    assert source.using_fallback


def test_no_usable_source(settings):
    with pytest.raises(SourceUnavailable):
        SourceLoader(settings).load_request(request_for(settings, src="missing.jpg"))
    with pytest.raises(SourceUnavailable):
        SourceLoader(settings).load_request(request_for(settings))


def test_overlay_loading(settings, photo, source_dir):
    (source_dir / "logo.svg").write_bytes(SVG)
    loader = SourceLoader(settings)
    assert loader.load_overlay(photo).size == (800, 600)
    assert loader.load_overlay("missing.png") is None
    assert loader.load_overlay("logo.svg") is None
