import re

import pytest

from config import Settings
from imaging.identity import (
    FOREVER_TAG,
    IdentityBuilder,
    cache_tag,
    duration_from_filename,
    sanitise_basename,
    source_basename,
    source_extension,
)
from schemas import ImageRequest


@pytest.fixture
def builder():
    return IdentityBuilder(Settings(cache_dir="images/cache", cache_duration=60, include_source_in_hash=False))


def test_identity_ignores_control_parameters(builder):
    plain = builder.build(ImageRequest(src="photos/Cat Pic.jpg", width="400"), "jpg")
    noisy = builder.build(
        ImageRequest(width="400", src="photos/Cat Pic.jpg", debug="y", lazy="lqip", attributes='alt="x"'),
        "jpg",
    )
    assert plain == noisy


def test_pixel_parameters_change_the_digest(builder):
    a = builder.build(ImageRequest(src="a.jpg", width="400"), "jpg")
    b = builder.build(ImageRequest(src="a.jpg", width="401"), "jpg")
    c = builder.build(ImageRequest(src="a.jpg", width="400", filter="grayscale"), "jpg")
    assert len({a.digest, b.digest, c.digest}) == 3


def test_equivalent_dimensions_share_a_digest(builder):
    digests = {
        builder.build(ImageRequest(src="a.jpg", width=width), "jpg").digest
        for width in ("400", "400px", "400.0", " 400 ", "400PX")
    }
    assert len(digests) == 1
    assert builder.build(ImageRequest(src="a.jpg", width="50%"), "jpg").digest not in digests


def test_background_colour_is_hashed_by_value(builder):
    short = builder.build(ImageRequest(src="a.jpg", bg_color="#fff"), "jpg")
    long = builder.build(ImageRequest(src="a.jpg", bg_color="#FFFFFF"), "jpg")
    named = builder.build(ImageRequest(src="a.jpg", bg_color="white"), "jpg")
    assert short.digest == long.digest == named.digest


def test_fallback_marker_changes_digest(builder):
    request = ImageRequest(src="a.jpg")
    assert builder.build(request, "jpg").digest != builder.build(request, "jpg", using_fallback=True).digest


def test_filename_layout(builder):
    identity = builder.build(ImageRequest(src="photos/Cat Pic.jpg", width="400"), "jpg")
    assert identity.basename == "cat_pic"
    assert identity.cache_tag == "3c"
    assert re.fullmatch(r"cat_pic_-_3c_-_[0-9a-f]{40}\.jpg", identity.filename)
    assert identity.path == f"images/cache/{identity.filename}"
    assert identity.variant_path("480w") == f"images/cache/{identity.stem}_480w.jpg"


def test_cache_parameter_sets_the_tag(builder):
    request = ImageRequest(src="a.jpg", cache="-1")
    identity = builder.build(request, "png")
    assert identity.cache_tag == FOREVER_TAG
    assert identity.digest == builder.build(ImageRequest(src="a.jpg"), "png").digest


def test_explicit_filename_prefix_suffix_and_hashing(builder):
    named = builder.build(ImageRequest(src="a.jpg", filename="Hero", filename_prefix="x-", filename_suffix="!"), "jpg")
    assert named.basename == "x-hero_"
    hashed = builder.build(ImageRequest(src="a.jpg", hash_filename="y"), "jpg")
    assert re.fullmatch(r"[0-9a-f]{40}", hashed.basename)


def test_remote_source_without_name_uses_url_hash(builder):
    identity = builder.build(ImageRequest(src="https://example.com/"), "jpg")
    assert re.fullmatch(r"[0-9a-f]{40}", identity.basename)


def test_long_names_are_truncated_deterministically():
    name = "a" * 200
    first = sanitise_basename(name, 175)
    assert first == sanitise_basename(name, 175)
    assert first.startswith("a" * 175)
    assert 176 <= len(first) <= 178


def test_cache_tag_round_trip():
    assert cache_tag(2678400) == "28de80"
    assert cache_tag(None) == FOREVER_TAG
    assert duration_from_filename("x_-_3c_-_abc123.jpg", "_-_", 5) == 60
    assert duration_from_filename("x_-_3c_-_abc123_480w.jpg", "_-_", 5) == 60
    assert duration_from_filename(f"x_-_{FOREVER_TAG}_-_abc.png", "_-_", 5) == -1
    assert duration_from_filename("plain.jpg", "_-_", 5) == 5


def test_source_name_helpers():
    assert source_basename("https://cdn.example.com/img/Hero.Shot.jpeg?v=2") == "Hero.Shot"
    assert source_extension("https://cdn.example.com/img/Hero.Shot.jpeg?v=2") == "jpg"
    assert source_extension("images/logo.SVG") == "svg"
    assert source_extension("images/noext") is None
