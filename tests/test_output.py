import base64

import pytest

from config import Settings
from imaging.identity import IdentityBuilder
from imaging.output import build_vars, render_markup, request_vars
from imaging.params import normalize
from imaging.sources import SourceImage
from schemas import ImageRequest

URL = "/images/cache/photo_-_28de80_-_abc.jpg"
SETTINGS = Settings(cache_dir="images/cache", cache_duration=2678400, html_decoding=True,
                    progressive_enhance=True, enable_lazy_loading=False, path_prefix="/static")


def render(lazy_image="", srcset="", sizes="", extension="jpg", **params):
    raw = ImageRequest(src="photos/photo.jpg", width="400", **params)
    request = normalize(raw, SETTINGS)
    identity = IdentityBuilder(SETTINGS).build(raw, extension)
    source = SourceImage("photos/photo.jpg", b"", None, 800, 600, "jpg")
    vars = build_vars(identity, source, 400, 300, URL, SETTINGS, "#aabbcc", "#112233")
    vars.update(request_vars(request, URL, srcset, sizes, lazy_image))
    return vars, render_markup(vars, request, SETTINGS)


def test_build_vars_describes_render_and_source():
    vars, _ = render()
    assert vars["width"] == 400
    assert vars["height"] == 300
    assert vars["aspect_ratio"] == "0.7500"
    assert vars["aspect_ratio_orig"] == "0.7500"
    assert vars["made_url"] == URL
    assert vars["made"].startswith("/images/cache/photo_-_")
    assert vars["made_with_prefix"] == "/static" + vars["made"]
    assert vars["path"] == "/images/cache"
    assert vars["mime_type"] == "image/jpeg"
    assert vars["type"] == "jpeg"
    assert vars["name_orig"] == "photo"
    assert vars["orig_url"] == "/photos/photo.jpg"
    assert vars["path_orig"] == "photos"
    assert vars["average_color"] == "#aabbcc"
    assert vars["dominant_color"] == "#112233"


def test_plain_img_tag():
    _, markup = render()
    assert markup == f'<img decoding="async" src="{URL}">'


def test_url_only_wins_over_template():
    _, markup = render(url_only="y", output="{width}")
    assert markup == URL


def test_output_template_substitutes_known_variables():
    _, markup = render(output="{made_url}|{width}x{height}|{nope}")
    assert markup == f"{URL}|400x300|{{nope}}"


def test_create_tag_off_renders_nothing():
    _, markup = render(create_tag="n")
    assert markup == ""


def test_dimensions_and_attributes():
    _, markup = render(add_dims="y", attributes='alt="A cat"')
    assert 'width="400"' in markup
    assert 'height="300"' in markup
    assert markup.endswith('alt="A cat">')


def test_srcset_drops_width_attribute():
    _, markup = render(
        srcset="/a_200w.jpg 200w, /a.jpg 400w",
        sizes="(max-width: 200px) 200px, 400px",
        add_dims="y",
    )
    assert 'srcset="/a_200w.jpg 200w, /a.jpg 400w"' in markup
    assert 'sizes="(max-width: 200px) 200px, 400px"' in markup
    assert 'width="' not in markup
    assert 'height="300"' in markup


def test_placeholder_lazy_mode():
    _, markup = render(lazy="lqip", lazy_image="/images/cache/photo_lqip.jpg")
    assert 'loading="lazy"' in markup
    assert f'src="{URL}"' in markup
    assert 'data-bglzy="/images/cache/photo_lqip.jpg"' in markup
    assert 'width="400"' in markup


def test_js_lazy_mode_adds_noscript_fallback():
    vars, markup = render(lazy="js_lqip", lazy_image="/p_lqip.jpg")
    assert markup.startswith('<img decoding="async" src="/p_lqip.jpg" data-ji-src="')
    assert f'<noscript class="ji__progenhlazyns"><img src="{URL}"></noscript>' in markup
    assert vars["lqip"] == "/p_lqip.jpg"


def test_js_lazy_noscript_uses_jpeg_copy():
    request = normalize(ImageRequest(src="photos/photo.png", width="400", lazy="js_lqip"), SETTINGS)
    vars = {"made_url": "/p.png", "width": 400, "height": 300, "extension": "png"}
    vars.update(request_vars(request, "/p.png", lazy_image="/p_js_lqip.png", noscript_image="/p_noscript.jpg"))
    markup = render_markup(vars, request, SETTINGS)
    assert 'data-ji-src="/p.png"' in markup
    assert '<noscript class="ji__progenhlazyns"><img src="/p_noscript.jpg"></noscript>' in markup


def test_html5_lazy_mode():
    _, markup = render(lazy="html5")
    assert markup == f'<img decoding="async" loading="lazy" src="{URL}">'


def test_svg_gets_img_role():
    _, markup = render(extension="svg")
    assert 'role="img"' in markup


def test_preload_link_and_marker():
    vars, markup = render(preload="y")
    assert vars["preload"] == f'<link rel="preload" as="image" href="{URL}">'
    assert "data-ji-preload" in markup


@pytest.mark.parametrize("flag, expected", [("y", True), ("n", False)])
def test_base64_data_uri(flag, expected):
    request = normalize(ImageRequest(src="a.jpg", base64=flag), SETTINGS)
    vars = request_vars(request, URL, data=b"\xff\xd8", mime_type="image/jpeg")
    if expected:
        assert vars["base64"] == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8").decode()
    else:
        assert vars["base64"] == ""
