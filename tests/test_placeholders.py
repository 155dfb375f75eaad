from imaging.geometry import resolve
from imaging.params import FilterName
from imaging.placeholders import (
    LQIP_QUALITY,
    accepted_widths,
    placeholder_spec,
    sizes_attribute,
    srcset_attribute,
    variant_geometry,
)


def test_accepted_widths_must_increase_and_fit():
    assert accepted_widths([300, 200, 500, 900], 600) == [300, 500]
    assert accepted_widths([300, 900], 600, allow_scale_larger=True) == [300, 900]
    assert accepted_widths([], 600) == []


def test_srcset_lists_primary_last():
    value = srcset_attribute([("/a_200w.jpg", 200), ("/a_300w.jpg", 300)], "/a.jpg", 400)
    assert value == "/a_200w.jpg 200w, /a_300w.jpg 300w, /a.jpg 400w"


def test_sizes_attribute():
    assert sizes_attribute([200, 300], 400) == "(max-width: 200px) 200px, (max-width: 300px) 300px, 400px"
    assert sizes_attribute([200], 400, "100vw").startswith("100vw, ")


def test_placeholder_spec_by_mode():
    lqip = placeholder_spec("js_lqip")
    assert [f.name for f in lqip.filters] == [FilterName.LQIP]
    assert lqip.suffix == "js_lqip"
    assert lqip.quality == LQIP_QUALITY

    dominant = placeholder_spec("dominant_color")
    assert dominant.filters[0].name is FilterName.DOMINANT_COLOR
    assert dominant.filters[0].args == (10,)

    assert placeholder_spec("html5") is None
    assert placeholder_spec(None) is None


def test_variant_geometry_keeps_primary_ratio():
    primary = resolve(800, 600, 400, 400, fit="cover")
    variant = variant_geometry(800, 600, primary, 200)
    assert (variant.width, variant.height) == (200, 200)

    plain = variant_geometry(800, 600, resolve(800, 600, 400), 200)
    assert (plain.width, plain.height) == (200, 150)
