import pytest

from config import Settings
from imaging.colors import Color
from imaging.errors import InvalidParameter
from imaging.params import (
    FilterName,
    Length,
    normalize,
    normalize_filters,
    parse_aspect_ratio,
    parse_border,
    parse_crop,
    parse_length,
    parse_rounded_corners,
    parse_srcset,
    parse_text,
    parse_watermark,
    split_args,
    validate_dimension,
)
from schemas import ImageRequest


def only(raw):
    specs = normalize_filters(raw)
    assert len(specs) == 1
    return specs[0]


# ---- filters ------------------------------------------------------------ #
def test_brightness_is_clamped_then_scaled():
    assert only("brightness,300").args == (100,)
    assert only("brightness,-300").args == (-100,)
    assert only("brightness,51").args == (20,)


def test_contrast_sign_is_inverted():
    assert only("contrast,20").args == (-20,)
    assert only("contrast,-150").args == (100,)


def test_scatter_sub_must_be_below_add():
    assert only("scatter,10,5").args == (3, 5)
    assert only("scatter").args == (3, 6)


@pytest.mark.parametrize("raw, expected", [
    ("noise,300", (255,)),
    ("noise", (30,)),
    ("opacity,-50", (50,)),
    ("blur,500", (100,)),
    ("pixelate,-4", (0, False)),
    ("pixelate,8,y", (8, True)),
    ("sepia,weird", ("fast",)),
    ("sepia,slow", ("slow",)),
    ("colorize,300,-10,5", (255, -10, 5)),
])
def test_filter_clamping(raw, expected):
    assert only(raw).args == expected


def test_sharpen_defaults_and_cap():
    assert only("sharpen").args == (80, 0.5, 3)
    assert only("sharpen,900,1,4").args == (500, 1.0, 4)


def test_unknown_filters_are_skipped_and_order_kept():
    specs = normalize_filters("grayscale|bogus|blur,3")
    assert [s.name for s in specs] == [FilterName.GRAYSCALE, FilterName.BLUR]
    assert specs[1].args == (3,)


def test_filter_aliases():
    assert only("greyscale").name is FilterName.GRAYSCALE
    assert only("gaussian_blur,2").name is FilterName.BLUR
    assert only("invert").name is FilterName.NEGATE


def test_replace_colors_keeps_rgba_arguments_whole():
    spec = only("replace_colors,rgba(255,0,0,1),#00ff00,10")
    assert spec.args == (Color(255, 0, 0, 1.0), Color(0, 255, 0, 1.0), 10)


def test_replace_colors_without_target_is_skipped():
    assert normalize_filters("replace_colors,#ff0000") == []


def test_mask_defaults_and_bad_point_count():
    spec = only("mask,circle")
    mask = spec.args[0]
    assert mask.shape == "circle"
    assert (mask.x, mask.y, mask.width) == (Length(50, "%"), Length(50, "%"), Length(100, "%"))
    assert normalize_filters("mask,star-2") == []
    assert only("mask,star-6").args[0].points == 6


def test_dot_arguments():
    block, color, shape, multiplier = only("dot,1,#000000,square,2").args
    assert block == 2
    assert color == Color(0, 0, 0)
    assert shape == "square"
    assert multiplier == 2.0


# ---- dimensions --------------------------------------------------------- #
def test_parse_length_units():
    assert parse_length("400") == Length(400, "px")
    assert parse_length("400px") == Length(400, "px")
    assert parse_length("50%") == Length(50.0, "%")
    assert parse_length("") is None
    with pytest.raises(InvalidParameter):
        parse_length("wide")


def test_validate_dimension_resolves_percentages():
    assert validate_dimension("50%", 800) == 400
    assert validate_dimension("12.5", None) == 13
    assert validate_dimension("nonsense", 800) is None


def test_aspect_ratio_is_height_over_width():
    assert parse_aspect_ratio("16_9") == pytest.approx(9 / 16)
    assert parse_aspect_ratio("4:3") == pytest.approx(0.75)
    assert parse_aspect_ratio("0.5") == 0.5
    assert parse_aspect_ratio("0_9") is None


def test_split_args_respects_parentheses():
    assert split_args("a,rgba(1,2,3,0.5),b") == ["a", "rgba(1,2,3,0.5)", "b"]


# ---- crop --------------------------------------------------------------- #
def test_parse_crop_full_spec():
    spec = parse_crop("y|left,bottom|10,20%|n|5")
    assert spec.mode == "y"
    assert spec.position == ("left", "bottom")
    assert spec.offset == (Length(10, "px"), Length(20.0, "%"))
    assert spec.smart_scale is False
    assert spec.sensitivity == 5


def test_parse_crop_invalid_values_fall_back():
    spec = parse_crop("y|middle,nowhere||y|42")
    assert spec.position == ("center", "center")
    assert spec.sensitivity == 9
    assert parse_crop(None).enabled is False
    assert parse_crop("f").enabled is True


# ---- overlays ----------------------------------------------------------- #
def test_parse_border():
    spec = parse_border("5|#ff0000")
    assert spec.width == Length(5, "px")
    assert spec.color == Color(255, 0, 0)
    assert parse_border("0|red") is None


def test_parse_rounded_corners():
    spec = parse_rounded_corners("tl,10|br,20%")
    assert spec.top_left == Length(10, "px")
    assert spec.bottom_right == Length(20.0, "%")
    assert spec.top_right is None
    everywhere = parse_rounded_corners("all,8")
    assert set(everywhere) == {Length(8, "px")}


def test_parse_text_cleans_markup():
    spec = parse_text("Hello<br>World|||||||||||||")
    assert spec.content == "Hello\nWorld"
    assert spec.font_size == 12
    assert parse_text("<b></b>") is None


def test_parse_watermark_repeat():
    spec = parse_watermark("mark.png||50|repeat,10")
    assert spec.tiled
    assert spec.opacity == 50
    assert spec.repeat[0] == Length(10.0, "%")


def test_parse_srcset_skips_junk():
    assert parse_srcset("200|300w|abc|0") == (200, 300)


# ---- request ------------------------------------------------------------ #
def test_normalize_builds_typed_request():
    request = ImageRequest(src=" photo.jpg ", width="400", filter="grayscale", crop="y", max="300", save_type="jpeg")
    normalized = normalize(request, Settings())
    assert normalized.src == "photo.jpg"
    assert normalized.width == Length(400, "px")
    assert normalized.max_width == Length(300, "px")
    assert normalized.max_height == Length(300, "px")
    assert normalized.crop.enabled
    assert normalized.save_type == "jpg"
    assert [f.name for f in normalized.filters] == [FilterName.GRAYSCALE]


def test_per_axis_max_overrides_shared_max():
    normalized = normalize(ImageRequest(max="300", max_width="500"), Settings())
    assert normalized.max_width == Length(500, "px")
    assert normalized.max_height == Length(300, "px")


def test_auto_sharpen_is_appended_once():
    normalized = normalize(ImageRequest(filter="blur", auto_sharpen="y"), Settings())
    assert [f.name for f in normalized.filters] == [FilterName.BLUR, FilterName.AUTO_SHARPEN]


def test_lazy_mode_resolution():
    settings = Settings(enable_lazy_loading=True, lazy_loading_mode="js_lqip")
    assert normalize(ImageRequest(), settings).lazy == "js_lqip"
    assert normalize(ImageRequest(lazy="no"), settings).lazy is None
    assert normalize(ImageRequest(lazy="html5"), settings).lazy == "html5"
