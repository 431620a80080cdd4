"""Tests for text and image rasterization."""

import io

import numpy as np
import pytest
from PIL import Image

from py_formation.core.errors import AssetError, ConfigurationError
from py_formation.core.rasterizer import (
    ImageRaster,
    TextRaster,
    check_request,
    layout_text,
    parse_request,
    rasterize,
    sample_mask,
)


def make_png(size=(40, 40), square=(10, 10, 30, 30), fill=(255, 0, 0, 255), background=(0, 0, 0, 0), mode="RGBA"):
    """Encode an image with a filled square as PNG bytes."""
    image = Image.new(mode, size, background)
    x0, y0, x1, y1 = square
    image.paste(Image.new(mode, (x1 - x0, y1 - y0), fill), (x0, y0))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class TestSampleMask:
    """Test grid sampling of a mask."""

    def test_grid_positions(self):
        """Samples sit at resolution // 2 + k * resolution."""
        mask = np.full((10, 10), 255, dtype=np.uint8)
        xs, ys = sample_mask(mask, 4, 128)

        assert sorted(set(xs.tolist())) == [2, 6]
        assert sorted(set(ys.tolist())) == [2, 6]

    def test_threshold_is_strict(self):
        """A sample equal to the threshold is not a target."""
        mask = np.full((4, 4), 128, dtype=np.uint8)
        xs, _ = sample_mask(mask, 1, 128)
        assert len(xs) == 0

        xs, _ = sample_mask(mask, 1, 127)
        assert len(xs) == 16

    def test_row_major_order(self):
        """Points come out row by row."""
        mask = np.full((6, 6), 255, dtype=np.uint8)
        xs, ys = sample_mask(mask, 2, 0)

        assert list(zip(xs.tolist(), ys.tolist()))[:4] == [(1, 1), (3, 1), (5, 1), (1, 3)]

    def test_invalid_resolution(self):
        mask = np.zeros((4, 4), dtype=np.uint8)
        with pytest.raises(ConfigurationError):
            sample_mask(mask, 0, 128)


class TestTextRaster:
    """Test text rasterization."""

    def test_deterministic(self):
        """Identical requests give point-for-point identical target sets."""
        request = TextRaster(text="Hi", font_size=48, resolution=4)
        first = rasterize(request)
        second = rasterize(request)

        assert len(first) > 0
        assert first.points == second.points

    @pytest.mark.parametrize("resolution", [2, 5, 9])
    def test_deterministic_across_resolutions(self, resolution):
        request = TextRaster(text="Ok", font_size=40, resolution=resolution)
        assert rasterize(request).points == rasterize(request).points

    def test_two_characters_form_two_groups(self):
        """'AB' at resolution 10 yields two horizontally separated clusters."""
        request = TextRaster(text="AB", font_size=64, resolution=10)
        target_set = rasterize(request)

        assert len(target_set) > 0
        xs = np.unique(target_set.as_array()[:, 0])
        gaps = np.diff(xs)
        widest = int(np.argmax(gaps))
        assert gaps[widest] >= 30

        split = (xs[widest] + xs[widest + 1]) / 2
        coords = target_set.as_array()
        assert np.sum(coords[:, 0] < split) > 0
        assert np.sum(coords[:, 0] > split) > 0

    def test_finer_resolution_gives_more_points(self):
        coarse = rasterize(TextRaster(text="M", font_size=64, resolution=8))
        fine = rasterize(TextRaster(text="M", font_size=64, resolution=4))

        assert len(fine) > len(coarse)

    def test_points_inside_surface(self):
        target_set = rasterize(TextRaster(text="Wave", font_size=48, resolution=3, padding=5))
        coords = target_set.as_array()

        assert np.all(coords[:, 0] >= 0) and np.all(coords[:, 0] < target_set.width)
        assert np.all(coords[:, 1] >= 0) and np.all(coords[:, 1] < target_set.height)

    def test_multiline_is_taller(self):
        single = rasterize(TextRaster(text="AB", font_size=32, resolution=4))
        double = rasterize(TextRaster(text="AB\nAB", font_size=32, resolution=4))

        assert double.height > single.height
        assert len(double) > len(single)

    def test_unknown_font_falls_back(self):
        """A missing font uses the default font instead of failing."""
        request = TextRaster(text="A", font_family="no-such-font-family.ttf", font_size=48, resolution=4)
        assert len(rasterize(request)) > 0

    def test_color_attached(self):
        target_set = rasterize(TextRaster(text="I", font_size=48, resolution=4, color=(10, 20, 30, 255)))
        assert all(p.color == (10, 20, 30, 255) for p in target_set)

    def test_threshold_255_gives_nothing(self):
        target_set = rasterize(TextRaster(text="A", font_size=48, resolution=4, threshold=255))
        assert len(target_set) == 0

    def test_generation_stamped(self):
        target_set = rasterize(TextRaster(text="A", font_size=24, resolution=4), generation=7)
        assert target_set.generation == 7

    @pytest.mark.parametrize("field,value", [
        ("resolution", 0),
        ("resolution", -3),
        ("threshold", 256),
        ("threshold", -1),
        ("font_size", 0),
    ])
    def test_invalid_parameters(self, field, value):
        with pytest.raises(ConfigurationError):
            TextRaster(text="A", **{field: value})

    def test_empty_text_rejected(self):
        with pytest.raises(ConfigurationError):
            TextRaster(text="")

    def test_unbounded_grid_rejected(self):
        """A request that would sample far too many points is refused."""
        request = TextRaster(text="W" * 200, font_size=200, resolution=1)
        with pytest.raises(ConfigurationError):
            rasterize(request)

    def test_layout_checked_without_drawing(self):
        """Oversized text is caught from font metrics alone."""
        with pytest.raises(ConfigurationError):
            check_request(TextRaster(text="W" * 200, font_size=200, resolution=1))

        layout = layout_text(TextRaster(text="AB\nAB", font_size=32, resolution=4))
        assert len(layout.lines) == 2
        assert layout.height > 2 * layout.line_height

    def test_image_size_not_checked_up_front(self):
        check_request(ImageRaster(source=b"not decoded yet"))


class TestImageRaster:
    """Test image rasterization."""

    def test_alpha_square(self):
        """An opaque 20x20 square sampled every 5px gives a 4x4 grid."""
        target_set = rasterize(ImageRaster(source=make_png(), resolution=5))

        assert len(target_set) == 16
        coords = target_set.as_array()
        assert coords[:, 0].min() == 12 and coords[:, 0].max() == 27
        assert all(p.color is None for p in target_set)

    def test_color_sampling(self):
        target_set = rasterize(ImageRaster(source=make_png(), resolution=5, color_sampling=True))
        assert all(p.color == (255, 0, 0, 255) for p in target_set)

    def test_luminance_mask(self):
        """Dark pixels of an opaque image become targets."""
        data = make_png(fill=(0, 0, 0), background=(255, 255, 255), mode="RGB")
        target_set = rasterize(ImageRaster(source=data, resolution=5, mask="luminance"))
        assert len(target_set) == 16

    def test_invert(self):
        """Inverting the alpha mask selects the transparent border."""
        target_set = rasterize(ImageRaster(source=make_png(), resolution=5, invert=True))
        assert len(target_set) == 64 - 16

    def test_scale(self):
        target_set = rasterize(ImageRaster(source=make_png(), resolution=5, scale=0.5))
        assert target_set.width == 20
        assert len(target_set) == 4

    def test_path_source(self, tmp_path):
        path = tmp_path / "shape.png"
        path.write_bytes(make_png())
        assert len(rasterize(ImageRaster(source=path, resolution=5))) == 16

    def test_deterministic(self):
        request = ImageRaster(source=make_png(), resolution=3, color_sampling=True)
        assert rasterize(request).points == rasterize(request).points

    def test_unreadable_bytes(self):
        with pytest.raises(AssetError):
            rasterize(ImageRaster(source=b"definitely not an image", resolution=5))

    def test_missing_file(self, tmp_path):
        with pytest.raises(AssetError):
            rasterize(ImageRaster(source=tmp_path / "missing.png", resolution=5))


class TestParseRequest:
    """Test request validation from mappings."""

    def test_defaults_to_text(self):
        request = parse_request({"text": "Hello"})
        assert isinstance(request, TextRaster)

    def test_image_mapping(self):
        request = parse_request({"kind": "image", "source": make_png(), "resolution": 4})
        assert isinstance(request, ImageRaster)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            parse_request({"kind": "video"})

    def test_invalid_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_request({"text": "A", "resolution": 0})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_request(["A"])
