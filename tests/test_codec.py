"""Tests for the mapmerge.codec module."""

import numpy as np
import pytest
from PIL import Image

from mapmerge import codec
from mapmerge.errors import TileDecodeError

from conftest import BLACK, RED, TILE, solid


class TestReadRgb:
    """Tests for decoding tiles."""

    def test_alpha_flattened_onto_black(self, temp_dir):
        """Transparent pixels should decode to the black sentinel."""
        rgba = np.zeros((TILE, TILE, 4), dtype=np.uint8)
        rgba[..., 0] = 255
        rgba[:, TILE // 2:, 3] = 255
        path = temp_dir / "a.png"
        Image.fromarray(rgba).save(path)

        data = codec.read_rgb(path, TILE)
        assert data.shape == (TILE, TILE, 3)
        assert tuple(data[0, 0]) == BLACK
        assert tuple(data[0, TILE - 1]) == RED

    def test_grayscale_converted(self, temp_dir):
        """Single-channel images should decode to three channels."""
        path = temp_dir / "g.png"
        Image.new("L", (TILE, TILE), 200).save(path)
        assert tuple(codec.read_rgb(path, TILE)[3, 3]) == (200, 200, 200)

    def test_corrupt_file_raises(self, temp_dir):
        """Garbage bytes should raise TileDecodeError."""
        path = temp_dir / "bad.png"
        path.write_bytes(b"not an image")
        with pytest.raises(TileDecodeError):
            codec.read_rgb(path, TILE)

    def test_missing_file_raises(self, temp_dir):
        """A missing file should raise TileDecodeError."""
        with pytest.raises(TileDecodeError):
            codec.read_rgb(temp_dir / "missing.png", TILE)


class TestWriteRgb:
    """Tests for encoding tiles."""

    def test_png_is_lossless(self, temp_dir):
        """PNG output should decode to the exact input pixels."""
        data = solid(RED)
        data[2, 3] = (1, 2, 3)
        path = temp_dir / "out.png"
        size = codec.write_rgb(data, path, fmt="png")
        assert size == path.stat().st_size
        np.testing.assert_array_equal(codec.read_rgb(path, TILE), data)

    def test_webp_written(self, temp_dir):
        """WebP output should be a readable image of the same size."""
        path = temp_dir / "out.webp"
        codec.write_rgb(solid(RED), path, fmt="webp", quality=80)
        with Image.open(path) as img:
            assert img.format == "WEBP"
            assert img.size == (TILE, TILE)

    def test_unknown_format(self, temp_dir):
        """Unsupported formats should raise ValueError."""
        with pytest.raises(ValueError):
            codec.write_rgb(solid(RED), temp_dir / "out.gif", fmt="gif")


class TestHelpers:
    """Tests for small codec helpers."""

    def test_extension(self):
        assert codec.extension("jpeg") == "jpg"
        assert codec.extension("WEBP") == "webp"

    def test_downsample_uniform(self):
        """A uniform tile stays uniform after downsampling."""
        half = codec.downsample(solid((10, 200, 30)), TILE // 2)
        assert half.shape == (TILE // 2, TILE // 2, 3)
        assert np.abs(half.astype(int) - (10, 200, 30)).max() <= 1

    def test_blank_is_writable_black(self):
        canvas = codec.blank(4)
        assert canvas.flags.writeable
        assert not canvas.any()
