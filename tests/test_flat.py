"""Tests for the mapmerge.tilers.flat module."""

import json

import pytest

from mapmerge.errors import ConfigurationError
from mapmerge.tilers.flat import (
    INDEX_NAME,
    FlatTile,
    build_tile_index,
    convert_tiles,
    load_tile_index,
    parse_tile_name,
    plan_conversion,
    write_tile_index,
)

from conftest import RED, TILE, X_OFFSET


class TestParseTileName:
    """Tests for deriving grid column and row from chunk filenames."""

    def test_default_grid(self):
        assert parse_tile_name("chunk_1_0_x512_z0.png", 1024, 512) == (512, 0, 0, 0)
        assert parse_tile_name("chunk_0_1_x-512_z1024.png", 1024, 512) == (-512, 1024, -1, 1)

    def test_half_rounds_up(self):
        """Half-way values round towards plus infinity."""
        assert parse_tile_name("a_x0_z512.png", 1024, 512) == (0, 512, 0, 1)

    def test_only_png(self):
        assert parse_tile_name("chunk_1_0_x512_z0.webp", 1024, 512) is None
        assert parse_tile_name("readme.png", 1024, 512) is None


class TestPlanConversion:
    """Tests for listing conversion tasks."""

    def test_missing_source(self, temp_dir):
        with pytest.raises(ConfigurationError):
            plan_conversion(temp_dir / "missing", temp_dir / "out", "png", TILE, X_OFFSET)

    def test_output_names(self, temp_dir, write_tile):
        src = temp_dir / "merged"
        write_tile(src / "chunk_2_0_x24_z0.png")
        write_tile(src / "chunk_1_1_x8_z16.png")
        (src / "notes.txt").write_text("")

        tasks = plan_conversion(src, temp_dir / "out", "webp", TILE, X_OFFSET)
        assert [t.output.name for t in tasks] == ["0_1_x8_z16.webp", "1_0_x24_z0.webp"]
        assert tasks[0].tile().path == "./0_1_x8_z16.webp"


class TestConvertTiles:
    """Tests for parallel re-encoding."""

    def test_failed_conversion_excluded(self, temp_dir, write_tile):
        """A corrupt chunk is counted and leaves no output file."""
        src = temp_dir / "merged"
        write_tile(src / "chunk_1_0_x8_z0.png", RED)
        (src / "chunk_2_0_x24_z0.png").write_bytes(b"garbage")
        out = temp_dir / "out"
        out.mkdir()

        tasks = plan_conversion(src, out, "png", TILE, X_OFFSET)
        built, summary = convert_tiles(tasks, "png", 90, 2)
        assert [t.filename for t in built] == ["0_0_x8_z0.png"]
        assert (summary.total, summary.converted, summary.failed) == (2, 1, 1)
        assert sorted(p.name for p in out.iterdir()) == ["0_0_x8_z0.png"]


class TestTileIndex:
    """Tests for tile-index.json."""

    def test_sorted_with_bounds(self):
        tiles = [FlatTile(1, 0, 24, 0, "b", "./b"), FlatTile(0, 1, 8, 16, "c", "./c"),
                 FlatTile(0, 0, 8, 0, "a", "./a")]
        index = build_tile_index(tiles)
        assert [t["filename"] for t in index["tiles"]] == ["a", "c", "b"]
        assert (index["minX"], index["maxX"], index["minZ"], index["maxZ"]) == (8, 24, 0, 16)

    def test_empty_index_bounds_are_zero(self):
        assert build_tile_index([]) == {"tiles": [], "minX": 0, "maxX": 0, "minZ": 0, "maxZ": 0}

    def test_write_and_load(self, temp_dir):
        write_tile_index(temp_dir, [FlatTile(0, 0, 8, 0, "a", "./a")])
        assert load_tile_index(temp_dir)["tiles"][0] == {
            "col": 0, "row": 0, "x": 8, "z": 0, "filename": "a", "path": "./a"}
        assert json.loads((temp_dir / INDEX_NAME).read_text())["maxX"] == 8
        assert [p.name for p in temp_dir.iterdir()] == [INDEX_NAME]
