"""Tests for the mapmerge.layers module."""

from pathlib import Path

import pytest

from mapmerge.errors import ConfigurationError
from mapmerge.layers import (
    LayerRegistry,
    TileIndex,
    discover_layers,
    folder_sort_key,
    list_image_files,
    parse_tile_coords,
)

from conftest import BLUE, RED, TILE


class TestParseTileCoords:
    """Tests for extracting world coordinates from filenames."""

    def test_negative_and_positive(self):
        """Signed coordinates should be parsed from the stem."""
        assert parse_tile_coords("tile_x-512_z1024.png") == (-512, 1024)

    def test_pattern_inside_longer_name(self):
        """The coordinate pattern may appear anywhere in the stem."""
        assert parse_tile_coords("area7_x3_z-4_final.webp") == (3, -4)

    def test_no_coordinates(self):
        """Names without x/z should return None."""
        assert parse_tile_coords("overview.png") is None
        assert parse_tile_coords("x12.png") is None


class TestFolderSortKey:
    """Tests for layer priority ordering."""

    def test_numbered_descending_then_named(self):
        """Numbered folders sort by descending suffix, others follow by name."""
        names = ["map0", "mapB", "map10", "map2", "mapa"]
        ordered = sorted(names, key=folder_sort_key)
        assert ordered == ["map10", "map2", "map0", "mapa", "mapB"]

    def test_numbered_match_is_case_insensitive(self):
        """MAP3 should count as a numbered folder."""
        assert folder_sort_key("MAP3")[:2] == (0, -3)

    def test_custom_prefix(self):
        """A different prefix changes which folders are numbered."""
        assert folder_sort_key("layer4", prefix="layer")[0] == 0
        assert folder_sort_key("map4", prefix="layer")[0] == 1


class TestTileIndex:
    """Tests for the per-layer spatial index."""

    def test_find_by_coordinate_inclusive_edges(self):
        """Both corners of a tile's box should hit; one past should miss."""
        idx = TileIndex(TILE)
        idx.add_tile(0, 0, "a.png")
        assert idx.find_by_coordinate(0, 0) == Path("a.png")
        assert idx.find_by_coordinate(TILE - 1, TILE - 1) == Path("a.png")
        assert idx.find_by_coordinate(TILE, 0) is None

    def test_find_by_area_normalizes_corners(self):
        """Corners given in any order should find the same tiles."""
        idx = TileIndex(TILE)
        idx.add_tile(0, 0, "a.png")
        idx.add_tile(TILE, 0, "b.png")
        idx.add_tile(0, 100, "c.png")
        forward = idx.find_by_area(5, 5, TILE + 1, 10)
        backward = idx.find_by_area(TILE + 1, 10, 5, 5)
        assert {t.path.name for t in forward} == {"a.png", "b.png"}
        assert forward == backward

    def test_bounds(self):
        """Bounds should span all tiles inclusively."""
        idx = TileIndex(TILE)
        assert idx.bounds() is None
        idx.add_tile(-16, 32, "a.png")
        idx.add_tile(16, 0, "b.png")
        assert idx.bounds() == (-16, 0, 31, 47)

    def test_add_tile_rejects_malformed(self):
        """Non-numeric coordinates should be ignored, not raised."""
        idx = TileIndex(TILE)
        assert idx.add_tile("abc", 0, "a.png") is False
        assert len(idx) == 0


class TestDiscoverLayers:
    """Tests for layer folder discovery."""

    def test_missing_base_path_raises(self, temp_dir):
        """A missing source directory is a configuration error."""
        with pytest.raises(ConfigurationError):
            discover_layers(temp_dir / "nope")

    def test_file_base_path_raises(self, temp_dir):
        """A file given as source directory is a configuration error."""
        path = temp_dir / "file"
        path.write_text("x")
        with pytest.raises(ConfigurationError):
            discover_layers(path)

    def test_filters_and_orders(self, temp_dir):
        """Hidden and non-prefixed folders are skipped; order follows priority."""
        for name in ["map0", "map3", "mapextra", ".map9", "other", "Map1"]:
            (temp_dir / name).mkdir()
        (temp_dir / "map7").write_text("not a dir")

        names = [layer.name for layer in discover_layers(temp_dir)]
        assert names == ["map3", "Map1", "map0", "mapextra"]


class TestLayerRegistry:
    """Tests for loading layers and querying them."""

    def test_skips_unusable_layers(self, map_tree, write_tile):
        """Layers with no images or no parsable names should be skipped."""
        base = map_tree({"map0": {(8, 0): RED}})
        (base / "map1").mkdir()
        write_tile(base / "map2" / "nocoords.png", BLUE)
        (base / "map2" / "notes.txt").write_text("hi")

        registry = LayerRegistry(TILE)
        loaded = registry.load(discover_layers(base))
        assert [layer.name for layer in loaded] == ["map0"]
        assert len(registry.indexes) == 1

    def test_list_image_files_sorted(self, temp_dir, write_tile):
        """Only image suffixes are listed, in name order."""
        write_tile(temp_dir / "b_x0_z0.PNG")
        write_tile(temp_dir / "a_x0_z0.png")
        (temp_dir / "c_x0_z0.txt").write_text("")
        (temp_dir / ".hidden_x0_z0.png").write_text("")
        assert [p.name for p in list_image_files(temp_dir)] == ["a_x0_z0.png", "b_x0_z0.PNG"]

    def test_queries_keep_layer_order(self, map_tree):
        """Per-layer query results should follow the given layer order."""
        base = map_tree({"map0": {(8, 0): RED}, "map1": {(8, 0): BLUE, (24, 0): BLUE}})
        registry = LayerRegistry(TILE)
        layers = registry.load(discover_layers(base))

        area = registry.query_area(8, 0, 30, 15, layers)
        assert [layer.name for layer in area] == ["map1", "map0"]
        assert len(area[layers[0]]) == 2
        assert len(area[layers[1]]) == 1

        coord = registry.query_coord(30, 0, layers)
        assert coord[layers[0]].name == "tile_x24_z0.png"
        assert coord[layers[1]] is None

        bounds = registry.query_bounds(list(reversed(layers)))
        assert bounds[layers[0]] == (8, 0, 39, 15)
