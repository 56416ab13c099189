"""Shared pytest fixtures for mapmerge tests.

Most tests use small tiles (16 px) on a grid whose x phase is 8, the same
layout as the production 1024/512 grid scaled down.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

TILE = 16
X_OFFSET = 8
BASE_X = -8

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def solid(color, size=TILE):
    """Return a ``size x size`` RGB array filled with ``color``."""
    data = np.zeros((size, size, 3), dtype=np.uint8)
    data[:] = color
    return data


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_tile():
    """Write a PNG tile from a color or a pixel array."""
    def _write(path, color=RED, size=TILE, pixels=None):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = solid(color, size) if pixels is None else pixels
        Image.fromarray(data).save(path, format="PNG")
        return path
    return _write


@pytest.fixture
def map_tree(temp_dir, write_tile):
    """Build ``<temp>/map/<layer>/tile_x<X>_z<Z>.png`` from a layout dict.

    The layout maps layer names to ``{(x, z): color}``.
    """
    def _build(layout, size=TILE):
        base = temp_dir / "map"
        base.mkdir(exist_ok=True)
        for layer, tiles in layout.items():
            (base / layer).mkdir(parents=True, exist_ok=True)
            for (x, z), color in tiles.items():
                write_tile(base / layer / f"tile_x{x}_z{z}.png", color, size)
        return base
    return _build
