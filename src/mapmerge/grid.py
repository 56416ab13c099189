"""World-aligned output chunk grid.

The grid phase is set by an origin ``(base_x, base_z)``: chunk origins are
``base + k * chunk_size`` for integer ``k``. The default ``base_x = -512``
puts chunk origins on ``x = 512 (mod 1024)``, matching the tile x-offset.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from . import config
from .layers import Layer, LayerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    """One output grid cell: grid indices and world origin."""
    gx: int
    gz: int
    vx: int
    vz: int


@dataclass(frozen=True)
class ChunkGrid:
    """Chunks covering an area plus the aligned inclusive bounds."""
    chunks: Tuple[Chunk, ...]
    bounds: Optional[Tuple[int, int, int, int]]

    def __len__(self):
        return len(self.chunks)


def align_to_chunk(value: int, base: int, chunk_size: int, direction: str = "down") -> int:
    """Snap ``value`` to the nearest chunk boundary below or above it.

    Parameters
    ----------
    value : int
        World coordinate.
    base : int
        Grid origin along the same axis.
    chunk_size : int
        Chunk side length.
    direction : {'down', 'up'}
        Round towards minus or plus infinity.
    """
    offset = value - base
    if direction == "down":
        return base + math.floor(offset / chunk_size) * chunk_size
    if direction == "up":
        return base + math.ceil(offset / chunk_size) * chunk_size
    raise ValueError(f"direction must be 'down' or 'up', got {direction!r}")


def create_grid(x0: int, z0: int, x1: int, z1: int, chunk_size: int = 1024,
                base_x: int = -512, base_z: int = 0) -> ChunkGrid:
    """Build the chunk grid covering the inclusive box ``[x0..x1] x [z0..z1]``.

    The lower corner is aligned down and the exclusive upper corner
    (``x1 + 1``) aligned up, so every covered world coordinate falls in
    exactly one chunk. Chunks are ordered row-major: ``gz`` outer, ``gx``
    inner.
    """
    ax0 = align_to_chunk(min(x0, x1), base_x, chunk_size, "down")
    az0 = align_to_chunk(min(z0, z1), base_z, chunk_size, "down")
    ax1 = align_to_chunk(max(x0, x1) + 1, base_x, chunk_size, "up")
    az1 = align_to_chunk(max(z0, z1) + 1, base_z, chunk_size, "up")

    start_gx = (ax0 - base_x) // chunk_size
    end_gx = (ax1 - base_x) // chunk_size
    start_gz = (az0 - base_z) // chunk_size
    end_gz = (az1 - base_z) // chunk_size

    chunks = tuple(
        Chunk(gx, gz, base_x + gx * chunk_size, base_z + gz * chunk_size)
        for gz in range(start_gz, end_gz)
        for gx in range(start_gx, end_gx)
    )
    return ChunkGrid(chunks, (ax0, az0, ax1 - 1, az1 - 1))


def union_bounds(bounds: Iterable[Optional[Tuple[int, int, int, int]]]):
    """Union of several ``(min_x, min_z, max_x, max_z)`` boxes; None entries are ignored."""
    boxes = [b for b in bounds if b is not None]
    if not boxes:
        return None
    return (min(b[0] for b in boxes), min(b[1] for b in boxes),
            max(b[2] for b in boxes), max(b[3] for b in boxes))


def chunks_for_layers(registry: LayerRegistry, layers: List[Layer],
                      chunk_size: int = None, base_x: int = None,
                      base_z: int = None) -> List[Chunk]:
    """Chunk list covering the union of the given layers' bounds.

    Returns an empty list when no layer has bounds.
    """
    chunk_size = config.get("tile_size", chunk_size)
    base_x = config.get("base_x", base_x)
    base_z = config.get("base_z", base_z)

    per_layer = registry.query_bounds(layers)
    for layer, bounds in per_layer.items():
        if bounds is None:
            logger.info("%s: no bounds available", layer.name)

    bounds = union_bounds(per_layer.values())
    if bounds is None:
        return []

    grid = create_grid(*bounds, chunk_size=chunk_size, base_x=base_x, base_z=base_z)
    logger.info("Grid of %d chunks, aligned bounds (%d, %d) -> (%d, %d)",
                len(grid), *grid.bounds)
    return list(grid.chunks)
