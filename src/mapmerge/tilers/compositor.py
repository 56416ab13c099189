"""Merge layered source tiles into one flat set of chunk images.

For each output chunk every layer is queried for overlapping tiles, in
priority order, and their pixels are copied onto a black canvas. Pure black
source pixels are treated as transparent: they are never copied and never
hide what an earlier layer wrote. Any other pixel overwrites the canvas
unconditionally, so the last layer applied (``map0``) wins.

Known limitation: a layer cannot contribute genuinely black content. Black
areas of the top layer never occlude lower layers, and black pixels of any
layer are replaced wherever another layer has non-black content.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .. import codec, config
from ..cache import DecodedTileCache
from ..errors import TileDecodeError
from ..grid import Chunk
from ..layers import Layer, LayerRegistry, TileRef
from ..utils import format_bytes, vprint

logger = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    """Outcome of compositing one chunk."""
    chunk: Chunk
    image: np.ndarray = field(repr=False)
    wrote_any: bool = False
    touched_tiles: int = 0
    skipped_tiles: int = 0


@dataclass
class MergeSummary:
    """Counters for one merge run."""
    total: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    touched_tiles: int = 0
    skipped_tiles: int = 0
    bytes_written: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    cache: dict = field(default_factory=dict)
    elapsed: float = 0.0

    def lines(self) -> List[str]:
        return [
            f"Total chunks: {self.total}",
            f"Saved: {self.saved}",
            f"Skipped (empty): {self.skipped}",
            f"Failed: {self.failed}",
            f"Tile references composited: {self.touched_tiles}",
            f"Unreadable tile references skipped: {self.skipped_tiles}",
            f"Written: {format_bytes(self.bytes_written)}",
            f"Elapsed: {self.elapsed:.1f}s",
        ]


def rect_intersection(a: Tuple[int, int, int, int],
                      b: Tuple[int, int, int, int]) -> Optional[Tuple[int, int, int, int]]:
    """Intersection of two inclusive ``(x0, z0, x1, z1)`` boxes, or None."""
    ix0, iz0 = max(a[0], b[0]), max(a[1], b[1])
    ix1, iz1 = min(a[2], b[2]), min(a[3], b[3])
    if ix0 > ix1 or iz0 > iz1:
        return None
    return ix0, iz0, ix1, iz1


def composite_tile(canvas: np.ndarray, origin: Tuple[int, int], src: np.ndarray,
                   ref: TileRef, inter: Tuple[int, int, int, int]) -> bool:
    """Copy the non-sentinel pixels of ``src`` inside ``inter`` onto ``canvas``.

    Parameters
    ----------
    canvas : numpy.ndarray
        Destination ``(size, size, 3)`` array, modified in place.
    origin : tuple of int
        World coordinate ``(x, z)`` of the canvas' upper-left pixel.
    src : numpy.ndarray
        Decoded source tile.
    ref : TileRef
        Placement of ``src``.
    inter : tuple of int
        Inclusive world intersection of canvas and tile.

    Returns
    -------
    bool
        True if at least one pixel was written.
    """
    ix0, iz0, ix1, iz1 = inter
    sx0, sz0 = ix0 - ref.x0, iz0 - ref.z0
    dx0, dz0 = ix0 - origin[0], iz0 - origin[1]
    width, height = ix1 - ix0 + 1, iz1 - iz0 + 1

    patch = src[sz0:sz0 + height, sx0:sx0 + width]
    opaque = patch.any(axis=2)
    if not opaque.any():
        return False
    canvas[dz0:dz0 + height, dx0:dx0 + width][opaque] = patch[opaque]
    return True


def merge_chunk(chunk: Chunk, registry: LayerRegistry, layers: List[Layer],
                tile_size: int, cache: DecodedTileCache) -> ChunkResult:
    """Composite all layers for one chunk.

    Parameters
    ----------
    chunk : Chunk
        Output cell; its world box is ``[vx, vx + tile_size)`` squared.
    registry : LayerRegistry
        Loaded layer indexes.
    layers : list of Layer
        Layers in application order (lowest priority first).
    tile_size : int
        Chunk and source tile side length.
    cache : DecodedTileCache
        Shared decoded-tile cache.

    Returns
    -------
    ChunkResult
        Canvas, whether any pixel was written, and the number of tiles that
        contributed pixels. Tiles that fail to decode are logged and counted
        in ``skipped_tiles``.
    """
    box = (chunk.vx, chunk.vz, chunk.vx + tile_size - 1, chunk.vz + tile_size - 1)
    canvas = codec.blank(tile_size)
    result = ChunkResult(chunk, canvas)

    area_tiles = registry.query_area(*box, layers)
    for layer in layers:
        for ref in area_tiles.get(layer, []):
            inter = rect_intersection(box, (ref.x0, ref.z0, ref.x1, ref.z1))
            if inter is None:
                continue
            try:
                src = cache.get(ref.path, tile_size)
            except TileDecodeError as err:
                logger.warning("Skipping tile %s in chunk (%d, %d): %s",
                               ref.path.name, chunk.gx, chunk.gz, err)
                result.skipped_tiles += 1
                continue
            if composite_tile(canvas, (chunk.vx, chunk.vz), src, ref, inter):
                result.wrote_any = True
                result.touched_tiles += 1
    return result


def chunk_filename(chunk: Chunk, prefix: str = "chunk") -> str:
    """Output filename carrying grid indices and world origin."""
    return f"{prefix}_{chunk.gx}_{chunk.gz}_x{chunk.vx}_z{chunk.vz}.png"


def process_and_save_chunk(chunk: Chunk, registry: LayerRegistry, layers: List[Layer],
                           tile_size: int, cache: DecodedTileCache, output_dir,
                           prefix: str = "chunk", save_empty: bool = False):
    """Composite one chunk and write it as PNG unless it is empty.

    Returns
    -------
    tuple
        ``(saved, touched_tiles, skipped_tiles, bytes_written)``.
    """
    result = merge_chunk(chunk, registry, layers, tile_size, cache)
    if not result.wrote_any and not save_empty:
        return False, 0, result.skipped_tiles, 0

    out_path = Path(output_dir) / chunk_filename(chunk, prefix)
    try:
        size = codec.write_rgb(result.image, out_path, fmt="png")
    except Exception:
        out_path.unlink(missing_ok=True)
        raise
    return True, result.touched_tiles, result.skipped_tiles, size


def merge_layers(chunks: List[Chunk], registry: LayerRegistry, layers: List[Layer],
                 output_dir, tile_size: int = None, prefix: str = None,
                 save_empty: bool = None, workers: int = None,
                 cache: DecodedTileCache = None) -> MergeSummary:
    """Composite and save every chunk on a bounded thread pool.

    Chunks complete in any order. A chunk that raises is counted as failed
    and produces no file; the remaining chunks are still processed.

    Parameters
    ----------
    chunks : list of Chunk
        Cells to produce.
    registry : LayerRegistry
        Loaded layer indexes.
    layers : list of Layer
        Layers in application order.
    output_dir : str or pathlib.Path
        Existing, already cleared directory for chunk PNGs.
    tile_size : int, optional
        By default the ``tile_size`` setting.
    prefix : str, optional
        Filename prefix, by default the ``prefix`` setting.
    save_empty : bool, optional
        Persist chunks without content, by default the ``save_empty`` setting.
    workers : int, optional
        Pool width, by default the ``merge_workers`` setting.
    cache : DecodedTileCache, optional
        Shared cache; a new one sized by ``cache_size`` when omitted.
    """
    tile_size = config.get("tile_size", tile_size)
    prefix = config.get("prefix", prefix)
    save_empty = config.get("save_empty", save_empty)
    workers = max(1, int(config.get("merge_workers", workers)))
    cache = cache or DecodedTileCache()

    started = time.perf_counter()
    summary = MergeSummary(total=len(chunks))
    vprint(f"Merging {len(chunks)} chunks with {workers} worker(s)")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(process_and_save_chunk, chunk, registry, layers,
                            tile_size, cache, output_dir, prefix, save_empty): chunk
            for chunk in chunks
        }
        with tqdm(total=len(futures), desc="Merging chunks", unit="chunk",
                  disable=not config.get("verbose")) as pbar:
            for future in as_completed(futures):
                chunk = futures[future]
                try:
                    saved, touched, skipped_refs, size = future.result()
                except Exception as err:
                    summary.failed += 1
                    summary.failures.append((chunk_filename(chunk, prefix), str(err)))
                    logger.error("Chunk (%d, %d) at x=%d z=%d failed: %s",
                                 chunk.gx, chunk.gz, chunk.vx, chunk.vz, err)
                else:
                    summary.skipped_tiles += skipped_refs
                    if saved:
                        summary.saved += 1
                        summary.touched_tiles += touched
                        summary.bytes_written += size
                    else:
                        summary.skipped += 1
                pbar.update(1)

    summary.cache = cache.stats()
    summary.elapsed = time.perf_counter() - started
    return summary
