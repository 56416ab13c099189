"""Pipeline orchestration: merge layers, build the flat tile set, build the pyramid.

Stages and their outputs::

    merge_map    <base_path>/map*/...x<X>_z<Z>.png  ->  <merged_dir>/chunk_<gx>_<gz>_x<vx>_z<vz>.png
    process_map  <merged_dir>                        ->  <tiles_dir>/<col>_<row>_x<x>_z<z>.webp
                                                         <tiles_dir>/tile-index.json
                                                         <tiles_dir>/mip/...  (see tilers.pyramid)

Each stage clears its output directory before writing, so a rerun on
unchanged inputs reproduces the same files, index and manifest (apart from
the manifest's ``generatedAt``).
"""
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import config
from .cache import DecodedTileCache
from .errors import ConfigurationError
from .grid import chunks_for_layers
from .layers import Layer, LayerRegistry, discover_layers
from .tilers.compositor import MergeSummary, merge_layers
from .tilers.flat import FlatSummary, convert_tiles, plan_conversion, write_tile_index
from .tilers.pyramid import Manifest, PyramidSummary, generate_pyramid
from .utils import clear_output_dir, vprint

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    flat: FlatSummary
    manifest: Manifest
    pyramid: PyramidSummary

    @property
    def failed(self) -> int:
        return self.flat.failed + self.pyramid.failed

    def lines(self) -> List[str]:
        return self.flat.lines() + [f"Pyramid levels: {len(self.manifest.levels)}"] + self.pyramid.lines()


@dataclass
class PipelineSummary:
    merge: MergeSummary = field(default_factory=MergeSummary)
    process: Optional[ProcessResult] = None
    elapsed: float = 0.0

    @property
    def failed(self) -> int:
        return self.merge.failed + (self.process.failed if self.process else 0)

    def lines(self) -> List[str]:
        lines = self.merge.lines()
        if self.process is not None:
            lines += self.process.lines()
        lines.append(f"Total elapsed: {self.elapsed:.1f}s")
        return lines


def _same_dir(a, b) -> bool:
    return Path(a).resolve() == Path(b).resolve()


def _holds_only_chunks(folder: Path, prefix: str) -> bool:
    """True when every file in ``folder`` is a chunk written by a previous merge."""
    pattern = re.compile(rf"{re.escape(prefix)}_-?\d+_-?\d+_x-?\d+_z-?\d+\.png")
    return all(p.is_file() and pattern.fullmatch(p.name) for p in folder.iterdir())


def _source_layers(base_path: Path, output_dir: Path, prefix: str) -> List[Layer]:
    """Discover layers, refusing an ``output_dir`` that overlaps a source layer.

    Under the default layout the merged directory lives next to the layers
    and matches the layer prefix; it is left out of the layer list only while
    it holds nothing but previous merge output.
    """
    out = output_dir.resolve()
    layers = []
    for layer in discover_layers(base_path):
        if layer.path == out:
            if not _holds_only_chunks(layer.path, prefix):
                raise ConfigurationError(
                    f"Output dir {out} is the source layer {layer.name}")
            continue
        if layer.path in out.parents:
            raise ConfigurationError(f"Output dir {out} is inside source layer {layer.name}")
        layers.append(layer)
    return layers


def merge_map(base_path=None, output_dir=None, tile_size: int = None,
              base_x: int = None, base_z: int = None, prefix: str = None,
              save_empty: bool = None, limit: int = None, workers: int = None,
              cache_size: int = None) -> MergeSummary:
    """Merge all ``map*`` layers below ``base_path`` into chunk PNGs.

    Parameters default to the corresponding settings (``base_path``,
    ``merged_dir``, ``tile_size``, ``base_x``, ``base_z``, ``prefix``,
    ``save_empty``, ``limit``, ``merge_workers``, ``cache_size``).

    Returns
    -------
    MergeSummary
        Counters for the run; ``failed`` > 0 when some chunks failed.

    Raises
    ------
    ConfigurationError
        If the source is missing, no layer has usable tiles, the output
        directory is or lies inside a source layer, or it cannot be cleared
        safely.
    """
    base_path = Path(config.get("base_path", base_path))
    output_dir = Path(config.get("merged_dir", output_dir))
    tile_size = int(config.get("tile_size", tile_size))
    limit = int(config.get("limit", limit))

    prefix = config.get("prefix", prefix)
    layers = _source_layers(base_path, output_dir, prefix)
    if not layers:
        raise ConfigurationError(f"No map folders found in {base_path}")

    registry = LayerRegistry(tile_size)
    loaded = registry.load(layers)
    if not loaded:
        raise ConfigurationError(f"No usable tiles found in {base_path}")
    logger.info("Effective layer order (bottom to top): %s", [layer.name for layer in loaded])

    chunks = chunks_for_layers(registry, loaded, tile_size, base_x, base_z)
    if limit > 0:
        chunks = chunks[:limit]
        logger.info("Debug limit: processing only the first %d chunks", len(chunks))

    clear_output_dir(output_dir, base_path)
    vprint(f"Output dir (cleared): {output_dir}")
    if not chunks:
        logger.warning("Chunk list is empty, nothing to merge")
        return MergeSummary()

    return merge_layers(chunks, registry, loaded, output_dir, tile_size=tile_size,
                        prefix=prefix, save_empty=save_empty, workers=workers,
                        cache=DecodedTileCache(cache_size))


def process_map(source_dir=None, out_dir=None, quality: int = None,
                concurrency: int = None, mip_levels: int = None, fmt: str = None,
                tile_size: int = None, x_offset: int = None) -> ProcessResult:
    """Convert merged chunks into the flat tile set and build its pyramid.

    Raises
    ------
    ConfigurationError
        If ``source_dir`` is missing, holds no parsable PNG tiles, or
        ``out_dir`` cannot be cleared safely.
    PyramidError
        If no tile could be converted.
    """
    source_dir = Path(config.get("merged_dir", source_dir))
    out_dir = Path(config.get("tiles_dir", out_dir))

    tasks = plan_conversion(source_dir, out_dir, fmt, tile_size, x_offset)
    if not tasks:
        raise ConfigurationError(f"No valid png tiles found in {source_dir}")

    clear_output_dir(out_dir, source_dir)
    vprint(f"Source: {source_dir}")
    vprint(f"Output (cleared): {out_dir}")

    built, flat_summary = convert_tiles(tasks, fmt, quality, concurrency)
    write_tile_index(out_dir, built)

    manifest, pyramid_summary = generate_pyramid(
        out_dir, max_levels=mip_levels, tile_size=tile_size, x_offset=x_offset,
        fmt=fmt, workers=concurrency)
    return ProcessResult(flat_summary, manifest, pyramid_summary)


def run_pipeline(base_path=None, merged_dir=None, tiles_dir=None, quality: int = None,
                 process_concurrency: int = None, merge_workers: int = None,
                 mip_levels: int = None, x_offset: int = None, fmt: str = None,
                 **merge_options) -> PipelineSummary:
    """Run ``merge_map`` then ``process_map``.

    Extra keyword arguments are passed to ``merge_map``. ``tile_size`` is
    also forwarded to ``process_map`` so both stages agree on it.
    """
    base_path = Path(config.get("base_path", base_path))
    merged_dir = Path(config.get("merged_dir", merged_dir))
    tiles_dir = Path(config.get("tiles_dir", tiles_dir))
    for a, b in ((merged_dir, base_path), (tiles_dir, base_path), (tiles_dir, merged_dir)):
        if _same_dir(a, b):
            raise ConfigurationError(f"Pipeline directories must differ: {a}")

    started = time.perf_counter()
    summary = PipelineSummary()
    summary.merge = merge_map(base_path, merged_dir, workers=merge_workers, **merge_options)
    summary.process = process_map(merged_dir, tiles_dir, quality=quality,
                                  concurrency=process_concurrency, mip_levels=mip_levels,
                                  fmt=fmt, tile_size=merge_options.get("tile_size"),
                                  x_offset=x_offset)
    summary.elapsed = time.perf_counter() - started
    logger.info("Pipeline finished in %.1fs", summary.elapsed)
    return summary
