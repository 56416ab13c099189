"""Flat tile set: re-encode merged chunks and catalogue them.

Merged chunk PNGs are converted to the delivery format (WebP by default)
under names carrying their grid column/row, and listed in
``tile-index.json``::

    {
      "tiles": [{"col": 0, "row": 0, "x": 512, "z": 0,
                 "filename": "0_0_x512_z0.webp", "path": "./0_0_x512_z0.webp"}],
      "minX": 512, "maxX": 512, "minZ": 0, "maxZ": 0
    }
"""
import json
import logging
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from tqdm import tqdm

from .. import codec, config
from ..errors import ConfigurationError
from ..utils import format_bytes, vprint, write_json_atomic

logger = logging.getLogger(__name__)

FILE_RE = re.compile(r"^.*?x(-?\d+)_z(-?\d+)\.png$", re.IGNORECASE)
INDEX_NAME = "tile-index.json"


@dataclass(frozen=True)
class FlatTile:
    """One entry of the flat tile index."""
    col: int
    row: int
    x: int
    z: int
    filename: str
    path: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ConversionTask:
    """A merged chunk to re-encode into the flat tile set."""
    source: Path
    output: Path
    col: int
    row: int
    x: int
    z: int

    def tile(self) -> FlatTile:
        return FlatTile(self.col, self.row, self.x, self.z,
                        self.output.name, f"./{self.output.name}")


@dataclass
class FlatSummary:
    total: int = 0
    converted: int = 0
    failed: int = 0
    bytes_written: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    elapsed: float = 0.0

    def lines(self) -> List[str]:
        return [
            f"Tiles: {self.total}",
            f"Converted: {self.converted}",
            f"Failed: {self.failed}",
            f"Written: {format_bytes(self.bytes_written)}",
            f"Elapsed: {self.elapsed:.1f}s",
        ]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_tile_name(filename: str, tile_size: int = None,
                    x_offset: int = None) -> Optional[Tuple[int, int, int, int]]:
    """Parse ``(x, z, col, row)`` from a merged chunk filename.

    Returns None for names that are not ``...x<int>_z<int>.png``.
    """
    tile_size = config.get("tile_size", tile_size)
    x_offset = config.get("x_offset", x_offset)
    match = FILE_RE.match(filename)
    if not match:
        return None
    x, z = int(match.group(1)), int(match.group(2))
    col = _round_half_up((x - x_offset) / tile_size)
    row = _round_half_up(z / tile_size)
    return x, z, col, row


def plan_conversion(source_dir, out_dir, fmt: str = None, tile_size: int = None,
                    x_offset: int = None) -> List[ConversionTask]:
    """List the conversion tasks for every parsable PNG in ``source_dir``.

    Raises
    ------
    ConfigurationError
        If ``source_dir`` does not exist.
    """
    fmt = config.get("tile_format", fmt)
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise ConfigurationError(f"Source directory not found: {source_dir}")

    ext = codec.extension(fmt)
    tasks = []
    for src in sorted(source_dir.iterdir(), key=lambda p: p.name):
        if not src.is_file() or src.suffix.lower() != ".png":
            continue
        parsed = parse_tile_name(src.name, tile_size, x_offset)
        if parsed is None:
            logger.warning("Skipping %s: no x/z coordinate in filename", src.name)
            continue
        x, z, col, row = parsed
        out_name = f"{col}_{row}_x{x}_z{z}.{ext}"
        tasks.append(ConversionTask(src, Path(out_dir) / out_name, col, row, x, z))
    return tasks


def convert_tile(task: ConversionTask, fmt: str, quality: int) -> int:
    try:
        return codec.convert(task.source, task.output, fmt=fmt, quality=quality)
    except Exception:
        task.output.unlink(missing_ok=True)
        raise


def convert_tiles(tasks: List[ConversionTask], fmt: str = None, quality: int = None,
                  concurrency: int = None) -> Tuple[List[FlatTile], FlatSummary]:
    """Re-encode all tasks on a bounded thread pool.

    Failed conversions are logged, counted and left out of the returned
    tile list.
    """
    fmt = config.get("tile_format", fmt)
    quality = max(1, min(100, int(config.get("quality", quality))))
    concurrency = max(1, int(config.get("process_concurrency", concurrency)))

    started = time.perf_counter()
    summary = FlatSummary(total=len(tasks))
    built = []
    vprint(f"Converting {len(tasks)} tiles to {fmt}, quality={quality}, "
           f"concurrency={concurrency}")

    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = {executor.submit(convert_tile, task, fmt, quality): task for task in tasks}
        with tqdm(total=len(futures), desc="Converting tiles", unit="tile",
                  disable=not config.get("verbose")) as pbar:
            for future in as_completed(futures):
                task = futures[future]
                try:
                    size = future.result()
                except Exception as err:
                    summary.failed += 1
                    summary.failures.append((task.source.name, str(err)))
                    logger.error("Convert failed: %s -> %s", task.source.name, err)
                else:
                    summary.converted += 1
                    summary.bytes_written += size
                    built.append(task.tile())
                pbar.update(1)

    summary.elapsed = time.perf_counter() - started
    return built, summary


def build_tile_index(tiles: List[FlatTile]) -> dict:
    """Tile index content sorted by ``x`` then ``z`` with aggregate bounds."""
    ordered = sorted(tiles, key=lambda t: (t.x, t.z))
    xs = [t.x for t in ordered]
    zs = [t.z for t in ordered]
    return {
        "tiles": [t.to_dict() for t in ordered],
        "minX": min(xs) if xs else 0,
        "maxX": max(xs) if xs else 0,
        "minZ": min(zs) if zs else 0,
        "maxZ": max(zs) if zs else 0,
    }


def write_tile_index(out_dir, tiles: List[FlatTile]) -> Path:
    path = Path(out_dir) / INDEX_NAME
    write_json_atomic(path, build_tile_index(tiles))
    return path


def load_tile_index(tiles_dir) -> dict:
    """Read ``tile-index.json`` from ``tiles_dir``.

    Raises
    ------
    FileNotFoundError
        If the index does not exist.
    json.JSONDecodeError
        If the index is not valid JSON.
    """
    with open(Path(tiles_dir) / INDEX_NAME, "r") as f:
        return json.load(f)
