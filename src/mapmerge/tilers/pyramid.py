"""Mip pyramid generation from the flat tile set.

Level 0 is the flat tile set itself. Each higher level doubles the world
size of a tile: up to four children of level ``L-1`` are downsampled to half
resolution and placed in the quadrants of one level ``L`` parent. Levels are
built strictly one after another because parents are rendered from their
children's encoded files; parents within a level are independent and run on
a thread pool.

A parent tile whose children cannot be read is left out of its level (and
therefore out of every level above it) and counted as a failure; the rest of
the pyramid is still built.

Output layout below ``tiles_dir``::

    mip/l1/<x>_<z>.webp
    mip/l2/<x>_<z>.webp
    ...
    mip/manifest.json
"""
import json
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Tuple

from tqdm import tqdm

from .. import codec, config
from ..errors import PyramidError
from ..utils import clear_output_dir, vprint, write_json_atomic
from .flat import load_tile_index

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


@dataclass(frozen=True)
class MipTile:
    """One tile of a pyramid level; ``source`` is the file on disk."""
    x: int
    z: int
    filename: str
    path: str
    source: Path = field(compare=False)

    def to_dict(self) -> dict:
        return {"x": self.x, "z": self.z, "filename": self.filename, "path": self.path}


@dataclass(frozen=True)
class ParentGroup:
    """A level ``L`` tile and the level ``L-1`` tiles it aggregates."""
    x: int
    z: int
    children: Tuple[MipTile, ...]


@dataclass(frozen=True)
class MipLevel:
    level: int
    world_size: int
    tiles: Tuple[MipTile, ...]
    bounds: Tuple[int, int, int, int] = None

    def __post_init__(self):
        if self.bounds is None and self.tiles:
            xs = [t.x for t in self.tiles]
            zs = [t.z for t in self.tiles]
            object.__setattr__(self, "bounds", (min(xs), max(xs), min(zs), max(zs)))

    @property
    def count(self) -> int:
        return len(self.tiles)

    def to_dict(self) -> dict:
        min_x, max_x, min_z, max_z = self.bounds or (0, 0, 0, 0)
        return {
            "level": self.level,
            "worldSize": self.world_size,
            "minX": min_x,
            "maxX": max_x,
            "minZ": min_z,
            "maxZ": max_z,
            "count": self.count,
            "tiles": [t.to_dict() for t in self.tiles],
        }


@dataclass
class Manifest:
    """Pyramid description handed to the viewer."""
    tile_size: int
    x_offset: int
    levels: List[MipLevel]
    generated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at,
            "tileSize": self.tile_size,
            "xOffset": self.x_offset,
            "levels": [lvl.to_dict() for lvl in self.levels],
        }


@dataclass
class PyramidSummary:
    built: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    level_elapsed: Dict[int, float] = field(default_factory=dict)
    elapsed: float = 0.0

    def lines(self) -> List[str]:
        lines = [f"Pyramid tiles built: {self.built}", f"Pyramid tiles failed: {self.failed}"]
        lines += [f"L{level} elapsed: {secs:.1f}s" for level, secs in sorted(self.level_elapsed.items())]
        lines.append(f"Pyramid elapsed: {self.elapsed:.1f}s")
        return lines


def parent_coord(child_x: int, child_z: int, world_size: int, x_offset: int = 512) -> Tuple[int, int]:
    """World origin of the parent tile of size ``world_size`` containing a child."""
    x = math.floor((child_x - x_offset) / world_size) * world_size + x_offset
    z = math.floor(child_z / world_size) * world_size
    return x, z


def group_children(tiles, world_size: int, x_offset: int = 512) -> List[ParentGroup]:
    """Group tiles by parent coordinate; parents sorted by ``(x, z)``."""
    grouped: Dict[Tuple[int, int], List[MipTile]] = {}
    for tile in tiles:
        grouped.setdefault(parent_coord(tile.x, tile.z, world_size, x_offset), []).append(tile)
    return [ParentGroup(x, z, tuple(children)) for (x, z), children in sorted(grouped.items())]


def build_parent_tile(group: ParentGroup, prev_world_size: int, tile_size: int,
                      output_path, fmt: str = "webp", quality: int = 82) -> int:
    """Render one parent tile from its children and encode it.

    Each child is downsampled to half the tile size and placed at the
    quadrant given by its offset from the parent. Children whose placement
    falls outside the canvas are skipped.

    Returns
    -------
    int
        Size of the written file in bytes.

    Raises
    ------
    TileDecodeError
        If any child cannot be decoded; no output file is left behind.
    """
    half = tile_size // 2
    canvas = codec.blank(tile_size)
    for child in group.children:
        dx = round((child.x - group.x) / prev_world_size)
        dz = round((child.z - group.z) / prev_world_size)
        left, top = dx * half, dz * half
        if left < 0 or left > half or top < 0 or top > half:
            logger.debug("Child %s at offset (%d, %d) outside parent (%d, %d)",
                         child.filename, dx, dz, group.x, group.z)
            continue
        rgb = codec.read_rgb(child.source, tile_size)
        canvas[top:top + half, left:left + half] = codec.downsample(rgb, half)

    output_path = Path(output_path)
    try:
        return codec.write_rgb(canvas, output_path, fmt=fmt, quality=quality)
    except Exception:
        output_path.unlink(missing_ok=True)
        raise


class MipPyramidBuilder:
    """Build the mip pyramid for a flat tile set.

    Parameters
    ----------
    tiles_dir : str or pathlib.Path
        Directory holding ``tile-index.json`` and the level 0 tiles.
    max_levels : int, optional
        Highest level to build, by default the ``mip_levels`` setting.
    tile_size : int, optional
        Pixel and level 0 world size of a tile, by default ``tile_size``.
    x_offset : int, optional
        Grid phase along x, by default ``x_offset``.
    fmt : str, optional
        Encoding of levels >= 1, by default ``tile_format``.
    quality : int, optional
        Encoder quality for levels >= 1, by default ``mip_quality``.
    workers : int, optional
        Pool width within a level, by default ``process_concurrency``.
    url_prefix : str, optional
        Prefix of the ``path`` fields in the manifest, by default ``url_prefix``.
    """

    def __init__(self, tiles_dir, max_levels: int = None, tile_size: int = None,
                 x_offset: int = None, fmt: str = None, quality: int = None,
                 workers: int = None, url_prefix: str = None):
        self.tiles_dir = Path(tiles_dir)
        self.mip_root = self.tiles_dir / "mip"
        self.max_levels = max(0, int(config.get("mip_levels", max_levels)))
        self.tile_size = int(config.get("tile_size", tile_size))
        self.x_offset = int(config.get("x_offset", x_offset))
        self.fmt = config.get("tile_format", fmt)
        self.quality = int(config.get("mip_quality", quality))
        self.workers = max(1, int(config.get("process_concurrency", workers)))
        self.url_prefix = str(config.get("url_prefix", url_prefix)).rstrip("/")
        self.summary = PyramidSummary()

    def base_level(self) -> MipLevel:
        """Level 0 taken verbatim from ``tile-index.json``.

        Raises
        ------
        PyramidError
            If the index is missing, unreadable or lists no tiles.
        """
        try:
            index = load_tile_index(self.tiles_dir)
        except (OSError, json.JSONDecodeError) as err:
            raise PyramidError(f"Cannot read tile index in {self.tiles_dir}: {err}") from err

        base = index.get("tiles") or []
        if not base:
            raise PyramidError(f"No base tiles in {self.tiles_dir}")

        tiles = tuple(
            MipTile(int(t["x"]), int(t["z"]), t["filename"],
                    f"{self.url_prefix}/{t['filename']}", self.tiles_dir / t["filename"])
            for t in base
        )
        bounds = None
        if all(k in index for k in ("minX", "maxX", "minZ", "maxZ")):
            bounds = (index["minX"], index["maxX"], index["minZ"], index["maxZ"])
        return MipLevel(0, self.tile_size, tiles, bounds)

    def build_level(self, level: int, previous: MipLevel) -> MipLevel:
        """Render level ``level`` from the finished tiles of ``previous``."""
        world_size = self.tile_size * 2 ** level
        groups = group_children(previous.tiles, world_size, self.x_offset)
        level_dir = self.mip_root / f"l{level}"
        level_dir.mkdir(parents=True, exist_ok=True)
        ext = codec.extension(self.fmt)
        vprint(f"L{level} building: parents={len(groups)}, fromChildren={previous.count}")

        built = []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {}
            for group in groups:
                filename = f"{group.x}_{group.z}.{ext}"
                tile = MipTile(group.x, group.z, filename,
                               f"{self.url_prefix}/mip/l{level}/{filename}",
                               level_dir / filename)
                future = executor.submit(build_parent_tile, group, previous.world_size,
                                         self.tile_size, tile.source, self.fmt, self.quality)
                futures[future] = tile

            with tqdm(total=len(futures), desc=f"Building L{level}", unit="tile",
                      disable=not config.get("verbose")) as pbar:
                for future in as_completed(futures):
                    tile = futures[future]
                    try:
                        future.result()
                    except Exception as err:
                        self.summary.failed += 1
                        self.summary.failures.append((f"l{level}/{tile.filename}", str(err)))
                        logger.error("L%d tile %s failed: %s", level, tile.filename, err)
                    else:
                        self.summary.built += 1
                        built.append(tile)
                    pbar.update(1)

        built.sort(key=lambda t: (t.x, t.z))
        return MipLevel(level, world_size, tuple(built))

    def build(self) -> Manifest:
        """Build every level and write ``mip/manifest.json``.

        Any previous pyramid is removed first, so a failed run never leaves an
        older manifest behind.

        Raises
        ------
        PyramidError
            If the base level cannot be loaded.
        """
        started = time.perf_counter()
        if self.mip_root.exists():
            clear_output_dir(self.mip_root, self.tiles_dir)
        current = self.base_level()
        vprint(f"MIP start: baseTiles={current.count}, maxLevels={self.max_levels}, "
               f"tilesDir={self.tiles_dir}")

        levels = [current]
        for level in range(1, self.max_levels + 1):
            if current.count <= 1:
                break
            level_started = time.perf_counter()
            nxt = self.build_level(level, current)
            self.summary.level_elapsed[level] = time.perf_counter() - level_started
            if nxt.count == 0:
                logger.warning("L%d produced no tiles, stopping", level)
                break
            levels.append(nxt)
            logger.info("L%d done: tiles=%d, elapsed=%.1fs", level, nxt.count,
                        self.summary.level_elapsed[level])
            current = nxt

        manifest = Manifest(
            tile_size=self.tile_size,
            x_offset=self.x_offset,
            levels=levels,
            generated_at=datetime.now(timezone.utc).isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        )
        write_json_atomic(self.mip_root / MANIFEST_NAME, manifest.to_dict())
        self.summary.elapsed = time.perf_counter() - started
        for lvl in levels:
            vprint(f"L{lvl.level}: {lvl.count} tiles, worldSize={lvl.world_size}", level=1)
        return manifest


def generate_pyramid(tiles_dir, max_levels: int = None, **kwargs):
    """Build the pyramid for ``tiles_dir``; returns ``(manifest, summary)``."""
    builder = MipPyramidBuilder(tiles_dir, max_levels=max_levels, **kwargs)
    manifest = builder.build()
    return manifest, builder.summary
