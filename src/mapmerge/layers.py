"""Source layers and their per-layer spatial tile indexes.

A layer is one directory of square tiles whose filenames embed the world
coordinate of the tile's upper-left corner, e.g. ``tile_x-512_z1024.png``.
Layers named ``map<N>`` are ordered by descending ``N``; compositing applies
them in that order, so ``map0`` ends up on top. Layers without a numeric
suffix come last, sorted by name.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import config
from .codec import IMAGE_SUFFIXES
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

COORD_RE = re.compile(r"x(-?\d+)_z(-?\d+)")

Bounds = Tuple[int, int, int, int]


@dataclass(frozen=True)
class TileRef:
    """Placement of one source tile in world coordinates (inclusive box)."""
    path: Path
    x0: int
    z0: int
    x1: int
    z1: int
    layer: str = ""

    @classmethod
    def from_origin(cls, path, x0: int, z0: int, tile_size: int, layer: str = ""):
        return cls(Path(path), int(x0), int(z0),
                   int(x0) + tile_size - 1, int(z0) + tile_size - 1, layer)

    def contains(self, x: int, z: int) -> bool:
        return self.x0 <= x <= self.x1 and self.z0 <= z <= self.z1

    def overlaps(self, min_x: int, min_z: int, max_x: int, max_z: int) -> bool:
        return not (self.x1 < min_x or self.x0 > max_x
                    or self.z1 < min_z or self.z0 > max_z)


def normalize_rect(x0, z0, x1, z1) -> Bounds:
    """Return ``(min_x, min_z, max_x, max_z)`` for any two opposite corners."""
    return min(x0, x1), min(z0, z1), max(x0, x1), max(z0, z1)


class TileIndex:
    """Flat spatial index over the tiles of one layer.

    Queries are linear scans with four interval comparisons per tile, which
    is fast enough for the few thousand tiles a layer holds.

    Parameters
    ----------
    tile_size : int
        Side length of every tile in world units (== pixels).
    layer : str, optional
        Layer name stored on each ``TileRef`` for diagnostics.
    """

    def __init__(self, tile_size: int = 1024, layer: str = ""):
        self.tile_size = tile_size
        self.layer = layer
        self.tiles: List[TileRef] = []

    def __len__(self):
        return len(self.tiles)

    def add_tile(self, x0, z0, path) -> bool:
        """Register a tile with upper-left corner ``(x0, z0)``.

        Malformed input is logged and ignored. Returns True when added.
        """
        try:
            ref = TileRef.from_origin(path, int(x0), int(z0), self.tile_size, self.layer)
        except (TypeError, ValueError) as err:
            logger.error("Failed to add tile %s to index: %s", path, err)
            return False
        self.tiles.append(ref)
        return True

    def find_by_coordinate(self, x: int, z: int) -> Optional[Path]:
        """Return the path of the first tile containing ``(x, z)``, or None."""
        for tile in self.tiles:
            if tile.contains(x, z):
                return tile.path
        return None

    def find_by_area(self, x0: int, z0: int, x1: int, z1: int) -> List[TileRef]:
        """Return all tiles overlapping the rectangle spanned by two corners."""
        min_x, min_z, max_x, max_z = normalize_rect(x0, z0, x1, z1)
        return [t for t in self.tiles if t.overlaps(min_x, min_z, max_x, max_z)]

    def bounds(self) -> Optional[Bounds]:
        """Aggregate ``(min_x, min_z, max_x, max_z)`` of all tiles, or None."""
        if not self.tiles:
            return None
        return (min(t.x0 for t in self.tiles),
                min(t.z0 for t in self.tiles),
                max(t.x1 for t in self.tiles),
                max(t.z1 for t in self.tiles))


@dataclass(frozen=True)
class Layer:
    """One source directory of tiles."""
    name: str
    path: Path
    sort_key: Tuple = field(compare=False, repr=False, default=())


def folder_sort_key(name: str, prefix: str = "map") -> Tuple:
    """Priority key for a layer folder name.

    Numbered folders (``map7``) sort first by descending number; everything
    else follows, ordered by lowercase name then exact name.
    """
    match = re.fullmatch(rf"{re.escape(prefix)}(\d+)", name, flags=re.IGNORECASE)
    if match:
        return (0, -int(match.group(1)), name.lower(), name)
    return (1, 0, name.lower(), name)


def parse_tile_coords(filename) -> Optional[Tuple[int, int]]:
    """Extract the ``(x, z)`` world coordinate from a tile filename stem.

    Returns None when the stem does not contain ``x<int>_z<int>``.
    """
    match = COORD_RE.search(Path(filename).stem)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def discover_layers(base_path, prefix: str = None) -> List[Layer]:
    """Find layer folders below ``base_path`` in priority order.

    Parameters
    ----------
    base_path : str or pathlib.Path
        Directory containing the ``map*`` layer folders.
    prefix : str, optional
        Folder name prefix, by default the ``layer_prefix`` setting.

    Returns
    -------
    list of Layer
        Layers sorted by ``folder_sort_key``; may be empty.

    Raises
    ------
    ConfigurationError
        If ``base_path`` does not exist or is not a directory.
    """
    prefix = config.get("layer_prefix", prefix)
    base_dir = Path(base_path).resolve()
    if not base_dir.exists():
        raise ConfigurationError(f"Source path {base_dir} does not exist")
    if not base_dir.is_dir():
        raise ConfigurationError(f"Source path {base_dir} is not a directory")

    layers = [
        Layer(entry.name, entry, folder_sort_key(entry.name, prefix))
        for entry in base_dir.iterdir()
        if entry.is_dir()
        and not entry.name.startswith(".")
        and entry.name.lower().startswith(prefix.lower())
    ]
    layers.sort(key=lambda layer: layer.sort_key)

    if layers:
        logger.info("Found %d layer folders (bottom to top): %s",
                    len(layers), [layer.name for layer in layers])
    else:
        logger.warning("No %s* folders found in %s", prefix, base_dir)
    return layers


def list_image_files(folder) -> List[Path]:
    """Image files directly inside ``folder``, sorted by filename."""
    folder = Path(folder)
    if not folder.is_dir():
        logger.error("%s is not a directory, skipping file scan", folder)
        return []
    files = [
        p for p in folder.iterdir()
        if p.is_file() and not p.name.startswith(".")
        and p.suffix.lower() in IMAGE_SUFFIXES
    ]
    return sorted(files, key=lambda p: p.name)


class LayerRegistry:
    """Loads layers and owns one ``TileIndex`` per usable layer.

    The registry holds no notion of "current" layer order; every query takes
    the ordered layer list explicitly.

    Parameters
    ----------
    tile_size : int, optional
        Tile side length, by default the ``tile_size`` setting.
    """

    def __init__(self, tile_size: int = None):
        self.tile_size = config.get("tile_size", tile_size)
        self.indexes: Dict[Path, TileIndex] = {}
        self.layers: List[Layer] = []

    def load(self, layers: Iterable[Layer]) -> List[Layer]:
        """Index each layer sequentially, in the given order.

        Layers with no valid tile are skipped with a warning. Returns the
        ordered list of loaded layers (also kept in ``self.layers``).
        """
        for layer in layers:
            self.load_layer(layer)
        return list(self.layers)

    def load_layer(self, layer: Layer) -> Optional[TileIndex]:
        files = list_image_files(layer.path)
        if not files:
            logger.warning("%s has no image files, skipping", layer.name)
            return None

        idx = TileIndex(self.tile_size, layer=layer.name)
        for path in files:
            coords = parse_tile_coords(path.name)
            if coords is None:
                logger.warning("Skipping %s: no x/z coordinate in filename "
                               "(expected ..._x<int>_z<int>)", path.name)
                continue
            idx.add_tile(coords[0], coords[1], path)

        if len(idx) == 0:
            logger.warning("%s has no usable tiles, skipping", layer.name)
            return None

        self.indexes[layer.path] = idx
        self.layers.append(layer)
        logger.info("%s: loaded %d tiles", layer.name, len(idx))
        return idx

    def _index(self, layer: Layer) -> Optional[TileIndex]:
        idx = self.indexes.get(layer.path)
        if idx is None:
            logger.warning("%s has no loaded index", layer.name)
        return idx

    def query_coord(self, x: int, z: int, layers: Iterable[Layer]) -> Dict[Layer, Optional[Path]]:
        """Owning tile path per layer for world point ``(x, z)``."""
        results = {}
        for layer in layers:
            idx = self._index(layer)
            results[layer] = idx.find_by_coordinate(x, z) if idx else None
        return results

    def query_area(self, x0: int, z0: int, x1: int, z1: int,
                   layers: Iterable[Layer]) -> Dict[Layer, List[TileRef]]:
        """Overlapping tiles per layer for a rectangle; keys keep layer order."""
        rect = normalize_rect(x0, z0, x1, z1)
        results = {}
        for layer in layers:
            idx = self._index(layer)
            results[layer] = idx.find_by_area(*rect) if idx else []
        return results

    def query_bounds(self, layers: Iterable[Layer]) -> Dict[Layer, Optional[Bounds]]:
        """Aggregate bounding box per layer."""
        results = {}
        for layer in layers:
            idx = self._index(layer)
            results[layer] = idx.bounds() if idx else None
        return results
