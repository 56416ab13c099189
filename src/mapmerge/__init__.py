"""Merge layered map tiles into a flat tile set and a mip pyramid.

Typical use::

    import mapmerge
    summary = mapmerge.run(base_path="map", tiles_dir="public/tiles")
"""
from . import config
from .errors import ConfigurationError, MapMergeError, PyramidError, TileDecodeError
from .pipeline import merge_map, process_map, run_pipeline

__version__ = "0.3.0"


def run(**kwargs):
    """Run the whole pipeline with settings defaults; see ``run_pipeline``."""
    return run_pipeline(**kwargs)


def pyramid(tiles_dir=None, max_levels=None):
    """Rebuild only the mip pyramid of an existing flat tile set."""
    from .tilers.pyramid import generate_pyramid
    return generate_pyramid(config.get("tiles_dir", tiles_dir), max_levels=max_levels)
