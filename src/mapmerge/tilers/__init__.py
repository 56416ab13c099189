"""Tile producing stages of the pipeline.

This package contains the chunk compositor that flattens prioritised
layers, the flat tile set converter and the mip pyramid builder.
"""

from .compositor import merge_chunk, merge_layers, chunk_filename
from .flat import convert_tiles, plan_conversion, write_tile_index
from .pyramid import MipPyramidBuilder, generate_pyramid
