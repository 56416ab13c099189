"""Exceptions raised by the map merger."""


class MapMergeError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigurationError(MapMergeError):
    """Missing inputs, unusable directories or invalid settings.

    Raised before any output is written; aborts the whole run.
    """
    pass


class TileDecodeError(MapMergeError):
    """A single source tile could not be decoded or has the wrong size."""
    pass


class PyramidError(MapMergeError):
    """The mip pyramid cannot be built from the available base tiles."""
    pass
