"""Configuration management for the map merger.

This module handles loading and managing configuration settings using
Dynaconf. Settings are loaded from multiple locations in order of
increasing priority:

1. Global settings (/etc/mapmerge/)
2. User settings (~/.config/mapmerge/)
3. Current directory settings (./)
4. Environment variable specified file (MAPMERGE_SETTINGS_FILE_FOR_DYNACONF)

Every key has a default in ``DEFAULTS`` so the pipeline runs without any
settings file. Environment variables prefixed with ``MAPMERGE_`` override
file values (e.g. ``MAPMERGE_TILE_SIZE=512``).

Attributes
----------
USER_DIR : pathlib.Path
    Path to user configuration directory.
GLOB_DIR : pathlib.Path
    Path to global configuration directory.
CURR_DIR : pathlib.Path
    Path to current working directory.
settings : Dynaconf
    The Dynaconf settings object with loaded configuration.
"""
import os
import pathlib

from dynaconf import Dynaconf

USER_DIR = pathlib.Path("~/.config/mapmerge").expanduser()
GLOB_DIR = pathlib.Path("/etc/mapmerge/")
CURR_DIR = pathlib.Path("./").absolute()
settings_files = [
    GLOB_DIR / "settings.toml",
    GLOB_DIR / ".secrets.toml",
    USER_DIR / "settings.toml",
    USER_DIR / ".secrets.toml",
    CURR_DIR / "settings.toml",
    CURR_DIR / ".secrets.toml"
    ]
extra_file = os.getenv("MAPMERGE_SETTINGS_FILE_FOR_DYNACONF")
if extra_file:
    settings_files.append(pathlib.Path(extra_file).absolute())

DEFAULTS = {
    "base_path": "map",
    "merged_dir": "map/merged_map",
    "tiles_dir": "public/tiles",
    "layer_prefix": "map",
    "prefix": "chunk",
    "tile_size": 1024,
    "x_offset": 512,
    "base_x": -512,
    "base_z": 0,
    "save_empty": False,
    "limit": 0,
    "merge_workers": 4,
    "process_concurrency": 8,
    "mip_levels": 8,
    "quality": 90,
    "mip_quality": 82,
    "tile_format": "webp",
    "cache_size": 256,
    "url_prefix": "/tiles",
    "verbose": False,
}

settings = Dynaconf(
    merge_enabled = True,
    envvar_prefix="MAPMERGE",
    settings_files=settings_files,
    environments=True,
    load_dotenv=True,
)


def get(key, value=None):
    """Return ``value`` if given, else the configured setting for ``key``.

    Parameters
    ----------
    key : str
        Setting name, one of the keys in ``DEFAULTS``.
    value : object, optional
        Explicit value from the caller. Takes precedence when not None.

    Returns
    -------
    object
        The resolved value.
    """
    if value is not None:
        return value
    return settings.get(key, DEFAULTS.get(key))


def change_env(new_env):
    """Change the active Dynaconf environment.

    Parameters
    ----------
    new_env : str
        The environment name to switch to (e.g., 'development', 'production').
    """
    settings.setenv(new_env)
    settings.reload()
