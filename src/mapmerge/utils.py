"""Small helpers shared by the pipeline stages."""
import json
import os
import pathlib
import shutil
import tempfile

from . import config
from .errors import ConfigurationError


def vprint(text, level=0):
    """Print ``text`` when the ``verbose`` setting is enabled.

    Parameters
    ----------
    text : str
        Message to print.
    level : int, optional
        Indentation level, two spaces per level, by default 0.
    """
    if config.get("verbose"):
        print("  " * level + str(text))


def format_bytes(num_bytes):
    """Format a byte count with a binary unit suffix, e.g. ``1.5MB``."""
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    digits = 0 if value >= 10 or idx == 0 else 1
    return f"{value:.{digits}f}{units[idx]}"


def clear_output_dir(output_dir, source_dir=None):
    """Empty ``output_dir`` so no stale tiles survive into a new run.

    The directory is created when missing.

    Parameters
    ----------
    output_dir : str or pathlib.Path
        Directory to clear.
    source_dir : str or pathlib.Path, optional
        Input directory that must never be cleared.

    Returns
    -------
    pathlib.Path
        The resolved, now empty, output directory.

    Raises
    ------
    ConfigurationError
        If ``output_dir`` is a filesystem root, equals or contains
        ``source_dir``, or is an existing non-directory.
    """
    resolved = pathlib.Path(output_dir).resolve()
    if resolved == pathlib.Path(resolved.anchor):
        raise ConfigurationError(f"Refusing to clear filesystem root: {resolved}")
    if source_dir is not None:
        source = pathlib.Path(source_dir).resolve()
        if resolved == source:
            raise ConfigurationError(f"Output dir must not equal source dir: {resolved}")
        if resolved in source.parents:
            raise ConfigurationError(f"Output dir {resolved} contains source dir {source}")
    if resolved.exists() and not resolved.is_dir():
        raise ConfigurationError(f"Output path is not a directory: {resolved}")

    if not resolved.exists():
        resolved.mkdir(parents=True)
        return resolved

    for child in resolved.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    return resolved


def write_json_atomic(path, data):
    """Write ``data`` as indented JSON to ``path`` via a temp file and rename.

    Readers never observe a half-written file; on failure the temp file is
    removed and the previous content (if any) is left in place.

    Parameters
    ----------
    path : str or pathlib.Path
        Destination file.
    data : object
        JSON-serialisable content.
    """
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp",
                                    dir=path.parent)
    try:
        with os.fdopen(fd, "w") as fh:
            json.dump(data, fh, indent=2)
            fh.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
