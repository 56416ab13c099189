"""Raw-pixel image codec built on Pillow.

All pipeline stages exchange pixels as ``numpy.ndarray`` of shape
``(height, width, 3)`` and dtype ``uint8`` in RGB order. Pure black
``(0, 0, 0)`` is the transparency sentinel, so alpha is flattened onto a
black background when decoding.
"""
from pathlib import Path

import numpy as np
from PIL import Image

from .errors import TileDecodeError

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}
FORMAT_EXTENSIONS = {"png": "png", "webp": "webp", "jpeg": "jpg"}
SENTINEL = (0, 0, 0)


def _flatten(img: Image.Image) -> Image.Image:
    """Return an RGB image with any alpha composited onto black."""
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info)
    if not has_alpha:
        return img.convert("RGB")
    rgba = img.convert("RGBA")
    flat = Image.new("RGB", rgba.size, SENTINEL)
    flat.paste(rgba, mask=rgba.getchannel("A"))
    return flat


def read_rgb(path, expected_size: int) -> np.ndarray:
    """Decode an image file into a read-only RGB array.

    Parameters
    ----------
    path : str or pathlib.Path
        Image file to decode.
    expected_size : int
        Required width and height in pixels.

    Returns
    -------
    numpy.ndarray
        ``(expected_size, expected_size, 3)`` uint8 array.

    Raises
    ------
    TileDecodeError
        If the file cannot be decoded or its dimensions differ from
        ``expected_size``. Images are never resized to fit.
    """
    try:
        with Image.open(path) as img:
            width, height = img.size
            if width != expected_size or height != expected_size:
                raise TileDecodeError(
                    f"Wrong image size: {path}, expected {expected_size}x{expected_size}, "
                    f"got {width}x{height}")
            rgb = _flatten(img)
            data = np.asarray(rgb, dtype=np.uint8)
    except TileDecodeError:
        raise
    except (OSError, ValueError) as err:
        raise TileDecodeError(f"Cannot decode {path}: {err}") from err

    if data.ndim != 3 or data.shape[2] != 3:
        raise TileDecodeError(f"Unsupported pixel layout in {path}: {data.shape}")
    data = np.ascontiguousarray(data)
    data.flags.writeable = False
    return data


def blank(size: int) -> np.ndarray:
    """Return a writable all-sentinel ``size x size`` RGB canvas."""
    return np.zeros((size, size, 3), dtype=np.uint8)


def downsample(rgb: np.ndarray, size: int) -> np.ndarray:
    """Resize an RGB array to ``size x size`` with Lanczos filtering."""
    img = Image.fromarray(np.asarray(rgb, dtype=np.uint8))
    img = img.resize((size, size), Image.LANCZOS)
    return np.asarray(img, dtype=np.uint8)


def extension(fmt: str) -> str:
    """File extension (without dot) for an output format name."""
    try:
        return FORMAT_EXTENSIONS[fmt.lower()]
    except KeyError:
        raise ValueError(f"Unsupported tile format: {fmt}") from None


def write_rgb(rgb: np.ndarray, path, fmt: str = "png", quality: int = 90) -> int:
    """Encode an RGB array to ``path``.

    Parameters
    ----------
    rgb : numpy.ndarray
        ``(height, width, 3)`` uint8 array.
    path : str or pathlib.Path
        Output file.
    fmt : str, optional
        One of ``png``, ``webp``, ``jpeg``; by default ``png`` (lossless).
    quality : int, optional
        Encoder quality for lossy formats, clamped to 1..100.

    Returns
    -------
    int
        Size of the written file in bytes.
    """
    fmt = fmt.lower()
    extension(fmt)
    quality = max(1, min(100, int(quality)))
    img = Image.fromarray(np.asarray(rgb, dtype=np.uint8))
    if fmt == "webp":
        img.save(path, format="WEBP", quality=quality, method=4)
    elif fmt == "jpeg":
        img.save(path, format="JPEG", quality=quality)
    else:
        img.save(path, format="PNG")
    return Path(path).stat().st_size


def convert(src, dst, fmt: str = "webp", quality: int = 90) -> int:
    """Re-encode an image file into another format without resizing.

    Returns the size of the written file in bytes.
    """
    try:
        with Image.open(src) as img:
            rgb = np.asarray(_flatten(img), dtype=np.uint8)
    except (OSError, ValueError) as err:
        raise TileDecodeError(f"Cannot decode {src}: {err}") from err
    return write_rgb(rgb, dst, fmt=fmt, quality=quality)
