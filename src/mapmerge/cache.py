"""Bounded LRU cache of decoded source tiles.

Compositing neighbouring chunks touches the same source tiles repeatedly, and
several worker threads may ask for the same tile at once. Each key maps to a
``concurrent.futures.Future``: the first caller decodes and resolves it, later
callers wait on the same future instead of decoding again.

Thread Safety:
    A single ``threading.Lock`` protects the entry table and recency order.
    Decoding happens outside the lock, and an entry is only evicted once
    its decode has finished.
"""
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from pathlib import Path

import numpy as np

from . import codec, config

logger = logging.getLogger(__name__)


class DecodedTileCache:
    """LRU cache mapping ``(expected_size, path)`` to decoded RGB arrays.

    Parameters
    ----------
    max_size : int, optional
        Maximum number of resolved entries, by default the ``cache_size``
        setting (256). Entries still being decoded are never evicted.
    loader : callable, optional
        ``loader(path, expected_size) -> ndarray``; defaults to
        ``codec.read_rgb``.
    """

    def __init__(self, max_size: int = None, loader=None):
        self.max_size = max(1, int(config.get("cache_size", max_size)))
        self._loader = loader or codec.read_rgb
        self._entries: OrderedDict = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._decodes = 0
        self._evictions = 0

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, path):
        with self._lock:
            return any(key[1] == Path(path) for key in self._entries)

    def get(self, path, expected_size: int) -> np.ndarray:
        """Return the decoded RGB array for ``path``.

        Raises
        ------
        TileDecodeError
            If decoding fails or the size is wrong. The failed entry is
            dropped so a later call retries.
        """
        key = (int(expected_size), Path(path))
        with self._lock:
            future = self._entries.get(key)
            if future is not None:
                self._entries.move_to_end(key)
                self._hits += 1
                owner = False
            else:
                future = Future()
                self._entries[key] = future
                self._misses += 1
                owner = True
                self._evict()

        if owner:
            self._resolve(key, future)
        return future.result()

    def _evict(self):
        """Drop the least recently used resolved entries beyond ``max_size``.

        In-flight entries are never evicted, so the table may briefly exceed
        ``max_size`` while decodes are running. Caller holds the lock.
        """
        if len(self._entries) <= self.max_size:
            return
        for key in list(self._entries):
            if len(self._entries) <= self.max_size:
                break
            if self._entries[key].done():
                del self._entries[key]
                self._evictions += 1

    def _resolve(self, key, future: Future):
        path = key[1]
        try:
            with self._lock:
                self._decodes += 1
            data = self._loader(path, key[0])
        except Exception as err:
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            logger.debug("Decode failed for %s: %s", path, err)
            future.set_exception(err)
        else:
            future.set_result(data)
            with self._lock:
                self._evict()

    def clear(self):
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        """Counters for the run summary."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "decodes": self._decodes,
                "evictions": self._evictions,
            }
