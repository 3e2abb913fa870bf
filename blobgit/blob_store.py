# blob_store.py -- Namespaced key/value blob storage
# Copyright (C) 2026 The blobgit authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# blobgit is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Blob stores that hold repository data.

A blob store maps slash-separated keys to immutable byte strings. Every
stored blob carries a generation: an integer version token that grows on
each write to the key. Writes can be made conditional on the generation
observed at read time, which is how ref updates avoid lost updates without
any locking across requests.

A generation of 0 stands for "no such key", so ``if_generation_match=0``
turns a write into a create-only write.
"""

__all__ = [
    "NO_GENERATION",
    "Blob",
    "BlobInfo",
    "BlobStore",
    "DiskBlobStore",
    "MemoryBlobStore",
    "PreconditionFailed",
]

import os
import posixpath
import threading
import time
from collections.abc import Iterator
from typing import Callable, NamedTuple, Optional

from . import log_utils
from .errors import StorageError
from .file import FileLocked, LockedFile, ensure_dir_exists

logger = log_utils.getLogger(__name__)

NO_GENERATION = 0


class BlobInfo(NamedTuple):
    """Metadata of a stored blob."""

    key: str
    generation: int
    uploaded: float
    size: int


class Blob(NamedTuple):
    """A stored blob and the generation it was read at."""

    key: str
    data: bytes
    generation: int
    uploaded: float


class PreconditionFailed(Exception):
    """A conditional write found a different generation than expected."""

    def __init__(self, key: str, expected: int, actual: Optional[int] = None) -> None:
        """Initialize PreconditionFailed.

        Args:
          key: Key that was being written
          expected: Generation the writer required
          actual: Generation actually found, if known
        """
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{key}: expected generation {expected}, found {actual}"
        )


class BlobStore:
    """Abstract key/value blob store."""

    def get(self, key: str) -> Optional[Blob]:
        """Read a blob.

        Returns: The blob, or None if the key does not exist
        Raises:
          StorageError: if the backend fails
        """
        raise NotImplementedError(self.get)

    def put(
        self, key: str, data: bytes, if_generation_match: Optional[int] = None
    ) -> BlobInfo:
        """Write a blob.

        Args:
          key: Key to write
          data: New contents
          if_generation_match: None to write unconditionally, 0 to require
            that the key does not exist yet, or the generation the key must
            currently have
        Returns: Metadata of the new blob
        Raises:
          PreconditionFailed: if the generation did not match; nothing was
            written
          StorageError: if the backend fails
        """
        raise NotImplementedError(self.put)

    def list_blobs(self, prefix: str) -> Iterator[BlobInfo]:
        """List blobs whose key starts with prefix, ordered by key."""
        raise NotImplementedError(self.list_blobs)

    def exists(self, prefix: str) -> bool:
        """Check whether any blob key starts with prefix."""
        for _ in self.list_blobs(prefix):
            return True
        return False


def _check_generation(
    key: str, if_generation_match: Optional[int], current: int
) -> None:
    if if_generation_match is not None and if_generation_match != current:
        logger.debug(
            "Refusing write to %s: generation %d, expected %d",
            key,
            current,
            if_generation_match,
        )
        raise PreconditionFailed(key, if_generation_match, current)


class MemoryBlobStore(BlobStore):
    """Blob store that keeps everything in a dict.

    Safe to share between threads: the generation check and the write
    happen under one lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize MemoryBlobStore.

        Args:
          clock: Function returning the upload timestamp for new blobs
        """
        self._blobs: dict[str, Blob] = {}
        self._lock = threading.Lock()
        self._last_generation = NO_GENERATION
        self._clock = clock

    def __repr__(self) -> str:
        """Return string representation of MemoryBlobStore."""
        return f"{type(self).__name__}()"

    def get(self, key: str) -> Optional[Blob]:
        """Read a blob."""
        with self._lock:
            return self._blobs.get(key)

    def put(
        self, key: str, data: bytes, if_generation_match: Optional[int] = None
    ) -> BlobInfo:
        """Write a blob, optionally conditional on its generation."""
        data = bytes(data)
        with self._lock:
            existing = self._blobs.get(key)
            current = existing.generation if existing else NO_GENERATION
            _check_generation(key, if_generation_match, current)
            self._last_generation += 1
            blob = Blob(key, data, self._last_generation, self._clock())
            self._blobs[key] = blob
        return BlobInfo(key, blob.generation, blob.uploaded, len(data))

    def list_blobs(self, prefix: str) -> Iterator[BlobInfo]:
        """List blobs whose key starts with prefix, ordered by key."""
        with self._lock:
            matches = [b for k, b in self._blobs.items() if k.startswith(prefix)]
        for blob in sorted(matches, key=lambda b: b.key):
            yield BlobInfo(blob.key, blob.generation, blob.uploaded, len(blob.data))


def _bump_mtime(path: str, current: int) -> int:
    """Set the mtime of path to a value above current and return it.

    Filesystems store mtimes with differing granularity, so the stored
    value is read back and the step widened until it has moved.
    """
    step = 1
    while True:
        candidate = max(time.time_ns(), current + step)
        os.utime(path, ns=(candidate, candidate))
        generation = os.stat(path).st_mtime_ns
        if generation > current:
            return generation
        step *= 1000


class DiskBlobStore(BlobStore):
    """Blob store that keeps one file per key below a directory.

    Writes take git's lock file (``<file>.lock``) for the duration of the
    generation check and the write, and the lock file is renamed over the
    target on success. The generation is the file's st_mtime_ns, forced to
    grow on every write.
    """

    def __init__(self, path: str) -> None:
        """Initialize DiskBlobStore.

        Args:
          path: Root directory; it must exist
        """
        self.path = path

    @classmethod
    def init(cls, path: str) -> "DiskBlobStore":
        """Create the root directory if needed and open a store on it."""
        ensure_dir_exists(path)
        return cls(path)

    def __repr__(self) -> str:
        """Return string representation of DiskBlobStore."""
        return f"{type(self).__name__}({self.path!r})"

    def _key_path(self, key: str) -> str:
        parts = key.split("/")
        if (
            not key
            or key.startswith("/")
            or any(p in ("", ".", "..") for p in parts)
            or key.endswith(".lock")
        ):
            raise ValueError(f"invalid blob key {key!r}")
        return os.path.join(self.path, *parts)

    def get(self, key: str) -> Optional[Blob]:
        """Read a blob."""
        path = self._key_path(key)
        try:
            with open(path, "rb") as f:
                st = os.fstat(f.fileno())
                data = f.read()
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None
        except OSError as exc:
            raise StorageError(key, exc) from exc
        return Blob(key, data, st.st_mtime_ns, st.st_mtime)

    def _current_generation(self, path: str) -> int:
        try:
            return os.stat(path).st_mtime_ns
        except FileNotFoundError:
            return NO_GENERATION

    def put(
        self, key: str, data: bytes, if_generation_match: Optional[int] = None
    ) -> BlobInfo:
        """Write a blob, optionally conditional on its generation."""
        path = self._key_path(key)
        try:
            ensure_dir_exists(os.path.dirname(path))
            try:
                f = LockedFile(path)
            except FileLocked as exc:
                if if_generation_match is not None:
                    raise PreconditionFailed(key, if_generation_match) from exc
                raise StorageError(key, "locked by another writer") from exc
            with f:
                current = self._current_generation(path)
                _check_generation(key, if_generation_match, current)
                f.write(data)
                f.flush()
                generation = _bump_mtime(f.lockfilename, current)
        except OSError as exc:
            raise StorageError(key, exc) from exc
        return BlobInfo(key, generation, generation / 1e9, len(data))

    def list_blobs(self, prefix: str) -> Iterator[BlobInfo]:
        """List blobs whose key starts with prefix, ordered by key."""
        top = posixpath.dirname(prefix)
        start = os.path.join(self.path, *top.split("/")) if top else self.path
        found = []
        for dirpath, dirnames, filenames in os.walk(start):
            rel = os.path.relpath(dirpath, self.path)
            base = "" if rel == os.curdir else rel.replace(os.sep, "/") + "/"
            for name in filenames:
                key = base + name
                if name.endswith(".lock") or not key.startswith(prefix):
                    continue
                try:
                    st = os.stat(os.path.join(dirpath, name))
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise StorageError(key, exc) from exc
                found.append(BlobInfo(key, st.st_mtime_ns, st.st_mtime, st.st_size))
        found.sort(key=lambda info: info.key)
        yield from found
