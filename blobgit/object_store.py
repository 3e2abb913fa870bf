# object_store.py -- Pack storage in a blob store
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


"""Storage of uploaded packfiles.

Packs are opaque: they are neither parsed nor indexed. Each upload is kept
as its own immutable blob under a fresh random name, and reads always pick
the most recently uploaded one. Packs are never combined, so a history
spread over several incremental pushes is only partly served to clones.
"""

__all__ = [
    "PACKDIR",
    "BlobPackStore",
    "PackInfo",
]

import posixpath
import secrets
from collections.abc import Iterator
from typing import NamedTuple, Optional

from . import log_utils
from .blob_store import NO_GENERATION, BlobStore
from .errors import StorageError

logger = log_utils.getLogger(__name__)

PACKDIR = "objects/pack"
PACK_PREFIX = "pack-"
PACK_SUFFIX = ".pack"


class PackInfo(NamedTuple):
    """A stored pack."""

    id: str
    uploaded: float
    generation: int
    size: int


def _sort_key(info: PackInfo) -> tuple[float, int, str]:
    return (info.uploaded, info.generation, info.id)


class BlobPackStore:
    """Packs of one repository, stored as blobs below a key prefix."""

    def __init__(self, store: BlobStore, prefix: str) -> None:
        """Initialize BlobPackStore.

        Args:
          store: Blob store holding the packs
          prefix: Repository namespace, ending in a slash
        """
        self.store = store
        self.prefix = prefix

    def __repr__(self) -> str:
        """Return string representation of BlobPackStore."""
        return f"{type(self).__name__}({self.store!r}, {self.prefix!r})"

    @property
    def pack_dir(self) -> str:
        """Key prefix under which this repository's packs live."""
        return self.prefix + PACKDIR + "/"

    def _pack_key(self, pack_id: str) -> str:
        return f"{self.pack_dir}{PACK_PREFIX}{pack_id}{PACK_SUFFIX}"

    def iter_packs(self) -> Iterator[PackInfo]:
        """Iterate over the stored packs, ordered by key."""
        for info in self.store.list_blobs(self.pack_dir):
            basename = posixpath.basename(info.key)
            if not (basename.startswith(PACK_PREFIX) and basename.endswith(PACK_SUFFIX)):
                continue
            pack_id = basename[len(PACK_PREFIX) : -len(PACK_SUFFIX)]
            yield PackInfo(pack_id, info.uploaded, info.generation, info.size)

    def add_pack_data(self, data: bytes) -> PackInfo:
        """Store a pack under a fresh identifier.

        Returns: The identifier and upload timestamp of the new pack
        """
        pack_id = secrets.token_hex(20)
        info = self.store.put(
            self._pack_key(pack_id), data, if_generation_match=NO_GENERATION
        )
        logger.info("Stored pack %s (%d bytes) in %s", pack_id, len(data), self.prefix)
        return PackInfo(pack_id, info.uploaded, info.generation, info.size)

    def latest_pack(self) -> Optional[PackInfo]:
        """Return the most recently uploaded pack, or None if there is none.

        Packs are ordered by upload time; ties go to the higher generation
        and then the higher identifier.
        """
        return max(self.iter_packs(), key=_sort_key, default=None)

    def get_pack_data(self, pack_id: str) -> bytes:
        """Read the contents of a pack.

        Raises:
          KeyError: if there is no such pack
        """
        blob = self.store.get(self._pack_key(pack_id))
        if blob is None:
            raise KeyError(pack_id)
        return blob.data

    def retrieve_latest(self) -> Optional[bytes]:
        """Return the contents of the most recently uploaded pack, if any."""
        latest = self.latest_pack()
        if latest is None:
            return None
        try:
            return self.get_pack_data(latest.id)
        except KeyError as exc:
            # Packs are never deleted, so a listed pack must be readable.
            raise StorageError(self._pack_key(latest.id), "listed pack vanished") from exc

