# gcs.py -- Blob store backed by Google Cloud Storage
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


"""Storage of repositories on GCS.

GCS object generations are used directly as blob generations, so
conditional writes map onto ``if_generation_match`` preconditions.
"""

import posixpath
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Optional

from google.api_core import exceptions as gcs_exceptions

from .. import log_utils
from ..blob_store import Blob, BlobInfo, BlobStore, PreconditionFailed
from ..errors import StorageError

if TYPE_CHECKING:
    from google.cloud.storage import Bucket

logger = log_utils.getLogger(__name__)

# Reads racing with writers to the same object give up after this many tries.
MAX_READ_ATTEMPTS = 5


def _timestamp(gcs_blob: Any) -> float:
    updated = gcs_blob.updated
    if updated is None:
        return 0.0
    return updated.timestamp()


class GcsBlobStore(BlobStore):
    """Blob store implementation using Google Cloud Storage."""

    def __init__(self, bucket: "Bucket", subpath: str = "") -> None:
        """Initialize GCS blob store.

        Args:
            bucket: GCS bucket instance
            subpath: Optional subpath within the bucket
        """
        self.bucket = bucket
        self.subpath = subpath

    def __repr__(self) -> str:
        """Return string representation of GcsBlobStore."""
        return f"{type(self).__name__}({self.bucket!r}, subpath={self.subpath!r})"

    def _name(self, key: str) -> str:
        if self.subpath:
            return posixpath.join(self.subpath, key)
        return key

    def _key(self, name: str) -> str:
        if self.subpath:
            return name[len(self.subpath.rstrip("/")) + 1 :]
        return name

    def get(self, key: str) -> Optional[Blob]:
        """Read a blob.

        The contents are downloaded at the generation the metadata was read
        at. If the object is replaced in between, the read starts over so
        the returned data and generation always belong together.
        """
        name = self._name(key)
        for _ in range(MAX_READ_ATTEMPTS):
            try:
                gcs_blob = self.bucket.get_blob(name)
                if gcs_blob is None:
                    return None
                data = gcs_blob.download_as_bytes(
                    if_generation_match=gcs_blob.generation
                )
            except gcs_exceptions.NotFound:
                return None
            except gcs_exceptions.PreconditionFailed:
                logger.debug(
                    "%s replaced while reading generation %d, reading again",
                    key,
                    gcs_blob.generation,
                )
                continue
            except gcs_exceptions.GoogleAPIError as exc:
                raise StorageError(key, exc) from exc
            return Blob(key, data, gcs_blob.generation, _timestamp(gcs_blob))
        raise StorageError(key, f"changed during {MAX_READ_ATTEMPTS} read attempts")

    def put(
        self, key: str, data: bytes, if_generation_match: Optional[int] = None
    ) -> BlobInfo:
        """Write a blob, optionally conditional on its generation."""
        gcs_blob = self.bucket.blob(self._name(key))
        try:
            gcs_blob.upload_from_string(
                data,
                content_type="application/octet-stream",
                if_generation_match=if_generation_match,
            )
        except gcs_exceptions.PreconditionFailed as exc:
            logger.debug("Conditional upload of %s rejected: %s", key, exc)
            raise PreconditionFailed(key, if_generation_match) from exc
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(key, exc) from exc
        return BlobInfo(key, gcs_blob.generation, _timestamp(gcs_blob), len(data))

    def list_blobs(self, prefix: str) -> Iterator[BlobInfo]:
        """List blobs whose key starts with prefix, ordered by key."""
        try:
            found = [
                BlobInfo(
                    self._key(b.name), b.generation, _timestamp(b), b.size or 0
                )
                for b in self.bucket.list_blobs(prefix=self._name(prefix))
            ]
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(prefix, exc) from exc
        found.sort(key=lambda info: info.key)
        yield from found

    def exists(self, prefix: str) -> bool:
        """Check whether any blob key starts with prefix."""
        try:
            for _ in self.bucket.list_blobs(prefix=self._name(prefix), max_results=1):
                return True
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(prefix, exc) from exc
        return False
