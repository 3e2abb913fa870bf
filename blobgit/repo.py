# repo.py -- Repositories kept in a blob store
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

"""Repository access.

A repository is nothing but a key prefix, ``repos/<org>/<name>/``. It exists
as soon as anything is stored below that prefix; there is no marker object.
"""

__all__ = [
    "REPOS_DIR",
    "BlobRepo",
    "InvalidRepositoryName",
    "repository_prefix",
]

from .blob_store import BlobStore
from .object_store import BlobPackStore
from .refs import DEFAULT_BRANCH, BlobRefsContainer, Ref

REPOS_DIR = "repos"


class InvalidRepositoryName(ValueError):
    """An organisation or repository name cannot be used as a key segment."""


def _check_segment(segment: str) -> None:
    if (
        not segment
        or segment in (".", "..")
        or "/" in segment
        or "\\" in segment
        or any(ord(c) < 0x20 for c in segment)
    ):
        raise InvalidRepositoryName(segment)


def repository_prefix(org: str, name: str) -> str:
    """Return the storage prefix of a repository.

    Raises:
      InvalidRepositoryName: if org or name is empty or not a single
        path segment
    """
    _check_segment(org)
    _check_segment(name)
    return f"{REPOS_DIR}/{org}/{name}/"


class BlobRepo:
    """A repository identified by organisation and name."""

    def __init__(self, store: BlobStore, org: str, name: str) -> None:
        """Open a repository; nothing is read or written yet.

        Raises:
          InvalidRepositoryName: if org or name is not a valid key segment
        """
        self.store = store
        self.org = org
        self.name = name
        self.prefix = repository_prefix(org, name)
        self.refs = BlobRefsContainer(store, self.prefix)
        self.packs = BlobPackStore(store, self.prefix)

    def __repr__(self) -> str:
        """Return string representation of BlobRepo."""
        return f"<{type(self).__name__} for {self.org!r}/{self.name!r}>"

    def exists(self) -> bool:
        """Check whether the repository holds any data."""
        return self.refs.repository_exists()

    def ensure_repository(self, default_branch: Ref = DEFAULT_BRANCH) -> None:
        """Create HEAD and the default branch unless they already exist.

        Idempotent, and safe to run from concurrent requests.
        """
        self.refs.initialize(default_branch)
