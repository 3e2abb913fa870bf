# refs.py -- Refs kept as records in a blob store
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


"""Ref handling.

Each ref is one blob under the repository prefix, holding the object id and
a trailing newline. HEAD holds ``ref: <target>`` instead. A missing or empty
record reads as the zero id.

Updates are compare-and-swap operations on the blob generation, so two
pushes racing on the same ref cannot both win.
"""

__all__ = [
    "DEFAULT_BRANCH",
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "SYMREF",
    "BlobRefsContainer",
    "RefValue",
    "check_ref_format",
    "parse_symref_value",
]

from typing import NamedTuple, Optional

from . import log_utils
from .blob_store import NO_GENERATION, BlobStore, PreconditionFailed
from .errors import RefFormatError, StorageError
from .objects import ZERO_SHA, ObjectID, valid_hexsha

logger = log_utils.getLogger(__name__)

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
DEFAULT_BRANCH = b"refs/heads/main"
BAD_REF_CHARS = set(b"\177 ~^:?*[")


class RefValue(NamedTuple):
    """A ref value together with the generation it was read at."""

    sha: ObjectID
    generation: int


def parse_symref_value(contents: bytes) -> bytes:
    """Parse a symref value.

    Args:
      contents: Contents to parse
    Returns: Destination
    """
    if contents.startswith(SYMREF):
        return contents[len(SYMREF) :].rstrip(b"\r\n")
    raise ValueError(contents)


def check_ref_format(refname: Ref) -> bool:
    """Check if a refname is correctly formatted.

    Implements all the same rules as git-check-ref-format[1].

    [1]
    http://www.kernel.org/pub/software/scm/git/docs/git-check-ref-format.html

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    # These could be combined into one big expression, but are listed
    # separately to parallel [1].
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for i, c in enumerate(refname):
        if ord(refname[i : i + 1]) < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1] in b"/.":
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname:
        return False
    if b"\\" in refname:
        return False
    if b"//" in refname:
        return False
    try:
        refname.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


class BlobRefsContainer:
    """Refs of one repository, stored as blobs below a key prefix."""

    def __init__(self, store: BlobStore, prefix: str) -> None:
        """Initialize BlobRefsContainer.

        Args:
          store: Blob store holding the records
          prefix: Repository namespace, ending in a slash
        """
        self.store = store
        self.prefix = prefix

    def __repr__(self) -> str:
        """Return string representation of BlobRefsContainer."""
        return f"{type(self).__name__}({self.store!r}, {self.prefix!r})"

    def _key(self, name: Ref) -> str:
        return self.prefix + name.decode("utf-8")

    def _check_refname(self, name: Ref) -> None:
        """Ensure a refname is valid and writable.

        Raises:
          RefFormatError: if name is not HEAD and not a valid ref name
        """
        if name == HEADREF:
            return
        if not name.startswith(b"refs/") or not check_ref_format(name):
            raise RefFormatError(name)

    def repository_exists(self) -> bool:
        """Check whether anything at all is stored for this repository."""
        return self.store.exists(self.prefix)

    def read_loose_ref(self, name: Ref) -> Optional[bytes]:
        """Read the raw record of a ref, stripped of surrounding whitespace.

        Returns: The record contents, or None if there is no record
        """
        blob = self.store.get(self._key(name))
        if blob is None:
            return None
        return blob.data.strip()

    def read_ref(self, name: Ref) -> RefValue:
        """Read a ref together with the generation it was read at.

        A missing or empty record reads as ZERO_SHA; a missing record has
        generation 0.

        Raises:
          StorageError: if the record holds something other than an object id
        """
        key = self._key(name)
        blob = self.store.get(key)
        if blob is None:
            return RefValue(ZERO_SHA, NO_GENERATION)
        sha = blob.data.strip()
        if not sha:
            return RefValue(ZERO_SHA, blob.generation)
        if not valid_hexsha(sha):
            raise StorageError(key, f"invalid ref contents {sha!r}")
        return RefValue(sha, blob.generation)

    def __getitem__(self, name: Ref) -> ObjectID:
        """Get the object id for a ref, or ZERO_SHA if it is unset."""
        return self.read_ref(name).sha

    def __setitem__(self, name: Ref, ref: ObjectID) -> None:
        """Set a ref unconditionally.

        Note: This overwrites whatever is stored. To update only if the ref
            has not changed, use set_if_generation().
        """
        if not valid_hexsha(ref):
            raise ValueError(f"{ref!r} must be a valid sha (40 chars)")
        self._check_refname(name)
        self.store.put(self._key(name), ref + b"\n")

    def as_dict(self, base: bytes = LOCAL_BRANCH_PREFIX) -> dict[Ref, ObjectID]:
        """Return the refs below base, ordered by name.

        Empty records and records holding the zero id (unborn or deleted
        refs) are left out.
        """
        ret: dict[Ref, ObjectID] = {}
        prefix = self._key(base)
        for info in self.store.list_blobs(prefix):
            name = info.key[len(self.prefix) :].encode("utf-8")
            value = self.read_ref(name)
            if value.sha == ZERO_SHA:
                continue
            ret[name] = value.sha
        return dict(sorted(ret.items()))

    def set_if_generation(self, name: Ref, generation: int, new_ref: ObjectID) -> bool:
        """Set a ref only if its record is still at the given generation.

        Args:
          name: The refname to set.
          generation: Generation returned by read_ref; 0 if the ref must not
            exist yet.
          new_ref: The new sha the refname will refer to.
        Returns: True if the set was successful, False if the ref changed
            in the meantime.
        """
        if not valid_hexsha(new_ref):
            raise ValueError(f"{new_ref!r} must be a valid sha (40 chars)")
        self._check_refname(name)
        try:
            self.store.put(
                self._key(name), new_ref + b"\n", if_generation_match=generation
            )
        except PreconditionFailed:
            logger.debug("Ref %r changed since generation %d", name, generation)
            return False
        return True

    def add_if_new(self, name: Ref, ref: bytes) -> bool:
        """Add a new ref record only if none exists yet.

        Args:
          name: Ref name
          ref: Record value, either an object id or a ``ref: `` symref
        Returns: True if the record was created
        """
        if not (valid_hexsha(ref) or ref.startswith(SYMREF)):
            raise ValueError(f"{ref!r} must be a valid sha (40 chars) or a symref")
        self._check_refname(name)
        try:
            self.store.put(
                self._key(name), ref + b"\n", if_generation_match=NO_GENERATION
            )
        except PreconditionFailed:
            return False
        return True

    def get_symrefs(self) -> dict[Ref, Ref]:
        """Get a dict with all symrefs in this container.

        Returns: Dictionary mapping source ref to target ref
        """
        contents = self.read_loose_ref(HEADREF)
        if contents is None or not contents.startswith(SYMREF):
            return {}
        return {HEADREF: parse_symref_value(contents)}

    def initialize(self, default_branch: Ref = DEFAULT_BRANCH) -> None:
        """Create HEAD and an unborn default branch if they are missing.

        Existing records are left alone, so calling this on an initialized
        repository, or from two requests at once, is harmless.
        """
        created_head = self.add_if_new(HEADREF, SYMREF + default_branch)
        created_branch = self.add_if_new(default_branch, ZERO_SHA)
        if created_head or created_branch:
            logger.info("Initialized repository at %s", self.prefix)
