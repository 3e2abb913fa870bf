# file.py -- Safe access to files on disk
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

"""Lock-file protected writes, as git does them."""

__all__ = [
    "FileLocked",
    "LockedFile",
    "ensure_dir_exists",
]

import os
import warnings
from types import TracebackType
from typing import Optional


def ensure_dir_exists(dirname: str) -> None:
    """Ensure a directory exists, creating if necessary."""
    try:
        os.makedirs(dirname)
    except FileExistsError:
        pass


class FileLocked(Exception):
    """File is already locked."""

    def __init__(self, filename: str, lockfilename: str) -> None:
        """Initialize FileLocked.

        Args:
          filename: Name of the file that is locked
          lockfilename: Name of the lock file
        """
        self.filename = filename
        self.lockfilename = lockfilename
        super().__init__(filename, lockfilename)


class LockedFile:
    """File that follows the git locking protocol for writes.

    All writes to a file foo go to foo.lock in the same directory. The lock
    file is created exclusively, so only one writer can hold it, and it is
    renamed over the original file on close.

    Note: You *must* call close() or abort() for the lock to be released.
        Typically this will happen in a with block.
    """

    def __init__(self, filename: str, mask: int = 0o644, fsync: bool = True) -> None:
        """Take the lock for filename.

        Raises:
          FileLocked: if another writer holds the lock
        """
        self.filename = os.fspath(filename)
        self.lockfilename = self.filename + ".lock"
        self._fsync = fsync
        try:
            fd = os.open(
                self.lockfilename,
                os.O_RDWR | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0),
                mask,
            )
        except FileExistsError as exc:
            raise FileLocked(self.filename, self.lockfilename) from exc
        self._file = os.fdopen(fd, "wb")
        self._closed = False

    @property
    def closed(self) -> bool:
        """Return whether the lock has been released."""
        return self._closed

    def write(self, data: bytes) -> int:
        """Write data to the lock file."""
        return self._file.write(data)

    def flush(self) -> None:
        """Flush buffered data to the lock file."""
        self._file.flush()

    def abort(self) -> None:
        """Close and discard the lockfile without overwriting the target.

        If the file is already closed, this is a no-op.
        """
        if self._closed:
            return
        self._file.close()
        try:
            os.remove(self.lockfilename)
        except FileNotFoundError:
            # The file may have been removed already, which is ok.
            pass
        self._closed = True

    def close(self) -> None:
        """Close this file, saving the lockfile over the original.

        Raises:
          OSError: if the original file could not be overwritten. The lock
            file is removed in that case.
        """
        if self._closed:
            return
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())
        self._file.close()
        try:
            os.replace(self.lockfilename, self.filename)
        finally:
            self._closed = True
            try:
                os.remove(self.lockfilename)
            except FileNotFoundError:
                pass

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            warnings.warn(f"unclosed {self!r}", ResourceWarning, stacklevel=2)
            self.abort()

    def __enter__(self) -> "LockedFile":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()
