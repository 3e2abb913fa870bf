# errors.py -- errors for blobgit
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

"""blobgit-related exception classes."""

# Please do not add more errors here, but instead add them close to the code
# that raises the error.

from typing import Optional


class NotGitRepository(Exception):
    """Indicates that no Git repository was found."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        """Initialize a NotGitRepository exception.

        Args:
            *args: Error message and additional positional arguments.
            **kwargs: Additional keyword arguments.
        """
        Exception.__init__(self, *args, **kwargs)


class GitProtocolError(Exception):
    """Git protocol exception."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        """Initialize a GitProtocolError.

        Args:
            *args: Error message and additional positional arguments.
            **kwargs: Additional keyword arguments.
        """
        Exception.__init__(self, *args, **kwargs)

    def __eq__(self, other: object) -> bool:
        """Check equality between GitProtocolError instances.

        Args:
            other: The object to compare with.

        Returns:
            True if both are GitProtocolError instances with same args, False otherwise.
        """
        return isinstance(other, GitProtocolError) and self.args == other.args

    __hash__ = Exception.__hash__


class HangupException(GitProtocolError):
    """The client closed the stream in the middle of a pkt-line."""

    def __init__(self, expected: Optional[int] = None, got: Optional[int] = None) -> None:
        """Initialize a HangupException.

        Args:
            expected: Number of bytes that were still expected, if known.
            got: Number of bytes that actually arrived, if known.
        """
        if expected is not None:
            super().__init__(
                f"Stream ended after {got or 0} of {expected} expected bytes."
            )
        else:
            super().__init__("The client unexpectedly closed the connection.")
        self.expected = expected
        self.got = got

    def __eq__(self, other: object) -> bool:
        """Check equality between HangupException instances."""
        return (
            isinstance(other, HangupException)
            and self.expected == other.expected
            and self.got == other.got
        )

    __hash__ = Exception.__hash__


class StorageError(Exception):
    """The backing blob store failed to read or write an object.

    Writes that completed before the failure stay in place; nothing is
    rolled back.
    """

    def __init__(self, key: str, *args: object) -> None:
        """Initialize a StorageError.

        Args:
            key: Storage key that was being accessed.
            *args: Additional description, usually the underlying error.
        """
        self.key = key
        super().__init__(key, *args)


class RefFormatError(Exception):
    """Indicates an invalid ref name."""
