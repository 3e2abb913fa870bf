# server.py -- Implementation of the server side git protocols
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

"""Git smart network protocol server implementation.

For more detailed implementation on the network protocol, see the
Documentation/technical directory in the cgit distribution, and in particular:

* Documentation/technical/protocol-capabilities.txt
* Documentation/technical/pack-protocol.txt

Packs are handled as opaque blobs. Fetches are answered with the most
recently pushed pack, without looking at the client's wants and haves, and
pushes are checked only by comparing the client's old id with the stored
one; no ancestry is computed.

Every request is stateless. Ref updates are conditional on the record
generation seen when the ref was read, so concurrent pushes to the same ref
cannot overwrite each other; the loser is told ``non-fast-forward``.
"""

__all__ = [
    "DEFAULT_HANDLERS",
    "Backend",
    "BlobBackend",
    "Command",
    "CommandParseError",
    "Handler",
    "ReceivePackHandler",
    "UploadPackHandler",
    "find_pack_start",
    "parse_command",
]

from collections.abc import Iterable
from typing import NamedTuple, Optional, Union

from . import log_utils
from .blob_store import BlobStore
from .errors import GitProtocolError, NotGitRepository, RefFormatError, StorageError
from .objects import ZERO_SHA, ObjectID, valid_hexsha
from .protocol import (
    CAPABILITY_ATOMIC,
    CAPABILITY_DELETE_REFS,
    CAPABILITY_INCLUDE_TAG,
    CAPABILITY_MULTI_ACK,
    CAPABILITY_MULTI_ACK_DETAILED,
    CAPABILITY_NO_PROGRESS,
    CAPABILITY_OFS_DELTA,
    CAPABILITY_QUIET,
    CAPABILITY_REPORT_STATUS,
    CAPABILITY_SHALLOW,
    CAPABILITY_SIDE_BAND,
    CAPABILITY_SIDE_BAND_64K,
    CAPABILITY_THIN_PACK,
    SIDE_BAND_CHANNEL_DATA,
    Protocol,
    extract_capabilities,
    format_capability_line,
    pkt_line,
)
from .refs import Ref, check_ref_format
from .repo import BlobRepo

logger = log_utils.getLogger(__name__)

PACK_MAGIC = b"PACK"


class Command(NamedTuple):
    """A single ref update requested by a push."""

    old_sha: ObjectID
    new_sha: ObjectID
    ref: Ref


class CommandParseError(NamedTuple):
    """A push command line that could not be tokenized."""

    line: bytes
    reason: str


def parse_command(line: bytes) -> Union[Command, CommandParseError]:
    """Tokenize a push command line.

    The line has the form ``<old-id> SP <new-id> SP <refname>``, optionally
    followed by a newline. Capabilities must already have been split off.

    Returns: A Command, or a CommandParseError describing what is wrong
    """
    if line.endswith(b"\n"):
        line = line[:-1]
    fields = line.split(b" ")
    if len(fields) != 3:
        return CommandParseError(line, f"expected 3 fields, got {len(fields)}")
    old_sha, new_sha, ref = fields
    if not valid_hexsha(old_sha):
        return CommandParseError(line, "invalid old object id")
    if not valid_hexsha(new_sha):
        return CommandParseError(line, "invalid new object id")
    if not ref:
        return CommandParseError(line, "missing ref name")
    return Command(old_sha, new_sha, ref)


def find_pack_start(data: bytes) -> int:
    """Find where the packfile starts in a push request.

    The pack is located by its ``PACK`` signature rather than by the end of
    the command list, which tolerates clients that pad or misdelimit the
    command section.

    Returns: Offset of the signature, or -1 if there is none
    """
    return data.find(PACK_MAGIC)


class Backend:
    """A backend for the Git smart server implementation."""

    def open_repository(self, org: str, name: str) -> BlobRepo:
        """Open the repository of an organisation.

        Args:
          org: Organisation name
          name: Repository name
        Returns: Instance of BlobRepo; it may not exist yet
        Raises:
          InvalidRepositoryName: if org or name is malformed
        """
        raise NotImplementedError(self.open_repository)


class BlobBackend(Backend):
    """Backend that keeps all repositories in one blob store."""

    def __init__(self, store: BlobStore) -> None:
        """Initialize BlobBackend.

        Args:
          store: Blob store shared by all repositories
        """
        self.store = store

    def __repr__(self) -> str:
        """Return string representation of BlobBackend."""
        return f"{type(self).__name__}({self.store!r})"

    def open_repository(self, org: str, name: str) -> BlobRepo:
        """Open a repository in the blob store."""
        logger.debug("Opening repository %s/%s", org, name)
        return BlobRepo(self.store, org, name)


class Handler:
    """Smart protocol command handler base class.

    A handler serves one request. With ``advertise_refs`` set it writes the
    ``info/refs`` advertisement, otherwise it handles the service request
    read from ``proto``.
    """

    service: bytes

    def __init__(
        self,
        backend: Backend,
        args: tuple[str, str],
        proto: Protocol,
        advertise_refs: bool = False,
    ) -> None:
        """Initialize Handler.

        Args:
          backend: Backend to open the repository from
          args: Organisation and repository name
          proto: Protocol to read the request from and write the reply to
          advertise_refs: Whether to write the ref advertisement only
        """
        self.backend = backend
        self.proto = proto
        self.advertise_refs = advertise_refs
        self.repo = backend.open_repository(*args)
        self._client_capabilities: Optional[set[bytes]] = None

    @classmethod
    def capabilities(cls) -> Iterable[bytes]:
        """Return the capabilities this service advertises."""
        raise NotImplementedError(cls.capabilities)

    @classmethod
    def capability_line(cls) -> bytes:
        """Return the capabilities as sent after the first ref."""
        return format_capability_line(cls.capabilities())

    def set_client_capabilities(self, caps: Iterable[bytes]) -> None:
        """Record the capabilities the client asked for.

        Capabilities that were not advertised, such as ``agent=``, are
        accepted and ignored.
        """
        caps = set(caps)
        unknown = caps.difference(self.capabilities())
        if unknown:
            logger.debug("Ignoring client capabilities %s", sorted(unknown))
        self._client_capabilities = caps
        logger.info("Client capabilities: %s", sorted(caps))

    def has_capability(self, cap: bytes) -> bool:
        """Check whether the client asked for a capability.

        Raises:
          GitProtocolError: if the client has not sent its capabilities yet
        """
        if self._client_capabilities is None:
            raise GitProtocolError(
                f"Server attempted to access capability {cap!r} before asking client"
            )
        return cap in self._client_capabilities

    def prepare_repository(self) -> None:
        """Make sure the repository can be served.

        Raises:
          NotGitRepository: if the repository does not exist
        """
        if not self.repo.exists():
            raise NotGitRepository(
                f"No git repository was found at {self.repo.org}/{self.repo.name}"
            )

    def write_advertisement(self) -> None:
        """Write the service header and the refs with our capabilities."""
        self.proto.write_pkt_line(b"# service=" + self.service + b"\n")
        self.proto.write_pkt_line(None)
        refs = self.repo.refs.as_dict()
        if refs:
            for i, (name, sha) in enumerate(refs.items()):
                if i == 0:
                    line = sha + b" " + name + b"\0" + self.capability_line()
                else:
                    line = sha + b" " + name
                self.proto.write_pkt_line(line + b"\n")
        else:
            # Clients still need the capabilities of an empty repository.
            self.proto.write_pkt_line(
                ZERO_SHA + b" capabilities^{}\0" + self.capability_line() + b"\n"
            )
        self.proto.write_pkt_line(None)

    def handle(self) -> None:
        """Handle the request."""
        self.prepare_repository()
        if self.advertise_refs:
            self.write_advertisement()
            return
        self.handle_request()

    def handle_request(self) -> None:
        """Handle the service request that follows the advertisement."""
        raise NotImplementedError(self.handle_request)


class UploadPackHandler(Handler):
    """Protocol handler for uploading a pack to the client."""

    service = b"git-upload-pack"

    @classmethod
    def capabilities(cls) -> tuple[bytes, ...]:
        """Return the capabilities this service advertises."""
        return (
            CAPABILITY_MULTI_ACK,
            CAPABILITY_MULTI_ACK_DETAILED,
            CAPABILITY_THIN_PACK,
            CAPABILITY_SIDE_BAND,
            CAPABILITY_SIDE_BAND_64K,
            CAPABILITY_SHALLOW,
            CAPABILITY_NO_PROGRESS,
            CAPABILITY_INCLUDE_TAG,
            CAPABILITY_OFS_DELTA,
        )

    def handle_request(self) -> None:
        """Send the latest pack on side-band channel 1.

        The client's want and have lines are not read: the reply is the
        same whatever it asked for.
        """
        data = self.repo.packs.retrieve_latest()
        if data is None:
            logger.info("No packs in %r, sending empty result", self.repo)
        else:
            logger.info("Sending pack of %d bytes from %r", len(data), self.repo)
            self.proto.write_sideband(SIDE_BAND_CHANNEL_DATA, data)
        self.proto.write_pkt_line(None)


class ReceivePackHandler(Handler):
    """Protocol handler for downloading a pack from the client."""

    service = b"git-receive-pack"

    @classmethod
    def capabilities(cls) -> tuple[bytes, ...]:
        """Return the capabilities this service advertises."""
        return (
            CAPABILITY_REPORT_STATUS,
            CAPABILITY_DELETE_REFS,
            CAPABILITY_SIDE_BAND_64K,
            CAPABILITY_QUIET,
            CAPABILITY_ATOMIC,
            CAPABILITY_OFS_DELTA,
        )

    def prepare_repository(self) -> None:
        """Create the repository on first contact; pushes never 404."""
        if self.advertise_refs:
            self.repo.ensure_repository()

    def _read_commands(self) -> list[Command]:
        commands: list[Command] = []
        # Some clients start the pack right after the last command, without
        # a flush-pkt in between.
        while self.proto.peek(len(PACK_MAGIC)) != PACK_MAGIC:
            line = self.proto.read_pkt_line()
            if line is None:
                break
            if not commands:
                line, caps = extract_capabilities(line)
                self.set_client_capabilities(caps)
            parsed = parse_command(line)
            if isinstance(parsed, CommandParseError):
                raise GitProtocolError(
                    f"Invalid push command {parsed.line!r}: {parsed.reason}"
                )
            commands.append(parsed)
        return commands

    def _read_pack(self) -> bytes:
        rest = self.proto.read_remaining()
        start = find_pack_start(rest)
        if start < 0:
            if rest:
                logger.warning(
                    "Ignoring %d bytes without pack signature after commands",
                    len(rest),
                )
            return b""
        return rest[start:]

    def _check_command(self, command: Command) -> tuple[Optional[str], int]:
        """Check a command against the stored ref.

        Returns: Tuple with the rejection reason (None if acceptable) and the
            generation the ref was read at
        """
        if not command.ref.startswith(b"refs/") or not check_ref_format(command.ref):
            return "bad ref", 0
        current = self.repo.refs.read_ref(command.ref)
        if command.old_sha != ZERO_SHA and command.old_sha != current.sha:
            logger.debug(
                "Ref %r is at %r, client expected %r",
                command.ref,
                current.sha,
                command.old_sha,
            )
            return "non-fast-forward", current.generation
        return None, current.generation

    def _update_ref(self, command: Command, generation: int) -> str:
        try:
            updated = self.repo.refs.set_if_generation(
                command.ref, generation, command.new_sha
            )
        except RefFormatError:
            return "bad ref"
        except StorageError as exc:
            logger.warning("Failed to write %r: %s", command.ref, exc)
            return "failed to write"
        if not updated:
            # Someone else updated the ref after we read it.
            return "non-fast-forward"
        return "ok"

    def _apply_command(self, command: Command) -> str:
        reason, generation = self._check_command(command)
        if reason is not None:
            return reason
        return self._update_ref(command, generation)

    def _apply_atomic(self, commands: list[Command]) -> list[str]:
        checked = [self._check_command(command) for command in commands]
        if any(reason is not None for reason, _ in checked):
            return [reason or "atomic transaction failed" for reason, _ in checked]
        return [
            self._update_ref(command, generation)
            for command, (_, generation) in zip(commands, checked)
        ]

    def _apply_commands(self, commands: list[Command]) -> list[tuple[bytes, str]]:
        if self.has_capability(CAPABILITY_ATOMIC):
            results = self._apply_atomic(commands)
        else:
            # Later commands see the updates made by earlier ones.
            results = [self._apply_command(command) for command in commands]
        status: list[tuple[bytes, str]] = [(b"unpack", "ok")]
        for command, reason in zip(commands, results):
            if reason == "ok":
                logger.debug(
                    "Updated %r from %r to %r",
                    command.ref,
                    command.old_sha,
                    command.new_sha,
                )
            else:
                logger.warning("Rejected update of %r: %s", command.ref, reason)
            status.append((command.ref, reason))
        return status

    def _report_status(self, status: list[tuple[bytes, str]]) -> None:
        # git demultiplexes the report after side-band-64k is negotiated, and
        # its report parser expects its own flush-pkt inside channel 1.
        lines: list[Optional[bytes]] = []
        for name, msg in status:
            if name == b"unpack":
                lines.append(b"unpack " + msg.encode("ascii") + b"\n")
            elif msg == "ok":
                lines.append(b"ok " + name + b"\n")
            else:
                lines.append(b"ng " + name + b" " + msg.encode("ascii") + b"\n")
        lines.append(None)
        for line in lines:
            self.proto.write_sideband(SIDE_BAND_CHANNEL_DATA, pkt_line(line))
        self.proto.write_pkt_line(None)

    def handle_request(self) -> None:
        """Apply the pushed ref updates and report their status."""
        commands = self._read_commands()
        if not commands:
            # The client has nothing to update.
            self.proto.write_pkt_line(None)
            return
        pack_data = self._read_pack()
        # Store the pack before any ref can point into it.
        if pack_data:
            self.repo.packs.add_pack_data(pack_data)
        status = self._apply_commands(commands)
        logger.info(
            "Push to %r: %d of %d refs updated",
            self.repo,
            sum(1 for _, msg in status[1:] if msg == "ok"),
            len(commands),
        )
        self._report_status(status)


# Default handler classes for git services.
DEFAULT_HANDLERS: dict[bytes, type[Handler]] = {
    b"git-upload-pack": UploadPackHandler,
    b"git-receive-pack": ReceivePackHandler,
}
