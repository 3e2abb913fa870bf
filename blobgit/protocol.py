# protocol.py -- Pkt-line framing and side-band multiplexing
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

"""Generic functions for talking the git smart server protocol.

Every function here is stateless and works on explicit byte buffers; the
only state lives in the per-request Protocol instance.
"""

__all__ = [
    "CAPABILITY_ATOMIC",
    "CAPABILITY_DELETE_REFS",
    "CAPABILITY_INCLUDE_TAG",
    "CAPABILITY_MULTI_ACK",
    "CAPABILITY_MULTI_ACK_DETAILED",
    "CAPABILITY_NO_PROGRESS",
    "CAPABILITY_OFS_DELTA",
    "CAPABILITY_QUIET",
    "CAPABILITY_REPORT_STATUS",
    "CAPABILITY_SHALLOW",
    "CAPABILITY_SIDE_BAND",
    "CAPABILITY_SIDE_BAND_64K",
    "CAPABILITY_THIN_PACK",
    "FLUSH_PKT",
    "MAX_PKT_PAYLOAD",
    "MAX_SIDEBAND_PAYLOAD",
    "SIDE_BAND_CHANNEL_DATA",
    "SIDE_BAND_CHANNEL_FATAL",
    "SIDE_BAND_CHANNEL_PROGRESS",
    "ZERO_SHA",
    "Protocol",
    "extract_capabilities",
    "format_capability_line",
    "parse_pkt_length",
    "pkt_line",
    "sideband_frames",
]

from collections.abc import Iterable, Iterator
from typing import Callable, Optional

from .errors import GitProtocolError, HangupException
from .objects import ZERO_SHA

FLUSH_PKT = b"0000"

_HEXDIGITS = frozenset(b"0123456789abcdefABCDEF")

# The length field is four hex digits and counts itself.
MAX_PKT_LEN = 0xFFFF
MAX_PKT_PAYLOAD = MAX_PKT_LEN - 4

# A pktline can be at most 65520 bytes on the wire when side-band-64k is in
# use; that leaves 65520 - 4 - 1 bytes for data after the channel byte.
LARGE_PACKET_MAX = 65520
MAX_SIDEBAND_PAYLOAD = LARGE_PACKET_MAX - 5

SIDE_BAND_CHANNEL_DATA = 1
SIDE_BAND_CHANNEL_PROGRESS = 2
SIDE_BAND_CHANNEL_FATAL = 3

CAPABILITY_ATOMIC = b"atomic"
CAPABILITY_DELETE_REFS = b"delete-refs"
CAPABILITY_INCLUDE_TAG = b"include-tag"
CAPABILITY_MULTI_ACK = b"multi_ack"
CAPABILITY_MULTI_ACK_DETAILED = b"multi_ack_detailed"
CAPABILITY_NO_PROGRESS = b"no-progress"
CAPABILITY_OFS_DELTA = b"ofs-delta"
CAPABILITY_QUIET = b"quiet"
CAPABILITY_REPORT_STATUS = b"report-status"
CAPABILITY_SHALLOW = b"shallow"
CAPABILITY_SIDE_BAND = b"side-band"
CAPABILITY_SIDE_BAND_64K = b"side-band-64k"
CAPABILITY_THIN_PACK = b"thin-pack"


def pkt_line(data: Optional[bytes]) -> bytes:
    """Wrap data in a pkt-line.

    Args:
      data: The data to wrap, as bytes, or None to produce a flush-pkt.
    Returns: The data prefixed with its length in pkt-line format; if data
        was None, returns the flush-pkt ('0000').
    Raises:
      ValueError: if data does not fit in a single pkt-line
    """
    if data is None:
        return FLUSH_PKT
    if len(data) > MAX_PKT_PAYLOAD:
        raise ValueError(
            f"pkt-line payload of {len(data)} bytes exceeds {MAX_PKT_PAYLOAD}"
        )
    return (f"{len(data) + 4:04x}").encode("ascii") + data


def parse_pkt_length(header: bytes) -> int:
    """Parse the 4-byte hex length field of a pkt-line.

    Returns: The declared total frame length; 0 for a flush-pkt.
    Raises:
      GitProtocolError: if the header is not four hex digits or declares a
        length that cannot hold its own header
    """
    if len(header) != 4 or not all(c in _HEXDIGITS for c in header):
        raise GitProtocolError(f"Invalid pkt-line length field {header!r}")
    size = int(header, 16)
    # 0001-0003 are protocol v2 delimiters, which v0/v1 never sends.
    if 0 < size < 4:
        raise GitProtocolError(f"Invalid pkt-line length field {header!r}")
    return size


def sideband_frames(
    channel: int, blob: bytes, max_size: int = MAX_SIDEBAND_PAYLOAD
) -> Iterator[bytes]:
    """Split data into side-band pkt-lines on a single channel.

    Args:
      channel: Side-band channel (1 data, 2 progress, 3 error)
      blob: Data to send; may be larger than one frame
      max_size: Maximum number of data bytes per frame
    Returns: Iterator over channel-tagged pkt-lines, without a trailing flush
    """
    if not 1 <= channel <= 255:
        raise ValueError(f"invalid side-band channel {channel}")
    prefix = bytes([channel])
    for offset in range(0, len(blob), max_size):
        yield pkt_line(prefix + blob[offset : offset + max_size])


def format_capability_line(capabilities: Iterable[bytes]) -> bytes:
    """Format a capabilities list for the wire protocol.

    Args:
      capabilities: List of capability strings
    Returns: Space-separated capabilities as bytes
    """
    return b" ".join(capabilities)


def extract_capabilities(text: bytes) -> tuple[bytes, list[bytes]]:
    """Extract a capabilities list from a string, if present.

    Args:
      text: String to extract from
    Returns: Tuple with text with capabilities removed and list of capabilities
    """
    if b"\0" not in text:
        return text, []
    text, capabilities = text.rstrip().split(b"\0", 1)
    return (text, capabilities.strip().split())


class Protocol:
    """Reads and writes pkt-lines over a pair of callables.

    ``read(n)`` may return fewer than n bytes, as a socket or a request
    body stream does; frames split across reads are reassembled before
    they are returned.
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        write: Callable[[bytes], object],
    ) -> None:
        """Initialize Protocol.

        Args:
          read: Function to read at most n bytes from the stream
          write: Function to write bytes to the stream
        """
        self.read = read
        self.write = write
        self._buffer = b""

    def peek(self, size: int) -> bytes:
        """Look at the next bytes of the stream without consuming them.

        Returns: Up to size bytes; fewer only if the stream ends first.
        """
        while len(self._buffer) < size:
            data = self.read(size - len(self._buffer))
            if not data:
                break
            self._buffer += data
        return self._buffer[:size]

    def _read_exactly(self, size: int) -> bytes:
        data = self.peek(size)
        self._buffer = self._buffer[len(data) :]
        if data and len(data) < size:
            raise HangupException(expected=size, got=len(data))
        return data

    def read_pkt_line(self) -> Optional[bytes]:
        """Read a pkt-line from the remote git process.

        Returns: The next payload from the stream, without its length
            prefix, or None for a flush-pkt ('0000').
        Raises:
          HangupException: if the stream ends before or inside a pkt-line
          GitProtocolError: if the length field is malformed
        """
        sizestr = self._read_exactly(4)
        if not sizestr:
            raise HangupException()
        size = parse_pkt_length(sizestr)
        if size == 0:
            return None
        payload = self._read_exactly(size - 4)
        if len(payload) != size - 4:
            raise HangupException(expected=size - 4, got=len(payload))
        return payload

    def read_remaining(self) -> bytes:
        """Read everything left in the stream, including peeked bytes."""
        chunks = [self._buffer]
        self._buffer = b""
        while True:
            data = self.read(65536)
            if not data:
                break
            chunks.append(data)
        return b"".join(chunks)

    def write_pkt_line(self, line: Optional[bytes]) -> None:
        """Send a pkt-line to the remote git process.

        Args:
          line: A bytestring containing the data to send, or None to send a
            flush-pkt.
        """
        self.write(pkt_line(line))

    def write_sideband(self, channel: int, blob: bytes) -> None:
        """Write multiplexed data to the sideband.

        Args:
          channel: An int specifying the channel to write to.
          blob: A blob of data (as a string) to send on this channel.
        """
        for frame in sideband_frames(channel, blob):
            self.write(frame)
