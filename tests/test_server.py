# test_server.py -- Tests for the git server
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

"""Tests for the smart protocol server."""

import threading
from io import BytesIO

from blobgit.blob_store import MemoryBlobStore
from blobgit.errors import GitProtocolError, HangupException, NotGitRepository, StorageError
from blobgit.objects import ZERO_SHA
from blobgit.protocol import FLUSH_PKT, MAX_SIDEBAND_PAYLOAD, Protocol, pkt_line
from blobgit.repo import InvalidRepositoryName
from blobgit.server import (
    DEFAULT_HANDLERS,
    BlobBackend,
    Command,
    CommandParseError,
    ReceivePackHandler,
    UploadPackHandler,
    find_pack_start,
    parse_command,
)

from . import TestCase

ONE = b"1" * 40
TWO = b"2" * 40
THREE = b"3" * 40

RECEIVE_CAPS = b"report-status delete-refs side-band-64k quiet atomic ofs-delta"
UPLOAD_CAPS = (
    b"multi_ack multi_ack_detailed thin-pack side-band side-band-64k shallow "
    b"no-progress include-tag ofs-delta"
)


def read_pkts(data):
    """Split a response into its pkt-lines, with None for flush-pkts."""
    pkts = []
    proto = Protocol(BytesIO(data).read, None)
    while True:
        try:
            pkts.append(proto.read_pkt_line())
        except HangupException:
            return pkts


def read_report(data):
    """Decode a side-band wrapped report-status response."""
    pkts = read_pkts(data)
    if pkts[-1] is not None:
        raise AssertionError(f"response not flush terminated: {data!r}")
    inner = b""
    for pkt in pkts[:-1]:
        if pkt[:1] != b"\x01":
            raise AssertionError(f"unexpected side-band channel in {pkt!r}")
        inner += pkt[1:]
    return read_pkts(inner)


def push_request(commands, caps=b"report-status side-band-64k", pack=b""):
    lines = []
    for i, (old, new, ref) in enumerate(commands):
        line = old + b" " + new + b" " + ref
        if i == 0:
            line += b"\0" + caps
        lines.append(pkt_line(line + b"\n"))
    return b"".join(lines) + FLUSH_PKT + pack


class ParseCommandTests(TestCase):
    def test_valid(self):
        self.assertEqual(
            Command(ZERO_SHA, ONE, b"refs/heads/main"),
            parse_command(ZERO_SHA + b" " + ONE + b" refs/heads/main\n"),
        )

    def test_no_newline(self):
        self.assertEqual(
            Command(ONE, TWO, b"refs/heads/main"),
            parse_command(ONE + b" " + TWO + b" refs/heads/main"),
        )

    def test_field_count(self):
        result = parse_command(ONE + b" refs/heads/main")
        self.assertIsInstance(result, CommandParseError)
        self.assertEqual("expected 3 fields, got 2", result.reason)
        self.assertIsInstance(
            parse_command(ONE + b" " + TWO + b" refs/heads/a b"), CommandParseError
        )

    def test_invalid_ids(self):
        self.assertEqual(
            "invalid old object id",
            parse_command(b"x" * 40 + b" " + TWO + b" refs/heads/main").reason,
        )
        self.assertEqual(
            "invalid new object id",
            parse_command(ONE + b" " + TWO.upper() + b" refs/heads/main").reason,
        )

    def test_missing_ref(self):
        self.assertEqual(
            "missing ref name", parse_command(ONE + b" " + TWO + b" ").reason
        )

    def test_double_space(self):
        self.assertIsInstance(
            parse_command(ONE + b"  " + TWO + b" refs/heads/main"), CommandParseError
        )


class FindPackStartTests(TestCase):
    def test_found(self):
        self.assertEqual(4, find_pack_start(b"0000PACK\x00\x00\x00\x02"))

    def test_missing(self):
        self.assertEqual(-1, find_pack_start(b"0000"))
        self.assertEqual(-1, find_pack_start(b""))


class ServerTestCase(TestCase):
    def setUp(self):
        super().setUp()
        self.store = MemoryBlobStore()
        self.backend = BlobBackend(self.store)
        self.repo = self.backend.open_repository("org", "repo")

    def run_handler(self, handler_cls, body=b"", advertise_refs=False, name="repo"):
        out = BytesIO()
        proto = Protocol(BytesIO(body).read, out.write)
        handler = handler_cls(
            self.backend, ("org", name), proto, advertise_refs=advertise_refs
        )
        handler.handle()
        return out.getvalue()


class AdvertiseRefsTests(ServerTestCase):
    def test_default_handlers(self):
        self.assertEqual(
            {b"git-upload-pack": UploadPackHandler, b"git-receive-pack": ReceivePackHandler},
            DEFAULT_HANDLERS,
        )

    def test_capabilities(self):
        self.assertEqual(RECEIVE_CAPS, ReceivePackHandler.capability_line())
        self.assertEqual(UPLOAD_CAPS, UploadPackHandler.capability_line())

    def test_ordering(self):
        self.repo.refs[b"refs/heads/main"] = b"a" * 40
        self.repo.refs[b"refs/heads/dev"] = b"b" * 40
        self.assertEqual(
            pkt_line(b"# service=git-upload-pack\n")
            + FLUSH_PKT
            + pkt_line(b"b" * 40 + b" refs/heads/dev\0" + UPLOAD_CAPS + b"\n")
            + pkt_line(b"a" * 40 + b" refs/heads/main\n")
            + FLUSH_PKT,
            self.run_handler(UploadPackHandler, advertise_refs=True),
        )

    def test_upload_pack_missing_repository(self):
        self.assertRaises(
            NotGitRepository, self.run_handler, UploadPackHandler, advertise_refs=True
        )
        self.assertFalse(self.repo.exists())

    def test_receive_pack_creates_repository(self):
        self.assertEqual(
            pkt_line(b"# service=git-receive-pack\n")
            + FLUSH_PKT
            + pkt_line(ZERO_SHA + b" capabilities^{}\0" + RECEIVE_CAPS + b"\n")
            + FLUSH_PKT,
            self.run_handler(ReceivePackHandler, advertise_refs=True),
        )
        self.assertTrue(self.repo.exists())
        self.assertEqual({b"HEAD": b"refs/heads/main"}, self.repo.refs.get_symrefs())

    def test_receive_pack_existing_repository(self):
        self.repo.refs[b"refs/heads/main"] = ONE
        out = self.run_handler(ReceivePackHandler, advertise_refs=True)
        self.assertEqual(
            [
                b"# service=git-receive-pack\n",
                None,
                ONE + b" refs/heads/main\0" + RECEIVE_CAPS + b"\n",
                None,
            ],
            read_pkts(out),
        )
        self.assertEqual(ONE, self.repo.refs[b"refs/heads/main"])

    def test_upload_pack_empty_repository(self):
        self.repo.ensure_repository()
        pkts = read_pkts(self.run_handler(UploadPackHandler, advertise_refs=True))
        self.assertEqual(
            ZERO_SHA + b" capabilities^{}\0" + UPLOAD_CAPS + b"\n", pkts[2]
        )

    def test_invalid_repository_name(self):
        self.assertRaises(
            InvalidRepositoryName,
            self.run_handler,
            UploadPackHandler,
            advertise_refs=True,
            name="..",
        )


class UploadPackHandlerTests(ServerTestCase):
    def test_no_packs(self):
        self.repo.ensure_repository()
        self.assertEqual(FLUSH_PKT, self.run_handler(UploadPackHandler, b"0000"))

    def test_missing_repository(self):
        self.assertRaises(NotGitRepository, self.run_handler, UploadPackHandler, b"0000")

    def test_latest_pack(self):
        self.repo.packs.add_pack_data(b"PACK-old")
        self.repo.packs.add_pack_data(b"PACK-new")
        self.assertEqual(
            pkt_line(b"\x01PACK-new") + FLUSH_PKT,
            self.run_handler(UploadPackHandler, b"0000"),
        )

    def test_large_pack(self):
        data = b"PACK" + b"x" * (2 * MAX_SIDEBAND_PAYLOAD)
        self.repo.packs.add_pack_data(data)
        pkts = read_pkts(self.run_handler(UploadPackHandler, b"0000"))
        self.assertEqual(4, len(pkts))
        self.assertIsNone(pkts[-1])
        self.assertTrue(all(pkt[:1] == b"\x01" for pkt in pkts[:-1]))
        self.assertEqual(MAX_SIDEBAND_PAYLOAD + 1, len(pkts[0]))
        self.assertEqual(data, b"".join(pkt[1:] for pkt in pkts[:-1]))


class ReceivePackHandlerTests(ServerTestCase):
    def push(self, commands, **kwargs):
        return read_report(
            self.run_handler(ReceivePackHandler, push_request(commands, **kwargs))
        )

    def test_create(self):
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/main")], pack=b"PACK\x00\x00\x00\x02"
        )
        self.assertEqual([b"unpack ok\n", b"ok refs/heads/main\n", None], report)
        self.assertEqual(ONE, self.repo.refs[b"refs/heads/main"])
        self.assertEqual(b"PACK\x00\x00\x00\x02", self.repo.packs.retrieve_latest())

    def test_create_in_initialized_repository(self):
        self.repo.ensure_repository()
        report = self.push([(ZERO_SHA, ONE, b"refs/heads/main")])
        self.assertEqual(b"ok refs/heads/main\n", report[1])
        self.assertEqual(ONE, self.repo.refs[b"refs/heads/main"])

    def test_report_framing(self):
        out = self.run_handler(
            ReceivePackHandler, push_request([(ZERO_SHA, ONE, b"refs/heads/main")])
        )
        self.assertEqual(
            pkt_line(b"\x01" + pkt_line(b"unpack ok\n"))
            + pkt_line(b"\x01" + pkt_line(b"ok refs/heads/main\n"))
            + pkt_line(b"\x01" + FLUSH_PKT)
            + FLUSH_PKT,
            out,
        )

    def test_update(self):
        self.repo.refs[b"refs/heads/main"] = ONE
        report = self.push([(ONE, TWO, b"refs/heads/main")])
        self.assertEqual(b"ok refs/heads/main\n", report[1])
        self.assertEqual(TWO, self.repo.refs[b"refs/heads/main"])

    def test_non_fast_forward(self):
        self.repo.refs[b"refs/heads/main"] = TWO
        report = self.push([(ONE, THREE, b"refs/heads/main")])
        self.assertEqual(
            [b"unpack ok\n", b"ng refs/heads/main non-fast-forward\n", None], report
        )
        self.assertEqual(TWO, self.repo.refs[b"refs/heads/main"])

    def test_delete(self):
        self.repo.refs[b"refs/heads/dev"] = ONE
        report = self.push([(ONE, ZERO_SHA, b"refs/heads/dev")])
        self.assertEqual(b"ok refs/heads/dev\n", report[1])
        self.assertEqual({}, self.repo.refs.as_dict())

    def test_delete_missing(self):
        self.repo.ensure_repository()
        report = self.push([(ONE, ZERO_SHA, b"refs/heads/dev")])
        self.assertEqual(b"ng refs/heads/dev non-fast-forward\n", report[1])

    def test_bad_ref(self):
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/a..b"), (ZERO_SHA, ONE, b"HEAD")]
        )
        self.assertEqual(
            [
                b"unpack ok\n",
                b"ng refs/heads/a..b bad ref\n",
                b"ng HEAD bad ref\n",
                None,
            ],
            report,
        )
        self.assertFalse(self.repo.exists())

    def test_partial_success(self):
        self.repo.refs[b"refs/heads/main"] = TWO
        report = self.push(
            [
                (ZERO_SHA, ONE, b"refs/heads/dev"),
                (ONE, THREE, b"refs/heads/main"),
                (ZERO_SHA, THREE, b"refs/heads/topic"),
            ]
        )
        self.assertEqual(
            [
                b"unpack ok\n",
                b"ok refs/heads/dev\n",
                b"ng refs/heads/main non-fast-forward\n",
                b"ok refs/heads/topic\n",
                None,
            ],
            report,
        )
        self.assertEqual(
            {
                b"refs/heads/dev": ONE,
                b"refs/heads/main": TWO,
                b"refs/heads/topic": THREE,
            },
            self.repo.refs.as_dict(),
        )

    def test_atomic(self):
        self.repo.refs[b"refs/heads/main"] = TWO
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/dev"), (ONE, THREE, b"refs/heads/main")],
            caps=b"report-status side-band-64k atomic",
        )
        self.assertEqual(
            [
                b"unpack ok\n",
                b"ng refs/heads/dev atomic transaction failed\n",
                b"ng refs/heads/main non-fast-forward\n",
                None,
            ],
            report,
        )
        self.assertEqual({b"refs/heads/main": TWO}, self.repo.refs.as_dict())

    def test_flush_only(self):
        self.assertEqual(FLUSH_PKT, self.run_handler(ReceivePackHandler, FLUSH_PKT))
        self.assertFalse(self.repo.exists())

    def test_no_pack_signature(self):
        report = self.push([(ZERO_SHA, ONE, b"refs/heads/main")], pack=b"junk")
        self.assertEqual(b"ok refs/heads/main\n", report[1])
        self.assertIsNone(self.repo.packs.retrieve_latest())

    def test_pack_after_padding(self):
        self.push([(ZERO_SHA, ONE, b"refs/heads/main")], pack=b"\n\nPACKdata")
        self.assertEqual(b"PACKdata", self.repo.packs.retrieve_latest())

    def test_malformed_command(self):
        body = pkt_line(b"not a command\0report-status\n") + FLUSH_PKT
        self.assertRaises(GitProtocolError, self.run_handler, ReceivePackHandler, body)
        self.assertFalse(self.repo.exists())

    def test_truncated_request(self):
        body = pkt_line(ZERO_SHA + b" " + ONE + b" refs/heads/main\n")[:30]
        self.assertRaises(HangupException, self.run_handler, ReceivePackHandler, body)
        self.assertFalse(self.repo.exists())

    def test_missing_flush(self):
        body = pkt_line(ZERO_SHA + b" " + ONE + b" refs/heads/main\n")
        self.assertRaises(HangupException, self.run_handler, ReceivePackHandler, body)

    def test_pack_without_flush(self):
        body = (
            pkt_line(ZERO_SHA + b" " + ONE + b" refs/heads/main\0report-status\n")
            + b"PACK\x00\x00\x00\x02"
        )
        report = read_report(self.run_handler(ReceivePackHandler, body))
        self.assertEqual([b"unpack ok\n", b"ok refs/heads/main\n", None], report)
        self.assertEqual(ONE, self.repo.refs[b"refs/heads/main"])
        self.assertEqual(b"PACK\x00\x00\x00\x02", self.repo.packs.retrieve_latest())

    def test_pack_only(self):
        self.assertEqual(
            FLUSH_PKT, self.run_handler(ReceivePackHandler, b"PACK\x00\x00\x00\x02")
        )
        self.assertIsNone(self.repo.packs.retrieve_latest())

    def test_commands_applied_in_order(self):
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/main"), (ONE, TWO, b"refs/heads/main")]
        )
        self.assertEqual(
            [b"unpack ok\n", b"ok refs/heads/main\n", b"ok refs/heads/main\n", None],
            report,
        )
        self.assertEqual(TWO, self.repo.refs[b"refs/heads/main"])

    def test_atomic_checks_before_writing(self):
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/main"), (ONE, TWO, b"refs/heads/main")],
            caps=b"report-status side-band-64k atomic",
        )
        self.assertEqual(
            [
                b"unpack ok\n",
                b"ng refs/heads/main atomic transaction failed\n",
                b"ng refs/heads/main non-fast-forward\n",
                None,
            ],
            report,
        )
        self.assertFalse(self.repo.exists())

    def test_failed_write(self):
        original_put = self.store.put

        def put(key, data, if_generation_match=None):
            if key.endswith("refs/heads/broken"):
                raise StorageError(key, "disk on fire")
            return original_put(key, data, if_generation_match=if_generation_match)

        self.store.put = put
        report = self.push(
            [(ZERO_SHA, ONE, b"refs/heads/broken"), (ZERO_SHA, ONE, b"refs/heads/main")]
        )
        self.assertEqual(
            [
                b"unpack ok\n",
                b"ng refs/heads/broken failed to write\n",
                b"ok refs/heads/main\n",
                None,
            ],
            report,
        )

    def test_failed_pack_write(self):
        def put(key, data, if_generation_match=None):
            raise StorageError(key, "disk on fire")

        self.store.put = put
        self.assertRaises(
            StorageError,
            self.run_handler,
            ReceivePackHandler,
            push_request([(ZERO_SHA, ONE, b"refs/heads/main")], pack=b"PACK"),
        )


class RacingStore(MemoryBlobStore):
    """Store that holds readers of one key until all of them have read it."""

    def __init__(self, key, parties):
        super().__init__()
        self._key = key
        self._barrier = threading.Barrier(parties, timeout=10)

    def get(self, key):
        blob = super().get(key)
        if key == self._key:
            self._barrier.wait()
        return blob


class ConcurrentPushTests(TestCase):
    def test_concurrent_push(self):
        store = RacingStore("repos/org/repo/refs/heads/main", 2)
        backend = BlobBackend(store)
        backend.open_repository("org", "repo").refs[b"refs/heads/main"] = ONE
        reports = {}

        def push(new):
            out = BytesIO()
            body = push_request([(ONE, new, b"refs/heads/main")])
            proto = Protocol(BytesIO(body).read, out.write)
            ReceivePackHandler(backend, ("org", "repo"), proto).handle()
            reports[new] = read_report(out.getvalue())[1]

        threads = [threading.Thread(target=push, args=(new,)) for new in (TWO, THREE)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(
            [b"ng refs/heads/main non-fast-forward\n", b"ok refs/heads/main\n"],
            sorted(reports.values()),
        )
        winner = TWO if reports[TWO] == b"ok refs/heads/main\n" else THREE
        # Read around the barrier, which only releases pairs of readers.
        stored = MemoryBlobStore.get(store, "repos/org/repo/refs/heads/main")
        self.assertEqual(winner + b"\n", stored.data)
