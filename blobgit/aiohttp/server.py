# server.py -- aiohttp smart HTTP server
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

"""aiohttp server support.

Serves every repository of a backend below ``/<org>/<repo>/``.
"""

import asyncio
import gzip
import sys
import zlib
from io import BytesIO
from typing import Optional

from aiohttp import web

from .. import log_utils
from ..config import ConfigurationError, load_conf, open_blob_store
from ..errors import GitProtocolError, NotGitRepository, StorageError
from ..protocol import Protocol
from ..repo import InvalidRepositoryName
from ..server import DEFAULT_HANDLERS, Backend, BlobBackend, Handler

logger = log_utils.getLogger(__name__)

NO_CACHE_HEADERS = [
    ("Expires", "Fri, 01 Jan 1980 00:00:00 GMT"),
    ("Pragma", "no-cache"),
    ("Cache-Control", "no-cache, max-age=0, must-revalidate"),
]

GZIP_MAGIC = b"\x1f\x8b"

# Application keys for type-safe access to app state
BACKEND_KEY = web.AppKey("backend", Backend)
HANDLERS_KEY = web.AppKey("handlers", dict)


class _ResponseWriter:
    """Write callback for handlers running in a worker thread.

    Each write is handed to the event loop and waited for, so a large pack
    is streamed to the client frame by frame. The response is only
    prepared on the first write; until then an error can still be turned
    into a proper HTTP status.
    """

    def __init__(
        self,
        request: web.Request,
        response: web.StreamResponse,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.request = request
        self.response = response
        self.loop = loop

    async def _write(self, data: bytes) -> None:
        if not self.response.prepared:
            await self.response.prepare(self.request)
        await self.response.write(data)

    def write(self, data: bytes) -> None:
        asyncio.run_coroutine_threadsafe(self._write(data), self.loop).result()


def _http_error(exc: Exception) -> web.HTTPException:
    if isinstance(exc, InvalidRepositoryName):
        return web.HTTPBadRequest(text=f"Invalid repository name {exc}")
    if isinstance(exc, NotGitRepository):
        return web.HTTPNotFound(text="Repository not found")
    if isinstance(exc, GitProtocolError):
        return web.HTTPBadRequest(text=f"Protocol error: {exc}")
    logger.error("Storage failure: %s", exc)
    return web.HTTPInternalServerError(text="Storage failure")


async def _run_handler(
    request: web.Request,
    handler_cls: type[Handler],
    body: bytes,
    headers: dict[str, str],
    advertise_refs: bool = False,
) -> web.StreamResponse:
    """Run a protocol handler in a worker thread and stream its output."""
    org = request.match_info["org"]
    repo = request.match_info["repo"]
    backend = request.app[BACKEND_KEY]
    response = web.StreamResponse(status=200, headers=headers)
    writer = _ResponseWriter(request, response, asyncio.get_running_loop())
    inf = BytesIO(body)

    def handle() -> None:
        proto = Protocol(inf.read, writer.write)
        handler = handler_cls(backend, (org, repo), proto, advertise_refs=advertise_refs)
        handler.handle()

    try:
        # TODO: Drive the handlers from async code once the blob stores
        # have async variants.
        await asyncio.to_thread(handle)
    except (
        InvalidRepositoryName,
        NotGitRepository,
        GitProtocolError,
        StorageError,
    ) as exc:
        if response.prepared:
            # The status line is gone; all we can do is cut the stream short.
            logger.warning("Aborting %s response for %s/%s: %s", request.path, org, repo, exc)
            response.force_close()
            return response
        raise _http_error(exc) from exc
    if not response.prepared:
        await response.prepare(request)
    await response.write_eof()
    return response


def _get_handler_cls(handlers: dict[bytes, type[Handler]], service: str) -> type[Handler]:
    handler_cls = handlers.get(service.encode("utf-8"), None)
    if handler_cls is None:
        raise web.HTTPBadRequest(text="Unsupported service")
    return handler_cls


async def _read_body(request: web.Request) -> bytes:
    """Read a request body, undoing gzip content encoding if needed."""
    body = await request.read()
    encoding = request.headers.get("Content-Encoding", "").lower()
    # aiohttp may already have decoded the body.
    if encoding == "gzip" and body.startswith(GZIP_MAGIC):
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as exc:
            raise web.HTTPBadRequest(text="Invalid gzip request body") from exc
    return body


async def get_info_refs(request: web.Request) -> web.StreamResponse:
    """Handle a request for /info/refs.

    Only the smart protocol is supported, so the service parameter is
    required.
    """
    service = request.query.get("service")
    if not service:
        raise web.HTTPBadRequest(text="Missing service parameter")
    handler_cls = _get_handler_cls(request.app[HANDLERS_KEY], service)
    logger.info(
        "Advertising refs of %s/%s for %s",
        request.match_info["org"],
        request.match_info["repo"],
        service,
    )
    headers = {"Content-Type": f"application/x-{service}-advertisement"}
    headers.update(NO_CACHE_HEADERS)
    return await _run_handler(request, handler_cls, b"", headers, advertise_refs=True)


async def handle_service_request(request: web.Request) -> web.StreamResponse:
    """Handle a git-upload-pack or git-receive-pack request."""
    service = request.match_info["service"]
    handler_cls = _get_handler_cls(request.app[HANDLERS_KEY], service)
    logger.info(
        "Handling %s request for %s/%s",
        service,
        request.match_info["org"],
        request.match_info["repo"],
    )
    body = await _read_body(request)
    headers = {"Content-Type": f"application/x-{service}-result"}
    headers.update(NO_CACHE_HEADERS)
    return await _run_handler(request, handler_cls, body, headers)


def create_app(
    backend: Backend, handlers: Optional[dict[bytes, type[Handler]]] = None
) -> web.Application:
    """Create an aiohttp application serving the repositories of a backend.

    Args:
      backend: Backend to open repositories from
      handlers: Optional dict of service handlers
    Returns: Configured aiohttp Application
    """
    app = web.Application()
    app[BACKEND_KEY] = backend
    if handlers is None:
        handlers = dict(DEFAULT_HANDLERS)
    app[HANDLERS_KEY] = handlers
    app.router.add_get("/{org}/{repo}/info/refs", get_info_refs)
    app.router.add_post(
        "/{org}/{repo}/{service:git-upload-pack|git-receive-pack}",
        handle_service_request,
    )
    return app


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for starting an HTTP git server."""
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-l",
        "--listen_address",
        dest="listen_address",
        default=None,
        help="Binding IP address.",
    )
    parser.add_argument(
        "-p",
        "--port",
        dest="port",
        type=int,
        default=None,
        help="Port to listen on.",
    )
    parser.add_argument(
        "-c",
        "--config",
        dest="config",
        default=None,
        help="Configuration file (default: $BLOBGIT_CFG).",
    )
    parser.add_argument(
        "--backend",
        dest="backend",
        choices=["memory", "disk", "gcs"],
        default=None,
        help="Storage backend.",
    )
    parser.add_argument(
        "--path",
        dest="path",
        default=None,
        help="Root directory of the disk backend.",
    )
    args = parser.parse_args(argv)

    log_utils.default_logging_config()
    try:
        conf = load_conf(args.config)
        if args.backend is not None:
            conf.set("storage", "backend", args.backend)
        if args.path is not None:
            conf.set("storage", "path", args.path)
        store = open_blob_store(conf)
    except ConfigurationError as exc:
        parser.error(str(exc))
    listen_address = args.listen_address or conf.get("server", "listen_address")
    port = args.port if args.port is not None else conf.getint("server", "port")

    app = create_app(BlobBackend(store))
    logger.info(
        "Listening for HTTP connections on %s:%d",
        listen_address,
        port,
    )
    web.run_app(app, port=port, host=listen_address)


if __name__ == "__main__":
    main(sys.argv[1:])
