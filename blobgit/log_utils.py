# log_utils.py -- Logging utilities for blobgit
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

"""Logging utilities for blobgit.

blobgit is usually embedded in a larger service, so the package logger only
gets a no-op handler by default and stays silent until the host application
(or the bundled server entry point) configures logging.

Modules only need getLogger, which this module re-exports.
"""

import logging
import os
import sys
from typing import Optional

getLogger = logging.getLogger


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_BLOBGIT_LOGGER = getLogger("blobgit")
_BLOBGIT_LOGGER.addHandler(_NULL_HANDLER)

SERVER_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _trace_handler() -> Optional[logging.Handler]:
    """Build the handler GIT_TRACE asks for.

    "1", "2" or "true" trace to stderr. An absolute path traces to that
    file, or to a per-process file when the path is a directory.

    Returns: The handler, or None if tracing is off or the target is unusable
    """
    value = os.environ.get("GIT_TRACE", "")
    if value.lower() in ("", "0", "false"):
        return None
    if value.lower() in ("1", "2", "true"):
        return logging.StreamHandler(sys.stderr)
    if not os.path.isabs(value):
        return None
    if os.path.isdir(value):
        # One file per process so concurrent servers don't interleave.
        value = os.path.join(value, f"trace.{os.getpid()}")
    try:
        return logging.FileHandler(value)
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open GIT_TRACE file {value}: {e}\n")
        return None


def default_logging_config() -> None:
    """Set up the default blobgit loggers.

    With GIT_TRACE set, everything down to DEBUG goes to the trace target.
    Otherwise INFO and above go to stderr.
    """
    remove_null_handler()
    handler = _trace_handler()
    if handler is None:
        logging.basicConfig(level=logging.INFO, stream=sys.stderr, format=SERVER_FORMAT)
    else:
        logging.basicConfig(level=logging.DEBUG, handlers=[handler], format=TRACE_FORMAT)


def remove_null_handler() -> None:
    """Remove the null handler from the blobgit loggers.

    Callers that set up logging themselves can call this first to skip the
    overhead of the _NullHandler.
    """
    _BLOBGIT_LOGGER.removeHandler(_NULL_HANDLER)
