# config.py -- Server configuration
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

"""Server configuration.

The configuration is an INI file. A sample configuration file::

    [server]
    listen_address = 0.0.0.0
    port = 8000

    [storage]
    # memory, disk or gcs
    backend = gcs
    # Root directory of the disk backend
    path = /srv/blobgit
    # Bucket and optional prefix of the gcs backend
    bucket = my-git-bucket
    subpath = blobgit

The file is named on the command line or in the BLOBGIT_CFG environment
variable. Without either, the defaults below apply.
"""

__all__ = [
    "DEFAULTS",
    "ConfigurationError",
    "load_conf",
    "open_blob_store",
]

import os
from configparser import ConfigParser
from typing import Optional, TextIO

from . import log_utils
from .blob_store import BlobStore, DiskBlobStore, MemoryBlobStore

logger = log_utils.getLogger(__name__)

CONFIG_ENV = "BLOBGIT_CFG"

DEFAULTS = {
    "server": {
        "listen_address": "localhost",
        "port": "8000",
    },
    "storage": {
        "backend": "memory",
        "path": "",
        "bucket": "",
        "subpath": "",
    },
}


class ConfigurationError(Exception):
    """The configuration is missing or inconsistent."""


def load_conf(path: Optional[str] = None, file: Optional[TextIO] = None) -> ConfigParser:
    """Load the server configuration.

    Args:
      path: The path to the configuration file
      file: If provided read instead the file like object
    Raises:
      ConfigurationError: if the configuration file can not be read
    """
    conf = ConfigParser()
    conf.read_dict(DEFAULTS)
    if file:
        conf.read_file(file, path)
        return conf
    confpath = path or os.environ.get(CONFIG_ENV)
    if not confpath:
        return conf
    if not os.path.isfile(confpath):
        raise ConfigurationError(f"Unable to read configuration file {confpath}")
    conf.read(confpath)
    logger.debug("Loaded configuration from %s", confpath)
    return conf


def open_blob_store(conf: ConfigParser) -> BlobStore:
    """Open the blob store selected by the [storage] section.

    Raises:
      ConfigurationError: for an unknown backend or missing settings
    """
    backend = conf.get("storage", "backend").strip().lower()
    if backend == "memory":
        logger.warning("Using in-memory storage; pushed data is lost on exit")
        return MemoryBlobStore()
    if backend == "disk":
        path = conf.get("storage", "path")
        if not path:
            raise ConfigurationError("The disk backend needs storage.path")
        return DiskBlobStore.init(path)
    if backend == "gcs":
        bucket_name = conf.get("storage", "bucket")
        if not bucket_name:
            raise ConfigurationError("The gcs backend needs storage.bucket")
        from google.cloud import storage

        from .cloud.gcs import GcsBlobStore

        client = storage.Client()
        return GcsBlobStore(
            client.bucket(bucket_name), subpath=conf.get("storage", "subpath")
        )
    raise ConfigurationError(f"Unknown storage backend {backend!r}")
