# objects.py -- Object identifiers
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

"""Object identifiers.

blobgit never parses git objects; it only needs to recognise the 40-hex
object ids that refs point at.
"""

import binascii
from typing import Union

ObjectID = bytes

ZERO_SHA: ObjectID = b"0" * 40


def valid_hexsha(hex: Union[bytes, str]) -> bool:
    """Check whether a value is a 40 character lowercase hex object id."""
    if isinstance(hex, str):
        try:
            hex = hex.encode("ascii")
        except UnicodeEncodeError:
            return False
    if len(hex) != 40 or hex != hex.lower():
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True
