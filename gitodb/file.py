# file.py -- Safe access to git files
# Copyright (C) 2010 Google, Inc.
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitodb is dual-licensed under the Apache License, Version 2.0 and the GNU
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

"""Read-only access to git files."""

__all__ = [
    "GitFile",
    "read_file_if_exists",
]

import os
from typing import IO

PathLike = str | bytes | os.PathLike[str] | os.PathLike[bytes]


def GitFile(filename: PathLike, mode: str = "rb", bufsize: int = -1) -> IO[bytes]:
    """Open a file inside a git repository.

    The object database is never modified, so only binary read mode is
    supported; write, append, read/write and text modes are rejected.

    Args:
      filename: Path to the file
      mode: File mode (only 'rb' is supported)
      bufsize: Buffer size for file operations
    Returns: a builtin file object
    """
    if "a" in mode:
        raise OSError("append mode not supported for Git files")
    if "+" in mode:
        raise OSError("read/write mode not supported for Git files")
    if "b" not in mode:
        raise OSError("text mode not supported for Git files")
    if "w" in mode or "x" in mode:
        raise OSError("gitodb opens repositories read-only")
    return open(filename, mode, bufsize)


def read_file_if_exists(filename: PathLike) -> bytes | None:
    """Return the contents of a file, or None if it does not exist."""
    try:
        with GitFile(filename, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None
