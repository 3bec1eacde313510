# delta.py -- Application of git delta instructions
# Copyright (C) 2007 James Westby <jw+debian@jameswestby.net>
# Copyright (C) 2009-2012 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Application of git delta instructions.

A delta starts with the source and result lengths, each a little-endian
base-128 varint, followed by copy and insert instructions:

* a byte with the high bit set copies from the source. Bits 0-3 say which
  of the four little-endian offset bytes follow, bits 4-6 which of the three
  size bytes follow. A size of zero means 0x10000.
* a byte from 1 to 127 inserts that many literal bytes from the delta.
* a zero byte is reserved.
"""

__all__ = [
    "apply_delta",
    "patch_object",
    "read_delta_size",
]

from .errors import ApplyDeltaError, ObjectFormatException
from .objects import ObjectKind, object_header


def read_delta_size(delta: bytes, index: int = 0) -> tuple[int, int]:
    """Read a size from the start of a delta.

    Args:
      delta: Delta instructions
      index: Position to read from
    Returns: Tuple with the size and the position following it
    """
    size = 0
    shift = 0
    while True:
        if index >= len(delta):
            raise ApplyDeltaError("truncated delta header")
        cmd = delta[index]
        index += 1
        size |= (cmd & 0x7F) << shift
        shift += 7
        if not cmd & 0x80:
            return size, index


def apply_delta(src_buf: bytes, delta: bytes) -> bytes:
    """Based on the similar function in git's patch-delta.c.

    Args:
      src_buf: Source buffer
      delta: Delta instructions
    Returns: The reconstructed buffer
    Raises:
      ApplyDeltaError: if the delta is malformed or does not fit the source
    """
    index = 0
    delta_length = len(delta)
    src_size, index = read_delta_size(delta, index)
    dest_size, index = read_delta_size(delta, index)
    if src_size != len(src_buf):
        raise ApplyDeltaError(
            f"Unexpected source buffer size: {src_size} vs {len(src_buf)}"
        )
    out = bytearray()
    while index < delta_length:
        cmd = delta[index]
        index += 1
        if cmd & 0x80:
            cp_off = 0
            for i in range(4):
                if cmd & (1 << i):
                    if index >= delta_length:
                        raise ApplyDeltaError("truncated copy offset")
                    cp_off |= delta[index] << (i * 8)
                    index += 1
            cp_size = 0
            for i in range(3):
                if cmd & (1 << (4 + i)):
                    if index >= delta_length:
                        raise ApplyDeltaError("truncated copy size")
                    cp_size |= delta[index] << (i * 8)
                    index += 1
            if cp_size == 0:
                cp_size = 0x10000
            if cp_off + cp_size > src_size:
                raise ApplyDeltaError(
                    f"copy of {cp_size} bytes at {cp_off} exceeds source size "
                    f"{src_size}"
                )
            out += src_buf[cp_off : cp_off + cp_size]
        elif cmd != 0:
            if index + cmd > delta_length:
                raise ApplyDeltaError("truncated insert data")
            out += delta[index : index + cmd]
            index += cmd
        else:
            raise ApplyDeltaError("Invalid opcode 0")
        if len(out) > dest_size:
            raise ApplyDeltaError(
                f"delta output exceeds declared size {dest_size}"
            )

    if dest_size != len(out):
        raise ApplyDeltaError(f"dest size incorrect: {len(out)} vs {dest_size}")

    return bytes(out)


def patch_object(base_raw: bytes, delta: bytes) -> bytes:
    """Apply a delta to a tagged object.

    Args:
      base_raw: Base object as "<type> <size>\\0<body>"
      delta: Delta instructions
    Returns: The result, tagged with the base's type
    """
    header_end = base_raw.find(b"\0")
    if header_end == -1:
        raise ObjectFormatException("missing object header terminator")
    type_name = base_raw[:header_end].split(b" ", 1)[0]
    kind = ObjectKind.from_type_name(type_name)
    body = apply_delta(base_raw[header_end + 1 :], delta)
    return object_header(kind, len(body)) + body
