# utils.py -- Test utilities for gitodb.
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

"""Utility functions common to gitodb tests.

Pack and index files are written by hand here, since gitodb itself never
writes to a repository.
"""

import binascii
import hashlib
import os
import struct
import zlib
from collections.abc import Iterator, Sequence
from difflib import SequenceMatcher

from gitodb.objects import ObjectKind, object_header
from gitodb.pack import DELTA_TYPES, OFS_DELTA, REF_DELTA

# Plain files are very frequently used in tests, so let the mode be very short.
F = 0o100644  # Shorthand mode for Files.

# The length of delta copy operations is limited to 64K here, so that
# larger copies use several operations.
_MAX_COPY_LEN = 0xFFFF


def raw_object_sha(type_num: int, body: bytes) -> bytes:
    """Return the raw SHA1 a body is stored under."""
    return hashlib.sha1(object_header(type_num, len(body)) + body).digest()


def delta_encode_size(size: int) -> bytes:
    ret = bytearray()
    c = size & 0x7F
    size >>= 7
    while size:
        ret.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    ret.append(c)
    return bytes(ret)


def encode_copy_operation(start: int, length: int) -> bytes:
    scratch = bytearray([0x80])
    for i in range(4):
        if start & 0xFF << i * 8:
            scratch.append((start >> i * 8) & 0xFF)
            scratch[0] |= 1 << i
    for i in range(3):
        if length & 0xFF << i * 8:
            scratch.append((length >> i * 8) & 0xFF)
            scratch[0] |= 1 << (4 + i)
    return bytes(scratch)


def _create_delta_chunks(base_buf: bytes, target_buf: bytes) -> Iterator[bytes]:
    yield delta_encode_size(len(base_buf))
    yield delta_encode_size(len(target_buf))
    seq = SequenceMatcher(isjunk=None, a=base_buf, b=target_buf)
    for opcode, i1, i2, j1, j2 in seq.get_opcodes():
        if opcode == "equal":
            copy_start = i1
            copy_len = i2 - i1
            while copy_len > 0:
                to_copy = min(copy_len, _MAX_COPY_LEN)
                yield encode_copy_operation(copy_start, to_copy)
                copy_start += to_copy
                copy_len -= to_copy
        if opcode == "replace" or opcode == "insert":
            s = j2 - j1
            o = j1
            while s > 127:
                yield bytes([127])
                yield target_buf[o : o + 127]
                s -= 127
                o += 127
            if s:
                yield bytes([s])
                yield target_buf[o : o + s]


def create_delta(base_buf: bytes, target_buf: bytes) -> bytes:
    """Work out delta instructions that turn base_buf into target_buf."""
    return b"".join(_create_delta_chunks(base_buf, target_buf))


def pack_object_header(type_num: int, delta_base: bytes | int | None, size: int) -> bytes:
    """Create a pack object header for the given object info."""
    header = []
    c = (type_num << 4) | (size & 15)
    size >>= 4
    while size:
        header.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    header.append(c)
    if type_num == OFS_DELTA:
        assert isinstance(delta_base, int)
        ret = [delta_base & 0x7F]
        delta_base >>= 7
        while delta_base:
            delta_base -= 1
            ret.insert(0, 0x80 | (delta_base & 0x7F))
            delta_base >>= 7
        header.extend(ret)
    elif type_num == REF_DELTA:
        assert isinstance(delta_base, bytes) and len(delta_base) == 20
        return bytes(header) + delta_base
    return bytes(header)


def pack_entry(type_num: int, payload: bytes, delta_base: bytes | int | None = None) -> bytes:
    """Return a complete pack entry: header and deflated payload."""
    return pack_object_header(type_num, delta_base, len(payload)) + zlib.compress(payload)


def make_pack_index_v2(
    entries: Sequence[tuple[bytes, int, int]],
    pack_checksum: bytes,
    force_large: bool = False,
) -> bytes:
    """Serialize a version 2 pack index.

    Args:
      entries: Tuples of (raw sha, offset, crc32), in any order
      pack_checksum: Trailing checksum of the pack the index belongs to
      force_large: Store every offset in the 64-bit offset table
    """
    entries = sorted(entries)
    fan_out = [0] * 0x100
    for name, _offset, _crc32 in entries:
        fan_out[name[0]] += 1
    total = 0
    for i in range(0x100):
        total += fan_out[i]
        fan_out[i] = total
    parts = [b"\377tOc", struct.pack(">L", 2)]
    parts.extend(struct.pack(">L", count) for count in fan_out)
    parts.extend(name for name, _offset, _crc32 in entries)
    parts.extend(struct.pack(">L", crc32) for _name, _offset, crc32 in entries)
    large_offsets = []
    for _name, offset, _crc32 in entries:
        if force_large or offset >= 2**31:
            parts.append(struct.pack(">L", 2**31 | len(large_offsets)))
            large_offsets.append(offset)
        else:
            parts.append(struct.pack(">L", offset))
    parts.extend(struct.pack(">Q", offset) for offset in large_offsets)
    parts.append(pack_checksum)
    contents = b"".join(parts)
    return contents + hashlib.sha1(contents).digest()


def write_pack(
    basename: str,
    entries: Sequence[tuple[bytes, bytes]],
    version: int = 2,
) -> list[int]:
    """Write a pack and its index.

    Args:
      basename: Path of the pack, without the .pack and .idx extensions
      entries: Tuples of (raw sha, entry bytes as made by pack_entry)
      version: Pack version to write in the header
    Returns: The offset of each entry, in the order given
    """
    data = bytearray(b"PACK" + struct.pack(">LL", version, len(entries)))
    offsets = []
    index_entries = []
    for sha, entry in entries:
        offsets.append(len(data))
        index_entries.append((sha, len(data), binascii.crc32(entry) & 0xFFFFFFFF))
        data += entry
    checksum = hashlib.sha1(data).digest()
    with open(basename + ".pack", "wb") as f:
        f.write(bytes(data) + checksum)
    with open(basename + ".idx", "wb") as f:
        f.write(make_pack_index_v2(index_entries, checksum))
    return offsets


def build_pack(
    basename: str, objects_spec: Sequence[tuple[int, object]]
) -> list[tuple[int, int, bytes, bytes]]:
    """Write test pack data from a concise spec.

    Args:
      basename: Path of the pack, without the .pack and .idx extensions
      objects_spec: A list of (type_num, obj). For non-delta types, obj
        is the body of that object.
        For delta types, obj is a tuple of (base, data) or
        (base, data, delta), where:

        * base can be either an index in objects_spec of the base for that
          delta; or for a ref delta, a raw SHA, in which case the resulting
          pack will be thin and the base is taken to be an empty blob.
        * data is the full, non-deltified body of that object.
        * delta, when given, is written instead of a computed delta.
    Returns: A list of tuples in the order specified by objects_spec:
        (offset, type num, body, hex sha)
    """
    full_objects: dict[int, tuple[int, bytes, bytes]] = {}
    while len(full_objects) < len(objects_spec):
        progress = False
        for i, (type_num, obj) in enumerate(objects_spec):
            if i in full_objects:
                continue
            if type_num not in DELTA_TYPES:
                assert isinstance(obj, bytes)
                full_objects[i] = (type_num, obj, raw_object_sha(type_num, obj))
                progress = True
                continue
            assert isinstance(obj, tuple)
            base, data = obj[0], obj[1]
            if isinstance(base, int):
                if base not in full_objects:
                    continue
                base_type_num = full_objects[base][0]
            else:
                base_type_num = ObjectKind.BLOB
            full_objects[i] = (base_type_num, data, raw_object_sha(base_type_num, data))
            progress = True
        if not progress:
            raise ValueError("delta bases in objects_spec form a cycle")

    entries = []
    offsets: dict[int, int] = {}
    position = 12
    for i, (type_num, obj) in enumerate(objects_spec):
        offsets[i] = position
        if type_num not in DELTA_TYPES:
            assert isinstance(obj, bytes)
            entry = pack_entry(type_num, obj)
        else:
            assert isinstance(obj, tuple)
            base, data = obj[0], obj[1]
            if isinstance(base, int):
                _, base_data, base_sha = full_objects[base]
            else:
                base_data, base_sha = b"", base
            delta = obj[2] if len(obj) > 2 else create_delta(base_data, data)
            if type_num == OFS_DELTA:
                assert isinstance(base, int)
                entry = pack_entry(type_num, delta, position - offsets[base])
            else:
                entry = pack_entry(type_num, delta, base_sha)
        entries.append((full_objects[i][2], entry))
        position += len(entry)

    written = write_pack(basename, entries)
    assert written == [offsets[i] for i in range(len(objects_spec))]
    return [
        (
            offsets[i],
            full_objects[i][0],
            full_objects[i][1],
            binascii.hexlify(full_objects[i][2]),
        )
        for i in range(len(objects_spec))
    ]


def write_loose_object(objects_dir: str, type_num: int, body: bytes) -> bytes:
    """Store a body as a loose object and return its hex sha."""
    raw = object_header(type_num, len(body)) + body
    hexsha = hashlib.sha1(raw).hexdigest()
    dirname = os.path.join(objects_dir, hexsha[:2])
    os.makedirs(dirname, exist_ok=True)
    with open(os.path.join(dirname, hexsha[2:]), "wb") as f:
        f.write(zlib.compress(raw))
    return hexsha.encode("ascii")


def make_repo(path: str, bare: bool = False) -> str:
    """Lay out an empty repository and return its control directory.

    HEAD points at refs/heads/main.
    """
    controldir = path if bare else os.path.join(path, ".git")
    for subdir in ("objects/pack", "refs/heads", "refs/tags"):
        os.makedirs(os.path.join(controldir, subdir))
    with open(os.path.join(controldir, "HEAD"), "wb") as f:
        f.write(b"ref: refs/heads/main\n")
    return controldir


def write_ref(controldir: str, name: str, value: bytes) -> None:
    """Write a loose ref, creating its directories."""
    path = os.path.join(controldir, *name.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(value + b"\n")


def write_packed_refs(controldir: str, contents: bytes) -> None:
    with open(os.path.join(controldir, "packed-refs"), "wb") as f:
        f.write(contents)
