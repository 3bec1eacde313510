# test_pack.py -- Tests for the handling of git packs.
# Copyright (C) 2007 James Westby, Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Tests for gitodb packs."""

import binascii
import os
import shutil
import struct
import tempfile
import zlib
from io import BytesIO

from gitodb.delta import apply_delta
from gitodb.errors import (
    AmbiguousObjectName,
    ApplyDeltaError,
    ChecksumMismatch,
    DeltaChainTooDeep,
    FileFormatException,
    UnresolvedDeltas,
)
from gitodb.objects import Blob, Commit, ObjectKind, hex_to_sha, sha_to_hex
from gitodb.pack import (
    OFS_DELTA,
    REF_DELTA,
    Pack,
    PackData,
    PackIndex,
    bisect_find_sha,
    load_pack_index,
    read_pack_header,
    take_msb_bytes,
    unpack_object,
)

from . import TestCase
from .utils import (
    build_pack,
    create_delta,
    delta_encode_size,
    make_pack_index_v2,
    pack_entry,
    pack_object_header,
    raw_object_sha,
    write_pack,
)

PACK_CHECKSUM = b"\xaa" * 20

NAMES = [
    b"\x00" * 19 + b"\x01",
    b"\x01\x02" + b"\x00" * 18,
    b"\x01\x02" + b"\xff" * 18,
    b"\x01\x03" + b"\x10" * 18,
    b"\xff" * 20,
]


def _index(entries, **kwargs) -> PackIndex:
    data = make_pack_index_v2(entries, PACK_CHECKSUM, **kwargs)
    return PackIndex("test.idx", file=BytesIO(data))


class PackIndexTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.entries = [
            (name, 12 + 100 * i, 0x1000 + i) for i, name in enumerate(NAMES)
        ]
        self.index = _index(self.entries)
        self.addCleanup(self.index.close)

    def test_len(self) -> None:
        self.assertEqual(5, len(self.index))

    def test_iter(self) -> None:
        self.assertEqual([sha_to_hex(name) for name in NAMES], list(self.index))

    def test_fan_out_counts(self) -> None:
        for first_byte in range(0x100):
            expected = len([name for name in NAMES if name[0] == first_byte])
            self.assertEqual(expected, self.index.fan_out_bucket(first_byte)[1])
        self.assertEqual((1, 3), self.index.fan_out_bucket(0x01))
        self.assertEqual((4, 1), self.index.fan_out_bucket(0xFF))

    def test_lookup_full(self) -> None:
        for i, name in enumerate(NAMES):
            self.assertEqual(i, self.index.lookup(name))

    def test_lookup_prefix(self) -> None:
        self.assertEqual(3, self.index.lookup(b"\x01\x03"))
        self.assertEqual(1, self.index.lookup(b"\x01\x02\x00"))
        self.assertEqual(4, self.index.lookup(b"\xff"))

    def test_lookup_ambiguous(self) -> None:
        with self.assertRaises(AmbiguousObjectName) as cm:
            self.index.lookup(b"\x01\x02")
        self.assertEqual(
            sorted([sha_to_hex(NAMES[1]), sha_to_hex(NAMES[2])]), cm.exception.candidates
        )

    def test_lookup_missing(self) -> None:
        self.assertIsNone(self.index.lookup(b"\x50" * 20))
        self.assertIsNone(self.index.lookup(b"\x01\x02" + b"\x01" * 18))
        self.assertIsNone(self.index.lookup(b"\x01\x04"))
        self.assertIsNone(self.index.lookup(b"\x00\x01"))

    def test_lookup_invalid_length(self) -> None:
        self.assertRaises(ValueError, self.index.lookup, b"")
        self.assertRaises(ValueError, self.index.lookup, b"\x00" * 21)
        self.assertRaises(ValueError, self.index.lookup, b"\x01\x03", allow_prefix=False)

    def test_object_offset(self) -> None:
        self.assertEqual(312, self.index.object_offset(NAMES[3]))
        self.assertEqual(312, self.index.object_offset(sha_to_hex(NAMES[3])))
        self.assertRaises(KeyError, self.index.object_offset, b"\x50" * 20)

    def test_contains(self) -> None:
        self.assertIn(NAMES[0], self.index)
        self.assertIn(sha_to_hex(NAMES[0]), self.index)
        self.assertNotIn(b"\x50" * 20, self.index)
        self.assertNotIn("not bytes", self.index)

    def test_crc32(self) -> None:
        self.assertEqual(0x1002, self.index.crc32_at(2))

    def test_iterentries(self) -> None:
        self.assertEqual(self.entries, list(self.index.iterentries()))

    def test_iter_prefix(self) -> None:
        self.assertEqual(NAMES[1:3], list(self.index.iter_prefix(b"\x01\x02")))
        self.assertEqual([], list(self.index.iter_prefix(b"\x02")))

    def test_checksums(self) -> None:
        self.assertEqual(PACK_CHECKSUM, self.index.get_pack_checksum())
        self.assertEqual(
            self.index.calculate_checksum(), self.index.get_stored_checksum()
        )
        self.index.check()

    def test_corrupt_checksum(self) -> None:
        data = bytearray(make_pack_index_v2(self.entries, PACK_CHECKSUM))
        data[-1] ^= 0xFF
        with PackIndex("test.idx", file=BytesIO(bytes(data))) as index:
            self.assertRaises(ChecksumMismatch, index.check)

    def test_path(self) -> None:
        self.assertEqual("test.idx", self.index.path)


class PackIndexFormatTests(TestCase):
    def test_empty(self) -> None:
        with _index([]) as index:
            self.assertEqual(0, len(index))
            self.assertIsNone(index.lookup(b"\x00" * 20))
            self.assertEqual([], list(index))

    def test_large_offsets(self) -> None:
        entries = [(NAMES[0], 2**33, 1), (NAMES[1], 12, 2), (NAMES[4], 2**31, 3)]
        with _index(entries) as index:
            self.assertEqual([2**33, 12, 2**31], [index.offset_at(i) for i in (0, 1, 2)])

    def test_forced_large_offsets(self) -> None:
        entries = [(NAMES[0], 12, 1), (NAMES[1], 40, 2)]
        with _index(entries, force_large=True) as index:
            self.assertEqual(12, index.object_offset(NAMES[0]))
            self.assertEqual(40, index.object_offset(NAMES[1]))

    def test_large_offset_out_of_range(self) -> None:
        data = bytearray(make_pack_index_v2([(NAMES[4], 2**32, 1)], PACK_CHECKSUM))
        offset_table = 8 + 0x100 * 4 + 20 + 4
        data[offset_table : offset_table + 4] = struct.pack(">L", 2**31 | 1)
        with PackIndex("test.idx", file=BytesIO(bytes(data))) as index:
            self.assertRaises(FileFormatException, index.offset_at, 0)

    def test_bad_magic(self) -> None:
        data = b"xxxx" + make_pack_index_v2([], PACK_CHECKSUM)[4:]
        self.assertRaises(FileFormatException, PackIndex, "x.idx", file=BytesIO(data))

    def test_unsupported_version(self) -> None:
        data = bytearray(make_pack_index_v2([], PACK_CHECKSUM))
        data[4:8] = struct.pack(">L", 3)
        self.assertRaises(
            FileFormatException, PackIndex, "x.idx", file=BytesIO(bytes(data))
        )

    def test_too_short(self) -> None:
        self.assertRaises(
            FileFormatException, PackIndex, "x.idx", file=BytesIO(b"\377tOc\x00\x00\x00\x02")
        )

    def test_decreasing_fan_out(self) -> None:
        data = bytearray(make_pack_index_v2([(NAMES[4], 12, 1)], PACK_CHECKSUM))
        data[8:12] = struct.pack(">L", 1)
        self.assertRaises(
            FileFormatException, PackIndex, "x.idx", file=BytesIO(bytes(data))
        )

    def test_size_mismatch(self) -> None:
        data = make_pack_index_v2([(NAMES[4], 12, 1)], PACK_CHECKSUM)
        self.assertRaises(
            FileFormatException, PackIndex, "x.idx", file=BytesIO(data + b"\x00" * 4)
        )

    def test_closes_file_on_error(self) -> None:
        f = BytesIO(b"garbage")
        self.assertRaises(FileFormatException, PackIndex, "x.idx", file=f)
        self.assertTrue(f.closed)


class BisectFindShaTests(TestCase):
    def test_found_and_missing(self) -> None:
        self.assertEqual(2, bisect_find_sha(0, 4, NAMES[2], NAMES.__getitem__))
        self.assertIsNone(bisect_find_sha(0, 4, b"\x02" * 20, NAMES.__getitem__))
        self.assertIsNone(bisect_find_sha(1, 0, NAMES[0], NAMES.__getitem__))


class ReadPackHeaderTests(TestCase):
    def test_valid(self) -> None:
        header = b"PACK" + struct.pack(">LL", 2, 5)
        self.assertEqual((2, 5), read_pack_header(BytesIO(header).read))

    def test_version_3(self) -> None:
        header = b"PACK" + struct.pack(">LL", 3, 0)
        self.assertEqual((3, 0), read_pack_header(BytesIO(header).read))

    def test_bad_signature(self) -> None:
        header = b"KCAP" + struct.pack(">LL", 2, 5)
        self.assertRaises(FileFormatException, read_pack_header, BytesIO(header).read)

    def test_bad_version(self) -> None:
        header = b"PACK" + struct.pack(">LL", 4, 5)
        self.assertRaises(FileFormatException, read_pack_header, BytesIO(header).read)

    def test_too_short(self) -> None:
        self.assertRaises(FileFormatException, read_pack_header, BytesIO(b"PACK").read)


class UnpackObjectTests(TestCase):
    def test_whole_object(self) -> None:
        unpacked, unused = unpack_object(
            BytesIO(pack_entry(ObjectKind.BLOB, b"hello") + b"trailer").read
        )
        self.assertEqual(ObjectKind.BLOB, unpacked.pack_type_num)
        self.assertIsNone(unpacked.delta_base)
        self.assertEqual(b"hello", unpacked.decompressed())
        self.assertEqual(b"trailer", unused)

    def test_large_size(self) -> None:
        body = b"x" * 5000
        unpacked, _ = unpack_object(BytesIO(pack_entry(ObjectKind.BLOB, body)).read)
        self.assertEqual(5000, unpacked.decomp_len)
        self.assertEqual(body, unpacked.decompressed())

    def test_ofs_delta_distances(self) -> None:
        for distance in (1, 127, 128, 16511, 16512, 2**21):
            unpacked, _ = unpack_object(
                BytesIO(pack_entry(OFS_DELTA, b"\x00\x00", distance)).read
            )
            self.assertEqual(OFS_DELTA, unpacked.pack_type_num)
            self.assertEqual(distance, unpacked.delta_base)

    def test_ref_delta(self) -> None:
        base = b"\x12" * 20
        unpacked, _ = unpack_object(BytesIO(pack_entry(REF_DELTA, b"\x00\x00", base)).read)
        self.assertEqual(REF_DELTA, unpacked.pack_type_num)
        self.assertEqual(base, unpacked.delta_base)

    def test_truncated_ref_delta_base(self) -> None:
        header = pack_object_header(REF_DELTA, b"\x12" * 20, 2)[:-5]
        self.assertRaises(FileFormatException, unpack_object, BytesIO(header).read)

    def test_invalid_types(self) -> None:
        for type_num in (0, 5):
            entry = bytes([(type_num << 4) | 1]) + zlib.compress(b"x")
            self.assertRaises(FileFormatException, unpack_object, BytesIO(entry).read)

    def test_truncated_header(self) -> None:
        self.assertRaises(FileFormatException, unpack_object, BytesIO(b"\xb5").read)
        self.assertRaises(FileFormatException, take_msb_bytes, BytesIO(b"").read)

    def test_size_mismatch(self) -> None:
        entry = pack_object_header(ObjectKind.BLOB, None, 10) + zlib.compress(b"hello")
        self.assertRaises(FileFormatException, unpack_object, BytesIO(entry).read)

    def test_oversized_data(self) -> None:
        entry = pack_object_header(ObjectKind.BLOB, None, 3) + zlib.compress(b"hello")
        self.assertRaises(FileFormatException, unpack_object, BytesIO(entry).read)

    def test_truncated_data(self) -> None:
        entry = pack_entry(ObjectKind.BLOB, b"hello" * 100)[:-5]
        self.assertRaises(FileFormatException, unpack_object, BytesIO(entry).read)


class PackTestCase(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tempdir)

    def basename(self, name: str = "pack-test") -> str:
        return os.path.join(self.tempdir, name)

    def open_pack(self, basename: str, **kwargs) -> Pack:
        pack = Pack(basename, **kwargs)
        self.addCleanup(pack.close)
        return pack


BASE = b"".join(b"line %d of the base blob\n" % i for i in range(50))
FIRST = BASE.replace(b"line 10 ", b"line ten ")
SECOND = FIRST + b"an appended line\n"
COMMIT_BODY = (
    b"tree 4b825dc642cb6eb9a060e54bf8d69288fbee4904\n"
    b"author A <a@x> 0 +0000\n"
    b"committer A <a@x> 0 +0000\n"
    b"\n"
    b"msg\n"
)


class PackTests(PackTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.first_delta = create_delta(BASE, FIRST)
        self.second_delta = create_delta(FIRST, SECOND)
        self.expected = build_pack(
            self.basename(),
            [
                (ObjectKind.BLOB, BASE),
                (OFS_DELTA, (0, FIRST, self.first_delta)),
                (OFS_DELTA, (1, SECOND, self.second_delta)),
                (REF_DELTA, (0, b"ref delta result\n")),
                (ObjectKind.COMMIT, COMMIT_BODY),
            ],
        )
        self.pack = self.open_pack(self.basename())

    def sha(self, i: int) -> bytes:
        return self.expected[i][3]

    def test_len(self) -> None:
        self.assertEqual(5, len(self.pack))
        self.assertEqual(5, len(self.pack.data))

    def test_iter(self) -> None:
        self.assertEqual(
            sorted(sha for _, _, _, sha in self.expected), list(self.pack)
        )

    def test_contains(self) -> None:
        self.assertIn(self.sha(0), self.pack)
        self.assertNotIn(b"1" * 40, self.pack)

    def test_offsets(self) -> None:
        for offset, _, _, sha in self.expected:
            self.assertEqual(offset, self.pack.index.object_offset(sha))

    def test_get_raw(self) -> None:
        for _, type_num, body, sha in self.expected:
            self.assertEqual((type_num, body), self.pack.get_raw(sha))

    def test_get_raw_missing(self) -> None:
        self.assertRaises(KeyError, self.pack.get_raw, b"1" * 40)

    def test_search(self) -> None:
        self.assertEqual(
            b"blob %d\x00" % len(BASE) + BASE, self.pack.search(self.sha(0))
        )

    def test_search_prefix(self) -> None:
        self.assertEqual(
            b"blob %d\x00" % len(SECOND) + SECOND, self.pack.search(self.sha(2)[:8])
        )

    def test_search_missing(self) -> None:
        self.assertIsNone(self.pack.search(b"1" * 40))

    def test_search_invalid_hex(self) -> None:
        self.assertRaises(ValueError, self.pack.search, b"xyz")

    def test_iter_prefix(self) -> None:
        self.assertEqual([self.sha(4)], list(self.pack.iter_prefix(self.sha(4)[:10])))

    def test_delta_chain(self) -> None:
        """A delta of a delta resolves to the deltas applied in order."""
        manual = apply_delta(apply_delta(BASE, self.first_delta), self.second_delta)
        self.assertEqual(SECOND, manual)
        self.assertEqual((ObjectKind.BLOB, manual), self.pack.get_raw(self.sha(2)))

    def test_ref_delta(self) -> None:
        self.assertEqual(
            (ObjectKind.BLOB, b"ref delta result\n"), self.pack.get_raw(self.sha(3))
        )

    def test_getitem(self) -> None:
        blob = self.pack[self.sha(1)]
        self.assertEqual(Blob(FIRST), blob)
        self.assertEqual(self.sha(1), blob.id)
        commit = self.pack[hex_to_sha(self.sha(4))]
        self.assertIsInstance(commit, Commit)
        self.assertEqual(self.sha(4), commit.id)

    def test_check(self) -> None:
        self.pack.check()

    def test_stored_checksum(self) -> None:
        self.assertEqual(
            self.pack.index.get_pack_checksum(), self.pack.get_stored_checksum()
        )
        self.assertEqual(
            self.pack.data.calculate_checksum(), self.pack.get_stored_checksum()
        )

    def test_max_delta_depth(self) -> None:
        pack = self.open_pack(self.basename(), max_delta_depth=1)
        self.assertEqual((ObjectKind.BLOB, FIRST), pack.get_raw(self.sha(1)))
        self.assertRaises(DeltaChainTooDeep, pack.get_raw, self.sha(2))

    def test_close(self) -> None:
        data_file = self.pack.data._file
        self.pack.close()
        self.assertTrue(data_file.closed)
        self.assertIsNone(self.pack._data)
        self.assertIsNone(self.pack._idx)
        self.pack.close()

    def test_context_manager(self) -> None:
        with Pack(self.basename()) as pack:
            data_file = pack.data._file
            self.assertEqual(5, len(pack))
        self.assertTrue(data_file.closed)

    def test_from_objects(self) -> None:
        data = PackData(self.basename() + ".pack")
        index = load_pack_index(self.basename() + ".idx")
        with Pack.from_objects(data, index) as pack:
            self.assertEqual((ObjectKind.BLOB, BASE), pack.get_raw(self.sha(0)))

    def test_corrupt_data_detected_by_check(self) -> None:
        with open(self.basename() + ".pack", "r+b") as f:
            f.seek(self.expected[0][0] + 5)
            byte = f.read(1)
            f.seek(-1, os.SEEK_CUR)
            f.write(bytes([byte[0] ^ 0xFF]))
        with Pack(self.basename()) as pack:
            self.assertRaises(ChecksumMismatch, pack.check)


class PackFormatTests(PackTestCase):
    def test_version_3(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"v3")
        write_pack(self.basename(), [(sha, pack_entry(ObjectKind.BLOB, b"v3"))], version=3)
        pack = self.open_pack(self.basename())
        self.assertEqual(3, pack.data.version)
        self.assertEqual((ObjectKind.BLOB, b"v3"), pack.get_raw(sha))

    def test_missing_ref_base(self) -> None:
        base = b"\x42" * 20
        expected = build_pack(self.basename(), [(REF_DELTA, (base, b"thin"))])
        pack = self.open_pack(self.basename())
        with self.assertRaises(UnresolvedDeltas) as cm:
            pack.get_raw(expected[0][3])
        self.assertEqual([binascii.hexlify(base)], cm.exception.shas)

    def test_delta_cycle(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"loop")
        write_pack(self.basename(), [(sha, pack_entry(OFS_DELTA, create_delta(b"", b"loop"), 0))])
        pack = self.open_pack(self.basename())
        self.assertRaises(FileFormatException, pack.get_raw, sha)

    def test_delta_error_names_object(self) -> None:
        delta = delta_encode_size(3) + delta_encode_size(3) + b"\x00"
        expected = build_pack(
            self.basename(),
            [(ObjectKind.BLOB, b"one"), (OFS_DELTA, (0, b"two", delta))],
        )
        offset, _, _, sha = expected[1]
        pack = self.open_pack(self.basename())
        for lookup in (pack.get_raw, pack.search):
            with self.assertRaises(ApplyDeltaError) as cm:
                lookup(sha)
            message = str(cm.exception)
            self.assertIn(sha.decode("ascii"), message)
            self.assertIn(f"at offset {offset}", message)
            self.assertIn(self.basename() + ".pack", message)
            self.assertIn("Invalid opcode 0", message)

    def test_delta_cycle_names_object(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"loop")
        write_pack(self.basename(), [(sha, pack_entry(OFS_DELTA, create_delta(b"", b"loop"), 0))])
        pack = self.open_pack(self.basename())
        with self.assertRaises(FileFormatException) as cm:
            pack.get_raw(sha)
        self.assertIn(sha_to_hex(sha).decode("ascii"), str(cm.exception))
        self.assertIn("delta cycle through offset 12", str(cm.exception))

    def test_offset_before_pack_start(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"far")
        write_pack(
            self.basename(),
            [(sha, pack_entry(OFS_DELTA, create_delta(b"", b"far"), 100))],
        )
        pack = self.open_pack(self.basename())
        self.assertRaises(FileFormatException, pack.get_raw, sha)

    def test_index_for_other_pack(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"one")
        write_pack(self.basename(), [(sha, pack_entry(ObjectKind.BLOB, b"one"))])
        with open(self.basename() + ".idx", "wb") as f:
            f.write(make_pack_index_v2([(sha, 12, 0)], b"\x01" * 20))
        self.assertRaises(ChecksumMismatch, Pack, self.basename())

    def test_length_mismatch(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"one")
        write_pack(self.basename(), [(sha, pack_entry(ObjectKind.BLOB, b"one"))])
        with open(self.basename() + ".pack", "rb") as f:
            checksum = f.read()[-20:]
        with open(self.basename() + ".idx", "wb") as f:
            f.write(make_pack_index_v2([(sha, 12, 0), (NAMES[4], 40, 0)], checksum))
        self.assertRaises(FileFormatException, Pack, self.basename())

    def test_pack_too_small(self) -> None:
        with open(self.basename() + ".pack", "wb") as f:
            f.write(b"PACK" + struct.pack(">LL", 2, 0))
        self.assertRaises(FileFormatException, PackData, self.basename() + ".pack")

    def test_missing_index(self) -> None:
        sha = raw_object_sha(ObjectKind.BLOB, b"one")
        write_pack(self.basename(), [(sha, pack_entry(ObjectKind.BLOB, b"one"))])
        os.remove(self.basename() + ".idx")
        self.assertRaises(FileNotFoundError, Pack, self.basename())
