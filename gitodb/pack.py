# pack.py -- For dealing with packed git objects.
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

"""Classes for dealing with packed git objects.

A pack is a compression technique for storing git objects. When there are
several objects with similar content it is possible to store them as a
delta against a base object. The pack file holds the (zlib deflated) objects
and the index file tells you where in the pack file each object lives.

The index files hold a fan-out table of 256 cumulative counts, followed by
the sorted object names, their CRC32 checksums and their offsets in the pack.
To find an object, look up the range of names sharing its first byte in the
fan-out table and bisect within that range.

Only version 2 index files are read.
"""

__all__ = [
    "DEFAULT_MAX_DELTA_DEPTH",
    "DELTA_TYPES",
    "OFS_DELTA",
    "REF_DELTA",
    "Pack",
    "PackData",
    "PackIndex",
    "PackIndexEntry",
    "UnpackedObject",
    "bisect_find_sha",
    "load_pack_index",
    "load_pack_index_file",
    "read_pack_header",
    "read_zlib_chunks",
    "take_msb_bytes",
    "unpack_object",
]

import binascii
import mmap
import os
import zlib
from collections.abc import Callable, Iterator
from hashlib import sha1
from io import UnsupportedOperation
from os import SEEK_END
from struct import unpack_from
from types import TracebackType
from typing import IO, Any

from . import log_utils
from .delta import apply_delta
from .errors import (
    AmbiguousObjectName,
    ChecksumMismatch,
    DeltaChainTooDeep,
    FileFormatException,
    UnresolvedDeltas,
)
from .file import GitFile
from .objects import (
    ObjectID,
    ObjectKind,
    RawObjectID,
    ShaFile,
    decode_object,
    hex_to_sha,
    object_header,
    sha_to_hex,
)

logger = log_utils.getLogger(__name__)

OFS_DELTA = 6
REF_DELTA = 7

DELTA_TYPES = (OFS_DELTA, REF_DELTA)

_OBJECT_TYPES = frozenset(kind.value for kind in ObjectKind)

DEFAULT_MAX_DELTA_DEPTH = 4096

_ZLIB_BUFSIZE = 65536

_INDEX_MAGIC = b"\377tOc"
_PACK_HEADER_SIZE = 12
_HASH_SIZE = 20


def take_msb_bytes(read: Callable[[int], bytes]) -> list[int]:
    """Read bytes marked with most significant bit.

    Args:
      read: Read function
    Returns: List of the bytes read, the last one without the MSB set
    """
    ret: list[int] = []
    while len(ret) == 0 or ret[-1] & 0x80:
        b = read(1)
        if not b:
            raise FileFormatException("truncated variable-length header")
        ret.append(b[0])
    return ret


class UnpackedObject:
    """An entry read from a pack file, before any delta is resolved."""

    __slots__ = [
        "decomp_chunks",  # Decompressed object chunks.
        "decomp_len",  # Decompressed length of this object.
        "delta_base",  # Delta base distance or raw SHA.
        "offset",  # Offset in its pack.
        "pack_type_num",  # Type of this object in the pack (may be a delta).
    ]

    decomp_chunks: list[bytes]
    decomp_len: int
    delta_base: None | bytes | int
    offset: int | None
    pack_type_num: int

    def __init__(
        self,
        pack_type_num: int,
        *,
        delta_base: None | bytes | int = None,
        decomp_len: int = 0,
        offset: int | None = None,
    ) -> None:
        self.offset = offset
        self.pack_type_num = pack_type_num
        self.delta_base = delta_base
        self.decomp_chunks = []
        self.decomp_len = decomp_len

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnpackedObject):
            return False
        return all(getattr(self, slot) == getattr(other, slot) for slot in self.__slots__)

    def __repr__(self) -> str:
        data = [f"{s}={getattr(self, s)!r}" for s in self.__slots__]
        return "{}({})".format(self.__class__.__name__, ", ".join(data))

    def decompressed(self) -> bytes:
        """Return the inflated payload: the object body, or the delta."""
        return b"".join(self.decomp_chunks)


def read_zlib_chunks(
    read_some: Callable[[int], bytes],
    unpacked: UnpackedObject,
    buffer_size: int = _ZLIB_BUFSIZE,
) -> bytes:
    """Read zlib data from a buffer.

    Args:
      read_some: Read function that returns at least one byte, but may
        return less than the requested size.
      unpacked: An UnpackedObject to write result data to. Its decomp_len
        is the expected inflated size; decomp_chunks is filled in.
      buffer_size: Size of the read buffer.
    Returns: Leftover unused data from the decompression.

    Raises:
      zlib.error: if a decompression error occurred.
    """
    if unpacked.decomp_len < 0:
        raise ValueError("non-negative zlib data stream size expected")
    decomp_obj = zlib.decompressobj()

    decomp_len = 0
    while not decomp_obj.eof:
        add = read_some(buffer_size)
        if not add:
            raise zlib.error("EOF before end of zlib stream")
        decomp = decomp_obj.decompress(add)
        decomp_len += len(decomp)
        if decomp_len > unpacked.decomp_len:
            raise zlib.error("decompressed data exceeds expected size")
        unpacked.decomp_chunks.append(decomp)

    if decomp_len != unpacked.decomp_len:
        raise zlib.error("decompressed data does not match expected size")

    return decomp_obj.unused_data


def unpack_object(
    read_all: Callable[[int], bytes],
    read_some: Callable[[int], bytes] | None = None,
    zlib_bufsize: int = _ZLIB_BUFSIZE,
) -> tuple[UnpackedObject, bytes]:
    """Unpack a Git object.

    The header holds the type in bits 4-6 of the first byte and the inflated
    size in the low four bits, extended by seven bits from each following
    byte while the MSB is set. Offset deltas then carry the distance back to
    their base, ref deltas the raw SHA of their base.

    Args:
      read_all: Read function that blocks until the number of requested
        bytes are read.
      read_some: Read function that returns at least one byte, but may not
        return the number of bytes requested.
      zlib_bufsize: An optional buffer size for zlib operations.
    Returns: A tuple of (unpacked, unused), where unused is the unused data
        leftover from decompression.
    Raises:
      FileFormatException: if the entry is truncated or malformed
    """
    if read_some is None:
        read_some = read_all

    raw = take_msb_bytes(read_all)
    type_num = (raw[0] >> 4) & 0x07
    size = raw[0] & 0x0F
    for i, byte in enumerate(raw[1:]):
        size += (byte & 0x7F) << ((i * 7) + 4)

    delta_base: int | bytes | None
    if type_num == OFS_DELTA:
        raw = take_msb_bytes(read_all)
        delta_base_offset = raw[0] & 0x7F
        for byte in raw[1:]:
            delta_base_offset += 1
            delta_base_offset <<= 7
            delta_base_offset += byte & 0x7F
        delta_base = delta_base_offset
    elif type_num == REF_DELTA:
        delta_base = read_all(_HASH_SIZE)
        if len(delta_base) != _HASH_SIZE:
            raise FileFormatException("truncated ref delta base")
    elif type_num in _OBJECT_TYPES:
        delta_base = None
    else:
        raise FileFormatException(f"invalid pack object type {type_num}")

    unpacked = UnpackedObject(type_num, delta_base=delta_base, decomp_len=size)
    try:
        unused = read_zlib_chunks(read_some, unpacked, buffer_size=zlib_bufsize)
    except zlib.error as e:
        raise FileFormatException(f"corrupt object data: {e}") from e
    return unpacked, unused


def bisect_find_sha(
    start: int, end: int, sha: bytes, unpack_name: Callable[[int], bytes]
) -> int | None:
    """Find a SHA in a data blob with sorted SHAs.

    Args:
      start: Start index of range to search
      end: End index of range to search (inclusive)
      sha: Sha to find
      unpack_name: Callback to retrieve SHA by index
    Returns: Index of the SHA, or None if it wasn't found
    """
    while start <= end:
        i = (start + end) // 2
        file_sha = unpack_name(i)
        if file_sha < sha:
            start = i + 1
        elif file_sha > sha:
            end = i - 1
        else:
            return i
    return None


def _load_file_contents(f: IO[bytes], size: int | None = None) -> tuple[Any, int]:
    """Load contents from a file, preferring mmap when possible.

    Args:
      f: File-like object to load
      size: Expected size, or None to determine from file
    Returns: Tuple of (contents, size)
    """
    try:
        fd = f.fileno()
    except (UnsupportedOperation, AttributeError):
        fd = None
    if fd is not None:
        if size is None:
            size = os.fstat(fd).st_size
        if size > 0:
            try:
                contents = mmap.mmap(fd, size, access=mmap.ACCESS_READ)
            except (OSError, ValueError):
                # Can't mmap - perhaps a socket or invalid file descriptor
                pass
            else:
                return contents, size
    contents_bytes = f.read()
    return contents_bytes, len(contents_bytes)


def load_pack_index(path: str | os.PathLike[str]) -> "PackIndex":
    """Load an index file by path.

    Args:
      path: Path to the index file
    Returns: A PackIndex loaded from the given path
    """
    with GitFile(path, "rb") as f:
        return load_pack_index_file(path, f)


def load_pack_index_file(path: str | os.PathLike[str], f: IO[bytes]) -> "PackIndex":
    """Load an index file from a file-like object.

    Args:
      path: Path for the index file
      f: File-like object
    Returns: A PackIndex loaded from the given file
    """
    contents, size = _load_file_contents(f)
    return PackIndex(path, file=f, contents=contents, size=size)


PackIndexEntry = tuple[RawObjectID, int, int]


class PackIndex:
    """Version 2 pack index file.

    The fan-out table at the start of the file holds, for every first byte,
    the number of objects whose name starts with that byte or a smaller one.
    Subtract the count for the previous byte to find the start of the group,
    then bisect the sorted names within it.
    """

    version = 2

    def __init__(
        self,
        filename: str | os.PathLike[str],
        file: IO[bytes] | None = None,
        contents: Any = None,
        size: int | None = None,
    ) -> None:
        """Open a pack index.

        Args:
          filename: Path to the index file
          file: Optional open file object; the index takes ownership
          contents: Optional already loaded (or mmap'd) contents
          size: Optional size of the contents
        Raises:
          FileFormatException: if the index is malformed
        """
        self._filename = filename
        self._contents: Any = b""
        if file is None:
            self._file = GitFile(filename, "rb")
        else:
            self._file = file
        try:
            if contents is None:
                self._contents, self._size = _load_file_contents(self._file, size)
            else:
                self._contents = contents
                self._size = size if size is not None else len(contents)
            self._read_header()
        except BaseException:
            self.close()
            raise

    def _read_header(self) -> None:
        min_size = 8 + 0x100 * 4 + 2 * _HASH_SIZE
        if self._size < min_size:
            raise FileFormatException(
                f"{self.path}: index too short ({self._size} bytes)"
            )
        if self._contents[:4] != _INDEX_MAGIC:
            raise FileFormatException(f"{self.path}: not a version 2 pack index")
        (version,) = unpack_from(">L", self._contents, 4)
        if version != self.version:
            raise FileFormatException(
                f"{self.path}: unsupported pack index version {version}"
            )
        self._fan_out_table = self._read_fan_out_table(8)
        count = len(self)
        self._name_table_offset = 8 + 0x100 * 4
        self._crc32_table_offset = self._name_table_offset + _HASH_SIZE * count
        self._pack_offset_table_offset = self._crc32_table_offset + 4 * count
        self._pack_offset_largetable_offset = self._pack_offset_table_offset + 4 * count
        trailer_offset = self._size - 2 * _HASH_SIZE
        large_table_size = trailer_offset - self._pack_offset_largetable_offset
        if large_table_size < 0 or large_table_size % 8:
            raise FileFormatException(
                f"{self.path}: size {self._size} does not match {count} entries"
            )
        self._large_offset_count = large_table_size // 8

    def _read_fan_out_table(self, start_offset: int) -> list[int]:
        """Read the fan-out table from the index.

        Args:
          start_offset: Offset in the file where the fan-out table starts
        Returns: List of 256 cumulative counts
        """
        ret = []
        previous = 0
        for i in range(0x100):
            (entry,) = unpack_from(">L", self._contents, start_offset + i * 4)
            if entry < previous:
                raise FileFormatException(
                    f"{self.path}: fan-out table decreases at byte {i:#04x}"
                )
            ret.append(entry)
            previous = entry
        return ret

    @property
    def path(self) -> str:
        """Return the path to this index file."""
        return os.fspath(self._filename)

    def close(self) -> None:
        """Close the underlying file and any mmap."""
        self._file.close()
        close_fn = getattr(self._contents, "close", None)
        if close_fn is not None:
            close_fn()

    def __enter__(self) -> "PackIndex":
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        """Return the number of entries in this pack index."""
        return self._fan_out_table[-1]

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over the hex SHAs in this index, in sorted order."""
        for i in range(len(self)):
            yield sha_to_hex(self.name_at(i))

    def __contains__(self, sha: object) -> bool:
        if not isinstance(sha, bytes):
            return False
        try:
            self.object_offset(sha)
        except KeyError:
            return False
        return True

    def fan_out_bucket(self, first_byte: int) -> tuple[int, int]:
        """Return the range of names starting with a byte.

        Returns: Tuple of (first ordinal, number of entries)
        """
        first = self._fan_out_table[first_byte - 1] if first_byte else 0
        return first, self._fan_out_table[first_byte] - first

    def name_at(self, i: int) -> RawObjectID:
        """Return the raw SHA stored at an ordinal."""
        offset = self._name_table_offset + i * _HASH_SIZE
        return bytes(self._contents[offset : offset + _HASH_SIZE])

    def offset_at(self, i: int) -> int:
        """Return the pack offset stored at an ordinal.

        Offsets with the MSB set are indexes into the 64-bit offset table.
        """
        (offset,) = unpack_from(
            ">L", self._contents, self._pack_offset_table_offset + i * 4
        )
        if offset & (2**31):
            large = offset & (2**31 - 1)
            if large >= self._large_offset_count:
                raise FileFormatException(
                    f"{self.path}: large offset index {large} out of range"
                )
            (offset,) = unpack_from(
                ">Q", self._contents, self._pack_offset_largetable_offset + large * 8
            )
        return offset

    def crc32_at(self, i: int) -> int:
        """Return the CRC32 stored at an ordinal."""
        (crc32,) = unpack_from(">L", self._contents, self._crc32_table_offset + i * 4)
        return crc32

    def iterentries(self) -> Iterator[PackIndexEntry]:
        """Iterate over the entries in this pack index.

        Returns: iterator over tuples with object name, offset in packfile and
            crc32 checksum.
        """
        for i in range(len(self)):
            yield self.name_at(i), self.offset_at(i), self.crc32_at(i)

    def lookup(self, sha: RawObjectID, allow_prefix: bool = True) -> int | None:
        """Find the ordinal of an object.

        Args:
          sha: Raw SHA, or a prefix of one
          allow_prefix: Whether a prefix shorter than a full SHA is accepted
        Returns: The ordinal of the only matching entry, or None
        Raises:
          AmbiguousObjectName: if the prefix matches more than one entry
        """
        if not 0 < len(sha) <= _HASH_SIZE:
            raise ValueError(f"invalid sha length {len(sha)}")
        if len(sha) < _HASH_SIZE and not allow_prefix:
            raise ValueError("full sha required")
        first, count = self.fan_out_bucket(sha[0])
        if count == 0:
            return None
        end = first + count
        if len(sha) == _HASH_SIZE:
            return bisect_find_sha(first, end - 1, sha, self.name_at)
        lo, hi = first, end
        while lo < hi:
            mid = (lo + hi) // 2
            if self.name_at(mid) < sha:
                lo = mid + 1
            else:
                hi = mid
        if lo == end or not self.name_at(lo).startswith(sha):
            return None
        if lo + 1 < end and self.name_at(lo + 1).startswith(sha):
            raise AmbiguousObjectName(
                binascii.hexlify(sha),
                [sha_to_hex(name) for name in self.iter_prefix(sha)],
            )
        return lo

    def object_offset(self, sha: ObjectID | RawObjectID) -> int:
        """Return the offset in to the corresponding packfile for the object.

        Args:
          sha: Hex or raw SHA
        Raises:
          KeyError: if the object is not in this index
        """
        if len(sha) == 40:
            sha = hex_to_sha(sha)
        i = self.lookup(sha, allow_prefix=False)
        if i is None:
            raise KeyError(sha)
        return self.offset_at(i)

    def iter_prefix(self, prefix: bytes) -> Iterator[RawObjectID]:
        """Iterate over all raw SHAs with the given raw prefix."""
        first, count = self.fan_out_bucket(prefix[0])
        started = False
        for i in range(first, first + count):
            name = self.name_at(i)
            if name.startswith(prefix):
                yield name
                started = True
            elif started:
                break

    def check(self) -> None:
        """Check that the stored checksum matches the actual checksum."""
        actual = self.calculate_checksum()
        stored = self.get_stored_checksum()
        if actual != stored:
            raise ChecksumMismatch(stored, actual)

    def calculate_checksum(self) -> bytes:
        """Calculate the SHA1 checksum over this pack index.

        Returns: This is a 20-byte binary digest
        """
        return sha1(self._contents[: self._size - _HASH_SIZE]).digest()

    def get_pack_checksum(self) -> bytes:
        """Return the SHA1 checksum stored for the corresponding packfile.

        Returns: 20-byte binary digest
        """
        return bytes(self._contents[self._size - 2 * _HASH_SIZE : self._size - _HASH_SIZE])

    def get_stored_checksum(self) -> bytes:
        """Return the SHA1 checksum stored for this index.

        Returns: 20-byte binary digest
        """
        return bytes(self._contents[self._size - _HASH_SIZE : self._size])


def read_pack_header(read: Callable[[int], bytes]) -> tuple[int, int]:
    """Read the header of a pack file.

    Args:
      read: Read function
    Returns: Tuple of (pack version, number of objects).
    """
    header = read(_PACK_HEADER_SIZE)
    if len(header) < _PACK_HEADER_SIZE:
        raise FileFormatException("file too short to contain pack")
    if header[:4] != b"PACK":
        raise FileFormatException(f"Invalid pack header {header!r}")
    (version,) = unpack_from(">L", header, 4)
    if version not in (2, 3):
        raise FileFormatException(f"Unsupported pack version {version}")
    (num_objects,) = unpack_from(">L", header, 8)
    return (version, num_objects)


class PackData:
    """The data contained in a packfile.

    The objects within are either complete or a delta against another.
    Complete objects are stored as zlib deflated data, preceded by a header
    holding their type and inflated size.
    """

    def __init__(
        self, filename: str | os.PathLike[str], file: IO[bytes] | None = None
    ) -> None:
        """Open the pack file with the given filename.

        Raises:
          FileFormatException: if the file is not a pack
        """
        self._filename = filename
        if file is None:
            self._file = GitFile(self._filename, "rb")
        else:
            self._file = file
        try:
            (self.version, self._num_objects) = read_pack_header(self._file.read)
            self._file.seek(0, SEEK_END)
            self._size = self._file.tell()
        except BaseException:
            self._file.close()
            raise
        if self._size < _PACK_HEADER_SIZE + _HASH_SIZE:
            self._file.close()
            raise FileFormatException(
                f"{self._filename} is too small for a packfile ({self._size} bytes)"
            )

    @property
    def filename(self) -> str:
        """Base filename without directory path."""
        return os.path.basename(self._filename)

    @property
    def path(self) -> str | os.PathLike[str]:
        return self._filename

    def close(self) -> None:
        """Close the underlying pack file."""
        self._file.close()

    def __enter__(self) -> "PackData":
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        """Returns the number of objects in this pack."""
        return self._num_objects

    def calculate_checksum(self) -> bytes:
        """Calculate the SHA1 of everything but the trailing checksum."""
        sha = sha1()
        self._file.seek(0)
        todo = self._size - _HASH_SIZE
        while todo > 0:
            data = self._file.read(min(todo, _ZLIB_BUFSIZE))
            if not data:
                raise FileFormatException(f"{self._filename} shrank while reading")
            sha.update(data)
            todo -= len(data)
        return sha.digest()

    def get_stored_checksum(self) -> bytes:
        """Return the expected checksum stored in this pack."""
        self._file.seek(-_HASH_SIZE, SEEK_END)
        return self._file.read(_HASH_SIZE)

    def check(self) -> None:
        """Check the consistency of this pack."""
        actual = self.calculate_checksum()
        stored = self.get_stored_checksum()
        if actual != stored:
            raise ChecksumMismatch(stored, actual)

    def get_unpacked_object_at(self, offset: int) -> UnpackedObject:
        """Given offset in the packfile return a UnpackedObject."""
        if not _PACK_HEADER_SIZE <= offset < self._size - _HASH_SIZE:
            raise FileFormatException(
                f"{self._filename}: object offset {offset} out of range"
            )
        self._file.seek(offset)
        unpacked, _ = unpack_object(self._file.read)
        unpacked.offset = offset
        return unpacked


class Pack:
    """A Git pack object: the pack data together with its index."""

    _data: PackData | None
    _idx: PackIndex | None

    def __init__(
        self, basename: str, *, max_delta_depth: int = DEFAULT_MAX_DELTA_DEPTH
    ) -> None:
        """Open a pack.

        Both files are opened immediately and released by close(), or
        straight away when opening fails.

        Args:
          basename: Base path for pack files (without .pack/.idx extension)
          max_delta_depth: Longest delta chain that will be resolved
        Raises:
          FileFormatException: if either file is malformed
          ChecksumMismatch: if the index does not belong to the pack
        """
        self._basename = basename
        self.max_delta_depth = max_delta_depth
        self._idx_path = self._basename + ".idx"
        self._data_path = self._basename + ".pack"
        self._data = None
        self._idx = None
        if not basename:
            return
        self._idx = load_pack_index(self._idx_path)
        try:
            self._data = PackData(self._data_path)
            self.check_length_and_checksum()
        except BaseException:
            self.close()
            raise
        logger.debug("opened pack %s with %d objects", basename, len(self._idx))

    @classmethod
    def from_objects(
        cls,
        data: PackData,
        idx: PackIndex,
        *,
        max_delta_depth: int = DEFAULT_MAX_DELTA_DEPTH,
    ) -> "Pack":
        """Create a new pack object from pack data and index objects."""
        ret = cls("", max_delta_depth=max_delta_depth)
        ret._data = data
        ret._idx = idx
        ret.check_length_and_checksum()
        return ret

    @property
    def data(self) -> PackData:
        """The pack data object being used."""
        assert self._data is not None, "pack is closed"
        return self._data

    @property
    def index(self) -> PackIndex:
        """The index being used."""
        assert self._idx is not None, "pack is closed"
        return self._idx

    def close(self) -> None:
        """Close the pack file and index."""
        if self._data is not None:
            self._data.close()
            self._data = None
        if self._idx is not None:
            self._idx.close()
            self._idx = None

    def __enter__(self) -> "Pack":
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        """Number of entries in this pack."""
        return len(self.index)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._basename!r})"

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over all the hex SHAs of the objects in this pack."""
        return iter(self.index)

    def check_length_and_checksum(self) -> None:
        """Sanity check the length and checksum of the pack index and data."""
        if len(self.index) != len(self.data):
            raise FileFormatException(
                f"Length mismatch: {len(self.index)} (index) != "
                f"{len(self.data)} (data)"
            )
        idx_stored_checksum = self.index.get_pack_checksum()
        data_stored_checksum = self.data.get_stored_checksum()
        if idx_stored_checksum != data_stored_checksum:
            raise ChecksumMismatch(idx_stored_checksum, data_stored_checksum)

    def check(self) -> None:
        """Check the integrity of this pack.

        Raises:
          ChecksumMismatch: if a checksum for the index, data or an object
            is wrong
        """
        self.index.check()
        self.data.check()
        for sha in self:
            self[sha].check()

    def get_stored_checksum(self) -> bytes:
        """Return the stored checksum of the pack data."""
        return self.data.get_stored_checksum()

    def __contains__(self, sha1: object) -> bool:
        """Check whether this pack contains a particular SHA1."""
        return sha1 in self.index

    def iter_prefix(self, prefix: ObjectID) -> Iterator[ObjectID]:
        """Iterate over the hex SHAs in this pack starting with a hex prefix."""
        for name in self.index.iter_prefix(binascii.unhexlify(prefix)):
            yield sha_to_hex(name)

    def search(self, hash_or_prefix: ObjectID) -> bytes | None:
        """Look up an object by hex SHA or an even-length prefix of one.

        Returns: The object as "<type> <size>\\0<body>", or None if this pack
            does not have it
        Raises:
          AmbiguousObjectName: if a prefix matches more than one object
        """
        try:
            raw_sha = binascii.unhexlify(hash_or_prefix)
        except binascii.Error as e:
            raise ValueError(f"invalid hex sha {hash_or_prefix!r}") from e
        i = self.index.lookup(raw_sha)
        if i is None:
            return None
        type_num, body = self._resolve_named(
            self.index.name_at(i), self.index.offset_at(i)
        )
        return object_header(type_num, len(body)) + body

    def get_raw(self, sha1: RawObjectID | ObjectID) -> tuple[int, bytes]:
        """Get raw object data by SHA1.

        Returns: Tuple with the object type number and body
        Raises:
          KeyError: if the object is not in this pack
        """
        if len(sha1) == 40:
            sha1 = hex_to_sha(sha1)
        offset = self.index.object_offset(sha1)
        return self._resolve_named(sha1, offset)

    def __getitem__(self, sha1: ObjectID | RawObjectID) -> ShaFile:
        """Retrieve the specified SHA1."""
        type_num, body = self.get_raw(sha1)
        if len(sha1) == _HASH_SIZE:
            sha1 = sha_to_hex(sha1)
        return decode_object(type_num, body, sha=sha1)

    def _resolve_named(self, sha: RawObjectID, offset: int) -> tuple[int, bytes]:
        try:
            return self.resolve_object(offset)
        except FileFormatException as e:
            e.add_context(
                f"{self._data_path}: object {sha_to_hex(sha).decode('ascii')} "
                f"at offset {offset}"
            )
            raise

    def resolve_object(self, offset: int) -> tuple[int, bytes]:
        """Resolve the object at an offset, applying any deltas.

        The chain is walked down to its base first, then the deltas are
        applied from the base upwards. The result takes the type of the base.

        Returns: Tuple with object type number and body
        Raises:
          FileFormatException: on a cycle or malformed entry
          DeltaChainTooDeep: if the chain is longer than max_delta_depth
          UnresolvedDeltas: if a ref delta base is not in this pack
        """
        delta_stack: list[bytes] = []
        seen: set[int] = set()
        unpacked = self.data.get_unpacked_object_at(offset)
        while unpacked.pack_type_num in DELTA_TYPES:
            assert unpacked.offset is not None
            if unpacked.offset in seen:
                raise FileFormatException(
                    f"delta cycle through offset {unpacked.offset}"
                )
            seen.add(unpacked.offset)
            if len(delta_stack) >= self.max_delta_depth:
                raise DeltaChainTooDeep(offset, self.max_delta_depth)
            delta_stack.append(unpacked.decompressed())
            if unpacked.pack_type_num == OFS_DELTA:
                assert isinstance(unpacked.delta_base, int)
                base_offset = unpacked.offset - unpacked.delta_base
            else:
                assert isinstance(unpacked.delta_base, bytes)
                try:
                    base_offset = self.index.object_offset(unpacked.delta_base)
                except KeyError:
                    raise UnresolvedDeltas([sha_to_hex(unpacked.delta_base)]) from None
            unpacked = self.data.get_unpacked_object_at(base_offset)
        type_num = unpacked.pack_type_num
        body = unpacked.decompressed()
        for delta in reversed(delta_stack):
            body = apply_delta(body, delta)
        if delta_stack:
            logger.debug(
                "resolved delta chain of depth %d at offset %d", len(delta_stack), offset
            )
        return type_num, body
