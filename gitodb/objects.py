# objects.py -- Access to base git objects
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

"""Access to base git objects.

The four object kinds are immutable values. They are built either directly
from their fields, in which case the object id and size are computed from the
canonical serialization, or by decoding a stored body, in which case the store
may supply the id and size it already knows.
"""

__all__ = [
    "Blob",
    "Commit",
    "EntryKind",
    "ObjectID",
    "ObjectKind",
    "RawObjectID",
    "ShaFile",
    "Tag",
    "Tree",
    "TreeEntry",
    "decode_object",
    "encode_object",
    "hex_to_sha",
    "object_header",
    "parse_object",
    "parse_tree",
    "serialize_tree",
    "sha_to_hex",
    "valid_hexsha",
]

import binascii
import hashlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, NamedTuple

from .errors import ChecksumMismatch, ObjectFormatException

ObjectID = bytes
"""A hex-encoded (40 byte) object id."""

RawObjectID = bytes
"""A raw (20 byte) object id."""

_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"
_TAG_HEADER = b"tag"
_TAGGER_HEADER = b"tagger"

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")
_OCTAL_DIGITS = frozenset(b"01234567")


def sha_to_hex(sha: RawObjectID) -> ObjectID:
    """Takes a raw sha and returns the hex of the sha within."""
    hexsha = binascii.hexlify(sha)
    assert len(hexsha) == 40, f"Incorrect length of sha1 string: {hexsha!r}"
    return hexsha


def hex_to_sha(hex: ObjectID | str) -> RawObjectID:
    """Takes a hex sha and returns a binary sha."""
    assert len(hex) == 40, f"Incorrect length of hexsha: {hex!r}"
    try:
        return binascii.unhexlify(hex)
    except binascii.Error as exc:
        if not isinstance(hex, bytes):
            raise
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: bytes | str) -> bool:
    """Check whether a value is a full 40 character hex sha."""
    if len(hex) != 40:
        return False
    if isinstance(hex, str):
        hex = hex.encode("ascii", "replace")
    return all(c in _HEX_DIGITS for c in hex)


class ObjectKind(IntEnum):
    """The four kinds of stored object.

    The values are the type numbers used in pack entry headers.
    """

    COMMIT = 1
    TREE = 2
    BLOB = 3
    TAG = 4

    @property
    def type_name(self) -> bytes:
        return self.name.lower().encode("ascii")

    @classmethod
    def from_type_name(cls, type_name: bytes) -> "ObjectKind":
        try:
            return _KINDS_BY_NAME[type_name]
        except KeyError:
            raise ObjectFormatException(f"unknown object type {type_name!r}") from None


_KINDS_BY_NAME = {kind.type_name: kind for kind in ObjectKind}


class EntryKind(IntEnum):
    """Kind of a tree entry, taken from the high bits of its mode."""

    TREE = 0o04
    BLOB = 0o10
    SYMLINK = 0o12
    GITLINK = 0o16


_ENTRY_KINDS = frozenset(kind.value for kind in EntryKind)


def object_header(kind: ObjectKind | int, length: int) -> bytes:
    """Return an object header for the given numeric type and text length."""
    return ObjectKind(kind).type_name + b" " + str(length).encode("ascii") + b"\0"


def _object_id(kind: ObjectKind, body: bytes) -> ObjectID:
    sha = hashlib.sha1(object_header(kind, len(body)))
    sha.update(body)
    return sha.hexdigest().encode("ascii")


class _ShaFileMixin:
    """Behaviour shared by the four object kinds.

    The dataclasses are frozen, so the cached id and size are set with
    object.__setattr__.

    For a decoded object, id and size describe the stored bytes. These can
    differ from as_raw_string() when the stored body was not canonical, which
    check() reports.
    """

    kind: ClassVar[ObjectKind]
    _sha: ObjectID | None
    _size: int | None

    def _init_cache(self) -> None:
        object.__setattr__(self, "_sha", None)
        object.__setattr__(self, "_size", None)

    @property
    def type_name(self) -> bytes:
        return self.kind.type_name

    @property
    def type_num(self) -> int:
        return int(self.kind)

    def as_raw_string(self) -> bytes:
        """Return the canonical body of this object."""
        return encode_object(self)  # type: ignore[arg-type]

    def as_raw_object(self) -> bytes:
        """Return the header and body, as hashed and stored."""
        body = self.as_raw_string()
        return object_header(self.kind, len(body)) + body

    @property
    def id(self) -> ObjectID:
        """The hex SHA of this object."""
        if self._sha is None:
            object.__setattr__(self, "_sha", _object_id(self.kind, self.as_raw_string()))
        assert self._sha is not None
        return self._sha

    @property
    def size(self) -> int:
        """Length of the body in bytes."""
        if self._size is None:
            object.__setattr__(self, "_size", len(self.as_raw_string()))
        assert self._size is not None
        return self._size

    def check(self) -> None:
        """Check that the canonical form of this object hashes to its id.

        Raises:
          ChecksumMismatch: if the object was read with an id that does not
            match its contents
        """
        if self._sha is None:
            return
        computed = _object_id(self.kind, self.as_raw_string())
        if computed != self._sha:
            raise ChecksumMismatch(self._sha, computed)


@dataclass(frozen=True)
class Blob(_ShaFileMixin):
    """A Git Blob object."""

    kind: ClassVar[ObjectKind] = ObjectKind.BLOB

    data: bytes

    def __post_init__(self) -> None:
        self._init_cache()


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    name: bytes
    mode: int
    sha: ObjectID

    @property
    def kind(self) -> EntryKind:
        return EntryKind(self.mode >> 12)

    @property
    def permissions(self) -> int:
        return self.mode & 0o7777


def parse_tree(text: bytes) -> Iterator[TreeEntry]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
    Returns: iterator of tree entries, in stream order
    Raises:
      ObjectFormatException: if the object was malformed in some way
    """
    count = 0
    length = len(text)
    while count < length:
        mode_end = text.find(b" ", count)
        if mode_end == -1:
            raise ObjectFormatException("truncated tree entry mode")
        mode_text = text[count:mode_end]
        if not mode_text or not all(c in _OCTAL_DIGITS for c in mode_text):
            raise ObjectFormatException(f"invalid mode {mode_text!r}")
        mode = int(mode_text, 8)
        if mode >> 12 not in _ENTRY_KINDS:
            raise ObjectFormatException(f"unknown tree entry kind in mode {mode:o}")
        name_end = text.find(b"\0", mode_end)
        if name_end == -1:
            raise ObjectFormatException("truncated tree entry name")
        name = text[mode_end + 1 : name_end]
        if not name:
            raise ObjectFormatException("empty tree entry name")
        count = name_end + 21
        if count > length:
            raise ObjectFormatException(f"truncated tree entry sha for {name!r}")
        yield TreeEntry(name, mode, sha_to_hex(text[name_end + 1 : count]))


def serialize_tree(items: Iterator[TreeEntry] | tuple[TreeEntry, ...]) -> Iterator[bytes]:
    """Serialize the items in a tree to a text.

    Args:
      items: Iterable over tree entries, in the order they are to be written
    Returns: Serialized tree text as chunks
    """
    for name, mode, hexsha in items:
        yield (b"%o" % mode) + b" " + name + b"\0" + hex_to_sha(hexsha)


@dataclass(frozen=True)
class Tree(_ShaFileMixin):
    """A Git tree object."""

    kind: ClassVar[ObjectKind] = ObjectKind.TREE

    entries: tuple[TreeEntry, ...] = ()

    def __post_init__(self) -> None:
        self._init_cache()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[TreeEntry]:
        return iter(self.entries)

    def __contains__(self, name: object) -> bool:
        return any(entry.name == name for entry in self.entries)

    def __getitem__(self, name: bytes) -> TreeEntry:
        for entry in self.entries:
            if entry.name == name:
                return entry
        raise KeyError(name)


def _parse_message(text: bytes) -> Iterator[tuple[bytes | None, bytes | None]]:
    """Parse a message with a list of fields and a body.

    Continuation lines (starting with a space) are joined to the previous
    field with a newline.

    Args:
      text: the raw body
    Returns: iterator of (field, value) pairs, followed by (None, message).
      The message is None when the text has no blank line.
    """
    key: bytes | None = None
    value = b""
    pos = 0
    end = len(text)
    while pos < end:
        eol = text.find(b"\n", pos)
        line = text[pos:] if eol == -1 else text[pos : eol + 1]
        pos = end if eol == -1 else eol + 1
        if line.startswith(b" "):
            if key is None:
                raise ObjectFormatException("continuation line before first field")
            value += line[1:]
            continue
        if key is not None:
            yield key, value.removesuffix(b"\n")
            key = None
        if line == b"\n":
            yield None, text[pos:]
            return
        try:
            key, value = line.split(b" ", 1)
        except ValueError:
            raise ObjectFormatException(f"malformed header line {line!r}") from None
    if key is not None:
        yield key, value.removesuffix(b"\n")
    yield None, None


def _format_message(
    headers: list[tuple[bytes, bytes]], message: bytes | None
) -> Iterator[bytes]:
    for key, value in headers:
        lines = value.split(b"\n")
        yield key + b" " + lines[0] + b"\n"
        for line in lines[1:]:
            yield b" " + line + b"\n"
    if message is not None:
        yield b"\n"
        yield message


def _check_hexsha(sha: bytes, what: str) -> None:
    if not valid_hexsha(sha):
        raise ObjectFormatException(f"invalid {what} sha {sha!r}")


def _first_line(message: bytes | None) -> bytes:
    if not message:
        return b""
    return message.split(b"\n", 1)[0]


@dataclass(frozen=True)
class Commit(_ShaFileMixin):
    """A git commit object."""

    kind: ClassVar[ObjectKind] = ObjectKind.COMMIT

    tree: ObjectID
    parents: tuple[ObjectID, ...]
    author: bytes
    committer: bytes
    message: bytes | None
    extra: tuple[tuple[bytes, bytes], ...] = field(default=())

    def __post_init__(self) -> None:
        self._init_cache()

    @property
    def short_message(self) -> bytes:
        """First line of the commit message."""
        return _first_line(self.message)


@dataclass(frozen=True)
class Tag(_ShaFileMixin):
    """A Git Tag object."""

    kind: ClassVar[ObjectKind] = ObjectKind.TAG

    object: ObjectID
    object_type: bytes
    name: bytes
    tagger: bytes | None
    message: bytes | None
    extra: tuple[tuple[bytes, bytes], ...] = field(default=())

    def __post_init__(self) -> None:
        self._init_cache()

    @property
    def object_kind(self) -> ObjectKind:
        return ObjectKind.from_type_name(self.object_type)

    @property
    def short_message(self) -> bytes:
        """First line of the tag message."""
        return _first_line(self.message)


ShaFile = Blob | Tree | Commit | Tag


def _decode_blob(body: bytes) -> Blob:
    return Blob(body)


def _decode_tree(body: bytes) -> Tree:
    return Tree(tuple(parse_tree(body)))


def _decode_commit(body: bytes) -> Commit:
    tree = author = committer = None
    parents = []
    extra = []
    message = None
    for key, value in _parse_message(body):
        if key is None:
            message = value
        elif key == _TREE_HEADER:
            if tree is not None:
                raise ObjectFormatException("multiple tree fields")
            _check_hexsha(value, "tree")
            tree = value
        elif key == _PARENT_HEADER:
            _check_hexsha(value, "parent")
            parents.append(value)
        elif key == _AUTHOR_HEADER:
            if author is not None:
                raise ObjectFormatException("multiple author fields")
            author = value
        elif key == _COMMITTER_HEADER:
            if committer is not None:
                raise ObjectFormatException("multiple committer fields")
            committer = value
        else:
            extra.append((key, value))
    for name, value in (
        (_TREE_HEADER, tree),
        (_AUTHOR_HEADER, author),
        (_COMMITTER_HEADER, committer),
    ):
        if value is None:
            raise ObjectFormatException(f"missing {name.decode('ascii')} field")
    assert tree is not None and author is not None and committer is not None
    return Commit(tree, tuple(parents), author, committer, message, tuple(extra))


def _decode_tag(body: bytes) -> Tag:
    obj = object_type = name = tagger = None
    extra = []
    message = None
    for key, value in _parse_message(body):
        if key is None:
            message = value
        elif key == _OBJECT_HEADER:
            if obj is not None:
                raise ObjectFormatException("multiple object fields")
            _check_hexsha(value, "object")
            obj = value
        elif key == _TYPE_HEADER:
            if object_type is not None:
                raise ObjectFormatException("multiple type fields")
            ObjectKind.from_type_name(value)
            object_type = value
        elif key == _TAG_HEADER:
            if name is not None:
                raise ObjectFormatException("multiple tag fields")
            name = value
        elif key == _TAGGER_HEADER:
            if tagger is not None:
                raise ObjectFormatException("multiple tagger fields")
            tagger = value
        else:
            extra.append((key, value))
    for header, value in (
        (_OBJECT_HEADER, obj),
        (_TYPE_HEADER, object_type),
        (_TAG_HEADER, name),
    ):
        if value is None:
            raise ObjectFormatException(f"missing {header.decode('ascii')} field")
    assert obj is not None and object_type is not None and name is not None
    return Tag(obj, object_type, name, tagger, message, tuple(extra))


def _encode_blob(obj: Blob) -> bytes:
    return obj.data


def _encode_tree(obj: Tree) -> bytes:
    return b"".join(serialize_tree(obj.entries))


def _encode_commit(obj: Commit) -> bytes:
    headers = [(_TREE_HEADER, obj.tree)]
    headers.extend((_PARENT_HEADER, p) for p in obj.parents)
    headers.append((_AUTHOR_HEADER, obj.author))
    headers.append((_COMMITTER_HEADER, obj.committer))
    headers.extend(obj.extra)
    return b"".join(_format_message(headers, obj.message))


def _encode_tag(obj: Tag) -> bytes:
    headers = [
        (_OBJECT_HEADER, obj.object),
        (_TYPE_HEADER, obj.object_type),
        (_TAG_HEADER, obj.name),
    ]
    if obj.tagger is not None:
        headers.append((_TAGGER_HEADER, obj.tagger))
    headers.extend(obj.extra)
    return b"".join(_format_message(headers, obj.message))


_DECODERS: dict[ObjectKind, Callable[[bytes], ShaFile]] = {
    ObjectKind.BLOB: _decode_blob,
    ObjectKind.TREE: _decode_tree,
    ObjectKind.COMMIT: _decode_commit,
    ObjectKind.TAG: _decode_tag,
}

_ENCODERS: dict[ObjectKind, Callable[..., bytes]] = {
    ObjectKind.BLOB: _encode_blob,
    ObjectKind.TREE: _encode_tree,
    ObjectKind.COMMIT: _encode_commit,
    ObjectKind.TAG: _encode_tag,
}


def decode_object(
    kind: ObjectKind | int,
    body: bytes,
    *,
    sha: ObjectID | None = None,
    size: int | None = None,
) -> ShaFile:
    """Decode an object body.

    Args:
      kind: Object kind, or its pack type number
      body: The body, without the "<type> <size>\\0" header
      sha: Hex id the body was stored under; computed from body if not given
      size: Size recorded for the body, if known
    Returns: The decoded object
    Raises:
      ObjectFormatException: if the body is malformed or the size disagrees
    """
    try:
        kind = ObjectKind(kind)
    except ValueError:
        raise ObjectFormatException(f"unknown object type number {kind}") from None
    if size is not None and size != len(body):
        raise ObjectFormatException(
            f"{kind.type_name.decode('ascii')} size {size} does not match "
            f"body length {len(body)}"
        )
    obj = _DECODERS[kind](body)
    object.__setattr__(obj, "_size", len(body))
    if sha is None:
        sha = _object_id(kind, body)
    object.__setattr__(obj, "_sha", sha.lower())
    return obj


def encode_object(obj: ShaFile) -> bytes:
    """Serialize an object to its canonical body."""
    return _ENCODERS[obj.kind](obj)


def parse_object(raw: bytes, sha: ObjectID | None = None) -> ShaFile:
    """Decode a "<type> <size>\\0<body>" buffer.

    Args:
      raw: The tagged object, as stored in a loose object or produced by
        pack resolution
      sha: Hex id the object was looked up under, if known
    Raises:
      ObjectFormatException: if the header is malformed
    """
    header_end = raw.find(b"\0")
    if header_end == -1:
        raise ObjectFormatException("missing object header terminator")
    try:
        type_name, size_text = raw[:header_end].split(b" ", 1)
    except ValueError:
        raise ObjectFormatException(f"malformed object header {raw[:header_end]!r}") from None
    if (
        not size_text
        or not size_text.isdigit()
        or (size_text.startswith(b"0") and size_text != b"0")
    ):
        raise ObjectFormatException(f"invalid object size {size_text!r}")
    return decode_object(
        ObjectKind.from_type_name(type_name),
        raw[header_end + 1 :],
        sha=sha,
        size=int(size_text),
    )
