# errors.py -- errors for gitodb
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

"""Exception classes raised while reading a git object database."""

__all__ = [
    "AmbiguousObjectName",
    "ApplyDeltaError",
    "ChecksumMismatch",
    "DeltaChainTooDeep",
    "FileFormatException",
    "InvalidObjectName",
    "NotBlobError",
    "NotCommitError",
    "NotGitRepository",
    "NotTagError",
    "NotTreeError",
    "ObjectFormatException",
    "ObjectMissing",
    "PackedRefsException",
    "SymrefLoop",
    "UnknownRef",
    "UnresolvedDeltas",
    "UnsupportedExtension",
    "UnsupportedVersion",
    "WrongObjectException",
]

import binascii
from collections.abc import Sequence


def _describe(value: bytes | str) -> str:
    if isinstance(value, bytes) and len(value) == 20:
        return binascii.hexlify(value).decode("ascii")
    if isinstance(value, bytes):
        return value.decode("ascii", "replace")
    return value


class ChecksumMismatch(Exception):
    """A checksum didn't match the expected contents."""

    def __init__(
        self,
        expected: bytes | str,
        got: bytes | str,
        extra: str | None = None,
    ) -> None:
        """Initialize a ChecksumMismatch exception.

        Args:
            expected: The expected checksum value (raw bytes or hex string).
            got: The actual checksum value (raw bytes or hex string).
            extra: Optional additional error information.
        """
        self.expected = _describe(expected)
        self.got = _describe(got)
        self.extra = extra
        message = f"Checksum mismatch: Expected {self.expected}, got {self.got}"
        if self.extra is not None:
            message += f"; {extra}"
        Exception.__init__(self, message)


class WrongObjectException(Exception):
    """Baseclass for all the _ is not a _ exceptions on objects.

    Do not instantiate directly.

    Subclasses should define a type_name attribute that indicates what
    was expected if they were raised.
    """

    type_name: str

    def __init__(self, sha: bytes, *args: object, **kwargs: object) -> None:
        """Initialize a WrongObjectException.

        Args:
            sha: The SHA of the object that was not of the expected type.
            *args: Additional positional arguments.
            **kwargs: Additional keyword arguments.
        """
        self.sha = sha
        Exception.__init__(self, f"{sha.decode('ascii')} is not a {self.type_name}")


class NotCommitError(WrongObjectException):
    """Indicates that the sha requested does not point to a commit."""

    type_name = "commit"


class NotTreeError(WrongObjectException):
    """Indicates that the sha requested does not point to a tree."""

    type_name = "tree"


class NotTagError(WrongObjectException):
    """Indicates that the sha requested does not point to a tag."""

    type_name = "tag"


class NotBlobError(WrongObjectException):
    """Indicates that the sha requested does not point to a blob."""

    type_name = "blob"


class ObjectMissing(KeyError):
    """Indicates that a requested object is missing."""

    def __init__(self, sha: bytes) -> None:
        """Initialize an ObjectMissing exception.

        Args:
            sha: The (possibly abbreviated) hex SHA of the missing object.
        """
        self.sha = sha
        KeyError.__init__(self, sha)

    def __str__(self) -> str:
        return f"{self.sha.decode('ascii')} is not in the object store"


class InvalidObjectName(ValueError):
    """A name is neither a usable object id nor a known ref."""

    def __init__(self, name: bytes, reason: str | None = None) -> None:
        """Initialize an InvalidObjectName exception.

        Args:
            name: The name as given by the caller.
            reason: Optional explanation.
        """
        self.name = name
        message = f"invalid object name {name.decode('utf-8', 'replace')!r}"
        if reason is not None:
            message += f": {reason}"
        ValueError.__init__(self, message)


class UnknownRef(InvalidObjectName):
    """The name does not match any ref."""

    def __init__(self, name: bytes) -> None:
        super().__init__(name, "no such ref")


class AmbiguousObjectName(InvalidObjectName):
    """An abbreviated object id matches more than one object."""

    def __init__(self, name: bytes, candidates: Sequence[bytes]) -> None:
        """Initialize an AmbiguousObjectName exception.

        Args:
            name: The abbreviated hex SHA.
            candidates: The hex SHAs of the matching objects.
        """
        self.candidates = sorted(candidates)
        super().__init__(
            name,
            "ambiguous, candidates: "
            + ", ".join(c.decode("ascii") for c in self.candidates),
        )


class NotGitRepository(Exception):
    """Indicates that no Git repository was found."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        """Initialize a NotGitRepository exception.

        Args:
            *args: Error message and additional positional arguments.
            **kwargs: Additional keyword arguments.
        """
        Exception.__init__(self, *args, **kwargs)


class UnsupportedVersion(Exception):
    """Unsupported repository version."""

    def __init__(self, version: int) -> None:
        """Initialize UnsupportedVersion exception.

        Args:
            version: The unsupported repository version
        """
        self.version = version
        Exception.__init__(self, f"unsupported repository format version {version}")


class UnsupportedExtension(Exception):
    """Unsupported repository extension."""

    def __init__(self, extension: str) -> None:
        """Initialize UnsupportedExtension exception.

        Args:
            extension: The unsupported repository extension
        """
        self.extension = extension
        Exception.__init__(self, f"unsupported repository extension {extension}")


class SymrefLoop(Exception):
    """There is a loop between one or more symrefs."""

    def __init__(self, ref: bytes, depth: int) -> None:
        """Initialize SymrefLoop exception."""
        self.ref = ref
        self.depth = depth
        Exception.__init__(
            self, f"symbolic ref {ref.decode('utf-8', 'replace')} nests too deeply"
        )


class FileFormatException(Exception):
    """Base class for exceptions relating to reading git file formats."""

    def add_context(self, context: str) -> None:
        """Prefix the message with where the malformed data was found.

        Args:
            context: Description of the object being read, such as its
                SHA and the file it came from.
        """
        if self.args:
            self.args = (f"{context}: {self.args[0]}", *self.args[1:])
        else:
            self.args = (context,)


class PackedRefsException(FileFormatException):
    """Indicates an error parsing a packed-refs file."""


class ObjectFormatException(FileFormatException):
    """Indicates an error parsing an object."""


class ApplyDeltaError(FileFormatException):
    """Indicates that applying a delta failed."""


class DeltaChainTooDeep(FileFormatException):
    """A delta chain is longer than the configured limit."""

    def __init__(self, offset: int, limit: int) -> None:
        """Initialize a DeltaChainTooDeep exception.

        Args:
            offset: Pack offset of the object being resolved.
            limit: The depth limit that was exceeded.
        """
        self.offset = offset
        self.limit = limit
        FileFormatException.__init__(
            self, f"delta chain at offset {offset} is deeper than {limit}"
        )


class UnresolvedDeltas(FileFormatException):
    """Delta objects could not be resolved."""

    def __init__(self, shas: list[bytes]) -> None:
        """Initialize UnresolvedDeltas exception.

        Args:
            shas: List of hex SHAs of the missing delta bases
        """
        self.shas = shas
        FileFormatException.__init__(
            self,
            "unresolved delta bases: " + ", ".join(s.decode("ascii") for s in shas),
        )
