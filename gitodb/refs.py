# refs.py -- For dealing with git refs
# Copyright (C) 2008-2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Ref handling.

Refs are read from the loose files under refs/ and from packed-refs; a loose
ref overrides a packed one with the same name. Symbolic refs such as HEAD
are followed to the ref they point at.
"""

__all__ = [
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "LOCAL_TAG_PREFIX",
    "REFS_PREFIX",
    "SYMREF",
    "DiskRefsContainer",
    "check_ref_format",
    "parse_symref_value",
    "read_packed_refs",
    "short_ref_name",
]

import os
from collections.abc import Iterator
from typing import IO

from . import log_utils
from .errors import FileFormatException, PackedRefsException, SymrefLoop
from .file import GitFile
from .objects import ObjectID, valid_hexsha

logger = log_utils.getLogger(__name__)

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
REFS_PREFIX = b"refs/"
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
BAD_REF_CHARS = set(b"\177 ~^:?*[")

MAX_SYMREF_DEPTH = 5


def parse_symref_value(contents: bytes) -> bytes:
    """Parse a symref value.

    Args:
      contents: Contents to parse
    Returns: Destination
    """
    if contents.startswith(SYMREF):
        return contents[len(SYMREF) :].rstrip(b"\r\n")
    raise ValueError(contents)


def check_ref_format(refname: Ref) -> bool:
    """Check if a refname is correctly formatted.

    Implements all the same rules as git-check-ref-format[1].

    [1]
    http://www.kernel.org/pub/software/scm/git/docs/git-check-ref-format.html

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    # These could be combined into one big expression, but are listed
    # separately to parallel [1].
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for c in refname:
        if c < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1] in b"/.":
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname:
        return False
    if b"\\" in refname:
        return False
    return True


def short_ref_name(refname: Ref) -> bytes:
    """Return the name a ref is looked up by: its name without "refs/"."""
    if refname.startswith(REFS_PREFIX):
        return refname[len(REFS_PREFIX) :]
    return refname


def _split_ref_line(line: bytes) -> tuple[bytes, bytes]:
    """Split a single ref line into a tuple of SHA1 and name."""
    fields = line.rstrip(b"\n\r").split(b" ")
    if len(fields) != 2:
        raise PackedRefsException(f"invalid ref line {line!r}")
    sha, name = fields
    if not valid_hexsha(sha):
        raise PackedRefsException(f"Invalid hex sha {sha!r}")
    if not check_ref_format(name):
        raise PackedRefsException(f"invalid ref name {name!r}")
    return (sha.lower(), name)


def read_packed_refs(f: IO[bytes]) -> Iterator[tuple[bytes, bytes]]:
    """Read a packed refs file.

    Comment lines and the peeled values of annotated tags are skipped.

    Args:
      f: file-like object to read from
    Returns: Iterator over tuples with SHA1s and ref names.
    """
    have_ref = False
    for line in f:
        if line.startswith(b"#"):
            continue
        if line.startswith(b"^"):
            if not have_ref:
                raise PackedRefsException("unexpected peeled ref line")
            if not valid_hexsha(line[1:].rstrip(b"\r\n")):
                raise PackedRefsException(f"Invalid hex sha {line[1:]!r}")
            have_ref = False
            continue
        if not line.strip():
            continue
        yield _split_ref_line(line)
        have_ref = True


class DiskRefsContainer:
    """Refs container that reads refs from disk."""

    def __init__(self, path: str | bytes | os.PathLike[str]) -> None:
        self.path = os.fsencode(os.fspath(path))
        self._packed_refs: dict[Ref, ObjectID] | None = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def _iter_dir(self, base: bytes) -> Iterator[Ref]:
        refspath = os.path.join(self.path, base.rstrip(b"/"))
        prefix_len = len(os.path.join(self.path, b""))

        for root, dirs, files in os.walk(refspath):
            directory = root[prefix_len:]
            if os.path.sep != "/":
                directory = directory.replace(os.fsencode(os.path.sep), b"/")
            dirs.sort()
            for filename in sorted(files):
                refname = b"/".join([directory, filename])
                if check_ref_format(refname):
                    yield refname

    def allkeys(self) -> set[Ref]:
        """Return all reference keys."""
        allkeys = set()
        if os.path.exists(self.refpath(HEADREF)):
            allkeys.add(HEADREF)
        allkeys.update(self._iter_dir(REFS_PREFIX))
        allkeys.update(self.get_packed_refs())
        return allkeys

    def refpath(self, name: Ref) -> bytes:
        """Return the disk path of a ref."""
        path = name
        if os.path.sep != "/":
            path = path.replace(b"/", os.fsencode(os.path.sep))
        return os.path.join(self.path, path)

    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        """Get contents of the packed-refs file.

        Returns: Dictionary mapping ref names to SHA1s

        Note: Will return an empty dictionary when no packed-refs file is
            present.
        """
        if self._packed_refs is None:
            path = os.path.join(self.path, b"packed-refs")
            try:
                f = GitFile(path, "rb")
            except FileNotFoundError:
                self._packed_refs = {}
                return self._packed_refs
            with f:
                self._packed_refs = {name: sha for sha, name in read_packed_refs(f)}
        return self._packed_refs

    def read_loose_ref(self, name: Ref) -> bytes | None:
        """Read a reference file and return its contents.

        Args:
          name: the refname to read, relative to refpath
        Returns: The stripped contents of the ref file, or None if the file
            does not exist.
        """
        filename = self.refpath(name)
        try:
            with GitFile(filename, "rb") as f:
                return f.readline().rstrip(b"\r\n")
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None

    def read_ref(self, refname: Ref) -> bytes | None:
        """Read a reference without following any references.

        Args:
          refname: The name of the reference
        Returns: The contents of the ref file, or None if it does
            not exist.
        """
        contents = self.read_loose_ref(refname)
        if not contents:
            contents = self.get_packed_refs().get(refname, None)
        return contents

    def follow(self, name: Ref) -> tuple[list[Ref], ObjectID | None]:
        """Follow a reference name.

        Returns: a tuple of (refnames, sha), where refnames are the names of
            references in the chain
        Raises:
          SymrefLoop: if symbolic refs nest too deeply
          FileFormatException: if a ref holds neither a SHA nor a symref
        """
        contents: bytes | None = SYMREF + name
        depth = 0
        refnames = []
        while contents and contents.startswith(SYMREF):
            refname = parse_symref_value(contents)
            refnames.append(refname)
            contents = self.read_ref(refname)
            if not contents:
                return refnames, None
            depth += 1
            if depth > MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, depth)
        assert contents is not None
        if not valid_hexsha(contents):
            raise FileFormatException(
                f"ref {refnames[-1].decode('utf-8', 'replace')} has invalid "
                f"contents {contents!r}"
            )
        return refnames, contents.lower()

    def __contains__(self, refname: bytes) -> bool:
        """Check if a reference exists."""
        if self.read_ref(refname):
            return True
        return False

    def __getitem__(self, name: Ref) -> ObjectID:
        """Get the SHA1 for a reference name.

        This method follows all symbolic references.
        """
        _, sha = self.follow(name)
        if sha is None:
            raise KeyError(name)
        return sha

    def as_dict(self) -> dict[Ref, ObjectID]:
        """Return the resolved SHA of every ref, keyed by its short name.

        Short names drop the leading "refs/", so refs/heads/main is found as
        heads/main; HEAD keeps its name. Symbolic refs that point at a
        missing ref are left out.
        """
        ret = {}
        for refname in sorted(self.allkeys()):
            _, sha = self.follow(refname)
            if sha is None:
                logger.debug("skipping dangling symbolic ref %r", refname)
                continue
            ret[short_ref_name(refname)] = sha
        return ret
