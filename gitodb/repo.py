# repo.py -- For dealing with git repositories.
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

"""Repository access.

A repository is opened read-only. Objects are looked up by name, which is
either a (possibly abbreviated) hex object id, or the name of a ref without
its leading "refs/" (for example heads/main or tags/v1.0), or HEAD.
"""

__all__ = [
    "CONTROLDIR",
    "OBJECTDIR",
    "REFSDIR",
    "Repo",
    "read_gitfile",
]

import os
from types import TracebackType
from typing import IO

from . import log_utils
from .config import ConfigFile
from .errors import (
    InvalidObjectName,
    NotBlobError,
    NotCommitError,
    NotGitRepository,
    NotTagError,
    NotTreeError,
    UnknownRef,
    UnsupportedExtension,
    UnsupportedVersion,
)
from .file import GitFile
from .object_store import DiskObjectStore
from .objects import Blob, Commit, ObjectID, ShaFile, Tag, Tree
from .pack import DEFAULT_MAX_DELTA_DEPTH
from .refs import HEADREF, REFS_PREFIX, DiskRefsContainer, check_ref_format

logger = log_utils.getLogger(__name__)

CONTROLDIR = ".git"
OBJECTDIR = "objects"
REFSDIR = "refs"

MIN_ABBREV_LENGTH = 4

_HEX_CHARS = frozenset(b"0123456789abcdefABCDEF")

# Extensions that do not change how objects and refs are read.
_HARMLESS_EXTENSIONS = frozenset([b"noop", b"preciousobjects", b"worktreeconfig"])


def read_gitfile(f: IO[bytes]) -> str:
    """Read a ``.git`` file.

    The first line of the file should start with "gitdir: "

    Args:
      f: File-like object to read from
    Returns: A path
    """
    cs = f.read()
    if not cs.startswith(b"gitdir: "):
        raise NotGitRepository("Expected file to start with 'gitdir: '")
    return cs[len(b"gitdir: ") :].rstrip(b"\r\n").decode("utf-8")


def _is_hex(name: bytes) -> bool:
    return bool(name) and all(c in _HEX_CHARS for c in name)


class Repo:
    """A git repository backed by local disk.

    To open an existing repository, call the constructor with
    the path of the repository.

    A repository holds the file handles of its packs; call .close() to free
    them, or use it as a context manager.

    Attributes:
      path: Path to the working copy (if it exists) or repository control
        directory (if the repository is bare)
      bare: Whether this is a bare repository
    """

    path: str
    bare: bool
    object_store: DiskObjectStore
    refs: DiskRefsContainer

    def __init__(
        self,
        root: str | bytes | os.PathLike[str],
        *,
        max_delta_depth: int = DEFAULT_MAX_DELTA_DEPTH,
    ) -> None:
        """Open a repository on disk.

        Args:
          root: Path to the repository's root.
          max_delta_depth: Longest delta chain resolved in packs
        Raises:
          NotGitRepository: if root is not a repository
          UnsupportedVersion: if the repository format is too new
          UnsupportedExtension: if the repository needs an unknown extension
        """
        root = os.fspath(root)
        if isinstance(root, bytes):
            root = os.fsdecode(root)
        hidden_path = os.path.join(root, CONTROLDIR)
        if os.path.isfile(hidden_path) or os.path.isdir(
            os.path.join(hidden_path, OBJECTDIR)
        ):
            bare = False
        elif os.path.isdir(os.path.join(root, OBJECTDIR)) and os.path.isdir(
            os.path.join(root, REFSDIR)
        ):
            bare = True
        else:
            raise NotGitRepository(f"No git repository was found at {root}")

        self.bare = bare
        if bare is False and os.path.isfile(hidden_path):
            with GitFile(hidden_path, "rb") as f:
                path = read_gitfile(f)
            self._controldir = os.path.join(root, path)
        elif bare is False:
            self._controldir = hidden_path
        else:
            self._controldir = root
        self.path = root

        self._check_config(self.get_config())

        self.refs = DiskRefsContainer(self._controldir)
        self.object_store = DiskObjectStore(
            os.path.join(self._controldir, OBJECTDIR),
            max_delta_depth=max_delta_depth,
        )
        self._ref_table: dict[bytes, ObjectID] | None = None
        logger.debug("opened repository at %s", self._controldir)

    @staticmethod
    def _check_config(config: ConfigFile) -> None:
        format_version = config.get_int("core", "repositoryformatversion", 0)
        assert format_version is not None
        if format_version not in (0, 1):
            raise UnsupportedVersion(format_version)

        for extension, value in config.items((b"extensions",)):
            if extension == b"objectformat":
                if value.lower() != b"sha1":
                    raise UnsupportedExtension(f"objectformat = {value.decode()}")
            elif extension not in _HARMLESS_EXTENSIONS:
                raise UnsupportedExtension(extension.decode("utf-8"))

    @classmethod
    def discover(cls, start: str | bytes | os.PathLike[str] = ".") -> "Repo":
        """Iterate parent directories to discover a repository.

        Return a Repo object for the first parent directory that looks like a
        Git repository.

        Args:
          start: The directory to start discovery from (defaults to '.')
        """
        path = os.path.abspath(os.fsdecode(start))
        while True:
            try:
                return cls(path)
            except NotGitRepository:
                new_path, _tail = os.path.split(path)
                if new_path == path:  # Root reached
                    break
                path = new_path
        raise NotGitRepository(f"No git repository was found at {os.fsdecode(start)}")

    def controldir(self) -> str:
        """Return the path of the control directory."""
        return self._controldir

    def get_config(self) -> ConfigFile:
        """Retrieve the config object.

        Returns: `ConfigFile` object for the ``.git/config`` file; empty when
            the file does not exist.
        """
        path = os.path.join(self._controldir, "config")
        try:
            return ConfigFile.from_path(path)
        except FileNotFoundError:
            ret = ConfigFile()
            ret.path = path
            return ret

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    def close(self) -> None:
        """Close any files opened by this repository."""
        self.object_store.close()

    def __enter__(self) -> "Repo":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def get_refs(self) -> dict[bytes, ObjectID]:
        """Get dictionary with all refs, keyed by their short names.

        Returns: A ``dict`` mapping names like ``heads/main`` to hex SHAs
        """
        if self._ref_table is None:
            self._ref_table = self.refs.as_dict()
        return self._ref_table

    def head(self) -> ObjectID:
        """Return the SHA1 pointed at by HEAD."""
        return self.refs[HEADREF]

    def resolve_name(self, name: bytes | str) -> ObjectID:
        """Turn a name into a hex SHA, or a hex SHA prefix.

        Names consisting only of hex digits are taken as object ids; they
        must be at least four digits long and of even length. Anything else
        is read as the ref "refs/<name>", or HEAD; other refs are not read.

        Raises:
          InvalidObjectName: if a hex name is too short or of odd length
          UnknownRef: if the name is not a ref
          FileFormatException: if the ref holds neither a SHA nor a symref
        """
        if isinstance(name, str):
            name = name.encode("utf-8")
        if _is_hex(name):
            if len(name) < MIN_ABBREV_LENGTH:
                raise InvalidObjectName(
                    name, f"need at least {MIN_ABBREV_LENGTH} hex digits"
                )
            if len(name) % 2:
                raise InvalidObjectName(name, "odd number of hex digits")
            if len(name) > 40:
                raise InvalidObjectName(name, "too many hex digits")
            return name.lower()
        refname = name if name == HEADREF else REFS_PREFIX + name
        if refname != HEADREF and not check_ref_format(refname):
            raise UnknownRef(name)
        try:
            return self.refs[refname]
        except KeyError:
            raise UnknownRef(name) from None

    def get(self, name: bytes | str) -> ShaFile:
        """Retrieve the object a name refers to.

        Raises:
          InvalidObjectName: if the name is neither an object id nor a ref
          ObjectMissing: if no object matches
          AmbiguousObjectName: if an abbreviated id matches several objects
        """
        return self.object_store[self.resolve_name(name)]

    def __getitem__(self, name: bytes | str) -> ShaFile:
        return self.get(name)

    def get_commit(self, name: bytes | str) -> Commit:
        """Retrieve a commit by name."""
        obj = self.get(name)
        if not isinstance(obj, Commit):
            raise NotCommitError(obj.id)
        return obj

    def get_tree(self, name: bytes | str) -> Tree:
        """Retrieve a tree by name."""
        obj = self.get(name)
        if not isinstance(obj, Tree):
            raise NotTreeError(obj.id)
        return obj

    def get_blob(self, name: bytes | str) -> Blob:
        """Retrieve a blob by name."""
        obj = self.get(name)
        if not isinstance(obj, Blob):
            raise NotBlobError(obj.id)
        return obj

    def get_tag(self, name: bytes | str) -> Tag:
        """Retrieve an annotated tag by its tag name (without ``tags/``)."""
        if isinstance(name, str):
            name = name.encode("utf-8")
        obj = self.get(b"tags/" + name)
        if not isinstance(obj, Tag):
            raise NotTagError(obj.id)
        return obj

    def get_head(self, branch: bytes | str | None = None) -> Commit:
        """Retrieve the commit at the tip of a branch.

        Args:
          branch: Branch name (without ``heads/``); defaults to the branch
            HEAD points at
        """
        if branch is None:
            return self.get_commit(self.head())
        if isinstance(branch, str):
            branch = branch.encode("utf-8")
        return self.get_commit(b"heads/" + branch)
