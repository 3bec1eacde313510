# object_store.py -- Object store for git objects
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

"""Git object store interfaces and implementation."""

__all__ = [
    "DiskObjectStore",
    "PACKDIR",
]

import binascii
import os
import zlib
from collections.abc import Iterator

from . import log_utils
from .errors import AmbiguousObjectName, FileFormatException, ObjectMissing
from .file import read_file_if_exists
from .objects import ObjectID, ShaFile, parse_object, valid_hexsha
from .pack import DEFAULT_MAX_DELTA_DEPTH, Pack

logger = log_utils.getLogger(__name__)

PACKDIR = "pack"


class DiskObjectStore:
    """Git-style object store that exists on disk.

    Loose objects are consulted before packs; packs are consulted in order
    of their file names.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        max_delta_depth: int = DEFAULT_MAX_DELTA_DEPTH,
    ) -> None:
        """Open an object store.

        Args:
          path: Path to the objects directory
          max_delta_depth: Longest delta chain resolved in packs
        """
        self.path = os.fspath(path)
        self.pack_dir = os.path.join(self.path, PACKDIR)
        self.max_delta_depth = max_delta_depth
        self._pack_cache: dict[str, Pack] | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    def _update_pack_cache(self) -> dict[str, Pack]:
        """Open every pack that has an index."""
        try:
            pack_dir_contents = os.listdir(self.pack_dir)
        except FileNotFoundError:
            return {}
        pack_files = []
        for name in pack_dir_contents:
            if name.startswith("pack-") and name.endswith(".pack"):
                # a pack without an index has not been fully written
                idx_name = os.path.splitext(name)[0] + ".idx"
                if idx_name in pack_dir_contents:
                    pack_files.append(name[: -len(".pack")])

        packs: dict[str, Pack] = {}
        try:
            for f in sorted(pack_files):
                packs[f] = Pack(
                    os.path.join(self.pack_dir, f),
                    max_delta_depth=self.max_delta_depth,
                )
        except BaseException:
            for pack in packs.values():
                pack.close()
            raise
        logger.debug("loaded %d packs from %s", len(packs), self.pack_dir)
        return packs

    @property
    def packs(self) -> list[Pack]:
        """List with the packs in this store, in lookup order."""
        if self._pack_cache is None:
            self._pack_cache = self._update_pack_cache()
        return list(self._pack_cache.values())

    def close(self) -> None:
        """Close all packs."""
        if self._pack_cache is not None:
            for pack in self._pack_cache.values():
                pack.close()
            self._pack_cache = None

    def _get_shafile_path(self, sha: ObjectID) -> str:
        hexsha = sha.decode("ascii")
        return os.path.join(self.path, hexsha[:2], hexsha[2:])

    def _get_loose_object(self, sha: ObjectID) -> bytes | None:
        """Read a loose object.

        Returns: The inflated "<type> <size>\\0<body>" buffer, or None
        """
        path = self._get_shafile_path(sha)
        compressed = read_file_if_exists(path)
        if compressed is None:
            return None
        try:
            return zlib.decompress(compressed)
        except zlib.error as e:
            raise FileFormatException(
                f"corrupt loose object {sha.decode('ascii')} ({path}): {e}"
            ) from e

    def contains_loose(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by SHA1 and is loose."""
        return os.path.isfile(self._get_shafile_path(sha))

    def contains_packed(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by SHA1 and is packed."""
        return any(sha in pack for pack in self.packs)

    def __contains__(self, sha: ObjectID) -> bool:
        return self.contains_loose(sha) or self.contains_packed(sha)

    def iter_prefix(self, prefix: bytes) -> Iterator[ObjectID]:
        """Iterate over all object SHAs with the given prefix.

        Args:
          prefix: Even-length hex prefix to search for (as bytes)
        Returns:
          Iterator of object SHAs (as ObjectID) matching the prefix
        """
        seen = set()
        dir = prefix[:2].decode("ascii")
        rest = prefix[2:].decode("ascii")
        try:
            names = os.listdir(os.path.join(self.path, dir))
        except (FileNotFoundError, NotADirectoryError):
            names = []
        for name in sorted(names):
            if name.startswith(rest):
                sha = os.fsencode(dir + name)
                if valid_hexsha(sha) and sha not in seen:
                    seen.add(sha)
                    yield sha

        bin_prefix = binascii.unhexlify(prefix)
        for p in self.packs:
            for bin_sha in p.index.iter_prefix(bin_prefix):
                sha = binascii.hexlify(bin_sha)
                if sha not in seen:
                    seen.add(sha)
                    yield sha

    def expand_prefix(self, prefix: bytes) -> ObjectID:
        """Return the only SHA starting with a hex prefix.

        Raises:
          ObjectMissing: if no object matches
          AmbiguousObjectName: if more than one object matches
        """
        candidates = list(self.iter_prefix(prefix))
        if not candidates:
            raise ObjectMissing(prefix)
        if len(candidates) > 1:
            raise AmbiguousObjectName(prefix, candidates)
        return candidates[0]

    def get_raw_object(self, name: bytes) -> tuple[ObjectID, bytes]:
        """Find an object by hex SHA or by an even-length prefix of one.

        Args:
          name: Lowercase hex SHA, or prefix
        Returns: Tuple with the full hex SHA and the tagged object bytes
        Raises:
          ObjectMissing: if no loose or packed object matches
          AmbiguousObjectName: if a prefix matches more than one object
        """
        sha = name if len(name) == 40 else self.expand_prefix(name)
        raw = self._get_loose_object(sha)
        if raw is not None:
            logger.debug("found %s as a loose object", sha.decode("ascii"))
            return sha, raw
        for pack in self.packs:
            raw = pack.search(sha)
            if raw is not None:
                logger.debug("found %s in %r", sha.decode("ascii"), pack)
                return sha, raw
        raise ObjectMissing(sha)

    def __getitem__(self, sha: ObjectID) -> ShaFile:
        """Obtain an object by hex SHA or unique prefix."""
        full_sha, raw = self.get_raw_object(sha)
        try:
            return parse_object(raw, sha=full_sha)
        except FileFormatException as e:
            e.add_context(f"object {full_sha.decode('ascii')}")
            raise
