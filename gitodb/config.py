# config.py - Reading of git config files
# Copyright (C) 2011-2013 Jelmer Vernooij and others
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

"""Reading of git config files.

Only the repository config file is consulted, and only for the settings that
decide whether the object database can be read.
"""

__all__ = [
    "Config",
    "ConfigFile",
    "Section",
]

import os
from collections.abc import Iterator
from typing import IO

from .file import GitFile

Section = tuple[bytes, ...]
SectionLike = bytes | str | tuple[bytes | str, ...]
Name = bytes
NameLike = bytes | str
Value = bytes


def _to_bytes(value: bytes | str, encoding: str = "utf-8") -> bytes:
    if isinstance(value, str):
        return value.encode(encoding)
    return value


def _section_key(section: SectionLike) -> Section:
    """Normalize a section to its lookup key.

    Section names are case-insensitive, subsection names are not.
    """
    if not isinstance(section, tuple):
        section = (section,)
    parts = tuple(_to_bytes(s) for s in section)
    return (parts[0].lower(), *parts[1:])


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_int(
        self, section: SectionLike, name: NameLike, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as integer.

        The k, m and g suffixes scale the value by 1024, 1024**2 and 1024**3.
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        scale = {b"k": 1024, b"m": 1024**2, b"g": 1024**3}.get(value[-1:].lower())
        try:
            if scale is not None:
                return int(value[:-1]) * scale
            return int(value)
        except ValueError as e:
            raise ValueError(f"not a valid integer: {value!r}") from e

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Iterate over the configuration pairs for a specific section.

        Args:
          section: Tuple with section name and optional subsection name
        Returns:
          Iterator over (name, value) pairs
        """
        raise NotImplementedError(self.items)

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections.

        Returns: Iterator over section tuples
        """
        raise NotImplementedError(self.sections)


_ESCAPE_TABLE = {
    ord(b"\\"): ord(b"\\"),
    ord(b'"'): ord(b'"'),
    ord(b"n"): ord(b"\n"),
    ord(b"t"): ord(b"\t"),
    ord(b"b"): ord(b"\b"),
}
_COMMENT_CHARS = [ord(b"#"), ord(b";")]
_WHITESPACE_CHARS = [ord(b"\t"), ord(b" ")]


def _parse_string(value: bytes) -> bytes:
    value_array = bytearray(value.strip())
    ret = bytearray()
    whitespace = bytearray()
    in_quotes = False
    i = 0
    while i < len(value_array):
        c = value_array[i]
        if c == ord(b"\\"):
            i += 1
            if whitespace:
                ret.extend(whitespace)
                whitespace = bytearray()
            if i >= len(value_array):
                ret.append(ord(b"\\"))
            elif value_array[i] in _ESCAPE_TABLE:
                ret.append(_ESCAPE_TABLE[value_array[i]])
            else:
                # Unknown escape: keep the backslash, reread the character
                ret.append(ord(b"\\"))
                i -= 1
        elif c == ord(b'"'):
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            break
        elif c in _WHITESPACE_CHARS:
            whitespace.append(c)
        else:
            if whitespace:
                ret.extend(whitespace)
                whitespace = bytearray()
            ret.append(c)
        i += 1

    if in_quotes:
        raise ValueError("missing end quote")

    return bytes(ret)


def _check_variable_name(name: bytes) -> bool:
    for i in range(len(name)):
        c = name[i : i + 1]
        if not c.isalnum() and c != b"-":
            return False
    return True


def _check_section_name(name: bytes) -> bool:
    for i in range(len(name)):
        c = name[i : i + 1]
        if not c.isalnum() and c not in (b"-", b"."):
            return False
    return True


def _strip_comments(line: bytes) -> bytes:
    string_open = False
    for i, character in enumerate(line):
        # Comment characters outside balanced quotes denote comment start
        if character == ord(b'"'):
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _is_line_continuation(value: bytes) -> bool:
    """Check if a value ends with an unescaped line continuation backslash."""
    content = value.rstrip(b"\r\n")
    if content == value:
        return False
    backslash_count = len(content) - len(content.rstrip(b"\\"))
    return backslash_count % 2 == 1


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    # Parse section header ("[bla]")
    line = _strip_comments(line).rstrip()
    in_quotes = False
    escaped = False
    for i, c in enumerate(line):
        if escaped:
            escaped = False
            continue
        if c == ord(b'"'):
            in_quotes = not in_quotes
        if c == ord(b"\\"):
            escaped = True
        if c == ord(b"]") and not in_quotes:
            last = i
            break
    else:
        raise ValueError("expected trailing ]")
    pts = line[1:last].split(b" ", 1)
    line = line[last + 1 :]
    section: Section
    if not _check_section_name(pts[0]):
        raise ValueError(f"invalid section name {pts[0]!r}")
    if len(pts) == 2:
        if pts[1][:1] != b'"' or pts[1][-1:] != b'"':
            raise ValueError(f"Invalid subsection {pts[1]!r}")
        section = (pts[0], pts[1][1:-1])
    else:
        pts = pts[0].split(b".", 1)
        if len(pts) == 2:
            section = (pts[0], pts[1])
        else:
            section = (pts[0],)
    return section, line


class ConfigFile(Config):
    """A Git configuration file, like .git/config."""

    def __init__(self) -> None:
        self.path: str | None = None
        self._values: dict[Section, dict[Name, Value]] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def get(self, section: SectionLike, name: NameLike) -> Value:
        try:
            settings = self._values[_section_key(section)]
        except KeyError as e:
            raise KeyError(name) from e
        return settings[_to_bytes(name).lower()]

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        return iter(self._values.get(_section_key(section), {}).items())

    def sections(self) -> Iterator[Section]:
        return iter(self._values.keys())

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: when the file is not valid git-config syntax
        """
        ret = cls()
        section: Section | None = None
        setting: bytes | None = None
        continuation = b""
        for lineno, line in enumerate(f.readlines(), 1):
            if lineno == 1 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            try:
                if setting is None:
                    line = line.lstrip()
                    if line[:1] == b"[":
                        section, line = _parse_section_header_line(line)
                        section = _section_key(section)
                        ret._values.setdefault(section, {})
                    if _strip_comments(line).strip() == b"":
                        continue
                    if section is None:
                        raise ValueError(f"setting {line!r} without section")
                    try:
                        setting, value = line.split(b"=", 1)
                    except ValueError:
                        setting = _strip_comments(line)
                        value = b"true"
                    setting = setting.strip()
                    if not _check_variable_name(setting):
                        raise ValueError(f"invalid variable name {setting!r}")
                    continuation = b""
                else:
                    value = line
                if _is_line_continuation(value):
                    continuation += value.rstrip(b"\r\n")[:-1]
                    continue
                assert section is not None
                ret._values[section][setting.lower()] = _parse_string(
                    continuation + value
                )
                setting = None
            except ValueError as e:
                raise ValueError(f"{e} (line {lineno})") from e
        if setting is not None:
            raise ValueError(f"unterminated continuation for {setting!r}")
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with GitFile(abs_path, "rb") as f:
            ret = cls.from_file(f)
            ret.path = abs_path
            return ret
