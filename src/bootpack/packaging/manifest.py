"""JAR manifest model, parser and writer.

The wire format is ``Name: value`` lines terminated by CRLF. A line never
exceeds 72 bytes; longer values continue on following lines that start
with a single space. The main section comes first (``Manifest-Version``
leading) and per-entry sections follow, each introduced by a ``Name``
attribute and separated by blank lines. Attribute names are
case-insensitive.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any

from bootpack.core.errors import ArchiveError

MANIFEST_NAME = "META-INF/MANIFEST.MF"
MANIFEST_VERSION = "Manifest-Version"
MAIN_CLASS = "Main-Class"
START_CLASS = "Start-Class"
CLASS_PATH = "Class-Path"
BOOT_VERSION = "Spring-Boot-Version"
BOOT_CLASSES = "Spring-Boot-Classes"
BOOT_LIB = "Spring-Boot-Lib"

MAX_LINE_BYTES = 72
_LINE_END = b"\r\n"
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,69}$")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class Attributes(MutableMapping[str, str]):
    """Insertion-ordered attribute map with case-insensitive names.

    The first spelling of a name is kept when it is later reassigned.
    """

    def __init__(self, data: Mapping[str, str] | None = None):
        self._items: dict[str, tuple[str, str]] = {}
        if data:
            self.update(data)

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()][1]

    def __setitem__(self, name: str, value: str) -> None:
        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid manifest attribute name: {name!r}")
        key = name.lower()
        original = self._items[key][0] if key in self._items else name
        self._items[key] = (original, str(value))

    def __delitem__(self, name: str) -> None:
        del self._items[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __repr__(self) -> str:
        return f"Attributes({dict(self.items())!r})"

    def copy(self) -> Attributes:
        return Attributes(self)


class Manifest:
    """Main attributes plus named per-entry sections."""

    def __init__(
        self,
        main_attributes: Mapping[str, str] | None = None,
        entries: Mapping[str, Mapping[str, str]] | None = None,
    ):
        self.main_attributes = Attributes(main_attributes)
        self.entries: dict[str, Attributes] = {
            name: Attributes(attrs) for name, attrs in (entries or {}).items()
        }

    @classmethod
    def default(cls) -> Manifest:
        return cls({MANIFEST_VERSION: "1.0"})

    def copy(self) -> Manifest:
        return Manifest(self.main_attributes, self.entries)

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.main_attributes.get(name, default)

    def __getitem__(self, name: str) -> str:
        return self.main_attributes[name]

    def __setitem__(self, name: str, value: str) -> None:
        self.main_attributes[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self.main_attributes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict[str, Any]:
        return {
            "main": dict(self.main_attributes.items()),
            "entries": {name: dict(attrs.items()) for name, attrs in self.entries.items()},
        }

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, data: bytes) -> Manifest:
        """Parse manifest bytes. Malformed content raises ``ArchiveError``."""
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ArchiveError("Manifest is not valid UTF-8", cause=exc) from exc

        sections: list[list[list[str]]] = [[]]
        last: list[str] | None = None
        for lineno, line in enumerate(_LINE_BREAK.split(text), start=1):
            if not line:
                if sections[-1]:
                    sections.append([])
                last = None
                continue
            if line.startswith(" "):
                if last is None:
                    raise ArchiveError(f"Manifest line {lineno}: continuation without attribute")
                last[1] += line[1:]
                continue
            name, sep, value = line.partition(": ")
            if not sep:
                raise ArchiveError(f"Manifest line {lineno}: invalid header {line!r}")
            last = [name, value]
            sections[-1].append(last)

        manifest = cls()
        for index, section in enumerate(s for s in sections if s):
            if index == 0 and not _is_named(section):
                target = manifest.main_attributes
            else:
                entry_name = next((v for k, v in section if k.lower() == "name"), None)
                if entry_name is None:
                    raise ArchiveError("Manifest entry section has no Name attribute")
                target = manifest.entries.setdefault(entry_name, Attributes())
                section = [(k, v) for k, v in section if k.lower() != "name"]
            for name, value in section:
                try:
                    target[name] = value
                except ValueError as exc:
                    raise ArchiveError(str(exc), cause=exc) from exc
        return manifest

    def to_bytes(self) -> bytes:
        """Serialize with CRLF line ends and 72-byte line wrapping."""
        out = bytearray()
        main = self.main_attributes
        if MANIFEST_VERSION in main:
            out += _header(MANIFEST_VERSION, main[MANIFEST_VERSION])
        for name, value in main.items():
            if name.lower() != MANIFEST_VERSION.lower():
                out += _header(name, value)
        out += _LINE_END

        for entry_name, attrs in self.entries.items():
            out += _header("Name", entry_name)
            for name, value in attrs.items():
                out += _header(name, value)
            out += _LINE_END
        return bytes(out)


def _is_named(section: list[list[str]]) -> bool:
    return bool(section) and section[0][0].lower() == "name"


def _header(name: str, value: str) -> bytes:
    return b"".join(line + _LINE_END for line in _wrap(f"{name}: {value}"))


def _wrap(line: str) -> list[bytes]:
    """Split a header into lines of at most 72 bytes, never inside a character."""
    lines: list[bytes] = []
    current = bytearray()
    for char in line:
        encoded = char.encode("utf-8")
        if len(current) + len(encoded) > MAX_LINE_BYTES:
            lines.append(bytes(current))
            current = bytearray(b" ")
        current += encoded
    lines.append(bytes(current))
    return lines


__all__ = [
    "Attributes",
    "BOOT_CLASSES",
    "BOOT_LIB",
    "BOOT_VERSION",
    "CLASS_PATH",
    "MAIN_CLASS",
    "MANIFEST_NAME",
    "MANIFEST_VERSION",
    "MAX_LINE_BYTES",
    "Manifest",
    "START_CLASS",
]
