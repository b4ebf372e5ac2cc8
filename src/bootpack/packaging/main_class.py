"""Locate the class holding ``public static void main(String[])`` in an archive.

Class files are parsed directly: the constant pool is walked to resolve
names, then methods are checked for a main signature and class-level
annotations are collected so a preferred annotation can break ties.
"""

from __future__ import annotations

import struct
import time
import zipfile
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from bootpack.core.errors import MainClassNotFoundError
from bootpack.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ANNOTATION = "org.springframework.boot.autoconfigure.SpringBootApplication"

# Scans slower than this notify the registered timeout listeners.
FIND_WARNING_TIMEOUT = 10.0

MainClassTimeoutListener = Callable[[float, "str | None"], None]

CLASS_MAGIC = 0xCAFEBABE
ACC_PUBLIC = 0x0001
ACC_STATIC = 0x0008
MAIN_METHOD_NAME = "main"
MAIN_METHOD_DESCRIPTOR = "([Ljava/lang/String;)V"

_ANNOTATION_ATTRIBUTES = ("RuntimeVisibleAnnotations", "RuntimeInvisibleAnnotations")

_CONSTANT_UTF8 = 1
# Constant pool tag -> payload size, for every tag but Utf8.
_CONSTANT_SIZES = {
    3: 4,  # Integer
    4: 4,  # Float
    5: 8,  # Long
    6: 8,  # Double
    7: 2,  # Class
    8: 2,  # String
    9: 4,  # Fieldref
    10: 4,  # Methodref
    11: 4,  # InterfaceMethodref
    12: 4,  # NameAndType
    15: 3,  # MethodHandle
    16: 2,  # MethodType
    17: 4,  # Dynamic
    18: 4,  # InvokeDynamic
    19: 2,  # Module
    20: 2,  # Package
}
_WIDE_CONSTANTS = (5, 6)


class ClassFormatError(ValueError):
    """A class file could not be parsed."""


@dataclass
class ClassInfo:
    name: str
    has_main_method: bool = False
    annotations: set[str] = field(default_factory=set)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def _take(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise ClassFormatError("Unexpected end of class file")
        chunk = self.data[self.pos : end]
        self.pos = end
        return chunk

    def u1(self) -> int:
        return self._take(1)[0]

    def u2(self) -> int:
        return struct.unpack(">H", self._take(2))[0]

    def u4(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def skip(self, size: int) -> None:
        self._take(size)

    def bytes(self, size: int) -> bytes:
        return self._take(size)


def _descriptor_to_class_name(descriptor: str) -> str:
    if descriptor.startswith("L") and descriptor.endswith(";"):
        descriptor = descriptor[1:-1]
    return descriptor.replace("/", ".")


def _skip_element_value(reader: _Reader) -> None:
    tag = chr(reader.u1())
    if tag in "BCDFIJSZs" or tag == "c":
        reader.skip(2)
    elif tag == "e":
        reader.skip(4)
    elif tag == "@":
        _skip_annotation(reader)
    elif tag == "[":
        for _ in range(reader.u2()):
            _skip_element_value(reader)
    else:
        raise ClassFormatError(f"Unknown element value tag {tag!r}")


def _skip_annotation(reader: _Reader) -> int:
    type_index = reader.u2()
    for _ in range(reader.u2()):
        reader.skip(2)
        _skip_element_value(reader)
    return type_index


def parse_class(data: bytes, name: str) -> ClassInfo:
    """Parse class file bytes into the facts main-class detection needs."""
    reader = _Reader(data)
    if reader.u4() != CLASS_MAGIC:
        raise ClassFormatError(f"{name} is not a class file")
    reader.skip(4)  # minor, major

    utf8: dict[int, str] = {}
    count = reader.u2()
    index = 1
    while index < count:
        tag = reader.u1()
        if tag == _CONSTANT_UTF8:
            utf8[index] = reader.bytes(reader.u2()).decode("utf-8", errors="replace")
        elif tag in _CONSTANT_SIZES:
            reader.skip(_CONSTANT_SIZES[tag])
        else:
            raise ClassFormatError(f"Unknown constant pool tag {tag} in {name}")
        index += 2 if tag in _WIDE_CONSTANTS else 1

    info = ClassInfo(name=name)
    reader.skip(6)  # access flags, this class, super class
    reader.skip(2 * reader.u2())  # interfaces

    def skip_attributes() -> None:
        for _ in range(reader.u2()):
            reader.skip(2)
            reader.skip(reader.u4())

    for _ in range(reader.u2()):  # fields
        reader.skip(6)
        skip_attributes()

    for _ in range(reader.u2()):  # methods
        access = reader.u2()
        method_name = utf8.get(reader.u2())
        descriptor = utf8.get(reader.u2())
        if (
            method_name == MAIN_METHOD_NAME
            and descriptor == MAIN_METHOD_DESCRIPTOR
            and access & (ACC_PUBLIC | ACC_STATIC) == ACC_PUBLIC | ACC_STATIC
        ):
            info.has_main_method = True
        skip_attributes()

    for _ in range(reader.u2()):  # class attributes
        attribute_name = utf8.get(reader.u2())
        length = reader.u4()
        if attribute_name not in _ANNOTATION_ATTRIBUTES:
            reader.skip(length)
            continue
        body = _Reader(reader.bytes(length))
        for _ in range(body.u2()):
            type_index = _skip_annotation(body)
            descriptor = utf8.get(type_index)
            if descriptor:
                info.annotations.add(_descriptor_to_class_name(descriptor))
    return info


def _entry_sort_key(name: str) -> tuple[int, str]:
    return (name.count("/"), name)


def _class_name(entry_name: str, classes_location: str) -> str:
    name = entry_name[len(classes_location) :]
    name = name.replace("/", ".").replace("\\", ".")
    return name[: -len(".class")]


def iter_main_classes(archive: zipfile.ZipFile, classes_location: str = "") -> Iterator[ClassInfo]:
    """Yield classes with a main method, shallowest packages first."""
    names = sorted(
        (
            info.filename
            for info in archive.infolist()
            if info.filename.endswith(".class") and info.filename.startswith(classes_location)
        ),
        key=_entry_sort_key,
    )
    for entry_name in names:
        class_name = _class_name(entry_name, classes_location)
        try:
            parsed = parse_class(archive.read(entry_name), class_name)
        except ClassFormatError as exc:
            logger.warning("main_class.unreadable", entry=entry_name, error=str(exc))
            continue
        if parsed.has_main_method:
            yield parsed


def select_main_class(candidates: Iterable[ClassInfo], annotation: str | None = DEFAULT_ANNOTATION) -> str | None:
    """Pick the single main class, preferring classes carrying ``annotation``."""
    found = list(candidates)
    matching = [c for c in found if annotation and annotation in c.annotations] or found
    if len(matching) > 1:
        names = ", ".join(c.name for c in matching)
        raise MainClassNotFoundError(
            f"Unable to find a single main class from the following candidates [{names}]"
        ).with_context(candidates=[c.name for c in matching])
    return matching[0].name if matching else None


def find_single_main_class(
    archive: zipfile.ZipFile,
    classes_location: str = "",
    annotation: str | None = DEFAULT_ANNOTATION,
) -> str | None:
    return select_main_class(iter_main_classes(archive, classes_location), annotation)


def find_main_class_with_timeout_warning(
    archive: zipfile.ZipFile,
    classes_location: str = "",
    annotation: str | None = DEFAULT_ANNOTATION,
    listeners: Iterable[MainClassTimeoutListener] = (),
    clock: Callable[[], float] = time.monotonic,
) -> str | None:
    """Run the scan to completion, notifying ``listeners`` when it was slow."""
    started = clock()
    main_class = find_single_main_class(archive, classes_location, annotation)
    elapsed = clock() - started
    if elapsed > FIND_WARNING_TIMEOUT:
        logger.warning("main_class.slow_scan", elapsed_seconds=round(elapsed, 3), main_class=main_class)
        for listener in listeners:
            listener(elapsed, main_class)
    return main_class


__all__ = [
    "ClassFormatError",
    "ClassInfo",
    "DEFAULT_ANNOTATION",
    "FIND_WARNING_TIMEOUT",
    "MainClassTimeoutListener",
    "find_main_class_with_timeout_warning",
    "find_single_main_class",
    "iter_main_classes",
    "parse_class",
    "select_main_class",
]
