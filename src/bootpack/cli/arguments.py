"""Tokenize argument strings for launching a repackaged archive."""

from __future__ import annotations

import shlex
from collections.abc import Iterator, Sequence

from bootpack.core.errors import InvalidConfigError


class RunArguments:
    """Ordered command-line arguments parsed from a string or sequence.

    Strings follow shell quoting rules after newlines and tabs are turned
    into spaces; ``None`` entries in a sequence are dropped.
    """

    def __init__(self, arguments: str | Sequence[str | None] | None = None):
        if arguments is None:
            self.args: list[str] = []
        elif isinstance(arguments, str):
            self.args = self._parse(arguments)
        else:
            self.args = [arg for arg in arguments if arg is not None]

    @staticmethod
    def _parse(arguments: str) -> list[str]:
        if not arguments.strip():
            return []
        normalised = arguments.replace("\n", " ").replace("\t", " ")
        try:
            return shlex.split(normalised)
        except ValueError as exc:
            raise InvalidConfigError(
                "arguments", arguments, f"Failed to parse arguments [{arguments}]"
            ) from exc

    def __iter__(self) -> Iterator[str]:
        return iter(self.args)

    def __len__(self) -> int:
        return len(self.args)

    def __repr__(self) -> str:
        return f"RunArguments({self.args!r})"

    def as_list(self) -> list[str]:
        return list(self.args)
