"""Shell launch script written ahead of the zip data of an archive.

Zip readers locate the central directory from the end of the file, so a
script prefix leaves the archive readable while letting ``./app.jar`` run it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from bootpack.core.errors import InvalidConfigError

_PLACEHOLDER = re.compile(r"\{\{(\w+)(:.*?)?\}\}")

DEFAULT_TEMPLATE = """\
#!/bin/sh
# {{initInfoProvides:application}}: {{initInfoShortDescription:launched by bootpack}}
# {{initInfoDescription:}}

[ -n "$JAVA_HOME" ] && javaexe="$JAVA_HOME/bin/java" || javaexe=java
jarfile="$(cd "$(dirname "$0")" && pwd -P)/$(basename "$0")"
cd "{{workingDirectory:$(dirname "$jarfile")}}" || exit 1

exec "$javaexe" $JAVA_OPTS -jar "$jarfile" {{defaultArgs:}} "$@"
"""


class LaunchScript:
    """A launch script template expanded with ``properties``.

    Placeholders look like ``{{name}}`` or ``{{name:default}}``. A
    placeholder with neither a property nor a default is left untouched.
    """

    def __init__(self, template_file: str | Path | None = None, properties: Mapping[str, object] | None = None):
        self.template_file = Path(template_file) if template_file is not None else None
        self.properties = {str(k): str(v) for k, v in (properties or {}).items()}
        self._content = self._expand(self._load_template())

    def _load_template(self) -> str:
        if self.template_file is None:
            return DEFAULT_TEMPLATE
        try:
            return self.template_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidConfigError(
                "launch_script", str(self.template_file), f"Unable to read launch script {self.template_file}"
            ) from exc

    def _expand(self, template: str) -> str:
        def substitute(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            if name in self.properties:
                return self.properties[name]
            if default is not None:
                return default[1:]
            return match.group(0)

        return _PLACEHOLDER.sub(substitute, template)

    def to_bytes(self) -> bytes:
        return self._content.encode("utf-8")

    def __str__(self) -> str:
        return self._content


__all__ = ["DEFAULT_TEMPLATE", "LaunchScript"]
