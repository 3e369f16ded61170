"""Configuration of external crates added as dependencies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from crateval.exceptions import EvalError

_PATH_RE = re.compile(r'(.*)path *= *"([^"]+)"(.*)')

_SPECIAL_ESCAPES = {
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def escape_toml_string(string: str) -> str:
    """Escape ``string`` for use inside a TOML basic string."""
    parts = []
    for char in string:
        if char in ('"', "\\"):
            parts.append("\\" + char)
        elif char in _SPECIAL_ESCAPES:
            parts.append(_SPECIAL_ESCAPES[char])
        elif ord(char) <= 0x1F or ord(char) == 0x7F:
            parts.append(f"\\u{ord(char):04X}")
        else:
            parts.append(char)
    return "".join(parts)


def make_paths_absolute(config: str) -> str:
    """Replace a relative ``path = "..."`` in ``config`` with its canonical form."""
    match = _PATH_RE.fullmatch(config)
    if match is None:
        return config
    prefix, raw_path, suffix = match.groups()
    path = Path(raw_path)
    if path.is_absolute():
        return config
    try:
        resolved = path.resolve(strict=True)
    except OSError as err:
        raise EvalError(f'{err}: "{raw_path}"') from err
    return f'{prefix}path = "{escape_toml_string(str(resolved))}"{suffix}'


@dataclass(frozen=True)
class ExternalCrate:
    """A dependency: its registry name and its ``name = ...`` configuration value."""

    name: str
    config: str

    @classmethod
    def from_config(cls, name: str, config: str) -> ExternalCrate:
        return cls(name, make_paths_absolute(config))