"""Read the wrapper and client ``.env`` files.

The shell tooling loaded these with ``set -a; source .env; set +a``, so a
value from a later file replaces the same key from an earlier file or from the
process environment. Only the plain ``KEY=value`` subset of shell syntax is
understood; command substitution and variable expansion are not evaluated.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path

LOGGER = logging.getLogger(__name__)

# KEY=value, optionally prefixed with ``export``
_ASSIGNMENT_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _strip_quotes(value: str) -> str:
    """Remove matching single or double quotes from a value."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        inner = value[1:-1]
        if value[0] == '"':
            inner = inner.replace('\\"', '"').replace("\\\\", "\\")
        return inner
    return value


def _strip_inline_comment(value: str) -> str:
    # Only unquoted values can carry a trailing ``# comment``
    stripped = value.strip()
    if stripped[:1] in {'"', "'"}:
        quote = stripped[0]
        end = stripped.find(quote, 1)
        while end != -1 and quote == '"' and stripped[end - 1] == "\\":
            end = stripped.find(quote, end + 1)
        return stripped[: end + 1] if end != -1 else stripped
    marker = stripped.find(" #")
    if marker != -1:
        return stripped[:marker].rstrip()
    return stripped


def parse_env_text(text: str) -> dict[str, str]:
    """Parse ``.env`` content into a dict, ignoring comments and blank lines."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT_RE.match(line)
        if not match:
            continue
        key, raw_value = match.groups()
        values[key] = _strip_quotes(_strip_inline_comment(raw_value))
    return values


def load_env_file(path: Path) -> dict[str, str]:
    """Return the assignments from ``path``, or an empty dict when it is absent."""
    if not path.is_file():
        return {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Unable to read %s: %s", path, exc)
        return {}
    return parse_env_text(content)


def layered_env(paths: Iterable[Path], base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge ``base`` (default: ``os.environ``) with each file in order."""
    env = dict(os.environ if base is None else base)
    for path in paths:
        values = load_env_file(path)
        if values:
            LOGGER.debug("Loaded %d setting(s) from %s", len(values), path)
        env.update(values)
    return env
