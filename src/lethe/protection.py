"""Protected tool names and protected file-path globs."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

_REGEX_SPECIALS = set("\\.^$+{}()|[]")


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a path glob to an anchored regex.

    ``*`` and ``?`` never cross ``/``; ``**/`` matches zero or more whole
    directories and a bare ``**`` matches anything.
    """
    pat = pattern.replace("\\", "/")
    out = ["^"]
    i = 0
    while i < len(pat):
        ch = pat[i]
        if ch == "*":
            if pat[i + 1 : i + 2] == "*":
                if pat[i + 2 : i + 3] == "/":
                    out.append("(?:.*/)?")
                    i += 3
                    continue
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch in _REGEX_SPECIALS:
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1
    out.append("$")
    return re.compile("".join(out))


def matches_glob(path: str, pattern: str) -> bool:
    if not pattern:
        return False
    return glob_to_regex(pattern).match(path.replace("\\", "/")) is not None


def file_path_from_parameters(parameters: Any) -> str | None:
    """Return the ``filePath`` argument of a tool call, if it has a non-empty one."""
    if not isinstance(parameters, dict):
        return None
    value = parameters.get("filePath")
    return value if isinstance(value, str) and value else None


def is_protected_path(path: str | None, patterns: Iterable[str]) -> bool:
    if not path:
        return False
    return any(matches_glob(path, pattern) for pattern in patterns)


def is_protected_tool(tool_name: str, protected_tools: Iterable[str]) -> bool:
    return tool_name in set(protected_tools)
