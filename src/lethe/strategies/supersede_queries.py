"""Keep only the latest state query, URL fetch and successful retry."""

from __future__ import annotations

import re
from typing import Any

from lethe.hashing.digest import tool_signature
from lethe.models.config import LetheConfig
from lethe.models.state import ToolParameterEntry
from lethe.strategies.base import OmissionEditor, OmissionStrategy, StrategyContext

STATE_QUERY_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^ls\s",
        r"^ls$",
        r"^find\s",
        r"^pwd$",
        r"^git\s+status",
        r"^git\s+branch",
        r"^git\s+log",
        r"^tree\s",
        r"^tree$",
    )
)

SEARCH_TOOLS = frozenset({"websearch", "google_search", "ddg-search_search"})


def state_query_key(tool: str, params: dict[str, Any]) -> str | None:
    """
    Return a supersede key for read-only shell commands, else None.

    ``git`` commands are keyed by subcommand so ``git status`` and
    ``git log`` supersede independently.
    """
    if tool != "bash":
        return None
    command = params.get("command")
    if not isinstance(command, str):
        return None
    command = command.strip()
    if not any(pattern.search(command) for pattern in STATE_QUERY_PATTERNS):
        return None
    words = command.split()
    if words[0] == "git" and len(words) > 1:
        return f"bash:git:{words[1]}"
    return f"bash:{words[0]}"


def url_key(tool: str, params: dict[str, Any]) -> str | None:
    if tool == "webfetch":
        url = params.get("url")
        return url if isinstance(url, str) and url else None
    if tool in SEARCH_TOOLS:
        return f"search:{params.get('query') or ''}"
    return None


class SupersedeQueries(OmissionStrategy):
    """
    Prune observations made redundant by a later identical observation.

    - state queries (``ls``, ``pwd``, ``git status`` ...): latest per key;
    - ``webfetch`` per URL and web searches per query: latest per key;
    - failed calls followed by a successful call with the same signature.

    Only completed calls from earlier turns are superseded.
    """

    name = "supersede_queries"

    def enabled(self, config: LetheConfig) -> bool:
        return config.supersede_queries.enabled

    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None:
        cfg = ctx.config.supersede_queries
        cursors = ctx.state.cursors
        queries: dict[str, list[str]] = {}
        urls: dict[str, list[str]] = {}
        retries: dict[str, list[str]] = {}

        for call_id in ctx.tool_ids():
            entry = ctx.state.tool_parameters.get(call_id)
            if entry is None or ctx.is_protected_call(call_id):
                continue
            if entry.status == "error":
                retries.setdefault(tool_signature(entry.tool, entry.parameters), []).append(call_id)
                continue
            if entry.status != "completed":
                continue
            if cfg.retries:
                signature = tool_signature(entry.tool, entry.parameters)
                for failed in retries.pop(signature, []):
                    editor.mark_omitted("tool", failed)
            query = state_query_key(entry.tool, entry.parameters) if cfg.state_queries else None
            if query is not None:
                self._supersede(ctx, editor, queries.setdefault(query, []), call_id, entry)
            url = url_key(entry.tool, entry.parameters) if cfg.urls else None
            if url is not None:
                self._supersede(ctx, editor, urls.setdefault(url, []), call_id, entry)

        cursors.queries = queries
        cursors.urls = urls
        cursors.retries = retries

    @staticmethod
    def _supersede(
        ctx: StrategyContext,
        editor: OmissionEditor,
        seen: list[str],
        call_id: str,
        entry: ToolParameterEntry,
    ) -> None:
        for older_id in seen:
            older = ctx.state.tool_parameters[older_id]
            if older.status == "completed" and older.turn < entry.turn:
                editor.mark_omitted("tool", older_id)
        seen.append(call_id)
