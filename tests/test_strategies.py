"""Tests for the automatic strategies and the pipeline that runs them."""

from __future__ import annotations

import pytest

from lethe.events.bus import LetheEvent
from lethe.models.config import (
    DeduplicationConfig,
    QuerySupersedeConfig,
    ReasoningCompressionConfig,
    TruncationConfig,
)
from lethe.models.results import StrategyResult
from lethe.state.tool_cache import sync_tool_cache
from lethe.state.turns import count_turns
from lethe.strategies.base import OmissionEditor, OmissionStrategy, RewriteEditor, StrategyContext
from lethe.strategies.deduplication import Deduplication
from lethe.strategies.pipeline import StrategyPipeline, default_strategies
from lethe.strategies.purge_errors import PurgeErrors
from lethe.strategies.reasoning_compression import COMPRESSION_MARKER, ReasoningCompression
from lethe.strategies.supersede_queries import SupersedeQueries, state_query_key, url_key
from lethe.strategies.supersede_writes import SupersedeWrites
from lethe.strategies.truncation import TRUNCATED_TAG, Truncation
from tests.conftest import events_of, idle_steps, reasoning, step, tool


def _run(strategy, state, config, messages, estimator) -> StrategyResult:
    """Sync the tool cache, then apply and commit one strategy."""
    sync_tool_cache(state, messages)
    state.current_turn = count_turns(messages)
    ctx = StrategyContext.build(state, config, messages, estimator)
    editor = strategy.editor(ctx)
    strategy.apply(ctx, editor)
    return editor.commit()


def _big_output(lines: int = 100) -> str:
    return "\n".join(f"line {i:03d}: some output text" for i in range(lines))


class TestDeduplication:
    def test_keeps_latest_of_identical_calls(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "read", {"filePath": "/a.py"})),
            step("msg_a2", tool("call_2", "read", {"filePath": "/a.py"})),
            step("msg_a3", tool("call_3", "read", {"filePath": "/a.py"})),
        ]
        result = _run(Deduplication(), state, config, messages, estimator)
        assert result.affected_ids == ["call_1", "call_2"]
        assert state.prune.tool_ids == ["call_1", "call_2"]
        assert state.stats.strategies["deduplication"].count == 2
        assert state.stats.total_prune_tokens == result.tokens_saved > 0

    def test_null_params_match_missing_params(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "grep", {"pattern": "x", "path": None})),
            step("msg_a2", tool("call_2", "grep", {"pattern": "x"})),
        ]
        _run(Deduplication(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]

    def test_protected_tools_and_paths_kept(self, state, config, estimator) -> None:
        """Protected tools and protected file paths are never deduplicated."""
        messages = [
            step("msg_a1", tool("call_t1", "todowrite", {"todos": []})),
            step("msg_a2", tool("call_t2", "todowrite", {"todos": []})),
            step("msg_a3", tool("call_e1", "read", {"filePath": "/app/.env"})),
            step("msg_a4", tool("call_e2", "read", {"filePath": "/app/.env"})),
        ]
        result = _run(Deduplication(), state, config, messages, estimator)
        assert result.count == 0
        assert state.prune.tool_ids == []

    def test_strategy_protected_tools(self, state, config, estimator) -> None:
        cfg = config.model_copy(
            update={"deduplication": DeduplicationConfig(protected_tools=["bash"])}
        )
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "make"})),
            step("msg_a2", tool("call_2", "bash", {"command": "make"})),
        ]
        _run(Deduplication(), state, cfg, messages, estimator)
        assert state.prune.tool_ids == []

    def test_partial_read_covered_by_later_full_read(self, state, config, estimator) -> None:
        """A range read is pruned once the whole file was read later, not the reverse."""
        messages = [
            step("msg_a1", tool("call_1", "read", {"filePath": "/a.py", "offset": 10, "limit": 20})),
            step("msg_a2", tool("call_2", "read", {"filePath": "/a.py"})),
            step("msg_a3", tool("call_3", "read", {"filePath": "/b.py"})),
            step("msg_a4", tool("call_4", "read", {"filePath": "/b.py", "offset": 0, "limit": 5})),
        ]
        _run(Deduplication(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]

    def test_already_pruned_not_recounted(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "read", {"filePath": "/a.py"})),
            step("msg_a2", tool("call_2", "read", {"filePath": "/a.py"})),
        ]
        _run(Deduplication(), state, config, messages, estimator)
        again = _run(Deduplication(), state, config, messages, estimator)
        assert again.count == 0
        assert state.stats.strategies["deduplication"].count == 1


class TestSupersedeWrites:
    def test_write_followed_by_read(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_w", "write", {"filePath": "/a.py", "content": "x = 1"})),
            step("msg_a2", tool("call_r", "read", {"filePath": "/a.py"})),
        ]
        _run(SupersedeWrites(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_w"]
        assert state.cursors.files == {"/a.py": ["call_w", "call_r"]}

    def test_latest_operation_kept(self, state, config, estimator) -> None:
        """Reads are never superseded and the last write of a path survives."""
        messages = [
            step("msg_a1", tool("call_r", "read", {"filePath": "/a.py"})),
            step("msg_a2", tool("call_e1", "edit", {"filePath": "/a.py", "oldString": "a"})),
            step("msg_a3", tool("call_e2", "edit", {"filePath": "/a.py", "oldString": "b"})),
            step("msg_a4", tool("call_w", "write", {"filePath": "/b.py"})),
        ]
        _run(SupersedeWrites(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_e1"]

    def test_protected_path_skipped(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_w", "write", {"filePath": "/srv/tls/server.key"})),
            step("msg_a2", tool("call_r", "read", {"filePath": "/srv/tls/server.key"})),
        ]
        _run(SupersedeWrites(), state, config, messages, estimator)
        assert state.prune.tool_ids == []
        assert state.cursors.files == {}


class TestSupersedeQueries:
    def test_query_keys(self) -> None:
        assert state_query_key("bash", {"command": "ls -la"}) == "bash:ls"
        assert state_query_key("bash", {"command": "  pwd "}) == "bash:pwd"
        assert state_query_key("bash", {"command": "git status --short"}) == "bash:git:status"
        assert state_query_key("bash", {"command": "rm -rf build"}) is None
        assert state_query_key("read", {"command": "ls"}) is None
        assert url_key("webfetch", {"url": "https://example.com"}) == "https://example.com"
        assert url_key("websearch", {"query": "pydantic"}) == "search:pydantic"
        assert url_key("bash", {}) is None

    def test_state_query_superseded_by_later_turn(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "ls -la"})),
            step("msg_a2", tool("call_2", "bash", {"command": "git log -1"})),
            step("msg_a3", tool("call_3", "bash", {"command": "ls"})),
        ]
        _run(SupersedeQueries(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]
        assert state.cursors.queries["bash:ls"] == ["call_1", "call_3"]

    def test_same_turn_not_superseded(self, state, config, estimator) -> None:
        messages = [
            step(
                "msg_a1",
                tool("call_1", "bash", {"command": "pwd"}),
                tool("call_2", "bash", {"command": "pwd"}),
            ),
        ]
        _run(SupersedeQueries(), state, config, messages, estimator)
        assert state.prune.tool_ids == []

    def test_url_fetch_superseded(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "webfetch", {"url": "https://example.com/a"})),
            step("msg_a2", tool("call_2", "webfetch", {"url": "https://example.com/b"})),
            step("msg_a3", tool("call_3", "webfetch", {"url": "https://example.com/a"})),
        ]
        _run(SupersedeQueries(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]

    def test_failed_call_superseded_by_successful_retry(self, state, config, estimator) -> None:
        """A failure followed by a success with the same signature is pruned."""
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "npm test"}, state="error", error="x")),
            step("msg_a2", tool("call_2", "bash", {"command": "npm test"})),
            step("msg_a3", tool("call_3", "bash", {"command": "npm run"}, state="error", error="y")),
        ]
        _run(SupersedeQueries(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]
        assert list(state.cursors.retries.values()) == [["call_3"]]

    def test_retries_can_be_disabled(self, state, config, estimator) -> None:
        cfg = config.model_copy(
            update={"supersede_queries": QuerySupersedeConfig(retries=False)}
        )
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "npm test"}, state="error", error="x")),
            step("msg_a2", tool("call_2", "bash", {"command": "npm test"})),
        ]
        _run(SupersedeQueries(), state, cfg, messages, estimator)
        assert state.prune.tool_ids == []


class TestPurgeErrors:
    def test_old_errors_purged(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "make"}, state="error", error="boom")),
            *idle_steps(4),
        ]
        result = _run(PurgeErrors(), state, config, messages, estimator)
        assert state.prune.tool_ids == ["call_1"]
        assert result.tokens_saved == estimator.estimate("boom")

    def test_recent_errors_kept(self, state, config, estimator) -> None:
        messages = [
            step("msg_a1", tool("call_1", "bash", {"command": "make"}, state="error", error="boom")),
            *idle_steps(3),
        ]
        _run(PurgeErrors(), state, config, messages, estimator)
        assert state.prune.tool_ids == []

    def test_successful_calls_ignored(self, state, config, estimator) -> None:
        messages = [step("msg_a1", tool("call_1")), *idle_steps(10)]
        _run(PurgeErrors(), state, config, messages, estimator)
        assert state.prune.tool_ids == []


class TestTruncation:
    def _config(self, config):
        return config.model_copy(
            update={"truncation": TruncationConfig(enabled=True, max_tokens=50)}
        )

    def test_large_old_output_truncated(self, state, config, estimator) -> None:
        """Head and tail survive; the call stays visible and is not pruned."""
        part = tool("call_1", "read", {"filePath": "/big.txt"}, output=_big_output())
        messages = [step("msg_a1", part), *idle_steps(2)]
        result = _run(Truncation(), state, self._config(config), messages, estimator)

        assert result.affected_ids == ["call_1"]
        assert part.output.startswith("line 000: some output text\nline 001")
        assert part.output.endswith("line 098: some output text\nline 099: some output text")
        assert f"[... 96 {TRUNCATED_TAG} ...]" in part.output
        assert state.prune.tool_ids == []
        assert state.rewritten["call_1"] == result.tokens_saved > 0
        assert state.stats.strategies["truncation"].count == 1
        assert state.stats.total_prune_tokens == 0

    def test_rewrite_booked_once(self, state, config, estimator) -> None:
        """The host re-sends the original output; it is truncated again but counted once."""
        cfg = self._config(config)
        first = [step("msg_a1", tool("call_1", output=_big_output())), *idle_steps(2)]
        _run(Truncation(), state, cfg, first, estimator)

        part = tool("call_1", output=_big_output())
        again = _run(Truncation(), state, cfg, [step("msg_a1", part), *idle_steps(2)], estimator)
        assert TRUNCATED_TAG in part.output
        assert again.count == 0
        assert state.stats.strategies["truncation"].count == 1

    def test_recent_output_untouched(self, state, config, estimator) -> None:
        part = tool("call_1", output=_big_output())
        _run(Truncation(), state, self._config(config), [step("msg_a1", part)], estimator)
        assert part.output == _big_output()

    def test_error_reduced_to_first_line(self, state, config, estimator) -> None:
        error = "ModuleNotFoundError: no module named foo\n  File a.py, line 1\n  import foo"
        part = tool("call_1", "bash", {"command": "python a.py"}, state="error", error=error)
        _run(Truncation(), state, self._config(config), [step("msg_a1", part), *idle_steps(2)], estimator)
        assert part.error_message == "ModuleNotFoundError: no module named foo"

    def test_non_target_tools_ignored(self, state, config, estimator) -> None:
        part = tool("call_1", "webfetch", {"url": "https://example.com"}, output=_big_output())
        _run(Truncation(), state, self._config(config), [step("msg_a1", part), *idle_steps(2)], estimator)
        assert part.output == _big_output()


class TestReasoningCompression:
    def _config(self, config):
        return config.model_copy(
            update={
                "reasoning_compression": ReasoningCompressionConfig(enabled=True, max_tokens=20)
            }
        )

    def test_old_reasoning_compressed(self, state, config, estimator) -> None:
        thought = "\n".join(f"step {i}: considering option {i}" for i in range(30))
        part = reasoning(thought)
        messages = [step("msg_a1", part), *idle_steps(3)]
        result = _run(ReasoningCompression(), state, self._config(config), messages, estimator)

        assert result.affected_ids == ["msg_a1:1"]
        assert part.text.endswith(COMPRESSION_MARKER)
        assert "lines of reasoning compressed" in part.text
        assert "step 29: considering option 29" in part.text
        assert state.prune.reasoning_part_ids == []
        assert state.stats.total_prune_tokens == 0

    def test_never_compressed_twice(self, state, config, estimator) -> None:
        thought = "\n".join(f"step {i}: considering option {i}" for i in range(30))
        part = reasoning(thought)
        messages = [step("msg_a1", part), *idle_steps(3)]
        cfg = self._config(config)
        _run(ReasoningCompression(), state, cfg, messages, estimator)
        compressed = part.text
        _run(ReasoningCompression(), state, cfg, messages, estimator)
        assert part.text == compressed

    def test_recent_reasoning_kept(self, state, config, estimator) -> None:
        thought = "\n".join(f"step {i}: considering option {i}" for i in range(30))
        part = reasoning(thought)
        _run(ReasoningCompression(), state, self._config(config), [step("msg_a1", part)], estimator)
        assert part.text == thought


class _Exploding(OmissionStrategy):
    name = "exploding"

    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None:
        editor.mark_omitted("tool", "call_1")
        raise RuntimeError("kaboom")


class TestPipeline:
    def test_wrong_editor_rejected(self, state, config, estimator) -> None:
        """Handing a strategy the other kind of editor is a TypeError, not a silent edit."""
        messages = [step("msg_a1", tool("call_1", "read", {"filePath": "/a.py"}))]
        ctx = StrategyContext.build(state, config, messages, estimator)
        with pytest.raises(TypeError):
            Deduplication().apply(ctx, RewriteEditor(ctx, "deduplication"))
        with pytest.raises(TypeError):
            Truncation().apply(ctx, OmissionEditor(ctx, "truncation"))

    def test_default_order(self) -> None:
        assert [s.name for s in default_strategies()] == [
            "deduplication",
            "supersede_writes",
            "supersede_queries",
            "purge_errors",
            "truncation",
            "reasoning_compression",
        ]

    def test_failed_strategy_leaves_no_trace(self, state, config, estimator, event_bus) -> None:
        """Staged changes of a raising strategy are dropped; later strategies still run."""
        messages = [
            step("msg_a1", tool("call_1", "read", {"filePath": "/a.py"})),
            step("msg_a2", tool("call_2", "bash", {"command": "make"}, state="error", error="e")),
            *idle_steps(4),
        ]
        sync_tool_cache(state, messages)
        state.current_turn = count_turns(messages)
        pipeline = StrategyPipeline(config, estimator, event_bus, [_Exploding(), PurgeErrors()])
        result = pipeline.run(state, messages)

        assert result.failed == ["exploding"]
        assert state.prune.tool_ids == ["call_2"]
        [failed] = events_of(event_bus, LetheEvent.STRATEGY_FAILED)
        assert failed["strategy"] == "exploding"
        assert failed["error"] == "kaboom"
        [applied] = events_of(event_bus, LetheEvent.STRATEGY_APPLIED)
        assert applied["strategy"] == "purge_errors"
        assert applied["count"] == 1

    def test_later_strategies_see_earlier_prunes(self, state, config, estimator) -> None:
        """A write superseded after deduplication is pruned once, by the first strategy."""
        messages = [
            step("msg_a1", tool("call_1", "write", {"filePath": "/a.py", "content": "x"})),
            step("msg_a2", tool("call_2", "write", {"filePath": "/a.py", "content": "x"})),
            step("msg_a3", tool("call_3", "read", {"filePath": "/a.py"})),
        ]
        sync_tool_cache(state, messages)
        state.current_turn = count_turns(messages)
        result = StrategyPipeline(config, estimator).run(state, messages)

        assert result.for_strategy("deduplication").affected_ids == ["call_1"]
        assert result.for_strategy("supersede_writes").affected_ids == ["call_2"]
        assert state.prune.tool_ids == ["call_1", "call_2"]
        assert state.stats.total_prune_messages == 2

    def test_protected_tool_never_omitted(self, state, config, estimator) -> None:
        messages = [step("msg_a1", tool("call_t", "todowrite", {"todos": []}))]
        sync_tool_cache(state, messages)
        editor = OmissionEditor(StrategyContext.build(state, config, messages, estimator), "x")
        assert not editor.mark_omitted("tool", "call_t")
        assert editor.staged == []

    def test_disabled_strategies_skipped(self, state, config, estimator) -> None:
        messages = [step("msg_a1", tool("call_1", output=_big_output())), *idle_steps(3)]
        sync_tool_cache(state, messages)
        state.current_turn = count_turns(messages)
        result = StrategyPipeline(config, estimator).run(state, messages)
        assert result.for_strategy("truncation") is None
        assert result.tokens_saved == 0
