"""Tests for digests, the hash registry, identifier tags and hash assignment."""

from __future__ import annotations

import copy

from lethe.hashing.assign import assign_hashes, tool_identity
from lethe.hashing.digest import part_hash, stable_stringify, tool_signature
from lethe.hashing.registry import HashRegistry, normalize_type
from lethe.hashing.tags import extract_tags, render_ref, render_tag, strip_tags
from lethe.models.config import HashingConfig
from tests.conftest import LONG_TEXT, make_message, reasoning, step, text, tool, user


class TestDigest:
    def test_part_hash_shape(self) -> None:
        """Six lowercase hex characters, stable across calls."""
        h = part_hash("hello")
        assert len(h) == 6
        assert all(c in "0123456789abcdef" for c in h)
        assert part_hash("hello") == h
        assert part_hash("hello!") != h

    def test_stable_stringify_sorts_nested_keys(self) -> None:
        assert stable_stringify({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_tool_signature_ignores_none_and_order(self) -> None:
        a = tool_signature("read", {"filePath": "a.py", "offset": None, "limit": 10})
        b = tool_signature("read", {"limit": 10, "filePath": "a.py"})
        assert a == b
        assert a.startswith("read::")
        assert len(a.split("::")[1]) == 16

    def test_tool_signature_without_params(self) -> None:
        assert tool_signature("pwd", {}) == "pwd"
        assert tool_signature("pwd", None) == "pwd"
        assert tool_signature("pwd", {"x": None}) == "pwd"


class TestRegistry:
    def test_register_is_idempotent(self) -> None:
        """Registering the same unit twice returns the same hash."""
        registry = HashRegistry()
        first = registry.register("tool", "call_1", "read:call_1")
        second = registry.register("tool", "call_1", "something else")
        assert first == second
        assert len(registry) == 1

    def test_collision_gets_suffix(self) -> None:
        """Two units with identical content get distinct, suffixed hashes."""
        registry = HashRegistry()
        a = registry.register("message", "msg_1:1", "same text")
        b = registry.register("message", "msg_2:1", "same text")
        c = registry.register("message", "msg_3:1", "same text")
        assert a == part_hash("same text")
        assert b == f"{a}_2"
        assert c == f"{a}_3"
        assert registry.lookup(b).id == "msg_2:1"

    def test_lookup_normalizes_input(self) -> None:
        registry = HashRegistry()
        h = registry.register("tool", "call_1", "read:call_1", tool_name="read")
        assert registry.lookup(f"  {h.upper()} ").id == "call_1"
        assert registry.lookup("000000") is None

    def test_preview_defaults_to_content_prefix(self) -> None:
        registry = HashRegistry()
        h = registry.register("message", "m:0", "A fairly long assistant message")
        assert registry.lookup(h).preview == "A fairly long a"
        assert registry.display(h) == "message: A fairly long a"

    def test_type_aliases(self) -> None:
        """thinking is an alias of reasoning and a trailing _hash is dropped."""
        assert normalize_type("thinking") == "reasoning"
        assert normalize_type("Reasoning_hash") == "reasoning"
        assert normalize_type("tool_hash") == "tool"
        registry = HashRegistry()
        h = registry.register("thinking", "m:0", "deep thoughts")
        assert registry.hash_for("reasoning", "m:0") == h

    def test_remove_id(self) -> None:
        registry = HashRegistry()
        h = registry.register("tool", "call_1", "read:call_1")
        removed = registry.remove_id("tool", "call_1")
        assert removed is not None and removed.hash == h
        assert h not in registry
        assert registry.hash_for("tool", "call_1") is None

    def test_remove_normalizes_hash(self) -> None:
        """Removal accepts the same case and whitespace variants as lookup."""
        registry = HashRegistry()
        h = registry.register("tool", "call_1", "read:call_1")
        removed = registry.remove(f"  {h.upper()} ")
        assert removed is not None and removed.id == "call_1"
        assert f" {h.upper()}" not in registry
        assert registry.hash_for("tool", "call_1") is None

    def test_entries_filter_and_order(self) -> None:
        registry = HashRegistry()
        registry.register("tool", "c1", "a")
        registry.register("message", "m:0", "b")
        registry.register("tool", "c2", "c")
        assert [e.id for e in registry.entries("tool")] == ["c1", "c2"]
        assert [e.id for e in registry] == ["c1", "m:0", "c2"]

    def test_deepcopy_is_independent(self) -> None:
        registry = HashRegistry()
        registry.register("tool", "c1", "a")
        clone = copy.deepcopy(registry)
        clone.register("tool", "c2", "b")
        assert len(registry) == 1
        assert len(clone) == 2

    def test_from_entries_keeps_hashes(self) -> None:
        registry = HashRegistry()
        h = registry.register("message", "m:0", "x")
        registry.register("message", "m:1", "x")
        rebuilt = HashRegistry.from_entries(registry.entries())
        assert rebuilt.hash_for("message", "m:1") == f"{h}_2"


class TestTags:
    def test_render_wrap_form(self) -> None:
        assert (
            render_tag("thinking", "a1b2c3", "body")
            == '<acp:reasoning prunable_hash="a1b2c3">body</acp:reasoning>'
        )
        assert render_ref("tool", "a1b2c3") == '<acp:tool prunable_hash="a1b2c3"/>'

    def test_strip_unwraps_and_drops(self) -> None:
        """Wrappers keep content; refs and element tags disappear; attributes are removed."""
        raw = (
            '<acp:tool prunable_hash="a1b2c3">output</acp:tool> '
            '<acp:message prunable_hash="d4e5f6"/>'
            '<file prunable_hash="abcdef">x</file> '
            "<tool_hash>a1b2c3</tool_hash>end"
        )
        assert strip_tags(raw) == "output <file>x</file> end"

    def test_strip_keep_types(self) -> None:
        raw = '<acp:tool prunable_hash="a1b2c3">out</acp:tool>'
        assert strip_tags(raw, keep_types=["tool"]) == raw
        assert strip_tags(raw, keep_types=["message"]) == "out"

    def test_strip_is_inverse_of_render(self) -> None:
        body = "line one\nline two <b>bold</b>"
        assert strip_tags(render_tag("message", "0a0b0c_2", body)) == body

    def test_extract_tags_sorted_and_normalized(self) -> None:
        raw = (
            "<reasoning_hash>aaaaaa</reasoning_hash> then "
            '<acp:thinking prunable_hash="BBBBBB">t</acp:thinking> and '
            '<acp:tool prunable_hash="cccccc_2"/>'
        )
        tags = extract_tags(raw)
        assert [(t.type, t.hash) for t in tags] == [
            ("reasoning", "aaaaaa"),
            ("reasoning", "bbbbbb"),
            ("tool", "cccccc_2"),
        ]
        assert tags[0].position == 0


class TestAssignHashes:
    def test_registers_addressable_units(self, state, config) -> None:
        """Non-protected tools, long assistant text and reasoning get hashes."""
        messages = [
            user("msg_u1", "x" * 300),
            step(
                "msg_a1",
                reasoning("thinking about the problem"),
                text(),
                text("short"),
                tool("call_1", "read", {"filePath": "a.py"}),
                tool("call_2", "todowrite", {"todos": []}),
            ),
        ]
        added = assign_hashes(state, messages, config)
        assert added == 3
        assert state.hashes.hash_for("tool", "call_1") == part_hash(tool_identity("read", "call_1"))
        assert state.hashes.hash_for("tool", "call_2") is None
        assert state.hashes.hash_for("message", "msg_a1:2") is not None
        assert state.hashes.hash_for("message", "msg_a1:3") is None
        assert state.hashes.hash_for("reasoning", "msg_a1:1") is not None
        assert state.hashes.hash_for("message", "msg_u1:0") is None

    def test_second_pass_adds_nothing(self, state, config) -> None:
        messages = [step("msg_a1", text(), tool("call_1"))]
        assert assign_hashes(state, messages, config) == 2
        assert assign_hashes(state, messages, config) == 0

    def test_tags_do_not_change_message_hash(self, state, config) -> None:
        """Text re-sent with injected tags hashes like the bare text."""
        tagged = [step("msg_a1", text(render_tag("message", "a1b2c3", LONG_TEXT)))]
        assign_hashes(state, tagged, config)
        assert state.hashes.hash_for("message", "msg_a1:1") == part_hash(LONG_TEXT)

    def test_reasoning_opt_out(self, state, config) -> None:
        cfg = config.model_copy(update={"hashing": HashingConfig(hash_reasoning=False)})
        assign_hashes(state, [step("msg_a1", reasoning("hmm, let me think"))], cfg)
        assert len(state.hashes) == 0

    def test_compacted_messages_skipped(self, state, config) -> None:
        state.last_compaction = 5_000
        messages = [
            step("msg_old", tool("call_old"), created_at=1_000),
            make_message(
                "msg_sum", "assistant", [text("summary")], created_at=5_000, is_summary=True
            ),
            step("msg_new", tool("call_new"), created_at=6_000),
        ]
        assign_hashes(state, messages, config)
        assert state.hashes.hash_for("tool", "call_old") is None
        assert state.hashes.hash_for("tool", "call_new") is not None
