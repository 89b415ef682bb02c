"""Configuration models for Lethe engines and strategies."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

DEFAULT_PROTECTED_TOOLS: tuple[str, ...] = (
    "task",
    "todowrite",
    "todoread",
    "context",
    "discard",
    "distill",
    "restore",
    "batch",
    "skill",
    "plan_enter",
    "plan_exit",
    "context_info",
)

DEFAULT_PROTECTED_FILE_PATTERNS: tuple[str, ...] = (
    "**/.env",
    "**/.env.*",
    "**/credentials.json",
    "**/secrets.json",
    "**/*.pem",
    "**/*.key",
)


class DeduplicationConfig(BaseModel):
    """Configuration for the deduplication strategy."""

    enabled: bool = True
    protected_tools: list[str] = Field(
        default_factory=list,
        description="Tools excluded from deduplication in addition to the global list.",
    )


class SupersedeWritesConfig(BaseModel):
    """Configuration for the write/read supersede strategy."""

    enabled: bool = True
    write_tools: list[str] = Field(default_factory=lambda: ["write", "edit"])
    read_tools: list[str] = Field(default_factory=lambda: ["read"])


class QuerySupersedeConfig(BaseModel):
    """Configuration for the query supersede strategy (state queries, URLs, retries)."""

    enabled: bool = True

    state_queries: bool = True
    """Keep only the latest ``ls``/``find``/``pwd``/``tree``/``git status`` style query."""

    urls: bool = True
    """Keep only the latest ``webfetch`` per URL and ``websearch`` per query."""

    retries: bool = True
    """Prune failed attempts once a call with the same signature succeeds."""


class PurgeErrorsConfig(BaseModel):
    """Configuration for the error purge strategy."""

    enabled: bool = True
    turns: int = Field(
        default=4,
        ge=1,
        description="Errored tool calls at least this many turns old are pruned.",
    )
    protected_tools: list[str] = Field(default_factory=list)


class TruncationConfig(BaseModel):
    """Configuration for head/tail truncation of large tool outputs."""

    enabled: bool = False
    max_tokens: int = Field(default=2_000, ge=50)
    head_ratio: float = Field(default=0.4, gt=0.0, lt=1.0)
    tail_ratio: float = Field(default=0.4, gt=0.0, lt=1.0)
    min_turns_old: int = Field(default=2, ge=0)
    target_tools: list[str] = Field(default_factory=lambda: ["read", "grep", "glob", "bash"])
    error_first_line: bool = True
    """Reduce old errored outputs to their first line."""

    @model_validator(mode="after")
    def validate_ratios(self) -> TruncationConfig:
        if self.head_ratio + self.tail_ratio >= 1.0:
            raise ValueError("head_ratio + tail_ratio must be strictly less than 1.0")
        return self


class ReasoningCompressionConfig(BaseModel):
    """Configuration for reasoning block compression."""

    enabled: bool = False
    min_turns_old: int = Field(default=3, ge=0)
    max_tokens: int = Field(default=500, ge=20)


class HashingConfig(BaseModel):
    """Configuration for hash assignment and tag rendering."""

    min_message_length: int = Field(
        default=100,
        ge=0,
        description="Assistant text parts shorter than this are not made addressable.",
    )
    hash_reasoning: bool = True
    inject_tags: bool = True
    """Wrap addressable units in ``<acp:TYPE prunable_hash="...">`` tags when rendering."""


class ManualConfig(BaseModel):
    """Configuration for the manual discard/distill/restore operations."""

    reasoning_discard_policy: Literal["placeholder", "omit"] = Field(
        default="placeholder",
        description=(
            "How a discard of a reasoning block is applied. 'placeholder' converts it into a "
            "distill with reasoning_placeholder so the reasoning field never becomes empty; "
            "'omit' prunes it outright."
        ),
    )
    reasoning_placeholder: str = "[reasoning discarded]"
    discard_history_limit: int = Field(default=100, ge=1, le=10_000)


class AutomataConfig(BaseModel):
    """Turn bookkeeping for hosts that run an autonomous reflection loop."""

    enabled: bool = True
    keyword: str = Field(
        default="automata",
        min_length=1,
        description="A user message containing this word (any case) activates automata mode.",
    )
    initial_turns: int = Field(
        default=8,
        ge=1,
        description="Turns after activation, or after the last reflection, before a reflection is due.",
    )


class StoreConfig(BaseModel):
    """Configuration for the JSON persistence layer."""

    storage_dir: str = Field(
        default="~/.local/share/lethe/sessions",
        description="Directory holding one JSON document per session. ~ is expanded at runtime.",
    )


class CacheConfig(BaseModel):
    """Sizing for the bounded caches owned by an engine."""

    file_max_entries: int = Field(default=256, ge=1)
    file_ttl: float = Field(default=30.0, gt=0.0)
    operation_window: float = Field(default=300.0, gt=0.0)
    operation_max_entries: int = Field(default=1_000, ge=1)
    tool_cache_limit: int = Field(
        default=1_000,
        ge=10,
        description="Maximum tool-parameter entries kept per session (FIFO eviction).",
    )


class LetheConfig(BaseModel):
    """
    Top-level configuration for a Lethe engine.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = LetheConfig(
            truncation=TruncationConfig(enabled=True, max_tokens=1_500),
            protected_tools=[*DEFAULT_PROTECTED_TOOLS, "deploy"],
        )
    """

    enabled: bool = True
    protected_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_TOOLS))
    protected_file_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_FILE_PATTERNS)
    )

    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    supersede_writes: SupersedeWritesConfig = Field(default_factory=SupersedeWritesConfig)
    supersede_queries: QuerySupersedeConfig = Field(default_factory=QuerySupersedeConfig)
    purge_errors: PurgeErrorsConfig = Field(default_factory=PurgeErrorsConfig)
    truncation: TruncationConfig = Field(default_factory=TruncationConfig)
    reasoning_compression: ReasoningCompressionConfig = Field(
        default_factory=ReasoningCompressionConfig
    )
    hashing: HashingConfig = Field(default_factory=HashingConfig)
    manual: ManualConfig = Field(default_factory=ManualConfig)
    automata: AutomataConfig = Field(default_factory=AutomataConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    fetch_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Seconds to wait for the host message list before abandoning an update.",
    )

    estimator_encoding: Literal["cl100k_base", "o200k_base"] | None = Field(
        default=None,
        description="tiktoken encoding for context-size reports. None = character heuristic.",
    )

    @classmethod
    def default(cls) -> LetheConfig:
        """Return a config instance with all defaults."""
        return cls()
