"""Data models for context bundles."""

from __future__ import annotations

import math

from pydantic import BaseModel, Field

from ctxbundle.parser.models import FileCategory


class TokenEstimator:
    """Estimate token counts for code and prose."""

    # Rough heuristic: 1 token ≈ 4 characters for code
    CHARS_PER_TOKEN = 4

    def __init__(self, chars_per_token: int | None = None) -> None:
        self.chars_per_token = max(1, chars_per_token or self.CHARS_PER_TOKEN)

    def estimate(self, text: str) -> int:
        """Token count for a string; 0 for the empty string."""
        return math.ceil(len(text) / self.chars_per_token)

    def truncate(self, text: str, max_tokens: int) -> str:
        """Longest prefix of `text` whose estimate is at most `max_tokens`."""
        return text[: max(0, max_tokens) * self.chars_per_token]


class ConversationMessage(BaseModel):
    """One message of the project's conversation history."""

    role: str
    content: str


class RelevantFile(BaseModel):
    """A ranked file included in the bundle."""

    content: str
    relevance: float
    reason: str
    category: FileCategory = FileCategory.OTHER
    sources: list[str] = Field(default_factory=list)
    tokens: int = 0
    truncated: bool = False


class BuildOptions(BaseModel):
    """Per-request options for ``ContextAssembler.build_context``.

    ``budget_tokens`` and ``deadline_s`` fall back to the project config
    when unset.
    """

    message_limit: int = 20
    max_files: int = 15
    include_tests: bool = False
    budget_tokens: int | None = None
    version_id: str | None = None
    deadline_s: float | None = None


class ContextStats(BaseModel):
    """Counts, token usage, latency and degraded-mode flags for one bundle."""

    total_files: int = 0
    lexical_candidates: int = 0
    semantic_candidates: int = 0
    content_candidates: int = 0
    merged_candidates: int = 0
    selected_files: int = 0
    dependency_files: int = 0
    config_files: int = 0
    history_messages: int = 0

    budget_tokens: int = 0
    category_budgets: dict[str, int] = Field(default_factory=dict)
    history_tokens: int = 0
    config_tokens: int = 0
    relevant_tokens: int = 0
    dependency_tokens: int = 0
    total_tokens: int = 0

    fast_path_ms: float = 0.0
    search_latency_ms: float = 0.0
    assembly_time_ms: float = 0.0

    semantic_enabled: bool = True
    semantic_search_failed: bool = False
    semantic_timed_out: bool = False
    semantic_error: str = ""
    history_unavailable: bool = False
    budget_exhausted: bool = False
    truncated_files: list[str] = Field(default_factory=list)
    omitted_files: list[str] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.semantic_search_failed or self.semantic_timed_out


class ContextBundle(BaseModel):
    """Budget-bounded context handed to a downstream generator.

    Built fresh for each request and never persisted by the engine.
    """

    project_id: str
    prompt: str = ""
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    relevant_files: dict[str, RelevantFile] = Field(default_factory=dict)
    dependency_files: dict[str, str] = Field(default_factory=dict)
    config_files: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    stats: ContextStats = Field(default_factory=ContextStats)

    def format_for_prompt(self, new_prompt: str) -> str:
        """Serialize the bundle into a single prompt text block."""
        from ctxbundle.context.render import format_for_prompt

        return format_for_prompt(self, new_prompt)

    def file_paths(self) -> list[str]:
        """Every file path included in the bundle, config first."""
        return [*self.config_files, *self.relevant_files, *self.dependency_files]
