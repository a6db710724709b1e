"""Token budget allocation.

The budget is split proportionally between conversation history, config
files, relevant files and dependency files, with a slack share that is
never spent. Category sub-budgets are rounded by largest remainder so
they sum exactly to the allocatable budget.

With rollover on, what history and config leave unused flows to relevant
files, and what relevant files leave unused flows to dependencies.

Within a category, files are packed greedily in rank order. A file that
does not fit is cut at the tail to fill the remaining sub-budget. While a
later category can still absorb the remainder (rollover on, any category
but dependencies), a cut needs at least ``min_partial_tokens``; the last
category fills whatever is left. A category never ends up empty only
because its first file was too large. The truncation marker is not
counted against the budget. History keeps the most recent whole messages that fit.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, Field

from ctxbundle.config import BudgetConfig, BudgetSplit
from ctxbundle.context.models import ConversationMessage, RelevantFile, TokenEstimator
from ctxbundle.embeddings.adapter import TRUNCATION_MARKER
from ctxbundle.index.models import SearchCandidate, candidate_sort_key
from ctxbundle.parser.models import FileCategory


class BudgetAllocation(BaseModel):
    """Token sub-budgets per category."""

    history: int = 0
    config: int = 0
    relevant: int = 0
    dependencies: int = 0
    slack: int = 0

    @property
    def allocatable(self) -> int:
        return self.history + self.config + self.relevant + self.dependencies


class AllocationResult(BaseModel):
    """Packed categories plus accounting."""

    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    config_files: dict[str, str] = Field(default_factory=dict)
    relevant_files: dict[str, RelevantFile] = Field(default_factory=dict)
    dependency_files: dict[str, str] = Field(default_factory=dict)
    budgets: BudgetAllocation = Field(default_factory=BudgetAllocation)
    history_tokens: int = 0
    config_tokens: int = 0
    relevant_tokens: int = 0
    dependency_tokens: int = 0
    truncated_files: list[str] = Field(default_factory=list)
    omitted_files: list[str] = Field(default_factory=list)
    omitted_messages: int = 0

    @property
    def total_tokens(self) -> int:
        return self.history_tokens + self.config_tokens + self.relevant_tokens + self.dependency_tokens

    @property
    def budget_exhausted(self) -> bool:
        return bool(self.truncated_files or self.omitted_files or self.omitted_messages)


def relevance_reason(similarity: float, category: FileCategory | str) -> str:
    """Human-readable reason for a relevance score."""
    label = FileCategory(category).value
    if label == FileCategory.OTHER.value:
        label = "file"
    percent = round(similarity * 100)
    if similarity > 0.8:
        return f"Highly relevant {label} ({percent}% match)"
    if similarity > 0.6:
        return f"Relevant {label} ({percent}% match)"
    return f"Related {label} ({percent}% match)"


def split_budget(budget_tokens: int, split: BudgetSplit | None = None) -> BudgetAllocation:
    """Divide `budget_tokens` into category sub-budgets."""
    split = split or BudgetSplit()
    budget_tokens = max(0, budget_tokens)
    slack = math.floor(budget_tokens * split.slack)
    allocatable = budget_tokens - slack

    names = ("history", "config", "relevant", "dependencies")
    fractions = [getattr(split, n) for n in names]
    total = sum(fractions)
    if total <= 0:
        return BudgetAllocation(slack=budget_tokens)

    raw = [allocatable * f / total for f in fractions]
    shares = [math.floor(r) for r in raw]
    leftover = allocatable - sum(shares)
    # Largest remainder; ties go to the earlier category
    order = sorted(range(len(raw)), key=lambda i: (-(raw[i] - shares[i]), i))
    for i in order[:leftover]:
        shares[i] += 1

    return BudgetAllocation(**dict(zip(names, shares)), slack=slack)


class BudgetAllocator:
    """Packs history and files into a token budget.

    Usage:
        allocator = BudgetAllocator(BudgetConfig())
        result = allocator.allocate(8000, history, config_files, candidates, contents, deps)
    """

    def __init__(self, config: BudgetConfig | None = None) -> None:
        self.config = config or BudgetConfig()
        self.estimator = TokenEstimator(self.config.chars_per_token)

    def allocate(
        self,
        budget_tokens: int,
        history: Sequence[ConversationMessage],
        config_files: Mapping[str, str],
        candidates: Sequence[SearchCandidate],
        contents: Mapping[str, str],
        dependency_files: Mapping[str, str],
    ) -> AllocationResult:
        """Fit every category into its sub-budget.

        Args:
            budget_tokens: Total budget for the bundle.
            history: Conversation messages, oldest first.
            config_files: Config file path -> content.
            candidates: Ranked relevant-file candidates.
            contents: Content for every candidate path.
            dependency_files: Dependency path -> content.
        """
        budgets = split_budget(budget_tokens, self.config.split)
        result = AllocationResult(budgets=budgets)

        result.conversation_history, result.history_tokens = self._pack_history(history, budgets.history)
        result.omitted_messages = len(history) - len(result.conversation_history)

        # Smallest partial file worth keeping while a later category can use the tokens instead
        min_partial = self.config.min_partial_tokens if self.config.rollover else 1

        config_packed, result.config_tokens = self._pack_files(
            [(p, config_files[p]) for p in sorted(config_files)], budgets.config, result, min_partial
        )
        result.config_files = {p: c for p, c, _ in config_packed}

        relevant_budget = budgets.relevant
        if self.config.rollover:
            relevant_budget += (budgets.history - result.history_tokens) + (budgets.config - result.config_tokens)

        ranked = sorted(
            (c for c in candidates if c.file_path in contents),
            key=candidate_sort_key,
        )
        relevant_packed, result.relevant_tokens = self._pack_files(
            [(c.file_path, contents[c.file_path]) for c in ranked], relevant_budget, result, min_partial
        )
        by_path = {c.file_path: c for c in ranked}
        for path, content, truncated in relevant_packed:
            cand = by_path[path]
            reason = relevance_reason(cand.similarity, cand.category)
            if cand.reason:
                reason = f"{reason} - {cand.reason}"
            result.relevant_files[path] = RelevantFile(
                content=content,
                relevance=cand.similarity,
                reason=reason,
                category=cand.category,
                sources=cand.source_names,
                tokens=self.estimator.estimate(_strip_marker(content) if truncated else content),
                truncated=truncated,
            )

        dependency_budget = budgets.dependencies
        if self.config.rollover:
            dependency_budget += relevant_budget - result.relevant_tokens

        deps_packed, result.dependency_tokens = self._pack_files(
            [(p, dependency_files[p]) for p in sorted(dependency_files)], dependency_budget, result, 1
        )
        result.dependency_files = {p: c for p, c, _ in deps_packed}
        return result

    def _pack_history(
        self,
        history: Sequence[ConversationMessage],
        budget: int,
    ) -> tuple[list[ConversationMessage], int]:
        kept: list[ConversationMessage] = []
        used = 0
        for message in reversed(history):
            cost = self.message_tokens(message)
            if used + cost > budget:
                break
            kept.append(message)
            used += cost
        kept.reverse()
        return kept, used

    def _pack_files(
        self,
        files: Sequence[tuple[str, str]],
        budget: int,
        result: AllocationResult,
        min_partial: int,
    ) -> tuple[list[tuple[str, str, bool]], int]:
        packed: list[tuple[str, str, bool]] = []
        remaining = max(0, budget)
        for path, content in files:
            cost = self.estimator.estimate(content)
            if cost <= remaining:
                packed.append((path, content, False))
                remaining -= cost
                continue
            if packed and remaining < max(1, min_partial):
                result.omitted_files.append(path)
                continue
            head = self.estimator.truncate(content, remaining)
            packed.append((path, head + TRUNCATION_MARKER, True))
            result.truncated_files.append(path)
            remaining -= self.estimator.estimate(head)
        return packed, max(0, budget) - remaining

    def message_tokens(self, message: ConversationMessage) -> int:
        return self.estimator.estimate(message.role) + self.estimator.estimate(message.content)


def _strip_marker(content: str) -> str:
    return content[: -len(TRUNCATION_MARKER)] if content.endswith(TRUNCATION_MARKER) else content
