"""Tests for budget splitting and allocation."""

from __future__ import annotations

import pytest

from ctxbundle.config import BudgetConfig, BudgetSplit
from ctxbundle.context.budget import BudgetAllocator, relevance_reason, split_budget
from ctxbundle.context.models import ConversationMessage, TokenEstimator
from ctxbundle.embeddings.adapter import TRUNCATION_MARKER
from ctxbundle.index.models import CandidateSource, SearchCandidate
from ctxbundle.parser.models import FileCategory


def _cand(path: str, similarity: float, category: FileCategory = FileCategory.OTHER, reason: str = "") -> SearchCandidate:
    return SearchCandidate(
        file_path=path,
        similarity=similarity,
        sources=[CandidateSource.SEMANTIC],
        category=category,
        reason=reason,
    )


def _history(n: int, size: int = 40) -> list[ConversationMessage]:
    return [
        ConversationMessage(role="user" if i % 2 == 0 else "assistant", content=f"{i:03d}" + "m" * (size - 3))
        for i in range(n)
    ]


class TestTokenEstimator:
    def test_estimate_rounds_up(self):
        est = TokenEstimator()
        assert est.estimate("") == 0
        assert est.estimate("abc") == 1
        assert est.estimate("abcd") == 1
        assert est.estimate("abcde") == 2

    def test_truncate(self):
        est = TokenEstimator(chars_per_token=2)
        assert est.truncate("abcdefgh", 3) == "abcdef"
        assert est.truncate("abcdefgh", 0) == ""


class TestSplitBudget:
    @pytest.mark.parametrize("budget", [0, 1, 7, 99, 1000, 8000, 123_457])
    def test_shares_sum_to_budget(self, budget):
        alloc = split_budget(budget)
        assert alloc.allocatable + alloc.slack == budget
        assert min(alloc.history, alloc.config, alloc.relevant, alloc.dependencies, alloc.slack) >= 0

    def test_default_proportions(self):
        alloc = split_budget(1000)
        assert (alloc.history, alloc.config, alloc.relevant, alloc.dependencies, alloc.slack) == (200, 100, 400, 200, 100)

    def test_custom_split(self):
        split = BudgetSplit(history=0.0, config=0.0, relevant=1.0, dependencies=0.0, slack=0.0)
        alloc = split_budget(500, split)
        assert alloc.relevant == 500
        assert alloc.history == alloc.config == alloc.dependencies == alloc.slack == 0

    def test_invalid_split_rejected(self):
        with pytest.raises(ValueError):
            BudgetSplit(history=0.5, config=0.5, relevant=0.5, dependencies=0.0, slack=0.0)


class TestRelevanceReason:
    @pytest.mark.parametrize(
        "similarity,category,expected",
        [
            (0.92, FileCategory.API, "Highly relevant api (92% match)"),
            (0.8, FileCategory.COMPONENT, "Relevant component (80% match)"),
            (0.61, FileCategory.UTILITY, "Relevant utility (61% match)"),
            (0.45, FileCategory.OTHER, "Related file (45% match)"),
        ],
    )
    def test_bands(self, similarity, category, expected):
        assert relevance_reason(similarity, category) == expected


class TestBudgetAllocator:
    def test_everything_fits(self, sample_files):
        allocator = BudgetAllocator()
        cands = [_cand("src/auth/login.ts", 0.9), _cand("src/api/orders.ts", 0.7, FileCategory.API)]
        result = allocator.allocate(
            100_000,
            _history(3),
            {"package.json": sample_files["package.json"]},
            cands,
            sample_files,
            {"src/lib/db.ts": sample_files["src/lib/db.ts"]},
        )
        assert len(result.conversation_history) == 3
        assert list(result.config_files) == ["package.json"]
        assert list(result.relevant_files) == ["src/auth/login.ts", "src/api/orders.ts"]
        assert list(result.dependency_files) == ["src/lib/db.ts"]
        assert not result.budget_exhausted
        login = result.relevant_files["src/auth/login.ts"]
        assert login.content == sample_files["src/auth/login.ts"]
        assert login.reason == "Highly relevant file (90% match)"
        assert login.sources == ["semantic"]
        assert not login.truncated

    def test_lexical_reason_appended(self, sample_files):
        cand = _cand("src/auth/login.ts", 1.0, reason="Mentioned in prompt")
        result = BudgetAllocator().allocate(10_000, [], {}, [cand], sample_files, {})
        assert result.relevant_files["src/auth/login.ts"].reason == "Highly relevant file (100% match) - Mentioned in prompt"

    @pytest.mark.parametrize("budget", [1, 10, 50, 200, 1000, 5000])
    def test_never_exceeds_budget(self, budget):
        contents = {f"src/f{i}.ts": f"// file {i}\n" + "x" * (150 * (i + 1)) for i in range(12)}
        cands = [_cand(p, 0.9 - i * 0.05) for i, p in enumerate(contents)]
        config_files = {"package.json": "{" + "c" * 600 + "}"}
        deps = {f"src/dep{i}.ts": "d" * 400 for i in range(4)}
        result = BudgetAllocator().allocate(budget, _history(10), config_files, cands, contents, deps)
        assert result.total_tokens <= budget

    def test_fills_budget_when_content_is_abundant(self):
        contents = {f"src/f{i:02d}.ts": "x" * 4000 for i in range(30)}
        cands = [_cand(p, 0.5) for p in contents]
        config_files = {f"cfg{i}.json": "c" * 4000 for i in range(5)}
        deps = {f"src/dep{i}.ts": "d" * 4000 for i in range(10)}
        budget = 8000
        result = BudgetAllocator().allocate(budget, _history(100), config_files, cands, contents, deps)
        assert result.total_tokens <= budget
        assert result.total_tokens >= 0.9 * budget

    def test_last_category_fills_small_remainder(self):
        contents = {f"src/f{i}.ts": "x" * 4000 for i in range(5)}
        cands = [_cand(p, 0.5) for p in contents]
        config_files = {"cfg.json": "c" * 4000}
        # d1 fits whole (190), leaving 10 tokens of the dependency share for d2
        deps = {"src/d1.ts": "d" * 760, "src/d2.ts": "e" * 8000}
        result = BudgetAllocator().allocate(1000, _history(100), config_files, cands, contents, deps)
        assert result.history_tokens + result.config_tokens + result.relevant_tokens == 700
        assert list(result.dependency_files) == ["src/d1.ts", "src/d2.ts"]
        assert result.dependency_files["src/d2.ts"].endswith(TRUNCATION_MARKER)
        assert result.dependency_tokens == 200
        assert result.total_tokens >= 0.9 * 1000

    def test_small_remainder_truncated_without_rollover(self):
        contents = {"a.ts": "a" * 360, "b.ts": "b" * 400}
        cands = [_cand("a.ts", 0.9), _cand("b.ts", 0.8)]
        config = BudgetConfig(
            split=BudgetSplit(history=0.0, config=0.0, relevant=1.0, dependencies=0.0, slack=0.0),
            rollover=False,
        )
        result = BudgetAllocator(config).allocate(100, [], {}, cands, contents, {})
        assert list(result.relevant_files) == ["a.ts", "b.ts"]
        assert result.relevant_files["b.ts"].tokens == 10
        assert result.total_tokens == 100

    def test_non_empty_at_tiny_budget(self, sample_files):
        cands = [_cand("src/auth/login.ts", 0.9)]
        result = BudgetAllocator().allocate(1, [], {}, cands, sample_files, {})
        assert list(result.relevant_files) == ["src/auth/login.ts"]
        login = result.relevant_files["src/auth/login.ts"]
        assert login.truncated
        assert login.content.endswith(TRUNCATION_MARKER)
        assert result.total_tokens <= 1
        assert result.truncated_files == ["src/auth/login.ts"]

    def test_truncates_then_omits(self):
        contents = {"a.ts": "a" * 400, "b.ts": "b" * 400, "c.ts": "c" * 400}
        cands = [_cand("a.ts", 0.9), _cand("b.ts", 0.8), _cand("c.ts", 0.7)]
        config = BudgetConfig(
            split=BudgetSplit(history=0.0, config=0.0, relevant=1.0, dependencies=0.0, slack=0.0),
            min_partial_tokens=25,
        )
        # a fits whole (100), b is cut to the remaining 50, nothing is left for c
        result = BudgetAllocator(config).allocate(150, [], {}, cands, contents, {})
        assert list(result.relevant_files) == ["a.ts", "b.ts"]
        assert result.relevant_files["b.ts"].content == "b" * 200 + TRUNCATION_MARKER
        assert result.relevant_files["b.ts"].tokens == 50
        assert result.truncated_files == ["b.ts"]
        assert result.omitted_files == ["c.ts"]
        assert result.budget_exhausted

    def test_small_remainder_not_truncated(self):
        contents = {"a.ts": "a" * 360, "b.ts": "b" * 400}
        cands = [_cand("a.ts", 0.9), _cand("b.ts", 0.8)]
        config = BudgetConfig(split=BudgetSplit(history=0.0, config=0.0, relevant=1.0, dependencies=0.0, slack=0.0))
        result = BudgetAllocator(config).allocate(100, [], {}, cands, contents, {})
        # 10 tokens left after a.ts is below the partial-file minimum
        assert list(result.relevant_files) == ["a.ts"]
        assert result.omitted_files == ["b.ts"]

    def test_history_keeps_most_recent_whole_messages(self):
        history = _history(10, size=40)
        allocator = BudgetAllocator()
        assert [allocator.message_tokens(m) for m in history[-3:]] == [13, 11, 13]
        # history share of 200 is 40 tokens: 37 for the last three, no room for a fourth
        result = allocator.allocate(200, history, {}, [], {}, {})
        kept = result.conversation_history
        assert len(kept) == 3
        assert kept == history[-len(kept):]
        assert all(m.content in {h.content for h in history} for m in kept)
        assert result.omitted_messages == 10 - len(kept)

    def test_rollover_from_history_to_relevant(self):
        contents = {"a.ts": "a" * 2000}
        cands = [_cand("a.ts", 0.9)]
        budget = 1000
        with_rollover = BudgetAllocator(BudgetConfig(rollover=True)).allocate(budget, [], {}, cands, contents, {})
        without = BudgetAllocator(BudgetConfig(rollover=False)).allocate(budget, [], {}, cands, contents, {})
        # 500 tokens of content; relevant share is 400, plus 300 unused history and config
        assert not with_rollover.relevant_files["a.ts"].truncated
        assert without.relevant_files["a.ts"].truncated
        assert without.relevant_tokens == 400

    def test_rollover_from_relevant_to_dependencies(self):
        deps = {"src/dep.ts": "d" * 1600}
        result = BudgetAllocator().allocate(1000, [], {}, [], {}, deps)
        # dependencies share 200 plus 400 relevant and 300 history/config left unused
        assert not result.dependency_files["src/dep.ts"].endswith(TRUNCATION_MARKER)
        assert result.dependency_tokens == 400

    def test_candidates_without_content_skipped(self, sample_files):
        cands = [_cand("src/gone.ts", 0.99), _cand("src/auth/login.ts", 0.5)]
        result = BudgetAllocator().allocate(10_000, [], {}, cands, sample_files, {})
        assert list(result.relevant_files) == ["src/auth/login.ts"]

    def test_deterministic(self, sample_files):
        cands = [_cand(p, 0.5) for p in ("src/lib/db.ts", "src/auth/login.ts", "src/api/orders.ts")]
        allocator = BudgetAllocator()
        first = allocator.allocate(300, _history(5), {"package.json": sample_files["package.json"]}, cands, sample_files, {})
        second = allocator.allocate(
            300, _history(5), {"package.json": sample_files["package.json"]}, list(reversed(cands)), sample_files, {}
        )
        assert first.model_dump() == second.model_dump()
        # equal scores rank shorter paths first
        assert list(first.relevant_files)[0] == "src/lib/db.ts"
