"""Context assembly: from a prompt to a budget-bounded ContextBundle.

Pipeline:
  1. Load the project's files, then start semantic search as a task
     (index lazily, embed the prompt, query the vector index).
  2. Run the lexical fast path inline and emit its matches as
     provisional selections.
  3. Wait for semantic search up to a deadline; on failure or timeout
     continue with the lexical candidates only.
  4. Merge candidates (dedup by path, max similarity, union of sources),
     falling back to a content scan when both paths found nothing.
  5. Expand the selection with the files it imports.
  6. Fit history, config, relevant and dependency files into the budget.

Only invalid caller input is fatal. Provider and index failures are
recorded in ``ContextStats`` and the request completes in lexical-only mode.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ctxbundle.config import INDEX_DB_FILE, ProjectConfig, get_ctxbundle_dir, load_config
from ctxbundle.context.budget import BudgetAllocator
from ctxbundle.context.models import (
    BuildOptions,
    ContextBundle,
    ContextStats,
    ConversationMessage,
)
from ctxbundle.context.progress import ProgressEvent, ProgressSink, safe_emit
from ctxbundle.context.resolver import DependencyResolver
from ctxbundle.embeddings.adapter import EmbeddingAdapter
from ctxbundle.embeddings.cache import EmbeddingCache
from ctxbundle.embeddings.factory import create_embedding_provider
from ctxbundle.embeddings.store import SQLiteEmbeddingStore
from ctxbundle.exceptions import (
    ConfigError,
    IndexUnavailableError,
    InvalidInputError,
    ProviderError,
    StoreError,
)
from ctxbundle.index.models import CandidateSource, SearchCandidate
from ctxbundle.index.store import SQLiteVectorIndex
from ctxbundle.parser.classifier import classify_file, is_config_file, is_secret_file, is_valid_path
from ctxbundle.parser.core import describe_file
from ctxbundle.parser.models import FileCategory
from ctxbundle.search.lexical import FastPathMatcher
from ctxbundle.search.merge import merge_candidates
from ctxbundle.search.semantic import SemanticSearch

if TYPE_CHECKING:
    from ctxbundle.stores import ConversationStore, FileStore

logger = logging.getLogger("ctxbundle.context")


class AssemblyState(str, Enum):
    """Steps of one ``build_context`` call, recorded in ``stats.states``."""

    IDLE = "idle"
    FAST_PATH_COMPLETE = "fast_path_complete"
    SEMANTIC_COMPLETE = "semantic_complete"
    RESOLVED = "resolved"
    ALLOCATED = "allocated"
    DONE = "done"
    ERROR = "error"


class ContextAssembler:
    """Builds ContextBundles for a code-generation orchestrator.

    Usage:
        assembler = ContextAssembler(file_store, conversation_store, semantic)
        bundle = await assembler.build_context("proj-1", "update the login handler")
        text = bundle.format_for_prompt("update the login handler")
    """

    def __init__(
        self,
        file_store: FileStore,
        conversation_store: ConversationStore | None = None,
        semantic: SemanticSearch | None = None,
        config: ProjectConfig | None = None,
        matcher: FastPathMatcher | None = None,
        resolver: DependencyResolver | None = None,
        allocator: BudgetAllocator | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.config = config or ProjectConfig()
        self.file_store = file_store
        self.conversation_store = conversation_store
        self.semantic = semantic
        self.matcher = matcher or FastPathMatcher(self.config.search.keywords)
        self.resolver = resolver or DependencyResolver(config=self.config.resolver)
        self.allocator = allocator or BudgetAllocator(self.config.budget)
        self.progress = progress

    @classmethod
    def for_project(
        cls,
        root: Path,
        config: ProjectConfig | None = None,
        progress: ProgressSink | None = None,
    ) -> ContextAssembler:
        """Assembler over a project directory with its .ctxbundle stores."""
        from ctxbundle.stores import DirectoryFileStore, JsonlConversationStore

        config = config or load_config(root)
        cb_dir = get_ctxbundle_dir(root)
        try:
            provider = create_embedding_provider(config.embedding)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        cache = EmbeddingCache(
            SQLiteEmbeddingStore(cb_dir / config.cache.db_file),
            ttl_seconds=config.cache.ttl_seconds,
        )
        adapter = EmbeddingAdapter(provider, cache, config.embedding)
        semantic = SemanticSearch(adapter, SQLiteVectorIndex(cb_dir / INDEX_DB_FILE))
        return cls(
            DirectoryFileStore(root, config.indexer),
            JsonlConversationStore.for_project_root(cb_dir),
            semantic,
            config=config,
            progress=progress,
        )

    async def build_context(
        self,
        project_id: str,
        prompt: str,
        options: BuildOptions | None = None,
    ) -> ContextBundle:
        """Assemble the context bundle for one prompt.

        Raises:
            InvalidInputError: Missing project id or prompt, or invalid options.
            StoreError: The project's files could not be loaded.
        """
        options = options or BuildOptions()
        budget_tokens = (
            options.budget_tokens if options.budget_tokens is not None else self.config.budget.budget_tokens
        )
        deadline = options.deadline_s if options.deadline_s is not None else self.config.search.semantic_deadline_s
        _validate(project_id, prompt, options, budget_tokens, deadline)

        start_time = time.time()
        stats = ContextStats(budget_tokens=budget_tokens, semantic_enabled=self.semantic is not None)
        stats.states.append(AssemblyState.IDLE.value)

        files = _usable_files(await self.file_store.get_files(project_id, options.version_id))
        stats.total_files = len(files)

        semantic_task = None
        if self.semantic is not None and files:
            semantic_task = asyncio.create_task(self._semantic_search(project_id, prompt, options, files))
        history_task = asyncio.create_task(self._load_history(project_id, options.message_limit, stats))

        try:
            # Fast path
            fast_start = time.time()
            lexical = self.matcher.match(prompt, sorted(files), include_tests=options.include_tests)
            stats.fast_path_ms = round((time.time() - fast_start) * 1000, 2)
            stats.lexical_candidates = len(lexical)
            stats.states.append(AssemblyState.FAST_PATH_COMPLETE.value)
            for cand in lexical[: options.max_files]:
                safe_emit(self.progress, ProgressEvent.selected(cand.file_path, cand.similarity, provisional=True))

            # Semantic path
            semantic = await self._await_semantic(semantic_task, deadline, stats)
            stats.search_latency_ms = round((time.time() - start_time) * 1000, 2)
            stats.semantic_candidates = len(semantic)

            history = await history_task
        finally:
            for task in (semantic_task, history_task):
                if task is not None and not task.done():
                    task.cancel()

        content: list[SearchCandidate] = []
        if not lexical and not semantic and self.config.search.content_fallback:
            content = self.matcher.search_content(prompt, files, limit=options.max_files)
            stats.content_candidates = len(content)

        merged = [
            c for c in merge_candidates(lexical, semantic, content)
            if self._selectable(c, files, options)
        ]
        stats.merged_candidates = len(merged)
        selected = merged[: options.max_files]
        selected_paths = [c.file_path for c in selected]
        for cand in selected:
            safe_emit(self.progress, ProgressEvent.analyzing(cand.file_path))
            safe_emit(self.progress, ProgressEvent.selected(cand.file_path, cand.similarity))

        # Dependencies
        selected_set = set(selected_paths)
        config_files = {
            p: files[p]
            for p in sorted(files)
            if p not in selected_set and is_config_file(p) and not classify_file(p, files[p]).is_binary
        }
        records = {
            p: describe_file(project_id, p, files[p], options.version_id or "")
            for p in self._paths_to_describe(selected_paths, files)
        }
        dependency_files = self.resolver.resolve(selected_paths, records, files, exclude=config_files.keys())
        stats.states.append(AssemblyState.RESOLVED.value)

        # Budget
        allocation = self.allocator.allocate(
            budget_tokens, history, config_files, selected, files, dependency_files
        )
        stats.states.append(AssemblyState.ALLOCATED.value)

        bundle = ContextBundle(
            project_id=project_id,
            prompt=prompt,
            conversation_history=allocation.conversation_history,
            relevant_files=allocation.relevant_files,
            dependency_files=allocation.dependency_files,
            config_files=allocation.config_files,
        )

        stats.selected_files = len(bundle.relevant_files)
        stats.dependency_files = len(bundle.dependency_files)
        stats.config_files = len(bundle.config_files)
        stats.history_messages = len(bundle.conversation_history)
        stats.category_budgets = allocation.budgets.model_dump()
        stats.history_tokens = allocation.history_tokens
        stats.config_tokens = allocation.config_tokens
        stats.relevant_tokens = allocation.relevant_tokens
        stats.dependency_tokens = allocation.dependency_tokens
        stats.total_tokens = allocation.total_tokens
        stats.budget_exhausted = allocation.budget_exhausted
        stats.truncated_files = allocation.truncated_files
        stats.omitted_files = allocation.omitted_files

        for path in bundle.file_paths():
            safe_emit(self.progress, ProgressEvent.reading(path))
        safe_emit(self.progress, ProgressEvent.context_ready(len(bundle.file_paths()), stats.total_tokens))

        stats.assembly_time_ms = round((time.time() - start_time) * 1000, 2)
        stats.states.append(AssemblyState.DONE.value)
        bundle.stats = stats
        bundle.summary = build_summary(stats)

        logger.info(
            f"Built context for {project_id}: {stats.selected_files} relevant, "
            f"{stats.dependency_files} dependencies, {stats.config_files} config, "
            f"{stats.total_tokens}/{budget_tokens} tokens in {stats.assembly_time_ms:.0f}ms"
        )
        return bundle

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------

    async def _semantic_search(
        self,
        project_id: str,
        prompt: str,
        options: BuildOptions,
        files: dict[str, str],
    ) -> list[SearchCandidate]:
        category_filter = None
        if not options.include_tests:
            category_filter = [c for c in FileCategory if c not in (FileCategory.TEST, FileCategory.BINARY)]
        return await self.semantic.search(
            project_id,
            prompt,
            version_id=options.version_id,
            category_filter=category_filter,
            threshold=self.config.search.similarity_threshold,
            limit=self.config.search.semantic_limit,
            files=files if self.config.search.auto_index else None,
        )

    async def _await_semantic(
        self,
        task: asyncio.Task | None,
        deadline: float,
        stats: ContextStats,
    ) -> list[SearchCandidate]:
        if task is None:
            return []

        done, _ = await asyncio.wait({task}, timeout=deadline)
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            stats.semantic_timed_out = True
            stats.semantic_error = f"Semantic search exceeded the {deadline}s deadline"
            stats.states.append(AssemblyState.ERROR.value)
            logger.warning(f"{stats.semantic_error}; using lexical matches only")
            return []

        try:
            results = task.result()
        except (ProviderError, IndexUnavailableError, InvalidInputError) as e:
            stats.semantic_search_failed = True
            stats.semantic_error = f"{type(e).__name__}: {e}"
            stats.states.append(AssemblyState.ERROR.value)
            logger.warning(f"Semantic search failed ({stats.semantic_error}); using lexical matches only")
            return []

        stats.states.append(AssemblyState.SEMANTIC_COMPLETE.value)
        return results

    async def _load_history(self, project_id: str, limit: int, stats: ContextStats) -> list[ConversationMessage]:
        if self.conversation_store is None or limit == 0:
            return []
        try:
            return await self.conversation_store.get_recent_messages(project_id, limit)
        except StoreError as e:
            stats.history_unavailable = True
            logger.warning(f"Conversation history unavailable for {project_id}: {e}")
            return []

    def _selectable(self, cand: SearchCandidate, files: dict[str, str], options: BuildOptions) -> bool:
        path = cand.file_path
        if path not in files or not is_valid_path(path) or is_secret_file(path):
            return False
        if classify_file(path, files[path]).is_binary:
            return False
        if cand.category == FileCategory.TEST and not options.include_tests:
            # Explicit mentions still count
            return CandidateSource.LEXICAL in cand.sources
        return True

    def _paths_to_describe(self, selected: list[str], files: dict[str, str]) -> list[str]:
        if self.resolver.config.depth > 1:
            return sorted(files)
        return selected


def _usable_files(files: dict[str, str]) -> dict[str, str]:
    """Drop malformed paths and environment secrets from a loaded project."""
    usable = {}
    for path, content in files.items():
        if not is_valid_path(path):
            logger.warning(f"Skipping malformed path {path!r}")
            continue
        if is_secret_file(path):
            logger.debug(f"Skipping secret file {path}")
            continue
        usable[path] = content
    return usable


def _validate(
    project_id: str,
    prompt: str,
    options: BuildOptions,
    budget_tokens: int,
    deadline: float,
) -> None:
    if not isinstance(project_id, str) or not project_id.strip():
        raise InvalidInputError("project_id is required")
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidInputError("prompt is required")
    if budget_tokens <= 0:
        raise InvalidInputError(f"budget_tokens must be positive, got {budget_tokens}")
    if options.message_limit < 0:
        raise InvalidInputError(f"message_limit must be >= 0, got {options.message_limit}")
    if options.max_files < 1:
        raise InvalidInputError(f"max_files must be >= 1, got {options.max_files}")
    if deadline < 0:
        raise InvalidInputError(f"deadline must be >= 0, got {deadline}")


def build_summary(stats: ContextStats) -> str:
    """One-paragraph description of what a bundle contains."""
    method = "semantic search" if stats.semantic_enabled and not stats.degraded else "lexical search"
    summary = (
        f"Selected {stats.selected_files}/{stats.total_files} files using {method} "
        f"(found {stats.merged_candidates} matches). "
        f"Conversation: {stats.history_messages} messages."
    )
    if stats.semantic_timed_out:
        summary += " Semantic search timed out; lexical matches only."
    elif stats.semantic_search_failed:
        summary += " Semantic search unavailable; lexical matches only."
    if stats.truncated_files:
        summary += f" Token budget exhausted: {len(stats.truncated_files)} files truncated."
    return summary
