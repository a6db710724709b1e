"""Merging candidates from several search paths."""

from __future__ import annotations

from collections.abc import Iterable

from ctxbundle.index.models import CandidateSource, SearchCandidate, candidate_sort_key
from ctxbundle.parser.models import FileCategory

_SOURCE_ORDER = {s: i for i, s in enumerate(CandidateSource)}


def merge_candidates(*groups: Iterable[SearchCandidate]) -> list[SearchCandidate]:
    """Deduplicate by path, keeping the max similarity and the union of sources.

    The result is sorted by descending similarity, then shorter path.
    """
    merged: dict[str, SearchCandidate] = {}
    for group in groups:
        for cand in group:
            current = merged.get(cand.file_path)
            if current is None:
                merged[cand.file_path] = cand.model_copy(deep=True)
                continue
            sources = sorted(set(current.sources) | set(cand.sources), key=_SOURCE_ORDER.__getitem__)
            category = current.category
            if category == FileCategory.OTHER:
                category = cand.category
            merged[cand.file_path] = SearchCandidate(
                file_path=cand.file_path,
                similarity=max(current.similarity, cand.similarity),
                sources=sources,
                category=category,
                reason=current.reason or cand.reason,
            )
    return sorted(merged.values(), key=candidate_sort_key)
