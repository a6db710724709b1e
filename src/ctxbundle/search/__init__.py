"""Candidate search: lexical fast path, semantic search and merging."""

from ctxbundle.search.lexical import FastPathMatcher, extract_mentions, extract_terms
from ctxbundle.search.merge import merge_candidates
from ctxbundle.search.semantic import SemanticSearch

__all__ = [
    "FastPathMatcher",
    "SemanticSearch",
    "extract_mentions",
    "extract_terms",
    "merge_candidates",
]
