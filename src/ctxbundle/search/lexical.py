"""Lexical fast path: keyword, mention and file-name matching over paths.

Runs synchronously and only looks at paths, so it answers in a few
milliseconds even for very large projects. Its result is shown before
semantic search finishes. Lexical matches are explicit, so they always
carry similarity 1.0.

Rules, all applied:
  a. Structural vocabulary: configured keywords ("auth", "route", ...)
     present in the prompt, matched against path segments.
  b. Explicit mentions: ``<verb> <token>`` (edit, modify, update, in,
     file:) with the token matched as a substring of the path.
  c. Prompt terms: significant prompt words matched against the file
     name or a directory name.

``search_content`` is a slower fallback that scans file contents for
quoted strings and capitalized phrases from the prompt.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from ctxbundle.config import DEFAULT_KEYWORDS
from ctxbundle.index.models import CandidateSource, SearchCandidate, candidate_sort_key
from ctxbundle.parser.classifier import classify_file, is_binary_path, is_secret_file, is_valid_path
from ctxbundle.parser.models import FileCategory

logger = logging.getLogger("ctxbundle.search")

_MENTION_RE = re.compile(r"(?:\bin|\bfile:|\bedit|\bmodify|\bupdate)\s+([\w/\-.@]+)", re.IGNORECASE)
_WORD_SPLIT_RE = re.compile(r"[\s,.:;!?()\[\]{}\"'`]+")
_QUOTED_RE = re.compile(r"[\"']([^\"']{10,})[\"']")
_CAPITAL_PHRASE_RE = re.compile(r"[A-Z][A-Z\s]{8,}")

STOP_WORDS = frozenset({
    "the", "and", "for", "that", "this", "with", "from", "have", "been",
    "will", "can", "should", "would", "could", "into", "when", "where",
    "how", "what", "why", "which", "there", "their", "about", "also",
    "just", "more", "some", "than", "them", "then", "these", "very",
    "after", "before", "between", "each", "other", "such", "only",
    "make", "like", "over", "back", "still", "through", "please", "but",
    "add", "fix", "bug", "error", "issue", "feature", "implement", "its",
    "create", "update", "delete", "remove", "change", "modify", "refactor",
    "edit", "new", "all", "any", "use", "using", "file", "files", "code",
    "function", "method", "class", "system", "are", "was", "not", "you",
})

KEYWORD_REASON = "Keyword match from prompt"
MENTION_REASON = "Mentioned in prompt"
CONTENT_REASON = "Content match - file contains text from prompt"


def extract_mentions(prompt: str) -> list[str]:
    """Tokens following edit/modify/update/in/file: in the prompt."""
    mentions = []
    for m in _MENTION_RE.finditer(prompt):
        token = m.group(1).rstrip(".,;:!?")
        if len(token) < 3 or token.lower() in STOP_WORDS:
            continue
        mentions.append(token)
    return list(dict.fromkeys(mentions))


def extract_terms(prompt: str, stop_words: Iterable[str] = STOP_WORDS) -> list[str]:
    """Significant lowercase words of the prompt (longer than 2 characters)."""
    stop = set(stop_words)
    words = [w for w in _WORD_SPLIT_RE.split(prompt.lower()) if len(w) > 2 and w not in stop]
    return list(dict.fromkeys(w for w in words if re.fullmatch(r"[\w\-]+", w)))


class FastPathMatcher:
    """Path-only matcher producing instant provisional candidates.

    Usage:
        matcher = FastPathMatcher()
        candidates = matcher.match("update the login handler in auth/login.ts", paths)
    """

    def __init__(self, keywords: Iterable[str] | None = None) -> None:
        self.keywords = tuple(k.lower() for k in (keywords if keywords is not None else DEFAULT_KEYWORDS))

    def match(
        self,
        prompt: str,
        file_paths: Iterable[str],
        include_tests: bool = True,
    ) -> list[SearchCandidate]:
        prompt_lower = prompt.lower()
        keywords = [k for k in self.keywords if k in prompt_lower]
        mentions = [m.lower() for m in extract_mentions(prompt)]
        terms = extract_terms(prompt)

        keyword_re = _alternation(keywords)
        name_re = _alternation(terms)
        dir_re = re.compile(r"(?:^|/)(?:" + "|".join(map(re.escape, terms)) + r")") if terms else None

        matched: dict[str, str] = {}
        for path in file_paths:
            path_lower = path.lower()
            if any(m in path_lower for m in mentions):
                matched[path] = MENTION_REASON
                continue
            name = path_lower.rsplit("/", 1)[-1]
            if (
                (keyword_re is not None and keyword_re.search(path_lower))
                or (name_re is not None and name_re.search(name))
                or (dir_re is not None and dir_re.search(path_lower))
            ):
                matched[path] = KEYWORD_REASON

        candidates = []
        for path, reason in matched.items():
            if not is_valid_path(path):
                logger.warning(f"Skipping malformed path {path!r}")
                continue
            if is_binary_path(path) or is_secret_file(path):
                continue
            category = classify_file(path).category
            if category == FileCategory.TEST and not include_tests and reason != MENTION_REASON:
                continue
            candidates.append(
                SearchCandidate(
                    file_path=path,
                    similarity=1.0,
                    sources=[CandidateSource.LEXICAL],
                    category=category,
                    reason=reason,
                )
            )
        return sorted(candidates, key=candidate_sort_key)

    def search_content(
        self,
        prompt: str,
        files: dict[str, str],
        limit: int = 10,
    ) -> list[SearchCandidate]:
        """Find files containing quoted text or capitalized phrases from the prompt."""
        terms = [m.group(1) for m in _QUOTED_RE.finditer(prompt)]
        terms += [p.strip() for p in _CAPITAL_PHRASE_RE.findall(prompt)]
        terms = [t for t in dict.fromkeys(terms) if t]
        if not terms:
            return []

        scored: list[tuple[int, str]] = []
        for path in sorted(files):
            content = files[path]
            if not is_valid_path(path):
                logger.warning(f"Skipping malformed path {path!r}")
                continue
            if not isinstance(content, str) or is_binary_path(path) or is_secret_file(path):
                continue
            content_lower = content.lower()
            score = 0
            for term in terms:
                if term in content:
                    score += 100
                elif term.lower() in content_lower:
                    score += 50
            if score > 0:
                scored.append((score, path))

        scored.sort(key=lambda x: (-x[0], len(x[1]), x[1]))
        return [
            SearchCandidate(
                file_path=path,
                similarity=0.9,
                sources=[CandidateSource.CONTENT],
                category=classify_file(path, files[path]).category,
                reason=CONTENT_REASON,
            )
            for _, path in scored[:limit]
        ]


def _alternation(words: list[str]) -> re.Pattern | None:
    if not words:
        return None
    return re.compile("|".join(re.escape(w) for w in words))
