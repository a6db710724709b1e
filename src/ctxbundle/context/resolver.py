"""Dependency expansion: resolve the imports of selected files to project files.

Import specifiers are resolved by a chain of ``ImportRule`` strategies.
Each rule turns a specifier into zero or more base paths; the resolver
then tries each configured extension suffix against the project's files
and takes the first that exists. Unresolvable specifiers (packages,
missing files) are dropped silently.
"""

from __future__ import annotations

import logging
import posixpath
import re
from abc import ABC, abstractmethod
from collections.abc import Collection, Iterable, Mapping, Sequence

import networkx as nx

from ctxbundle.config import ResolverConfig
from ctxbundle.index.models import FileEmbeddingRecord
from ctxbundle.parser.classifier import classify_file

logger = logging.getLogger("ctxbundle.resolver")

_DOTTED_MODULE_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")


# ---------------------------------------------------------------------------
# Import rules
# ---------------------------------------------------------------------------

class ImportRule(ABC):
    """Maps an import specifier to candidate base paths (no extension)."""

    @abstractmethod
    def candidates(self, specifier: str, from_file: str) -> list[str]:
        ...


class RelativeImportRule(ImportRule):
    """``./x`` and ``../x``, relative to the importing file's directory."""

    def candidates(self, specifier: str, from_file: str) -> list[str]:
        if not specifier.startswith(("./", "../")):
            return []
        joined = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), specifier))
        if joined == ".." or joined.startswith("../"):
            return []
        return [joined]


class AliasImportRule(ImportRule):
    """Prefix aliases such as ``@/`` -> ``src/``."""

    def __init__(self, aliases: Mapping[str, str]) -> None:
        # Longest prefix wins
        self.aliases = sorted(aliases.items(), key=lambda kv: -len(kv[0]))

    def candidates(self, specifier: str, from_file: str) -> list[str]:
        for prefix, target in self.aliases:
            if specifier.startswith(prefix):
                return [posixpath.normpath(target + specifier[len(prefix):])]
        return []


class PythonModuleRule(ImportRule):
    """Absolute dotted modules, tried from the root and from ``src/``."""

    def __init__(self, roots: Sequence[str] = ("", "src/")) -> None:
        self.roots = tuple(roots)

    def candidates(self, specifier: str, from_file: str) -> list[str]:
        if not from_file.endswith(".py") or not _DOTTED_MODULE_RE.match(specifier):
            return []
        base = specifier.replace(".", "/")
        return [root + base for root in self.roots]


def default_rules(config: ResolverConfig | None = None) -> list[ImportRule]:
    config = config or ResolverConfig()
    return [RelativeImportRule(), AliasImportRule(config.aliases), PythonModuleRule()]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class DependencyResolver:
    """Expands a set of selected files by the project files they import.

    Usage:
        resolver = DependencyResolver()
        deps = resolver.resolve(["src/app.ts"], records, contents)
    """

    def __init__(
        self,
        rules: Iterable[ImportRule] | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self.config = config or ResolverConfig()
        self.rules = list(rules) if rules is not None else default_rules(self.config)
        self.extensions = list(self.config.extensions)

    def resolve_import(self, specifier: str, from_file: str, known_paths: Collection[str]) -> str | None:
        """Resolve one specifier to an existing project path, or None."""
        for rule in self.rules:
            for base in rule.candidates(specifier, from_file):
                for ext in self.extensions:
                    path = base + ext
                    if path in known_paths and path != from_file:
                        return path
        return None

    def resolve(
        self,
        selected: Iterable[str],
        all_files: Mapping[str, FileEmbeddingRecord],
        contents: Mapping[str, str],
        exclude: Collection[str] = (),
        depth: int | None = None,
    ) -> dict[str, str]:
        """Resolve the imports of `selected` to path -> content.

        Args:
            selected: Paths whose imports are followed.
            all_files: Records providing each file's import list. A file
                reached at depth > 1 without a record is not expanded further.
            contents: Every project file's content; also the set of paths
                an import may resolve to.
            exclude: Paths never returned (e.g. config files).
            depth: Import hops to follow; defaults to the configured depth.

        Selected files, excluded files and binary files are never returned.
        The result is ordered by path.
        """
        depth = self.config.depth if depth is None else depth
        selected = list(selected)
        selected_set = set(selected)
        blocked = selected_set | set(exclude)
        if depth <= 0 or not selected:
            return {}

        graph = nx.DiGraph()
        frontier = [p for p in selected if p in all_files]
        seen: set[str] = set(frontier)
        for _ in range(depth):
            next_frontier: list[str] = []
            for path in frontier:
                for specifier in all_files[path].imports:
                    target = self.resolve_import(specifier, path, contents)
                    if target is None:
                        continue
                    graph.add_edge(path, target)
                    if target not in seen and target in all_files:
                        seen.add(target)
                        next_frontier.append(target)
            frontier = next_frontier

        reachable: set[str] = set()
        for source in selected:
            if source in graph:
                reachable.update(nx.single_source_shortest_path_length(graph, source, cutoff=depth))

        deps: dict[str, str] = {}
        for path in sorted(reachable - blocked):
            if classify_file(path, contents[path]).is_binary:
                continue
            deps[path] = contents[path]
        if deps:
            logger.debug(f"Resolved {len(deps)} dependencies for {len(selected_set)} files")
        return deps
