"""Core parsing orchestration: turn raw files into index records."""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path

from ctxbundle.config import IndexerConfig
from ctxbundle.index.models import FileEmbeddingRecord
from ctxbundle.parser.classifier import classify_file, content_hash
from ctxbundle.parser.imports import extract_exports, extract_imports
from ctxbundle.parser.models import IMPORT_AWARE_LANGUAGES


def describe_file(
    project_id: str,
    file_path: str,
    content: str,
    version_id: str = "",
) -> FileEmbeddingRecord:
    """Build a record for a file without embedding it.

    Binary files get metadata only: no imports, no exports.
    """
    classification = classify_file(file_path, content)
    imports: list[str] = []
    exports: list[str] = []
    if not classification.is_binary and classification.language in IMPORT_AWARE_LANGUAGES:
        imports = extract_imports(content, classification.language)
        exports = extract_exports(content, classification.language)

    return FileEmbeddingRecord(
        project_id=project_id,
        version_id=version_id,
        file_path=file_path,
        content_hash=content_hash(content),
        language=classification.language,
        category=classification.category,
        imports=imports,
        exports=exports,
        size_bytes=len(content.encode("utf-8", errors="replace")),
    )


def describe_files(
    project_id: str,
    files: dict[str, str],
    version_id: str = "",
) -> dict[str, FileEmbeddingRecord]:
    """Describe every file of a project, keyed by path (sorted)."""
    return {
        path: describe_file(project_id, path, files[path], version_id)
        for path in sorted(files)
    }


def collect_files(root: str | Path, config: IndexerConfig | None = None) -> list[Path]:
    """Collect all project files under `root`, respecting exclusion patterns."""
    root = Path(root).resolve()
    if config is None:
        config = IndexerConfig()

    files = []
    max_size = config.max_file_size_kb * 1024
    all_exclude = config.exclude_patterns + _read_gitignore(root)

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)

        dirnames[:] = [
            d
            for d in dirnames
            if not _should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, all_exclude)
        ]

        for filename in filenames:
            rel_path = os.path.join(rel_dir, filename) if rel_dir != "." else filename
            if _should_exclude(rel_path, all_exclude):
                continue

            full_path = Path(dirpath) / filename
            try:
                if full_path.stat().st_size > max_size:
                    continue
            except OSError:
                continue

            files.append(full_path)

    return sorted(files)


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def _read_gitignore(root: Path) -> list[str]:
    """Read .gitignore patterns from the project root."""
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []

    patterns = []
    try:
        for line in gitignore.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                if line.endswith("/"):
                    line = line[:-1]
                patterns.append(line)
    except OSError:
        pass
    return patterns
