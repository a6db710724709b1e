"""Data models for classified project files."""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel


class FileCategory(str, Enum):
    """Coarse role of a file inside a project."""

    CONFIG = "config"
    TEST = "test"
    TYPES = "types"
    COMPONENT = "component"
    UTILITY = "utility"
    API = "api"
    BINARY = "binary"
    OTHER = "other"


class FileClassification(BaseModel):
    """Result of classifying a single file."""

    category: FileCategory
    language: str = ""
    is_binary: bool = False


# Language detection by file extension
EXTENSION_LANGUAGE_MAP: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".css": "css",
    ".scss": "scss",
    ".html": "html",
    ".vue": "vue",
    ".svelte": "svelte",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "shell",
}

# Languages whose import statements we know how to extract
IMPORT_AWARE_LANGUAGES = {"python", "javascript", "typescript"}


def detect_language(file_path: str) -> str:
    """Detect language from file extension. Returns "" when unknown."""
    ext = PurePosixPath(file_path).suffix.lower()
    return EXTENSION_LANGUAGE_MAP.get(ext, "")
