"""Content classifier: category, language and binary detection for files.

Pure functions only. Binary/asset files are detected by extension and
well-known file names (lockfiles, minified or bundled output, sourcemaps),
plus a NUL-byte sniff when content is available. Such files are never sent
to an embedding provider; only their path and size are recorded.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import PurePosixPath

from ctxbundle.exceptions import InvalidInputError
from ctxbundle.parser.models import FileCategory, FileClassification, detect_language

BINARY_EXTENSIONS = (
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp", ".bmp", ".avif",
    # video / audio
    ".mp4", ".mov", ".avi", ".webm", ".mp3", ".wav", ".ogg",
    # fonts
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    # archives and documents
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".7z", ".rar", ".pdf",
    # compiled
    ".pyc", ".so", ".dylib", ".dll", ".exe", ".wasm",
    # generated bundles
    ".map", ".min.js", ".min.css", ".bundle.js",
)

LOCKFILES = frozenset({
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "poetry.lock",
    "cargo.lock",
    "composer.lock",
    "gemfile.lock",
})

# Files always offered to the bundle as configuration, regardless of relevance
_CONFIG_NAMES = frozenset({
    "package.json",
    "tsconfig.json",
    "pyproject.toml",
    "setup.cfg",
    "readme.md",
})
_CONFIG_PREFIXES = ("next.config.", "vite.config.", "tailwind.config.")
_ENV_TEMPLATES = frozenset({".env.example", ".env.sample", ".env.template"})

_CONFIG_CATEGORY_RE = re.compile(r"package\.json|tsconfig|\.config\.|pyproject\.toml|setup\.cfg|(^|/)\.env")
_TEST_RE = re.compile(r"\.test\.|\.spec\.|__tests__|__mocks__|(^|/)tests?/|(^|/)test_[^/]*\.py$|_test\.py$")
_TYPES_RE = re.compile(r"\.d\.ts$|(^|/)types/|\.pyi$")
_COMPONENT_RE = re.compile(r"component|widget|view")
_UTILITY_RE = re.compile(r"util|helper|lib")
_API_RE = re.compile(r"api|route|endpoint|controller")


def content_hash(content: str | bytes) -> str:
    """Deterministic digest of a file's bytes (sha256, hex)."""
    if isinstance(content, str):
        content = content.encode("utf-8", errors="surrogatepass")
    return hashlib.sha256(content).hexdigest()


def is_valid_path(file_path: str) -> bool:
    """A project-relative POSIX path: non-empty, not absolute, no NUL bytes."""
    return bool(file_path) and not file_path.startswith("/") and "\x00" not in file_path


def is_binary_path(file_path: str) -> bool:
    """Check the extension/name deny list for binary and generated assets."""
    path_lower = file_path.lower()
    if path_lower.endswith(BINARY_EXTENSIONS):
        return True
    return PurePosixPath(path_lower).name in LOCKFILES


def is_config_file(file_path: str) -> bool:
    """Whether a file belongs in the bundle's always-included config section."""
    name = PurePosixPath(file_path).name.lower()
    if name in _CONFIG_NAMES:
        return True
    if name in _ENV_TEMPLATES:
        return True
    return name.startswith(_CONFIG_PREFIXES)


def is_secret_file(file_path: str) -> bool:
    """Whether a file holds environment secrets (`.env`, `.env.local`, ...).

    Secret files are never selected, bundled or embedded. The committed
    templates (`.env.example`, `.env.sample`, `.env.template`) are not secret.
    """
    name = PurePosixPath(file_path).name.lower()
    if name in _ENV_TEMPLATES:
        return False
    return name == ".env" or name.startswith(".env.")


def classify_file(
    file_path: str,
    content: str | None = None,
) -> FileClassification:
    """Assign a category and language tag to a file.

    Args:
        file_path: Project-relative POSIX path.
        content: Optional file content, used for binary sniffing and
            component detection.

    Raises:
        InvalidInputError: If the path is empty or absolute.
    """
    if not is_valid_path(file_path):
        raise InvalidInputError(f"Invalid file path: {file_path!r}")

    language = detect_language(file_path)
    if is_binary_path(file_path) or (content is not None and "\x00" in content):
        return FileClassification(category=FileCategory.BINARY, language=language, is_binary=True)

    path = file_path.lower()
    if _CONFIG_CATEGORY_RE.search(path):
        category = FileCategory.CONFIG
    elif _TEST_RE.search(path):
        category = FileCategory.TEST
    elif _TYPES_RE.search(path):
        category = FileCategory.TYPES
    elif _COMPONENT_RE.search(path) or (content is not None and "export default function" in content):
        category = FileCategory.COMPONENT
    elif _UTILITY_RE.search(path):
        category = FileCategory.UTILITY
    elif _API_RE.search(path):
        category = FileCategory.API
    else:
        category = FileCategory.OTHER

    return FileClassification(category=category, language=language, is_binary=False)
