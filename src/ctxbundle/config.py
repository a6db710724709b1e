"""Configuration management for ctxbundle."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

CTXBUNDLE_DIR = ".ctxbundle"
CONFIG_FILE = "config.json"
INDEX_DB_FILE = "index.db"
CONVERSATIONS_DIR = "conversations"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    api_key_env: str = ""
    base_url: str | None = None
    dimensions: int = 1536
    batch_size: int = 50
    batch_delay_s: float = 0.1
    batch_timeout_s: float = 10.0
    retry_backoff_s: float = 1.0
    max_chars: int = 8000

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        env_map = {
            "openai": "OPENAI_API_KEY",
        }
        env_var = env_map.get(self.provider, "")
        return os.environ.get(env_var) if env_var else None


class CacheConfig(BaseModel):
    """In-process embedding cache configuration."""

    ttl_seconds: float = 300.0
    db_file: str = "embeddings.db"


DEFAULT_KEYWORDS = (
    "auth",
    "api",
    "component",
    "service",
    "util",
    "helper",
    "route",
    "page",
    "model",
    "controller",
    "middleware",
    "config",
    "test",
    "type",
    "interface",
    "hook",
)


class SearchConfig(BaseModel):
    """Candidate search configuration."""

    similarity_threshold: float = 0.3
    semantic_limit: int = 15
    semantic_deadline_s: float = 2.0
    keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    content_fallback: bool = True
    auto_index: bool = True


class BudgetSplit(BaseModel):
    """Proportional split of the token budget between categories."""

    history: float = 0.20
    config: float = 0.10
    relevant: float = 0.40
    dependencies: float = 0.20
    slack: float = 0.10

    @model_validator(mode="after")
    def _check_fractions(self) -> BudgetSplit:
        parts = (self.history, self.config, self.relevant, self.dependencies, self.slack)
        if any(p < 0 for p in parts):
            raise ValueError("Budget fractions must be non-negative")
        if abs(sum(parts) - 1.0) > 1e-6:
            raise ValueError(f"Budget fractions must sum to 1.0, got {sum(parts):.3f}")
        return self


class BudgetConfig(BaseModel):
    """Token budget configuration."""

    budget_tokens: int = 100_000
    split: BudgetSplit = Field(default_factory=BudgetSplit)
    rollover: bool = True
    chars_per_token: int = 4
    min_partial_tokens: int = 25


class ResolverConfig(BaseModel):
    """Import resolution configuration."""

    depth: int = 1
    aliases: dict[str, str] = Field(default_factory=lambda: {"@/": "src/"})
    extensions: list[str] = Field(
        default_factory=lambda: [
            "",
            ".ts",
            ".tsx",
            ".js",
            ".jsx",
            ".py",
            "/index.ts",
            "/index.tsx",
            "/index.js",
            "/__init__.py",
        ]
    )


class IndexerConfig(BaseModel):
    """Indexer configuration."""

    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "node_modules",
            "__pycache__",
            ".git",
            ".ctxbundle",
            "dist",
            "build",
            ".venv",
            "venv",
            ".next",
            "*.pyc",
        ]
    )
    max_file_size_kb: int = 500


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxbundle directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXBUNDLE_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXBUNDLE_DIR).is_dir():
        return current
    return None


def get_ctxbundle_dir(root: Path) -> Path:
    """Get the .ctxbundle directory for a project root."""
    return root / CTXBUNDLE_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxbundle/config.json."""
    config_path = get_ctxbundle_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxbundle/config.json."""
    cb_dir = get_ctxbundle_dir(root)
    cb_dir.mkdir(parents=True, exist_ok=True)
    config_path = cb_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def get_config_value(config: ProjectConfig, key: str) -> Any:
    """Read a nested config value using dot notation (e.g., 'budget.rollover')."""
    target: Any = config.model_dump()
    for part in key.split("."):
        if not isinstance(target, dict) or part not in target:
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    return target


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'embedding.provider')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)
