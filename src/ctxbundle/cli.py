"""Command-line interface for ctxbundle."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from ctxbundle import __version__
from ctxbundle.config import (
    INDEX_DB_FILE,
    ProjectConfig,
    find_project_root,
    get_config_value,
    get_ctxbundle_dir,
    load_config,
    save_config,
    set_config_value,
)
from ctxbundle.context.engine import ContextAssembler
from ctxbundle.context.models import BuildOptions
from ctxbundle.exceptions import CtxBundleError
from ctxbundle.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxbundle project found. Run 'ctxbundle init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _project_id(root: Path, config: ProjectConfig) -> str:
    return config.name or root.name


@click.group()
@click.version_option(version=__version__, prog_name="ctxbundle")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """ctxbundle - budgeted context for code-generation prompts."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True).console, show_path=False)],
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--provider", default=None, type=click.Choice(["openai", "local"]), help="Embedding provider.")
@click.option("--model", default=None, help="Embedding model name.")
def init(path: str | None, provider: str | None, model: str | None):
    """Create .ctxbundle/config.json for a project."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxbundle for: {root}")

    config = load_config(root)
    config.name = root.name
    config.root_path = str(root)
    if provider:
        config.embedding.provider = provider
        if provider == "local":
            config.embedding.dimensions = 256
    if model:
        config.embedding.model = model

    save_config(root, config)
    console.success("Configuration saved to .ctxbundle/")


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--version-id", default="", help="Version to index the files under.")
def index(path: str | None, version_id: str):
    """Embed the project's files into the vector index."""
    root = _get_project_root(path)
    config = load_config(root)
    project_id = _project_id(root, config)

    try:
        assembler = ContextAssembler.for_project(root, config)
        files = asyncio.run(assembler.file_store.get_files(project_id))
        console.info(f"Indexing {len(files)} files...")

        with console.indexing_progress() as progress:
            task = progress.add_task("Embedding...", total=None)

            def on_progress(done: int, total: int, file_path: str):
                progress.update(task, total=total, completed=done, description=f"Embedding {file_path}")

            result = asyncio.run(
                assembler.semantic.indexer.index_project(project_id, files, version_id, on_progress)
            )
    except CtxBundleError as e:
        console.error(str(e))
        sys.exit(1)

    console.show_index_result(result)
    console.success(f"Index saved to .ctxbundle/{INDEX_DB_FILE}")


@main.command()
@click.argument("prompt")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--budget", "-b", default=None, type=int, help="Token budget (default: from config).")
@click.option("--max-files", default=15, type=int, help="Maximum relevant files (default: 15).")
@click.option("--messages", default=20, type=int, help="Conversation messages to consider (default: 20).")
@click.option("--include-tests", is_flag=True, help="Allow test files as relevant files.")
@click.option("--deadline", default=None, type=float, help="Semantic search deadline in seconds.")
@click.option(
    "--format", "output_format",
    type=click.Choice(["summary", "prompt", "json"]),
    default="summary",
    help="Output format (default: summary).",
)
def build(
    prompt: str, path: str | None, budget: int | None, max_files: int, messages: int,
    include_tests: bool, deadline: float | None, output_format: str,
):
    """Assemble a context bundle for PROMPT.

    Examples:

        ctxbundle build "update the login handler in auth/login.ts"

        ctxbundle build "add pagination to the users API" --budget 8000 --format prompt
    """
    root = _get_project_root(path)
    config = load_config(root)
    # Keep stdout clean for machine-readable formats
    out = console if output_format == "summary" else Console(stderr=True)

    options = BuildOptions(
        message_limit=messages,
        max_files=max_files,
        include_tests=include_tests,
        budget_tokens=budget,
        deadline_s=deadline,
    )
    try:
        assembler = ContextAssembler.for_project(root, config, progress=out.progress_sink)
        bundle = asyncio.run(assembler.build_context(_project_id(root, config), prompt, options))
    except CtxBundleError as e:
        out.error(str(e))
        sys.exit(1)

    if output_format == "json":
        click.echo(bundle.model_dump_json(indent=2))
    elif output_format == "prompt":
        click.echo(bundle.format_for_prompt(prompt))
    else:
        console.console.print()
        console.show_bundle(bundle)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxbundle configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxbundle config get <key>")
            sys.exit(1)
        try:
            console.console.print(f"{key} = {get_config_value(config, key)}", markup=False)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxbundle config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ValueError as e:
            console.error(f"Invalid value for {key}: {e}")
            sys.exit(1)


# =========================================================================
# Cache Management
# =========================================================================

@main.command("cache")
@click.argument("action", type=click.Choice(["stats", "clear"]))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--index", "with_index", is_flag=True, help="Also drop the project's vector index records.")
def cache_cmd(action: str, path: str | None, with_index: bool):
    """Show or clear the persistent embedding cache."""
    from ctxbundle.embeddings.store import SQLiteEmbeddingStore
    from ctxbundle.index.store import SQLiteVectorIndex

    root = _get_project_root(path)
    config = load_config(root)
    cb_dir = get_ctxbundle_dir(root)
    store = SQLiteEmbeddingStore(cb_dir / config.cache.db_file)
    vector_index = SQLiteVectorIndex(cb_dir / INDEX_DB_FILE)

    try:
        if action == "stats":
            index_stats = vector_index.stats()
            console.show_cache_stats({
                "cached_embeddings": store.count(),
                "indexed_files": index_stats["files"],
                "embedded_files": index_stats["embedded"],
                "projects": index_stats["projects"],
            })
        else:
            removed = store.clear()
            console.success(f"Removed {removed} cached embeddings")
            if with_index:
                dropped = vector_index.delete(_project_id(root, config))
                console.success(f"Removed {dropped} index records")
    except CtxBundleError as e:
        console.error(str(e))
        sys.exit(1)
    finally:
        store.close()
        vector_index.close()


if __name__ == "__main__":
    main()
