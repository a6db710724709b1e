"""Rich-powered console output for ctxbundle."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ctxbundle import __version__
from ctxbundle.context.models import ContextBundle
from ctxbundle.context.progress import ProgressEvent, ProgressEventKind
from ctxbundle.index.indexer import IndexResult


class Console:
    """Terminal output for ctxbundle using Rich."""

    def __init__(self, stderr: bool = False) -> None:
        self.console = RichConsole(stderr=stderr)

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]ctxbundle[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Budgeted context for code-generation prompts[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {escape(message)}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {escape(message)}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {escape(message)}")

    def indexing_progress(self) -> Progress:
        """Create a progress bar for indexing."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console,
        )

    def show_index_result(self, result: IndexResult) -> None:
        table = Table(title=f"Index: {result.project_id}", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Files", str(result.files))
        table.add_row("Embedded", str(result.embedded))
        table.add_row("From cache", str(result.cached))
        table.add_row("Unchanged", str(result.unchanged))
        table.add_row("Binary (skipped)", str(result.binary))
        table.add_row("Secret (skipped)", str(result.secret))
        table.add_row("Time", f"{result.elapsed_ms:.0f}ms")
        self.console.print(table)

    def show_bundle(self, bundle: ContextBundle) -> None:
        """Summary table of a context bundle."""
        stats = bundle.stats
        self.console.print(f"[bold]{escape(bundle.summary)}[/bold]")

        table = Table(border_style="cyan")
        table.add_column("Category", style="bold")
        table.add_column("Files", justify="right")
        table.add_column("Tokens", justify="right", style="cyan")
        table.add_column("Budget", justify="right", style="dim")

        budgets = stats.category_budgets
        table.add_row("History", str(stats.history_messages), f"{stats.history_tokens:,}", f"{budgets.get('history', 0):,}")
        table.add_row("Config", str(stats.config_files), f"{stats.config_tokens:,}", f"{budgets.get('config', 0):,}")
        table.add_row("Relevant", str(stats.selected_files), f"{stats.relevant_tokens:,}", f"{budgets.get('relevant', 0):,}")
        table.add_row(
            "Dependencies", str(stats.dependency_files), f"{stats.dependency_tokens:,}", f"{budgets.get('dependencies', 0):,}"
        )
        table.add_section()
        table.add_row("Total", "", f"{stats.total_tokens:,}", f"{stats.budget_tokens:,}")
        self.console.print(table)

        if bundle.relevant_files:
            files = Table(title="Relevant files", border_style="dim")
            files.add_column("Path", style="cyan")
            files.add_column("Score", justify="right")
            files.add_column("Sources")
            files.add_column("Reason", style="dim")
            for path, info in bundle.relevant_files.items():
                name = f"{escape(path)} [yellow](truncated)[/yellow]" if info.truncated else escape(path)
                files.add_row(name, f"{info.relevance:.2f}", ", ".join(info.sources), escape(info.reason))
            self.console.print(files)

        if stats.degraded:
            self.warning(f"Degraded mode: {stats.semantic_error}")
        self.console.print(
            f"[dim]fast path {stats.fast_path_ms:.1f}ms, search {stats.search_latency_ms:.0f}ms, "
            f"total {stats.assembly_time_ms:.0f}ms[/dim]"
        )

    def show_cache_stats(self, stats: dict[str, int]) -> None:
        table = Table(title="Embedding cache", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="cyan")
        for key, value in stats.items():
            table.add_row(key.replace("_", " ").capitalize(), f"{value:,}")
        self.console.print(table)

    def progress_sink(self, event: ProgressEvent) -> None:
        """Progress sink printing file activity as it happens."""
        if event.kind == ProgressEventKind.SELECTED and event.provisional:
            self.console.print(f"  [dim]~ {escape(event.path)}[/dim]")
        elif event.kind == ProgressEventKind.READING:
            self.console.print(f"  [cyan]→[/cyan] {escape(event.path)}")
        elif event.kind == ProgressEventKind.CONTEXT_READY:
            self.console.print(
                f"  [green]✓[/green] context ready: {event.file_count} files, ~{event.token_count:,} tokens"
            )
