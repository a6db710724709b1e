"""Context assembly: budget-bounded bundles of history and project files.

Usage:
    from ctxbundle.context import ContextAssembler, BuildOptions

    assembler = ContextAssembler.for_project(root)
    bundle = await assembler.build_context("proj", "fix the login bug", BuildOptions(budget_tokens=8000))
    print(bundle.format_for_prompt("fix the login bug"))
"""

from ctxbundle.context.budget import BudgetAllocator, relevance_reason, split_budget
from ctxbundle.context.engine import AssemblyState, ContextAssembler
from ctxbundle.context.models import (
    BuildOptions,
    ContextBundle,
    ContextStats,
    ConversationMessage,
    RelevantFile,
)
from ctxbundle.context.progress import ProgressEvent, ProgressEventKind, safe_emit
from ctxbundle.context.render import format_for_prompt
from ctxbundle.context.resolver import DependencyResolver, ImportRule

__all__ = [
    "AssemblyState",
    "BudgetAllocator",
    "BuildOptions",
    "ContextAssembler",
    "ContextBundle",
    "ContextStats",
    "ConversationMessage",
    "DependencyResolver",
    "ImportRule",
    "ProgressEvent",
    "ProgressEventKind",
    "RelevantFile",
    "format_for_prompt",
    "relevance_reason",
    "safe_emit",
    "split_budget",
]
