"""Render a ContextBundle as a single prompt text block."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ctxbundle.context.models import ContextBundle

HISTORY_MESSAGES_SHOWN = 5


def format_for_prompt(
    bundle: ContextBundle,
    new_prompt: str,
    history_limit: int = HISTORY_MESSAGES_SHOWN,
) -> str:
    """Serialize the bundle for a downstream generator.

    Sections, each omitted when empty: summary, the last `history_limit`
    messages, config files, relevant files (descending relevance, with
    their reason), dependencies, and the new request.
    """
    sections: list[str] = [f"# Context Summary\n{bundle.summary}\n"]

    history = bundle.conversation_history[-history_limit:] if history_limit > 0 else []
    if history:
        sections.append("## Recent Conversation\n")
        for message in history:
            sections.append(f"**{message.role}**: {message.content}\n")

    if bundle.config_files:
        sections.append("\n## Configuration Files\n")
        for path in sorted(bundle.config_files):
            sections.append(_code_block(path, bundle.config_files[path]))

    if bundle.relevant_files:
        sections.append("\n## Relevant Files\n")
        ranked = sorted(
            bundle.relevant_files.items(),
            key=lambda kv: (-kv[1].relevance, len(kv[0]), kv[0]),
        )
        for path, info in ranked:
            sections.append(_code_block(path, info.content, info.reason))

    if bundle.dependency_files:
        sections.append("\n## Related Dependencies\n")
        for path in sorted(bundle.dependency_files):
            sections.append(_code_block(path, bundle.dependency_files[path]))

    sections.append("\n## New Request\n")
    sections.append(new_prompt)
    return "\n".join(sections)


def _code_block(path: str, content: str, reason: str = "") -> str:
    note = f"*{reason}*\n" if reason else ""
    return f"### {path}\n{note}```\n{content}\n```\n"
