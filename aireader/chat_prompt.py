"""System prompt and session title helpers for the chat assistant."""

from __future__ import annotations

from typing import Optional

from aireader.paper import PaperContext, format_block

TITLE_MAX = 24

_DEFAULT_PROMPT = (
    "You are a careful research assistant helping the user read a "
    "specific academic paper. Be precise, cite sections by name, and "
    "answer in the user's language. If the paper text is not enough to "
    "answer, say so rather than guessing."
)

_TRUNCATED_NOTE = (
    "\n[\u2026paper text truncated to fit context window. Ask the user "
    "to enable a model with a larger context window if needed.]\n"
)


def default_system_prompt() -> str:
    """The built-in instructions used when the user has set none."""
    return _DEFAULT_PROMPT


def _paper_text(
    paper: PaperContext, context_window: int, max_tokens: int
) -> str:
    budget_chars: Optional[int] = None
    if context_window > 0:
        reserve = max(2000, max_tokens + 1000)
        budget_chars = max(0, int(context_window * 0.7) - reserve) * 4

    parts = ["\nFull paper text (block-by-block):\n\n"]
    current_page = -1
    written = 0
    for block in paper.blocks:
        chunk = ""
        if block.page != current_page:
            chunk += f"\n[page {block.page + 1}]\n"
            current_page = block.page
        chunk += format_block(block)
        if budget_chars is not None and written + len(chunk) > budget_chars:
            parts.append(_TRUNCATED_NOTE)
            break
        parts.append(chunk)
        written += len(chunk)
    return "".join(parts)


def build_system_prompt(
    paper: Optional[PaperContext],
    chat_prompt: str = "",
    include_paper_text: bool = False,
    context_window: int = 0,
    max_tokens: int = 4096,
) -> str:
    """Instructions plus the paper's name, TOC and, optionally, its text.

    Inlined text is capped at about 70% of ``context_window`` tokens, less a
    reserve for the answer; a window of zero or less means no cap.
    """
    out = (chat_prompt or default_system_prompt()) + "\n"

    if paper is not None:
        if paper.file_name:
            out += f"\nPaper file: {paper.file_name}\n"
        if paper.page_count > 0:
            out += f"Pages: {paper.page_count}\n"

        if paper.toc:
            out += "\nTable of contents (page \u00b7 title):\n"
            for entry in paper.toc:
                out += " " * (max(0, entry.level - 1) * 2)
                out += f"- p.{entry.start_page + 1} {entry.title}\n"

        if include_paper_text and len(paper.blocks) > 0:
            out += _paper_text(paper, context_window, max_tokens)

    return out


def derive_title(first_user_message: str) -> str:
    """A short session title from the user's first message."""
    line = ""
    for raw in first_user_message.split("\n"):
        candidate = raw.strip()
        if not candidate:
            continue
        if candidate.startswith("> ") or candidate.startswith("About this passage"):
            continue
        line = candidate
        break
    if not line:
        line = first_user_message.strip()
    if not line:
        return ""
    if len(line) > TITLE_MAX:
        line = line[:TITLE_MAX].strip() + "\u2026"
    return line