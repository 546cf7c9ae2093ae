"""The paper-reading tools the chat assistant can call."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from aireader.block_list import BlockKind
from aireader.llm import ToolCall
from aireader.paper import PaperContext, format_block

SNIPPET_RADIUS = 60
DEFAULT_TOP_K = 10
MAX_TOP_K = 50

_TOC_MISSING = (
    "TOC has not been generated yet. Use read_page to fetch content "
    "by page number, or ask the user to click 'Generate' in the TOC "
    "sidebar first."
)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def list_sections(paper: Optional[PaperContext]) -> str:
    """The table of contents as a JSON array, or a hint when there is none."""
    if paper is None:
        return "Error: TOC service unavailable."
    if not paper.toc:
        return _TOC_MISSING
    return _dumps(
        [
            {
                "id": entry.id,
                "level": entry.level,
                "title": entry.title,
                "page": entry.start_page + 1,
            }
            for entry in paper.toc
        ]
    )


def read_page(paper: Optional[PaperContext], page: int) -> str:
    """The extracted text of one 1-indexed page."""
    if page < 1 or paper is None:
        return f"Error: invalid page {page}."
    page_idx = page - 1
    if page_idx >= paper.page_count:
        return (
            f"Error: page {page} is out of range (paper has {paper.page_count} pages)."
        )
    chunks = [format_block(b) for b in paper.blocks if b.page == page_idx]
    if not chunks:
        return (
            f"Page {page} has no extracted text. The page may "
            "be image-only; consider the vision-read tool."
        )
    return "".join(chunks).strip()


def read_section(paper: Optional[PaperContext], section_id: str) -> str:
    """The text of a TOC section, including its nested subsections."""
    if not section_id:
        return "Error: section_id is required."
    if paper is None:
        return "Error: paper or TOC unavailable."
    if not paper.toc:
        return (
            "Error: TOC has not been generated. Ask the user to click "
            "'Generate' in the TOC sidebar, or use read_page instead."
        )

    row = next((i for i, e in enumerate(paper.toc) if e.id == section_id), None)
    if row is None:
        return f"Error: section '{section_id}' not found in the TOC."
    entry = paper.toc[row]
    if entry.start_block < 0:
        return f"Error: section '{section_id}' has no start block."

    next_start: Optional[int] = None
    for later in paper.toc[row + 1 :]:
        if later.level <= entry.level:
            if later.start_block >= 0:
                next_start = later.start_block
            break

    parts = [f"# {entry.title}\n"]
    current_page = -1
    for block in paper.blocks:
        if block.id < entry.start_block:
            continue
        if next_start is not None and block.id >= next_start:
            break
        if block.page != current_page:
            parts.append(f"\n[page {block.page + 1}]\n")
            current_page = block.page
        parts.append(format_block(block))
    return "".join(parts).strip()


def get_user_selection(paper: Optional[PaperContext]) -> str:
    """The highlighted text and its 1-indexed page, as JSON."""
    if paper is None:
        return '{"text":"","page":0}'
    text = paper.selection
    page = paper.selection_page
    return _dumps({"text": text, "page": 0 if (not text or page < 0) else page + 1})


def search_paper(
    paper: Optional[PaperContext], query: str, top_k: int = DEFAULT_TOP_K
) -> str:
    """Case-insensitive substring search over the blocks, best matches first."""
    if not query.strip():
        return "Error: query is required."
    if paper is None:
        return "Error: no paper loaded."
    if top_k <= 0:
        top_k = DEFAULT_TOP_K
    top_k = min(top_k, MAX_TOP_K)

    needle = query.strip()
    pattern = re.compile(re.escape(needle), re.IGNORECASE)
    hits = []
    for block in paper.blocks:
        if not block.text:
            continue
        positions = [m.start() for m in pattern.finditer(block.text)]
        if positions:
            hits.append((block, len(positions), positions[0]))
    if not hits:
        return "[]"

    hits.sort(key=lambda hit: hit[1], reverse=True)
    results = []
    for block, score, first_at in hits[:top_k]:
        start = max(0, first_at - SNIPPET_RADIUS)
        end = min(len(block.text), first_at + len(needle) + SNIPPET_RADIUS)
        snippet = block.text[start:end]
        if start > 0:
            snippet = "..." + snippet
        if end < len(block.text):
            snippet += "..."
        results.append(
            {
                "block_id": block.id,
                "page": block.page + 1,
                "snippet": snippet,
                "score": score,
            }
        )
    return _dumps(results)


def _label_variants(needle: str) -> list[str]:
    lowered = needle.lower()
    for prefix, others in (
        ("figure ", ("Fig. ", "Fig ")),
        ("fig. ", ("Figure ", "Fig ")),
        ("fig ", ("Figure ", "Fig. ")),
    ):
        if lowered.startswith(prefix):
            rest = needle[len(prefix) :]
            return [needle, *(other + rest for other in others)]
    return [needle]


def _starts_with_ci(text: str, prefix: str) -> bool:
    return text[: len(prefix)].casefold() == prefix.casefold()


def get_figure_caption(paper: Optional[PaperContext], label: str) -> str:
    """The caption of a labelled figure or table, with its 1-indexed page."""
    if not label.strip():
        return "Error: label is required."
    if paper is None:
        return "Error: no paper loaded."

    variants = _label_variants(label.strip())

    def matches(text: str) -> bool:
        return any(_starts_with_ci(text, v) for v in variants)

    blocks = list(paper.blocks)
    found = next(
        (b for b in blocks if b.kind == BlockKind.CAPTION and matches(b.text)), None
    )
    if found is None:
        found = next((b for b in blocks if matches(b.text)), None)
    if found is None:
        return _dumps({"caption": "", "page": 0})
    return _dumps({"caption": found.text, "page": found.page + 1})


def run_tool(paper: Optional[PaperContext], call: ToolCall) -> str:
    """Run a synchronous tool call and return its textual result."""
    args = call.input if isinstance(call.input, dict) else {}
    if call.name == "list_sections":
        return list_sections(paper)
    if call.name == "read_page":
        return read_page(paper, _int(args.get("page"), -1))
    if call.name == "read_section":
        return read_section(paper, _str(args.get("section_id")))
    if call.name == "get_user_selection":
        return get_user_selection(paper)
    if call.name == "search_paper":
        return search_paper(
            paper, _str(args.get("query")), _int(args.get("top_k"), DEFAULT_TOP_K)
        )
    if call.name == "get_figure_caption":
        return get_figure_caption(paper, _str(args.get("label")))
    return f"Error: unknown tool '{call.name}'."