"""What the chat assistant knows about the open paper, and its tool catalogue."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from aireader.block_list import Block, BlockKind, BlockListModel
from aireader.llm import ToolDef


@dataclass
class TocEntry:
    """One table-of-contents row; pages and blocks are 0-based, -1 if unknown."""

    id: str = ""
    level: int = 1
    title: str = ""
    start_page: int = 0
    start_block: int = -1


@dataclass
class PaperContext:
    """The open paper as seen by the chat tools.

    ``render_page`` takes a 0-based page index and a target width in pixels
    and returns PNG bytes, or empty bytes when rendering fails.
    """

    paper_id: str = ""
    file_name: str = ""
    page_count: int = 0
    blocks: BlockListModel = field(default_factory=BlockListModel)
    toc: list[TocEntry] = field(default_factory=list)
    selection: str = ""
    selection_page: int = -1
    render_page: Optional[Callable[[int, int], bytes]] = None


def format_block(block: Block) -> str:
    """Block text as Markdown for the model: headings and captions marked up."""
    if block.kind == BlockKind.HEADING:
        return f"\n## {block.text}\n"
    if block.kind == BlockKind.CAPTION:
        return f"\n_({block.text})_\n"
    return block.text + "\n"


def _schema(properties: dict, required: Optional[list[str]] = None) -> dict:
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_PAGE_PROP = {"type": "integer", "description": "1-indexed page number."}


def tool_definitions() -> list[ToolDef]:
    """The tools offered to the chat model, in a fixed order."""
    return [
        ToolDef(
            name="list_sections",
            description=(
                "Return the table of contents (TOC) of the open paper, with each "
                "section's id, level, title, and starting page. Returns an empty "
                "list when no TOC has been generated yet."
            ),
            input_schema=_schema({}),
        ),
        ToolDef(
            name="read_page",
            description=(
                "Return the extracted text of a single page (1-indexed). "
                "Use this to fetch source content the user is asking about."
            ),
            input_schema=_schema({"page": dict(_PAGE_PROP)}, ["page"]),
        ),
        ToolDef(
            name="read_page_visual",
            description=(
                "Send a rendered PDF page (1-indexed) to the vision-capable "
                "model and return its description. Use this when text "
                "extraction is insufficient \u2014 figures, diagrams, equations, "
                "tables, scanned pages. Optional `question` focuses the model "
                "on a specific aspect of the page."
            ),
            input_schema=_schema(
                {
                    "page": dict(_PAGE_PROP),
                    "question": {
                        "type": "string",
                        "description": "Optional focus question; defaults to a full description.",
                    },
                },
                ["page"],
            ),
        ),
        ToolDef(
            name="get_figure_caption",
            description=(
                "Look up a figure or table caption by its label (e.g. "
                '"Figure 3", "Fig. 3", "Table 2"). Returns '
                "{caption, page} of the best match, or empty caption if not "
                "found. Use this to ground claims about a specific figure or "
                "table."
            ),
            input_schema=_schema(
                {
                    "label": {
                        "type": "string",
                        "description": 'Caption label such as "Figure 3" or "Table 2".',
                    }
                },
                ["label"],
            ),
        ),
        ToolDef(
            name="search_paper",
            description=(
                "Case-insensitive substring search across the paper's blocks. "
                "Returns up to top_k matches as a JSON array of "
                "{block_id, page, snippet, score} sorted by score. Use this when "
                "the user asks where a term/phrase appears, or to locate a "
                "definition before fetching its surrounding section."
            ),
            input_schema=_schema(
                {
                    "query": {
                        "type": "string",
                        "description": "The substring or term to search for.",
                    },
                    "top_k": {
                        "type": "integer",
                        "description": "Maximum number of matches to return. Defaults to 10.",
                    },
                },
                ["query"],
            ),
        ),
        ToolDef(
            name="get_user_selection",
            description=(
                "Return the text the user currently has highlighted in the PDF, "
                "along with the page it lives on. Returns an empty selection when "
                "nothing is highlighted. Use this when the user refers to "
                "'this', 'the highlighted bit', a quoted snippet, etc."
            ),
            input_schema=_schema({}),
        ),
        ToolDef(
            name="read_section",
            description=(
                "Return the full text of a section identified by its TOC id "
                "(use list_sections first to discover ids). The result includes "
                "every nested subsection up to the next sibling-or-higher-level "
                "heading."
            ),
            input_schema=_schema(
                {
                    "section_id": {
                        "type": "string",
                        "description": 'TOC `id` field, e.g. "s2" or "s3.1".',
                    }
                },
                ["section_id"],
            ),
        ),
    ]