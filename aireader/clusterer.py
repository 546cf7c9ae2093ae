"""Split the text of PDF pages into paragraph-like blocks."""

from __future__ import annotations

import io
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Optional

from aireader.block_list import Block, BlockKind, Rect, kind_name

_COMMON_HEADINGS = frozenset(
    {
        "Abstract",
        "Introduction",
        "Background",
        "Related Work",
        "Methods",
        "Method",
        "Methodology",
        "Approach",
        "Experiments",
        "Evaluation",
        "Results",
        "Discussion",
        "Conclusion",
        "Conclusions",
        "Limitations",
        "Future Work",
        "References",
        "Acknowledgments",
        "Acknowledgements",
        "Appendix",
    }
)

_CAPTION_RE = re.compile(r"^(Figure|Fig\.|Table|Tab\.)\s*\d", re.ASCII)
_NUMBERED_HEADING_RE = re.compile(r"^\d+(\.\d+){0,3}\s+[A-Z]", re.ASCII)
_ROMAN_HEADING_RE = re.compile(
    r"^(I|II|III|IV|V|VI|VII|VIII|IX|X|XI|XII)\.\s+[A-Z]", re.ASCII
)

_HYPHENS = frozenset("\u002d\u2010\u2011")
_CLOSERS = frozenset(")]}\"'\u201d\u2019\uff09\uff3d")
_TERMINATORS = frozenset(".?!\u3002\uff1f\uff01")

_RULE = "=" * 64 + "\n"


@dataclass
class PageText:
    """Text of one page and the bounding box of each visible line."""

    text: str = ""
    bounds: list[Rect] = field(default_factory=list)


@dataclass
class Line:
    """One preprocessed text line of a page."""

    text: str = ""
    bbox: Rect = Rect()
    hyphenated: bool = False


def classify(text: str, line_height: float, median_height: float) -> BlockKind:
    """Guess the kind of a block from its text and its tallest line."""
    if _CAPTION_RE.match(text):
        return BlockKind.CAPTION
    if len(text) < 200:
        if _NUMBERED_HEADING_RE.match(text) or _ROMAN_HEADING_RE.match(text):
            return BlockKind.HEADING
        if text.strip() in _COMMON_HEADINGS:
            return BlockKind.HEADING
        if (
            median_height > 0
            and line_height > median_height * 1.18
            and len(text) < 120
        ):
            return BlockKind.HEADING
    return BlockKind.PARAGRAPH


def _is_print(c: str) -> bool:
    return not unicodedata.category(c).startswith("C")


def sanitize(s: str) -> str:
    """Turn whitespace into plain spaces and drop non-printable characters."""
    return "".join(" " if c.isspace() else c for c in s if c.isspace() or _is_print(c))


def preprocess_line(raw: str, bbox: Rect = Rect()) -> Line:
    """Trim a raw line and strip a trailing hyphen, marking it hyphenated."""
    line = Line(bbox=bbox)
    raw = raw.strip()
    if not raw:
        return line
    last = raw[-1]
    if last in _HYPHENS or (not _is_print(last) and not last.isspace()):
        raw = raw[:-1]
        line.hyphenated = True
    line.text = sanitize(raw).strip()
    return line


def extract_page_lines(page: PageText) -> list[Line]:
    """Split a page into lines, pairing non-empty lines with their bounds."""
    if not page.text:
        return []
    raw_lines = page.text.split("\n")
    non_empty = [i for i, raw in enumerate(raw_lines) if raw.strip()]
    if page.bounds and len(page.bounds) == len(non_empty):
        boxes = dict(zip(non_empty, page.bounds))
        return [preprocess_line(raw, boxes.get(i, Rect())) for i, raw in enumerate(raw_lines)]
    return [preprocess_line(raw) for raw in raw_lines]


def median_of(values: Iterable[float]) -> float:
    """Upper median of the values, or 0.0 when there are none."""
    ordered = sorted(values)
    if not ordered:
        return 0.0
    return ordered[len(ordered) // 2]


def same_column(a: Rect, b: Rect) -> bool:
    """True when two line boxes overlap horizontally by over half the narrower."""
    if a.is_empty() or b.is_empty():
        return True
    overlap = min(a.x + a.width, b.x + b.width) - max(a.x, b.x)
    min_width = min(a.width, b.width)
    return min_width > 0 and overlap > 0.5 * min_width


def ends_paragraph(text: str) -> bool:
    """True when the text ends in sentence-final punctuation.

    Closing brackets and quotes after the punctuation are skipped.
    """
    stripped = text.rstrip("".join(_CLOSERS))
    return bool(stripped) and stripped[-1] in _TERMINATORS


def extract(pages: Iterable[PageText]) -> list[Block]:
    """Cluster the lines of every page into blocks."""
    blocks: list[Block] = []
    next_id = 0

    for page_no, page in enumerate(pages):
        lines = extract_page_lines(page)
        if not lines:
            continue

        have_bboxes = any(not ln.bbox.is_empty() for ln in lines)
        heights = (
            [ln.bbox.height for ln in lines if not ln.bbox.is_empty() and ln.text]
            if have_bboxes
            else []
        )
        median_height = median_of(heights)

        current_text = ""
        current_box = Rect()
        current_max_height = 0.0
        prev_hyphen = False
        flush_before_next = False
        prev: Optional[Line] = None

        def flush() -> None:
            nonlocal next_id, current_text, current_box, current_max_height
            if not current_text:
                return
            text = current_text.strip()
            blocks.append(
                Block(
                    id=next_id,
                    ord=next_id,
                    page=page_no,
                    text=text,
                    bbox=current_box,
                    kind=classify(text, current_max_height, median_height),
                )
            )
            next_id += 1
            current_text = ""
            current_box = Rect()
            current_max_height = 0.0

        for ln in lines:
            if not ln.text:
                flush()
                prev_hyphen = False
                flush_before_next = False
                prev = None
                continue

            start_new = not current_text or flush_before_next
            if (
                not start_new
                and prev is not None
                and have_bboxes
                and not prev.bbox.is_empty()
                and not ln.bbox.is_empty()
            ):
                font_jump = (
                    median_height > 0
                    and abs(ln.bbox.height - prev.bbox.height) > median_height * 0.35
                )
                if not same_column(prev.bbox, ln.bbox) or font_jump:
                    start_new = True

            if start_new:
                flush()
                current_text = ln.text
                current_box = ln.bbox
            else:
                current_text += ln.text if prev_hyphen else " " + ln.text
                if not ln.bbox.is_empty():
                    current_box = current_box.united(ln.bbox)
            if not ln.bbox.is_empty():
                current_max_height = max(current_max_height, ln.bbox.height)
            prev_hyphen = ln.hyphenated
            flush_before_next = not ln.hyphenated and ends_paragraph(ln.text)
            prev = ln
        flush()

    return blocks


def dump_debug(pages: Iterable[PageText]) -> str:
    """Report the raw text, preprocessed lines and final blocks of each page."""
    pages = list(pages)
    out = io.StringIO()

    for page_no, page in enumerate(pages):
        raw_text = page.text
        raw_lines = raw_text.split("\n")
        out.write(_RULE)
        out.write(f"Page {page_no}  rawLines={len(raw_lines)} polys={len(page.bounds)}\n")
        out.write(_RULE)
        out.write("--- Raw text from page text ---\n")
        out.write(raw_text)
        if not raw_text.endswith("\n"):
            out.write("\n")
        out.write("--- end raw text ---\n\n")

        out.write("--- Lines after preprocess + poly alignment ---\n")
        out.write("  \u00b6 marks lines that end a paragraph; \u00ac marks hyphenated.\n")
        for i, ln in enumerate(extract_page_lines(page)):
            box = ln.bbox
            bbox_str = (
                "    (no-bbox)        "
                if box.is_empty()
                else f"({box.x:7.1f},{box.y:7.1f},{box.width:6.1f},{box.height:5.1f})"
            )
            ends = not ln.hyphenated and ends_paragraph(ln.text)
            out.write(
                f"  [{i:3d}] {bbox_str}"
                f"{' \u00ac' if ln.hyphenated else '  '}"
                f"{' \u00b6' if ends else '  '}"
                f" | {ln.text}\n"
            )
        out.write("\n")

    out.write(_RULE)
    out.write("Final blocks produced by extract()\n")
    out.write(_RULE)
    for b in extract(pages):
        out.write(
            f"[#{b.id}] page={b.page} kind={kind_name(b.kind)}"
            f" bbox=({b.bbox.x:g},{b.bbox.y:g},{b.bbox.width:g},{b.bbox.height:g})"
            f" chars={len(b.text)}\n"
        )
        out.write(b.text + "\n\n")

    return out.getvalue()