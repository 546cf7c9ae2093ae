"""Paragraph blocks extracted from a paper and the editable list that holds them."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, Iterable, Iterator, Optional


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in page coordinates."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def is_empty(self) -> bool:
        """True when the rectangle encloses no area."""
        return self.width <= 0 or self.height <= 0

    def united(self, other: Rect) -> Rect:
        """Smallest rectangle covering both; a null rectangle is ignored."""
        if self.width == 0 and self.height == 0:
            return other
        if other.width == 0 and other.height == 0:
            return self
        xs = (self.x, self.x + self.width, other.x, other.x + other.width)
        ys = (self.y, self.y + self.height, other.y, other.y + other.height)
        left, right = min(xs), max(xs)
        top, bottom = min(ys), max(ys)
        return Rect(left, top, right - left, bottom - top)


class BlockKind(IntEnum):
    PARAGRAPH = 0
    HEADING = 1
    CAPTION = 2
    LIST_ITEM = 3
    EQUATION = 4


class TranslationStatus(IntEnum):
    NOT_TRANSLATED = 0
    QUEUED = 1
    TRANSLATING = 2
    TRANSLATED = 3
    FAILED = 4
    SKIPPED = 5


@dataclass
class Block:
    """One paragraph-like unit of text on a page."""

    id: int = 0
    ord: int = 0
    page: int = 0
    kind: BlockKind = BlockKind.PARAGRAPH
    text: str = ""
    bbox: Rect = Rect()
    translation: str = ""
    translation_status: TranslationStatus = TranslationStatus.NOT_TRANSLATED
    translation_error: str = ""
    source_visible: bool = True
    translation_visible: bool = True


_KIND_NAMES = {
    BlockKind.HEADING: "heading",
    BlockKind.CAPTION: "caption",
    BlockKind.LIST_ITEM: "list",
    BlockKind.EQUATION: "equation",
    BlockKind.PARAGRAPH: "paragraph",
}

_STATUS_NAMES = {
    TranslationStatus.QUEUED: "queued",
    TranslationStatus.TRANSLATING: "translating",
    TranslationStatus.TRANSLATED: "translated",
    TranslationStatus.FAILED: "failed",
    TranslationStatus.SKIPPED: "skipped",
    TranslationStatus.NOT_TRANSLATED: "idle",
}


def kind_name(kind: BlockKind) -> str:
    """Short name of a block kind, as shown in the UI."""
    return _KIND_NAMES.get(kind, "paragraph")


def translation_status_name(status: TranslationStatus) -> str:
    """Short name of a translation status, as shown in the UI."""
    return _STATUS_NAMES.get(status, "idle")


Listener = Callable[[], None]


class BlockListModel:
    """Ordered, editable list of blocks.

    Listeners in ``mutated_listeners`` run after structural edits (split,
    merge, remove); listeners in ``meta_listeners`` run after visibility
    toggles.
    """

    def __init__(self, blocks: Optional[Iterable[Block]] = None) -> None:
        self._blocks: list[Block] = list(blocks or [])
        self.mutated_listeners: list[Listener] = []
        self.meta_listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[Block]:
        return iter(self._blocks)

    def _valid(self, row: int) -> bool:
        return 0 <= row < len(self._blocks)

    def _notify(self, listeners: list[Listener]) -> None:
        for listener in list(listeners):
            listener()

    def set_blocks(self, blocks: Iterable[Block]) -> None:
        self._blocks = list(blocks)

    def clear(self) -> None:
        self._blocks.clear()

    def block_at(self, row: int) -> Optional[Block]:
        return self._blocks[row] if self._valid(row) else None

    def all_blocks(self) -> list[Block]:
        """Independent copies of every block, in order."""
        return [replace(b) for b in self._blocks]

    def set_source_visible(self, row: int, visible: bool) -> bool:
        if not self._valid(row):
            return False
        block = self._blocks[row]
        if block.source_visible == bool(visible):
            return False
        block.source_visible = bool(visible)
        self._notify(self.meta_listeners)
        return True

    def set_translation_visible(self, row: int, visible: bool) -> bool:
        if not self._valid(row):
            return False
        block = self._blocks[row]
        if block.translation_visible == bool(visible):
            return False
        block.translation_visible = bool(visible)
        self._notify(self.meta_listeners)
        return True

    def set_translation_status(
        self, row: int, status: TranslationStatus, error: str = ""
    ) -> None:
        if not self._valid(row):
            return
        block = self._blocks[row]
        block.translation_status = status
        block.translation_error = error

    def append_translation_chunk(self, row: int, chunk: str) -> None:
        if not self._valid(row) or not chunk:
            return
        self._blocks[row].translation += chunk

    def set_translation(self, row: int, text: str) -> None:
        if not self._valid(row):
            return
        self._blocks[row].translation = text

    def first_row_on_page(self, page: int) -> Optional[int]:
        """First row whose page is at or after ``page``."""
        if page < 0:
            return None
        return next(
            (row for row, b in enumerate(self._blocks) if b.page >= page), None
        )

    def page_of_row(self, row: int) -> Optional[int]:
        return self._blocks[row].page if self._valid(row) else None

    def _next_block_id(self) -> int:
        return max((b.id for b in self._blocks), default=0) + 1 if self._blocks else 1

    @staticmethod
    def _reset_translation(block: Block) -> None:
        block.translation = ""
        block.translation_status = TranslationStatus.NOT_TRANSLATED
        block.translation_error = ""

    def split_block(self, row: int, text_offset: int) -> bool:
        """Split a row's text at ``text_offset`` into two rows."""
        if not self._valid(row):
            return False
        original = self._blocks[row]
        if text_offset <= 0 or text_offset >= len(original.text):
            return False
        left = original.text[:text_offset].strip()
        right = original.text[text_offset:].strip()
        if not left or not right:
            return False

        original.text = left
        self._reset_translation(original)

        new_id = max(0, max(b.id for b in self._blocks)) + 1
        tail = Block(
            id=new_id,
            ord=new_id,
            page=original.page,
            kind=original.kind,
            text=right,
            bbox=original.bbox,
        )
        self._blocks.insert(row + 1, tail)
        self._notify(self.mutated_listeners)
        return True

    def merge_with_next(self, row: int) -> bool:
        """Append the following row's text to this row and drop it."""
        if row < 0 or row + 1 >= len(self._blocks):
            return False
        nxt = self._blocks[row + 1]
        keep = self._blocks[row]
        if not keep.text.endswith(" ") and not nxt.text.startswith(" "):
            keep.text += " "
        keep.text += nxt.text
        keep.bbox = keep.bbox.united(nxt.bbox)
        self._reset_translation(keep)
        del self._blocks[row + 1]
        self._notify(self.mutated_listeners)
        return True

    def remove_block(self, row: int) -> bool:
        if not self._valid(row):
            return False
        del self._blocks[row]
        self._notify(self.mutated_listeners)
        return True