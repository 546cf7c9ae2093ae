"""On-disk JSON cache of a paper's block list, keyed by paper id."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

from aireader.block_list import Block, BlockKind, Rect

log = logging.getLogger(__name__)


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _to_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _to_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def block_to_json(block: Block) -> dict:
    """Serialise a block; visibility flags are written only when off."""
    obj: dict[str, Any] = {
        "id": block.id,
        "ord": block.ord,
        "page": block.page,
        "kind": int(block.kind),
        "text": block.text,
        "bbox": [
            float(block.bbox.x),
            float(block.bbox.y),
            float(block.bbox.width),
            float(block.bbox.height),
        ],
    }
    if not block.source_visible:
        obj["srcVis"] = False
    if not block.translation_visible:
        obj["transVis"] = False
    return obj


def block_from_json(obj: Any) -> Block:
    """Build a block from a JSON object, tolerating missing or bad fields."""
    if not isinstance(obj, dict):
        obj = {}
    block_id = _to_int(obj.get("id"), 0)
    kind_value = _to_int(obj.get("kind"), int(BlockKind.PARAGRAPH))
    try:
        kind = BlockKind(kind_value)
    except ValueError:
        kind = BlockKind.PARAGRAPH
    text = obj.get("text")
    box = obj.get("bbox")
    bbox = Rect()
    if isinstance(box, list) and len(box) == 4:
        bbox = Rect(*(_to_float(v) for v in box))
    return Block(
        id=block_id,
        ord=_to_int(obj.get("ord"), block_id),
        page=_to_int(obj.get("page"), 0),
        kind=kind,
        text=text if isinstance(text, str) else "",
        bbox=bbox,
        source_visible=_to_bool(obj.get("srcVis"), True),
        translation_visible=_to_bool(obj.get("transVis"), True),
    )


class BlockCache:
    """Keeps the edited block list of the current paper on disk.

    Files live at ``<cache_dir>/<paper_id>.json``. Writes are debounced by
    ``save_delay`` seconds; a delay of zero or less writes immediately.
    """

    def __init__(self, cache_dir: os.PathLike | str, save_delay: float = 0.8) -> None:
        self._cache_dir = Path(cache_dir)
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._save_delay = save_delay
        self._paper_id = ""
        self._blocks: list[Block] = []
        self._loaded = False
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

    @property
    def paper_id(self) -> str:
        return self._paper_id

    def file_path(self) -> Optional[Path]:
        if not self._paper_id:
            return None
        return self._cache_dir / f"{self._paper_id}.json"

    def set_paper_id(self, paper_id: str) -> None:
        """Switch papers, writing any pending save for the previous one."""
        with self._lock:
            if paper_id == self._paper_id:
                return
            self.flush()
            self._paper_id = paper_id
            self._blocks = []
            self._loaded = False
            if self._paper_id:
                self._load()

    def has_blocks(self) -> bool:
        return self._loaded and bool(self._blocks)

    def blocks(self) -> list[Block]:
        return list(self._blocks)

    def set_blocks(self, blocks: Iterable[Block]) -> None:
        with self._lock:
            self._blocks = list(blocks)
            self._loaded = True
            self._schedule_save()

    def clear(self) -> None:
        """Drop the in-memory and on-disk cache for the current paper."""
        with self._lock:
            self._cancel_timer()
            self._blocks = []
            self._loaded = False
            path = self.file_path()
            if path is not None:
                path.unlink(missing_ok=True)

    def flush(self) -> None:
        """Write a pending debounced save now."""
        with self._lock:
            if self._timer is not None:
                self._cancel_timer()
                self._save_now()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_save(self) -> None:
        if self._save_delay <= 0:
            self._save_now()
            return
        if self._timer is None:
            timer = threading.Timer(self._save_delay, self._on_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            if self._timer is not threading.current_thread():
                return
            self._timer = None
            self._save_now()

    def _load(self) -> None:
        path = self.file_path()
        if path is None:
            return
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return
        if not isinstance(doc, dict):
            return
        arr = doc.get("blocks")
        if not isinstance(arr, list):
            arr = []
        blocks = [block_from_json(v) for v in arr]
        self._blocks = [b for b in blocks if b.text]
        self._loaded = True

    def _save_now(self) -> None:
        path = self.file_path()
        if path is None:
            return
        root = {
            "paperId": self._paper_id,
            "blocks": [block_to_json(b) for b in self._blocks],
        }
        data = json.dumps(root, ensure_ascii=False, separators=(",", ":"))
        try:
            fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            log.warning("BlockCache: cannot write %s: %s", path, exc)