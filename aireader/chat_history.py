"""On-disk JSON cache of a paper's chat sessions, one file per paper."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from aireader.chat_model import ChatMessage, ChatSession, MessageStatus
from aireader.llm import ContentPart, Message, PartType

log = logging.getLogger(__name__)

FORMAT_VERSION = 2
LEGACY_SESSION_NAME = "Chat"


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _format_time(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def _parse_time(value: Any) -> Optional[datetime]:
    text = _str(value)
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _decode_png(value: Any) -> bytes:
    try:
        return base64.b64decode(_str(value).encode("latin-1", errors="ignore"))
    except (binascii.Error, ValueError):
        return b""


def content_part_to_json(part: ContentPart) -> dict:
    """Serialise one structured message part."""
    if part.type is PartType.IMAGE:
        return {
            "type": "image",
            "imagePng": base64.b64encode(part.image_png).decode("ascii"),
        }
    if part.type is PartType.TOOL_USE:
        return {
            "type": "tool_use",
            "id": part.tool_id,
            "name": part.tool_name,
            "input": part.tool_input,
        }
    if part.type is PartType.TOOL_RESULT:
        return {"type": "tool_result", "id": part.tool_id, "text": part.text}
    return {"type": "text", "text": part.text}


def content_part_from_json(obj: Any) -> ContentPart:
    """Rebuild a message part; unknown types give an empty text part."""
    obj = _dict(obj)
    kind = _str(obj.get("type"))
    if kind == "text":
        return ContentPart(type=PartType.TEXT, text=_str(obj.get("text")))
    if kind == "image":
        return ContentPart(type=PartType.IMAGE, image_png=_decode_png(obj.get("imagePng")))
    if kind == "tool_use":
        return ContentPart(
            type=PartType.TOOL_USE,
            tool_id=_str(obj.get("id")),
            tool_name=_str(obj.get("name")),
            tool_input=_dict(obj.get("input")),
        )
    if kind == "tool_result":
        return ContentPart(
            type=PartType.TOOL_RESULT,
            tool_id=_str(obj.get("id")),
            text=_str(obj.get("text")),
        )
    return ContentPart()


def api_message_to_json(message: Message) -> dict:
    """Serialise an API-level message: its parts, or else its plain content."""
    obj: dict[str, Any] = {"role": message.role}
    if message.parts:
        obj["parts"] = [content_part_to_json(p) for p in message.parts]
    else:
        obj["content"] = message.content
    return obj


def api_message_from_json(obj: Any) -> Message:
    obj = _dict(obj)
    message = Message(role=_str(obj.get("role")))
    if "parts" in obj:
        message.parts = [content_part_from_json(v) for v in _list(obj.get("parts"))]
    else:
        message.content = _str(obj.get("content"))
    return message


def messages_to_json(messages: Iterable[ChatMessage]) -> list:
    """Serialise visible chat messages; the error is written only when set."""
    out = []
    for m in messages:
        obj: dict[str, Any] = {
            "role": m.role,
            "content": m.content,
            "status": int(m.status),
        }
        if m.error:
            obj["error"] = m.error
        out.append(obj)
    return out


def messages_from_json(arr: Any) -> list[ChatMessage]:
    """Rebuild visible messages; every status other than failed loads as done."""
    out = []
    for v in _list(arr):
        obj = _dict(v)
        status = _int(obj.get("status"), int(MessageStatus.DONE))
        out.append(
            ChatMessage(
                role=_str(obj.get("role")),
                content=_str(obj.get("content")),
                status=(
                    MessageStatus.FAILED
                    if status == int(MessageStatus.FAILED)
                    else MessageStatus.DONE
                ),
                error=_str(obj.get("error")),
            )
        )
    return out


def session_to_json(session: ChatSession) -> dict:
    return {
        "id": session.id,
        "name": session.name,
        "autoNamed": session.auto_named,
        "createdAt": _format_time(session.created_at),
        "updatedAt": _format_time(session.updated_at),
        "messages": messages_to_json(session.messages),
        "api": [api_message_to_json(m) for m in session.api_messages],
    }


def session_from_json(obj: Any) -> ChatSession:
    """Rebuild a session, filling in a missing id or timestamps."""
    obj = _dict(obj)
    created = _parse_time(obj.get("createdAt")) or datetime.now()
    updated = _parse_time(obj.get("updatedAt")) or created
    session_id = _str(obj.get("id")) or str(uuid.uuid4())
    return ChatSession(
        id=session_id,
        name=_str(obj.get("name")),
        auto_named=_bool(obj.get("autoNamed"), True),
        created_at=created,
        updated_at=updated,
        messages=messages_from_json(obj.get("messages")),
        api_messages=[api_message_from_json(v) for v in _list(obj.get("api"))],
    )


@dataclass
class Snapshot:
    """Sessions read from disk and the id of the one that was active."""

    sessions: list[ChatSession] = field(default_factory=list)
    active_id: str = ""


class ChatHistoryCache:
    """Keeps the chat sessions of the current paper on disk.

    Files live at ``<cache_dir>/<paper_id>.json``. Writes are debounced by
    ``save_delay`` seconds; a delay of zero or less writes immediately.
    """

    def __init__(self, cache_dir: os.PathLike | str, save_delay: float = 0.5) -> None:
        self._cache_dir = Path(cache_dir)
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._save_delay = save_delay
        self._paper_id = ""
        self._pending_sessions: list[dict] = []
        self._pending_active_id = ""
        self._have_pending = False
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
            self._have_pending = False
            self._pending_sessions = []
            self._pending_active_id = ""

    def load(self) -> Snapshot:
        """Read the current paper's sessions; older single-chat files migrate."""
        snap = Snapshot()
        path = self.file_path()
        if path is None:
            return snap
        try:
            root = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return snap
        if not isinstance(root, dict):
            return snap

        if "sessions" in root:
            snap.sessions = [session_from_json(v) for v in _list(root.get("sessions"))]
            snap.active_id = _str(root.get("activeSessionId"))
            return snap

        if "messages" in root or "api" in root:
            now = datetime.now()
            session = ChatSession(
                id=str(uuid.uuid4()),
                name=LEGACY_SESSION_NAME,
                auto_named=True,
                created_at=now,
                updated_at=now,
                messages=messages_from_json(root.get("messages")),
                api_messages=[api_message_from_json(v) for v in _list(root.get("api"))],
            )
            snap.sessions.append(session)
            snap.active_id = session.id
        return snap

    def save(self, sessions: Iterable[ChatSession], active_id: str) -> None:
        """Schedule a write of the given sessions."""
        with self._lock:
            if not self._paper_id:
                return
            self._pending_sessions = [session_to_json(s) for s in sessions]
            self._pending_active_id = active_id
            self._have_pending = True
            self._schedule_save()

    def clear(self) -> None:
        """Delete the current paper's history file now."""
        with self._lock:
            if not self._paper_id:
                return
            self._pending_sessions = []
            self._pending_active_id = ""
            self._have_pending = True
            self._cancel_timer()
            self._save_now()

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

    def _save_now(self) -> None:
        path = self.file_path()
        if path is None or not self._have_pending:
            return
        if not self._pending_sessions:
            path.unlink(missing_ok=True)
            self._have_pending = False
            return
        root = {
            "paperId": self._paper_id,
            "version": FORMAT_VERSION,
            "activeSessionId": self._pending_active_id,
            "sessions": self._pending_sessions,
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
            log.warning("ChatHistoryCache: cannot write %s: %s", path, exc)
        self._have_pending = False