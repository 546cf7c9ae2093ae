"""Chat messages, chat sessions, and the lists that hold them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import IntEnum
from typing import Iterable, Iterator, Optional

from aireader.llm import Message


class MessageStatus(IntEnum):
    DONE = 0
    STREAMING = 1
    FAILED = 2


@dataclass
class ChatMessage:
    """One visible chat bubble; role is "user", "assistant" or "system"."""

    role: str = "user"
    content: str = ""
    status: MessageStatus = MessageStatus.DONE
    error: str = ""


@dataclass
class ChatSession:
    """A named conversation with its visible and API-level histories."""

    id: str = ""
    name: str = ""
    auto_named: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    messages: list[ChatMessage] = field(default_factory=list)
    api_messages: list[Message] = field(default_factory=list)


def make_session(name: str) -> ChatSession:
    """A fresh, empty, auto-named session with a new random id."""
    now = datetime.now()
    return ChatSession(
        id=str(uuid.uuid4()), name=name, auto_named=True, created_at=now, updated_at=now
    )


class ChatModel:
    """Ordered list of the messages shown in the chat pane."""

    def __init__(self, messages: Optional[Iterable[ChatMessage]] = None) -> None:
        self._messages: list[ChatMessage] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    def __getitem__(self, row: int) -> ChatMessage:
        return self._messages[row]

    @property
    def messages(self) -> list[ChatMessage]:
        """Independent copies of every message, in order."""
        return [replace(m) for m in self._messages]

    def append_message(
        self, role: str, content: str, status: MessageStatus = MessageStatus.DONE
    ) -> int:
        """Append a message and return its row."""
        self._messages.append(ChatMessage(role=role, content=content, status=status))
        return len(self._messages) - 1

    def append_chunk_to_last(self, chunk: str) -> None:
        if not self._messages or not chunk:
            return
        self._messages[-1].content += chunk

    def set_last_status(self, status: MessageStatus, error: str = "") -> None:
        if not self._messages:
            return
        last = self._messages[-1]
        last.status = status
        last.error = error

    def set_messages(self, messages: Iterable[ChatMessage]) -> None:
        self._messages = [replace(m) for m in messages]

    def clear(self) -> None:
        self._messages.clear()


@dataclass
class SessionRow:
    """Metadata of one session as listed in the session strip."""

    id: str = ""
    name: str = ""
    updated_at: Optional[datetime] = None
    is_active: bool = False
    message_count: int = 0


class ChatSessionListModel:
    """The session strip's rows; rebuilt whole whenever sessions change."""

    def __init__(self, rows: Optional[Iterable[SessionRow]] = None) -> None:
        self._rows: list[SessionRow] = list(rows or [])

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[SessionRow]:
        return iter(self._rows)

    @property
    def rows(self) -> list[SessionRow]:
        return list(self._rows)

    def id_at(self, row: int) -> Optional[str]:
        """Session id at ``row``, or None when out of range."""
        if 0 <= row < len(self._rows):
            return self._rows[row].id
        return None

    def reset_rows(self, rows: Iterable[SessionRow]) -> None:
        self._rows = list(rows)