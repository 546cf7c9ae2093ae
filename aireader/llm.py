"""Provider-neutral request, message and reply types for LLM clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

ChunkHandler = Callable[[str], None]
FinishedHandler = Callable[[], None]
ErrorHandler = Callable[[str], None]


@dataclass
class ToolDef:
    """A tool the model may call, with a JSON Schema for its input."""

    name: str
    description: str = ""
    input_schema: dict = field(default_factory=dict)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str = ""
    name: str = ""
    input: dict = field(default_factory=dict)


class PartType(Enum):
    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


@dataclass
class ContentPart:
    """One element of a structured message body."""

    type: PartType = PartType.TEXT
    text: str = ""
    image_png: bytes = b""
    tool_id: str = ""
    tool_name: str = ""
    tool_input: dict = field(default_factory=dict)


@dataclass
class Message:
    """A conversation turn.

    When ``parts`` is non-empty it replaces ``content`` and ``images``.
    """

    role: str = "user"
    content: str = ""
    images: list[bytes] = field(default_factory=list)
    parts: list[ContentPart] = field(default_factory=list)


@dataclass
class Request:
    system: str = ""
    messages: list[Message] = field(default_factory=list)
    tools: list[ToolDef] = field(default_factory=list)
    temperature: float = 0.2
    max_tokens: int = 4096
    stream: bool = True


class LlmReply:
    """Accumulates the streamed result of one request.

    The optional callbacks fire on each text chunk, on normal completion and
    on failure. Finishing and failing are each reported at most once, and
    not at all once the other has happened.
    """

    def __init__(
        self,
        on_chunk: Optional[ChunkHandler] = None,
        on_finished: Optional[FinishedHandler] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self.on_chunk = on_chunk
        self.on_finished = on_finished
        self.on_error = on_error
        self._text = ""
        self._error = ""
        self._tool_calls: list[ToolCall] = []
        self._finished = False
        self._abort_handler: Optional[Callable[[], None]] = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def error(self) -> str:
        return self._error

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self._tool_calls)

    def append_chunk(self, chunk: str) -> None:
        if not chunk:
            return
        self._text += chunk
        if self.on_chunk is not None:
            self.on_chunk(chunk)

    def append_tool_call(self, call: ToolCall) -> None:
        self._tool_calls.append(call)

    def mark_finished(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self.on_finished is not None:
            self.on_finished()

    def set_error(self, message: str) -> None:
        if self._finished:
            return
        self._error = message
        self._finished = True
        if self.on_error is not None:
            self.on_error(message)

    def set_abort_handler(self, handler: Optional[Callable[[], None]]) -> None:
        """Register what stops the underlying transfer when aborted."""
        self._abort_handler = handler

    def abort(self) -> None:
        """Stop the underlying transfer, if one is still running."""
        handler, self._abort_handler = self._abort_handler, None
        if handler is not None and not self._finished:
            handler()


class LlmClient(ABC):
    """Base for provider clients that turn a Request into an LlmReply."""

    def __init__(self, api_key: str = "", model: str = "", base_url: str = "") -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url

    @abstractmethod
    def send(self, request: Request, reply: Optional[LlmReply] = None) -> LlmReply:
        """Send the request; results and errors are reported on the reply."""