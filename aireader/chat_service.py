"""Chat with an LLM about the open paper, across several named sessions."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from aireader.chat_history import ChatHistoryCache
from aireader.chat_model import (
    ChatModel,
    ChatSession,
    ChatSessionListModel,
    MessageStatus,
    SessionRow,
    make_session,
)
from aireader.chat_prompt import build_system_prompt, default_system_prompt, derive_title
from aireader.chat_tools import run_tool
from aireader.llm import (
    ContentPart,
    LlmClient,
    LlmReply,
    Message,
    PartType,
    Request,
    ToolCall,
)
from aireader.paper import PaperContext, tool_definitions

DEFAULT_SESSION_NAME = "New chat"
NOT_CONFIGURED = "LLM is not configured. Open Settings to add a model and API key."
VISION_RENDER_WIDTH = 1280
VISION_SYSTEM_PROMPT = (
    "You are reading one rendered page of an academic paper. Describe "
    "figures, diagrams, charts, and tables; transcribe equations as "
    "LaTeX. Answer the user's focus question if provided, otherwise "
    "give a complete page description. Output Markdown only."
)

Callback = Optional[Callable[[], None]]


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


@dataclass
class ChatConfig:
    """The model settings the chat uses."""

    api_key: str = ""
    model: str = ""
    base_url: str = ""
    temperature: float = 0.2
    max_tokens: int = 4096
    tool_budget: int = 30
    chat_prompt: str = ""
    include_paper_text: bool = False
    context_window: int = 0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.model)


@dataclass
class _PendingTool:
    call: ToolCall
    result: str = ""
    resolved: bool = False


class ChatService:
    """Runs chat turns, tool calls and session bookkeeping for one paper."""

    def __init__(
        self,
        config: ChatConfig,
        client_factory: Callable[[ChatConfig], LlmClient],
        cache: Optional[ChatHistoryCache] = None,
        paper: Optional[PaperContext] = None,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._cache = cache
        self._paper: Optional[PaperContext] = None
        self._client: Optional[LlmClient] = None
        self._reply: Optional[LlmReply] = None

        self._messages = ChatModel()
        self._sessions_model = ChatSessionListModel()
        self._sessions: list[ChatSession] = []
        self._active_index = -1
        self._last_error = ""
        self._api_messages: list[Message] = []
        self._pending_tools: list[_PendingTool] = []
        self._tool_replies: list[LlmReply] = []
        self._iterations = 0

        self.on_busy_changed: Callback = None
        self.on_last_error_changed: Callback = None
        self.on_active_session_changed: Callback = None

        self._ensure_at_least_one_session()
        if paper is not None:
            self.set_paper(paper)

    # ── properties ─────────────────────────────────────────────────────

    @property
    def messages(self) -> ChatModel:
        return self._messages

    @property
    def sessions(self) -> ChatSessionListModel:
        return self._sessions_model

    @property
    def paper(self) -> Optional[PaperContext]:
        return self._paper

    @property
    def active_session_id(self) -> str:
        if 0 <= self._active_index < len(self._sessions):
            return self._sessions[self._active_index].id
        return ""

    @property
    def busy(self) -> bool:
        return self._reply is not None or bool(self._pending_tools)

    @property
    def last_error(self) -> str:
        return self._last_error

    @property
    def default_system_prompt(self) -> str:
        return default_system_prompt()

    def system_prompt(self) -> str:
        """The system prompt sent with each turn."""
        return build_system_prompt(
            self._paper,
            chat_prompt=self.config.chat_prompt,
            include_paper_text=self.config.include_paper_text,
            context_window=self.config.context_window,
            max_tokens=self.config.max_tokens,
        )

    # ── notifications ──────────────────────────────────────────────────

    @staticmethod
    def _emit(callback: Callback) -> None:
        if callback is not None:
            callback()

    def _set_last_error(self, err: str) -> None:
        if err == self._last_error:
            return
        self._last_error = err
        self._emit(self.on_last_error_changed)

    # ── session bookkeeping ────────────────────────────────────────────

    def _has_active(self) -> bool:
        return 0 <= self._active_index < len(self._sessions)

    def _cache_active(self) -> bool:
        return self._cache is not None and bool(self._cache.paper_id)

    def _save_cache(self) -> None:
        if self._cache_active():
            self._cache.save(self._sessions, self.active_session_id)

    def _ensure_at_least_one_session(self) -> None:
        if self._sessions and self._has_active():
            return
        if not self._sessions:
            self._sessions.append(make_session(DEFAULT_SESSION_NAME))
        if not self._has_active():
            self._active_index = 0
        self._refresh_sessions_model()
        self._emit(self.on_active_session_changed)

    def _rehydrate_from_cache(self) -> None:
        if not self._cache_active():
            return
        snap = self._cache.load()
        if not snap.sessions:
            return
        for session in snap.sessions:
            for m in session.messages:
                if m.status == MessageStatus.STREAMING:
                    m.status = MessageStatus.FAILED
                    if not m.error:
                        m.error = "Interrupted."
        self._sessions = snap.sessions
        self._active_index = next(
            (i for i, s in enumerate(self._sessions) if snap.active_id and s.id == snap.active_id),
            0,
        )

    def _sync_active_to_session(self) -> None:
        if not self._has_active():
            return
        session = self._sessions[self._active_index]
        session.messages = self._messages.messages
        session.api_messages = list(self._api_messages)

    def _load_session_to_active(self) -> None:
        if not self._has_active():
            self._messages.clear()
            self._api_messages = []
            return
        session = self._sessions[self._active_index]
        self._messages.set_messages(session.messages)
        self._api_messages = list(session.api_messages)

    def _touch_active_session(self) -> None:
        if self._has_active():
            self._sessions[self._active_index].updated_at = datetime.now()

    def _refresh_sessions_model(self) -> None:
        rows = []
        for i, s in enumerate(self._sessions):
            active = i == self._active_index
            rows.append(
                SessionRow(
                    id=s.id,
                    name=s.name or DEFAULT_SESSION_NAME,
                    updated_at=s.updated_at,
                    is_active=active,
                    message_count=len(self._messages) if active else len(s.messages),
                )
            )
        self._sessions_model.reset_rows(rows)

    def _persist_history(self) -> None:
        if not self._cache_active():
            return
        self._sync_active_to_session()
        self._refresh_sessions_model()
        self._cache.save(self._sessions, self.active_session_id)

    def _index_of(self, session_id: str) -> int:
        return next((i for i, s in enumerate(self._sessions) if s.id == session_id), -1)

    def _maybe_auto_name_active_session(self) -> None:
        if not self._has_active():
            return
        session = self._sessions[self._active_index]
        if not session.auto_named or len(self._messages) < 3:
            return
        first_user = next(
            (m.content for m in self._messages if m.role == "user" and m.content.strip()),
            "",
        )
        derived = derive_title(first_user)
        if derived and session.name != derived:
            session.name = derived

    # ── public actions ─────────────────────────────────────────────────

    def set_paper(self, paper: Optional[PaperContext]) -> None:
        """Switch to another paper and load its chat sessions."""
        self.cancel()
        self._paper = paper
        self._messages.clear()
        self._api_messages = []
        self._iterations = 0
        self._set_last_error("")
        self._sessions = []
        self._active_index = -1

        if self._cache is not None:
            self._cache.set_paper_id(paper.paper_id if paper is not None else "")
        self._rehydrate_from_cache()
        self._ensure_at_least_one_session()
        self._load_session_to_active()
        self._refresh_sessions_model()
        self._emit(self.on_active_session_changed)

    def clear(self) -> None:
        """Empty the active session's transcript, keeping the session."""
        self._messages.clear()
        self._api_messages = []
        self._iterations = 0
        self._set_last_error("")
        if not self._has_active():
            return
        session = self._sessions[self._active_index]
        session.messages = []
        session.api_messages = []
        session.auto_named = True
        session.name = DEFAULT_SESSION_NAME
        session.updated_at = datetime.now()
        self._refresh_sessions_model()
        self._save_cache()

    def cancel(self) -> None:
        """Abort the running exchange, marking its reply as cancelled."""
        was_busy = self.busy
        if self._reply is not None:
            reply, self._reply = self._reply, None
            reply.on_chunk = reply.on_finished = reply.on_error = None
            reply.abort()
        for reply in self._tool_replies:
            reply.on_chunk = reply.on_finished = reply.on_error = None
            reply.abort()
        self._tool_replies = []
        self._pending_tools = []
        if was_busy:
            self._messages.set_last_status(MessageStatus.FAILED, "Cancelled.")
            self._iterations = 0
            self._touch_active_session()
            self._persist_history()
            self._emit(self.on_busy_changed)

    def send_message(self, text: str) -> None:
        """Send a user message and run the exchange, tools included."""
        trimmed = text.strip()
        if not trimmed or self.busy:
            return
        if self._active_index < 0:
            self._ensure_at_least_one_session()
        if not self.config.is_configured:
            self._set_last_error(NOT_CONFIGURED)
            return
        self._set_last_error("")

        self._messages.append_message("user", trimmed, MessageStatus.DONE)
        self._messages.append_message("assistant", "", MessageStatus.STREAMING)
        self._api_messages.append(Message(role="user", content=trimmed))

        self._touch_active_session()
        self._refresh_sessions_model()
        self._iterations = 0
        self._run_turn()

    def new_session(self) -> None:
        """Create an empty session and make it active."""
        self._sync_active_to_session()
        self.cancel()
        self._sessions.append(make_session(DEFAULT_SESSION_NAME))
        self._active_index = len(self._sessions) - 1
        self._load_session_to_active()
        self._refresh_sessions_model()
        self._save_cache()
        self._emit(self.on_active_session_changed)

    def activate_session(self, session_id: str) -> None:
        """Make another session active; the active one is left as it is."""
        if not session_id:
            return
        idx = self._index_of(session_id)
        if idx < 0 or idx == self._active_index:
            return
        self._sync_active_to_session()
        self.cancel()
        self._active_index = idx
        self._load_session_to_active()
        self._refresh_sessions_model()
        self._save_cache()
        self._emit(self.on_active_session_changed)

    def delete_session(self, session_id: str) -> None:
        """Remove a session; a fresh one replaces the last to go."""
        if not session_id:
            return
        idx = self._index_of(session_id)
        if idx < 0:
            return
        was_active = idx == self._active_index
        if was_active:
            self.cancel()
        del self._sessions[idx]

        if not self._sessions:
            self._sessions.append(make_session(DEFAULT_SESSION_NAME))
            self._active_index = 0
            self._load_session_to_active()
        elif was_active:
            self._active_index = min(idx, len(self._sessions) - 1)
            self._load_session_to_active()
        elif idx < self._active_index:
            self._active_index -= 1

        self._refresh_sessions_model()
        self._save_cache()
        self._emit(self.on_active_session_changed)

    def rename_session(self, session_id: str, name: str) -> None:
        """Give a session a name, which stops automatic naming."""
        idx = self._index_of(session_id)
        if idx < 0:
            return
        trimmed = name.strip()
        if not trimmed or self._sessions[idx].name == trimmed:
            return
        session = self._sessions[idx]
        session.name = trimmed
        session.auto_named = False
        session.updated_at = datetime.now()
        self._refresh_sessions_model()
        self._save_cache()

    # ── the turn loop ──────────────────────────────────────────────────

    def _client_for_turn(self) -> LlmClient:
        if self._client is None:
            self._client = self._client_factory(self.config)
        else:
            self._client.api_key = self.config.api_key
            self._client.model = self.config.model
            if self.config.base_url:
                self._client.base_url = self.config.base_url
        return self._client

    def _run_turn(self) -> None:
        budget = self.config.tool_budget
        if self._iterations >= budget:
            self._messages.append_chunk_to_last(
                f"\n\n_[Tool budget exhausted ({budget} iterations). "
                "Raise it in Settings if needed.]_"
            )
            self._messages.set_last_status(MessageStatus.DONE)
            self._cleanup_after_final()
            return
        self._iterations += 1

        client = self._client_for_turn()
        request = Request(
            system=self.system_prompt(),
            messages=list(self._api_messages),
            tools=tool_definitions(),
            temperature=min(max(self.config.temperature, 0.0), 1.0),
            max_tokens=self.config.max_tokens,
            stream=True,
        )
        reply = LlmReply()
        reply.on_chunk = self._messages.append_chunk_to_last
        reply.on_finished = lambda: self._on_turn_finished(reply)
        reply.on_error = lambda message: self._on_turn_error(reply, message)
        self._reply = reply
        if self._iterations == 1:
            self._emit(self.on_busy_changed)
        client.send(request, reply)

    def _on_turn_error(self, reply: LlmReply, message: str) -> None:
        if self._reply is not reply:
            return
        self._reply = None
        self._messages.set_last_status(MessageStatus.FAILED, message)
        self._set_last_error(message)
        self._iterations = 0
        self._touch_active_session()
        self._persist_history()
        self._emit(self.on_busy_changed)

    def _on_turn_finished(self, reply: LlmReply) -> None:
        if self._reply is not reply:
            return
        self._reply = None
        text = reply.text
        calls = reply.tool_calls

        parts = []
        if text:
            parts.append(ContentPart(type=PartType.TEXT, text=text))
        parts.extend(
            ContentPart(
                type=PartType.TOOL_USE,
                tool_id=c.id,
                tool_name=c.name,
                tool_input=c.input,
            )
            for c in calls
        )
        if parts:
            self._api_messages.append(Message(role="assistant", parts=parts))

        if not calls:
            self._messages.set_last_status(MessageStatus.DONE)
            self._cleanup_after_final()
            return

        self._pending_tools = []
        for call in calls:
            chip = f"\n\n_[tool: {call.name}"
            if call.input:
                chip += " " + json.dumps(
                    call.input, ensure_ascii=False, separators=(",", ":"), sort_keys=True
                )
            chip += "]_\n\n"
            self._messages.append_chunk_to_last(chip)
            self._pending_tools.append(_PendingTool(call=call))
        for slot, call in enumerate(calls):
            self._dispatch_tool(slot, call)

    def _dispatch_tool(self, slot: int, call: ToolCall) -> None:
        if call.name == "read_page_visual":
            args = call.input if isinstance(call.input, dict) else {}
            question = args.get("question")
            self._read_page_visual(
                slot,
                _int(args.get("page"), -1),
                question if isinstance(question, str) else "",
            )
            return
        self._on_tool_resolved(slot, run_tool(self._paper, call))

    def _on_tool_resolved(self, slot: int, result: str) -> None:
        if not 0 <= slot < len(self._pending_tools):
            return
        pending = self._pending_tools[slot]
        if pending.resolved:
            return
        pending.resolved = True
        pending.result = result
        if not all(p.resolved for p in self._pending_tools):
            return

        self._api_messages.append(
            Message(
                role="user",
                parts=[
                    ContentPart(type=PartType.TOOL_RESULT, tool_id=p.call.id, text=p.result)
                    for p in self._pending_tools
                ],
            )
        )
        self._pending_tools = []
        self._run_turn()

    def _read_page_visual(self, slot: int, page: int, question: str) -> None:
        paper = self._paper
        if paper is None:
            self._on_tool_resolved(slot, "Error: paper or settings unavailable.")
            return
        if not self.config.is_configured:
            self._on_tool_resolved(slot, "Error: LLM is not configured.")
            return
        if page < 1 or page > paper.page_count:
            self._on_tool_resolved(
                slot,
                f"Error: page {page} out of range (paper has {paper.page_count} pages).",
            )
            return
        png = paper.render_page(page - 1, VISION_RENDER_WIDTH) if paper.render_page else b""
        if not png:
            self._on_tool_resolved(slot, f"Error: failed to render page {page}.")
            return

        client = self._client_factory(self.config)
        request = Request(
            system=VISION_SYSTEM_PROMPT,
            messages=[
                Message(
                    role="user",
                    content=question.strip() or "Describe the content of this page.",
                    images=[png],
                )
            ],
            temperature=0.0,
            max_tokens=self.config.max_tokens,
            stream=False,
        )
        reply = LlmReply()

        def finished() -> None:
            self._drop_tool_reply(reply)
            self._on_tool_resolved(slot, reply.text or "(vision returned empty response)")

        def failed(err: str) -> None:
            self._drop_tool_reply(reply)
            self._on_tool_resolved(slot, f"Error from vision call: {err}")

        reply.on_finished = finished
        reply.on_error = failed
        self._tool_replies.append(reply)
        client.send(request, reply)

    def _drop_tool_reply(self, reply: LlmReply) -> None:
        self._tool_replies = [r for r in self._tool_replies if r is not reply]

    def _cleanup_after_final(self) -> None:
        self._iterations = 0
        self._touch_active_session()
        self._maybe_auto_name_active_session()
        self._persist_history()
        self._emit(self.on_busy_changed)