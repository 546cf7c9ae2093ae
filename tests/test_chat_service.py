from typing import Optional

from aireader.block_list import Block, BlockKind, BlockListModel
from aireader.chat_history import ChatHistoryCache
from aireader.chat_model import MessageStatus
from aireader.chat_prompt import build_system_prompt, derive_title
from aireader.chat_service import ChatConfig, ChatService
from aireader.chat_tools import read_page
from aireader.llm import LlmClient, LlmReply, PartType, Request, ToolCall
from aireader.paper import PaperContext


class FakeClient(LlmClient):
    """Replays scripted turns: (chunks, tool_calls, error) tuples."""

    def __init__(self, script=None, finish=True):
        super().__init__(api_key="placeholder", model="m")
        self.script = list(script or [])
        self.finish = finish
        self.requests: list[Request] = []
        self.pending: Optional[LlmReply] = None
        self.aborted = False

    def send(self, request, reply=None):
        reply = reply if reply is not None else LlmReply()
        self.requests.append(request)
        if not self.finish:
            self.pending = reply
            reply.set_abort_handler(self._abort)
            return reply
        chunks, calls, error = self.script.pop(0) if self.script else ([], [], "")
        for c in chunks:
            reply.append_chunk(c)
        for call in calls:
            reply.append_tool_call(call)
        if error:
            reply.set_error(error)
        else:
            reply.mark_finished()
        return reply

    def _abort(self):
        self.aborted = True


def make_paper(**kwargs):
    blocks = BlockListModel(
        [
            Block(id=0, ord=0, page=0, kind=BlockKind.HEADING, text="Introduction"),
            Block(id=1, ord=1, page=0, kind=BlockKind.PARAGRAPH, text="We study attention."),
            Block(id=2, ord=2, page=1, kind=BlockKind.CAPTION, text="Figure 1: A chart."),
        ]
    )
    return PaperContext(paper_id="paper1", file_name="a.pdf", page_count=2, blocks=blocks, **kwargs)


def make_service(client, cache=None, paper=None, **cfg):
    config = ChatConfig(api_key="placeholder", model="m", **cfg)
    return ChatService(config, lambda c: client, cache=cache, paper=paper)


def test_starts_with_one_default_session():
    service = make_service(FakeClient())
    assert len(service.sessions) == 1
    assert service.sessions.rows[0].name == "New chat"
    assert service.active_session_id == service.sessions.id_at(0)
    assert service.busy is False


def test_not_configured_sets_error():
    service = ChatService(ChatConfig(), lambda c: FakeClient())
    service.send_message("hello")
    assert service.last_error == (
        "LLM is not configured. Open Settings to add a model and API key."
    )
    assert len(service.messages) == 0


def test_blank_message_is_ignored():
    client = FakeClient()
    service = make_service(client)
    service.send_message("   ")
    assert len(service.messages) == 0
    assert client.requests == []


def test_plain_reply_streams_into_assistant_bubble():
    client = FakeClient([(["Hel", "lo"], [], "")])
    service = make_service(client)
    service.send_message("  hi  ")
    msgs = service.messages.messages
    assert [m.role for m in msgs] == ["user", "assistant"]
    assert msgs[0].content == "hi"
    assert msgs[1].content == "Hello"
    assert msgs[1].status == MessageStatus.DONE
    assert service.busy is False
    assert client.requests[0].stream is True
    assert client.requests[0].messages[0].content == "hi"


def test_request_uses_system_prompt_and_clamped_temperature():
    client = FakeClient([(["ok"], [], "")])
    paper = make_paper()
    service = make_service(client, paper=paper, temperature=3.0)
    service.send_message("q")
    req = client.requests[0]
    assert req.temperature == 1.0
    assert req.system == service.system_prompt()
    assert req.system == build_system_prompt(paper)
    assert "read_page" in [t.name for t in req.tools]


def test_tool_call_result_sent_back():
    call = ToolCall(id="t1", name="read_page", input={"page": 1})
    client = FakeClient([([], [call], ""), (["Answer"], [], "")])
    paper = make_paper()
    service = make_service(client, paper=paper)
    service.send_message("what is on page one?")

    assert len(client.requests) == 2
    second = client.requests[1].messages
    assistant = second[-2]
    assert assistant.role == "assistant"
    assert assistant.parts[0].type == PartType.TOOL_USE
    assert assistant.parts[0].tool_id == "t1"
    result = second[-1]
    assert result.role == "user"
    assert result.parts[0].type == PartType.TOOL_RESULT
    assert result.parts[0].tool_id == "t1"
    assert result.parts[0].text == read_page(paper, 1)

    bubble = service.messages[1].content
    assert '_[tool: read_page {"page":1}]_' in bubble
    assert bubble.endswith("Answer")
    assert service.busy is False


def test_tool_budget_exhausted():
    call = ToolCall(id="t", name="list_sections", input={})
    client = FakeClient([([], [call], ""), ([], [call], "")])
    service = make_service(client, paper=make_paper(), tool_budget=1)
    service.send_message("loop")
    assert len(client.requests) == 1
    last = service.messages[1]
    assert "Tool budget exhausted (1 iterations)" in last.content
    assert last.status == MessageStatus.DONE
    assert service.busy is False


def test_error_marks_message_failed():
    client = FakeClient([(["part"], [], "boom")])
    service = make_service(client)
    service.send_message("hi")
    last = service.messages[1]
    assert last.status == MessageStatus.FAILED
    assert last.error == "boom"
    assert service.last_error == "boom"
    assert service.busy is False


def test_cancel_while_streaming():
    client = FakeClient(finish=False)
    service = make_service(client)
    service.send_message("hi")
    assert service.busy is True
    service.cancel()
    assert service.busy is False
    assert client.aborted is True
    last = service.messages[1]
    assert last.status == MessageStatus.FAILED
    assert last.error == "Cancelled."


def test_auto_names_after_second_exchange():
    client = FakeClient([(["a"], [], ""), (["b"], [], "")])
    service = make_service(client)
    first = "Explain the attention mechanism in detail please"
    service.send_message(first)
    assert service.sessions.rows[0].name == "New chat"
    service.send_message("more")
    assert service.sessions.rows[0].name == derive_title(first)


def test_rename_stops_auto_naming():
    client = FakeClient([(["a"], [], ""), (["b"], [], "")])
    service = make_service(client)
    sid = service.active_session_id
    service.rename_session(sid, "  Mine  ")
    service.send_message("first question here")
    service.send_message("second")
    assert service.sessions.rows[0].name == "Mine"


def test_new_activate_and_delete_sessions():
    client = FakeClient([(["a"], [], "")])
    service = make_service(client)
    first_id = service.active_session_id
    service.send_message("hi")

    service.new_session()
    second_id = service.active_session_id
    assert second_id != first_id
    assert len(service.sessions) == 2
    assert len(service.messages) == 0

    service.activate_session(first_id)
    assert service.active_session_id == first_id
    assert [m.content for m in service.messages] == ["hi", "a"]
    assert service.sessions.rows[0].is_active is True
    assert service.sessions.rows[0].message_count == 2

    service.delete_session(first_id)
    assert service.active_session_id == second_id
    assert len(service.sessions) == 1

    service.delete_session(second_id)
    assert len(service.sessions) == 1
    assert service.active_session_id not in (first_id, second_id)


def test_clear_resets_active_session():
    client = FakeClient([(["a"], [], "")])
    service = make_service(client)
    sid = service.active_session_id
    service.rename_session(sid, "Named")
    service.send_message("hi")
    service.clear()
    assert len(service.messages) == 0
    assert service.sessions.rows[0].name == "New chat"
    assert service.active_session_id == sid


def test_history_persists_across_services(tmp_path):
    client = FakeClient([(["reply"], [], "")])
    cache = ChatHistoryCache(tmp_path, save_delay=0)
    service = make_service(client, cache=cache, paper=make_paper())
    service.send_message("hello")
    sid = service.active_session_id

    snap = ChatHistoryCache(tmp_path, save_delay=0)
    snap.set_paper_id("paper1")
    loaded = snap.load()
    assert loaded.active_id == sid
    assert [m.content for m in loaded.sessions[0].messages] == ["hello", "reply"]

    again = make_service(FakeClient(), cache=ChatHistoryCache(tmp_path, save_delay=0), paper=make_paper())
    assert again.active_session_id == sid
    assert [m.content for m in again.messages] == ["hello", "reply"]


def test_vision_tool_result():
    call = ToolCall(id="v1", name="read_page_visual", input={"page": 1, "question": "chart?"})
    client = FakeClient([([], [call], ""), (["A chart"], [], ""), (["Done"], [], "")])
    paper = make_paper(render_page=lambda idx, width: b"\x89PNG")
    service = make_service(client, paper=paper)
    service.send_message("look")

    vision = client.requests[1]
    assert vision.stream is False
    assert vision.messages[0].images == [b"\x89PNG"]
    assert vision.messages[0].content == "chart?"
    result = client.requests[2].messages[-1].parts[0]
    assert result.tool_id == "v1"
    assert result.text == "A chart"
    assert service.messages[1].content.endswith("Done")


def test_vision_tool_page_out_of_range():
    call = ToolCall(id="v1", name="read_page_visual", input={"page": 9})
    client = FakeClient([([], [call], ""), (["ok"], [], "")])
    service = make_service(client, paper=make_paper())
    service.send_message("look")
    result = client.requests[1].messages[-1].parts[0]
    assert result.text == "Error: page 9 out of range (paper has 2 pages)."