from aireader.chat_model import (
    ChatMessage,
    ChatModel,
    ChatSessionListModel,
    MessageStatus,
    SessionRow,
    make_session,
)


def test_append_returns_rows():
    model = ChatModel()
    assert model.append_message("user", "hi") == 0
    assert model.append_message("assistant", "", MessageStatus.STREAMING) == 1
    assert len(model) == 2
    assert model[1].status is MessageStatus.STREAMING


def test_append_chunk_to_last():
    model = ChatModel()
    model.append_chunk_to_last("ignored")
    assert len(model) == 0
    model.append_message("user", "q")
    model.append_message("assistant", "")
    model.append_chunk_to_last("ab")
    model.append_chunk_to_last("")
    model.append_chunk_to_last("c")
    assert [m.content for m in model] == ["q", "abc"]


def test_set_last_status():
    model = ChatModel()
    model.set_last_status(MessageStatus.FAILED, "x")
    assert len(model) == 0
    model.append_message("assistant", "", MessageStatus.STREAMING)
    model.set_last_status(MessageStatus.FAILED, "Cancelled.")
    assert model[0].status is MessageStatus.FAILED
    assert model[0].error == "Cancelled."
    model.set_last_status(MessageStatus.DONE)
    assert model[0].error == ""


def test_messages_are_copies_and_set_messages():
    model = ChatModel()
    model.append_message("user", "q")
    snapshot = model.messages
    snapshot[0].content = "changed"
    assert model[0].content == "q"

    model.set_messages([ChatMessage("assistant", "a")])
    assert [(m.role, m.content) for m in model] == [("assistant", "a")]
    model.clear()
    assert len(model) == 0


def test_make_session_unique_and_empty():
    a = make_session("New chat")
    b = make_session("New chat")
    assert a.id != b.id
    assert a.name == "New chat"
    assert a.auto_named
    assert a.created_at == a.updated_at
    assert a.messages == [] and a.api_messages == []


def test_session_list_model():
    model = ChatSessionListModel()
    assert model.id_at(0) is None
    model.reset_rows([SessionRow(id="a", name="A", is_active=True), SessionRow(id="b")])
    assert len(model) == 2
    assert model.id_at(1) == "b"
    assert model.id_at(-1) is None
    assert [r.is_active for r in model] == [True, False]
    model.reset_rows([])
    assert model.rows == []