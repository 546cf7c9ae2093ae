import pytest

from aireader.block_list import (
    Block,
    BlockKind,
    BlockListModel,
    Rect,
    TranslationStatus,
    kind_name,
    translation_status_name,
)


def make(text, id_, page=0, kind=BlockKind.PARAGRAPH, bbox=Rect()):
    return Block(id=id_, ord=id_, page=page, kind=kind, text=text, bbox=bbox)


@pytest.fixture
def model():
    return BlockListModel(
        [
            make("Alpha beta", 1, page=0, bbox=Rect(0, 0, 10, 10)),
            make("Gamma delta", 2, page=0, bbox=Rect(5, 5, 10, 10)),
            make("Epsilon", 3, page=2),
            make("Zeta", 4, page=3),
        ]
    )


def test_rect_is_empty():
    assert Rect(0, 0, 0, 5).is_empty()
    assert Rect(0, 0, 5, -1).is_empty()
    assert not Rect(0, 0, 1, 1).is_empty()


def test_rect_united_with_null_returns_other():
    r = Rect(1, 2, 3, 4)
    assert Rect().united(r) == r
    assert r.united(Rect()) == r


def test_rect_united_covers_both():
    a = Rect(0, 0, 10, 10)
    b = Rect(5, 5, 10, 10)
    assert a.united(b) == Rect(0, 0, 15, 15)
    assert b.united(a) == a.united(b)


def test_kind_names():
    assert kind_name(BlockKind.HEADING) == "heading"
    assert kind_name(BlockKind.LIST_ITEM) == "list"
    assert kind_name(BlockKind.PARAGRAPH) == "paragraph"


def test_status_names():
    assert translation_status_name(TranslationStatus.NOT_TRANSLATED) == "idle"
    assert translation_status_name(TranslationStatus.FAILED) == "failed"
    assert translation_status_name(TranslationStatus.TRANSLATING) == "translating"


def test_split_block(model):
    calls = []
    model.mutated_listeners.append(lambda: calls.append(1))
    assert model.split_block(0, 5)
    assert len(model) == 5
    assert model.block_at(0).text == "Alpha"
    assert model.block_at(1).text == "beta"
    assert model.block_at(1).page == model.block_at(0).page
    assert model.block_at(1).bbox == model.block_at(0).bbox
    assert model.block_at(1).id == 5
    assert model.block_at(1).ord == model.block_at(1).id
    assert calls == [1]


def test_split_resets_translation(model):
    model.set_translation(0, "done")
    model.set_translation_status(0, TranslationStatus.TRANSLATED)
    assert model.split_block(0, 5)
    assert model.block_at(0).translation == ""
    assert model.block_at(0).translation_status == TranslationStatus.NOT_TRANSLATED


@pytest.mark.parametrize("row,offset", [(0, 0), (0, 10), (0, -1), (9, 3), (-1, 3)])
def test_split_rejects_bad_arguments(model, row, offset):
    assert not model.split_block(row, offset)
    assert len(model) == 4


def test_split_rejects_blank_half():
    m = BlockListModel([make("abc   ", 1)])
    assert not m.split_block(0, 3)
    assert m.block_at(0).text == "abc   "


def test_merge_with_next(model):
    model.set_translation(0, "x")
    assert model.merge_with_next(0)
    assert len(model) == 3
    merged = model.block_at(0)
    assert merged.text == "Alpha beta Gamma delta"
    assert merged.bbox == Rect(0, 0, 10, 10).united(Rect(5, 5, 10, 10))
    assert merged.translation == ""


def test_merge_does_not_double_space():
    m = BlockListModel([make("one ", 1), make("two", 2)])
    assert m.merge_with_next(0)
    assert m.block_at(0).text == "one two"


def test_merge_last_row_fails(model):
    assert not model.merge_with_next(3)
    assert not model.merge_with_next(-1)
    assert len(model) == 4


def test_remove_block(model):
    calls = []
    model.mutated_listeners.append(lambda: calls.append(1))
    assert model.remove_block(1)
    assert [b.text for b in model] == ["Alpha beta", "Epsilon", "Zeta"]
    assert not model.remove_block(7)
    assert calls == [1]


def test_visibility_toggles(model):
    meta, mutated = [], []
    model.meta_listeners.append(lambda: meta.append(1))
    model.mutated_listeners.append(lambda: mutated.append(1))
    assert model.set_source_visible(0, False)
    assert not model.set_source_visible(0, False)
    assert model.set_translation_visible(1, False)
    assert model.block_at(0).source_visible is False
    assert model.block_at(1).translation_visible is False
    assert meta == [1, 1]
    assert mutated == []
    assert not model.set_source_visible(10, True)


def test_translation_chunks(model):
    model.append_translation_chunk(0, "Hel")
    model.append_translation_chunk(0, "")
    model.append_translation_chunk(0, "lo")
    model.append_translation_chunk(99, "ignored")
    assert model.block_at(0).translation == "Hello"


def test_translation_status_with_error(model):
    model.set_translation_status(2, TranslationStatus.FAILED, "boom")
    assert model.block_at(2).translation_status == TranslationStatus.FAILED
    assert model.block_at(2).translation_error == "boom"


def test_first_row_on_page(model):
    assert model.first_row_on_page(0) == 0
    assert model.first_row_on_page(1) == 2
    assert model.first_row_on_page(3) == 3
    assert model.first_row_on_page(5) is None
    assert model.first_row_on_page(-1) is None
    assert BlockListModel().first_row_on_page(0) is None


def test_page_of_row(model):
    assert model.page_of_row(2) == 2
    assert model.page_of_row(4) is None


def test_all_blocks_are_copies(model):
    snapshot = model.all_blocks()
    snapshot[0].text = "changed"
    assert model.block_at(0).text == "Alpha beta"
    assert len(snapshot) == len(model)


def test_clear_and_set_blocks(model):
    model.clear()
    assert len(model) == 0
    assert model.block_at(0) is None
    model.set_blocks([make("x", 1)])
    assert model.block_at(0).text == "x"