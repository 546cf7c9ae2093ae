from aireader.block_list import Block, BlockKind, BlockListModel
from aireader.paper import PaperContext, TocEntry, format_block, tool_definitions


def test_format_heading():
    assert format_block(Block(kind=BlockKind.HEADING, text="Intro")) == "\n## Intro\n"


def test_format_caption():
    assert format_block(Block(kind=BlockKind.CAPTION, text="Figure 1: x")) == "\n_(Figure 1: x)_\n"


def test_format_paragraph_and_others():
    assert format_block(Block(kind=BlockKind.PARAGRAPH, text="body")) == "body\n"
    assert format_block(Block(kind=BlockKind.EQUATION, text="e=mc")) == "e=mc\n"


def test_tool_names_in_order():
    names = [t.name for t in tool_definitions()]
    assert names == [
        "list_sections",
        "read_page",
        "read_page_visual",
        "get_figure_caption",
        "search_paper",
        "get_user_selection",
        "read_section",
    ]


def test_tool_schemas_are_objects_with_required_props():
    for tool in tool_definitions():
        schema = tool.input_schema
        assert schema["type"] == "object"
        for req in schema.get("required", []):
            assert req in schema["properties"]
        assert tool.description


def test_required_fields():
    required = {t.name: t.input_schema.get("required", []) for t in tool_definitions()}
    assert required["read_page"] == ["page"]
    assert required["search_paper"] == ["query"]
    assert required["read_section"] == ["section_id"]
    assert required["list_sections"] == []


def test_tool_definitions_are_independent():
    first = tool_definitions()
    first[1].input_schema["properties"]["page"]["type"] = "changed"
    assert tool_definitions()[1].input_schema["properties"]["page"]["type"] == "integer"


def test_paper_context_defaults():
    paper = PaperContext()
    assert len(paper.blocks) == 0
    assert paper.toc == []
    assert paper.selection_page == -1
    other = PaperContext()
    paper.toc.append(TocEntry(id="s1"))
    assert other.toc == []


def test_paper_context_holds_blocks():
    model = BlockListModel([Block(id=3, text="x")])
    paper = PaperContext(paper_id="p", blocks=model, toc=[TocEntry(id="s1", start_block=3)])
    assert paper.blocks.block_at(0).id == paper.toc[0].start_block