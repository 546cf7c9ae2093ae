# aireader

Building blocks for an AI-assisted paper reader:

- **`aireader.clusterer`** groups per-page text lines into paragraph
  blocks. It joins hyphenated words and splits on sentence-final
  punctuation, column changes and font-size jumps. It classifies each block
  as a heading, caption or paragraph. `dump_debug` returns a text report of
  what the splitter saw.
- **`aireader.block_list`** holds the block list a reader edits. Paragraphs
  can be split, merged and removed, and each block carries translation
  status, translation text and visibility flags.
- **`aireader.block_cache`** keeps each paper's edited block list on disk
  as JSON, so reopening the paper skips re-extraction.
- **`aireader.llm`** defines the provider-neutral types: `Message`,
  `ContentPart`, `ToolDef`, `ToolCall`, `Request` and the streaming
  `LlmReply`. It also has the abstract `LlmClient`.
- **`aireader.paper`** describes the open paper to the chat (`PaperContext`,
  `TocEntry`) and lists the tools offered to the model.
- **`aireader.chat_tools`** implements those tools: list sections, read a
  page or a section, search the text, look up a figure caption and return
  the user's selection.
- **`aireader.chat_prompt`** builds the system prompt and derives short
  session titles.
- **`aireader.chat_model`**, **`aireader.chat_history`** and
  **`aireader.chat_service`** run multi-session chats about an open paper
  and store the history per paper.

## Install

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Extracting paragraphs

`extract` takes one `PageText` per page. Each holds the page's raw text
and, when available, one bounding `Rect` per non-empty line in `bounds`:

```python
from aireader.block_list import Rect
from aireader.clusterer import PageText, extract

pages = [
    PageText(
        text="1 Introduction\nLarge models are use-\nful tools.\n",
        bounds=[Rect(50, 60, 200, 14), Rect(50, 80, 400, 10), Rect(50, 92, 400, 10)],
    )
]
for block in extract(pages):
    print(block.kind.name, block.text)
```

## Caching edits

```python
from aireader.block_cache import BlockCache

cache = BlockCache(cache_dir="cache/blocks")
cache.set_paper_id("paper-1234")
if not cache.has_blocks():
    cache.set_blocks(extract(pages))
    cache.flush()
```

Writes are debounced (0.8 s by default). `flush` writes a pending save at
once, and `clear` deletes the paper's file.

## Chatting about a paper

`ChatService` needs a factory that builds an `LlmClient` from a
`ChatConfig`. A client implements `send(request, reply)`: it reports text
with `reply.append_chunk`, tool calls with `reply.append_tool_call`, and
ends with `reply.mark_finished()` or `reply.set_error(message)`.

```python
from aireader.block_list import Block, BlockListModel
from aireader.chat_service import ChatConfig, ChatService
from aireader.llm import LlmClient, LlmReply
from aireader.paper import PaperContext


class EchoClient(LlmClient):
    def send(self, request, reply=None):
        reply = reply or LlmReply()
        reply.append_chunk("You said: " + request.messages[-1].content)
        reply.mark_finished()
        return reply


config = ChatConfig(model="echo")
config.api_key = "placeholder"
paper = PaperContext(
    paper_id="paper-1234",
    file_name="paper.pdf",
    page_count=1,
    blocks=BlockListModel([Block(id=0, text="Our method improves recall.")]),
)
service = ChatService(
    config,
    client_factory=lambda cfg: EchoClient(cfg.api_key, cfg.model, cfg.base_url),
    paper=paper,
)
service.send_message("What is the main contribution?")
for message in service.messages:
    print(message.role, message.content)
```

Pass a `ChatHistoryCache` as `cache` to keep sessions on disk per paper.
Each session has its own transcript. Use `new_session`, `activate_session`,
`rename_session` and `delete_session` to manage them. There is always at
least one session. A turn that asks for tools runs them and continues until
the model answers without tool calls or `tool_budget` turns are used.

## What this package does not do

- It does not read PDF files. The caller supplies each page's text and
  line boxes, and, for the `read_page_visual` tool, a `render_page`
  callable that returns PNG bytes.
- It ships no client for any LLM provider. Subclass `LlmClient` to talk to
  one.
- It has no graphical interface, command-line program or translation
  pipeline. It provides the data models and services such programs are
  built on.