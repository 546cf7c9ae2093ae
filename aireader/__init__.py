"""Paragraph extraction, block caching and tool-using LLM chat for paper reading."""

__version__ = "0.2.0"

__all__ = [
    "block_cache",
    "block_list",
    "chat_history",
    "chat_model",
    "chat_prompt",
    "chat_service",
    "chat_tools",
    "clusterer",
    "llm",
    "paper",
]