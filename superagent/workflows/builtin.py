"""内置工作流：文本处理与摘要，作为网关默认暴露的能力。"""

from __future__ import annotations

import re
from typing import Any

from superagent.domain.context import Context
from superagent.domain.workflow import WorkflowRegistry


def normalize_text(context: Context) -> dict[str, Any]:
    text = str(context.get("text") or "")
    return {"normalized_text": re.sub(r"\s+", " ", text).strip()}


def count_words(context: Context) -> int:
    return len(str(context.get("normalized_text") or "").split())


def extract_keywords(context: Context) -> list[str]:
    """按词频取前五个长度大于三的词。"""
    words = re.findall(r"[\w']+", str(context.get("normalized_text") or "").lower())
    counts: dict[str, int] = {}
    for word in words:
        if len(word) > 3:
            counts[word] = counts.get(word, 0) + 1
    return [word for word, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:5]]


def register(registry: WorkflowRegistry) -> None:
    text_tools = (
        registry.builder("text_tools", description="Normalize text and compute simple statistics")
        .task("normalize", normalize_text, input="text", description="Collapse whitespace in text")
        .task("word_count", count_words, input="normalized_text", output="word_count",
              description="Count words in normalized text")
        .task("keywords", extract_keywords, input="normalized_text", output="keywords",
              run_when=("with_keywords", True), description="Top keywords by frequency")
        .build()
    )
    registry.register(text_tools)

    summarize = (
        registry.builder("summarize", description="Summarize text with the configured LLM provider")
        .llm(
            "summary",
            "Summarize the following text in {{sentences}} sentences:\n\n{{text}}",
            input=["text", "sentences"],
            output="summary",
            description="LLM summary of the input text",
        )
        .build()
    )
    registry.register(summarize)
