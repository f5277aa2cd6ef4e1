"""Heuristic AI/ML vs SWE categorization for discovered repositories."""

from __future__ import annotations

import re
from typing import Iterable, Optional

from starboard.models.repository import RepoCategory


AIML_TOPICS: frozenset[str] = frozenset(
    {
        "llm",
        "large-language-model",
        "language-model",
        "machine-learning",
        "deep-learning",
        "neural-network",
        "nlp",
        "natural-language-processing",
        "computer-vision",
        "generative-ai",
        "stable-diffusion",
        "ai-agent",
        "rag",
        "retrieval-augmented-generation",
        "embeddings",
        "fine-tuning",
        "transformers",
        "pytorch",
        "tensorflow",
        "reinforcement-learning",
        "chatgpt",
        "gpt",
        "openai",
        "huggingface",
        "diffusion-model",
        "multimodal",
        "ai",
        "artificial-intelligence",
        "ml",
        "inference",
        "quantization",
    }
)

AIML_LANGUAGES: frozenset[str] = frozenset({"Python", "Jupyter Notebook"})

_AIML_NAME_PATTERN = re.compile(r"llm|gpt|ai|ml|model|train|infer|diffus|embed|vector")


def categorize_repo(topics: Iterable[str], language: Optional[str], full_name: str) -> str:
    """Return `AI/ML` or `SWE` for a search result.

    A topic allowlist hit is authoritative. Otherwise a Python/Jupyter repo that
    has at least one topic and a name matching the AI/ML pattern counts as AI/ML.
    """

    lower_topics = [topic.lower() for topic in topics if topic]
    if any(topic in AIML_TOPICS for topic in lower_topics):
        return RepoCategory.AIML

    if (language or "") in AIML_LANGUAGES and lower_topics:
        if _AIML_NAME_PATTERN.search(full_name.lower()):
            return RepoCategory.AIML

    return RepoCategory.SWE
