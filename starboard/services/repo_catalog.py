"""Statically tracked repositories synced on every metadata run."""

from __future__ import annotations

from dataclasses import dataclass

from starboard.models.repository import RepoCategory


@dataclass(frozen=True, slots=True)
class TrackedRepo:
    """Catalog entry for a repository tracked regardless of trending status."""

    full_name: str
    category: str


DEFAULT_TRACKED_REPOS: tuple[TrackedRepo, ...] = (
    # AI/ML
    TrackedRepo("pytorch/pytorch", RepoCategory.AIML),
    TrackedRepo("tensorflow/tensorflow", RepoCategory.AIML),
    TrackedRepo("huggingface/transformers", RepoCategory.AIML),
    TrackedRepo("ollama/ollama", RepoCategory.AIML),
    TrackedRepo("ggml-org/llama.cpp", RepoCategory.AIML),
    TrackedRepo("vllm-project/vllm", RepoCategory.AIML),
    TrackedRepo("langchain-ai/langchain", RepoCategory.AIML),
    TrackedRepo("run-llama/llama_index", RepoCategory.AIML),
    TrackedRepo("openai/openai-python", RepoCategory.AIML),
    TrackedRepo("anthropics/anthropic-sdk-python", RepoCategory.AIML),
    TrackedRepo("microsoft/autogen", RepoCategory.AIML),
    TrackedRepo("crewAIInc/crewAI", RepoCategory.AIML),
    TrackedRepo("AUTOMATIC1111/stable-diffusion-webui", RepoCategory.AIML),
    TrackedRepo("comfyanonymous/ComfyUI", RepoCategory.AIML),
    TrackedRepo("scikit-learn/scikit-learn", RepoCategory.AIML),
    TrackedRepo("keras-team/keras", RepoCategory.AIML),
    TrackedRepo("openai/whisper", RepoCategory.AIML),
    TrackedRepo("chroma-core/chroma", RepoCategory.AIML),
    TrackedRepo("qdrant/qdrant", RepoCategory.AIML),
    TrackedRepo("mlflow/mlflow", RepoCategory.AIML),
    # SWE
    TrackedRepo("microsoft/vscode", RepoCategory.SWE),
    TrackedRepo("facebook/react", RepoCategory.SWE),
    TrackedRepo("vercel/next.js", RepoCategory.SWE),
    TrackedRepo("sveltejs/svelte", RepoCategory.SWE),
    TrackedRepo("vuejs/core", RepoCategory.SWE),
    TrackedRepo("microsoft/TypeScript", RepoCategory.SWE),
    TrackedRepo("denoland/deno", RepoCategory.SWE),
    TrackedRepo("oven-sh/bun", RepoCategory.SWE),
    TrackedRepo("rust-lang/rust", RepoCategory.SWE),
    TrackedRepo("golang/go", RepoCategory.SWE),
    TrackedRepo("kubernetes/kubernetes", RepoCategory.SWE),
    TrackedRepo("docker/compose", RepoCategory.SWE),
    TrackedRepo("neovim/neovim", RepoCategory.SWE),
    TrackedRepo("tauri-apps/tauri", RepoCategory.SWE),
    TrackedRepo("astral-sh/uv", RepoCategory.SWE),
    TrackedRepo("astral-sh/ruff", RepoCategory.SWE),
    TrackedRepo("fastapi/fastapi", RepoCategory.SWE),
    TrackedRepo("supabase/supabase", RepoCategory.SWE),
    TrackedRepo("tailwindlabs/tailwindcss", RepoCategory.SWE),
    TrackedRepo("zed-industries/zed", RepoCategory.SWE),
)


def get_tracked_repos() -> tuple[TrackedRepo, ...]:
    return DEFAULT_TRACKED_REPOS


def tracked_full_names() -> frozenset[str]:
    """Lower-cased full names of the static catalog for case-insensitive dedup."""

    return frozenset(repo.full_name.lower() for repo in DEFAULT_TRACKED_REPOS)
