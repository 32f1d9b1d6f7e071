from __future__ import annotations

from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore

from openai import OpenAI

from ..core.config import get_settings

_llm_semaphore: BoundedSemaphore | None = None


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Bound concurrent calls to the LLM provider.

    Completion calls run in worker threads (`asyncio.to_thread`), so this is a
    thread semaphore and must be entered inside the thread doing the request.
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Centralised factory for the OpenAI-compatible client used for completions.

    - LLM_PROVIDER=gemini talks to Google's OpenAI-compatible endpoint.
    - LLM_PROVIDER=openrouter routes via OpenRouter.
    - LLM_PROVIDER=openai uses the standard OpenAI API.

    Cached so all callers in a process share a single client instance.
    """
    settings = get_settings()
    provider = settings.LLM_PROVIDER.lower()

    if provider == "gemini" and settings.GEMINI_API_KEY:
        return OpenAI(
            base_url=settings.GEMINI_BASE_URL,
            api_key=settings.GEMINI_API_KEY.strip(),
            max_retries=settings.LLM_MAX_RETRIES,
        )

    if provider == "openrouter" and settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            max_retries=settings.LLM_MAX_RETRIES,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Syllabus Study Planner",
            },
        )

    if provider == "openai" and settings.OPENAI_API_KEY:
        return OpenAI(
            api_key=settings.OPENAI_API_KEY.strip(),
            max_retries=settings.LLM_MAX_RETRIES,
        )

    raise RuntimeError(
        f"No API key configured for LLM_PROVIDER={settings.LLM_PROVIDER!r}. "
        "Set GEMINI_API_KEY, OPENROUTER_API_KEY or OPENAI_API_KEY accordingly."
    )
