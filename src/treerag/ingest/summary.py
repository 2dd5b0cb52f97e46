"""Bottom-up summarization of extracted document trees."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from treerag.config import DEFAULT_PARALLELISM, SUMMARY_SIZE, SUMMARY_TRIGGER, Settings
from treerag.errors import ExternalServiceError, NotInitializedError
from treerag.logging_config import SUMMARY_LOGGER_NAME
from treerag.providers.base import LLMProvider
from treerag.telemetry import emit_summary_event, log_event

from .cache import InMemorySummaryCache
from .models import RawNode, count_nodes

LOGGER = logging.getLogger(SUMMARY_LOGGER_NAME)

SUMMARY_PROMPTS = {
    "en": (
        "Provide a concise and complete summarization of the entire text below. "
        "The summary must not exceed {summary_size} words.\n"
        "The text is the section \"{title}\" of a larger document.\n"
        "The summary must always:\n"
        "- Use English\n"
        "- Focus on the most significant aspects of the text\n"
        "- Include details from any existing summary\n"
        "The summary must never:\n"
        "- Critique, correct, interpret, presume, or assume\n"
        "- Identify faults, mistakes, misunderstanding, or correctness\n"
        "- Analyze what has not occurred\n"
        "- Exclude details from any existing summary\n"
        "\nText:\n{text}"
    ),
    "zh": (
        "请对以下全部文本进行简洁且完整的总结，总结不得超过{summary_size}个字。\n"
        "该文本是一份更大文档中的章节“{title}”。\n"
        "总结必须始终：\n"
        "- 使用中文\n"
        "- 关注文本中最重要的方面\n"
        "- 包含任何已有总结中的细节\n"
        "总结绝不能：\n"
        "- 批评、纠正、解释、推测或假设\n"
        "- 指出错误、误解或正确与否\n"
        "- 分析未发生的事情\n"
        "- 遗漏任何已有总结中的细节\n"
        "\n文本：\n{text}"
    ),
}


def build_summary_prompt(text: str, title: str, *, language: str, summary_size: int) -> str:
    template = SUMMARY_PROMPTS.get(language.lower(), SUMMARY_PROMPTS["en"])
    return template.format(summary_size=summary_size, title=title or "untitled", text=text)


@dataclass(slots=True)
class SummaryProgress:
    """Snapshot sent to the progress callback after each node."""

    processed: int
    total: int
    title: str


@dataclass(slots=True)
class SummaryRunResult:
    processed: int
    total: int
    llm_calls: int = 0
    cache_hits: int = 0
    cancelled: bool = False


@dataclass(slots=True)
class _RunState:
    total: int
    semaphore: asyncio.Semaphore
    processed: int = 0
    llm_calls: int = 0
    cache_hits: int = 0


ProgressCallback = Callable[[SummaryProgress], None]


class SummaryPipeline:
    """Annotate every node of a raw tree with a summary, children first.

    One task per top-level root walks its subtree depth-first. A semaphore
    bounds concurrent summarizer calls; it is only held for the call itself,
    so short sections and cache hits never wait for a slot.
    """

    def __init__(
        self,
        llm: LLMProvider,
        cache: InMemorySummaryCache,
        *,
        endpoint_id: str = "local",
        language: str = "en",
        summary_trigger: int = SUMMARY_TRIGGER,
        summary_size: int = SUMMARY_SIZE,
        parallelism: int = DEFAULT_PARALLELISM,
        retry_count: int = 0,
        retry_backoff: float = 0.5,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self._llm = llm
        self._cache = cache
        self._endpoint_id = endpoint_id
        self.language = language
        self._summary_trigger = summary_trigger
        self._summary_size = summary_size
        self._parallelism = parallelism if parallelism > 0 else DEFAULT_PARALLELISM
        self._retry_count = max(0, retry_count)
        self._retry_backoff = max(0.0, retry_backoff)
        self._progress_callback = progress_callback

    @classmethod
    def from_settings(
        cls,
        llm: LLMProvider,
        cache: InMemorySummaryCache,
        settings: Settings,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> "SummaryPipeline":
        return cls(
            llm,
            cache,
            endpoint_id=settings.endpoint_id,
            language=settings.language,
            summary_trigger=settings.summary_trigger,
            summary_size=settings.summary_size,
            parallelism=settings.effective_parallelism,
            retry_count=settings.summary_retries,
            retry_backoff=settings.summary_backoff,
            progress_callback=progress_callback,
        )

    @property
    def parallelism(self) -> int:
        return self._parallelism

    async def run(
        self,
        roots: Sequence[RawNode],
        *,
        language: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SummaryRunResult:
        """Summarize ``roots`` in place.

        Raises ``ExternalServiceError`` on the first failing branch after
        cancelling the others. Setting ``cancel_event`` aborts the batch and
        returns a result with ``cancelled=True`` instead of raising.
        """
        language = language or self.language
        state = _RunState(
            total=count_nodes(list(roots)), semaphore=asyncio.Semaphore(self._parallelism)
        )
        self._cache.load(self._endpoint_id, self._llm.model_name, self._summary_size)
        if cancel_event is not None and cancel_event.is_set():
            return SummaryRunResult(processed=0, total=state.total, cancelled=True)

        started = time.perf_counter()
        tasks: List[asyncio.Task[None]] = [
            asyncio.create_task(self._summarize_tree(root, state, language), name=f"summary-{index}")
            for index, root in enumerate(roots)
        ]
        waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        failure: BaseException | None = None
        cancelled = False
        try:
            pending = set(tasks)
            while pending and failure is None and not cancelled:
                watched = (pending | {waiter}) if waiter is not None else pending
                done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
                if waiter is not None and waiter in done:
                    cancelled = True
                    break
                for task in done:
                    pending.discard(task)
                    if task.cancelled():
                        cancelled = True
                    elif task.exception() is not None:
                        failure = task.exception()
                        break
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if waiter is not None:
                waiter.cancel()
                await asyncio.gather(waiter, return_exceptions=True)
            self._cache.save()

        duration_ms = (time.perf_counter() - started) * 1000.0
        if failure is not None:
            emit_summary_event(
                "summary.failed",
                processed=state.processed,
                total=state.total,
                llm_calls=state.llm_calls,
                cache_hits=state.cache_hits,
                duration_ms=duration_ms,
                error=failure,
            )
            raise failure
        emit_summary_event(
            "summary.cancelled" if cancelled else "summary.complete",
            processed=state.processed,
            total=state.total,
            llm_calls=state.llm_calls,
            cache_hits=state.cache_hits,
            duration_ms=duration_ms,
        )
        return SummaryRunResult(
            processed=state.processed,
            total=state.total,
            llm_calls=state.llm_calls,
            cache_hits=state.cache_hits,
            cancelled=cancelled,
        )

    async def _summarize_tree(self, node: RawNode, state: _RunState, language: str) -> None:
        for child in node.children:
            await self._summarize_tree(child, state, language)
        node.summary = await self._summarize_node(node, state, language)
        state.processed += 1
        LOGGER.debug("Summarized %r (%s/%s)", node.title, state.processed, state.total)
        if self._progress_callback is not None:
            self._progress_callback(
                SummaryProgress(processed=state.processed, total=state.total, title=node.title)
            )

    async def _summarize_node(self, node: RawNode, state: _RunState, language: str) -> str:
        raw = node.summary_raw()
        if len(raw) < self._summary_trigger:
            return raw
        cached = self._cache.get(raw)
        if cached:
            state.cache_hits += 1
            return cached
        prompt = build_summary_prompt(
            raw, node.title, language=language, summary_size=self._summary_size
        )
        summary = await self._call_llm(prompt, state)
        self._cache.add(raw, summary)
        return summary

    async def _call_llm(self, prompt: str, state: _RunState) -> str:
        attempts = self._retry_count + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                async with state.semaphore:
                    state.llm_calls += 1
                    response = await self._llm.generate(prompt, max_tokens=self._summary_size * 2)
                summary = (response or "").strip()
                if not summary:
                    raise ExternalServiceError("Summarizer returned an empty response")
                return summary
            except NotInitializedError:
                raise
            except Exception as error:
                last_error = error
                if attempt + 1 >= attempts:
                    break
                delay = self._retry_backoff * (2**attempt)
                log_event(
                    LOGGER,
                    "summary.retry",
                    level="warning",
                    details={"attempt": attempt + 1, "attempts": attempts, "delay_s": delay},
                    exc=error,
                )
                await asyncio.sleep(delay)

        if isinstance(last_error, ExternalServiceError):
            raise last_error
        raise ExternalServiceError("Summarizer call failed", cause=last_error) from last_error


__all__ = [
    "SUMMARY_PROMPTS",
    "SummaryPipeline",
    "SummaryProgress",
    "SummaryRunResult",
    "build_summary_prompt",
]
