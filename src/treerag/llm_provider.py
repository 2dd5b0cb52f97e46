"""Language models used to summarize document sections."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from treerag.config import get_settings
from treerag.errors import ExternalServiceError, InvalidArgumentError, NotInitializedError
from treerag.providers.base import LLMProvider
from treerag.providers.mock_llm import MockLLMProvider
from treerag.telemetry import emit_exception, log_event

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LLMStatus:
    """Structured status information about the configured LLM backend."""

    model_loaded: bool
    model_name: str
    device: str
    error: Optional[str] = None


class LLM(LLMProvider):
    """Common interface exposed by language model implementations."""

    @property
    def model_loaded(self) -> bool:
        return False

    @property
    def device(self) -> str:
        return "cpu"

    @property
    def last_error(self) -> Optional[str]:
        return None

    def preload(self) -> None:
        """Load model weights ahead of the first call."""

    def status(self) -> LLMStatus:
        return LLMStatus(
            model_loaded=self.model_loaded,
            model_name=self.model_name,
            device=self.device,
            error=self.last_error,
        )


class LLMStub(LLM):
    """Placeholder used when no model is configured; every call fails."""

    def __init__(self, *, reason: str | None = None) -> None:
        self._reason = reason or "No summarization model is configured (set TREERAG_LLM_MODEL)."

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def last_error(self) -> Optional[str]:
        return self._reason

    def preload(self) -> None:
        raise NotInitializedError(self._reason)

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        raise NotInitializedError(self._reason)


class TransformersLLM(LLM):
    """Lazy-loading wrapper around ``AutoModelForCausalLM``."""

    def __init__(self, model_path: str, *, device: str | None = None) -> None:
        self._model_path = model_path
        self._requested_device = device
        self._model: Any = None
        self._tokenizer: Any = None
        self._device_label = "cpu"
        self._lock = threading.RLock()
        self._load_error: Optional[Exception] = None

    @property
    def model_loaded(self) -> bool:
        return self._model is not None

    @property
    def model_name(self) -> str:
        return self._model_path

    @property
    def device(self) -> str:
        return self._device_label

    @property
    def last_error(self) -> Optional[str]:
        if self._load_error is None:
            return None
        return str(self._load_error)

    def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        with self._lock:
            if self._model is not None:
                return
            try:
                import torch
                from transformers import AutoModelForCausalLM, AutoTokenizer
            except ImportError as error:  # pragma: no cover - optional heavy deps
                self._load_error = error
                raise NotInitializedError(
                    "PyTorch/Transformers are not available in the current environment"
                ) from error

            use_cuda = torch.cuda.is_available() and self._requested_device != "cpu"
            started = time.perf_counter()
            try:
                tokenizer = AutoTokenizer.from_pretrained(self._model_path)
                if tokenizer.pad_token_id is None and tokenizer.eos_token_id is not None:
                    tokenizer.pad_token_id = tokenizer.eos_token_id
                model = AutoModelForCausalLM.from_pretrained(
                    self._model_path,
                    device_map="auto" if use_cuda else "cpu",
                    torch_dtype="auto" if use_cuda else torch.float32,
                    low_cpu_mem_usage=True,
                )
            except Exception as error:  # pragma: no cover - depends on hw/config
                self._load_error = error
                emit_exception(module=__name__, error=error)
                raise NotInitializedError("Failed to load the summarization model") from error

            self._tokenizer = tokenizer
            self._model = model
            self._device_label = "cuda:0" if use_cuda else "cpu"
            self._load_error = None
            log_event(
                LOGGER,
                "llm.load.complete",
                duration_ms=(time.perf_counter() - started) * 1000.0,
                details={"model": self._model_path, "device": self._device_label},
            )

    def preload(self) -> None:
        self._ensure_loaded()

    def _generate_blocking(self, prompt: str, max_tokens: int) -> str:
        self._ensure_loaded()
        try:
            inputs = self._tokenizer(
                prompt,
                return_tensors="pt",
                truncation=True,
                max_length=getattr(self._tokenizer, "model_max_length", 4096),
            ).to(self._device_label)
            output_ids = self._model.generate(
                **inputs,
                max_new_tokens=max_tokens if max_tokens > 0 else 256,
                do_sample=False,
                pad_token_id=self._tokenizer.pad_token_id,
                eos_token_id=self._tokenizer.eos_token_id,
            )
            generated = output_ids[0, inputs["input_ids"].shape[1]:]
            return self._tokenizer.decode(generated, skip_special_tokens=True).strip()
        except Exception as error:  # pragma: no cover - depends on runtime behaviour
            raise ExternalServiceError("LLM generation failed", cause=error) from error

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        return await asyncio.to_thread(self._generate_blocking, prompt, max_tokens)


@lru_cache()
def get_llm() -> LLMProvider:
    """Return the configured summarizer: a local model, the mock or a stub."""

    settings = get_settings()
    provider = settings.llm_provider
    if provider == "mock":
        LOGGER.warning("TREERAG_LLM_PROVIDER=mock; summaries are not meaningful.")
        return MockLLMProvider()
    if provider == "stub" or (provider == "auto" and not settings.llm_model):
        return LLMStub()
    if provider in {"auto", "transformers"}:
        if not settings.llm_model:
            return LLMStub()
        return TransformersLLM(settings.llm_model)
    raise InvalidArgumentError(f"Unknown LLM provider '{provider}'")


def reset_llm_cache() -> None:
    get_llm.cache_clear()  # type: ignore[attr-defined]
