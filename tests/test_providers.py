from __future__ import annotations

import builtins

import pytest

from treerag import embeddings, llm_provider
from treerag.config import Settings, reset_settings_cache
from treerag.errors import ExternalServiceError, InvalidArgumentError, NotInitializedError
from treerag.providers import MockEmbeddingProvider, MockLLMProvider
from treerag.vectorstore import build_embedder, get_chunk_store


def test_embedding_model_uses_fallback_when_heavy_models_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    real_import = builtins.__import__

    def _guarded_import(name: str, *args, **kwargs):
        if name == "sentence_transformers":
            raise AssertionError("sentence-transformers should not be imported when heavy models are disabled")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", _guarded_import)

    model = embeddings.EmbeddingModel(dimension=16)

    vectors = model.embed_texts(["hello", "world"])
    assert len(vectors) == 2
    assert all(len(vector) == 16 for vector in vectors)
    assert vectors[0] != vectors[1]
    assert model.model_name == embeddings.FALLBACK_MODEL_NAME


def test_embedding_model_deterministic_output() -> None:
    vectors_a = embeddings.EmbeddingModel().embed_texts(["same text"])
    vectors_b = embeddings.EmbeddingModel().embed_texts(["same text"])

    assert vectors_a == vectors_b


@pytest.mark.anyio
async def test_encode_maps_empty_strings_to_zero_vectors(monkeypatch: pytest.MonkeyPatch) -> None:
    model = embeddings.EmbeddingModel(dimension=4)
    seen = []
    original = model.embed_texts

    def _recording(texts):
        seen.extend(texts)
        return original(texts)

    monkeypatch.setattr(model, "embed_texts", _recording)

    vectors = await model.encode(["", "text", ""])

    assert seen == ["text"]
    assert vectors[0] == [0.0] * 4
    assert vectors[2] == [0.0] * 4
    assert any(vectors[1])


@pytest.mark.anyio
async def test_encode_wraps_backend_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    model = embeddings.EmbeddingModel(dimension=4)

    def _broken(texts):
        raise RuntimeError("gpu on fire")

    monkeypatch.setattr(model, "embed_texts", _broken)

    with pytest.raises(ExternalServiceError) as excinfo:
        await model.encode(["text"])

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_get_embedding_model_reads_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREERAG_EMBEDDING_DIM", "12")

    model = embeddings.get_embedding_model()

    assert model.dimension == 12
    assert embeddings.get_embedding_model() is model


@pytest.mark.anyio
async def test_mock_providers_are_deterministic() -> None:
    embedder = MockEmbeddingProvider(dimension=6)
    first = await embedder.encode(["alpha", ""])
    second = await embedder.encode(["alpha"])

    assert first[0] == second[0]
    assert first[1] == [0.0] * 6
    assert embedder.calls == 2

    llm = MockLLMProvider()
    assert (await llm.generate("one two three", max_tokens=2)) == "MOCK_SUMMARY: two three"


def test_mock_embedding_rejects_bad_dimension() -> None:
    with pytest.raises(ValueError):
        MockEmbeddingProvider(dimension=0)


@pytest.mark.anyio
async def test_stub_llm_reports_missing_model() -> None:
    stub = llm_provider.LLMStub()

    with pytest.raises(NotInitializedError):
        await stub.generate("prompt")

    status = stub.status()
    assert not status.model_loaded
    assert status.model_name == "stub"
    assert "TREERAG_LLM_MODEL" in (status.error or "")


def test_get_llm_defaults_to_stub_without_model() -> None:
    assert isinstance(llm_provider.get_llm(), llm_provider.LLMStub)


def test_get_llm_honours_provider_setting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREERAG_LLM_PROVIDER", "mock")
    assert isinstance(llm_provider.get_llm(), MockLLMProvider)

    llm_provider.reset_llm_cache()
    reset_settings_cache()
    monkeypatch.setenv("TREERAG_LLM_PROVIDER", "auto")
    monkeypatch.setenv("TREERAG_LLM_MODEL", "some/model")
    llm = llm_provider.get_llm()
    assert isinstance(llm, llm_provider.TransformersLLM)
    assert llm.model_name == "some/model"
    assert not llm.model_loaded


def test_get_llm_rejects_unknown_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREERAG_LLM_PROVIDER", "carrier-pigeon")

    with pytest.raises(InvalidArgumentError):
        llm_provider.get_llm()


def test_chunk_store_embedder_follows_provider_setting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREERAG_EMBEDDING_PROVIDER", "mock")
    monkeypatch.setenv("TREERAG_EMBEDDING_DIM", "12")

    store = get_chunk_store()

    assert isinstance(store.embedder, MockEmbeddingProvider)
    assert store.embedder.dimension == 12

    with pytest.raises(InvalidArgumentError):
        build_embedder(Settings(embedding_provider="remote"))
    assert isinstance(build_embedder(Settings()), embeddings.EmbeddingModel)
