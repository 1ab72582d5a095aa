from __future__ import annotations

from conftest import FakeEmbedder

from companion.chunker import Chunk
from companion.index import EmbeddingIndex
from companion.retriever import DEFAULT_TOP_K, Retriever


def _index(embedder):
    chunks = [
        Chunk("老年人陪伴服务介绍", {"source": "kb"}, 0),
        Chunk("天气变冷，注意保暖", {"source": "kb"}, 1),
        Chunk("给孙子打个电话", {"source": "kb"}, 2),
    ]
    return EmbeddingIndex.build(chunks, embedder)


def test_retrieve_returns_default_top_two():
    retriever = Retriever(_index(FakeEmbedder()))
    assert DEFAULT_TOP_K == 2
    results = retriever.retrieve("天气冷了要保暖")
    assert len(results) == 2
    assert results[0].chunk.content == "天气变冷，注意保暖"


def test_retrieve_is_repeatable():
    retriever = Retriever(_index(FakeEmbedder()), k=3)
    assert retriever.retrieve("打电话") == retriever.retrieve("打电话")


def test_retrieve_skips_when_embedding_fails_mid_process():
    class Flaky(FakeEmbedder):
        down = False

        def embed(self, text):
            if self.down:
                raise ConnectionError("embedding endpoint down")
            return super().embed(text)

    emb = Flaky()
    retriever = Retriever(_index(emb))
    emb.down = True
    assert retriever.retrieve("保暖") == []
