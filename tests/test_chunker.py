from __future__ import annotations

import pytest

from companion.chunker import split_documents, split_text
from companion.documents import Document


def _assert_invariants(pieces, size, overlap):
    assert all(len(p) <= size for p in pieces)
    for a, b in zip(pieces, pieces[1:]):
        if overlap:
            assert a[-overlap:] == b[:overlap]


def test_short_document_is_a_single_chunk():
    doc = Document("短文本", {"source": "kb"})
    chunks = split_documents([doc], chunk_size=100, overlap=10)
    assert len(chunks) == 1
    assert chunks[0].content == "短文本"
    assert chunks[0].metadata == {"source": "kb"}


def test_document_of_exactly_chunk_size_is_a_single_chunk():
    assert split_text("x" * 100, 100, 10) == ["x" * 100]


def test_hard_cuts_overlap_exactly():
    text = "".join(chr(0x4E00 + i) for i in range(250))  # no separators
    pieces = split_text(text, 100, 10)
    assert [len(p) for p in pieces] == [100, 100, 70]
    _assert_invariants(pieces, 100, 10)
    # Dropping the overlap from every chunk but the first reconstructs the text
    assert pieces[0] + "".join(p[10:] for p in pieces[1:]) == text


def test_cuts_prefer_sentence_boundaries():
    sentence = "今天天气很好，我们一起去公园散步吧。"
    text = sentence * 12
    pieces = split_text(text, 100, 10)
    _assert_invariants(pieces, 100, 10)
    assert all(p.endswith("。") for p in pieces[:-1])
    assert pieces[0] + "".join(p[10:] for p in pieces[1:]) == text


@pytest.mark.parametrize("size,overlap", [(20, 0), (20, 5), (37, 12), (100, 10)])
def test_invariants_hold_for_mixed_text(size, overlap):
    text = ("Hello there. 你好！How are you today?\n我很好，谢谢。 " * 9).strip()
    pieces = split_text(text, size, overlap)
    assert len(pieces) > 1
    _assert_invariants(pieces, size, overlap)
    assert pieces[0] + "".join(p[overlap:] for p in pieces[1:]) == text


def test_chunk_order_follows_documents_and_copies_metadata():
    docs = [
        Document("a" * 150, {"source": "first"}),
        Document("b" * 30, {"source": "second"}),
    ]
    chunks = split_documents(docs, chunk_size=100, overlap=10)
    assert [c.metadata["source"] for c in chunks] == ["first", "first", "second"]
    assert [c.index for c in chunks] == [0, 1, 2]
    chunks[0].metadata["source"] = "changed"
    assert docs[0].metadata["source"] == "first"


@pytest.mark.parametrize("size,overlap", [(0, 0), (10, -1), (10, 10), (10, 11)])
def test_invalid_parameters(size, overlap):
    with pytest.raises(ValueError):
        split_text("abc", size, overlap)
