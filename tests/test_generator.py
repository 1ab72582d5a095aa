from __future__ import annotations

import pytest

from conftest import ScriptedCompletion

from companion.chunker import Chunk
from companion.errors import GenerationError
from companion.generator import PERSONA_PROMPT, ResponseGenerator, render_system_prompt
from companion.index import ScoredChunk
from companion.llm import GenerationOptions
from companion.messages import Message, Role

CHUNKS = [
    ScoredChunk(Chunk("老年人陪伴服务介绍", {"source": "kb"}, 0), 0.9),
    ScoredChunk(Chunk("user: 我喜欢下象棋", {"source": "chat_history"}, 1), 0.5),
]
HISTORY = [Message(Role.USER, "你好"), Message(Role.AGENT, "您好呀")]


def test_generate_builds_single_request_with_persona_context_history_and_input():
    completion = ScriptedCompletion(reply="  我在呢，您说。 ")
    reply = ResponseGenerator(completion).generate(CHUNKS, HISTORY, "陪我聊聊天")

    assert reply == "我在呢，您说。"
    assert len(completion.calls) == 1
    sent = completion.calls[0]
    assert [m["role"] for m in sent] == ["system", "user", "assistant", "user"]
    system = sent[0]["content"]
    assert "专门为老年人提供情感陪伴的助手" in system
    assert "老年人陪伴服务介绍\n\nuser: 我喜欢下象棋" in system
    assert "{context}" not in system
    assert sent[-1] == {"role": "user", "content": "陪我聊聊天"}


def test_persona_is_injected_exactly_once():
    completion = ScriptedCompletion()
    ResponseGenerator(completion).generate(CHUNKS, HISTORY, "你好")
    joined = "\n".join(m["content"] for m in completion.calls[0])
    assert joined.count("【角色设定】") == 1
    assert sum(1 for m in completion.calls[0] if m["role"] == "system") == 1


def test_generation_options_are_applied():
    completion = ScriptedCompletion()
    options = GenerationOptions(temperature=1.3, max_new_tokens=128)
    ResponseGenerator(completion, options=options).generate([], [], "你好")
    assert completion.options == [options]


def test_context_braces_are_not_reinterpreted():
    prompt = render_system_prompt("A {context} B", "用户说 {context} 和 {name}")
    assert prompt == "A 用户说 {context} 和 {name} B"


def test_template_without_slot_gets_context_section():
    prompt = render_system_prompt("只说中文。", "参考内容")
    assert prompt.startswith("只说中文。")
    assert prompt.endswith("参考内容")


def test_default_persona_has_context_slot():
    assert PERSONA_PROMPT.count("{context}") == 1


@pytest.mark.parametrize("completion", [ScriptedCompletion(fail_generation=True), ScriptedCompletion(reply="   ")])
def test_generation_failures_raise_generation_error(completion):
    with pytest.raises(GenerationError):
        ResponseGenerator(completion).generate(CHUNKS, HISTORY, "你好")
