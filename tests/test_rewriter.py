from __future__ import annotations

import time

from conftest import ScriptedCompletion

from companion.messages import Message, Role
from companion.rewriter import REWRITE_INSTRUCTION, QueryRewriter


HISTORY = [
    Message(Role.USER, "我最近睡不好"),
    Message(Role.AGENT, "哎呀，是不是有心事呀？"),
    Message(Role.USER, "想孙子了"),
]


def test_empty_history_uses_input_verbatim_without_model_call():
    completion = ScriptedCompletion()
    result = QueryRewriter(completion).rewrite([], "你是谁？")
    assert result.text == "你是谁？"
    assert result.rewritten is False
    assert completion.calls == []


def test_rewrite_sends_history_input_and_instruction():
    completion = ScriptedCompletion(rewrite_reply="  「老人 想念孙子 失眠」\n多余的解释")
    history = list(HISTORY)
    result = QueryRewriter(completion).rewrite(history, "怎么办呢")

    assert result.text == "老人 想念孙子 失眠"
    assert result.rewritten is True
    sent = completion.calls[0]
    assert sent == [
        {"role": "user", "content": "我最近睡不好"},
        {"role": "assistant", "content": "哎呀，是不是有心事呀？"},
        {"role": "user", "content": "想孙子了"},
        {"role": "user", "content": "怎么办呢"},
        {"role": "user", "content": REWRITE_INSTRUCTION},
    ]
    # History is not mutated
    assert history == HISTORY


def test_rewrite_uses_its_own_low_temperature_options():
    completion = ScriptedCompletion()
    QueryRewriter(completion).rewrite(HISTORY, "怎么办呢")
    assert completion.options[0].temperature == 0.3


def test_rewrite_failure_falls_back_to_verbatim_input():
    completion = ScriptedCompletion(fail_rewrite=True)
    result = QueryRewriter(completion).rewrite(HISTORY, "怎么办呢")
    assert result.text == "怎么办呢"
    assert result.rewritten is False


def test_empty_rewrite_falls_back_to_verbatim_input():
    completion = ScriptedCompletion(rewrite_reply=" \n ")
    result = QueryRewriter(completion).rewrite(HISTORY, "怎么办呢")
    assert result == result.__class__(text="怎么办呢", rewritten=False)


def test_rewrite_timeout_falls_back_to_verbatim_input():
    class Slow(ScriptedCompletion):
        def complete(self, messages, options):
            time.sleep(0.5)
            return "too late"

    result = QueryRewriter(Slow(), timeout=0.05).rewrite(HISTORY, "怎么办呢")
    assert result.text == "怎么办呢"
    assert result.rewritten is False
