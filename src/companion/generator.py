"""Compose persona, retrieved context, conversation memory and the user turn into one completion."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .errors import GenerationError
from .index import ScoredChunk
from .llm import ChatMessages, CompletionService, GenerationOptions
from .messages import Message, memory_turns
from .utils.timeout import call_with_timeout

logger = logging.getLogger(__name__)

CONTEXT_SLOT = "{context}"

PERSONA_PROMPT = """\
【角色设定】
你是一位专门为老年人提供情感陪伴的助手，
温和而和蔼可亲，总是用温暖的话语和耐心的倾听来给予支持。
你擅长用细腻的情感去理解和安慰那些需要倾诉的人，
就像一位贴心的家人一样，陪伴在他们的身边，让他们感受到关怀与温暖。

【对话规则】
当别人问你是谁时，要回答你是一位专门为老年人提供情感陪伴的助手。
第一句可以以轻松的话语开头，当对方表示再见时，表示随时可以陪您聊天，
例：「您要是想聊天，请随时叫我哦。」
所有回答应采用简单易懂、日常化、口语化的语言，尽量使用短句、简单句，
绝对不可以一次性生成一大段回复，以照顾老年人的理解能力、贴合老年人的语言习惯

【参考对话】
{context}
"""

FALLBACK_REPLY = "出错了，请稍后再试。"


def render_context(chunks: Sequence[ScoredChunk]) -> str:
    return "\n\n".join(sc.chunk.content for sc in chunks)


def render_system_prompt(template: str, context: str) -> str:
    """Fill the context slot once; templates without one get a trailing section."""
    if CONTEXT_SLOT in template:
        head, _, tail = template.partition(CONTEXT_SLOT)
        # Any further slots in the tail are left as literal text.
        return head + context + tail
    return f"{template.rstrip()}\n\n【参考对话】\n{context}"


class ResponseGenerator:
    def __init__(
        self,
        completion: CompletionService,
        *,
        persona: str = PERSONA_PROMPT,
        options: Optional[GenerationOptions] = None,
        context_messages: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.completion = completion
        self.persona = persona
        self.options = options or GenerationOptions(temperature=1.3, max_new_tokens=512)
        self.context_messages = context_messages
        self.timeout = timeout

    def build_messages(
        self,
        chunks: Sequence[ScoredChunk],
        history: Sequence[Message],
        user_input: str,
    ) -> ChatMessages:
        messages: List[dict] = [
            {"role": "system", "content": render_system_prompt(self.persona, render_context(chunks))}
        ]
        messages.extend(memory_turns(history, self.context_messages))
        messages.append({"role": "user", "content": user_input})
        return messages

    def generate(
        self,
        chunks: Sequence[ScoredChunk],
        history: Sequence[Message],
        user_input: str,
    ) -> str:
        """Reply text; raises GenerationError on provider failure, timeout or empty output."""
        messages = self.build_messages(chunks, history, user_input)
        try:
            raw = call_with_timeout(self.completion.complete, self.timeout, messages, self.options)
        except Exception as e:
            raise GenerationError(f"completion service failed: {e}") from e
        reply = str(raw or "").strip()
        if not reply:
            raise GenerationError("completion service returned an empty reply")
        return reply
