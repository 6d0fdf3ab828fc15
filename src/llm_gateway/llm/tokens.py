"""
Token Budget — counting and trimming conversation history.

Counting is a character heuristic, not a real tokenizer: it only has to
be deterministic and grow with the text so budgets are stable and tests
reproducible. Every message also pays a fixed framing overhead.

    budget = TokenBudget()
    trimmed = budget.trim_context_to_fit_token_limit(context, 16000)
    messages = budget.convert_to_request_messages(trimmed.messages, "Hi")
"""

from __future__ import annotations

import logging
import math
from typing import Iterable

from llm_gateway.session.models import Message, Role, SessionContext

logger = logging.getLogger(__name__)

# Rough chars-per-token estimate (close enough for English on GPT tokenizers)
CHARS_PER_TOKEN = 4

# Role + framing tokens each message costs on top of its content
MESSAGE_OVERHEAD_TOKENS = 4


class TokenBudget:
    """Stateless token accounting for session contexts."""

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def count_message_tokens(self, message: Message) -> int:
        return self.count_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS

    def count_context_tokens(self, context: SessionContext) -> int:
        return sum(self.count_message_tokens(m) for m in context.messages)

    def count_request_tokens(self, messages: Iterable[dict[str, str]]) -> int:
        """Token cost of a wire message list (history + new input)."""
        return sum(
            self.count_tokens(m.get("content", "")) + MESSAGE_OVERHEAD_TOKENS
            for m in messages
        )

    def build_message(self, role: Role, content: str) -> Message:
        """Create a Message with its token_count filled in."""
        return Message(
            role=role,
            content=content,
            token_count=self.count_tokens(content) + MESSAGE_OVERHEAD_TOKENS,
        )

    def trim_context_to_fit_token_limit(
        self, context: SessionContext, max_tokens: int
    ) -> SessionContext:
        """
        Keep the longest trailing run of messages that fits in ``max_tokens``.

        Oldest messages go first; order is never changed and content is never
        cut. If the newest message alone is over the limit, the result holds
        just that message. The input context is left untouched.
        """
        kept: list[Message] = []
        used = 0
        for message in reversed(context.messages):
            cost = self.count_message_tokens(message)
            if used + cost > max_tokens:
                break
            kept.append(message)
            used += cost

        if not kept and context.messages:
            newest = context.messages[-1]
            logger.warning(
                "Newest message alone exceeds token limit (%d > %d), keeping it whole",
                self.count_message_tokens(newest),
                max_tokens,
                extra={"session_id": context.session_id},
            )
            kept.append(newest)

        dropped = len(context.messages) - len(kept)
        if dropped:
            logger.debug(
                "Trimmed %d message(s) from session %s", dropped, context.session_id
            )

        return context.with_messages(tuple(reversed(kept)))

    def convert_to_request_messages(
        self, messages: Iterable[Message], new_user_input: str
    ) -> list[dict[str, str]]:
        """History as wire messages with the new user turn appended."""
        result = [m.to_request_message() for m in messages]
        result.append({"role": Role.USER.value, "content": new_user_input})
        return result
