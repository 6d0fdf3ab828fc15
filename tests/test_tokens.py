"""Tests for TokenBudget — counting and trimming."""

import pytest

from llm_gateway.llm.tokens import MESSAGE_OVERHEAD_TOKENS, TokenBudget
from llm_gateway.session.models import Role, SessionContext


@pytest.fixture
def budget():
    return TokenBudget()


def _context(budget: TokenBudget, *contents: str) -> SessionContext:
    roles = [Role.USER, Role.ASSISTANT]
    messages = [
        budget.build_message(roles[i % 2], content) for i, content in enumerate(contents)
    ]
    return SessionContext(session_id="s1").with_messages(messages)


# ─── Counting ─────────────────────────────────────────────────


def test_count_tokens_empty(budget):
    assert budget.count_tokens("") == 0


def test_count_tokens_rounds_up(budget):
    assert budget.count_tokens("abcd") == 1
    assert budget.count_tokens("abcde") == 2


def test_count_tokens_grows_with_text(budget):
    assert budget.count_tokens("a" * 400) > budget.count_tokens("a" * 40)


def test_message_tokens_include_overhead(budget):
    msg = budget.build_message(Role.USER, "hello world!")
    assert budget.count_message_tokens(msg) == 3 + MESSAGE_OVERHEAD_TOKENS
    assert msg.token_count == budget.count_message_tokens(msg)


def test_context_tokens_is_sum_of_messages(budget):
    ctx = _context(budget, "one", "two two", "three three three", "")
    assert budget.count_context_tokens(ctx) == sum(
        budget.count_message_tokens(m) for m in ctx.messages
    )
    assert ctx.total_tokens == budget.count_context_tokens(ctx)


def test_request_tokens_match_message_tokens(budget):
    ctx = _context(budget, "hello", "hi there")
    wire = [m.to_request_message() for m in ctx.messages]
    assert budget.count_request_tokens(wire) == budget.count_context_tokens(ctx)


# ─── Trimming ─────────────────────────────────────────────────


@pytest.mark.parametrize("limit", [10, 25, 40, 80, 1000])
def test_trim_fits_and_keeps_trailing_suffix(budget, limit):
    ctx = _context(budget, "a" * 20, "b" * 30, "c" * 10, "d" * 40, "e" * 8)
    trimmed = budget.trim_context_to_fit_token_limit(ctx, limit)

    assert budget.count_context_tokens(trimmed) <= limit
    n = len(trimmed.messages)
    assert trimmed.messages == ctx.messages[len(ctx.messages) - n:]


def test_trim_drops_oldest_first(budget):
    ctx = _context(budget, "old " * 10, "middle", "newest")
    limit = (
        budget.count_message_tokens(ctx.messages[1])
        + budget.count_message_tokens(ctx.messages[2])
    )
    trimmed = budget.trim_context_to_fit_token_limit(ctx, limit)
    assert [m.content for m in trimmed.messages] == ["middle", "newest"]


def test_trim_under_limit_is_unchanged(budget):
    ctx = _context(budget, "hi", "hello")
    trimmed = budget.trim_context_to_fit_token_limit(ctx, 10_000)
    assert trimmed.messages == ctx.messages
    assert trimmed.total_tokens == ctx.total_tokens


def test_trim_keeps_oversized_newest_message_whole(budget):
    ctx = _context(budget, "short", "x" * 400)
    trimmed = budget.trim_context_to_fit_token_limit(ctx, 5)
    assert len(trimmed.messages) == 1
    assert trimmed.messages[0].content == "x" * 400


def test_trim_does_not_mutate_input(budget):
    ctx = _context(budget, "a" * 100, "b" * 100)
    before = ctx.messages
    budget.trim_context_to_fit_token_limit(ctx, 30)
    assert ctx.messages == before


def test_trim_empty_context(budget):
    ctx = SessionContext(session_id="s1")
    trimmed = budget.trim_context_to_fit_token_limit(ctx, 100)
    assert trimmed.messages == ()
    assert trimmed.total_tokens == 0


# ─── Conversion ───────────────────────────────────────────────


def test_convert_appends_new_user_turn(budget):
    ctx = _context(budget, "hi", "hello!")
    messages = budget.convert_to_request_messages(ctx.messages, "how are you?")
    assert messages == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello!"},
        {"role": "user", "content": "how are you?"},
    ]
