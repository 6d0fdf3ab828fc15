"""Tests for the config system, logging helpers and metrics."""

import json
import logging

import llm_gateway.core.config as config_module
from llm_gateway.core.config import (
    GatewayConfig,
    LLMConfig,
    ServerConfig,
    StoreConfig,
    TokenConfig,
    reload_config,
)
from llm_gateway.core.logging import (
    ColorFormatter,
    ExchangeTimer,
    StructuredFormatter,
    mask_api_key,
)
from llm_gateway.core.metrics import MetricsCollector


def test_llm_defaults():
    cfg = LLMConfig()
    assert cfg.model == "gpt-3.5-turbo"
    assert cfg.temperature == 0.7
    assert cfg.max_tokens == 2000


def test_token_defaults():
    cfg = TokenConfig()
    assert cfg.max_tokens_per_message == 4000
    assert cfg.max_context_tokens == 16000
    assert cfg.reserved_tokens == 1000


def test_history_budget_leaves_room_for_reply_and_reserve():
    assert TokenConfig().history_budget == 11000
    assert TokenConfig(max_context_tokens=100, max_tokens_per_message=20, reserved_tokens=30).history_budget == 50


def test_history_budget_never_negative():
    assert TokenConfig(max_context_tokens=1000).history_budget == 0


def test_store_defaults():
    cfg = StoreConfig()
    assert cfg.cost_precision == 6
    assert cfg.credential_secret == ""
    assert cfg.context_cache_size == 1000


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("GATEWAY_LLM_MODEL", "gpt-4o")
    monkeypatch.setenv("GATEWAY_LLM_MAX_TOKENS", "500")
    monkeypatch.setenv("GATEWAY_MAX_CONTEXT_TOKENS", "8000")
    monkeypatch.setenv("GATEWAY_EXCHANGE_TIMEOUT", "30")
    cfg = GatewayConfig.from_env()
    assert cfg.llm.model == "gpt-4o"
    assert cfg.llm.max_tokens == 500
    assert cfg.tokens.max_context_tokens == 8000
    assert cfg.server.exchange_timeout == 30.0


def test_reload_config_replaces_singleton(monkeypatch):
    previous = config_module.config
    monkeypatch.setenv("GATEWAY_PORT", "9001")
    try:
        new = reload_config()
        assert new.server.port == 9001
        assert config_module.config is new
    finally:
        config_module.config = previous


def test_server_defaults():
    cfg = ServerConfig()
    assert cfg.ws_send_timeout == 5.0
    assert cfg.exchange_timeout == 120.0


# ─── Logging helpers ──────────────────────────────────────────


def test_mask_api_key():
    assert mask_api_key("sk-abcdefghijklmnop") == "sk-...klmnop"
    assert mask_api_key("short") == "sk-..."


def test_structured_formatter_includes_extra_fields():
    record = logging.LogRecord("llm_gateway.test", logging.INFO, __file__, 1, "hello", None, None)
    record.session_id = "s1"
    record.duration_ms = 42
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["msg"] == "hello"
    assert entry["session_id"] == "s1"
    assert entry["duration_ms"] == 42
    assert "provider" not in entry


def test_color_formatter_tags_exchange_and_session():
    record = logging.LogRecord("llm_gateway.test", logging.INFO, __file__, 1, "hello", None, None)
    record.exchange_id = "ab12"
    record.session_id = "s1"
    line = ColorFormatter(use_color=False).format(record)
    assert "[llm_gateway.test] INFO: hello" in line
    assert line.endswith("(exchange=ab12 session=s1)")
    assert "\033[" not in line


def test_color_formatter_without_tags():
    record = logging.LogRecord("llm_gateway.test", logging.WARNING, __file__, 1, "plain", None, None)
    assert ColorFormatter(use_color=False).format(record).endswith("WARNING: plain")


def test_exchange_timer_marks():
    timer = ExchangeTimer()
    timer.mark("resolved")
    assert timer.has("resolved")
    assert not timer.has("first_chunk")
    assert timer.since_start_ms("resolved") >= 0
    assert timer.since_start_ms("first_chunk") is None
    assert "resolved" in timer.summary()


# ─── Metrics ──────────────────────────────────────────────────


def test_metrics_counters_and_histograms():
    m = MetricsCollector()
    m.inc("gateway.exchanges", labels={"state": "completed"})
    m.inc("gateway.exchanges", labels={"state": "completed"})
    m.inc("gateway.exchanges", labels={"state": "failed"})
    for v in (10.0, 20.0, 30.0):
        m.observe("gateway.exchange_ms", v)

    assert m.counter("gateway.exchanges", labels={"state": "completed"}) == 2
    snap = m.snapshot()
    assert snap["counters"]["gateway.exchanges{state=failed}"] == 1
    assert snap["histograms"]["gateway.exchange_ms"]["count"] == 3
    assert snap["histograms"]["gateway.exchange_ms"]["max"] == 30.0

    m.reset()
    assert m.snapshot()["counters"] == {}
