"""Tests for the wire contracts — parsing client SendMessage payloads."""

import pytest

from llm_gateway.core.errors import ValidationError
from llm_gateway.llm.contracts import InboundMessage


def test_from_wire_full_payload():
    inbound = InboundMessage.from_wire(
        {
            "sessionId": "s1",
            "userInput": "hi",
            "stream": False,
            "metadata": {"client": "ios", "build": 42},
            "modelId": "gpt-4o",
            "temperature": 1,
            "maxTokens": 64,
            "systemPrompt": "Be brief.",
            "userId": "u1",
        }
    )
    assert inbound.session_id == "s1"
    assert inbound.stream is False
    assert inbound.metadata == {"client": "ios", "build": "42"}
    assert inbound.temperature == 1.0
    assert inbound.max_tokens == 64
    assert inbound.user_id == "u1"


def test_from_wire_defaults():
    inbound = InboundMessage.from_wire({"sessionId": "s1", "userInput": "hi"})
    assert inbound.stream is True
    assert inbound.metadata == {}
    assert inbound.model_id is None
    assert inbound.temperature is None


@pytest.mark.parametrize("value,expected", [("false", False), ("FALSE", False), ("true", True)])
def test_from_wire_stream_flag_strings(value, expected):
    inbound = InboundMessage.from_wire({"sessionId": "s1", "userInput": "hi", "stream": value})
    assert inbound.stream is expected


def test_from_wire_numeric_session_id_is_stringified():
    assert InboundMessage.from_wire({"sessionId": 12, "userInput": "hi"}).session_id == "12"


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("metadata", ["a"], "metadata must be an object"),
        ("metadata", "client=ios", "metadata must be an object"),
        ("stream", "no", "stream must be a boolean"),
        ("stream", 1, "stream must be a boolean"),
        ("sessionId", {"id": 1}, "sessionId must be a string"),
        ("userInput", ["hi"], "userInput must be a string"),
        ("temperature", "warm", "temperature must be a number"),
        ("temperature", True, "temperature must be a number"),
        ("maxTokens", 10.5, "maxTokens must be an integer"),
    ],
)
def test_from_wire_rejects_mistyped_fields(field, value, error):
    data = {"sessionId": "s1", "userInput": "hi", field: value}
    with pytest.raises(ValidationError) as exc_info:
        InboundMessage.from_wire(data)
    assert exc_info.value.message == error
    assert exc_info.value.status_code == 400
