"""
Tests for JSON recovery, payload validation and the Anthropic oracle client.
"""

import json
from types import SimpleNamespace

import anthropic
import pytest

from payee_engine.errors import ConfigError, OracleError, OracleResponseError
from payee_engine.oracle import AnthropicOracle, parse_json_response
from payee_engine.payloads import (
    CategoryProposal,
    ClusterSplit,
    MatchDisambiguation,
    PayeeIdentification,
)


class FakeMessages:
    """Stands in for client.messages; records kwargs, replays content blocks."""

    def __init__(self, blocks=None, error=None):
        self.blocks = blocks or []
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.blocks, stop_reason="end_turn")


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _oracle(messages, web_search_enabled=True):
    client = SimpleNamespace(messages=messages)
    return AnthropicOracle(
        api_key="test-key",
        model="test-model",
        max_tokens=256,
        web_search_enabled=web_search_enabled,
        client=client,
    )


# JSON recovery

def test_parse_plain_and_fenced_json():
    assert parse_json_response('{"a": 1}') == {"a": 1}
    assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_response('```\n[1, 2]\n```') == [1, 2]


def test_parse_recovers_from_prose_and_trailing_commas():
    assert parse_json_response('Here you go: {"a": [1, 2,],} Hope that helps.') == {"a": [1, 2]}
    assert parse_json_response('Groups: [[0, 1], [2]]') == [[0, 1], [2]]


@pytest.mark.parametrize("content", ["", "   ", "no json here", "{broken"])
def test_parse_rejects_garbage(content):
    with pytest.raises(OracleResponseError):
        parse_json_response(content)


# Payload schemas

def test_payload_confidence_is_clamped_and_blanks_become_none():
    proposal = CategoryProposal.model_validate({
        "category_id": "  ",
        "category_name": "",
        "confidence": 1.4,
        "reasoning": None,
    })
    assert proposal.category_id is None
    assert proposal.category_name is None
    assert proposal.confidence == 1.0
    assert proposal.reasoning == ""

    assert PayeeIdentification.model_validate({"confidence": -0.5}).confidence == 0.0


def test_disambiguation_index_must_be_an_integer():
    assert MatchDisambiguation.model_validate({"match_index": 2}).match_index == 2
    with pytest.raises(ValueError):
        MatchDisambiguation.model_validate({"match_index": "two"})


def test_cluster_split_rejects_non_integer_indexes():
    assert ClusterSplit.model_validate({"groups": [[0, 1], [2]]}).groups == [[0, 1], [2]]
    with pytest.raises(ValueError):
        ClusterSplit.model_validate({"groups": [["a"]]})


# Anthropic client

def test_generate_object_validates_reply():
    messages = FakeMessages([_text(json.dumps({
        "canonical_payee_name": "Amazon",
        "confidence": 0.9,
        "reasoning": "AMZN is Amazon",
    }))])
    oracle = _oracle(messages)

    result = oracle.generate_object("Who is AMZN?", PayeeIdentification, system="Be brief.")

    assert result.canonical_payee_name == "Amazon"
    request = messages.requests[0]
    assert request["model"] == "test-model"
    assert request["max_tokens"] == 256
    assert request["system"].startswith("Be brief.")
    assert "canonical_payee_name" in request["system"]
    assert "tools" not in request


def test_web_search_tool_only_when_enabled():
    reply = [_text('{"confidence": 0.5}')]
    enabled = FakeMessages(reply)
    disabled = FakeMessages(reply)

    _oracle(enabled).generate_object("p", PayeeIdentification, web_search=True)
    _oracle(disabled, web_search_enabled=False).generate_object(
        "p", PayeeIdentification, web_search=True
    )

    assert enabled.requests[0]["tools"][0]["type"] == "web_search_20250305"
    assert "tools" not in disabled.requests[0]


def test_text_blocks_are_joined_around_tool_blocks():
    messages = FakeMessages([
        SimpleNamespace(type="server_tool_use", name="web_search"),
        _text('{"confidence": '),
        SimpleNamespace(type="web_search_tool_result", content=[]),
        _text('0.8}'),
    ])
    result = _oracle(messages).generate_object("p", PayeeIdentification, web_search=True)
    assert result.confidence == 0.8


def test_off_schema_reply_is_a_response_error():
    oracle = _oracle(FakeMessages([_text('{"confidence": "very high"}')]))
    with pytest.raises(OracleResponseError):
        oracle.generate_object("p", PayeeIdentification)


def test_empty_reply_is_a_response_error():
    oracle = _oracle(FakeMessages([SimpleNamespace(type="server_tool_use")]))
    with pytest.raises(OracleResponseError):
        oracle.generate_text("p")


def test_api_errors_are_wrapped():
    error = anthropic.APIConnectionError(request=None)
    oracle = _oracle(FakeMessages(error=error))

    with pytest.raises(OracleError) as excinfo:
        oracle.generate_text("p")
    assert not isinstance(excinfo.value, OracleResponseError)


def test_unconfigured_client():
    oracle = AnthropicOracle(api_key="")

    assert not oracle.is_configured()
    with pytest.raises(ConfigError):
        oracle.generate_text("p")
