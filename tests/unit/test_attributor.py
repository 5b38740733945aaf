"""Unit tests for cost attribution."""

import pytest
from unittest.mock import Mock

from costguard.core.attributor import (
    REDACTED,
    CostAttributor,
    ResponseShape,
    looks_like_response,
    model_hint_from_request,
    provider_default_model,
)
from costguard.core.estimator import TokenEstimator

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def test_usage_block_is_exact(attributor):
    """Reported usage is charged exactly."""
    call = attributor.attribute(
        {"model": "gpt-3.5-turbo", "usage": {"prompt_tokens": 13, "completion_tokens": 10}}
    )

    assert call.shape is ResponseShape.USAGE
    assert not call.estimated
    assert (call.input_tokens, call.output_tokens) == (13, 10)
    assert call.cost == pytest.approx(0.0000395)


def test_anthropic_usage_names(attributor):
    call = attributor.attribute({
        "model": "claude-3-haiku",
        "usage": {"input_tokens": 1000, "output_tokens": 1000},
        "content": [{"type": "text", "text": "ignored, usage wins"}],
    })

    assert call.shape is ResponseShape.USAGE
    assert call.cost == pytest.approx(0.0015)


def test_stream_delta_counts_output_only(attributor):
    call = attributor.attribute(
        {"choices": [{"delta": {"content": "hi"}}]}, source_url=OPENAI_URL
    )

    assert call.shape is ResponseShape.STREAM_DELTA
    assert call.model == "gpt-3.5-turbo"
    assert (call.input_tokens, call.output_tokens) == (0, 2)


def test_content_blocks(attributor):
    call = attributor.attribute(
        {"content": [{"type": "text", "text": "hi"}, {"type": "tool_use", "name": "x"}]},
        source_url=ANTHROPIC_URL,
    )

    assert call.shape is ResponseShape.CONTENT_BLOCKS
    assert call.model == "claude-3-haiku"
    assert (call.input_tokens, call.output_tokens) == (0, 2)


def test_message_without_usage_is_estimated(attributor):
    """A plain message with no usage still yields a positive cost."""
    call = attributor.attribute({"choices": [{"message": {"content": "hi"}}]})

    assert call is not None
    assert call.estimated
    assert call.model == "default"
    assert call.cost > 0


def test_multimodal_message(attributor):
    """Text is estimated, images and audio get fixed counts, split 20/80."""
    call = attributor.attribute({
        "choices": [{
            "message": {
                "content": [
                    {"type": "text", "text": "Hello, world!"},
                    {"type": "image_url", "image_url": {"url": "data:..."}},
                ]
            }
        }]
    })

    # 6 text tokens + 85 image tokens = 91
    assert call.shape is ResponseShape.MULTIMODAL
    assert (call.input_tokens, call.output_tokens) == (18, 73)


def test_tool_call_arguments_are_counted(attributor):
    call = attributor.attribute({
        "choices": [{
            "message": {
                "content": None,
                "tool_calls": [{"function": {"name": "f", "arguments": "Hello, world!"}}],
            }
        }]
    })

    assert call.total_tokens == 6


def test_opaque_payload(attributor):
    call = attributor.attribute({"content": "Hello, world!"})

    assert call.shape is ResponseShape.OPAQUE
    assert (call.input_tokens, call.output_tokens) == (2, 4)


def test_split_never_exceeds_estimate(attributor):
    # "abc def" estimates 5 tokens; rounding each side separately would charge 6
    call = attributor.attribute({"content": "abc def"})

    assert (call.input_tokens, call.output_tokens) == (2, 3)
    assert call.total_tokens == 5


def test_circular_payload_does_not_raise(attributor):
    payload = {"choices": "unexpected"}
    payload["self"] = payload

    call = attributor.attribute(payload)

    assert call.shape is ResponseShape.OPAQUE
    assert call.cost > 0


class UnboundProxy:
    """Lazy proxy whose attribute access fails until bound."""

    def __getattr__(self, name):
        raise RuntimeError("proxy not bound")


@pytest.mark.parametrize("payload", [
    {"foo": 1},
    {"usage": None},
    "just a string",
    42,
    None,
    ["usage"],
    pytest.param(UnboundProxy(), id="unbound_proxy"),
])
def test_non_responses_are_ignored(attributor, payload):
    assert attributor.attribute(payload) is None
    assert not looks_like_response(payload)


def test_extraction_failure_charges_conservative_estimate(registry):
    estimator = Mock(spec=TokenEstimator)
    estimator.estimate_tokens.side_effect = RuntimeError("tokenizer exploded")
    attributor = CostAttributor(pricing_registry=registry, token_estimator=estimator)

    call = attributor.attribute({"choices": [{"message": {"content": "hi"}}]})

    assert call.shape is ResponseShape.FALLBACK
    assert (call.input_tokens, call.output_tokens) == (50, 50)
    # 50 tokens each at the default price (0.01 / 0.03 per 1K)
    assert call.cost == pytest.approx(0.002)


def test_attribute_unparsed_uses_provider_default(attributor):
    call = attributor.attribute_unparsed(source_url=OPENAI_URL, source="httpx")

    assert call.model == "gpt-3.5-turbo"
    assert call.shape is ResponseShape.FALLBACK
    assert call.cost == pytest.approx(50 / 1000 * 0.0015 + 50 / 1000 * 0.002)


def test_model_precedence(attributor):
    data = {"model": "gpt-4", "usage": {"prompt_tokens": 1}}

    assert attributor.resolve_model(data, "gpt-4o", OPENAI_URL) == "gpt-4"
    assert attributor.resolve_model({}, "gpt-4o", OPENAI_URL) == "gpt-4o"
    assert attributor.resolve_model({}, None, OPENAI_URL) == "gpt-3.5-turbo"
    assert attributor.resolve_model({}, None, "https://example.com") == "default"


@pytest.mark.parametrize("hint", [5, "", ["gpt-4"]])
def test_unusable_model_hint_is_ignored(attributor, hint):
    call = attributor.attribute({"choices": [{"message": {"content": "hi"}}]}, model_hint=hint)

    assert call.model == "default"
    assert call.cost > 0
    assert attributor.attribute_unparsed(model_hint=hint, source_url=OPENAI_URL).model == "gpt-3.5-turbo"


def test_privacy_redacts_content(registry):
    attributor = CostAttributor(
        pricing_registry=registry,
        token_estimator=TokenEstimator(estimation_mode="heuristic"),
        privacy=True,
    )

    call = attributor.attribute({"choices": [{"message": {"content": "secret plans"}}]})

    assert call.content == REDACTED


def test_content_excerpt_is_truncated(attributor):
    call = attributor.attribute({"choices": [{"message": {"content": "x" * 500}}]})

    assert len(call.content) == 100


def test_sdk_objects_are_dumped(attributor):
    """Objects exposing model_dump() are attributed like dicts."""
    response = Mock()
    response.model_dump.return_value = {
        "model": "gpt-4o",
        "usage": {"prompt_tokens": 1000, "completion_tokens": 1000},
    }

    call = attributor.attribute(response)

    assert call.cost == pytest.approx(0.0125)


def test_helpers():
    assert provider_default_model("https://api.openai.com/v1/chat") == "gpt-3.5-turbo"
    assert provider_default_model("https://evilopenai.com/") is None
    assert provider_default_model(None) is None
    assert model_hint_from_request(OPENAI_URL, b'{"model": "gpt-4o"}') == "gpt-4o"
    assert model_hint_from_request(ANTHROPIC_URL, b"not json") == "claude-3-haiku"
    assert model_hint_from_request(None, {"model": "m"}) == "m"
    assert looks_like_response({"choices": [{}]})
    assert not looks_like_response({"choices": []})
