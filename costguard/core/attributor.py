"""Cost attribution for observed API responses.

An observed payload is matched against the response shapes we know how to read,
in order, and the first match decides how input/output tokens are counted:

    USAGE           explicit usage block (prompt/completion or input/output tokens)
    STREAM_DELTA    streaming chunk, choices[0].delta; output tokens only
    CONTENT_BLOCKS  Anthropic-style content array of text blocks
    MULTIMODAL      choices[0].message with text/image/audio parts
    OPAQUE          anything else that still looks like a response

Attribution never raises. Payloads that don't look like API responses yield None,
and a payload that breaks every extractor is charged a fixed conservative amount.
"""

import json
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
from urllib.parse import urlparse

from costguard.core.estimator import TokenEstimator
from costguard.core.pricing import DEFAULT_MODEL, PricingRegistry
from costguard.utils.helpers import get_path, round_half_up, truncate_text

logger = logging.getLogger(__name__)

# Host suffix -> model charged when the payload and request don't name one.
PROVIDER_DEFAULT_MODELS = {
    "openai.com": "gpt-3.5-turbo",
    "anthropic.com": "claude-3-haiku",
}

RESPONSE_MARKERS = ("usage", "choices", "content")

IMAGE_TOKENS = 85
AUDIO_TOKENS = 100
MULTIMODAL_INPUT_SHARE = 0.2
OPAQUE_INPUT_SHARE = 0.3
OPAQUE_MAX_CHARS = 1000

# Charged when every extractor fails on a payload that looked like a response.
CONSERVATIVE_INPUT_TOKENS = 50
CONSERVATIVE_OUTPUT_TOKENS = 50

REDACTED = "[REDACTED]"
EXCERPT_LENGTH = 100


class ResponseShape(str, Enum):
    """Recognized response shapes, in matching order."""

    USAGE = "usage"
    STREAM_DELTA = "stream_delta"
    CONTENT_BLOCKS = "content_blocks"
    MULTIMODAL = "multimodal"
    OPAQUE = "opaque"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class TokenCounts:
    """Input/output tokens extracted from a payload and the shape that produced them."""

    input_tokens: int
    output_tokens: int
    shape: ResponseShape


@dataclass(frozen=True)
class AttributedCall:
    """One observed API call with its attributed cost. Immutable."""

    timestamp: float
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    shape: ResponseShape
    source_url: Optional[str] = None
    source: str = "manual"
    content: Optional[str] = None

    @property
    def estimated(self) -> bool:
        """True when token counts were estimated rather than reported by the API."""
        return self.shape is not ResponseShape.USAGE

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __repr__(self) -> str:
        return (
            f"AttributedCall(model={self.model}, cost=${self.cost:.6f}, "
            f"tokens={self.input_tokens}+{self.output_tokens}, shape={self.shape.value})"
        )


def provider_default_model(url: Optional[str]) -> Optional[str]:
    """Default model for a known provider host, or None."""
    if not url:
        return None
    try:
        host = (urlparse(str(url)).hostname or "").lower()
    except ValueError:
        return None
    for suffix, model in PROVIDER_DEFAULT_MODELS.items():
        if host == suffix or host.endswith("." + suffix):
            return model
    return None


def model_hint_from_request(url: Optional[str], request_body: Any = None) -> Optional[str]:
    """Derive a model hint from the request: the body's "model" field, else the provider default.

    Args:
        url: Request URL.
        request_body: Request body as a mapping, JSON str or JSON bytes (anything else is ignored).
    """
    body = request_body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body:
        try:
            body = json.loads(body)
        except ValueError:
            body = None
    if isinstance(body, Mapping):
        model = body.get("model")
        if isinstance(model, str) and model:
            return model
    return provider_default_model(url)


def _as_mapping(payload: Any) -> Optional[Mapping]:
    """Return payload as a mapping (SDK models via model_dump/to_dict), or None."""
    if isinstance(payload, Mapping):
        return payload
    for method in ("model_dump", "to_dict"):
        try:
            dump = getattr(payload, method, None)
        except Exception:
            return None
        if callable(dump):
            try:
                data = dump()
            except Exception:
                return None
            return data if isinstance(data, Mapping) else None
    return None


def looks_like_response(payload: Any) -> bool:
    """True if payload resembles an API response (has usage, choices or content)."""
    data = _as_mapping(payload)
    if data is None:
        return False
    try:
        return any(data.get(marker) for marker in RESPONSE_MARKERS)
    except Exception:
        return False


def _to_tokens(value: Any) -> Optional[int]:
    """Coerce a reported token count to a non-negative int, None if not a number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return 0
    return max(0, round_half_up(value))


def _first_count(usage: Mapping, *keys: str) -> Optional[int]:
    for key in keys:
        count = _to_tokens(usage.get(key))
        if count:
            return count
    # All zero or missing: report zero if any key was numeric.
    for key in keys:
        if _to_tokens(usage.get(key)) is not None:
            return 0
    return None


def _bounded_dump(data: Any, limit: int = OPAQUE_MAX_CHARS) -> str:
    """Serialize data to at most `limit` characters; circular structures fall back to repr."""
    try:
        text = json.dumps(data, default=str)
    except (TypeError, ValueError):
        text = repr(data)
    return text[:limit]


def _usable_hint(model_hint: Any) -> Optional[str]:
    return model_hint if isinstance(model_hint, str) and model_hint else None


def _split(total: int, input_share: float) -> Tuple[int, int]:
    """Split an estimate into (input, output); the halves always sum to total."""
    input_tokens = round_half_up(total * input_share)
    return input_tokens, total - input_tokens


class CostAttributor:
    """Turns observed payloads into AttributedCall records."""

    def __init__(
        self,
        pricing_registry: Optional[PricingRegistry] = None,
        token_estimator: Optional[TokenEstimator] = None,
        privacy: bool = False,
    ):
        """Initialize the attributor.

        Args:
            pricing_registry: Price table (bundled pricing if None)
            token_estimator: Token estimator (tiktoken mode if None)
            privacy: Redact response content from attributed calls
        """
        self.pricing_registry = pricing_registry or PricingRegistry()
        self.token_estimator = token_estimator or TokenEstimator()
        self.privacy = privacy

    def attribute(
        self,
        payload: Any,
        model_hint: Optional[str] = None,
        source_url: Optional[str] = None,
        source: str = "manual",
    ) -> Optional[AttributedCall]:
        """Attribute a cost to an observed payload.

        Args:
            payload: Raw response-like object (dict or SDK response model)
            model_hint: Model derived from the calling context (e.g. request body)
            source_url: URL the payload came from
            source: Tag of the collaborator that observed the payload

        Returns:
            AttributedCall, or None if the payload does not look like an API response.
        """
        data = _as_mapping(payload)
        if data is None or not looks_like_response(data):
            return None

        model = self.resolve_model(data, model_hint, source_url)
        try:
            counts = self.extract_tokens(data, model)
        except Exception as e:
            logger.warning("Token extraction failed, charging conservative estimate: %s", e)
            counts = TokenCounts(
                CONSERVATIVE_INPUT_TOKENS, CONSERVATIVE_OUTPUT_TOKENS, ResponseShape.FALLBACK
            )

        cost = self.pricing_registry.calculate_cost(model, counts.input_tokens, counts.output_tokens)
        return AttributedCall(
            timestamp=time.time(),
            model=model,
            input_tokens=counts.input_tokens,
            output_tokens=counts.output_tokens,
            cost=max(0.0, cost),
            shape=counts.shape,
            source_url=str(source_url) if source_url else None,
            source=source,
            content=self._excerpt(data),
        )

    def attribute_unparsed(
        self,
        model_hint: Optional[str] = None,
        source_url: Optional[str] = None,
        source: str = "manual",
    ) -> AttributedCall:
        """Conservative charge for a provider response whose body could not be read."""
        model = _usable_hint(model_hint) or provider_default_model(source_url) or DEFAULT_MODEL
        cost = self.pricing_registry.calculate_cost(
            model, CONSERVATIVE_INPUT_TOKENS, CONSERVATIVE_OUTPUT_TOKENS
        )
        return AttributedCall(
            timestamp=time.time(),
            model=model,
            input_tokens=CONSERVATIVE_INPUT_TOKENS,
            output_tokens=CONSERVATIVE_OUTPUT_TOKENS,
            cost=cost,
            shape=ResponseShape.FALLBACK,
            source_url=str(source_url) if source_url else None,
            source=source,
            content=REDACTED if self.privacy else None,
        )

    def resolve_model(
        self,
        data: Mapping,
        model_hint: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> str:
        """Model precedence: payload "model" -> hint -> provider default for the URL -> "default"."""
        try:
            model = data.get("model")
        except Exception:
            model = None
        if isinstance(model, str) and model:
            return model
        if _usable_hint(model_hint):
            return model_hint
        return provider_default_model(source_url) or DEFAULT_MODEL

    def extract_tokens(self, data: Mapping, model: str) -> TokenCounts:
        """Count tokens using the first response shape that matches."""
        usage = data.get("usage")
        if isinstance(usage, Mapping):
            counts = self._from_usage(usage)
            if counts is not None:
                return counts

        delta = get_path(data, "choices", 0, "delta")
        if isinstance(delta, Mapping):
            return self._from_stream_delta(delta, model)

        content = data.get("content")
        if isinstance(content, list):
            return self._from_content_blocks(content, model)

        message = get_path(data, "choices", 0, "message")
        if isinstance(message, Mapping):
            return self._from_message(message, model)

        return self._from_opaque(data, model)

    def _from_usage(self, usage: Mapping) -> Optional[TokenCounts]:
        input_tokens = _first_count(usage, "prompt_tokens", "input_tokens")
        output_tokens = _first_count(usage, "completion_tokens", "output_tokens")
        if input_tokens is None and output_tokens is None:
            return None
        return TokenCounts(input_tokens or 0, output_tokens or 0, ResponseShape.USAGE)

    def _from_stream_delta(self, delta: Mapping, model: str) -> TokenCounts:
        # Input tokens are only counted once per stream, by the usage chunk.
        text = delta.get("content") or ""
        return TokenCounts(0, self._estimate(text, model), ResponseShape.STREAM_DELTA)

    def _from_content_blocks(self, blocks: list, model: str) -> TokenCounts:
        text = "".join(
            block.get("text") or ""
            for block in blocks
            if isinstance(block, Mapping) and block.get("type") == "text"
        )
        return TokenCounts(0, self._estimate(text, model), ResponseShape.CONTENT_BLOCKS)

    def _from_message(self, message: Mapping, model: str) -> TokenCounts:
        content = message.get("content")
        total = 0
        if isinstance(content, str):
            total += self._estimate(content, model)
        elif isinstance(content, list):
            for item in content:
                if not isinstance(item, Mapping):
                    continue
                kind = item.get("type")
                if kind == "text":
                    total += self._estimate(item.get("text") or "", model)
                elif kind in ("image_url", "image"):
                    total += IMAGE_TOKENS
                elif kind in ("audio", "input_audio"):
                    total += AUDIO_TOKENS

        for call in message.get("tool_calls") or []:
            arguments = get_path(call, "function", "arguments")
            if isinstance(arguments, str):
                total += self._estimate(arguments, model)

        input_tokens, output_tokens = _split(total, MULTIMODAL_INPUT_SHARE)
        return TokenCounts(input_tokens, output_tokens, ResponseShape.MULTIMODAL)

    def _from_opaque(self, data: Mapping, model: str) -> TokenCounts:
        text = data.get("text")
        if not isinstance(text, str) or not text:
            text = data.get("content")
        if not isinstance(text, str) or not text:
            text = get_path(data, "choices", 0, "text")
        if not isinstance(text, str) or not text:
            text = _bounded_dump(data)
        input_tokens, output_tokens = _split(self._estimate(text, model), OPAQUE_INPUT_SHARE)
        return TokenCounts(input_tokens, output_tokens, ResponseShape.OPAQUE)

    def _estimate(self, text: Any, model: str) -> int:
        if not isinstance(text, str):
            text = _bounded_dump(text)
        return self.token_estimator.estimate_tokens(text, model)

    def _excerpt(self, data: Mapping) -> Optional[str]:
        """Short response text for the call log, or the redaction marker."""
        if self.privacy:
            return REDACTED
        try:
            text = (
                get_path(data, "choices", 0, "message", "content")
                or get_path(data, "choices", 0, "delta", "content")
                or get_path(data, "content", 0, "text")
                or data.get("content")
                or data.get("text")
            )
        except Exception:
            return None
        if not isinstance(text, str):
            return None
        return truncate_text(text, EXCERPT_LENGTH)
