"""Token estimation for response text."""

import logging
import math
from typing import Optional

logger = logging.getLogger(__name__)

# Model-name prefixes that tiktoken can encode.
_TIKTOKEN_FAMILIES = ("gpt", "o1", "o3", "o4", "text-embedding", "chatgpt")


class TokenEstimator:
    """Estimates token counts for text, preferring tiktoken for GPT-family models."""

    def __init__(self, estimation_mode: str = "tiktoken"):
        """Initialize the token estimator.

        Args:
            estimation_mode: Estimation mode - "tiktoken" or "heuristic"
        """
        self.estimation_mode = estimation_mode
        self._encoders = {}  # model -> tiktoken encoding, or None once it failed

    def estimate_tokens(self, text: Optional[str], model: str = "") -> int:
        """Estimate token count for text. Never raises.

        Args:
            text: Text to estimate
            model: Model name (selects the exact tokenizer when one is available)

        Returns:
            Estimated token count (0 for empty text)
        """
        if not text:
            return 0
        if not isinstance(text, str):
            text = str(text)

        if self.estimation_mode == "tiktoken" and self._supports_tiktoken(model):
            count = self._estimate_with_tiktoken(text, model)
            if count is not None:
                return count
        return self.estimate_with_heuristic(text)

    @staticmethod
    def estimate_with_heuristic(text: Optional[str]) -> int:
        """Estimate using word and character counts: ceil(words * 1.3 + chars * 0.25)."""
        if not text:
            return 0
        words = len(text.split())
        chars = len(text)
        return math.ceil(words * 1.3 + chars * 0.25)

    @staticmethod
    def _supports_tiktoken(model: str) -> bool:
        return bool(model) and model.lower().startswith(_TIKTOKEN_FAMILIES)

    def _estimate_with_tiktoken(self, text: str, model: str) -> Optional[int]:
        """Count tokens with tiktoken; None if the tokenizer is unavailable or fails."""
        if model in self._encoders and self._encoders[model] is None:
            return None

        try:
            encoder = self._encoders.get(model)
            if encoder is None:
                import tiktoken

                try:
                    encoder = tiktoken.encoding_for_model(model)
                except KeyError:
                    # Model not recognized, use cl100k_base (GPT-4 default)
                    logger.debug(
                        "Model %s not recognized by tiktoken, using cl100k_base encoding", model
                    )
                    encoder = tiktoken.get_encoding("cl100k_base")
                self._encoders[model] = encoder
            return len(encoder.encode(text, disallowed_special=()))
        except Exception as e:
            logger.warning(
                "Tokenizer failed for model %s: %s. Falling back to heuristic.", model, e
            )
            self._encoders[model] = None
            return None
