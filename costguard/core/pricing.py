"""Pricing Registry: model id -> per-1k-token input/output prices."""

import json
import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from costguard.core.errors import PricingError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "default"

# Characters that may follow a price key when matching versioned model ids
# ("gpt-4o-2024-08-06" -> "gpt-4o").
_VERSION_SEPARATORS = ("-", ":", "@", ".")


@dataclass(frozen=True)
class PriceEntry:
    """Price of one model, in dollars per 1000 tokens."""

    model: str
    input_cost_per_1k: float
    output_cost_per_1k: float

    def cost(self, input_tokens: float, output_tokens: float) -> float:
        """Cost of a call; negative token counts count as zero."""
        input_tokens = max(0, input_tokens or 0)
        output_tokens = max(0, output_tokens or 0)
        return (input_tokens / 1000) * self.input_cost_per_1k + (
            output_tokens / 1000
        ) * self.output_cost_per_1k

    def to_dict(self) -> Dict[str, float]:
        return {
            "input_cost_per_1k_tokens": self.input_cost_per_1k,
            "output_cost_per_1k_tokens": self.output_cost_per_1k,
        }


def _valid_price(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def parse_price_entry(model: str, raw: Any) -> Optional[PriceEntry]:
    """Build a PriceEntry from one of the supported price formats.

    Accepted shapes:
        {"input_cost_per_1k_tokens": x, "output_cost_per_1k_tokens": y}
        {"input_cost_per_token": x, "output_cost_per_token": y}   (scaled by 1000)
        {"input": x, "output": y}                                 (per 1k)

    Returns:
        PriceEntry, or None when the shape is not recognized or a price is invalid.
    """
    if not isinstance(raw, Mapping):
        return None

    if "input_cost_per_1k_tokens" in raw and "output_cost_per_1k_tokens" in raw:
        input_price = raw["input_cost_per_1k_tokens"]
        output_price = raw["output_cost_per_1k_tokens"]
    elif "input_cost_per_token" in raw and "output_cost_per_token" in raw:
        input_price = raw["input_cost_per_token"]
        output_price = raw["output_cost_per_token"]
        if not (_valid_price(input_price) and _valid_price(output_price)):
            return None
        input_price = input_price * 1000
        output_price = output_price * 1000
    elif "input" in raw and "output" in raw:
        input_price = raw["input"]
        output_price = raw["output"]
    else:
        return None

    if not (_valid_price(input_price) and _valid_price(output_price)):
        return None
    return PriceEntry(model=model, input_cost_per_1k=float(input_price), output_cost_per_1k=float(output_price))


def _flatten_pricing_data(data: Mapping[str, Any]) -> tuple[Dict[str, PriceEntry], Dict[str, str]]:
    """Flatten a (possibly provider-grouped) pricing document into entries and aliases."""
    entries: Dict[str, PriceEntry] = {}
    aliases: Dict[str, str] = {}

    for key, value in data.items():
        if key == "model_aliases":
            if isinstance(value, Mapping):
                aliases.update({str(k): str(v) for k, v in value.items()})
            continue
        entry = parse_price_entry(key, value)
        if entry is not None:
            entries[key] = entry
            continue
        # Provider group: {"openai": {"gpt-4": {...}, ...}}
        if isinstance(value, Mapping):
            for model, raw in value.items():
                entry = parse_price_entry(model, raw)
                if entry is None:
                    logger.warning("Skipping invalid price entry for %r in group %r", model, key)
                    continue
                entries[model] = entry
        else:
            logger.warning("Skipping unrecognized pricing key %r", key)
    return entries, aliases


class PricingRegistry:
    """Model price table with a mandatory "default" entry.

    Lookups never fail: unknown models are priced with the "default" entry.
    The table is only changed through add_model_pricing() and merge().
    """

    def __init__(
        self,
        pricing_file_path: Optional[str] = None,
        prices: Optional[Mapping[str, Any]] = None,
    ):
        """Initialize the pricing registry.

        Args:
            pricing_file_path: Path to a pricing JSON file. If None, uses the bundled
                config/pricing.json.
            prices: Pricing document to use instead of a file (same format as the file).

        Raises:
            FileNotFoundError: If the pricing file doesn't exist.
            PricingError: If the table has no valid "default" entry.
        """
        self._pricing_file_path = pricing_file_path
        self._prices: Dict[str, PriceEntry] = {}
        self._aliases: Dict[str, str] = {}
        self._lock = threading.Lock()

        if prices is not None:
            self._prices, self._aliases = _flatten_pricing_data(prices)
        else:
            self.load_pricing()

        if DEFAULT_MODEL not in self._prices:
            raise PricingError('Pricing table must contain a "default" entry')

    def load_pricing(self) -> None:
        """Load pricing data from the JSON file.

        Raises:
            FileNotFoundError: If the pricing file doesn't exist.
            json.JSONDecodeError: If the pricing file is invalid JSON.
        """
        if self._pricing_file_path:
            pricing_path = Path(self._pricing_file_path)
        else:
            package_dir = Path(__file__).parent.parent
            pricing_path = package_dir / "config" / "pricing.json"

        if not pricing_path.exists():
            raise FileNotFoundError(f"Pricing file not found: {pricing_path}")

        with open(pricing_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise PricingError(f"Pricing file must contain a JSON object: {pricing_path}")

        self._prices, self._aliases = _flatten_pricing_data(data)

    def _resolve_model(self, model: Optional[str]) -> str:
        """Map a model id to a key of the table ("default" if nothing matches)."""
        if not model:
            return DEFAULT_MODEL
        model = self._aliases.get(model, model)
        if model in self._prices:
            return model

        best = None
        for key in self._prices:
            if key == DEFAULT_MODEL or not model.startswith(key):
                continue
            if model[len(key)] in _VERSION_SEPARATORS and (best is None or len(key) > len(best)):
                best = key
        return best or DEFAULT_MODEL

    def lookup(self, model: Optional[str]) -> PriceEntry:
        """Get the price entry for a model, falling back to "default".

        Args:
            model: Model id (e.g. "gpt-4o", "claude-3-haiku"). Empty/None means default.

        Returns:
            PriceEntry for the model (its own, a versioned base entry, or "default").
        """
        with self._lock:
            return self._prices[self._resolve_model(model)]

    def get_model_pricing(self, model: Optional[str]) -> tuple[float, float]:
        """Return (input_cost_per_1k_tokens, output_cost_per_1k_tokens) for a model."""
        entry = self.lookup(model)
        return entry.input_cost_per_1k, entry.output_cost_per_1k

    def calculate_cost(self, model: Optional[str], input_tokens: float, output_tokens: float) -> float:
        """Cost in dollars of a call with the given token counts."""
        return self.lookup(model).cost(input_tokens, output_tokens)

    def has_model(self, model: str) -> bool:
        """True if the model has its own entry (aliases included, prefix matches not)."""
        with self._lock:
            return self._aliases.get(model, model) in self._prices

    def list_supported_models(self) -> list[str]:
        """List all models with pricing information."""
        with self._lock:
            return sorted(self._prices.keys())

    def add_model_pricing(self, model: str, input_cost_per_1k: float, output_cost_per_1k: float) -> None:
        """Add or update pricing for a model.

        Raises:
            PricingError: If a price is negative or not a number.
        """
        if not (_valid_price(input_cost_per_1k) and _valid_price(output_cost_per_1k)):
            raise PricingError(f"Invalid prices for {model}: {input_cost_per_1k}, {output_cost_per_1k}")
        with self._lock:
            self._prices[model] = PriceEntry(model, float(input_cost_per_1k), float(output_cost_per_1k))

    def merge(self, prices: Mapping[str, Any]) -> int:
        """Merge new prices into the table; new values override old ones per model.

        Every entry is validated before the table is touched, and invalid entries are
        skipped individually.

        Args:
            prices: Mapping of model id -> price dict (any format parse_price_entry accepts)
                or PriceEntry.

        Returns:
            Number of entries merged.
        """
        parsed: Dict[str, PriceEntry] = {}
        for model, raw in prices.items():
            if isinstance(raw, PriceEntry):
                entry = PriceEntry(model, raw.input_cost_per_1k, raw.output_cost_per_1k)
            else:
                entry = parse_price_entry(model, raw)
            if entry is None:
                logger.debug("Ignoring invalid price entry for %r", model)
                continue
            parsed[model] = entry

        with self._lock:
            self._prices.update(parsed)
        return len(parsed)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Serializable copy of the table ({model: {input_cost_per_1k_tokens, ...}})."""
        with self._lock:
            return {model: entry.to_dict() for model, entry in self._prices.items()}

    def entries(self) -> Iterable[PriceEntry]:
        with self._lock:
            return [self._prices[key] for key in sorted(self._prices)]
