"""Indicator evaluations attached to candles by the market data provider.

Each candle may carry a list of evaluations, one per evaluator requested
(e.g. ``moving-averages``, ``rsi``), each holding named values.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .data_source import Candle


MOVING_AVERAGES = "moving-averages"
RSI = "rsi"
MACD = "macd"
BOLLINGER_BANDS = "bollinger-bands"


@dataclass(frozen=True)
class IndicatorValue:
    """Single named output value of an evaluation."""

    name: str
    value: float
    timestamp: Optional[int] = None
    plot_ref: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorValue":
        timestamp = data.get("timestamp")
        return cls(
            name=data["name"],
            value=float(data["value"]),
            timestamp=int(timestamp) if timestamp is not None else None,
            plot_ref=data.get("plot_ref")
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp,
            "plot_ref": self.plot_ref
        }


@dataclass(frozen=True)
class IndicatorEvaluation:
    """Output of one evaluator for one candle."""

    id: str
    name: str
    values: Tuple[IndicatorValue, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorEvaluation":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            values=tuple(IndicatorValue.from_dict(v) for v in data.get("values") or [])
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "values": [v.to_dict() for v in self.values]
        }

    def value(self, name: str) -> Optional[float]:
        for item in self.values:
            if item.name == name:
                return item.value
        return None


def get_indicator(candle: "Candle", indicator_id: str) -> Optional[IndicatorEvaluation]:
    """Find the evaluation with the given evaluator id on a candle."""
    for evaluation in candle.evaluations or ():
        if evaluation.id == indicator_id:
            return evaluation
    return None


def get_indicator_value(candle: "Candle", indicator_id: str, value_name: str) -> Optional[float]:
    """Look up a single named value of an evaluation on a candle."""
    evaluation = get_indicator(candle, indicator_id)
    if evaluation is None:
        return None
    return evaluation.value(value_name)


def get_moving_averages(candle: "Candle") -> Dict[str, float]:
    """All moving average values on the candle keyed by name (e.g. ma_fast, ma_slow)."""
    evaluation = get_indicator(candle, MOVING_AVERAGES)
    if evaluation is None:
        return {}
    return {v.name: v.value for v in evaluation.values}


def get_rsi(candle: "Candle") -> Optional[float]:
    return get_indicator_value(candle, RSI, "rsi")


def get_macd(candle: "Candle") -> Optional[Dict[str, float]]:
    """MACD line, signal line and histogram, or None if any is missing."""
    names = ("macd_line", "signal_line", "histogram")
    values = {name: get_indicator_value(candle, MACD, name) for name in names}
    if any(v is None for v in values.values()):
        return None
    return values


def get_bollinger_bands(candle: "Candle") -> Optional[Dict[str, float]]:
    """Upper, middle and lower band, or None if any is missing."""
    names = ("upper", "middle", "lower")
    values = {name: get_indicator_value(candle, BOLLINGER_BANDS, name) for name in names}
    if any(v is None for v in values.values()):
        return None
    return values


def available_evaluators(candles: Sequence["Candle"]) -> List[str]:
    """Evaluator ids present on the first candle."""
    if not candles or not candles[0].evaluations:
        return []
    return [e.id for e in candles[0].evaluations]


def _has_all(candle: "Candle", required: Sequence[str]) -> bool:
    if not candle.evaluations:
        return False
    ids = {e.id for e in candle.evaluations}
    return all(r in ids for r in required)


def validate_indicators(candles: Sequence["Candle"], required: Sequence[str]) -> bool:
    """Check that the first candle carries every required evaluator."""
    if not candles:
        return False
    return _has_all(candles[0], required)


def filter_complete_candles(candles: Sequence["Candle"], required: Sequence[str]) -> List["Candle"]:
    """Keep only candles that carry every required evaluator."""
    return [c for c in candles if _has_all(c, required)]
