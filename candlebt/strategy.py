"""Strategy contract consumed by the engine.

A strategy exposes one decision operation. It sees only the candles up to
and including the current one, the open position (or None) and a snapshot
of the account, and answers with a Signal: HOLD, ENTER(side, quantity) or
EXIT.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from .data_source import Candle
from .ledger import AccountSnapshot, Position, Side


class SignalType(Enum):
    HOLD = "HOLD"
    ENTER = "ENTER"
    EXIT = "EXIT"


@dataclass(frozen=True)
class Signal:
    """Decision returned by a strategy for one candle."""

    type: SignalType
    side: Optional[Side] = None
    quantity: Optional[float] = None

    def __post_init__(self):
        if self.type == SignalType.ENTER:
            if self.side is None:
                raise ValueError("ENTER signal requires a side")
            if self.quantity is None or self.quantity <= 0:
                raise ValueError(f"ENTER signal requires a positive quantity, got: {self.quantity}")
            object.__setattr__(self, "side", Side(self.side))

    @classmethod
    def hold(cls) -> "Signal":
        return cls(SignalType.HOLD)

    @classmethod
    def enter(cls, side: Union[Side, str], quantity: float) -> "Signal":
        return cls(SignalType.ENTER, side=Side(side), quantity=quantity)

    @classmethod
    def exit(cls) -> "Signal":
        return cls(SignalType.EXIT)


HOLD = Signal.hold()
EXIT = Signal.exit()


class CandleWindow(SequenceABC):
    """Read-only view of ``candles[0:end]``.

    Indexing past the end raises IndexError, so the strategy can never
    observe a candle that has not closed yet. No copy of the underlying
    list is made.
    """

    __slots__ = ("_candles", "_end")

    def __init__(self, candles: Sequence[Candle], end: int):
        self._candles = candles
        self._end = max(0, min(end, len(candles)))

    def __len__(self) -> int:
        return self._end

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._candles[i] for i in range(*index.indices(self._end))]
        if index < 0:
            index += self._end
        if not 0 <= index < self._end:
            raise IndexError("candle index out of range")
        return self._candles[index]

    @property
    def current(self) -> Candle:
        """The most recent (current) candle."""
        return self[-1]

    def closes(self, count: Optional[int] = None) -> List[float]:
        """Close prices of the last ``count`` candles (all if None)."""
        start = 0 if count is None else max(0, self._end - count)
        return [self._candles[i].close for i in range(start, self._end)]


class Strategy(ABC):
    """Base class for strategies.

    Subclasses implement ``decide``. ``required_evaluators`` lists the
    indicator evaluators the strategy expects on candles; they are requested
    from the data provider automatically.
    """

    name: str = "Strategy"
    description: str = ""

    def __init__(self, symbol: str = "", name: Optional[str] = None):
        self.symbol = symbol
        if name:
            self.name = name

    def required_evaluators(self) -> List[str]:
        return []

    @abstractmethod
    def decide(
        self,
        candles: Sequence[Candle],
        position: Optional[Position],
        account: AccountSnapshot
    ) -> Signal:
        """Decide what to do after the last candle in ``candles`` closed."""


DecisionFunction = Callable[[Sequence[Candle], Optional[Position], AccountSnapshot], Signal]


class FunctionStrategy(Strategy):
    """Adapts a plain function to the Strategy contract."""

    def __init__(self, decide: DecisionFunction, name: str = "Function Strategy",
                 symbol: str = "", evaluators: Sequence[str] = ()):
        super().__init__(symbol=symbol, name=name)
        self._decide = decide
        self._evaluators = list(evaluators)

    def required_evaluators(self) -> List[str]:
        return list(self._evaluators)

    def decide(self, candles, position, account) -> Signal:
        return self._decide(candles, position, account)
