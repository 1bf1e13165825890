"""Account ledger for a single simulation run.

Tracks balance, the single open position (if any) and the completed trades.
Balance changes only when a position is closed; opening a position reserves
capital implicitly and leaves the balance untouched.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


class Side(str, Enum):
    """Position direction."""
    LONG = "long"
    SHORT = "short"


class ExitReason(Enum):
    """Reason for trade exit."""
    SIGNAL = "SIGNAL"
    END_OF_DATA = "END_OF_DATA"


@dataclass(frozen=True)
class Position:
    """An open, not-yet-closed trade."""

    entry_time: int
    entry_price: float
    side: Side
    quantity: float

    def unrealized_pnl(self, price: float) -> float:
        """Mark-to-market PnL against the given price."""
        return calculate_pnl(self.side, self.entry_price, price, self.quantity)


@dataclass(frozen=True)
class CompletedTrade:
    """A closed trade. Times are epoch milliseconds, duration in milliseconds."""

    entry_time: int
    exit_time: int
    side: Side
    quantity: float
    entry_price: float
    exit_price: float
    pnl: float
    pnl_percent: float
    duration: int
    exit_reason: ExitReason = ExitReason.SIGNAL

    def to_dict(self) -> dict:
        return {
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "side": self.side.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "pnl_percent": self.pnl_percent,
            "duration": self.duration,
            "exit_reason": self.exit_reason.value
        }


@dataclass(frozen=True)
class AccountSnapshot:
    """Read-only view of the account handed to strategies and returned in results."""

    starting_balance: float
    balance: float
    total_pnl: float
    total_pnl_percent: float

    def to_dict(self) -> dict:
        return {
            "starting_balance": self.starting_balance,
            "balance": self.balance,
            "total_pnl": self.total_pnl,
            "total_pnl_percent": self.total_pnl_percent
        }


def calculate_pnl(side: Side, entry_price: float, exit_price: float, quantity: float) -> float:
    direction = 1.0 if side == Side.LONG else -1.0
    return (exit_price - entry_price) * quantity * direction


def calculate_pnl_percent(pnl: float, entry_price: float, quantity: float) -> float:
    """PnL relative to the position's entry notional, in percent (0 for zero notional)."""
    notional = entry_price * quantity
    if notional == 0:
        return 0.0
    return pnl / notional * 100


def total_pnl_percent(total_pnl: float, starting_balance: float) -> float:
    """Return on starting balance in percent; 0 when the starting balance is 0."""
    if starting_balance == 0:
        return 0.0
    return total_pnl / starting_balance * 100


class Ledger:
    """Mutable bookkeeping owned by exactly one run."""

    def __init__(self, starting_balance: float):
        self.starting_balance = float(starting_balance)
        self.balance = float(starting_balance)
        self._position: Optional[Position] = None
        self._trades: List[CompletedTrade] = []

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def trades(self) -> Tuple[CompletedTrade, ...]:
        return tuple(self._trades)

    def open_position(self, side: Side, quantity: float, price: float, timestamp: int) -> Position:
        """Open a position at the given price. Balance is not changed.

        Raises:
            RuntimeError: If a position is already open
        """
        if self._position is not None:
            raise RuntimeError("A position is already open")
        self._position = Position(
            entry_time=timestamp,
            entry_price=price,
            side=Side(side),
            quantity=quantity
        )
        return self._position

    def close_position(self, price: float, timestamp: int,
                       reason: ExitReason = ExitReason.SIGNAL) -> CompletedTrade:
        """Close the open position, book realized PnL and record the trade.

        Raises:
            RuntimeError: If no position is open
        """
        position = self._position
        if position is None:
            raise RuntimeError("No open position to close")

        pnl = calculate_pnl(position.side, position.entry_price, price, position.quantity)
        trade = CompletedTrade(
            entry_time=position.entry_time,
            exit_time=timestamp,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            exit_price=price,
            pnl=pnl,
            pnl_percent=calculate_pnl_percent(pnl, position.entry_price, position.quantity),
            duration=timestamp - position.entry_time,
            exit_reason=reason
        )

        self.balance += pnl
        self._trades.append(trade)
        self._position = None
        return trade

    def unrealized_pnl(self, price: float) -> float:
        if self._position is None:
            return 0.0
        return self._position.unrealized_pnl(price)

    def equity(self, price: float) -> float:
        """Balance plus unrealized PnL of the open position at the given price."""
        return self.balance + self.unrealized_pnl(price)

    def snapshot(self) -> AccountSnapshot:
        total_pnl = self.balance - self.starting_balance
        return AccountSnapshot(
            starting_balance=self.starting_balance,
            balance=self.balance,
            total_pnl=total_pnl,
            total_pnl_percent=total_pnl_percent(total_pnl, self.starting_balance)
        )
