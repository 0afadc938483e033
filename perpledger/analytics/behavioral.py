"""
Behavioral Metrics

Trading-habit signals derived from closed positions and the fill tape:
streaks, expectancy, risk/reward and revenge trading (re-entering a market
shortly after exiting it).
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any

from .metrics import calculate_streaks


REVENGE_WINDOW = timedelta(minutes=15)

# Profit factor reported when there are gains but no losses
BEHAVIORAL_PROFIT_FACTOR_CAP = 100.0


@dataclass
class Streaks:
    current: int = 0
    max_win: int = 0
    max_loss: int = 0


@dataclass
class BehavioralMetrics:
    """Behavioral summary of a wallet"""
    expectancy: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    risk_reward_ratio: float = 0.0
    revenge_trade_count: int = 0
    streaks: Streaks = field(default_factory=Streaks)
    insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TapeEntry:
    """One fill on the wallet's tape with its market"""
    timestamp: datetime
    market: str
    is_entry: bool


def count_revenge_trades(tape: list[TapeEntry], window: timedelta = REVENGE_WINDOW) -> int:
    """Entries that follow an exit in the same market within the window"""
    count = 0
    for prev, curr in zip(tape, tape[1:]):
        if not prev.is_entry and curr.is_entry and curr.market == prev.market:
            if curr.timestamp - prev.timestamp < window:
                count += 1
    return count


def generate_insights(metrics: BehavioralMetrics) -> list[str]:
    insights = []
    if metrics.revenge_trade_count > 0:
        insights.append(
            f"Revenge trading detected {metrics.revenge_trade_count} times. "
            f"Wait 30 minutes after a loss before re-entering."
        )
    if metrics.profit_factor < 1:
        insights.append("Losses are currently larger than wins. Tighten stop losses.")
    if metrics.win_rate > 60:
        insights.append("Consistent execution detected. Win rate is solid.")
    return insights


def compute_behavioral_metrics(closed_pnls: list[float], tape: list[TapeEntry]) -> BehavioralMetrics:
    """
    Compute behavioral metrics

    Args:
        closed_pnls: Realized PnL of closed positions in close order
        tape: Wallet fills in time order

    Returns:
        BehavioralMetrics
    """
    if not closed_pnls:
        return BehavioralMetrics(insights=["No closed trades found."])

    wins = [p for p in closed_pnls if p > 0]
    losses = [abs(p) for p in closed_pnls if p < 0]
    total = len(closed_pnls)

    # Breakeven trades count as non-wins
    loss_count = total - len(wins)
    total_wins = sum(wins)
    total_losses = sum(losses)
    avg_win = total_wins / len(wins) if wins else 0.0
    avg_loss = total_losses / loss_count if loss_count else 0.0

    if total_losses > 0:
        profit_factor = total_wins / total_losses
    else:
        profit_factor = BEHAVIORAL_PROFIT_FACTOR_CAP if total_wins > 0 else 0.0

    current, max_win, max_loss = calculate_streaks(closed_pnls)

    metrics = BehavioralMetrics(
        expectancy=round(len(wins) / total * avg_win - loss_count / total * avg_loss, 2),
        win_rate=round(len(wins) / total * 100, 1),
        profit_factor=round(profit_factor, 2),
        risk_reward_ratio=round(avg_win / avg_loss, 2) if avg_loss > 0 else 0.0,
        revenge_trade_count=count_revenge_trades(tape),
        streaks=Streaks(current=current, max_win=max_win, max_loss=max_loss),
    )
    metrics.insights = generate_insights(metrics)
    return metrics
