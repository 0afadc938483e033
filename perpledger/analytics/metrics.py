"""
Performance Metrics

Risk and trade metrics over realized PnL. Inputs are absolute PnL amounts
(not returns); there is no account balance to normalize against.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Iterable, Optional
import numpy as np
import pandas as pd


# Crypto trades every day
PERIODS_PER_YEAR = 365

# Profit factor reported when there are gains but no losses
PROFIT_FACTOR_CAP = 999.0


@dataclass
class RiskMetrics:
    """Risk-adjusted performance"""
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float  # % of peak cumulative PnL
    profit_factor: float
    expectancy: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def daily_pnl_series(closes: Iterable[tuple[datetime, float]]) -> pd.Series:
    """
    Sum realized PnL per UTC calendar day

    Args:
        closes: (close time, realized PnL) pairs

    Returns:
        PnL per day, indexed by date, only days with closes
    """
    closes = list(closes)
    if not closes:
        return pd.Series(dtype=float)

    frame = pd.DataFrame(closes, columns=["closed_at", "pnl"])
    frame["date"] = pd.to_datetime(frame["closed_at"], utc=True).dt.date
    return frame.groupby("date")["pnl"].sum()


def calculate_sharpe_ratio(daily_pnl: pd.Series, periods_per_year: int = PERIODS_PER_YEAR) -> float:
    """
    Annualized Sharpe ratio of daily PnL

    Args:
        daily_pnl: PnL per day
        periods_per_year: Days per year

    Returns:
        Sharpe ratio (0 with fewer than two days or zero variance)
    """
    if len(daily_pnl) < 2:
        return 0.0

    std = daily_pnl.std(ddof=1)
    if std == 0 or np.isnan(std):
        return 0.0

    return float(daily_pnl.mean() / std * np.sqrt(periods_per_year))


def calculate_sortino_ratio(daily_pnl: pd.Series, periods_per_year: int = PERIODS_PER_YEAR) -> float:
    """
    Annualized Sortino ratio of daily PnL

    Downside deviation is the root mean square of min(pnl, 0) over all days.
    """
    if len(daily_pnl) < 2:
        return 0.0

    downside = np.sqrt((np.minimum(daily_pnl.to_numpy(), 0.0) ** 2).mean())
    if downside == 0:
        return 0.0

    return float(daily_pnl.mean() / downside * np.sqrt(periods_per_year))


def drawdown_frame(pnls: Iterable[float]) -> pd.DataFrame:
    """
    Cumulative PnL, running peak and drawdown

    The peak starts at zero, so an opening loss counts as drawdown.

    Returns:
        DataFrame with columns cumulative, peak, drawdown (absolute, <= 0)
        and drawdown_pct (% of peak, 0 while the peak is not positive)
    """
    cumulative = pd.Series(list(pnls), dtype=float).cumsum()
    peak = cumulative.cummax().clip(lower=0.0)
    drawdown = cumulative - peak
    drawdown_pct = pd.Series(
        np.where(peak > 0, drawdown / peak.where(peak > 0, 1.0) * 100, 0.0),
        index=cumulative.index
    )
    return pd.DataFrame({
        "cumulative": cumulative,
        "peak": peak,
        "drawdown": drawdown,
        "drawdown_pct": drawdown_pct,
    })


def calculate_max_drawdown(pnls: Iterable[float]) -> float:
    """
    Largest peak-to-trough fall of cumulative PnL as % of the overall peak

    Returns:
        Max drawdown percentage (positive), 0 when PnL never went positive
    """
    frame = drawdown_frame(pnls)
    if frame.empty:
        return 0.0

    peak = frame["peak"].max()
    if peak <= 0:
        return 0.0

    return float(-frame["drawdown"].min() / peak * 100)


def calculate_profit_factor(pnls: Iterable[float], cap: float = PROFIT_FACTOR_CAP) -> float:
    """Gross profit / gross loss"""
    values = np.asarray(list(pnls), dtype=float)
    gross_profit = values[values > 0].sum()
    gross_loss = abs(values[values < 0].sum())

    if gross_loss > 0:
        return float(gross_profit / gross_loss)
    return cap if gross_profit > 0 else 0.0


def calculate_expectancy(pnls: Iterable[float]) -> float:
    """win_rate * avg_win + loss_rate * avg_loss (avg_loss is negative)"""
    values = np.asarray(list(pnls), dtype=float)
    if len(values) == 0:
        return 0.0

    wins = values[values > 0]
    losses = values[values < 0]
    avg_win = wins.mean() if len(wins) else 0.0
    avg_loss = losses.mean() if len(losses) else 0.0

    return float(len(wins) / len(values) * avg_win + len(losses) / len(values) * avg_loss)


def calculate_streaks(pnls: Iterable[float]) -> tuple[int, int, int]:
    """
    Win/loss streaks in order

    Returns:
        (current, max_win, max_loss); current is positive for a winning
        streak, negative for a losing one, 0 after a breakeven trade
    """
    current = 0
    max_win = 0
    max_loss = 0

    for pnl in pnls:
        if pnl > 0:
            current = current + 1 if current > 0 else 1
            max_win = max(max_win, current)
        elif pnl < 0:
            current = current - 1 if current < 0 else -1
            max_loss = max(max_loss, -current)
        else:
            current = 0

    return current, max_win, max_loss


def calculate_risk_metrics(
    closes: list[tuple[datetime, float]],
    periods_per_year: int = PERIODS_PER_YEAR
) -> RiskMetrics:
    """
    Risk metrics over closed positions

    Args:
        closes: (close time, realized PnL) of closed positions
        periods_per_year: Days per year for annualization

    Returns:
        RiskMetrics
    """
    ordered = sorted(closes, key=lambda c: c[0])
    pnls = [pnl for _, pnl in ordered]
    daily = daily_pnl_series(ordered)

    return RiskMetrics(
        sharpe_ratio=calculate_sharpe_ratio(daily, periods_per_year),
        sortino_ratio=calculate_sortino_ratio(daily, periods_per_year),
        max_drawdown=calculate_max_drawdown(pnls),
        profit_factor=calculate_profit_factor(pnls),
        expectancy=calculate_expectancy(pnls),
    )


def safe_ratio(numerator: float, denominator: float, default: Optional[float] = 0.0) -> Optional[float]:
    return numerator / denominator if denominator else default
