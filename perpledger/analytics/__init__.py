"""
Wallet analytics

Components:
- AnalyticsEngine: Summaries and chart series over stored positions
- metrics: Sharpe, Sortino, drawdown, profit factor, expectancy
- behavioral: Streaks, risk/reward and revenge trading

Usage:
    engine = AnalyticsEngine(store, pnl_engine)
    summary = await engine.get_comprehensive_analytics(wallet)
    print(summary.risk_metrics["sharpe_ratio"])
"""

from .analyzer import (
    AnalyticsEngine,
    AnalyticsFilters,
    TradeHistoryQuery,
    ComprehensiveAnalytics,
    SESSIONS,
    session_of,
)
from .behavioral import (
    BehavioralMetrics,
    Streaks,
    TapeEntry,
    compute_behavioral_metrics,
    count_revenge_trades,
)
from .metrics import (
    RiskMetrics,
    calculate_risk_metrics,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    calculate_max_drawdown,
    calculate_profit_factor,
    calculate_expectancy,
    calculate_streaks,
    daily_pnl_series,
    drawdown_frame,
)

__all__ = [
    "AnalyticsEngine",
    "AnalyticsFilters",
    "TradeHistoryQuery",
    "ComprehensiveAnalytics",
    "SESSIONS",
    "session_of",
    "BehavioralMetrics",
    "Streaks",
    "TapeEntry",
    "compute_behavioral_metrics",
    "count_revenge_trades",
    "RiskMetrics",
    "calculate_risk_metrics",
    "calculate_sharpe_ratio",
    "calculate_sortino_ratio",
    "calculate_max_drawdown",
    "calculate_profit_factor",
    "calculate_expectancy",
    "calculate_streaks",
    "daily_pnl_series",
    "drawdown_frame",
]
