"""
Tests for position aggregation and cost basis
"""
import pytest

from perpledger.events import TradeSide
from perpledger.portfolio import (
    PositionAggregator,
    PositionSide,
    PositionStatus,
    day_bucket,
    position_key,
    replay_cost_basis,
)

from helpers import WALLET, T0, make_fill, make_position, trade_event, utc


DAY = 86_400
SOL_LONG_ID = f"0-BUY-{T0 // DAY}-{WALLET}"


def scenario_entries():
    """Three SOL-USDC entries: 10@100, 5@110, 5@90"""
    return [
        trade_event("e1", TradeSide.BUY, 100.0, 10.0, T0),
        trade_event("e2", TradeSide.BUY, 110.0, 5.0, T0 + 60),
        trade_event("e3", TradeSide.BUY, 90.0, 5.0, T0 + 120),
    ]


def build(aggregator, events, wallet=WALLET, books=()):
    """Assign events and recompute every touched position"""
    assignments = aggregator.assign(events, wallet, books)
    positions = {}
    for pid, group in aggregator.group(assignments).items():
        skeleton = aggregator.new_position(pid, group, wallet)
        positions[pid] = aggregator.recompute(skeleton, [a.to_fill() for a in group])
    return assignments, positions


class TestPositionKey:
    """Test deterministic position ids"""

    def test_key_format(self):
        """market-side-day-wallet"""
        event = trade_event("s", TradeSide.BUY, 100.0, 1.0, T0)
        assert position_key(event, WALLET) == SOL_LONG_ID

    def test_day_bucket(self):
        """Days since epoch in UTC"""
        assert day_bucket(utc(0)) == 0
        assert day_bucket(utc(DAY - 1)) == 0
        assert day_bucket(utc(DAY)) == 1

    def test_unknown_market_key_roundtrip(self):
        """Market key with dashes is recovered from the id"""
        event = trade_event("s", TradeSide.BUY, 5.0, 1.0, T0, market_id=-1, symbol="UNKNOWN--1")
        pid = position_key(event, WALLET)
        position = make_position(pid, market="UNKNOWN--1")
        assert PositionAggregator.market_key_of(position) == "UNKNOWN--1"


class TestAssignment:
    """Test fill to position assignment"""

    @pytest.fixture
    def aggregator(self):
        return PositionAggregator(epsilon=1e-6)

    def test_entries_share_position(self, aggregator):
        """Same market, side and day group together"""
        assignments = aggregator.assign(scenario_entries(), WALLET)

        assert {a.position_id for a in assignments} == {SOL_LONG_ID}
        assert all(a.is_entry for a in assignments)
        assert all(a.side == PositionSide.LONG for a in assignments)

    def test_opposite_fill_exits_open_position(self, aggregator):
        """A SELL against an open LONG is an exit of that LONG"""
        events = scenario_entries() + [trade_event("x1", TradeSide.SELL, 120.0, 20.0, T0 + 180)]
        assignments = aggregator.assign(events, WALLET)

        exit_assignment = assignments[-1]
        assert exit_assignment.position_id == SOL_LONG_ID
        assert exit_assignment.is_entry is False
        assert exit_assignment.side == PositionSide.LONG

    def test_sell_without_open_long_opens_short(self, aggregator):
        """A SELL with nothing to reduce opens a SHORT"""
        assignments = aggregator.assign([trade_event("s1", TradeSide.SELL, 100.0, 1.0, T0)], WALLET)

        assert assignments[0].side == PositionSide.SHORT
        assert assignments[0].is_entry
        assert assignments[0].position_id.startswith("0-SELL-")

    def test_markets_do_not_cross(self, aggregator):
        """Opposite fills in another market open a new position"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 1.0, T0),
            trade_event("s1", TradeSide.SELL, 100.0, 1.0, T0 + 1, market_id=12, symbol="SOL-USDC-V2"),
        ]
        assignments = aggregator.assign(events, WALLET)

        assert assignments[1].position_id.startswith("12-SELL-")
        assert assignments[1].is_entry

    def test_exit_targets_most_recent_position(self, aggregator):
        """With several open positions, the newest is reduced first"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 1.0, T0),
            trade_event("b2", TradeSide.BUY, 100.0, 1.0, T0 + DAY),
            trade_event("s1", TradeSide.SELL, 100.0, 1.0, T0 + DAY + 60),
        ]
        assignments = aggregator.assign(events, WALLET)

        assert assignments[2].position_id == assignments[1].position_id
        assert assignments[2].position_id != assignments[0].position_id

    def test_seeded_books(self, aggregator):
        """Open positions from the store receive exits"""
        stored = make_position(SOL_LONG_ID).model_copy(update={"total_size": 20.0})
        books = aggregator.books_from_positions([stored])

        assignments = aggregator.assign(
            [trade_event("x1", TradeSide.SELL, 120.0, 20.0, T0 + DAY * 3)],
            WALLET,
            books
        )
        assert assignments[0].position_id == SOL_LONG_ID
        assert not assignments[0].is_entry

    def test_closed_positions_not_seeded(self, aggregator):
        """Flat or closed positions do not seed books"""
        closed = make_position(SOL_LONG_ID).model_copy(update={"status": PositionStatus.CLOSED})
        assert aggregator.books_from_positions([closed]) == []

    def test_unordered_input(self, aggregator):
        """Events are processed chronologically regardless of input order"""
        events = scenario_entries() + [trade_event("x1", TradeSide.SELL, 120.0, 20.0, T0 + 180)]
        assignments = aggregator.assign(list(reversed(events)), WALLET)

        assert [a.event.signature for a in assignments] == ["e1", "e2", "e3", "x1"]
        assert not assignments[-1].is_entry

    def test_oversized_exit_flips_side(self, aggregator):
        """An exit larger than the open book closes it and opens the other side"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 10.0, T0),
            trade_event("s1", TradeSide.SELL, 120.0, 15.0, T0 + 60, fee=0.3),
        ]
        assignments, positions = build(aggregator, events)

        closing, opening = assignments[1], assignments[2]
        assert (closing.position_id, closing.is_entry, closing.event.size) == (SOL_LONG_ID, False, 10.0)
        assert closing.to_fill().signature == "s1"
        assert closing.to_fill().fee == pytest.approx(0.3)

        assert opening.position_id == f"0-SELL-{T0 // DAY}-{WALLET}"
        assert opening.is_entry
        assert opening.event.size == pytest.approx(5.0)
        assert opening.to_fill().signature == "s1#1"
        assert opening.to_fill().fee == 0.0

        long = positions[SOL_LONG_ID]
        assert long.status == PositionStatus.CLOSED
        assert long.realized_pnl == pytest.approx(200.0)

        short = positions[opening.position_id]
        assert short.side == PositionSide.SHORT
        assert short.status == PositionStatus.OPEN
        assert short.total_size == pytest.approx(5.0)
        assert short.avg_entry_price == pytest.approx(120.0)

    def test_oversized_exit_reduces_older_books_first(self, aggregator):
        """The excess of an exit reduces the next open position before flipping"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 4.0, T0),
            trade_event("b2", TradeSide.BUY, 110.0, 4.0, T0 + DAY),
            trade_event("s1", TradeSide.SELL, 120.0, 10.0, T0 + DAY + 60),
        ]
        assignments, positions = build(aggregator, events)

        parts = [(a.position_id, a.is_entry, a.event.size, a.to_fill().signature) for a in assignments[2:]]
        assert parts == [
            (assignments[1].position_id, False, 4.0, "s1"),
            (assignments[0].position_id, False, 4.0, "s1#1"),
            (f"0-SELL-{(T0 + DAY) // DAY}-{WALLET}", True, 2.0, "s1#2"),
        ]
        assert all(positions[a.position_id].status == PositionStatus.CLOSED for a in assignments[:2])


class TestRecompute:
    """Test derived position fields"""

    @pytest.fixture
    def aggregator(self):
        return PositionAggregator(epsilon=1e-6)

    def test_entries_weighted_average(self, aggregator):
        """avg = (10*100 + 5*110 + 5*90) / 20 = 100, open"""
        _, positions = build(aggregator, scenario_entries())
        position = positions[SOL_LONG_ID]

        assert position.avg_entry_price == pytest.approx(100.0)
        assert position.total_size == pytest.approx(20.0)
        assert position.status == PositionStatus.OPEN
        assert position.realized_pnl is None
        assert position.avg_exit_price is None
        assert position.market == "SOL-USDC"
        assert position.side == PositionSide.LONG

    def test_full_exit_closes(self, aggregator):
        """Exit 20 @ 120 realizes 400 and closes"""
        events = scenario_entries() + [trade_event("x1", TradeSide.SELL, 120.0, 20.0, T0 + 180)]
        _, positions = build(aggregator, events)
        position = positions[SOL_LONG_ID]

        assert position.realized_pnl == pytest.approx(400.0)
        assert position.price_pnl == pytest.approx(400.0)
        assert position.total_size == 0.0
        assert position.status == PositionStatus.CLOSED
        assert position.avg_exit_price == pytest.approx(120.0)
        assert position.closed_at == utc(T0 + 180)
        assert position.created_at == utc(T0)
        assert position.updated_at == utc(T0 + 180)

    def test_conservation(self, aggregator):
        """total_size == |entries - exits|"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 10.0, T0),
            trade_event("b2", TradeSide.BUY, 100.0, 5.0, T0 + 10),
            trade_event("s1", TradeSide.SELL, 105.0, 8.0, T0 + 20),
        ]
        _, positions = build(aggregator, events)
        position = positions[SOL_LONG_ID]

        assert position.total_size == pytest.approx(7.0)
        assert position.status == PositionStatus.OPEN
        assert position.realized_pnl == pytest.approx(40.0)

    def test_short_pnl_sign(self, aggregator):
        """Short profits when price falls"""
        events = [
            trade_event("s1", TradeSide.SELL, 100.0, 10.0, T0),
            trade_event("b1", TradeSide.BUY, 90.0, 10.0, T0 + 60),
        ]
        _, positions = build(aggregator, events)
        position = next(iter(positions.values()))

        assert position.side == PositionSide.SHORT
        assert position.realized_pnl == pytest.approx(100.0)
        assert position.status == PositionStatus.CLOSED

    def test_long_loss_sign(self, aggregator):
        """Long loses when price falls"""
        events = [
            trade_event("b1", TradeSide.BUY, 100.0, 2.0, T0),
            trade_event("s1", TradeSide.SELL, 95.0, 2.0, T0 + 60),
        ]
        _, positions = build(aggregator, events)
        assert positions[SOL_LONG_ID].realized_pnl == pytest.approx(-10.0)

    def test_funding_and_soc_loss(self, aggregator):
        """realized = price pnl + funding - soc loss"""
        pid = SOL_LONG_ID
        fills = [
            make_fill("b1", pid, 100.0, 1.0, True, T0),
            make_fill("s1", pid, 110.0, 1.0, False, T0 + 60).model_copy(update={"funding": 2.0, "soc_loss": 0.5}),
        ]
        position = aggregator.recompute(make_position(pid), fills)

        assert position.price_pnl == pytest.approx(10.0)
        assert position.funding == pytest.approx(2.0)
        assert position.soc_loss == pytest.approx(0.5)
        assert position.realized_pnl == pytest.approx(11.5)

    def test_funding_only_realizes(self, aggregator):
        """An open position with funding has a realized figure"""
        pid = SOL_LONG_ID
        fills = [make_fill("b1", pid, 100.0, 1.0, True, T0).model_copy(update={"funding": -1.0})]
        position = aggregator.recompute(make_position(pid), fills)

        assert position.status == PositionStatus.OPEN
        assert position.realized_pnl == pytest.approx(-1.0)

    def test_fees_summed(self, aggregator):
        """total_fees sums fill fees"""
        pid = SOL_LONG_ID
        fills = [
            make_fill("b1", pid, 100.0, 1.0, True, T0, fee=0.1),
            make_fill("b2", pid, 100.0, 1.0, True, T0 + 1, fee=0.2),
        ]
        position = aggregator.recompute(make_position(pid), fills)
        assert position.total_fees == pytest.approx(0.3)


class TestCostBasis:
    """Test the running cost basis replay"""

    def test_basis_resets_after_flat(self):
        """A re-entry after going flat starts a new basis"""
        pid = SOL_LONG_ID
        fills = [
            make_fill("b1", pid, 100.0, 10.0, True, T0),
            make_fill("s1", pid, 110.0, 10.0, False, T0 + 60),
            make_fill("b2", pid, 200.0, 5.0, True, T0 + 120),
        ]
        state = replay_cost_basis(fills, PositionSide.LONG)

        assert state.realized_pnl == pytest.approx(100.0)
        assert state.avg_cost == pytest.approx(200.0)
        assert state.net_size == pytest.approx(5.0)
        assert not state.is_flat

    def test_entries_before_exits_at_same_time(self):
        """Same-second entry and exit replay entry first"""
        pid = SOL_LONG_ID
        fills = [
            make_fill("s1", pid, 110.0, 1.0, False, T0),
            make_fill("b1", pid, 100.0, 1.0, True, T0),
        ]
        state = replay_cost_basis(fills, PositionSide.LONG)

        assert state.realized_pnl == pytest.approx(10.0)
        assert state.is_flat

    def test_exit_without_basis_realizes_nothing(self):
        """An exit before any entry has no basis"""
        fills = [make_fill("s1", SOL_LONG_ID, 110.0, 1.0, False, T0)]
        state = replay_cost_basis(fills, PositionSide.LONG)
        assert state.realized_pnl == 0.0

    def test_realized_capped_at_held_size(self):
        """Exit volume beyond the held size realizes nothing"""
        fills = [
            make_fill("b1", SOL_LONG_ID, 100.0, 10.0, True, T0),
            make_fill("s1", SOL_LONG_ID, 120.0, 15.0, False, T0 + 60),
        ]
        state = replay_cost_basis(fills, PositionSide.LONG)

        assert state.realized_pnl == pytest.approx(200.0)
        assert state.exit_size == pytest.approx(15.0)
