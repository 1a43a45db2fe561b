"""Tests for trade execution."""

from datetime import date
from decimal import Decimal

import pytest

from fundgrid.config import GridStrategyConfig, SellPolicy
from fundgrid.executor import TradeExecutionEngine
from fundgrid.grid import GridLevelGenerator
from fundgrid.models import TierClass, TransactionKind, TriggerOutcome
from fundgrid.settlement import SettlementLedger

D1 = date(2024, 1, 2)
D2 = date(2024, 1, 3)
D3 = date(2024, 1, 4)


def build(strategy: GridStrategyConfig):
    ledger = SettlementLedger(lot_unit=strategy.lot_unit)
    executor = TradeExecutionEngine(strategy, ledger)
    levels = {lvl.price: lvl for lvl in GridLevelGenerator(strategy).generate()}
    return executor, ledger, levels


class TestExecuteBuy:
    """Tests for buy execution."""

    def test_buy(self, scenario_strategy):
        """Buy uses the level's nominal size and charges the fee."""
        executor, ledger, levels = build(scenario_strategy)

        result = executor.execute_buy(levels[Decimal("9.5")], D1, D2)

        assert result.outcome == TriggerOutcome.BUY
        [tx] = result.transactions
        assert tx.kind == TransactionKind.BUY
        assert tx.seq == 1
        assert tx.shares == 100
        assert tx.price == Decimal("9.5")
        assert tx.amount == Decimal("950")
        assert tx.fee == Decimal("0.285")
        assert tx.lot_id == 1
        assert tx.purchase_date == D1

        assert ledger.total_shares == 100
        assert ledger.pending_shares == 100
        assert ledger.state.cumulative_buy_amount == Decimal("950.285")

    def test_buy_too_expensive(self):
        """A level whose amount buys no whole lot produces no transaction."""
        strategy = GridStrategyConfig(reference_price=Decimal("50"), tier_count=1)
        executor, ledger, levels = build(strategy)

        result = executor.execute_buy(levels[Decimal("47.5")], D1, D2)

        assert result.outcome == TriggerOutcome.NO_BUY
        assert result.transactions == []
        assert ledger.total_shares == 0

    def test_shared_level_opens_lot_per_tier(self, scenario_strategy):
        """A level shared by two tiers buys one lot for each, with its own target."""
        strategy = scenario_strategy.model_copy(
            update={"medium_tier": scenario_strategy.medium_tier.model_copy(
                update={"enabled": True, "multiplier": Decimal("2")}
            )}
        )
        executor, ledger, levels = build(strategy)

        result = executor.execute_buy(levels[Decimal("9")], D1, D2)

        assert result.outcome == TriggerOutcome.BUY
        small, medium = result.transactions
        assert (small.tier, small.shares, small.seq) == (TierClass.SMALL, 100, 1)
        assert (medium.tier, medium.shares, medium.seq) == (TierClass.MEDIUM, 200, 2)
        assert small.level_offset == medium.level_offset == Decimal("-10")

        assert [lot.tier for lot in ledger.lots] == [TierClass.SMALL, TierClass.MEDIUM]
        assert [lot.target_sell_offset for lot in ledger.lots] == [Decimal("-5"), Decimal("0")]
        assert ledger.total_shares == 300
        assert ledger.state.cumulative_buy_amount == Decimal("2700.81")

    def test_sequence_numbers(self, scenario_strategy):
        """Transactions are numbered in execution order."""
        executor, _, levels = build(scenario_strategy)

        first = executor.execute_buy(levels[Decimal("9.5")], D1, D2).transactions[0]
        second = executor.execute_buy(levels[Decimal("9")], D1, D2).transactions[0]

        assert (first.seq, second.seq) == (1, 2)


class TestBlockedSell:
    """Tests for sell triggers with nothing settled."""

    def test_blocked_when_nothing_available(self, scenario_strategy):
        """Zero available shares records a BLOCKED no-op."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)

        result = executor.execute_sell(levels[Decimal("10")], D1)

        assert result.outcome == TriggerOutcome.BLOCKED
        [tx] = result.transactions
        assert tx.kind == TransactionKind.BLOCKED
        assert tx.shares == 0
        assert tx.amount == Decimal("0")
        assert executor.blocked_count == 1
        assert ledger.total_shares == 100

    @pytest.mark.parametrize("policy", [SellPolicy.DYNAMIC, SellPolicy.FIXED_MATCHING])
    def test_blocked_for_both_policies(self, scenario_strategy, policy):
        """Blocking happens before policy dispatch."""
        strategy = scenario_strategy.model_copy(update={"sell_policy": policy})
        executor, _, levels = build(strategy)

        result = executor.execute_sell(levels[Decimal("10.5")], D1)

        assert result.outcome == TriggerOutcome.BLOCKED


class TestFixedMatchingSell:
    """Tests for the fixed-matching sell policy."""

    def test_sells_lot_at_target(self, scenario_strategy):
        """A settled lot sells when the level reaches its target offset."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("10")], D2)

        assert result.outcome == TriggerOutcome.SELL
        [tx] = result.transactions
        assert tx.kind == TransactionKind.SELL
        assert tx.shares == 100
        assert tx.price == Decimal("10")
        assert tx.amount == Decimal("1000")
        assert tx.fee == Decimal("0.3")
        assert tx.lot_id == 1
        assert tx.purchase_date == D1
        # 1000 - 0.3 - 950
        assert tx.realized_pnl == Decimal("49.7")
        assert ledger.total_shares == 0

    def test_below_target_not_sold(self, scenario_strategy):
        """Lots whose target is above the crossed level stay open."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9")], D1, D2)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("9.5")], D2)

        # Only the 9.00 lot (target -5) qualifies at offset -5
        [tx] = result.transactions
        assert tx.lot_id == 1
        assert ledger.total_shares == 100

    def test_no_matching_lot(self, scenario_strategy):
        """Settled shares that match no target yield NO_SELLABLE."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("9.5")], D2)

        assert result.outcome == TriggerOutcome.NO_SELLABLE
        assert result.transactions == []
        assert executor.blocked_count == 0

    def test_other_tier_not_matched(self, scenario_strategy):
        """Fixed matching only sells lots of the crossed level's tier."""
        strategy = scenario_strategy.model_copy(
            update={"medium_tier": scenario_strategy.medium_tier.model_copy(update={"enabled": True})}
        )
        executor, ledger, levels = build(strategy)
        executor.execute_buy(levels[Decimal("8.5")], D1, D2)  # medium, target 0
        ledger.release(D2)

        small_result = executor.execute_sell(levels[Decimal("10")], D2)
        assert small_result.outcome == TriggerOutcome.NO_SELLABLE

        medium_result = executor.execute_sell(levels[Decimal("11.5")], D2)
        assert medium_result.outcome == TriggerOutcome.SELL

    def test_only_pending_lot_would_match(self, scenario_strategy):
        """Available shares with no eligible lot is NO_SELLABLE, not BLOCKED."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)  # target 0
        ledger.release(D2)
        executor.execute_buy(levels[Decimal("9")], D2, D3)  # target -5, pending

        result = executor.execute_sell(levels[Decimal("9.5")], D2)

        assert ledger.available_shares == 100
        assert result.outcome == TriggerOutcome.NO_SELLABLE
        assert result.transactions == []
        assert executor.blocked_count == 0

    def test_shared_level_matches_each_tier(self, scenario_strategy):
        """On a shared level each lot is checked against its own tier's offset."""
        strategy = scenario_strategy.model_copy(
            update={"medium_tier": scenario_strategy.medium_tier.model_copy(
                update={"enabled": True, "multiplier": Decimal("2")}
            )}
        )
        executor, ledger, levels = build(strategy)
        executor.execute_buy(levels[Decimal("9")], D1, D2)  # small target -5, medium target 0
        ledger.release(D2)

        # 10 is a small-only level: the medium lot has no part there
        assert executor.execute_sell(levels[Decimal("10")], D2).outcome == TriggerOutcome.SELL
        assert [lot.tier for lot in ledger.available_lots()] == [TierClass.MEDIUM]

        result = executor.execute_sell(levels[Decimal("11")], D2)

        [tx] = result.transactions
        assert tx.tier == TierClass.MEDIUM
        assert tx.shares == 200
        assert tx.level_offset == Decimal("10")
        assert ledger.total_shares == 0

    def test_pending_lot_not_sold(self, scenario_strategy):
        """Lots still pending settlement are not matched."""
        executor, ledger, levels = build(scenario_strategy)
        executor.execute_buy(levels[Decimal("9")], D1, D2)
        ledger.release(D2)
        executor.execute_buy(levels[Decimal("9.5")], D2, D3)

        result = executor.execute_sell(levels[Decimal("10")], D2)

        [tx] = result.transactions
        assert tx.lot_id == 1
        assert ledger.pending_shares == 100

    def test_retention(self, scenario_strategy):
        """Retained share of a lot stays held and leaves fixed matching."""
        strategy = scenario_strategy.model_copy(update={
            "per_tier_amount": Decimal("2000"),
            "retained_profit_ratio": Decimal("0.5"),
        })
        executor, ledger, levels = build(strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)  # 200 shares
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("10")], D2)

        sell, retained = result.transactions
        assert sell.kind == TransactionKind.SELL
        assert sell.shares == 100
        assert retained.kind == TransactionKind.RETAINED
        assert retained.shares == 100
        assert retained.fee == Decimal("0")
        assert retained.amount == Decimal("1000")
        assert retained.lot_id == sell.lot_id

        lot = ledger.lots[0]
        assert lot.retained is True
        assert lot.shares == 100
        assert ledger.total_shares == 100

        again = executor.execute_sell(levels[Decimal("10.5")], D3)
        assert again.outcome == TriggerOutcome.NO_SELLABLE


class TestDynamicSell:
    """Tests for the dynamic-proportional sell policy."""

    def test_fraction_of_holdings(self, dynamic_strategy):
        """Sell fraction grows with distance above the lowest held cost."""
        executor, ledger, levels = build(dynamic_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)
        executor.execute_buy(levels[Decimal("9")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("9.5")], D2)

        # (9.5 / 9 - 1) x 100 / 5 = 1.11 widths -> 1.11 / 2 of 200 shares -> 100
        [tx] = result.transactions
        assert tx.shares == 100
        assert tx.lot_id is None
        # Cost basis is the average held cost 9.25
        assert tx.realized_pnl == Decimal("950") - Decimal("0.285") - Decimal("925")

        # Oldest lot consumed first
        assert [lot.purchase_price for lot in ledger.lots] == [Decimal("9")]

    def test_clamped_at_tier_count(self, dynamic_strategy):
        """Distance beyond tier_count widths sells everything."""
        executor, ledger, levels = build(dynamic_strategy)
        executor.execute_buy(levels[Decimal("9")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("11")], D2)

        assert result.transactions[0].shares == 100
        assert ledger.total_shares == 0

    def test_below_lowest_cost_sells_nothing(self, dynamic_strategy):
        """A crossing at or below the lowest held cost sells nothing."""
        executor, ledger, levels = build(dynamic_strategy)
        executor.execute_buy(levels[Decimal("9.5")], D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("9.5")], D2)

        assert result.outcome == TriggerOutcome.NO_SELLABLE
        assert ledger.total_shares == 100

    def test_capped_at_available(self, dynamic_strategy):
        """Pending shares count toward the fraction but are never sold."""
        executor, ledger, levels = build(dynamic_strategy)
        executor.execute_buy(levels[Decimal("9")], D1, D2)
        ledger.release(D2)
        executor.execute_buy(levels[Decimal("9.5")], D2, D3)

        result = executor.execute_sell(levels[Decimal("11")], D2)

        assert result.transactions[0].shares == 100
        assert ledger.total_shares == 100
        assert ledger.pending_shares == 100
        assert ledger.is_consistent()

    def test_profit_retention(self, dynamic_strategy):
        """Part of a profitable sale is withheld and recorded."""
        strategy = dynamic_strategy.model_copy(update={"retained_profit_ratio": Decimal("0.5")})
        executor, ledger, levels = build(strategy)
        ledger.open_lot(levels[Decimal("9")], 5000, Decimal("9"), D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("10")], D2)

        # profit = 50000 - 15 - 45000 = 4985; 4985 x 0.5 / 10 = 249 -> 200 retained
        sell, retained = result.transactions
        assert sell.shares == 4800
        assert sell.fee == Decimal("14.4")
        assert sell.realized_pnl == Decimal("48000") - Decimal("14.4") - Decimal("43200")
        assert retained.kind == TransactionKind.RETAINED
        assert retained.shares == 200
        assert ledger.total_shares == 200

    def test_retention_capped(self, dynamic_strategy):
        """Retention never exceeds 80% of the planned sale."""
        strategy = dynamic_strategy.model_copy(update={"retained_profit_ratio": Decimal("1")})
        executor, ledger, levels = build(strategy)
        ledger.open_lot(levels[Decimal("9")], 100000, Decimal("1"), D1, D2)
        ledger.release(D2)

        result = executor.execute_sell(levels[Decimal("10")], D2)

        sell, retained = result.transactions
        assert retained.shares == 80000
        assert sell.shares == 20000

    def test_grid_position_absolute(self):
        """Absolute mode measures distance in currency widths."""
        strategy = GridStrategyConfig(reference_price=Decimal("1"), tier_width=Decimal("0.1"), width_mode="absolute")
        executor = TradeExecutionEngine(strategy, SettlementLedger())

        assert executor.grid_position(Decimal("1.25"), Decimal("1")) == Decimal("2.5")
