"""
Unit tests for the weighted-average cost basis fold.

Tests:
- Acquisition and disposal legs of a single entry
- Weighted-average blending, break-even and the zero-cost branch
- Ordering, skipping of unvalued entries, wallet isolation
- Decimal precision over long ledgers
- Over-disposal diagnostics
"""
from dataclasses import replace
from decimal import Decimal, localcontext
from fractions import Fraction

import pytest

from conftest import BASE_TIME, SOL, TOKEN_X, USDC
from solpnl.services.errors import InvalidAmountError
from solpnl.services.ledger import fold_cost_basis, fold_cost_basis_with_diagnostics
from solpnl.services.ledger.cost_basis import NEGATIVE_COST_BASIS, OVER_DISPOSAL
from solpnl.services.ledger.models import LEDGER_CONTEXT


class TestFoldBasics:

    def test_empty_ledger_yields_empty_mapping(self):
        assert fold_cost_basis([]) == {}

    def test_single_swap_updates_both_legs(self, make_entry):
        costs = fold_cost_basis([make_entry(USDC, SOL, "100", "10", "100")])

        sol = costs[SOL]
        assert sol.total_acquired == Decimal("10")
        assert sol.total_disposed == 0
        assert sol.remaining_cost_basis == Decimal("100")
        assert sol.realized_pnl == 0

        # USDC was never acquired in this ledger: full proceeds, zero cost
        usdc = costs[USDC]
        assert usdc.total_disposed == Decimal("100")
        assert usdc.realized_pnl == Decimal("100")
        assert usdc.remaining_cost_basis == 0

    def test_break_even(self, make_entry):
        costs = fold_cost_basis([
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "10", "100", "100"),
        ])

        assert costs[TOKEN_X].realized_pnl == 0
        assert costs[TOKEN_X].remaining_cost_basis == 0
        assert costs[TOKEN_X].remaining_quantity == 0

    def test_same_mint_entry_disposes_from_prior_position(self, make_entry):
        costs = fold_cost_basis([
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, TOKEN_X, "5", "5", "60"),
        ])

        x = costs[TOKEN_X]
        assert x.realized_pnl == Decimal("10")
        assert x.remaining_cost_basis == Decimal("110")
        assert x.total_acquired == Decimal("15")
        assert x.total_disposed == Decimal("5")
        assert x.remaining_quantity == Decimal("10")

    def test_weighted_average_blends_acquisitions(self, make_entry):
        costs = fold_cost_basis([
            make_entry(USDC, TOKEN_X, "1000", "10", "1000"),
            make_entry(USDC, TOKEN_X, "1000", "5", "1000"),
            make_entry(TOKEN_X, USDC, "10", "1500", "1500"),
        ])

        with localcontext(LEDGER_CONTEXT):
            cost_removed = Decimal("2000") * (Decimal("10") / Decimal("15"))
            expected_remaining = Decimal("2000") - cost_removed
            expected_realized = Decimal("1500") - cost_removed

        x = costs[TOKEN_X]
        assert x.remaining_cost_basis == expected_remaining
        assert x.realized_pnl == expected_realized
        assert round(x.remaining_cost_basis, 2) == Decimal("666.67")
        assert round(x.realized_pnl, 2) == Decimal("166.67")
        assert x.remaining_quantity == Decimal("5")

    def test_sol_usdc_round_trip_scenario(self, make_entry):
        costs = fold_cost_basis([
            make_entry(USDC, SOL, "100", "10", "100"),
            make_entry(SOL, USDC, "5", "65", "65"),
        ])

        sol = costs[SOL]
        assert sol.total_acquired == Decimal("10")
        assert sol.total_disposed == Decimal("5")
        assert sol.remaining_cost_basis == Decimal("50")
        assert sol.realized_pnl == Decimal("15")

    def test_disposal_without_acquisition_is_pure_gain(self, make_entry):
        costs = fold_cost_basis([make_entry(TOKEN_X, USDC, "5", "50", "50")])

        x = costs[TOKEN_X]
        assert x.realized_pnl == Decimal("50")
        assert x.total_disposed == Decimal("5")
        assert x.remaining_cost_basis == 0

    def test_disposal_after_full_exit_uses_zero_cost_branch(self, make_entry):
        costs = fold_cost_basis([
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "10", "120", "120"),
            make_entry(TOKEN_X, USDC, "2", "30", "30"),
        ])

        x = costs[TOKEN_X]
        assert x.remaining_cost_basis == 0
        assert x.realized_pnl == Decimal("20") + Decimal("30")
        assert x.total_disposed == Decimal("12")

    def test_mint_filter_returns_only_that_mint(self, make_entry):
        ledger = [
            make_entry(USDC, SOL, "100", "10", "100"),
            make_entry(USDC, TOKEN_X, "50", "5", "50"),
        ]

        costs = fold_cost_basis(ledger, mint=SOL)

        assert list(costs) == [SOL]
        assert costs[SOL].remaining_cost_basis == Decimal("100")

    def test_mint_filter_without_trades_is_empty(self, make_entry):
        ledger = [make_entry(USDC, SOL, "100", "10", "100")]
        assert fold_cost_basis(ledger, mint=TOKEN_X) == {}


class TestFoldOrderingAndFiltering:

    def test_entries_are_sorted_by_execution_time(self, make_entry):
        buy = make_entry(USDC, TOKEN_X, "100", "10", "100")
        sell = make_entry(TOKEN_X, USDC, "5", "80", "80")

        in_order = fold_cost_basis([buy, sell])
        reversed_order = fold_cost_basis([sell, buy])

        assert in_order[TOKEN_X] == reversed_order[TOKEN_X]
        assert in_order[TOKEN_X].realized_pnl == Decimal("30")

    def test_equal_timestamps_keep_ledger_order(self, make_entry):
        buy = make_entry(USDC, TOKEN_X, "100", "10", "100", executed_at=BASE_TIME)
        sell = make_entry(TOKEN_X, USDC, "5", "80", "80", executed_at=BASE_TIME)

        buy_first = fold_cost_basis([buy, sell])[TOKEN_X]
        sell_first = fold_cost_basis([sell, buy])[TOKEN_X]

        assert buy_first.realized_pnl == Decimal("30")
        # Sell seen first: nothing tracked yet, so proceeds are pure gain
        assert sell_first.realized_pnl == Decimal("80")
        assert sell_first.remaining_cost_basis == Decimal("100")

    def test_entries_missing_valuation_are_skipped(self, make_entry):
        ledger = [
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(USDC, TOKEN_X, "100", "10", False, "100"),
            make_entry(TOKEN_X, USDC, "5", "80", "80", False),
        ]

        costs = fold_cost_basis(ledger)

        assert costs[TOKEN_X].total_acquired == Decimal("10")
        assert costs[TOKEN_X].total_disposed == 0

    def test_ledger_without_any_valuation_is_empty(self, make_entry):
        ledger = [make_entry(USDC, TOKEN_X, "100", "10", False, False)]
        assert fold_cost_basis(ledger) == {}

    def test_mixed_wallets_are_rejected(self, make_entry):
        ledger = [
            make_entry(USDC, SOL, "100", "10", "100"),
            make_entry(USDC, SOL, "100", "10", "100", wallet_id="w2"),
        ]

        with pytest.raises(ValueError, match="several wallets"):
            fold_cost_basis(ledger)

    def test_malformed_amount_propagates(self, make_entry):
        bad = replace(make_entry(USDC, SOL, "100", "10", "100"), output_amount="ten")

        with pytest.raises(InvalidAmountError):
            fold_cost_basis([bad])

    def test_two_batches_match_single_pass_quantities(self, make_entry):
        ledger = [
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "3", "40", "40"),
            make_entry(USDC, SOL, "60", "4", "60"),
            make_entry(SOL, TOKEN_X, "1", "2", "20"),
            make_entry(TOKEN_X, USDC, "4.5", "55", "55"),
        ]

        full = fold_cost_basis(ledger)
        first = fold_cost_basis(ledger[:2])
        second = fold_cost_basis(ledger[2:])

        for mint, state in full.items():
            acquired = sum((b[mint].total_acquired for b in (first, second) if mint in b), Decimal("0"))
            disposed = sum((b[mint].total_disposed for b in (first, second) if mint in b), Decimal("0"))
            assert state.total_acquired == acquired
            assert state.total_disposed == disposed


class TestFoldPrecision:

    def test_thousand_fractional_entries_sum_exactly(self, make_entry):
        ledger = [make_entry(USDC, TOKEN_X, "0.1", "0.3333333333", "0.1") for _ in range(1000)]

        x = fold_cost_basis(ledger)[TOKEN_X]

        assert x.total_acquired == Decimal("333.3333333000")
        assert x.remaining_cost_basis == Decimal("100")
        # The same sum in binary floating point drifts
        assert sum(0.1 for _ in range(1000)) != 100.0

    def test_disposals_in_thirds_empty_the_position(self, make_entry):
        ledger = [make_entry(USDC, TOKEN_X, "10", "3", "10")]
        ledger += [make_entry(TOKEN_X, USDC, "1", "4", "4") for _ in range(3)]

        x = fold_cost_basis(ledger)[TOKEN_X]

        assert x.remaining_quantity == 0
        assert x.remaining_cost_basis == 0

    def test_thirds_track_exact_rational_values(self, make_entry):
        buy = make_entry(USDC, TOKEN_X, "1", "3", "1")
        sells = [make_entry(TOKEN_X, USDC, "1", "0.5", "0.5") for _ in range(3)]
        tolerance = Fraction(1, 10 ** 45)

        for k in range(1, 4):
            x = fold_cost_basis([buy] + sells[:k])[TOKEN_X]

            assert abs(Fraction(x.remaining_cost_basis) - (1 - Fraction(k, 3))) < tolerance
            assert abs(Fraction(x.realized_pnl) - Fraction(k, 6)) < tolerance
            assert x.remaining_quantity == 3 - k

        assert x.remaining_cost_basis == 0

    def test_fold_is_reproducible(self, make_entry):
        ledger = [make_entry(USDC, TOKEN_X, "7", "3", "7") for _ in range(50)]
        ledger += [make_entry(TOKEN_X, USDC, "1", "2.5", "2.5") for _ in range(70)]

        assert fold_cost_basis(ledger) == fold_cost_basis(list(ledger))


class TestFoldDiagnostics:

    def test_over_disposal_is_reported_not_clamped(self, make_entry):
        ledger = [
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "15", "150", "150"),
        ]

        costs, diagnostics = fold_cost_basis_with_diagnostics(ledger)

        x = costs[TOKEN_X]
        assert x.remaining_cost_basis == Decimal("-50")
        assert x.realized_pnl == 0
        assert x.total_disposed == Decimal("15")

        kinds = {d.kind for d in diagnostics}
        assert kinds == {OVER_DISPOSAL, NEGATIVE_COST_BASIS}
        assert all(d.mint == TOKEN_X for d in diagnostics)
        over = next(d for d in diagnostics if d.kind == OVER_DISPOSAL)
        assert over.disposed_amount == Decimal("15")
        assert over.tracked_quantity == Decimal("10")
        assert "exceeds tracked quantity" in over.describe()

    def test_normal_ledger_has_no_diagnostics(self, make_entry):
        ledger = [
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "10", "150", "150"),
        ]

        _, diagnostics = fold_cost_basis_with_diagnostics(ledger)

        assert diagnostics == []

    def test_diagnostics_are_logged_as_warnings(self, make_entry, caplog):
        ledger = [
            make_entry(USDC, TOKEN_X, "100", "10", "100"),
            make_entry(TOKEN_X, USDC, "12", "150", "150"),
        ]

        with caplog.at_level("WARNING"):
            fold_cost_basis(ledger)

        assert "Cost basis anomaly" in caplog.text
