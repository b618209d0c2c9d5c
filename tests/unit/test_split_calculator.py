"""Tests for cent-exact split calculation."""
from datetime import datetime
from decimal import Decimal

import pytest

from splitsync.errors import SplitVerificationError
from splitsync.models.sync import SyncStatus
from splitsync.money.amounts import from_cents, round_half_up, sign, to_cents
from splitsync.money.split_calculator import (
    SplitMode,
    SplitShare,
    calculate_splits,
    ensure_valid,
    verify_equal_distribution,
    verify_splits,
)

NOW = datetime(2025, 1, 15, 12, 0)


def _shares(amounts, percentages=None, currency="GBP"):
    percentages = percentages or [None] * len(amounts)
    return [
        SplitShare(
            user_id=i + 1,
            amount=Decimal(a),
            currency=currency,
            percentage=None if p is None else Decimal(p),
            sync_status=SyncStatus.SYNCED,
        )
        for i, (a, p) in enumerate(zip(amounts, percentages))
    ]


def _calc(mode, target, shares, currency="EUR"):
    return calculate_splits(mode, Decimal(target), currency, shares, user_id=7, timestamp=NOW)


def _amounts(splits):
    return [s.amount for s in splits]


def _total(splits):
    return sum(to_cents(s.amount) for s in splits)


class TestAmounts:
    def test_round_half_up(self):
        assert round_half_up(Decimal("1.005")) == Decimal("1.01")
        assert round_half_up(Decimal("-1.005")) == Decimal("-1.01")

    def test_cents_round_trip(self):
        assert to_cents(Decimal("12.34")) == 1234
        assert from_cents(-1) == Decimal("-0.01")

    def test_sign(self):
        assert [sign(Decimal("-3")), sign(0), sign("0.01")] == [-1, 0, 1]


class TestEqualSplits:
    def test_even_division(self):
        splits = _calc(SplitMode.EQUALLY, "90.00", _shares(["0", "0", "0"]))
        assert _amounts(splits) == [Decimal("30.00")] * 3

    def test_leftover_cents_go_to_lowest_user_ids(self):
        splits = _calc(SplitMode.EQUALLY, "100.00", _shares(["0", "0", "0"]))
        assert _amounts(splits) == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]

    def test_tiebreak_uses_user_id_not_input_order(self):
        shares = list(reversed(_shares(["0", "0", "0"])))
        splits = _calc(SplitMode.EQUALLY, "100.00", shares)
        by_user = {s.user_id: s.amount for s in splits}
        assert by_user[1] == Decimal("33.34")

    def test_negative_target_keeps_sign_and_sum(self):
        splits = _calc(SplitMode.EQUALLY, "-43.01", _shares(["0", "0", "0"]))
        assert _total(splits) == -4301
        assert all(s.amount < 0 for s in splits)
        assert verify_equal_distribution(splits)

    def test_zero_target(self):
        splits = _calc(SplitMode.EQUALLY, "0", _shares(["5", "5"]))
        assert _amounts(splits) == [Decimal("0.00"), Decimal("0.00")]

    @pytest.mark.parametrize("target", ["0.01", "0.02", "1.00", "117.00", "-0.05", "-999.99"])
    @pytest.mark.parametrize("n", [1, 3, 7])
    def test_sum_and_spread_invariants(self, target, n):
        splits = _calc(SplitMode.EQUALLY, target, _shares(["1"] * n))
        assert _total(splits) == to_cents(Decimal(target))
        assert verify_equal_distribution(splits)


class TestWeightedSplits:
    def test_proportional_to_prior_amounts(self):
        splits = _calc(SplitMode.UNEQUALLY, "200.00", _shares(["10.00", "30.00"]))
        assert _amounts(splits) == [Decimal("50.00"), Decimal("150.00")]

    def test_leftover_goes_to_largest_share_first(self):
        splits = _calc(SplitMode.UNEQUALLY, "10.00", _shares(["1", "1", "2"]))
        # exact: 2.50, 2.50, 5.00 -> no leftover
        assert _total(splits) == 1000
        splits = _calc(SplitMode.UNEQUALLY, "10.01", _shares(["1", "1", "2"]))
        assert _amounts(splits) == [Decimal("2.50"), Decimal("2.50"), Decimal("5.01")]

    def test_negative_prior_amounts_use_magnitude(self):
        splits = _calc(SplitMode.UNEQUALLY, "-30.00", _shares(["-10.00", "-20.00"]))
        assert _amounts(splits) == [Decimal("-10.00"), Decimal("-20.00")]

    def test_zero_weights_fall_back_to_equal(self):
        splits = _calc(SplitMode.UNEQUALLY, "10.00", _shares(["0", "0", "0"]))
        assert _total(splits) == 1000
        assert verify_equal_distribution(splits)

    @pytest.mark.parametrize("target", ["0.01", "33.33", "-77.77", "1000.01"])
    def test_sum_invariant(self, target):
        splits = _calc(SplitMode.UNEQUALLY, target, _shares(["12.34", "0.01", "56.78", "9.99"]))
        assert _total(splits) == to_cents(Decimal(target))


class TestPercentageSplits:
    def test_thirds_of_99_99(self):
        shares = _shares(["0", "0", "0"], ["33.33", "33.33", "33.34"])
        splits = _calc(SplitMode.PERCENTAGE, "99.99", shares)
        assert _total(splits) == 9999
        assert all(abs(to_cents(s.amount) - 3333) <= 1 for s in splits)

    def test_percentages_preserved(self):
        shares = _shares(["0", "0"], ["25", "75"])
        splits = _calc(SplitMode.PERCENTAGE, "40.00", shares)
        assert [s.percentage for s in splits] == [Decimal("25"), Decimal("75")]
        assert _amounts(splits) == [Decimal("10.00"), Decimal("30.00")]

    def test_percentages_not_summing_to_100_are_normalized(self):
        shares = _shares(["0", "0"], ["1", "3"])
        splits = _calc(SplitMode.PERCENTAGE, "40.00", shares)
        assert _amounts(splits) == [Decimal("10.00"), Decimal("30.00")]

    def test_zero_percentages_fall_back_to_equal(self):
        shares = _shares(["0", "0"], [None, None])
        splits = _calc(SplitMode.PERCENTAGE, "1.01", shares)
        assert _total(splits) == 101

    @pytest.mark.parametrize("target", ["0.01", "0.05", "-99.99", "12345.67"])
    def test_sum_invariant(self, target):
        shares = _shares(["0"] * 3, ["33.3333", "33.3333", "33.3334"])
        splits = _calc(SplitMode.PERCENTAGE, target, shares)
        assert _total(splits) == to_cents(Decimal(target))


class TestResultShape:
    def test_returned_shares_are_stamped(self):
        splits = _calc(SplitMode.EQUALLY, "10.00", _shares(["5", "5"]), currency="USD")
        for split in splits:
            assert split.currency == "USD"
            assert split.updated_by == 7
            assert split.updated_at == NOW
            assert split.sync_status == SyncStatus.PENDING_SYNC

    def test_input_order_is_preserved(self):
        shares = list(reversed(_shares(["1", "2", "3"])))
        splits = _calc(SplitMode.UNEQUALLY, "6.00", shares)
        assert [s.user_id for s in splits] == [3, 2, 1]

    def test_deterministic(self):
        shares = _shares(["0"] * 3, ["33.33", "33.33", "33.34"])
        first = _calc(SplitMode.PERCENTAGE, "99.99", shares)
        second = _calc(SplitMode.PERCENTAGE, "99.99", shares)
        assert first == second

    def test_mode_accepts_plain_string(self):
        splits = _calc("equally", "3.00", _shares(["1", "1", "1"]))
        assert _amounts(splits) == [Decimal("1.00")] * 3

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            _calc("by_vibes", "3.00", _shares(["1"]))

    def test_no_participants_with_non_zero_target_fails_verification(self):
        with pytest.raises(SplitVerificationError):
            _calc(SplitMode.EQUALLY, "1.00", [])

    def test_no_participants_with_zero_target(self):
        assert _calc(SplitMode.EQUALLY, "0", []) == []


class TestVerification:
    def test_verify_splits(self):
        shares = _shares(["33.34", "33.33", "33.33"])
        assert verify_splits(shares, Decimal("100.00"))
        assert not verify_splits(shares, Decimal("100.01"))

    def test_verify_equal_distribution(self):
        assert verify_equal_distribution(_shares(["1.00", "1.01"]))
        assert not verify_equal_distribution(_shares(["1.00", "1.02"]))

    def test_ensure_valid_raises_on_bad_sum(self):
        with pytest.raises(SplitVerificationError):
            ensure_valid(_shares(["1.00"]), Decimal("2.00"), SplitMode.UNEQUALLY)

    def test_ensure_valid_raises_on_equal_spread(self):
        with pytest.raises(SplitVerificationError):
            ensure_valid(_shares(["1.00", "3.00"]), Decimal("4.00"), SplitMode.EQUALLY)
