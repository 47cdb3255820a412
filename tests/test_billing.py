"""
Тесты расчёта стоимости, округления и списания часов членства
"""
from datetime import date, datetime, timedelta

import pytest

from database.models import Customer
from utils.billing import (
    calculate_session_cost, compute_live_billing, hours_between,
    session_duration_minutes, settle_session
)

START = datetime(2024, 5, 20, 14, 0, 0)


def member(hours_left: float, **kwargs) -> Customer:
    return Customer(id=1, name="Анна", phone="+79990000001", is_member=True,
                    membership_hours_left=hours_left, **kwargs)


def guest(**kwargs) -> Customer:
    return Customer(id=2, name="Пётр", phone="+79990000002", **kwargs)


class TestSessionDuration:

    @pytest.mark.parametrize("elapsed, minutes", [
        (timedelta(seconds=0), 0),
        (timedelta(seconds=1), 1),
        (timedelta(seconds=60), 1),
        (timedelta(seconds=61), 2),
        (timedelta(minutes=45), 45),
        (timedelta(minutes=45, microseconds=1), 46),
    ])
    def test_rounds_up_to_whole_minutes(self, elapsed, minutes):
        assert session_duration_minutes(START, START + elapsed) == minutes

    def test_end_before_start_is_zero(self):
        assert session_duration_minutes(START, START - timedelta(minutes=5)) == 0


class TestSessionCost:

    def test_one_hour_non_member(self):
        assert calculate_session_cost(1.0, 150, is_member=False) == 150

    def test_one_hour_member_gets_half(self):
        assert calculate_session_cost(1.0, 150, is_member=True) == 75

    def test_discount_applies_after_first_ceiling(self):
        # 0.1 ч * 155 = 15.5 -> 16, затем 16 * 0.5 = 8
        assert calculate_session_cost(0.1, 155, is_member=True) == 8
        # 0.01 ч * 150 = 1.5 -> 2, затем 2 * 0.5 = 1
        assert calculate_session_cost(0.01, 150, is_member=True) == 1

    def test_float_noise_does_not_add_a_unit(self):
        # 0.07 * 100 в float чуть больше 7
        assert calculate_session_cost(0.07, 100, is_member=False) == 7
        assert calculate_session_cost(0.75, 200, is_member=False) == 150

    def test_zero_elapsed_is_free(self):
        assert calculate_session_cost(0, 300, is_member=False) == 0

    def test_hours_between(self):
        assert hours_between(START, START + timedelta(minutes=90)) == 1.5
        assert hours_between(START, START - timedelta(minutes=1)) == 0.0


class TestSettlement:

    def test_member_with_enough_hours_plays_free(self):
        result = settle_session(START, START + timedelta(hours=2), 150, member(3.0))

        assert result.free_session
        assert result.price == 0
        assert not result.discount_applied
        assert result.membership_hours_left == pytest.approx(1.0)
        assert result.hours_deducted == pytest.approx(2.0)

    def test_member_with_exactly_enough_hours_plays_free(self):
        result = settle_session(START, START + timedelta(hours=2), 150, member(2.0))

        assert result.free_session
        assert result.membership_hours_left == 0.0

    def test_member_short_on_hours_pays_discounted(self):
        result = settle_session(START, START + timedelta(hours=3), 150, member(2.0))

        assert not result.free_session
        assert result.discount_applied
        assert result.price == 225  # ceil(ceil(3 * 150) * 0.5)
        assert result.membership_hours_left == 2.0
        assert result.hours_deducted == 0.0

    def test_free_and_discount_never_both(self):
        for hours_left in (0.0, 0.5, 1.0, 2.0, 5.0):
            for minutes in (0, 1, 30, 60, 119, 121, 300):
                result = settle_session(START, START + timedelta(minutes=minutes), 150,
                                        member(hours_left))
                assert not (result.free_session and result.discount_applied)

    def test_play_time_always_accumulates(self):
        paid = settle_session(START, START + timedelta(minutes=45), 200, guest(total_play_time=100))
        free = settle_session(START, START + timedelta(minutes=45), 200,
                              member(5.0, total_play_time=10))

        assert paid.total_play_time == 145
        assert free.total_play_time == 55

    def test_non_member_pays_full_price(self):
        result = settle_session(START, START + timedelta(minutes=45), 200, guest())

        assert result.duration_minutes == 45
        assert result.price == 150
        assert not result.free_session
        assert not result.discount_applied
        assert result.membership_hours_left == 0.0

    def test_missing_customer_pays_non_member_price(self):
        result = settle_session(START, START + timedelta(hours=1), 150, None)

        assert result.price == 150
        assert result.total_play_time is None
        assert result.membership_hours_left is None

    def test_expired_membership_is_not_active(self):
        customer = member(10.0, membership_expiry_date=date(2024, 5, 1))
        result = settle_session(START, START + timedelta(hours=1), 150, customer)

        assert not result.free_session
        assert not result.discount_applied
        assert result.price == 150
        assert result.membership_hours_left == 10.0


class TestLiveBilling:

    def test_snapshot_depends_only_on_elapsed_time(self):
        now = START + timedelta(hours=1, minutes=2, seconds=3)
        first = compute_live_billing(1, START, now, 150, guest())
        second = compute_live_billing(1, START, now, 150, guest())

        assert first == second
        assert (first.hours, first.minutes, first.seconds) == (1, 2, 3)
        assert first.cost == 156  # ceil(1.034166 * 150)

    def test_member_sees_remaining_hours(self):
        billing = compute_live_billing(1, START, START + timedelta(minutes=30), 150, member(2.0))

        assert billing.is_member
        assert billing.membership_hours_left == pytest.approx(1.5)
        assert billing.cost == 38  # ceil(75 * 0.5)

    def test_remaining_hours_never_negative(self):
        billing = compute_live_billing(1, START, START + timedelta(hours=4), 150, member(1.0))
        assert billing.membership_hours_left == 0.0

    def test_guest_has_no_membership_balance(self):
        billing = compute_live_billing(1, START, START + timedelta(minutes=30), 150, None)

        assert not billing.is_member
        assert billing.membership_hours_left is None
        assert billing.cost == 75
