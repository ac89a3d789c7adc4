import numpy as np
import pytest
import QuantLib as ql

from hw_calibrator.instruments import SwapType, Swaption, VanillaSwap


@pytest.fixture
def forward_swap(context, flat_curve):
    calendar = ql.TARGET()
    start = calendar.advance(context.settlement_date, ql.Period(1, ql.Years), ql.ModifiedFollowing)
    maturity = calendar.advance(start, ql.Period(5, ql.Years), ql.ModifiedFollowing)
    return VanillaSwap.from_dates(SwapType.PAYER, 1000.0, start, maturity, 0.03, flat_curve.time_from_date)


def test_schedules(forward_swap):
    assert len(forward_swap.fixed_payment_times) == 5
    assert len(forward_swap.float_times) == 11
    assert forward_swap.start_time == pytest.approx(1.0, abs=0.01)
    assert forward_swap.fixed_accruals == pytest.approx(np.ones(5))


def test_par_swap_has_zero_npv(forward_swap, flat_curve):
    par = forward_swap.with_fixed_rate(forward_swap.fair_rate(flat_curve))
    assert par.npv(flat_curve) == pytest.approx(0.0, abs=1e-10)
    assert par.fixed_leg_npv(flat_curve) == pytest.approx(par.floating_leg_npv(flat_curve), rel=1e-12)


def test_payer_npv_sign_and_bps(forward_swap, flat_curve):
    fair = forward_swap.fair_rate(flat_curve)
    assert forward_swap.npv(flat_curve) > 0.0
    assert forward_swap.with_fixed_rate(fair * 1.2).npv(flat_curve) < 0.0
    assert forward_swap.with_fixed_rate(fair * 0.8).npv(flat_curve) > 0.0
    assert forward_swap.fixed_leg_bps(flat_curve) < 0.0
    assert forward_swap.floating_leg_bps(flat_curve) > 0.0

    receiver = VanillaSwap(
        SwapType.RECEIVER,
        forward_swap.notional,
        forward_swap.start_time,
        forward_swap.fixed_payment_times,
        forward_swap.fixed_accruals,
        forward_swap.fixed_rate,
        forward_swap.float_times,
        forward_swap.float_accruals,
    )
    assert receiver.npv(flat_curve) == pytest.approx(-forward_swap.npv(flat_curve))


def test_fixed_cashflows_include_notional(forward_swap):
    times, amounts = forward_swap.fixed_cashflows()
    assert amounts[-1] == pytest.approx(1000.0 * (1.0 + 0.03 * forward_swap.fixed_accruals[-1]))
    assert amounts[0] == pytest.approx(30.0)
    assert times[-1] == forward_swap.end_time


def test_swaption_rejects_exercise_after_start(forward_swap):
    with pytest.raises(ValueError):
        Swaption(forward_swap, forward_swap.start_time + 0.1)
    swaption = Swaption(forward_swap, forward_swap.start_time)
    assert swaption.strike == 0.03
