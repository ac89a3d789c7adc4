import numpy as np
import pytest

from hw_calibrator.bootstrap import DepositRateHelper, OISRateHelper, PiecewiseCurveBootstrapper
from hw_calibrator.curve import Interpolation
from hw_calibrator.errors import AmbiguousNode, BootstrapFailure

EONIA = [("3M", 0.0517), ("6M", 0.0484), ("1Y", 0.0436), ("2Y", 0.0388), ("5Y", 0.0362), ("10Y", 0.0379), ("30Y", 0.0411)]


def eonia_helpers(context):
    return [OISRateHelper.from_tenor(q, tenor, context) for tenor, q in EONIA]


@pytest.mark.parametrize("interpolation", list(Interpolation))
def test_every_helper_is_repriced(context, interpolation):
    helpers = eonia_helpers(context)
    curve = PiecewiseCurveBootstrapper(interpolation=interpolation).build(context, helpers)
    for helper in helpers:
        assert abs(helper.quote_error(curve)) < 1e-9, helper.name


def test_deposits_and_ois_mix(context):
    helpers = [
        DepositRateHelper.from_tenor(0.05, "1M", context),
        DepositRateHelper.from_tenor(0.051, "3M", context),
    ] + [OISRateHelper.from_tenor(q, tenor, context) for tenor, q in EONIA[2:]]
    curve = PiecewiseCurveBootstrapper().build(context, helpers)
    for helper in helpers:
        assert abs(helper.quote_error(curve)) < 1e-9, helper.name
    assert np.all(curve.discount_factors > 0.0)


def test_ois_schedule(context):
    helper = OISRateHelper.from_tenor(0.04, "2Y", context)
    assert helper.name == "OIS 2Y"
    assert len(helper.payment_times) == 2
    assert helper.start_time == pytest.approx(4.0 / 365.0)
    assert helper.accruals[0] == pytest.approx(365.0 / 360.0, abs=0.01)


def test_same_pillar_is_ambiguous(context):
    helpers = [OISRateHelper.from_tenor(0.04, "1Y", context), DepositRateHelper.from_tenor(0.041, "12M", context)]
    with pytest.raises(AmbiguousNode):
        PiecewiseCurveBootstrapper().build(context, helpers)


def test_unreachable_quote_fails_with_helper(context):
    bad = OISRateHelper.from_tenor(50.0, "2Y", context)
    helpers = [OISRateHelper.from_tenor(0.04, "1Y", context), bad]
    with pytest.raises(BootstrapFailure) as info:
        PiecewiseCurveBootstrapper().build(context, helpers)
    assert info.value.helper is bad


def test_no_helpers(context):
    with pytest.raises(BootstrapFailure):
        PiecewiseCurveBootstrapper().build(context, [])
