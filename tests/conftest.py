import os
import sys

import pytest
import QuantLib as ql

# Allow running tests without installing the package.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from hw_calibrator.curve import CurveHandle, DiscountCurve
from hw_calibrator.model import HullWhite
from hw_calibrator.utils import ValuationContext

FLAT_RATE = 0.04875825

# co-terminal (expiry, tenor, Black vol) set calibrated on the flat curve
FLAT_CURVE_SWAPTIONS = [
    ("1Y", "5Y", 0.1490),
    ("2Y", "4Y", 0.1201),
    ("3Y", "3Y", 0.1070),
    ("4Y", "2Y", 0.0951),
    ("5Y", "1Y", 0.1160),
]


@pytest.fixture
def data_dir():
    return os.path.join(BASE_DIR, "data")


@pytest.fixture
def context():
    return ValuationContext(ql.Date(15, 2, 2002))


@pytest.fixture
def flat_curve(context):
    return DiscountCurve.flat_forward(context.settlement_date, FLAT_RATE, ql.Actual365Fixed())


@pytest.fixture
def flat_handle(flat_curve):
    return CurveHandle(flat_curve)


@pytest.fixture
def model(flat_handle):
    return HullWhite(flat_handle, a=0.05, sigma=0.01)
