import math

from ..black import black_formula
from ..curve import as_handle
from ..instruments import OptionType, SwapType
from .base import PricingEngine


class BlackSwaptionEngine(PricingEngine):
    """Market-standard lognormal swaption price.

    ``N * annuity * Black(K, F, vol * sqrt(T))`` with F the forward swap rate
    and T the swaption's ``volatility_time``. Payer swaptions are calls on the
    swap rate, receivers puts.
    """

    def __init__(self, curve, volatility):
        self.curve_handle = as_handle(curve)
        self.volatility = float(volatility)

    def calculate(self, swaption):
        curve = self.curve_handle.current_link
        annuity = swaption.swap.annuity(curve)
        forward = swaption.forward_swap_rate(curve)
        option_type = OptionType.CALL if swaption.swap_type == SwapType.PAYER else OptionType.PUT
        std_dev = self.volatility * math.sqrt(swaption.volatility_time)
        return black_formula(
            option_type,
            swaption.strike,
            forward,
            std_dev,
            swaption.swap.notional * annuity,
        )
