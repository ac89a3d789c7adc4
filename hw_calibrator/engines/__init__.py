from .base import PricingEngine
from .black_swaption import BlackSwaptionEngine
from .jamshidian import JamshidianSwaptionEngine
