import abc


class PricingEngine(abc.ABC):
    """Abstract interface for swaption pricing engines.

    Engines are stateless with respect to the instrument: every call to
    ``calculate`` prices from scratch against the current model / curve.
    """

    @abc.abstractmethod
    def calculate(self, swaption):
        """Return the present value of ``swaption``."""
        raise NotImplementedError
