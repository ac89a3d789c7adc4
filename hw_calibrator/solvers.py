"""One-dimensional root finding with a safeguarded Newton step."""

import logging

from .errors import SolverError

logger = logging.getLogger(__name__)


def newton_safe(func, derivative, x_min, x_max, accuracy=1e-12, max_evaluations=100, guess=None):
    """Bracketed Newton-Raphson with bisection fallback.

    A Newton step is taken when it stays inside the current bracket and
    shrinks the step fast enough; otherwise the bracket is bisected. The
    bracket always contains the root.

    Parameters
    ----------
    func, derivative : callable
        f(x) and f'(x).
    x_min, x_max : float
        Initial bracket; f must change sign over it.
    accuracy : float
        Stop once the last step is smaller than this.
    max_evaluations : int
        Maximum number of function evaluations.
    guess : float, optional
        Starting point (bracket midpoint if missing or outside).

    Raises
    ------
    SolverError
        If the root is not bracketed or ``max_evaluations`` is exceeded.
    """
    f_min = func(x_min)
    f_max = func(x_max)
    if f_min == 0.0:
        return x_min
    if f_max == 0.0:
        return x_max
    if f_min * f_max > 0.0:
        raise SolverError(
            f"root not bracketed: f({x_min})={f_min:.6g}, f({x_max})={f_max:.6g}"
        )

    # orient the search so that f(x_low) < 0
    if f_min < 0.0:
        x_low, x_high = x_min, x_max
    else:
        x_low, x_high = x_max, x_min

    root = guess if guess is not None and min(x_min, x_max) < guess < max(x_min, x_max) else 0.5 * (x_min + x_max)
    dx_old = abs(x_max - x_min)
    dx = dx_old
    f = func(root)
    df = derivative(root)
    evaluations = 3

    while evaluations <= max_evaluations:
        out_of_range = ((root - x_high) * df - f) * ((root - x_low) * df - f) > 0.0
        too_slow = abs(2.0 * f) > abs(dx_old * df)
        if out_of_range or too_slow:
            dx_old = dx
            dx = 0.5 * (x_high - x_low)
            root = x_low + dx
        else:
            dx_old = dx
            dx = f / df
            root -= dx
        if abs(dx) < accuracy:
            return root
        f = func(root)
        df = derivative(root)
        evaluations += 1
        if f < 0.0:
            x_low = root
        else:
            x_high = root

    raise SolverError(f"maximum number of function evaluations ({max_evaluations}) exceeded")
