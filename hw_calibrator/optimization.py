"""Levenberg-Marquardt least squares with QuantLib-style end criteria."""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .errors import NumericalInstability

logger = logging.getLogger(__name__)


class EndCriteriaType(Enum):
    """Reason the optimizer stopped."""

    MAX_ITERATIONS = "max_iterations"
    STATIONARY_POINT = "stationary_point"
    STATIONARY_FUNCTION_VALUE = "stationary_function_value"
    STATIONARY_FUNCTION_ACCURACY = "stationary_function_accuracy"
    ZERO_GRADIENT_NORM = "zero_gradient_norm"

    @property
    def converged(self):
        return self is not EndCriteriaType.MAX_ITERATIONS


@dataclass(frozen=True)
class EndCriteria:
    """Stopping rules of :class:`LevenbergMarquardt`.

    Parameters
    ----------
    max_iterations : int
        Hard limit on accepted-step iterations (soft failure when hit).
    max_stationary_state_iterations : int
        Consecutive iterations with a relative objective change below
        ``function_epsilon`` tolerated before stopping.
    root_epsilon : float
        Relative step-size threshold.
    function_epsilon : float
        Objective threshold (absolute, and relative for the change test).
    gradient_norm_epsilon : float
        Threshold on the infinity norm of ``J^T r``.
    """

    max_iterations: int = 1000
    max_stationary_state_iterations: int = 100
    root_epsilon: float = 1e-8
    function_epsilon: float = 1e-8
    gradient_norm_epsilon: float = 1e-8

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_stationary_state_iterations < 1:
            raise ValueError("max_stationary_state_iterations must be at least 1")
        if min(self.root_epsilon, self.function_epsilon, self.gradient_norm_epsilon) < 0.0:
            raise ValueError("end criteria tolerances must be non-negative")


@dataclass(frozen=True)
class OptimizationResult:
    x: np.ndarray
    residuals: np.ndarray
    cost: float
    initial_cost: float
    iterations: int
    function_evaluations: int
    end_criteria: EndCriteriaType

    @property
    def converged(self):
        return self.end_criteria.converged


class LevenbergMarquardt:
    """Damped Gauss-Newton minimisation of ``sum(residuals(x) ** 2)``.

    The normal equations are damped with Marquardt's scaling,
    ``(J^T J + lambda diag(J^T J)) dx = -J^T r``. A step is accepted only if
    it lowers the sum of squares; lambda is divided by 10 after an accepted
    step and multiplied by 10 after a rejected one. Once lambda exceeds
    ``max_damping`` no descent step exists at the current point and the
    search stops on a stationary point.

    Parameters
    ----------
    initial_damping : float
    relative_step, minimum_step : float
        Forward-difference Jacobian step ``max(relative_step * |x_j|, minimum_step)``.
    max_damping : float
    """

    def __init__(self, initial_damping=1e-3, relative_step=1e-6, minimum_step=1e-6, max_damping=1e16):
        self.initial_damping = float(initial_damping)
        self.relative_step = float(relative_step)
        self.minimum_step = float(minimum_step)
        self.max_damping = float(max_damping)

    @staticmethod
    def _project(x, lower):
        if lower is None:
            return x
        return np.maximum(x, lower)

    def jacobian(self, residuals, x, r):
        """Forward-difference Jacobian at ``x`` (``r = residuals(x)``).

        Steps go upwards so a point on a lower bound stays feasible.
        """
        jac = np.empty((len(r), len(x)))
        for j in range(len(x)):
            h = max(self.relative_step * abs(x[j]), self.minimum_step)
            shifted = x.copy()
            shifted[j] += h
            jac[:, j] = (residuals(shifted) - r) / h
        return jac

    def minimize(self, residuals, x0, end_criteria=None, lower_bounds=None):
        """Minimise the sum of squared residuals starting from ``x0``.

        Parameters
        ----------
        residuals : callable
            ``residuals(x) -> array`` of the calibration errors.
        x0 : array_like
        end_criteria : EndCriteria, optional
        lower_bounds : array_like, optional
            Per-parameter lower bounds (``-inf`` for unbounded), enforced by
            projecting every trial point.

        Returns
        -------
        OptimizationResult
        """
        ec = end_criteria or EndCriteria()
        lower = None if lower_bounds is None else np.asarray(lower_bounds, dtype=float)
        evaluations = 0

        def evaluate(x):
            nonlocal evaluations
            evaluations += 1
            values = np.asarray(residuals(x), dtype=float)
            if not np.all(np.isfinite(values)):
                raise NumericalInstability(f"non-finite residuals at x={x.tolist()}")
            return values

        x = self._project(np.asarray(x0, dtype=float).copy(), lower)
        r = evaluate(x)
        cost = float(r @ r)
        initial_cost = cost
        damping = self.initial_damping
        stationary = 0
        iteration = 0
        reason = None

        if cost < ec.function_epsilon:
            reason = EndCriteriaType.STATIONARY_FUNCTION_ACCURACY

        while reason is None:
            if iteration >= ec.max_iterations:
                reason = EndCriteriaType.MAX_ITERATIONS
                break
            iteration += 1

            jac = self.jacobian(evaluate, x, r)
            gradient = jac.T @ r
            if np.max(np.abs(gradient)) <= ec.gradient_norm_epsilon:
                reason = EndCriteriaType.ZERO_GRADIENT_NORM
                break
            jtj = jac.T @ jac
            scale = np.diag(jtj).copy()
            scale[scale <= 0.0] = 1.0

            while True:
                try:
                    step = np.linalg.solve(jtj + damping * np.diag(scale), -gradient)
                except np.linalg.LinAlgError:
                    step = None
                if step is not None and np.all(np.isfinite(step)):
                    trial = self._project(x + step, lower)
                    trial_r = evaluate(trial)
                    trial_cost = float(trial_r @ trial_r)
                    if trial_cost < cost:
                        break
                damping *= 10.0
                if damping > self.max_damping:
                    reason = EndCriteriaType.STATIONARY_POINT
                    break
            if reason is not None:
                break

            dx = trial - x
            change = abs(cost - trial_cost) / max(cost, np.finfo(float).tiny)
            x, r, cost = trial, trial_r, trial_cost
            damping = max(damping / 10.0, 1e-16)
            logger.debug(
                "LM iteration %d: cost=%.6e |dx|=%.3e lambda=%.1e x=%s",
                iteration, cost, np.linalg.norm(dx), damping, np.array2string(x, precision=8),
            )

            if cost < ec.function_epsilon:
                reason = EndCriteriaType.STATIONARY_FUNCTION_ACCURACY
            elif np.linalg.norm(dx) <= ec.root_epsilon * (np.linalg.norm(x) + ec.root_epsilon):
                reason = EndCriteriaType.STATIONARY_POINT
            else:
                stationary = stationary + 1 if change <= ec.function_epsilon else 0
                if stationary >= ec.max_stationary_state_iterations:
                    reason = EndCriteriaType.STATIONARY_FUNCTION_VALUE

        logger.info(
            "LM stopped (%s) after %d iterations, %d evaluations: cost %.6e -> %.6e",
            reason.value, iteration, evaluations, initial_cost, cost,
        )
        return OptimizationResult(
            x=x,
            residuals=r,
            cost=cost,
            initial_cost=initial_cost,
            iterations=iteration,
            function_evaluations=evaluations,
            end_criteria=reason,
        )
